"""Device selection across simulator and emulator catalogs.

Selection order:
1. Exact, case-insensitive name match (short-circuits everything else)
2. Filter to compatible devices (minimum OS version)
3. Highest numerically parsed OS version
4. Ties resolved by catalog order (first listed wins)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from mobile_workflow.state import Device, parse_os_version

logger = logging.getLogger(__name__)


@dataclass
class DeviceListing:
    """Result of enumerating a platform's devices. ``error`` set means the listing failed."""

    devices: list[Device] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def find_device_by_name(devices: Sequence[Device], name: str) -> Device | None:
    wanted = name.strip().casefold()
    for device in devices:
        if device.name.casefold() == wanted:
            return device
    return None


def is_compatible(device: Device, min_version: str | int | None) -> bool:
    """An int minimum is an Android API level; a string is an OS version.

    Devices that do not report an API level are treated as compatible.
    """
    if min_version is None:
        return True
    if isinstance(min_version, int):
        return device.api_level is None or device.api_level >= min_version
    return device.version_key >= parse_os_version(min_version)


def compatible_devices(devices: Sequence[Device], min_version: str | int | None = None) -> list[Device]:
    return [d for d in devices if is_compatible(d, min_version)]


def has_compatible_emulator(devices: Sequence[Device], min_version: str | int | None = None) -> bool:
    """True when ``select_best_device`` would find something without a name preference."""
    return bool(compatible_devices(devices, min_version))


def select_best_device(
    devices: Sequence[Device],
    name: str | None = None,
    min_version: str | int | None = None,
) -> Device | None:
    """Pick one device, or None when nothing qualifies."""
    if name:
        match = find_device_by_name(devices, name)
        if match is not None:
            logger.debug("Selected device %s by name", match.name)
            return match
        logger.debug("No device named %s, falling back to version ranking", name)

    best: Device | None = None
    for device in compatible_devices(devices, min_version):
        # strict comparison keeps the first of equal versions
        if best is None or device.version_key > best.version_key:
            best = device

    if best is None:
        logger.debug("No compatible device among %d candidates (min_version=%s)", len(devices), min_version)
    else:
        logger.debug("Selected device %s (version %s)", best.name, best.os_version)
    return best
