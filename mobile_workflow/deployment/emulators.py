"""Android emulator catalog backed by the Salesforce CLI and adb."""

from __future__ import annotations

import json
import logging
from typing import Any

from mobile_workflow import config
from mobile_workflow.commands import CommandRunnerProtocol, ProgressCallback, seconds_to_ms
from mobile_workflow.deployment.devices import DeviceListing
from mobile_workflow.state import BootState, Device

logger = logging.getLogger(__name__)

SF_DEVICE_LIST_ARGS = ["force", "lightning", "local", "device", "list", "-p", "android", "--json", "-o", "all"]


def _format_os_version(raw: Any) -> tuple[str, int | None]:
    """osVersion is either a string or ``{major, minor, patch}``; only the map carries an API level."""
    if isinstance(raw, dict):
        major = int(raw["major"])
        parts = [major, int(raw.get("minor", 0) or 0), int(raw.get("patch", 0) or 0)]
        return ".".join(str(p) for p in parts), major
    if raw is None:
        return "", None
    return str(raw), None


def parse_sf_device_list(stdout: str) -> list[Device]:
    """Parse ``sf force lightning local device list`` JSON. Raises ValueError on malformed output."""
    data = json.loads(stdout)
    entries = data.get("outputContent") if isinstance(data, dict) else None
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError("'outputContent' is not a list")

    devices: list[Device] = []
    for entry in entries:
        os_version, api_level = _format_os_version(entry.get("osVersion"))
        devices.append(
            Device(
                # sf commands address emulators by id
                name=entry["id"],
                id=entry["id"],
                os_version=os_version,
                runtime_identifier=str(entry.get("deviceType", "")),
                boot_state=BootState.UNKNOWN,
                api_level=api_level,
            )
        )
    return devices


def list_emulators(
    runner: CommandRunnerProtocol,
    *,
    timeout_s: float | None = None,
    progress_callback: ProgressCallback | None = None,
) -> DeviceListing:
    result = runner.execute(
        "sf",
        SF_DEVICE_LIST_ARGS,
        timeout_ms=seconds_to_ms(timeout_s if timeout_s is not None else config.LIST_TIMEOUT_S),
        progress_callback=progress_callback,
        label="List Android Devices",
    )
    if not result.success:
        return DeviceListing(error=result.error_message("Failed to list Android devices: "))

    try:
        devices = parse_sf_device_list(result.stdout)
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Unparseable device list output: %s", exc)
        return DeviceListing(error=f"Failed to parse device list JSON: {exc}")

    logger.debug("Found %d Android emulators", len(devices))
    return DeviceListing(devices=devices)


def boot_completed_state(stdout: str) -> BootState:
    """Interpret ``adb shell getprop sys.boot_completed`` output."""
    return BootState.BOOTED if stdout.strip() == "1" else BootState.BOOTING
