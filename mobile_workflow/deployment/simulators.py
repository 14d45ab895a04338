"""iOS simulator catalog backed by ``xcrun simctl``."""

from __future__ import annotations

import json
import logging
import re

from mobile_workflow import config
from mobile_workflow.commands import CommandRunnerProtocol, ProgressCallback, seconds_to_ms
from mobile_workflow.deployment.devices import DeviceListing
from mobile_workflow.state import BootState, Device

logger = logging.getLogger(__name__)

_RUNTIME_VERSION = re.compile(r"iOS-(\d+)-(\d+)")


def ios_version_from_runtime(runtime_identifier: str) -> str:
    """Map a runtime key like ``...SimRuntime.iOS-18-0`` to "18.0"; "" if not an iOS runtime."""
    match = _RUNTIME_VERSION.search(runtime_identifier)
    if not match:
        return ""
    return f"{match.group(1)}.{match.group(2)}"


def parse_simctl_devices(stdout: str) -> list[Device]:
    """Flatten ``simctl list devices --json`` into Devices, runtime by runtime.

    Only iOS runtimes are kept; watchOS, tvOS and visionOS devices are dropped.

    Raises ValueError on malformed output.
    """
    data = json.loads(stdout)
    runtimes = data.get("devices") if isinstance(data, dict) else None
    if not isinstance(runtimes, dict):
        raise ValueError("missing 'devices' map")

    devices: list[Device] = []
    for runtime_identifier, entries in runtimes.items():
        if not isinstance(entries, list):
            raise ValueError(f"runtime {runtime_identifier} is not a list")
        version = ios_version_from_runtime(runtime_identifier)
        if not version:
            logger.debug("Skipping non-iOS runtime %s", runtime_identifier)
            continue
        for entry in entries:
            if entry.get("isAvailable") is False:
                continue
            devices.append(
                Device(
                    name=entry["name"],
                    id=entry["udid"],
                    os_version=version,
                    runtime_identifier=runtime_identifier,
                    boot_state=BootState.parse(entry.get("state")),
                )
            )
    return devices


def list_simulators(
    runner: CommandRunnerProtocol,
    *,
    timeout_s: float | None = None,
    progress_callback: ProgressCallback | None = None,
) -> DeviceListing:
    result = runner.execute(
        "xcrun",
        ["simctl", "list", "devices", "available", "--json"],
        timeout_ms=seconds_to_ms(timeout_s if timeout_s is not None else config.LIST_TIMEOUT_S),
        progress_callback=progress_callback,
        label="List iOS Simulators",
    )
    if not result.success:
        return DeviceListing(error=result.error_message("Failed to list iOS simulators: "))

    try:
        devices = parse_simctl_devices(result.stdout)
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Unparseable simctl output: %s", exc)
        return DeviceListing(error=f"Failed to parse iOS simulator list: {exc}")

    logger.debug("Found %d iOS simulators", len(devices))
    return DeviceListing(devices=devices)


def parse_installed_bundle_id(stdout: str, project_name: str) -> str | None:
    """Find the bundle id whose CFBundleName/CFBundleDisplayName contains the project name."""
    try:
        apps = json.loads(stdout)
    except ValueError:
        return None
    if not isinstance(apps, dict):
        return None
    wanted = project_name.lower()
    for bundle_id, info in apps.items():
        if not isinstance(info, dict):
            continue
        app_name = (info.get("CFBundleName") or info.get("CFBundleDisplayName") or "").lower()
        if wanted and wanted in app_name:
            return bundle_id
    return None
