"""Deployment nodes for iOS simulators and Android emulators.

Both platforms share one node sequence:

    select device -> boot/start (+ wait until ready) -> install
    -> resolve launch target -> launch

Each node is a no-op for the other platform, so a single graph serves both.
Preconditions are checked before any command runs. Command failures become
fatal messages carrying the exit status and a stderr excerpt.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from mobile_workflow import config
from mobile_workflow.commands import CommandRunnerProtocol
from mobile_workflow.deployment import manifest
from mobile_workflow.deployment.devices import find_device_by_name, select_best_device
from mobile_workflow.deployment.emulators import boot_completed_state, list_emulators
from mobile_workflow.deployment.readiness import ReadinessWaiter
from mobile_workflow.deployment.simulators import list_simulators, parse_installed_bundle_id
from mobile_workflow.execution_limits import Deadline
from mobile_workflow.nodes.base import CommandNode, PlatformNode, RunContext, StatePatch
from mobile_workflow.state import BootState, DeploymentStatus, Platform

logger = logging.getLogger(__name__)

Sleep = Callable[[float], None]


class _CommandNode(PlatformNode, CommandNode):
    """Platform-gated command node."""


# ---------------------------------------------------------------------------
# iOS
# ---------------------------------------------------------------------------


class IOSSelectSimulatorNode(_CommandNode):
    platform = Platform.IOS

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("ios_select_simulator", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        listing = list_simulators(
            self.runner,
            timeout_s=context.deadline.bound(config.LIST_TIMEOUT_S),
            progress_callback=context.progress_callback,
        )
        if not listing.ok:
            return self.fail(f"{listing.error}. Please ensure Xcode is properly installed.")

        preferred = state.get("target_device")
        device = select_best_device(listing.devices, name=preferred)
        if device is None:
            return self.fail("No compatible iOS simulators found. Please install an iOS simulator runtime via Xcode.")
        if preferred and device.name.casefold() != preferred.casefold():
            self.logger.warning("Simulator %r not found, using %s instead", preferred, device.name)

        self.logger.info("Selected iOS simulator %s (iOS %s)", device.name, device.os_version)
        return {
            "target_device": device.name,
            "device_list": [d.to_dict() for d in listing.devices],
            "simulator_running": device.boot_state is BootState.BOOTED,
        }


class IOSBootSimulatorNode(_CommandNode):
    platform = Platform.IOS

    def __init__(
        self,
        runner: CommandRunnerProtocol,
        logger: logging.Logger | None = None,
        poll_interval: float = config.IOS_POLL_INTERVAL_S,
        readiness_timeout: float = config.READINESS_TIMEOUT_S,
        sleep: Sleep | None = None,
    ):
        super().__init__("ios_boot_simulator", runner, logger)
        self.poll_interval = poll_interval
        self.readiness_timeout = readiness_timeout
        self.sleep = sleep or time.sleep

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        if state.get("simulator_running"):
            self.logger.debug("Simulator already running, skipping boot")
            return {}
        device = state.get("target_device")
        if not device:
            return self.fail("Target device must be specified for iOS deployment")

        deadline = context.deadline.child(self.readiness_timeout)
        result = self.run_command(
            "xcrun", ["simctl", "boot", device], context, config.BOOT_TIMEOUT_S,
            "Boot iOS Simulator", deadline=deadline,
        )
        if not result.success and "current state: Booted" not in result.stderr:
            return self.command_failed(f'Booting iOS simulator "{device}"', result)

        waiter = ReadinessWaiter(
            lambda: self._probe(device, context, deadline),
            self.poll_interval,
            label=f'iOS simulator "{device}"',
            sleep=self.sleep,
        )
        readiness = waiter.wait(deadline)
        if not readiness.ready:
            return self.fail(readiness.error or f'iOS simulator "{device}" did not become ready')

        self.logger.info("iOS simulator %s booted and ready", device)
        return {"simulator_running": True}

    def _probe(self, device: str, context: RunContext, deadline: Deadline) -> BootState:
        listing = list_simulators(self.runner, timeout_s=deadline.bound(config.PROBE_TIMEOUT_S))
        if not listing.ok:
            return BootState.UNKNOWN
        match = find_device_by_name(listing.devices, device)
        if match is None:
            return BootState.UNKNOWN
        if match.boot_state is not BootState.BOOTED:
            return match.boot_state
        responsive = self.run_command(
            "xcrun", ["simctl", "spawn", device, "launchctl", "print", "system"],
            context, config.PROBE_TIMEOUT_S, "Verify iOS Simulator Responsiveness", deadline=deadline,
        )
        return BootState.BOOTED if responsive.success else BootState.BOOTING


class IOSInstallAppNode(_CommandNode):
    platform = Platform.IOS

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("ios_install_app", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        device = state.get("target_device")
        if not device:
            return self.fail("Target device must be specified for iOS deployment")
        if not state.get("project_path"):
            return self.fail("Project path must be specified for iOS deployment")
        if not state.get("project_name"):
            return self.fail("Project name must be specified for iOS deployment")

        app_path = manifest.ios_app_path(
            state["project_path"], state["project_name"], state.get("build_type") or config.DEFAULT_BUILD_TYPE
        )
        result = self.run_command(
            "xcrun", ["simctl", "install", device, app_path], context, config.INSTALL_TIMEOUT_S,
            "iOS App Installation", cwd=state["project_path"],
        )
        if not result.success:
            return self.command_failed(f'Installing iOS app to simulator "{device}"', result)

        self.logger.info("Installed %s on %s", app_path, device)
        return {"app_installed": True}


class IOSResolveLaunchTargetNode(_CommandNode):
    """Bundle id of the installed app, or ``<package_name>.<project_name>``."""

    platform = Platform.IOS

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("ios_resolve_launch_target", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        device = state.get("target_device")
        if not device:
            return self.fail("Target device must be specified for iOS deployment")
        project_name = state.get("project_name")
        package_name = state.get("package_name")
        if not project_name or not package_name:
            return self.fail("Package name and project name must be specified for iOS app launch")

        bundle_id = None
        result = self.run_command(
            "xcrun", ["simctl", "listapps", device, "--json"], context, config.PROBE_TIMEOUT_S,
            "List Installed iOS Apps",
        )
        if result.success:
            bundle_id = parse_installed_bundle_id(result.stdout, project_name)
        else:
            self.logger.debug("Could not list installed apps: %s", result.diagnosis())

        if not bundle_id:
            bundle_id = state.get("application_id") or f"{package_name}.{project_name}"
            self.logger.debug("Using fallback bundle id %s", bundle_id)
        return {"application_id": bundle_id}


class IOSLaunchAppNode(_CommandNode):
    platform = Platform.IOS

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("ios_launch_app", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        device = state.get("target_device")
        if not device:
            return self.fail("Target device must be specified for iOS deployment")
        bundle_id = state.get("application_id")
        if not bundle_id:
            return self.fail("Bundle identifier could not be resolved for iOS app launch")

        result = self.run_command(
            "xcrun", ["simctl", "launch", device, bundle_id], context, config.LAUNCH_TIMEOUT_S,
            "Launch iOS App",
        )
        if not result.success:
            return self.command_failed(f'Launching iOS app on simulator "{device}"', result)

        self.logger.info("Launched %s on %s", bundle_id, device)
        return {"deployment_status": DeploymentStatus.SUCCESS.value}


# ---------------------------------------------------------------------------
# Android
# ---------------------------------------------------------------------------


def resolve_min_sdk(state: Mapping[str, Any]) -> int:
    if state.get("android_min_sdk"):
        return int(state["android_min_sdk"])
    if state.get("project_path"):
        found = manifest.read_min_sdk(state["project_path"])
        if found is not None:
            return found
    return config.DEFAULT_MIN_SDK


class AndroidSelectEmulatorNode(_CommandNode):
    """Picks an emulator; clears ``android_emulator_name`` when none is compatible."""

    platform = Platform.ANDROID

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("android_select_emulator", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        min_sdk = resolve_min_sdk(state)
        listing = list_emulators(
            self.runner,
            timeout_s=context.deadline.bound(config.LIST_TIMEOUT_S),
            progress_callback=context.progress_callback,
        )
        if not listing.ok:
            return self.fail(listing.error or "Failed to list Android devices")

        preferred = state.get("android_emulator_name") or state.get("target_device")
        device = select_best_device(listing.devices, name=preferred, min_version=min_sdk)
        patch: StatePatch = {
            "device_list": [d.to_dict() for d in listing.devices],
            "android_min_sdk": min_sdk,
        }
        if device is None:
            self.logger.info("No compatible Android emulator (minSdk %d)", min_sdk)
            patch["android_emulator_name"] = ""
            return patch

        self.logger.info("Selected Android emulator %s (Android %s)", device.name, device.os_version)
        patch["android_emulator_name"] = device.name
        patch["target_device"] = device.name
        return patch


class AndroidCreateEmulatorNode(_CommandNode):
    platform = Platform.ANDROID

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("android_create_emulator", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        min_sdk = resolve_min_sdk(state)
        name = f"pixel-{min_sdk}"
        result = self.run_command(
            "sf",
            ["force", "lightning", "local", "device", "create", "-p", "android",
             "-n", name, "-d", "pixel", "-l", str(min_sdk)],
            context, config.CREATE_EMULATOR_TIMEOUT_S, "Create Android Emulator",
        )
        if not result.success and "already exists" not in (result.stderr + result.stdout):
            return self.command_failed(f'Creating Android emulator "{name}"', result)

        self.logger.info("Android emulator %s available (API %d)", name, min_sdk)
        return {"android_emulator_name": name, "target_device": name, "android_min_sdk": min_sdk}


class AndroidStartEmulatorNode(_CommandNode):
    platform = Platform.ANDROID

    def __init__(
        self,
        runner: CommandRunnerProtocol,
        logger: logging.Logger | None = None,
        poll_interval: float = config.ANDROID_POLL_INTERVAL_S,
        readiness_timeout: float = config.READINESS_TIMEOUT_S,
        sleep: Sleep | None = None,
    ):
        super().__init__("android_start_emulator", runner, logger)
        self.poll_interval = poll_interval
        self.readiness_timeout = readiness_timeout
        self.sleep = sleep or time.sleep

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        if state.get("emulator_started"):
            self.logger.debug("Emulator already started, skipping")
            return {}
        name = state.get("android_emulator_name")
        if not name:
            return self.fail("Android emulator must be selected before it can be started")

        deadline = context.deadline.child(self.readiness_timeout)
        result = self.run_command(
            "sf", ["force", "lightning", "local", "device", "start", "-p", "android", "-t", name],
            context, config.BOOT_TIMEOUT_S, "Start Android Emulator", deadline=deadline,
        )
        if not result.success:
            return self.command_failed(f'Starting Android emulator "{name}"', result)

        waited = self.run_command(
            "adb", ["wait-for-device"], context, self.readiness_timeout, "Wait For Android Device",
            deadline=deadline,
        )
        if not waited.success:
            self.logger.debug("adb wait-for-device did not complete: %s", waited.diagnosis())

        waiter = ReadinessWaiter(
            lambda: self._probe(context, deadline),
            self.poll_interval,
            label=f'Android emulator "{name}"',
            sleep=self.sleep,
        )
        readiness = waiter.wait(deadline)
        if not readiness.ready:
            return self.fail(readiness.error or f'Android emulator "{name}" did not finish booting')

        self.logger.info("Android emulator %s booted", name)
        return {"emulator_started": True}

    def _probe(self, context: RunContext, deadline: Deadline) -> BootState:
        result = self.run_command(
            "adb", ["shell", "getprop", "sys.boot_completed"], context, config.PROBE_TIMEOUT_S,
            "Check Android Boot", deadline=deadline,
        )
        if not result.success:
            return BootState.UNKNOWN
        return boot_completed_state(result.stdout)


class AndroidInstallAppNode(_CommandNode):
    platform = Platform.ANDROID

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("android_install_app", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        device = state.get("android_emulator_name") or state.get("target_device")
        if not device:
            return self.fail("Target device must be specified for Android deployment")
        project_path = state.get("project_path")
        if not project_path:
            return self.fail("Project path must be specified for Android deployment")

        apk = manifest.android_apk_path(project_path, state.get("build_type") or config.DEFAULT_BUILD_TYPE)
        result = self.run_command(
            "sf", ["force", "lightning", "local", "app", "install", "-p", "android", "-t", device, "-a", apk],
            context, config.INSTALL_TIMEOUT_S, "Android App Installation", cwd=project_path,
        )
        if not result.success:
            return self.command_failed(f'Installing Android app on emulator "{device}"', result)

        self.logger.info("Installed %s on %s", apk, device)
        return {"app_installed": True}


class AndroidResolveLaunchTargetNode(PlatformNode):
    """applicationId and launcher activity from the project, falling back to state."""

    platform = Platform.ANDROID

    def __init__(self, logger: logging.Logger | None = None):
        super().__init__("android_resolve_launch_target", logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        project_path = state.get("project_path")
        if not project_path:
            return self.fail("Project path must be specified for Android deployment")

        application_id = (
            manifest.read_application_id(project_path)
            or state.get("application_id")
            or state.get("package_name")
        )
        if not application_id:
            return self.fail(
                "Application ID must be specified for Android app launch. "
                "Please ensure build.gradle contains applicationId."
            )
        activity = manifest.read_launch_activity(project_path) or state.get("launch_activity")
        if not activity:
            return self.fail(
                "Launcher activity must be specified in AndroidManifest.xml with "
                "android.intent.category.LAUNCHER."
            )
        return {"application_id": application_id, "launch_activity": activity}


class AndroidLaunchAppNode(_CommandNode):
    platform = Platform.ANDROID

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("android_launch_app", runner, logger)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        device = state.get("android_emulator_name") or state.get("target_device")
        if not device:
            return self.fail("Target device must be specified for Android deployment")
        application_id = state.get("application_id")
        activity = state.get("launch_activity")
        if not application_id or not activity:
            return self.fail("Application ID and launcher activity must be resolved before launch")

        intent = f"{application_id}/{activity}"
        result = self.run_command(
            "sf", ["force", "lightning", "local", "app", "launch", "-p", "android", "-t", device, "-i", intent],
            context, config.LAUNCH_TIMEOUT_S, "Launch Android App",
        )
        if not result.success:
            return self.command_failed(f'Launching Android app "{application_id}"', result)

        self.logger.info("Launched %s on %s", intent, device)
        return {"deployment_status": DeploymentStatus.SUCCESS.value}
