"""Tests for the iOS simulator and Android emulator deployment nodes."""

from __future__ import annotations

import json

from fakes import (
    IOS_17,
    PIXEL_CATALOG,
    WATCH_10,
    failed,
    ios_catalog,
    no_sleep,
    ok,
    sf_device_list_json,
    simctl_json,
)
from mobile_workflow.deployment.nodes import (
    AndroidCreateEmulatorNode,
    AndroidInstallAppNode,
    AndroidLaunchAppNode,
    AndroidResolveLaunchTargetNode,
    AndroidSelectEmulatorNode,
    AndroidStartEmulatorNode,
    IOSBootSimulatorNode,
    IOSInstallAppNode,
    IOSLaunchAppNode,
    IOSResolveLaunchTargetNode,
    IOSSelectSimulatorNode,
    resolve_min_sdk,
)
from mobile_workflow.execution_limits import Deadline
from mobile_workflow.nodes.base import RunContext
from mobile_workflow.nodes.routers import CheckEmulatorFoundRouter

IOS = {"platform": "iOS"}
ANDROID = {"platform": "Android"}


def _ctx(**kwargs) -> RunContext:
    return RunContext(**kwargs)


# ---------------------------------------------------------------------------
# Tests: platform gating
# ---------------------------------------------------------------------------


class TestPlatformGating:
    def test_ios_nodes_are_noops_on_android(self, runner):
        nodes = [
            IOSSelectSimulatorNode(runner),
            IOSBootSimulatorNode(runner, sleep=no_sleep),
            IOSInstallAppNode(runner),
            IOSResolveLaunchTargetNode(runner),
            IOSLaunchAppNode(runner),
        ]
        for node in nodes:
            assert node.execute(ANDROID, _ctx()) == {}
        assert runner.calls == []

    def test_android_nodes_are_noops_on_ios(self, runner):
        nodes = [
            AndroidSelectEmulatorNode(runner),
            AndroidCreateEmulatorNode(runner),
            AndroidStartEmulatorNode(runner, sleep=no_sleep),
            AndroidInstallAppNode(runner),
            AndroidResolveLaunchTargetNode(),
            AndroidLaunchAppNode(runner),
        ]
        for node in nodes:
            assert node.execute(IOS, _ctx()) == {}
        assert runner.calls == []


# ---------------------------------------------------------------------------
# Tests: iOS
# ---------------------------------------------------------------------------


class TestIOSSelectSimulator:
    def test_picks_newest_runtime(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok(ios_catalog()))
        patch = IOSSelectSimulatorNode(runner).execute(IOS, _ctx())
        assert patch["target_device"] == "iPhone 16"
        assert patch["simulator_running"] is False
        assert [d["name"] for d in patch["device_list"]] == ["iPhone 15", "iPhone 16"]

    def test_honours_preferred_device(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok(ios_catalog()))
        patch = IOSSelectSimulatorNode(runner).execute({**IOS, "target_device": "iPhone 15"}, _ctx())
        assert patch["target_device"] == "iPhone 15"

    def test_booted_device_marks_running(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok(ios_catalog("Booted")))
        patch = IOSSelectSimulatorNode(runner).execute(IOS, _ctx())
        assert patch["simulator_running"] is True

    def test_empty_catalog_is_fatal(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok(json.dumps({"devices": {}})))
        patch = IOSSelectSimulatorNode(runner).execute(IOS, _ctx())
        assert "No compatible iOS simulators found" in patch["fatal_error_messages"][0]

    def test_watch_only_catalog_is_fatal(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok(simctl_json({WATCH_10: [
            {"name": "Apple Watch Series 9 (45mm)", "udid": "W", "state": "Shutdown", "isAvailable": True},
        ]})))
        patch = IOSSelectSimulatorNode(runner).execute(IOS, _ctx())
        assert "target_device" not in patch
        assert "No compatible iOS simulators found" in patch["fatal_error_messages"][0]

    def test_mixed_catalog_picks_an_iphone(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok(simctl_json({
            WATCH_10: [{"name": "Apple Watch Series 9 (45mm)", "udid": "W", "state": "Booted", "isAvailable": True}],
            IOS_17: [{"name": "iPhone 15", "udid": "P", "state": "Shutdown", "isAvailable": True}],
        })))
        patch = IOSSelectSimulatorNode(runner).execute(IOS, _ctx())
        assert patch["target_device"] == "iPhone 15"
        assert patch["simulator_running"] is False
        assert [d["name"] for d in patch["device_list"]] == ["iPhone 15"]

    def test_listing_failure_is_fatal(self, runner):
        runner.on("xcrun", "simctl", "list", results=failed("xcrun: error"))
        patch = IOSSelectSimulatorNode(runner).execute(IOS, _ctx())
        assert "Xcode" in patch["fatal_error_messages"][0]


class TestIOSBootSimulator:
    def test_skips_when_running(self, runner):
        node = IOSBootSimulatorNode(runner, sleep=no_sleep)
        assert node.execute({**IOS, "target_device": "iPhone 16", "simulator_running": True}, _ctx()) == {}
        assert runner.calls == []

    def test_requires_target_device(self, runner):
        patch = IOSBootSimulatorNode(runner, sleep=no_sleep).execute(IOS, _ctx())
        assert "Target device must be specified" in patch["fatal_error_messages"][0]
        assert runner.calls == []

    def test_boots_and_waits_until_responsive(self, runner, clock):
        runner.on("xcrun", "simctl", "boot", results=ok())
        runner.on("xcrun", "simctl", "list", results=[ok(ios_catalog("Booting")), ok(ios_catalog("Booted"))])
        runner.on("xcrun", "simctl", "spawn", results=ok())
        node = IOSBootSimulatorNode(runner, poll_interval=2, sleep=clock.sleep)

        patch = node.execute({**IOS, "target_device": "iPhone 16"}, _ctx(deadline=Deadline(300, _clock=clock)))

        assert patch == {"simulator_running": True}
        assert clock.sleeps == [2]
        assert runner.commands("xcrun")[0] == "xcrun simctl boot iPhone 16"
        assert "xcrun simctl spawn iPhone 16 launchctl print system" in runner.commands()

    def test_already_booted_stderr_is_not_an_error(self, runner):
        runner.on("xcrun", "simctl", "boot", results=failed(
            "Unable to boot device in current state: Booted", exit_code=149
        ))
        runner.on("xcrun", "simctl", "list", results=ok(ios_catalog("Booted")))
        runner.on("xcrun", "simctl", "spawn", results=ok())
        patch = IOSBootSimulatorNode(runner, sleep=no_sleep).execute({**IOS, "target_device": "iPhone 16"}, _ctx())
        assert patch == {"simulator_running": True}

    def test_boot_failure_reports_exit_and_stderr(self, runner):
        runner.on("xcrun", "simctl", "boot", results=failed("Invalid device: iPhone 99", exit_code=148))
        patch = IOSBootSimulatorNode(runner, sleep=no_sleep).execute({**IOS, "target_device": "iPhone 99"}, _ctx())
        message = patch["fatal_error_messages"][0]
        assert "exit code 148" in message
        assert "Invalid device" in message

    def test_readiness_timeout(self, runner, clock):
        runner.on("xcrun", "simctl", "boot", results=ok())
        runner.on("xcrun", "simctl", "list", results=ok(ios_catalog("Booting")))
        node = IOSBootSimulatorNode(runner, poll_interval=2, readiness_timeout=6, sleep=clock.sleep)
        patch = node.execute({**IOS, "target_device": "iPhone 16"}, _ctx(deadline=Deadline(300, _clock=clock)))
        message = patch["fatal_error_messages"][0]
        assert "did not become ready within 6s" in message
        assert "booting" in message


class TestIOSInstallAndLaunch:
    def test_install_uses_simulator_app_bundle(self, runner, ios_project):
        runner.on("xcrun", "simctl", "install", results=ok())
        state = {**IOS, "target_device": "iPhone 16", "project_path": str(ios_project), "project_name": "MyApp"}
        patch = IOSInstallAppNode(runner).execute(state, _ctx())
        assert patch == {"app_installed": True}
        call = runner.calls[0]
        assert call.args[-1].endswith("build/Build/Products/Debug-iphonesimulator/MyApp.app")
        assert call.cwd == str(ios_project)

    def test_install_preconditions(self, runner):
        patch = IOSInstallAppNode(runner).execute({**IOS, "target_device": "iPhone 16"}, _ctx())
        assert "Project path" in patch["fatal_error_messages"][0]
        assert runner.calls == []

    def test_resolve_uses_installed_bundle(self, runner):
        runner.on("xcrun", "simctl", "listapps", results=ok(json.dumps(
            {"com.acme.MyApp": {"CFBundleName": "MyApp"}}
        )))
        state = {**IOS, "target_device": "iPhone 16", "project_name": "MyApp", "package_name": "com.other"}
        assert IOSResolveLaunchTargetNode(runner).execute(state, _ctx()) == {"application_id": "com.acme.MyApp"}

    def test_resolve_falls_back_to_package_and_name(self, runner):
        runner.on("xcrun", "simctl", "listapps", results=failed("not supported"))
        state = {**IOS, "target_device": "iPhone 16", "project_name": "MyApp", "package_name": "com.acme"}
        assert IOSResolveLaunchTargetNode(runner).execute(state, _ctx()) == {"application_id": "com.acme.MyApp"}

    def test_launch(self, runner):
        runner.on("xcrun", "simctl", "launch", results=ok())
        state = {**IOS, "target_device": "iPhone 16", "application_id": "com.acme.MyApp"}
        assert IOSLaunchAppNode(runner).execute(state, _ctx()) == {"deployment_status": "success"}
        assert runner.commands() == ["xcrun simctl launch iPhone 16 com.acme.MyApp"]

    def test_launch_failure(self, runner):
        runner.on("xcrun", "simctl", "launch", results=failed("FBSOpenApplicationServiceErrorDomain", exit_code=4))
        state = {**IOS, "target_device": "iPhone 16", "application_id": "com.acme.MyApp"}
        message = IOSLaunchAppNode(runner).execute(state, _ctx())["fatal_error_messages"][0]
        assert message.startswith('Launching iOS app on simulator "iPhone 16" failed')
        assert "exit code 4" in message


# ---------------------------------------------------------------------------
# Tests: Android
# ---------------------------------------------------------------------------


class TestAndroidSelectEmulator:
    def test_picks_newest_compatible(self, runner, android_project):
        runner.on("sf", "force", "lightning", "local", "device", "list", results=ok(PIXEL_CATALOG))
        state = {**ANDROID, "project_path": str(android_project)}
        patch = AndroidSelectEmulatorNode(runner).execute(state, _ctx())
        assert patch["android_emulator_name"] == "Pixel_6"
        assert patch["target_device"] == "Pixel_6"
        assert patch["android_min_sdk"] == 28

    def test_no_compatible_clears_name(self, runner):
        catalog = sf_device_list_json([{"id": "old", "osVersion": {"major": 24, "minor": 0, "patch": 0}}])
        runner.on("sf", "force", "lightning", "local", "device", "list", results=ok(catalog))
        patch = AndroidSelectEmulatorNode(runner).execute({**ANDROID, "android_min_sdk": 30}, _ctx())
        assert patch["android_emulator_name"] == ""
        assert "fatal_error_messages" not in patch

    def test_stale_requested_name_is_cleared(self, runner):
        catalog = sf_device_list_json([{"id": "old", "osVersion": {"major": 24, "minor": 0, "patch": 0}}])
        runner.on("sf", "force", "lightning", "local", "device", "list", results=ok(catalog))
        state = {**ANDROID, "android_min_sdk": 30, "android_emulator_name": "Pixel_Deleted"}
        patch = AndroidSelectEmulatorNode(runner).execute(state, _ctx())
        assert patch["android_emulator_name"] == ""
        assert CheckEmulatorFoundRouter("start", "create", "failure").execute({**state, **patch}) == "create"

    def test_listing_failure(self, runner):
        runner.on("sf", "force", results=failed("sf: not found", exit_code=127))
        patch = AndroidSelectEmulatorNode(runner).execute(ANDROID, _ctx())
        assert "Failed to list Android devices" in patch["fatal_error_messages"][0]

    def test_min_sdk_resolution(self, android_project, tmp_path):
        assert resolve_min_sdk({"android_min_sdk": 33}) == 33
        assert resolve_min_sdk({"project_path": str(android_project)}) == 28
        assert resolve_min_sdk({"project_path": str(tmp_path / "missing")}) == 28


class TestAndroidCreateAndStart:
    def test_create_names_emulator_after_api_level(self, runner):
        runner.on("sf", "force", "lightning", "local", "device", "create", results=ok())
        patch = AndroidCreateEmulatorNode(runner).execute({**ANDROID, "android_min_sdk": 34}, _ctx())
        assert patch == {"android_emulator_name": "pixel-34", "target_device": "pixel-34", "android_min_sdk": 34}
        assert runner.calls[0].args[-2:] == ["-l", "34"]

    def test_create_tolerates_existing(self, runner):
        runner.on("sf", "force", results=failed("Emulator pixel-34 already exists"))
        patch = AndroidCreateEmulatorNode(runner).execute({**ANDROID, "android_min_sdk": 34}, _ctx())
        assert patch["android_emulator_name"] == "pixel-34"

    def test_start_waits_for_boot_completed(self, runner, clock):
        runner.on("sf", "force", "lightning", "local", "device", "start", results=ok())
        runner.on("adb", "wait-for-device", results=ok())
        runner.on("adb", "shell", "getprop", "sys.boot_completed", results=[ok(""), ok("0"), ok("1\n")])
        node = AndroidStartEmulatorNode(runner, poll_interval=3, sleep=clock.sleep)
        state = {**ANDROID, "android_emulator_name": "Pixel_6"}
        patch = node.execute(state, _ctx(deadline=Deadline(600, _clock=clock)))
        assert patch == {"emulator_started": True}
        assert clock.sleeps == [3, 3]

    def test_start_requires_emulator(self, runner):
        patch = AndroidStartEmulatorNode(runner, sleep=no_sleep).execute(ANDROID, _ctx())
        assert "must be selected" in patch["fatal_error_messages"][0]

    def test_start_skips_when_started(self, runner):
        state = {**ANDROID, "android_emulator_name": "Pixel_6", "emulator_started": True}
        assert AndroidStartEmulatorNode(runner, sleep=no_sleep).execute(state, _ctx()) == {}

    def test_start_timeout_is_bounded_by_run_deadline(self, runner, clock):
        runner.on("sf", "force", "lightning", "local", "device", "start", results=ok())
        runner.on("adb", results=ok(""))
        node = AndroidStartEmulatorNode(runner, poll_interval=3, readiness_timeout=120, sleep=clock.sleep)
        patch = node.execute(
            {**ANDROID, "android_emulator_name": "Pixel_6"}, _ctx(deadline=Deadline(10, _clock=clock))
        )
        assert "did not become ready within 10s" in patch["fatal_error_messages"][0]
        assert runner.calls[0].timeout_ms == 10_000


class TestAndroidInstallResolveLaunch:
    def test_install(self, runner, android_project):
        runner.on("sf", "force", "lightning", "local", "app", "install", results=ok())
        state = {**ANDROID, "android_emulator_name": "Pixel_6", "project_path": str(android_project)}
        assert AndroidInstallAppNode(runner).execute(state, _ctx()) == {"app_installed": True}
        assert runner.calls[0].args[-1].endswith("app/build/outputs/apk/debug/app-debug.apk")

    def test_install_failure(self, runner, android_project):
        runner.on("sf", "force", results=failed("INSTALL_FAILED_OLDER_SDK", exit_code=1))
        state = {**ANDROID, "android_emulator_name": "Pixel_6", "project_path": str(android_project)}
        message = AndroidInstallAppNode(runner).execute(state, _ctx())["fatal_error_messages"][0]
        assert "INSTALL_FAILED_OLDER_SDK" in message

    def test_resolve_reads_project_files(self, android_project):
        patch = AndroidResolveLaunchTargetNode().execute(
            {**ANDROID, "project_path": str(android_project)}, _ctx()
        )
        assert patch == {"application_id": "com.acme.pixelapp", "launch_activity": ".MainActivity"}

    def test_resolve_without_manifest_is_fatal(self, tmp_path):
        patch = AndroidResolveLaunchTargetNode().execute(
            {**ANDROID, "project_path": str(tmp_path), "package_name": "com.acme"}, _ctx()
        )
        assert "LAUNCHER" in patch["fatal_error_messages"][0]

    def test_launch_intent(self, runner):
        runner.on("sf", "force", "lightning", "local", "app", "launch", results=ok())
        state = {
            **ANDROID,
            "android_emulator_name": "Pixel_6",
            "application_id": "com.acme.pixelapp",
            "launch_activity": ".MainActivity",
        }
        assert AndroidLaunchAppNode(runner).execute(state, _ctx()) == {"deployment_status": "success"}
        assert runner.calls[0].args[-2:] == ["-i", "com.acme.pixelapp/.MainActivity"]
