"""Tests for device selection and the simulator/emulator catalogs."""

from __future__ import annotations

import json

from hypothesis import given
from hypothesis import strategies as st

from fakes import (
    IOS_17,
    IOS_18,
    PIXEL_CATALOG,
    TVOS_17,
    WATCH_10,
    failed,
    ios_catalog,
    ok,
    sf_device_list_json,
    simctl_json,
)
from mobile_workflow.deployment.devices import (
    compatible_devices,
    find_device_by_name,
    has_compatible_emulator,
    select_best_device,
)
from mobile_workflow.deployment.emulators import boot_completed_state, list_emulators, parse_sf_device_list
from mobile_workflow.deployment.simulators import (
    ios_version_from_runtime,
    list_simulators,
    parse_installed_bundle_id,
    parse_simctl_devices,
)
from mobile_workflow.state import BootState, Device, parse_os_version


def _dev(name: str, version: str, api_level: int | None = None) -> Device:
    return Device(name=name, id=name, os_version=version, api_level=api_level)


# ---------------------------------------------------------------------------
# Tests: select_best_device
# ---------------------------------------------------------------------------


class TestSelectBestDevice:
    def test_unique_greatest_version_wins(self):
        devices = [_dev("Pixel_4", "11.0"), _dev("Pixel_6", "13.0"), _dev("Pixel_5", "12.0")]
        assert select_best_device(devices).name == "Pixel_6"

    def test_tie_goes_to_first_in_catalog_order(self):
        devices = [_dev("iPhone 15", "17.0"), _dev("iPhone 16", "18.0"), _dev("iPhone 16 Pro", "18.0")]
        first = select_best_device(devices)
        assert first.name == "iPhone 16"
        assert select_best_device(devices) is first

    def test_equal_versions_written_differently_tie(self):
        devices = [_dev("A", "13"), _dev("B", "13.0")]
        assert select_best_device(devices).name == "A"

    def test_numeric_not_lexical_ordering(self):
        devices = [_dev("old", "9.3"), _dev("new", "10.0")]
        assert select_best_device(devices).name == "new"

    def test_name_match_short_circuits(self):
        devices = [_dev("iPhone 15", "17.0"), _dev("iPhone 16", "18.0")]
        assert select_best_device(devices, name="iphone 15").name == "iPhone 15"

    def test_unknown_name_falls_back_to_ranking(self):
        devices = [_dev("iPhone 15", "17.0"), _dev("iPhone 16", "18.0")]
        assert select_best_device(devices, name="iPad").name == "iPhone 16"

    def test_min_version_filters(self):
        devices = [_dev("old", "16.4"), _dev("new", "17.0")]
        assert select_best_device(devices, min_version="17").name == "new"
        assert select_best_device(devices, min_version="18") is None

    def test_min_api_level(self):
        devices = [_dev("api30", "11.0", 30), _dev("api26", "8.0", 26)]
        assert compatible_devices(devices, 28) == [devices[0]]

    def test_unknown_api_level_counts_as_compatible(self):
        devices = [_dev("Pixel_6", "13.0")]
        assert has_compatible_emulator(devices, 28)
        assert select_best_device(devices, min_version=28).name == "Pixel_6"

    def test_empty_catalog(self):
        assert select_best_device([]) is None
        assert not has_compatible_emulator([])

    def test_find_device_by_name(self):
        devices = [_dev("Pixel_6", "13.0")]
        assert find_device_by_name(devices, " pixel_6 ") is devices[0]
        assert find_device_by_name(devices, "Pixel_7") is None

    @given(st.lists(st.tuples(st.integers(0, 30), st.integers(0, 9)), min_size=1, max_size=12))
    def test_selects_maximum_and_earliest(self, versions):
        devices = [_dev(f"d{i}", f"{major}.{minor}") for i, (major, minor) in enumerate(versions)]
        best = select_best_device(devices)
        top = max(d.version_key for d in devices)
        assert best.version_key == top
        assert best is next(d for d in devices if d.version_key == top)

    @given(st.lists(st.integers(0, 30), max_size=10), st.integers(0, 30))
    def test_has_compatible_matches_selection(self, majors, minimum):
        devices = [_dev(f"d{i}", str(m)) for i, m in enumerate(majors)]
        assert has_compatible_emulator(devices, str(minimum)) == (
            select_best_device(devices, min_version=str(minimum)) is not None
        )
        for device in compatible_devices(devices, str(minimum)):
            assert device.version_key >= parse_os_version(str(minimum))


# ---------------------------------------------------------------------------
# Tests: iOS catalog
# ---------------------------------------------------------------------------


class TestSimulatorCatalog:
    def test_runtime_version(self):
        assert ios_version_from_runtime(IOS_18) == "18.0"
        assert ios_version_from_runtime("com.apple.CoreSimulator.SimRuntime.watchOS-10-0") == ""

    def test_flattens_runtimes_in_order(self):
        devices = parse_simctl_devices(ios_catalog("Booted"))
        assert [d.name for d in devices] == ["iPhone 15", "iPhone 16"]
        assert devices[1].os_version == "18.0"
        assert devices[1].boot_state is BootState.BOOTED
        assert devices[1].runtime_identifier == IOS_18

    def test_skips_unavailable(self):
        text = simctl_json({IOS_17: [
            {"name": "Gone", "udid": "X", "state": "Shutdown", "isAvailable": False},
            {"name": "Here", "udid": "Y", "state": "Shutdown", "isAvailable": True},
        ]})
        assert [d.name for d in parse_simctl_devices(text)] == ["Here"]

    def test_drops_other_apple_platforms(self):
        text = simctl_json({
            WATCH_10: [{"name": "Apple Watch Series 9 (45mm)", "udid": "W", "state": "Booted", "isAvailable": True}],
            IOS_17: [{"name": "iPhone 15", "udid": "P", "state": "Shutdown", "isAvailable": True}],
            TVOS_17: [{"name": "Apple TV 4K", "udid": "T", "state": "Shutdown", "isAvailable": True}],
        })
        devices = parse_simctl_devices(text)
        assert [d.name for d in devices] == ["iPhone 15"]
        assert devices[0].os_version == "17.5"

    def test_list_simulators_success(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok(ios_catalog()))
        listing = list_simulators(runner, timeout_s=5)
        assert listing.ok
        assert len(listing.devices) == 2
        assert runner.calls[0].args == ["simctl", "list", "devices", "available", "--json"]
        assert runner.calls[0].timeout_ms == 5000

    def test_list_simulators_command_failure(self, runner):
        runner.on("xcrun", "simctl", "list", results=failed("xcrun: error: unable to find utility"))
        listing = list_simulators(runner)
        assert not listing.ok
        assert "unable to find utility" in listing.error

    def test_list_simulators_bad_json(self, runner):
        runner.on("xcrun", "simctl", "list", results=ok("not json"))
        listing = list_simulators(runner)
        assert not listing.ok
        assert "parse" in listing.error

    def test_installed_bundle_id(self):
        stdout = json.dumps({"com.acme.MyApp": {"CFBundleName": "MyApp"}})
        assert parse_installed_bundle_id(stdout, "myapp") == "com.acme.MyApp"
        assert parse_installed_bundle_id(stdout, "Other") is None
        assert parse_installed_bundle_id("garbage", "MyApp") is None


# ---------------------------------------------------------------------------
# Tests: Android catalog
# ---------------------------------------------------------------------------


class TestEmulatorCatalog:
    def test_string_versions(self):
        devices = parse_sf_device_list(PIXEL_CATALOG)
        assert [d.name for d in devices] == ["Pixel_4", "Pixel_6"]
        assert devices[1].os_version == "13.0"
        assert devices[1].api_level is None

    def test_structured_version_carries_api_level(self):
        text = sf_device_list_json([{"id": "api34", "osVersion": {"major": 34, "minor": 0, "patch": 0}}])
        device = parse_sf_device_list(text)[0]
        assert device.os_version == "34.0.0"
        assert device.api_level == 34

    def test_missing_output_content(self):
        assert parse_sf_device_list(json.dumps({"status": 0})) == []

    def test_list_emulators_failure(self, runner):
        runner.on("sf", "force", results=failed("sf: command not found", exit_code=127))
        listing = list_emulators(runner)
        assert not listing.ok
        assert "command not found" in listing.error

    def test_boot_completed(self):
        assert boot_completed_state("1\n") is BootState.BOOTED
        assert boot_completed_state("") is BootState.BOOTING
        assert boot_completed_state("0") is BootState.BOOTING
