"""Workflow state schema, device records, and merge rules.

The state is a plain ``TypedDict`` so it serializes as-is. Every key is
optional; nodes return partial patches and the executor merges them:
later values overwrite, except ``fatal_error_messages`` which accumulates
through ``merge_fatal_errors``.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Annotated, Any, Mapping, TypedDict

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Platform(str, Enum):
    IOS = "iOS"
    ANDROID = "Android"


class BootState(str, Enum):
    UNKNOWN = "unknown"
    SHUTDOWN = "shutdown"
    BOOTING = "booting"
    BOOTED = "booted"

    @classmethod
    def parse(cls, raw: str | None) -> "BootState":
        """Map a tool-reported state ("Booted", "Shutting Down", ...) to a BootState."""
        text = (raw or "").strip().lower()
        if text == "booted":
            return cls.BOOTED
        if text in ("booting", "creating"):
            return cls.BOOTING
        if text in ("shutdown", "shutting down"):
            return cls.SHUTDOWN
        return cls.UNKNOWN


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Device
# ---------------------------------------------------------------------------

_VERSION_PART = re.compile(r"\d+")


def parse_os_version(text: str | None) -> tuple[int, ...]:
    """Parse "17.2", "13", "iOS 18.0"-style strings into a comparable tuple.

    Only the leading dotted-number run is used; trailing zero components are
    dropped so "13" and "13.0" compare equal. Unparseable input gives ().
    """
    if not text:
        return ()
    match = re.search(r"\d+(?:\.\d+)*", str(text))
    if not match:
        return ()
    parts = [int(p) for p in _VERSION_PART.findall(match.group(0))]
    while parts and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


@dataclass(frozen=True)
class Device:
    """One simulator or emulator candidate, in the order the catalog listed it."""

    name: str
    id: str = ""
    os_version: str = ""
    runtime_identifier: str = ""
    boot_state: BootState = BootState.UNKNOWN
    api_level: int | None = None

    @property
    def version_key(self) -> tuple[int, ...]:
        return parse_os_version(self.os_version)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["boot_state"] = self.boot_state.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Device":
        return cls(
            name=data.get("name", ""),
            id=data.get("id", ""),
            os_version=str(data.get("os_version", "") or ""),
            runtime_identifier=data.get("runtime_identifier", ""),
            boot_state=BootState(data.get("boot_state", BootState.UNKNOWN.value)),
            api_level=data.get("api_level"),
        )


# ---------------------------------------------------------------------------
# Fatal error accumulation
# ---------------------------------------------------------------------------


class FatalErrorReset(list):
    """A ``fatal_error_messages`` value that replaces instead of appending.

    Returning ``FatalErrorReset()`` is the only way for a node to clear the
    accumulated errors, e.g. before a fresh attempt.
    """


def merge_fatal_errors(current: list[str] | None, update: list[str] | None) -> list[str]:
    """LangGraph reducer for ``fatal_error_messages``: append-only."""
    if isinstance(update, FatalErrorReset):
        return list(update)
    return list(current or []) + list(update or [])


# ---------------------------------------------------------------------------
# State schema
# ---------------------------------------------------------------------------


class WorkflowState(TypedDict, total=False):
    # Project identity
    platform: str
    project_path: str
    project_name: str
    package_name: str
    organization: str
    login_host: str
    user_utterance: str

    # Environment and templates
    valid_environment: bool
    invalid_environment_messages: list[str]
    connected_app_client_id: str
    connected_app_callback_uri: str
    selected_template: str
    template_properties: dict

    # Salesforce org and connected app
    org_list: list[dict]
    selected_org_username: str
    connected_app_list: list[dict]
    selected_connected_app: str

    # Build
    build_type: str
    build_successful: bool | None
    build_attempt_count: int
    max_build_retries: int
    build_error_messages: list[str]
    build_output_file_path: str

    # Deployment
    target_device: str
    android_emulator_name: str
    android_min_sdk: int
    device_list: list[dict]
    simulator_running: bool
    emulator_started: bool
    app_installed: bool
    application_id: str
    launch_activity: str
    deployment_status: str

    # Requirements / PRD
    feature_id: str
    feature_directory: str
    feature_brief_path: str
    feature_brief_approved: bool
    feature_brief_modifications: list[dict]
    requirements_path: str
    requirements_approved: bool
    requirements_iteration_count: int
    gap_analysis_score: float
    identified_gaps: list[dict]
    user_wants_to_continue_despite_gaps: bool
    should_continue_iteration: bool
    prd_path: str
    prd_approved: bool
    prd_modifications: list[dict]
    prd_status: str

    # Run control
    fatal_error_messages: Annotated[list[str], merge_fatal_errors]
    user_input: dict
    resume_node: str | None
    workflow_complete: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def has_fatal_errors(state: Mapping[str, Any]) -> bool:
    return bool(state.get("fatal_error_messages"))


def merge_state(state: Mapping[str, Any], patch: Mapping[str, Any] | None) -> dict[str, Any]:
    """Apply a node patch to a state snapshot and return the new state.

    Same rule the graph runtime applies through the schema's reducers.
    """
    merged = dict(state)
    for key, value in (patch or {}).items():
        if key == "fatal_error_messages":
            merged[key] = merge_fatal_errors(merged.get(key), value)
        else:
            merged[key] = value
    return merged


def _to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Device):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def state_to_dict(state: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a state into JSON-safe builtins (enums to values, devices to dicts)."""
    return {key: _to_plain(value) for key, value in state.items()}


def state_from_dict(data: Mapping[str, Any]) -> WorkflowState:
    """Rebuild a state from ``state_to_dict`` output, validating device records."""
    state: dict[str, Any] = dict(data)
    if "device_list" in state:
        state["device_list"] = [Device.from_dict(d).to_dict() for d in state["device_list"] or []]
    if "platform" in state and state["platform"] is not None:
        state["platform"] = Platform(state["platform"]).value
    if "fatal_error_messages" in state:
        state["fatal_error_messages"] = list(state["fatal_error_messages"] or [])
    return state  # type: ignore[return-value]
