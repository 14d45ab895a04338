"""Conditional routing between workflow nodes.

Every router follows the same policy: if ``fatal_error_messages`` is
non-empty, go to the failure node, whatever else the state says. Otherwise
a domain predicate picks the destination. Routers that detect a missing
resource also contribute a fatal message; the executor merges it into the
state together with the node's own patch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from mobile_workflow import config
from mobile_workflow.state import Platform, has_fatal_errors

logger = logging.getLogger(__name__)

NO_ORGS_MESSAGE = (
    "No connected Salesforce orgs found. Please authenticate with a Salesforce org "
    "using `sf org login` and try again."
)
NO_CONNECTED_APPS_MESSAGE = (
    "No Connected Apps found in the selected Salesforce org. Please create a Connected App "
    "in your org and try again."
)


@dataclass(frozen=True)
class RouteDecision:
    goto: str
    fatal_error_messages: tuple[str, ...] = ()


class BaseRouter:
    """Maps a state to the id of the next node."""

    def __init__(self, name: str, failure_node: str):
        self.name = name
        self.failure_node = failure_node

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.failure_node,)

    def route(self, state: Mapping[str, Any]) -> RouteDecision:
        if has_fatal_errors(state):
            logger.debug("%s: fatal errors present, routing to %s", self.name, self.failure_node)
            return RouteDecision(self.failure_node)
        return self.decide(state)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        raise NotImplementedError

    def execute(self, state: Mapping[str, Any]) -> str:
        return self.route(state).goto

    def fail(self, message: str) -> RouteDecision:
        logger.warning("%s: %s", self.name, message)
        return RouteDecision(self.failure_node, (message,))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(self.destinations)})"


class CheckFatalErrorsRouter(BaseRouter):
    """Continue to ``success_node`` unless a fatal error has been recorded."""

    def __init__(self, success_node: str, failure_node: str, name: str = "check_fatal_errors"):
        super().__init__(name, failure_node)
        self.success_node = success_node

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.success_node, self.failure_node)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        return RouteDecision(self.success_node)


class InitializationValidatedRouter(CheckFatalErrorsRouter):
    def __init__(self, success_node: str, failure_node: str):
        super().__init__(success_node, failure_node, name="initialization_validated")


class CheckEnvironmentValidatedRouter(CheckFatalErrorsRouter):
    def __init__(self, success_node: str, failure_node: str):
        super().__init__(success_node, failure_node, name="environment_validated")

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get("valid_environment"):
            return RouteDecision(self.success_node)
        problems = state.get("invalid_environment_messages") or ["Environment validation failed."]
        return self.fail("Invalid environment: " + " ".join(problems))


class CheckPropertiesFulfilledRouter(BaseRouter):
    """All required properties present -> ``fulfilled_node``, else ask the user."""

    def __init__(self, fulfilled_node: str, get_input_node: str, failure_node: str, required: Sequence[str]):
        super().__init__("properties_fulfilled", failure_node)
        self.fulfilled_node = fulfilled_node
        self.get_input_node = get_input_node
        self.required = tuple(required)

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.fulfilled_node, self.get_input_node, self.failure_node)

    def missing(self, state: Mapping[str, Any]) -> list[str]:
        return [p for p in self.required if not state.get(p)]

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        missing = self.missing(state)
        if missing:
            logger.debug("Unfulfilled properties: %s", missing)
            return RouteDecision(self.get_input_node)
        return RouteDecision(self.fulfilled_node)


class _ResourcePresenceRouter(BaseRouter):
    field: str
    missing_message: str

    def __init__(self, name: str, found_node: str, failure_node: str):
        super().__init__(name, failure_node)
        self.found_node = found_node

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.found_node, self.failure_node)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get(self.field):
            return RouteDecision(self.found_node)
        return self.fail(self.missing_message)


class CheckOrgListRouter(_ResourcePresenceRouter):
    field = "org_list"
    missing_message = NO_ORGS_MESSAGE

    def __init__(self, found_node: str, failure_node: str):
        super().__init__("check_org_list", found_node, failure_node)


class CheckConnectedAppListRouter(_ResourcePresenceRouter):
    field = "connected_app_list"
    missing_message = NO_CONNECTED_APPS_MESSAGE

    def __init__(self, found_node: str, failure_node: str):
        super().__init__("check_connected_app_list", found_node, failure_node)


class CheckConnectedAppRetrievedRouter(CheckFatalErrorsRouter):
    def __init__(self, success_node: str, failure_node: str):
        super().__init__(success_node, failure_node, name="check_connected_app_retrieved")

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get("connected_app_client_id") and state.get("connected_app_callback_uri"):
            return RouteDecision(self.success_node)
        return self.fail(
            "Connected App metadata is missing a consumer key or callback URL. "
            "Please check the Connected App's OAuth settings and try again."
        )


class CheckBuildSuccessfulRouter(BaseRouter):
    """Successful build -> deploy; failed build -> recovery while attempts remain."""

    def __init__(
        self,
        deploy_node: str,
        recovery_node: str,
        failure_node: str,
        max_retries: int = config.MAX_BUILD_RETRIES,
    ):
        super().__init__("check_build_successful", failure_node)
        self.deploy_node = deploy_node
        self.recovery_node = recovery_node
        self.max_retries = max_retries

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.deploy_node, self.recovery_node, self.failure_node)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get("build_successful"):
            return RouteDecision(self.deploy_node)
        attempts = state.get("build_attempt_count", 0)
        max_retries = state.get("max_build_retries") or self.max_retries
        if attempts < max_retries:
            logger.info("Build attempt %d/%d failed, trying recovery", attempts, max_retries)
            return RouteDecision(self.recovery_node)
        errors = state.get("build_error_messages") or []
        detail = f": {errors[-1]}" if errors else ""
        return self.fail(f"Build failed after {attempts} attempt(s){detail}")


class CheckEmulatorFoundRouter(BaseRouter):
    """Android with no usable emulator -> create one; everything else proceeds."""

    def __init__(self, found_node: str, create_node: str, failure_node: str):
        super().__init__("check_emulator_found", failure_node)
        self.found_node = found_node
        self.create_node = create_node

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.found_node, self.create_node, self.failure_node)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get("platform") == Platform.ANDROID.value and not state.get("android_emulator_name"):
            return RouteDecision(self.create_node)
        return RouteDecision(self.found_node)


class CheckAppInstalledRouter(BaseRouter):
    def __init__(self, launch_node: str, failure_node: str):
        super().__init__("check_app_installed", failure_node)
        self.launch_node = launch_node

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.launch_node, self.failure_node)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get("app_installed"):
            return RouteDecision(self.launch_node)
        return self.fail("App installation did not complete; nothing to launch.")


class IterationContinuationRouter(BaseRouter):
    """Follows ``should_continue_iteration`` as computed by the iteration control node."""

    def __init__(self, continue_node: str, stop_node: str, failure_node: str):
        super().__init__("iteration_continuation", failure_node)
        self.continue_node = continue_node
        self.stop_node = stop_node

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.continue_node, self.stop_node, self.failure_node)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get("should_continue_iteration"):
            return RouteDecision(self.continue_node)
        return RouteDecision(self.stop_node)


class ApprovalRouter(BaseRouter):
    """Approved review -> ``approved_node``; otherwise back to ``revise_node``."""

    def __init__(self, field: str, approved_node: str, revise_node: str, failure_node: str):
        super().__init__(f"{field}_router", failure_node)
        self.field = field
        self.approved_node = approved_node
        self.revise_node = revise_node

    @property
    def destinations(self) -> tuple[str, ...]:
        return (self.approved_node, self.revise_node, self.failure_node)

    def decide(self, state: Mapping[str, Any]) -> RouteDecision:
        if state.get(self.field):
            return RouteDecision(self.approved_node)
        return RouteDecision(self.revise_node)
