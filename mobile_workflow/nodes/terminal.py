"""Terminal nodes: every run ends in exactly one of these."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from mobile_workflow.nodes.base import BaseNode, RunContext, StatePatch
from mobile_workflow.state import DeploymentStatus


class CompletionNode(BaseNode):
    def __init__(self, name: str = "completion", logger: logging.Logger | None = None):
        super().__init__(name, logger)

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        self.logger.info(
            "Workflow complete: platform=%s project=%s device=%s status=%s",
            state.get("platform"),
            state.get("project_name") or state.get("project_path"),
            state.get("target_device"),
            state.get("deployment_status"),
        )
        return {"workflow_complete": True}


class FailureNode(BaseNode):
    """Records the failure; the messages themselves are already in the state."""

    def __init__(self, name: str = "failure", logger: logging.Logger | None = None):
        super().__init__(name, logger)

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        messages = state.get("fatal_error_messages") or []
        self.logger.error("Workflow failed with %d error(s)", len(messages))
        for message in messages:
            self.logger.error("  - %s", message)
        return {"deployment_status": DeploymentStatus.FAILED.value, "workflow_complete": True}
