"""Build validation and recovery.

The build node calls the build executor tool and records the outcome. A
failed build is not a fatal error by itself: ``CheckBuildSuccessfulRouter``
decides between recovery and giving up based on ``build_attempt_count``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from mobile_workflow import config
from mobile_workflow.nodes.base import StatePatch, ToolNode
from mobile_workflow.tools.executor import ToolExecutor
from mobile_workflow.tools.schemas import (
    BUILD_EXECUTOR_TOOL,
    BUILD_RECOVERY_TOOL,
    BuildExecutorInput,
    BuildExecutorResult,
    BuildRecoveryInput,
    BuildRecoveryResult,
)


class BuildValidationNode(ToolNode):
    tool_id = BUILD_EXECUTOR_TOOL
    input_schema = BuildExecutorInput
    output_schema = BuildExecutorResult
    description = "Build the generated project for the selected platform"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("build_validation", tool_executor, logger)

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        if not state.get("platform"):
            return "Platform must be specified before building"
        if not state.get("project_path"):
            return "Project path must be specified before building"
        return None

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "platform": state["platform"],
            "project_path": state["project_path"],
            "project_name": state.get("project_name") or "",
            "build_type": state.get("build_type") or config.DEFAULT_BUILD_TYPE,
        }

    def apply_result(self, result: BuildExecutorResult, state: Mapping[str, Any]) -> StatePatch:
        attempt = state.get("build_attempt_count", 0) + 1
        patch: StatePatch = {
            "build_successful": result.success,
            "build_attempt_count": attempt,
            "build_output_file_path": result.build_output_file_path,
        }
        if result.success:
            self.logger.info("Build attempt %d succeeded", attempt)
        else:
            error = result.error or result.message or "Build failed"
            self.logger.warning("Build attempt %d failed: %s", attempt, error)
            patch["build_error_messages"] = [*(state.get("build_error_messages") or []), error]
        return patch


class BuildRecoveryNode(ToolNode):
    """Asks the recovery tool to fix the project, then resets for another build."""

    tool_id = BUILD_RECOVERY_TOOL
    input_schema = BuildRecoveryInput
    output_schema = BuildRecoveryResult
    description = "Diagnose a failed build and apply fixes"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("build_recovery", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "platform": state.get("platform") or "",
            "project_path": state.get("project_path") or "",
            "build_error_messages": list(state.get("build_error_messages") or []),
            "build_output_file_path": state.get("build_output_file_path"),
            "attempt": state.get("build_attempt_count", 0),
        }

    def apply_result(self, result: BuildRecoveryResult, state: Mapping[str, Any]) -> StatePatch:
        if not result.ready_for_retry:
            errors = state.get("build_error_messages") or []
            detail = f" Last error: {errors[-1]}" if errors else ""
            return self.fail(f"Build recovery could not fix the project.{detail}")

        for fix in result.fixes_applied:
            self.logger.info("Applied fix: %s", fix)
        return {"build_error_messages": [], "build_successful": None}
