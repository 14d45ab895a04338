"""Node interface shared by every workflow step.

A node receives a read-only snapshot of the state plus a ``RunContext`` and
returns a patch. Expected failures become ``fatal_error_messages`` entries;
nodes do not raise for them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from langchain_core.runnables import RunnableConfig
from pydantic import BaseModel, ValidationError

from mobile_workflow.commands import CommandResult, CommandRunnerProtocol, ProgressCallback, seconds_to_ms
from mobile_workflow.execution_limits import Deadline
from mobile_workflow.state import Platform
from mobile_workflow.tools.executor import ToolExecutor, ToolInvocation, ToolOutputValidationError

logger = logging.getLogger(__name__)

StatePatch = dict[str, Any]


@dataclass
class RunContext:
    """Run-scoped collaborators passed through ``RunnableConfig["configurable"]``."""

    deadline: Deadline = field(default_factory=Deadline.unbounded)
    progress_callback: ProgressCallback | None = None

    @classmethod
    def from_config(cls, config: RunnableConfig | None) -> "RunContext":
        configurable = (config or {}).get("configurable") or {}
        return cls(
            deadline=configurable.get("deadline") or Deadline.unbounded(),
            progress_callback=configurable.get("progress_callback"),
        )


def fatal(message: str) -> StatePatch:
    return {"fatal_error_messages": [message]}


class BaseNode:
    """A named workflow step."""

    def __init__(self, name: str, logger: logging.Logger | None = None):
        self.name = name
        self.logger = logger or logging.getLogger(f"mobile_workflow.nodes.{type(self).__name__}")

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        raise NotImplementedError

    def fail(self, message: str) -> StatePatch:
        self.logger.warning("%s: %s", self.name, message)
        return fatal(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class PlatformNode(BaseNode):
    """A node that only acts for one platform and is a no-op otherwise."""

    platform: Platform

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        if state.get("platform") != self.platform.value:
            self.logger.debug("Skipping %s for platform %s", self.name, state.get("platform"))
            return {}
        return self.run(state, context)

    def run(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        raise NotImplementedError


class CommandNode(BaseNode):
    """A node that runs external commands through a ``CommandRunner``."""

    def __init__(self, name: str, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__(name, logger)
        self.runner = runner

    def run_command(
        self,
        program: str,
        args: list[str],
        context: RunContext,
        timeout_s: float,
        label: str,
        cwd: str | None = None,
        deadline: Deadline | None = None,
    ) -> CommandResult:
        bounded = (deadline or context.deadline).bound(timeout_s)
        return self.runner.execute(
            program,
            args,
            timeout_ms=seconds_to_ms(bounded),
            progress_callback=context.progress_callback,
            label=label,
            cwd=cwd,
        )

    def command_failed(self, what: str, result: CommandResult) -> StatePatch:
        self.logger.error("%s failed: %s", what, result.diagnosis())
        self.logger.debug("stdout: %s", result.stdout[-2000:])
        return self.fail(f"{what} failed ({result.diagnosis()})")


class ToolNode(BaseNode):
    """A node backed by one tool call.

    If ``user_input`` already carries every required field of the result
    model, the tool is not called: the override is validated, applied the
    same way as a tool result, and consumed.
    """

    tool_id: str
    input_schema: type[BaseModel]
    output_schema: type[BaseModel]
    description: str = ""

    def __init__(self, name: str, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__(name, logger)
        self.tools = tool_executor

    # Subclasses implement these
    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def apply_result(self, result: Any, state: Mapping[str, Any]) -> StatePatch:
        raise NotImplementedError

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        return None

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        problem = self.check_preconditions(state)
        if problem:
            return self.fail(problem)

        override = self.resume_result(state)
        if override is not None:
            self.logger.info("%s: using supplied user_input instead of calling %s", self.name, self.tool_id)
            patch = self.apply_result(override, state)
            patch["user_input"] = {}
            return patch

        invocation = ToolInvocation(
            tool_id=self.tool_id,
            input_schema=self.input_schema,
            output_schema=self.output_schema,
            input=self.build_input(state),
            description=self.description,
        )
        return self.apply_result(self.tools.execute(invocation), state)

    def resume_result(self, state: Mapping[str, Any]) -> BaseModel | None:
        user_input = state.get("user_input") or {}
        required = [n for n, f in self.output_schema.model_fields.items() if f.is_required()]
        if not required or not all(key in user_input for key in required):
            return None
        try:
            return self.output_schema.model_validate(user_input)
        except ValidationError as exc:
            raise ToolOutputValidationError(self.tool_id, f"user_input override rejected: {exc}") from exc
