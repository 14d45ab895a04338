"""Tool invocation: named tool, validated JSON in, validated model out.

A tool result that does not match its declared result model is a contract
violation between the workflow and the tool layer. It raises
``ToolOutputValidationError`` and aborts the run; it is never turned into a
fatal message.

Input built by a node that its tool would reject raises
``ToolInputValidationError`` the same way, before the tool is called.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from langchain_core.tools import BaseTool
from pydantic import BaseModel, ValidationError

from mobile_workflow.execution_limits import WorkflowError

logger = logging.getLogger(__name__)


class ToolOutputValidationError(WorkflowError):
    """Raised when a tool is missing or its output does not match the result model."""

    def __init__(self, tool_id: str, detail: str):
        self.tool_id = tool_id
        self.detail = detail
        super().__init__(f"Tool '{tool_id}' returned invalid output: {detail}")


class ToolInputValidationError(WorkflowError):
    """Raised when a node builds input its tool's input schema rejects."""

    def __init__(self, tool_id: str, detail: str):
        self.tool_id = tool_id
        self.detail = detail
        super().__init__(f"Tool '{tool_id}' rejected its input: {detail}")


@dataclass
class ToolInvocation:
    """One request to a named tool, created per node execution."""

    tool_id: str
    input_schema: type[BaseModel]
    output_schema: type[BaseModel]
    input: dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def validated_input(self) -> dict[str, Any]:
        """Check ``input`` against ``input_schema`` and return it JSON-ready."""
        try:
            return self.input_schema.model_validate(self.input).model_dump(mode="json")
        except ValidationError as exc:
            raise ToolInputValidationError(self.tool_id, str(exc)) from exc


class ToolExecutor(Protocol):
    def execute(self, invocation: ToolInvocation) -> BaseModel: ...


def validate_tool_output(invocation: ToolInvocation, raw: Any) -> BaseModel:
    """Coerce a raw tool return (model, dict, or JSON string) into the result model."""
    if isinstance(raw, invocation.output_schema):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ToolOutputValidationError(invocation.tool_id, f"not JSON: {exc}") from exc
    try:
        return invocation.output_schema.model_validate(raw)
    except ValidationError as exc:
        raise ToolOutputValidationError(invocation.tool_id, str(exc)) from exc


class LangChainToolExecutor:
    """Invokes LangChain tools by name and validates what they return."""

    def __init__(self, tools: Iterable[BaseTool] = ()):
        self._tools: dict[str, BaseTool] = {}
        for t in tools:
            self.register(t)

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    @property
    def tool_ids(self) -> list[str]:
        return sorted(self._tools)

    def execute(self, invocation: ToolInvocation) -> BaseModel:
        tool = self._tools.get(invocation.tool_id)
        if tool is None:
            raise ToolOutputValidationError(invocation.tool_id, "no such tool registered")

        payload = invocation.validated_input()
        logger.debug("Invoking tool %s", invocation.tool_id)
        raw = tool.invoke(payload)
        result = validate_tool_output(invocation, raw)
        logger.info("Tool %s returned %s", invocation.tool_id, type(result).__name__)
        return result
