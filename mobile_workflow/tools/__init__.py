"""Tool layer: invocation contract, result schemas, and built-in tools."""

from mobile_workflow.tools.executor import (
    LangChainToolExecutor,
    ToolExecutor,
    ToolInputValidationError,
    ToolInvocation,
    ToolOutputValidationError,
)

__all__ = [
    "LangChainToolExecutor",
    "ToolExecutor",
    "ToolInputValidationError",
    "ToolInvocation",
    "ToolOutputValidationError",
]
