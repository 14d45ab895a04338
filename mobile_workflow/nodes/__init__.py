"""Workflow nodes and routers."""

from mobile_workflow.nodes.base import BaseNode, CommandNode, PlatformNode, RunContext, ToolNode
from mobile_workflow.nodes.routers import BaseRouter, RouteDecision

__all__ = ["BaseNode", "BaseRouter", "CommandNode", "PlatformNode", "RouteDecision", "RunContext", "ToolNode"]
