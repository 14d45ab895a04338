"""Workflow graph: node/router registry compiled onto a LangGraph StateGraph.

A ``WorkflowGraph`` is declared with nodes, unconditional edges and routers,
then compiled:

1. Creates a StateGraph(WorkflowState)
2. Wraps every node so it runs against a read-only snapshot, consults its
   router (or static edge) and returns ``Command(update, goto)``
3. Adds a conditional edge from START that honors ``resume_node``
4. Maps the step budget onto LangGraph's recursion limit; the time budget
   becomes the default run deadline

Routers run inside the node wrapper, so fatal messages a router synthesizes
(e.g. "no orgs found") are merged into the same update as the node's patch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Mapping

from langchain_core.runnables import RunnableConfig
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph
from langgraph.types import Command

from mobile_workflow.commands import ProgressCallback
from mobile_workflow.execution_limits import Deadline, ExecutionBudget, StepLimitExceededError, WorkflowError
from mobile_workflow.nodes.base import BaseNode, RunContext
from mobile_workflow.nodes.routers import BaseRouter
from mobile_workflow.state import FatalErrorReset, WorkflowState, merge_state

logger = logging.getLogger(__name__)

StepObserver = Callable[[str, dict, dict, str], None]


class WorkflowValidationError(WorkflowError):
    """Raised by ``compile()`` for a graph that fails validation."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid workflow: " + "; ".join(self.errors))


@dataclass
class _RunTrace:
    last_node: str | None = None
    steps: int = 0


def _with_router_messages(patch: dict[str, Any], messages: tuple[str, ...]) -> dict[str, Any]:
    if not messages:
        return patch
    update = dict(patch)
    existing = update.get("fatal_error_messages")
    combined = [*(existing or []), *messages]
    update["fatal_error_messages"] = FatalErrorReset(combined) if isinstance(existing, FatalErrorReset) else combined
    return update


# ---------------------------------------------------------------------------
# Declaration
# ---------------------------------------------------------------------------


@dataclass
class WorkflowGraph:
    """Mutable workflow declaration; ``compile()`` freezes it into a runnable graph."""

    name: str
    failure_node: str | None = None
    nodes: dict[str, BaseNode] = field(default_factory=dict)
    edges: list[tuple[str, str]] = field(default_factory=list)
    routers: dict[str, BaseRouter] = field(default_factory=dict)
    entry_point: str | None = None
    _duplicates: list[str] = field(default_factory=list, repr=False)

    def add_node(self, node: BaseNode) -> "WorkflowGraph":
        if node.name in self.nodes:
            self._duplicates.append(node.name)
        self.nodes[node.name] = node
        return self

    def add_edge(self, source: str, target: str) -> "WorkflowGraph":
        self.edges.append((source, target))
        return self

    def add_router(self, source: str, router: BaseRouter) -> "WorkflowGraph":
        self.routers[source] = router
        return self

    def set_entry_point(self, node_id: str) -> "WorkflowGraph":
        self.entry_point = node_id
        return self

    def validate(self) -> list[str]:
        """Return a list of error messages (empty if valid)."""
        errors = []

        if not self.nodes:
            errors.append("Workflow must have at least one node")
            return errors

        for name in self._duplicates:
            errors.append(f"Duplicate node id: {name}")

        if not self.entry_point:
            errors.append("Workflow must have an entry point")
        elif self.entry_point not in self.nodes:
            errors.append(f"Entry point references unknown node: {self.entry_point}")

        if self.failure_node and self.failure_node not in self.nodes:
            errors.append(f"Failure node references unknown node: {self.failure_node}")

        valid_targets = set(self.nodes) | {END}
        sources_with_edges: set[str] = set()
        for source, target in self.edges:
            if source not in self.nodes:
                errors.append(f"Edge {source} -> {target} references unknown source: {source}")
            if target not in valid_targets:
                errors.append(f"Edge {source} -> {target} references unknown target: {target}")
            if source in sources_with_edges:
                errors.append(f"Node {source} has more than one unconditional edge")
            sources_with_edges.add(source)

        for source, router in self.routers.items():
            if source not in self.nodes:
                errors.append(f"Router {router.name} attached to unknown node: {source}")
            if source in sources_with_edges:
                errors.append(f"Node {source} has both an edge and a router")
            for target in router.destinations:
                if target not in valid_targets:
                    errors.append(f"Router {router.name} on {source} targets unknown node: {target}")

        return errors

    def compile(self, max_steps: int | None = None, budget: ExecutionBudget | None = None) -> "CompiledWorkflow":
        """Validate and compile. ``max_steps`` overrides the budget's step limit."""
        errors = self.validate()
        if errors:
            raise WorkflowValidationError(errors)
        budget = budget or ExecutionBudget.from_env()
        if max_steps is not None:
            budget = replace(budget, max_steps=max_steps)
        return CompiledWorkflow(self, budget)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class CompiledWorkflow:
    """A validated workflow bound to a compiled LangGraph graph."""

    def __init__(self, definition: WorkflowGraph, budget: ExecutionBudget | None = None):
        self.definition = definition
        self.name = definition.name
        self.budget = budget or ExecutionBudget.from_env()
        self.max_steps = self.budget.max_steps
        self._next = {source: target for source, target in definition.edges}

        graph = StateGraph(WorkflowState)
        for node_id, node in definition.nodes.items():
            graph.add_node(node_id, self._wrap(node_id, node))
        graph.add_conditional_edges(START, self._entry, list(definition.nodes))
        self.graph = graph.compile()

        logger.info(
            "Compiled workflow %s (%d nodes, %d edges, %d routers)",
            self.name, len(definition.nodes), len(definition.edges), len(definition.routers),
        )

    @property
    def node_ids(self) -> list[str]:
        return list(self.definition.nodes)

    def _entry(self, state: dict) -> str:
        resume = state.get("resume_node")
        if resume:
            logger.info("Resuming %s at %s", self.name, resume)
            return resume
        return self.definition.entry_point

    def _wrap(self, node_id: str, node: BaseNode):
        router = self.definition.routers.get(node_id)
        failure_node = self.definition.failure_node

        # langgraph only injects the run config when the annotation reads "RunnableConfig"
        def wrapped(state: dict, config: RunnableConfig) -> Command:
            configurable = (config or {}).get("configurable") or {}
            context = RunContext.from_config(config)
            trace: _RunTrace | None = configurable.get("run_trace")
            if trace is not None:
                trace.last_node = node_id
                trace.steps += 1

            clear_resume = {"resume_node": None} if state.get("resume_node") else {}

            if context.deadline.expired and node_id != failure_node:
                message = (
                    f"Workflow {self.name} exceeded its time budget of {context.deadline.seconds:g}s "
                    f"before running {node_id}"
                )
                logger.warning("%s", message)
                goto = failure_node or END
                update = {**clear_resume, "fatal_error_messages": [message]}
                self._observe(configurable, node_id, state, update, goto)
                return Command(update=update, goto=goto)

            logger.debug("Running node %s", node_id)
            patch = dict(node.execute(MappingProxyType(state), context) or {})

            if router is not None:
                decision = router.route(merge_state(state, patch))
                update = _with_router_messages(patch, decision.fatal_error_messages)
                goto = decision.goto
            else:
                update = patch
                goto = self._next.get(node_id, END)

            update = {**clear_resume, **update}
            logger.debug("Node %s -> %s", node_id, goto)
            self._observe(configurable, node_id, state, update, goto)
            return Command(update=update, goto=goto)

        wrapped.__name__ = node_id
        return wrapped

    @staticmethod
    def _observe(configurable: Mapping[str, Any], node_id: str, state: dict, update: dict, goto: str) -> None:
        on_step: StepObserver | None = configurable.get("on_step")
        if on_step is None:
            return
        try:
            on_step(node_id, dict(state), dict(update), goto)
        except Exception:
            logger.warning("Step observer failed after node %s", node_id, exc_info=True)

    def execute(
        self,
        state: Mapping[str, Any],
        *,
        resume_from: str | None = None,
        deadline: Deadline | None = None,
        on_step: StepObserver | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """Run to a terminal node and return the final state.

        Raises:
            StepLimitExceededError: the run took more than ``max_steps`` steps.
            ToolInputValidationError: a node built input its tool rejects.
            ToolOutputValidationError: a tool broke its output contract.
        """
        initial = dict(state)
        if resume_from is not None:
            if resume_from not in self.definition.nodes:
                raise WorkflowValidationError([f"Cannot resume at unknown node: {resume_from}"])
            initial["resume_node"] = resume_from

        trace = _RunTrace()
        run_config: RunnableConfig = {
            "recursion_limit": self.max_steps,
            "configurable": {
                "deadline": deadline or self.budget.deadline(),
                "progress_callback": progress_callback,
                "on_step": on_step,
                "run_trace": trace,
            },
        }
        try:
            result = self.graph.invoke(initial, run_config)
        except GraphRecursionError as exc:
            raise StepLimitExceededError(self.max_steps, trace.last_node) from exc

        logger.info("Workflow %s finished after %d step(s) at %s", self.name, trace.steps, trace.last_node)
        return dict(result)
