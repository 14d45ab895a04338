"""Workflow definitions.

- ``build_mobile_native_workflow``: environment -> project properties ->
  template -> project generation -> build (with recovery) -> deployment
- ``build_deployment_workflow``: the deployment chain on its own, for an
  already built project
- ``build_connected_app_workflow``: org and Connected App selection
- ``build_prd_workflow``: feature brief -> requirements iteration -> PRD

Each factory returns a compiled workflow whose terminal nodes are
``completion`` (or ``prd_finalization``) and ``failure``.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping

from mobile_workflow import config
from mobile_workflow.commands import CommandRunner, CommandRunnerProtocol
from mobile_workflow.deployment.nodes import (
    AndroidCreateEmulatorNode,
    AndroidInstallAppNode,
    AndroidLaunchAppNode,
    AndroidResolveLaunchTargetNode,
    AndroidSelectEmulatorNode,
    AndroidStartEmulatorNode,
    IOSBootSimulatorNode,
    IOSInstallAppNode,
    IOSLaunchAppNode,
    IOSResolveLaunchTargetNode,
    IOSSelectSimulatorNode,
)
from mobile_workflow.execution_limits import ExecutionBudget
from mobile_workflow.graph import CompiledWorkflow, WorkflowGraph
from mobile_workflow.nodes.build import BuildRecoveryNode, BuildValidationNode
from mobile_workflow.nodes.plan import (
    REQUIRED_PROPERTIES,
    EnvironmentValidationNode,
    FetchConnectedAppListNode,
    FetchOrgsNode,
    GetUserInputNode,
    ProjectGenerationNode,
    RetrieveConnectedAppMetadataNode,
    SelectConnectedAppNode,
    SelectOrgNode,
    TemplateDiscoveryNode,
    UserInputExtractionNode,
)
from mobile_workflow.nodes.requirements import (
    FeatureBriefGenerationNode,
    FeatureBriefReviewNode,
    FeatureBriefUpdateNode,
    GapAnalysisNode,
    GapRequirementsGenerationNode,
    InitialRequirementsGenerationNode,
    MagiInitializationNode,
    PRDFinalizationNode,
    PRDGenerationNode,
    PRDReviewNode,
    RequirementsIterationControlNode,
    RequirementsReviewNode,
)
from mobile_workflow.nodes.routers import (
    ApprovalRouter,
    CheckAppInstalledRouter,
    CheckBuildSuccessfulRouter,
    CheckConnectedAppListRouter,
    CheckConnectedAppRetrievedRouter,
    CheckEmulatorFoundRouter,
    CheckEnvironmentValidatedRouter,
    CheckFatalErrorsRouter,
    CheckOrgListRouter,
    CheckPropertiesFulfilledRouter,
    InitializationValidatedRouter,
    IterationContinuationRouter,
)
from mobile_workflow.nodes.terminal import CompletionNode, FailureNode
from mobile_workflow.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

COMPLETION = "completion"
FAILURE = "failure"
DEPLOYMENT_ENTRY = "ios_select_simulator"

Sleep = Callable[[float], None]


def _gate(graph: WorkflowGraph, source: str, target: str) -> None:
    """Continue from ``source`` to ``target`` unless a fatal error was recorded."""
    graph.add_router(source, CheckFatalErrorsRouter(target, FAILURE))


def _add_terminals(graph: WorkflowGraph, completion: bool = True) -> None:
    if completion:
        graph.add_node(CompletionNode(COMPLETION))
    graph.add_node(FailureNode(FAILURE))


def add_deployment_chain(
    graph: WorkflowGraph,
    runner: CommandRunnerProtocol,
    exit_to: str = COMPLETION,
    readiness_timeout: float = config.READINESS_TIMEOUT_S,
    sleep: Sleep | None = None,
) -> str:
    """Add the iOS and Android deployment nodes; returns the chain's first node id.

    Every node is a no-op for the other platform, so both sequences share one
    path: select -> boot/start -> install -> resolve launch target -> launch.
    """
    graph.add_node(IOSSelectSimulatorNode(runner))
    graph.add_node(IOSBootSimulatorNode(runner, readiness_timeout=readiness_timeout, sleep=sleep))
    graph.add_node(AndroidSelectEmulatorNode(runner))
    graph.add_node(AndroidCreateEmulatorNode(runner))
    graph.add_node(AndroidStartEmulatorNode(runner, readiness_timeout=readiness_timeout, sleep=sleep))
    graph.add_node(IOSInstallAppNode(runner))
    graph.add_node(AndroidInstallAppNode(runner))
    graph.add_node(IOSResolveLaunchTargetNode(runner))
    graph.add_node(AndroidResolveLaunchTargetNode())
    graph.add_node(IOSLaunchAppNode(runner))
    graph.add_node(AndroidLaunchAppNode(runner))

    _gate(graph, "ios_select_simulator", "ios_boot_simulator")
    _gate(graph, "ios_boot_simulator", "android_select_emulator")
    graph.add_router(
        "android_select_emulator",
        CheckEmulatorFoundRouter("android_start_emulator", "android_create_emulator", FAILURE),
    )
    _gate(graph, "android_create_emulator", "android_start_emulator")
    _gate(graph, "android_start_emulator", "ios_install_app")
    _gate(graph, "ios_install_app", "android_install_app")
    graph.add_router("android_install_app", CheckAppInstalledRouter("ios_resolve_launch_target", FAILURE))
    _gate(graph, "ios_resolve_launch_target", "android_resolve_launch_target")
    _gate(graph, "android_resolve_launch_target", "ios_launch_app")
    _gate(graph, "ios_launch_app", "android_launch_app")
    _gate(graph, "android_launch_app", exit_to)
    return DEPLOYMENT_ENTRY


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


def build_mobile_native_workflow(
    tool_executor: ToolExecutor,
    runner: CommandRunnerProtocol | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    max_build_retries: int = config.MAX_BUILD_RETRIES,
    readiness_timeout: float = config.READINESS_TIMEOUT_S,
    sleep: Sleep | None = None,
    budget: ExecutionBudget | None = None,
) -> CompiledWorkflow:
    runner = runner or CommandRunner()
    graph = WorkflowGraph("mobile_native", failure_node=FAILURE)

    graph.add_node(EnvironmentValidationNode(environ))
    graph.add_node(UserInputExtractionNode(tool_executor))
    graph.add_node(GetUserInputNode(tool_executor))
    graph.add_node(TemplateDiscoveryNode(tool_executor))
    graph.add_node(ProjectGenerationNode(tool_executor))
    graph.add_node(BuildValidationNode(tool_executor))
    graph.add_node(BuildRecoveryNode(tool_executor))
    deploy = add_deployment_chain(graph, runner, COMPLETION, readiness_timeout, sleep)
    _add_terminals(graph)

    graph.set_entry_point("environment_validation")
    graph.add_router(
        "environment_validation", CheckEnvironmentValidatedRouter("user_input_extraction", FAILURE)
    )
    graph.add_router(
        "user_input_extraction",
        CheckPropertiesFulfilledRouter("template_discovery", "get_user_input", FAILURE, list(REQUIRED_PROPERTIES)),
    )
    _gate(graph, "get_user_input", "user_input_extraction")
    _gate(graph, "template_discovery", "project_generation")
    _gate(graph, "project_generation", "build_validation")
    graph.add_router(
        "build_validation",
        CheckBuildSuccessfulRouter(deploy, "build_recovery", FAILURE, max_retries=max_build_retries),
    )
    _gate(graph, "build_recovery", "build_validation")

    return graph.compile(budget=budget)


def build_deployment_workflow(
    runner: CommandRunnerProtocol | None = None,
    *,
    readiness_timeout: float = config.READINESS_TIMEOUT_S,
    sleep: Sleep | None = None,
    budget: ExecutionBudget | None = None,
) -> CompiledWorkflow:
    graph = WorkflowGraph("deployment", failure_node=FAILURE)
    entry = add_deployment_chain(graph, runner or CommandRunner(), COMPLETION, readiness_timeout, sleep)
    _add_terminals(graph)
    graph.set_entry_point(entry)
    return graph.compile(budget=budget)


def build_connected_app_workflow(
    tool_executor: ToolExecutor,
    runner: CommandRunnerProtocol | None = None,
    *,
    budget: ExecutionBudget | None = None,
) -> CompiledWorkflow:
    runner = runner or CommandRunner()
    graph = WorkflowGraph("connected_app", failure_node=FAILURE)

    graph.add_node(FetchOrgsNode(runner))
    graph.add_node(SelectOrgNode(tool_executor))
    graph.add_node(FetchConnectedAppListNode(runner))
    graph.add_node(SelectConnectedAppNode(tool_executor))
    graph.add_node(RetrieveConnectedAppMetadataNode(runner))
    _add_terminals(graph)

    graph.set_entry_point("fetch_orgs")
    graph.add_router("fetch_orgs", CheckOrgListRouter("select_org", FAILURE))
    _gate(graph, "select_org", "fetch_connected_app_list")
    graph.add_router("fetch_connected_app_list", CheckConnectedAppListRouter("select_connected_app", FAILURE))
    _gate(graph, "select_connected_app", "retrieve_connected_app_metadata")
    graph.add_router(
        "retrieve_connected_app_metadata", CheckConnectedAppRetrievedRouter(COMPLETION, FAILURE)
    )

    return graph.compile(budget=budget)


def build_prd_workflow(tool_executor: ToolExecutor, *, budget: ExecutionBudget | None = None) -> CompiledWorkflow:
    graph = WorkflowGraph("prd", failure_node=FAILURE)

    graph.add_node(MagiInitializationNode())
    graph.add_node(FeatureBriefGenerationNode(tool_executor))
    graph.add_node(FeatureBriefReviewNode(tool_executor))
    graph.add_node(FeatureBriefUpdateNode(tool_executor))
    graph.add_node(InitialRequirementsGenerationNode(tool_executor))
    graph.add_node(GapRequirementsGenerationNode(tool_executor))
    graph.add_node(RequirementsReviewNode(tool_executor))
    graph.add_node(GapAnalysisNode(tool_executor))
    graph.add_node(RequirementsIterationControlNode())
    graph.add_node(PRDGenerationNode(tool_executor))
    graph.add_node(PRDReviewNode(tool_executor))
    graph.add_node(PRDFinalizationNode())
    _add_terminals(graph, completion=False)

    graph.set_entry_point("magi_initialization")
    graph.add_router(
        "magi_initialization", InitializationValidatedRouter("feature_brief_generation", FAILURE)
    )
    _gate(graph, "feature_brief_generation", "feature_brief_review")
    graph.add_router(
        "feature_brief_review",
        ApprovalRouter(
            "feature_brief_approved", "initial_requirements_generation", "feature_brief_update", FAILURE
        ),
    )
    _gate(graph, "feature_brief_update", "feature_brief_review")
    _gate(graph, "initial_requirements_generation", "requirements_review")
    _gate(graph, "requirements_review", "gap_analysis")
    _gate(graph, "gap_analysis", "requirements_iteration_control")
    graph.add_router(
        "requirements_iteration_control",
        IterationContinuationRouter("gap_requirements_generation", "prd_generation", FAILURE),
    )
    _gate(graph, "gap_requirements_generation", "requirements_review")
    _gate(graph, "prd_generation", "prd_review")
    graph.add_router(
        "prd_review", ApprovalRouter("prd_approved", "prd_finalization", "prd_generation", FAILURE)
    )

    return graph.compile(budget=budget)
