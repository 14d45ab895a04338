"""Feature brief, requirements iteration and PRD nodes.

Every artifact the tools produce is written under the project's magi-sdd
directory (see ``mobile_workflow.artifacts``); the state only carries paths,
approval flags and the iteration bookkeeping.

Iteration policy
----------------
After each gap analysis the loop continues only while all of these hold:

- a gap of blocking severity (critical/high) remains
- the gap score is below ``GAP_SCORE_THRESHOLD`` (0-100 scale)
- fewer than ``MAX_REQUIREMENTS_ITERATIONS`` iterations have run

The user choosing to continue despite gaps stops the loop unconditionally.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Mapping

from mobile_workflow import artifacts, config
from mobile_workflow.artifacts import Artifact, ArtifactError, RequirementsDocument
from mobile_workflow.nodes.base import BaseNode, RunContext, StatePatch, ToolNode
from mobile_workflow.tools.executor import ToolExecutor
from mobile_workflow.tools.schemas import (
    FEATURE_BRIEF_REVIEW_TOOL,
    FEATURE_BRIEF_TOOL,
    FEATURE_BRIEF_UPDATE_TOOL,
    GAP_ANALYSIS_TOOL,
    GAP_REQUIREMENTS_TOOL,
    INITIAL_REQUIREMENTS_TOOL,
    PRD_GENERATION_TOOL,
    PRD_REVIEW_TOOL,
    REQUIREMENTS_REVIEW_TOOL,
    FeatureBriefInput,
    FeatureBriefResult,
    FeatureBriefReviewInput,
    FeatureBriefUpdateInput,
    FeatureBriefUpdateResult,
    GapAnalysisInput,
    GapAnalysisResult,
    PRDGenerationInput,
    PRDGenerationResult,
    PRDReviewInput,
    RequirementsGenerationInput,
    RequirementsGenerationResult,
    RequirementsReviewInput,
    RequirementsReviewResult,
    ReviewResult,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Iteration policy
# ---------------------------------------------------------------------------


def normalize_score(raw: float | None, scale: str = "percent") -> float:
    """Gap score on the 0-100 scale.

    Only an explicit ``scale="fraction"`` multiplies by 100, so a percent score
    of 1 stays 1. Workflow state always holds the percent form.
    """
    if raw is None:
        return 0.0
    score = float(raw)
    if scale == "fraction":
        score *= 100
    return max(0.0, min(score, 100.0))


def has_blocking_gaps(gaps: Iterable[Mapping[str, Any]] | None) -> bool:
    return any(str(g.get("severity", "")).lower() in config.BLOCKING_GAP_SEVERITIES for g in gaps or ())


def should_continue_iteration(
    state: Mapping[str, Any],
    threshold: float = config.GAP_SCORE_THRESHOLD,
    max_iterations: int = config.MAX_REQUIREMENTS_ITERATIONS,
) -> bool:
    if state.get("user_wants_to_continue_despite_gaps"):
        return False
    return (
        has_blocking_gaps(state.get("identified_gaps"))
        and normalize_score(state.get("gap_analysis_score")) < threshold
        and state.get("requirements_iteration_count", 0) < max_iterations
    )


class RequirementsIterationControlNode(BaseNode):
    def __init__(
        self,
        logger: logging.Logger | None = None,
        threshold: float = config.GAP_SCORE_THRESHOLD,
        max_iterations: int = config.MAX_REQUIREMENTS_ITERATIONS,
    ):
        super().__init__("requirements_iteration_control", logger)
        self.threshold = threshold
        self.max_iterations = max_iterations

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        count = state.get("requirements_iteration_count", 0)
        score = normalize_score(state.get("gap_analysis_score"))
        proceed = should_continue_iteration(state, self.threshold, self.max_iterations)
        self.logger.info(
            "Iteration decision: score=%.1f iteration=%d/%d continue=%s",
            score, count, self.max_iterations, proceed,
        )
        patch: StatePatch = {"should_continue_iteration": proceed, "gap_analysis_score": score}
        if proceed:
            patch["requirements_iteration_count"] = count + 1
        return patch


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class MagiInitializationNode(BaseNode):
    """Resolves the project path and request, and prepares the magi-sdd directory.

    Both values may arrive in the state or in ``user_input``; values taken from
    ``user_input`` consume it.
    """

    def __init__(self, logger: logging.Logger | None = None):
        super().__init__("magi_initialization", logger)

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        user_input = state.get("user_input") or {}
        project_path = state.get("project_path") or user_input.get("project_path")
        utterance = state.get("user_utterance") or user_input.get("user_utterance")
        if not project_path or not utterance:
            return self.fail(
                "Both project_path and user_utterance are required. Provide them in the initial "
                "state or as user_input."
            )

        patch: StatePatch = {"project_path": project_path, "user_utterance": utterance}
        if user_input:
            patch["user_input"] = {}
        try:
            root = artifacts.ensure_artifacts_root(project_path)
            if state.get("feature_id"):
                directory = artifacts.feature_directory(project_path, state["feature_id"], create=True)
                patch["feature_directory"] = directory
        except (ArtifactError, OSError) as exc:
            return self.fail(f"Failed to initialize magi-sdd directory in project path {project_path}: {exc}")

        self.logger.info("Artifacts directory ready at %s", root)
        return patch


# ---------------------------------------------------------------------------
# Artifact-backed tool nodes
# ---------------------------------------------------------------------------


class _ArtifactToolNode(ToolNode):
    """Tool node that reads and writes feature artifacts."""

    needs_feature = True

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        if not state.get("project_path"):
            return f"{self.name}: project_path is required"
        if self.needs_feature and not state.get("feature_id"):
            return f"{self.name}: feature_id is required; generate the feature brief first"
        return None

    def read(self, state: Mapping[str, Any], artifact: Artifact) -> str:
        return artifacts.read_artifact(state["project_path"], state["feature_id"], artifact)

    def write(self, state: Mapping[str, Any], artifact: Artifact, content: str, feature_id: str | None = None) -> str:
        return artifacts.write_artifact(state["project_path"], feature_id or state["feature_id"], artifact, content)

    def path(self, state: Mapping[str, Any], artifact: Artifact) -> str:
        return artifacts.artifact_path(state["project_path"], state["feature_id"], artifact, create=True)


class FeatureBriefGenerationNode(_ArtifactToolNode):
    tool_id = FEATURE_BRIEF_TOOL
    input_schema = FeatureBriefInput
    output_schema = FeatureBriefResult
    description = "Draft a feature brief from the user's request"
    needs_feature = False

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("feature_brief_generation", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "user_utterance": state.get("user_utterance") or "",
            "current_feature_ids": artifacts.list_feature_ids(state["project_path"]),
        }

    def apply_result(self, result: FeatureBriefResult, state: Mapping[str, Any]) -> StatePatch:
        feature_id = state.get("feature_id") or result.recommended_feature_id
        try:
            path = self.write(state, Artifact.FEATURE_BRIEF, result.feature_brief_markdown, feature_id=feature_id)
        except ArtifactError as exc:
            return self.fail(str(exc))
        self.logger.info("Feature brief for %s written to %s", feature_id, path)
        return {
            "feature_id": feature_id,
            "feature_directory": os.path.dirname(path),
            "feature_brief_path": path,
            "feature_brief_approved": False,
        }


class FeatureBriefReviewNode(_ArtifactToolNode):
    tool_id = FEATURE_BRIEF_REVIEW_TOOL
    input_schema = FeatureBriefReviewInput
    output_schema = ReviewResult
    description = "Have the user review the feature brief"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("feature_brief_review", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "feature_brief_path": state.get("feature_brief_path") or self.path(state, Artifact.FEATURE_BRIEF),
            "feature_brief_markdown": self.read(state, Artifact.FEATURE_BRIEF),
        }

    def apply_result(self, result: ReviewResult, state: Mapping[str, Any]) -> StatePatch:
        self.logger.info("Feature brief %s", "approved" if result.approved else "needs changes")
        return {"feature_brief_approved": result.approved, "feature_brief_modifications": list(result.modifications)}


class FeatureBriefUpdateNode(_ArtifactToolNode):
    tool_id = FEATURE_BRIEF_UPDATE_TOOL
    input_schema = FeatureBriefUpdateInput
    output_schema = FeatureBriefUpdateResult
    description = "Apply requested modifications to the feature brief"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("feature_brief_update", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "feature_brief_markdown": self.read(state, Artifact.FEATURE_BRIEF),
            "modifications": list(state.get("feature_brief_modifications") or []),
        }

    def apply_result(self, result: FeatureBriefUpdateResult, state: Mapping[str, Any]) -> StatePatch:
        path = self.write(state, Artifact.FEATURE_BRIEF, result.feature_brief_markdown)
        return {"feature_brief_path": path, "feature_brief_approved": False, "feature_brief_modifications": []}


class _RequirementsGenerationNode(_ArtifactToolNode):
    input_schema = RequirementsGenerationInput
    output_schema = RequirementsGenerationResult

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "feature_brief_markdown": self.read(state, Artifact.FEATURE_BRIEF),
            "requirements_markdown": self.read(state, Artifact.REQUIREMENTS),
        }

    def apply_result(self, result: RequirementsGenerationResult, state: Mapping[str, Any]) -> StatePatch:
        doc = RequirementsDocument.from_markdown(self.read(state, Artifact.REQUIREMENTS), state["feature_id"])
        doc.add_pending(result.functional_requirements)
        path = self.write(state, Artifact.REQUIREMENTS, doc.to_markdown())
        self.logger.info("%d requirement(s) pending review", len(doc.pending_requirements))
        return {"requirements_path": path, "requirements_approved": False}


class InitialRequirementsGenerationNode(_RequirementsGenerationNode):
    tool_id = INITIAL_REQUIREMENTS_TOOL
    description = "Generate functional requirements from the approved feature brief"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("initial_requirements_generation", tool_executor, logger)


class GapRequirementsGenerationNode(_RequirementsGenerationNode):
    tool_id = GAP_REQUIREMENTS_TOOL
    description = "Generate requirements that close the identified gaps"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("gap_requirements_generation", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        payload = super().build_input(state)
        payload["identified_gaps"] = list(state.get("identified_gaps") or [])
        return payload


class RequirementsReviewNode(_ArtifactToolNode):
    tool_id = REQUIREMENTS_REVIEW_TOOL
    input_schema = RequirementsReviewInput
    output_schema = RequirementsReviewResult
    description = "Have the user approve, reject or modify pending requirements"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("requirements_review", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "requirements_path": state.get("requirements_path") or self.path(state, Artifact.REQUIREMENTS),
            "requirements_markdown": self.read(state, Artifact.REQUIREMENTS),
        }

    def apply_result(self, result: RequirementsReviewResult, state: Mapping[str, Any]) -> StatePatch:
        doc = RequirementsDocument.from_markdown(self.read(state, Artifact.REQUIREMENTS), state["feature_id"])
        doc.merge_review(
            result.approved_requirements,
            result.rejected_requirements,
            result.modified_requirements,
            result.review_summary,
        )
        path = self.write(state, Artifact.REQUIREMENTS, doc.to_markdown())
        self.logger.info(
            "Review merged: %d approved, %d modified, %d rejected, %d pending",
            len(doc.approved_requirements), len(doc.modified_requirements),
            len(doc.rejected_requirements), len(doc.pending_requirements),
        )
        return {"requirements_path": path, "requirements_approved": not doc.pending_requirements}


class GapAnalysisNode(_ArtifactToolNode):
    tool_id = GAP_ANALYSIS_TOOL
    input_schema = GapAnalysisInput
    output_schema = GapAnalysisResult
    description = "Score the requirements against the feature brief and list gaps"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("gap_analysis", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "feature_brief_path": state.get("feature_brief_path") or self.path(state, Artifact.FEATURE_BRIEF),
            "requirements_path": state.get("requirements_path") or self.path(state, Artifact.REQUIREMENTS),
            "feature_brief_markdown": self.read(state, Artifact.FEATURE_BRIEF),
            "requirements_markdown": self.read(state, Artifact.REQUIREMENTS),
        }

    def apply_result(self, result: GapAnalysisResult, state: Mapping[str, Any]) -> StatePatch:
        score = normalize_score(result.gap_analysis_score, result.score_scale)
        self.logger.info("Gap analysis: score=%.1f gaps=%d", score, len(result.identified_gaps))
        return {
            "gap_analysis_score": score,
            "identified_gaps": [g.model_dump() for g in result.identified_gaps],
            "user_wants_to_continue_despite_gaps": result.user_wants_to_continue_despite_gaps,
        }


# ---------------------------------------------------------------------------
# PRD
# ---------------------------------------------------------------------------


class PRDGenerationNode(_ArtifactToolNode):
    tool_id = PRD_GENERATION_TOOL
    input_schema = PRDGenerationInput
    output_schema = PRDGenerationResult
    description = "Write the PRD from the feature brief and reviewed requirements"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("prd_generation", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "feature_brief_markdown": self.read(state, Artifact.FEATURE_BRIEF),
            "requirements_markdown": self.read(state, Artifact.REQUIREMENTS),
            "prd_markdown": self.read(state, Artifact.PRD),
            "modifications": list(state.get("prd_modifications") or []),
        }

    def apply_result(self, result: PRDGenerationResult, state: Mapping[str, Any]) -> StatePatch:
        path = self.write(state, Artifact.PRD, result.prd_markdown)
        self.logger.info("PRD written to %s", path)
        return {"prd_path": path, "prd_status": "draft", "prd_approved": False, "prd_modifications": []}


class PRDReviewNode(_ArtifactToolNode):
    """Sends the PRD content and path for review; the tool answers approved/modifications."""

    tool_id = PRD_REVIEW_TOOL
    input_schema = PRDReviewInput
    output_schema = ReviewResult
    description = "Have the user review the PRD"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("prd_review", tool_executor, logger)

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        problem = super().check_preconditions(state)
        if problem is None and not self.read(state, Artifact.PRD):
            problem = "No PRD found to review; generate the PRD first"
        return problem

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "prd_path": state.get("prd_path") or self.path(state, Artifact.PRD),
            "prd_markdown": self.read(state, Artifact.PRD),
        }

    def apply_result(self, result: ReviewResult, state: Mapping[str, Any]) -> StatePatch:
        return {
            "prd_approved": result.approved,
            "prd_modifications": list(result.modifications),
            "prd_status": "approved" if result.approved else "needs_revision",
        }


class PRDFinalizationNode(BaseNode):
    def __init__(self, logger: logging.Logger | None = None):
        super().__init__("prd_finalization", logger)

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        self.logger.info("PRD finalized for feature %s: %s", state.get("feature_id"), state.get("prd_path"))
        return {"prd_status": "finalized", "workflow_complete": True}
