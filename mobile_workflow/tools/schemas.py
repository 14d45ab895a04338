"""Input and result contracts for every tool the workflows invoke.

Result models are what ``ToolExecutor`` validates tool output against. The
same models validate ``user_input`` overrides when a run is resumed.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Tool ids
# ---------------------------------------------------------------------------

INPUT_EXTRACTION_TOOL = "sfmobile-native-input-extraction"
GET_INPUT_TOOL = "sfmobile-native-get-input"
TEMPLATE_DISCOVERY_TOOL = "sfmobile-native-template-discovery"
PROJECT_GENERATION_TOOL = "sfmobile-native-project-generation"
BUILD_EXECUTOR_TOOL = "sfmobile-native-build-executor"
BUILD_RECOVERY_TOOL = "sfmobile-native-build-recovery"
ORG_SELECTION_TOOL = "sfmobile-native-org-selection"
CONNECTED_APP_SELECTION_TOOL = "sfmobile-native-connected-app-selection"
FEATURE_BRIEF_TOOL = "magi-prd-feature-brief"
FEATURE_BRIEF_REVIEW_TOOL = "magi-prd-feature-brief-review"
FEATURE_BRIEF_UPDATE_TOOL = "magi-prd-feature-brief-update"
INITIAL_REQUIREMENTS_TOOL = "magi-prd-initial-requirements"
GAP_REQUIREMENTS_TOOL = "magi-prd-gap-requirements"
REQUIREMENTS_REVIEW_TOOL = "magi-prd-requirements-review"
GAP_ANALYSIS_TOOL = "magi-prd-gap-analysis"
PRD_GENERATION_TOOL = "magi-prd-generation"
PRD_REVIEW_TOOL = "magi-prd-review"


class _Result(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class PropertyRequest(BaseModel):
    property_name: str = Field(description="State key of the property")
    friendly_name: str = Field(description="Human readable name")
    description: str = Field(default="", description="What the property is used for")


class InputExtractionInput(BaseModel):
    user_utterance: str = Field(description="Raw user text to extract properties from")
    properties_to_extract: list[PropertyRequest] = Field(description="Properties to look for")


class InputExtractionResult(_Result):
    extracted_properties: dict = Field(description="Property name to extracted value; unknowns omitted")


class GetInputInput(BaseModel):
    properties_requiring_input: list[PropertyRequest] = Field(description="Properties still missing")


class GetInputResult(_Result):
    user_utterance: str = Field(description="The user's answer")


class TemplateDiscoveryInput(BaseModel):
    platform: str = Field(description="iOS or Android")
    user_utterance: str = Field(default="", description="Original request, used to rank templates")


class TemplateDiscoveryResult(_Result):
    selected_template: str = Field(description="Template name chosen for the project")
    template_properties: dict = Field(default_factory=dict, description="Template-specific property values")


class ProjectGenerationInput(BaseModel):
    platform: str
    selected_template: str
    project_name: str
    package_name: str
    organization: str
    login_host: str
    connected_app_client_id: str = ""
    connected_app_callback_uri: str = ""


class ProjectGenerationResult(_Result):
    project_path: str = Field(description="Absolute path of the generated project")


class OrgSelectionInput(BaseModel):
    orgs: list[dict] = Field(description="Connected orgs to choose from")


class OrgSelectionResult(_Result):
    selected_org_username: str = Field(description="Username of the chosen org")


class ConnectedAppSelectionInput(BaseModel):
    connected_apps: list[dict] = Field(description="Connected apps to choose from")


class ConnectedAppSelectionResult(_Result):
    selected_connected_app: str = Field(description="Full name of the chosen connected app")


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class BuildExecutorInput(BaseModel):
    platform: str = Field(description="iOS or Android")
    project_path: str = Field(description="Path to the project to build")
    project_name: str = Field(default="", description="Project (and Xcode scheme fallback) name")
    build_type: str = Field(default="debug", description="Gradle build type or Xcode configuration")


class BuildExecutorResult(_Result):
    success: bool = Field(description="Whether the build succeeded")
    message: str = Field(default="", description="Status message")
    error: str | None = Field(default=None, description="Error message if the build failed")
    build_output_file_path: str | None = Field(default=None, description="Full build log")


class BuildRecoveryInput(BaseModel):
    platform: str
    project_path: str
    build_error_messages: list[str] = Field(default_factory=list)
    build_output_file_path: str | None = None
    attempt: int = 0


class BuildRecoveryResult(_Result):
    fixes_applied: list[str] = Field(default_factory=list, description="Changes made to the project")
    ready_for_retry: bool = Field(description="Whether another build attempt makes sense")


# ---------------------------------------------------------------------------
# Requirements / PRD
# ---------------------------------------------------------------------------

Priority = Literal["high", "medium", "low"]
Severity = Literal["critical", "high", "medium", "low"]


class Requirement(BaseModel):
    id: str
    title: str
    description: str = ""
    priority: Priority = "medium"
    category: str = ""


class ModifiedRequirement(Requirement):
    original_id: str = ""
    modification_notes: str = ""


class Gap(BaseModel):
    id: str
    title: str
    description: str = ""
    severity: Severity
    category: str = ""
    impact: str = ""


class FeatureBriefInput(BaseModel):
    user_utterance: str
    current_feature_ids: list[str] = Field(default_factory=list)


class FeatureBriefResult(_Result):
    feature_brief_markdown: str
    recommended_feature_id: str


class FeatureBriefReviewInput(BaseModel):
    feature_brief_path: str
    feature_brief_markdown: str


class ReviewResult(_Result):
    approved: bool
    modifications: list[dict] = Field(default_factory=list)


class FeatureBriefUpdateInput(BaseModel):
    feature_brief_markdown: str
    modifications: list[dict] = Field(default_factory=list)


class FeatureBriefUpdateResult(_Result):
    feature_brief_markdown: str


class RequirementsGenerationInput(BaseModel):
    feature_brief_markdown: str
    requirements_markdown: str = ""
    identified_gaps: list[dict] = Field(default_factory=list)


class RequirementsGenerationResult(_Result):
    functional_requirements: list[Requirement]


class RequirementsReviewInput(BaseModel):
    requirements_path: str
    requirements_markdown: str


class RequirementsReviewResult(_Result):
    approved_requirements: list[Requirement] = Field(default_factory=list)
    rejected_requirements: list[Requirement] = Field(default_factory=list)
    modified_requirements: list[ModifiedRequirement] = Field(default_factory=list)
    review_summary: str


class GapAnalysisInput(BaseModel):
    feature_brief_path: str
    requirements_path: str
    feature_brief_markdown: str = ""
    requirements_markdown: str = ""


class GapAnalysisResult(_Result):
    gap_analysis_score: float = Field(ge=0, le=100, description="Score on the scale named by score_scale")
    score_scale: Literal["percent", "fraction"] = Field(
        default="percent", description="percent is 0-100, fraction is 0-1"
    )
    identified_gaps: list[Gap] = Field(default_factory=list)
    summary: str
    user_wants_to_continue_despite_gaps: bool = False

    @model_validator(mode="after")
    def _score_fits_scale(self) -> "GapAnalysisResult":
        if self.score_scale == "fraction" and self.gap_analysis_score > 1:
            raise ValueError("gap_analysis_score must be between 0 and 1 when score_scale is fraction")
        return self


class PRDGenerationInput(BaseModel):
    feature_brief_markdown: str
    requirements_markdown: str
    prd_markdown: str = ""
    modifications: list[dict] = Field(default_factory=list)


class PRDGenerationResult(_Result):
    prd_markdown: str


class PRDReviewInput(BaseModel):
    prd_path: str
    prd_markdown: str
