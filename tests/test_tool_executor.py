"""Tests for tool invocation and output validation."""

from __future__ import annotations

import json

import pytest
from langchain_core.tools import tool

from mobile_workflow.tools.executor import (
    LangChainToolExecutor,
    ToolInputValidationError,
    ToolInvocation,
    ToolOutputValidationError,
    validate_tool_output,
)
from mobile_workflow.tools.schemas import (
    GAP_ANALYSIS_TOOL,
    TEMPLATE_DISCOVERY_TOOL,
    GapAnalysisInput,
    GapAnalysisResult,
    TemplateDiscoveryInput,
    TemplateDiscoveryResult,
)


@tool(TEMPLATE_DISCOVERY_TOOL, args_schema=TemplateDiscoveryInput)
def discover_template(platform: str, user_utterance: str = "") -> str:
    """Pick a template for the platform."""
    return json.dumps({"selected_template": f"{platform}NativeTemplate", "template_properties": {}})


@tool(GAP_ANALYSIS_TOOL, args_schema=GapAnalysisInput)
def broken_gap_analysis(
    feature_brief_path: str, requirements_path: str, feature_brief_markdown: str = "", requirements_markdown: str = ""
) -> dict:
    """Returns a score outside the allowed range."""
    return {"gap_analysis_score": 250, "summary": "too good"}


def _invocation(tool_id=TEMPLATE_DISCOVERY_TOOL, **input):
    return ToolInvocation(
        tool_id=tool_id,
        input_schema=TemplateDiscoveryInput,
        output_schema=TemplateDiscoveryResult,
        input=input or {"platform": "iOS"},
    )


# ---------------------------------------------------------------------------
# Tests: validate_tool_output
# ---------------------------------------------------------------------------


class TestValidateToolOutput:
    def test_accepts_dict(self):
        result = validate_tool_output(_invocation(), {"selected_template": "t", "extra": "ignored"})
        assert isinstance(result, TemplateDiscoveryResult)
        assert result.selected_template == "t"

    def test_accepts_json_string(self):
        assert validate_tool_output(_invocation(), '{"selected_template": "t"}').selected_template == "t"

    def test_accepts_model_instance(self):
        model = TemplateDiscoveryResult(selected_template="t")
        assert validate_tool_output(_invocation(), model) is model

    def test_rejects_missing_field(self):
        with pytest.raises(ToolOutputValidationError) as exc_info:
            validate_tool_output(_invocation(), {"template_properties": {}})
        assert exc_info.value.tool_id == TEMPLATE_DISCOVERY_TOOL
        assert "selected_template" in str(exc_info.value)

    def test_rejects_non_json_text(self):
        with pytest.raises(ToolOutputValidationError, match="not JSON"):
            validate_tool_output(_invocation(), "Sure! Here is your template.")

    def test_invalid_input_is_an_input_error(self):
        with pytest.raises(ToolInputValidationError) as exc_info:
            _invocation(user_utterance="hi").validated_input()
        assert exc_info.value.tool_id == TEMPLATE_DISCOVERY_TOOL
        assert "rejected its input" in str(exc_info.value)
        assert not isinstance(exc_info.value, ToolOutputValidationError)


# ---------------------------------------------------------------------------
# Tests: LangChainToolExecutor
# ---------------------------------------------------------------------------


class TestLangChainToolExecutor:
    def test_invokes_registered_tool(self):
        executor = LangChainToolExecutor([discover_template])
        result = executor.execute(_invocation(platform="Android"))
        assert result.selected_template == "AndroidNativeTemplate"
        assert executor.tool_ids == [TEMPLATE_DISCOVERY_TOOL]

    def test_bad_input_stops_before_the_tool_runs(self):
        calls = []

        @tool(TEMPLATE_DISCOVERY_TOOL, args_schema=TemplateDiscoveryInput)
        def counting_template(platform: str, user_utterance: str = "") -> str:
            """Counts invocations."""
            calls.append(platform)
            return json.dumps({"selected_template": "t"})

        executor = LangChainToolExecutor([counting_template])
        with pytest.raises(ToolInputValidationError, match="platform"):
            executor.execute(_invocation(user_utterance="no platform"))
        assert calls == []

    def test_unknown_tool(self):
        executor = LangChainToolExecutor()
        with pytest.raises(ToolOutputValidationError, match="no such tool"):
            executor.execute(_invocation())

    def test_out_of_range_output(self):
        executor = LangChainToolExecutor([broken_gap_analysis])
        invocation = ToolInvocation(
            tool_id=GAP_ANALYSIS_TOOL,
            input_schema=GapAnalysisInput,
            output_schema=GapAnalysisResult,
            input={"feature_brief_path": "a.md", "requirements_path": "b.md"},
        )
        with pytest.raises(ToolOutputValidationError, match="gap_analysis_score"):
            executor.execute(invocation)
