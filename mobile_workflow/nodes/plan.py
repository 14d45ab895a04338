"""Planning nodes: environment, user input, template, project, org and Connected App.

These run before anything is built. Tool-backed nodes delegate the judgment
calls (what the user meant, which template fits, which org to use) to tools;
command-backed nodes talk to the Salesforce CLI.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Mapping

from mobile_workflow import config
from mobile_workflow.commands import CommandRunnerProtocol
from mobile_workflow.nodes.base import BaseNode, CommandNode, RunContext, StatePatch, ToolNode
from mobile_workflow.state import Platform
from mobile_workflow.tools.executor import ToolExecutor
from mobile_workflow.tools.schemas import (
    CONNECTED_APP_SELECTION_TOOL,
    GET_INPUT_TOOL,
    INPUT_EXTRACTION_TOOL,
    ORG_SELECTION_TOOL,
    PROJECT_GENERATION_TOOL,
    TEMPLATE_DISCOVERY_TOOL,
    ConnectedAppSelectionInput,
    ConnectedAppSelectionResult,
    GetInputInput,
    GetInputResult,
    InputExtractionInput,
    InputExtractionResult,
    OrgSelectionInput,
    OrgSelectionResult,
    ProjectGenerationInput,
    ProjectGenerationResult,
    TemplateDiscoveryInput,
    TemplateDiscoveryResult,
)

logger = logging.getLogger(__name__)

CONSUMER_KEY_ENV = "CONNECTED_APP_CONSUMER_KEY"
CALLBACK_URL_ENV = "CONNECTED_APP_CALLBACK_URL"

# Properties the user must provide before a project can be generated
REQUIRED_PROPERTIES: dict[str, tuple[str, str]] = {
    "platform": ("Platform", "Target platform: iOS or Android"),
    "project_name": ("Project Name", "Name of the app project"),
    "package_name": ("Package Name", "Reverse-DNS package or bundle prefix, e.g. com.acme"),
    "organization": ("Organization", "Organization or company name"),
    "login_host": ("Login Host", "Salesforce login host, e.g. login.salesforce.com"),
}


def missing_properties(state: Mapping[str, Any], required=REQUIRED_PROPERTIES) -> list[str]:
    return [name for name in required if not state.get(name)]


def _property_requests(names: list[str]) -> list[dict[str, str]]:
    return [
        {"property_name": n, "friendly_name": REQUIRED_PROPERTIES[n][0], "description": REQUIRED_PROPERTIES[n][1]}
        for n in names
    ]


def normalize_platform(value: Any) -> str | None:
    text = str(value or "").strip().casefold()
    for platform in Platform:
        if text == platform.value.casefold():
            return platform.value
    return None


# ---------------------------------------------------------------------------
# Environment and user input
# ---------------------------------------------------------------------------


class EnvironmentValidationNode(BaseNode):
    """Checks the Connected App credentials the generated app is configured with."""

    def __init__(self, environ: Mapping[str, str] | None = None, logger: logging.Logger | None = None):
        super().__init__("environment_validation", logger)
        self.environ = environ if environ is not None else os.environ

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        problems = []
        consumer_key = self.environ.get(CONSUMER_KEY_ENV, "").strip()
        callback_url = self.environ.get(CALLBACK_URL_ENV, "").strip()
        if not consumer_key:
            problems.append(f"Environment variable {CONSUMER_KEY_ENV} must be set to the Connected App consumer key.")
        if not callback_url:
            problems.append(f"Environment variable {CALLBACK_URL_ENV} must be set to the Connected App callback URL.")

        if problems:
            self.logger.warning("Environment validation failed: %s", problems)
            return {"valid_environment": False, "invalid_environment_messages": problems}

        self.logger.info("Environment validated")
        return {
            "valid_environment": True,
            "invalid_environment_messages": [],
            "connected_app_client_id": consumer_key,
            "connected_app_callback_uri": callback_url,
        }


class UserInputExtractionNode(ToolNode):
    """Pulls the required project properties out of the user's request."""

    tool_id = INPUT_EXTRACTION_TOOL
    input_schema = InputExtractionInput
    output_schema = InputExtractionResult
    description = "Extract project properties from the user's request"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("user_input_extraction", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "user_utterance": state.get("user_utterance") or "",
            "properties_to_extract": _property_requests(missing_properties(state)),
        }

    def apply_result(self, result: InputExtractionResult, state: Mapping[str, Any]) -> StatePatch:
        patch: StatePatch = {}
        for name, value in result.extracted_properties.items():
            if name not in REQUIRED_PROPERTIES or value in (None, ""):
                continue
            if name == "platform":
                value = normalize_platform(value)
                if value is None:
                    self.logger.debug("Ignoring unrecognized platform %r", result.extracted_properties[name])
                    continue
            patch[name] = value
        self.logger.info("Extracted properties: %s", sorted(patch))
        return patch


class GetUserInputNode(ToolNode):
    """Asks the user for whatever extraction could not find."""

    tool_id = GET_INPUT_TOOL
    input_schema = GetInputInput
    output_schema = GetInputResult
    description = "Ask the user for missing project properties"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("get_user_input", tool_executor, logger)

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {"properties_requiring_input": _property_requests(missing_properties(state))}

    def apply_result(self, result: GetInputResult, state: Mapping[str, Any]) -> StatePatch:
        return {"user_utterance": result.user_utterance}


# ---------------------------------------------------------------------------
# Template and project
# ---------------------------------------------------------------------------


class TemplateDiscoveryNode(ToolNode):
    tool_id = TEMPLATE_DISCOVERY_TOOL
    input_schema = TemplateDiscoveryInput
    output_schema = TemplateDiscoveryResult
    description = "Pick a project template for the platform"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("template_discovery", tool_executor, logger)

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        if not state.get("platform"):
            return "Platform must be specified before template discovery"
        return None

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {"platform": state["platform"], "user_utterance": state.get("user_utterance") or ""}

    def apply_result(self, result: TemplateDiscoveryResult, state: Mapping[str, Any]) -> StatePatch:
        self.logger.info("Selected template %s", result.selected_template)
        return {
            "selected_template": result.selected_template,
            "template_properties": dict(result.template_properties),
        }


class ProjectGenerationNode(ToolNode):
    tool_id = PROJECT_GENERATION_TOOL
    input_schema = ProjectGenerationInput
    output_schema = ProjectGenerationResult
    description = "Generate the app project from the selected template"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("project_generation", tool_executor, logger)

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        if not state.get("selected_template"):
            return "A template must be selected before generating the project"
        missing = missing_properties(state)
        if missing:
            return f"Missing required project properties: {', '.join(missing)}"
        return None

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "platform": state["platform"],
            "selected_template": state["selected_template"],
            "project_name": state["project_name"],
            "package_name": state["package_name"],
            "organization": state["organization"],
            "login_host": state["login_host"],
            "connected_app_client_id": state.get("connected_app_client_id") or "",
            "connected_app_callback_uri": state.get("connected_app_callback_uri") or "",
        }

    def apply_result(self, result: ProjectGenerationResult, state: Mapping[str, Any]) -> StatePatch:
        self.logger.info("Generated project at %s", result.project_path)
        return {"project_path": result.project_path}


# ---------------------------------------------------------------------------
# Org and Connected App
# ---------------------------------------------------------------------------


def _parse_sf_json(stdout: str, what: str) -> Any:
    try:
        payload = json.loads(stdout)
    except ValueError as exc:
        raise ValueError(f"Failed to parse {what} response: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Failed to parse {what} response: expected a JSON object")
    if payload.get("status", 0) != 0:
        raise ValueError(f"Failed to parse {what} response: command returned status {payload.get('status')}")
    return payload.get("result")


def parse_org_list(stdout: str) -> list[dict[str, str]]:
    """Connected Dev Hub orgs from ``sf org list --json``."""
    result = _parse_sf_json(stdout, "org list") or {}
    orgs = []
    for org in result.get("devHubs") or []:
        if org.get("connectedStatus") != "Connected" or not org.get("username"):
            continue
        entry = {"username": org["username"]}
        if org.get("alias"):
            entry["alias"] = org["alias"]
        orgs.append(entry)
    return orgs


def parse_connected_app_list(stdout: str) -> list[dict[str, str]]:
    result = _parse_sf_json(stdout, "connected app list") or []
    return [
        {"full_name": app["fullName"], "created_by_name": app.get("createdByName", "")}
        for app in result
        if app.get("fullName")
    ]


def parse_retrieved_file_path(stdout: str, app_name: str) -> str | None:
    result = _parse_sf_json(stdout, "project retrieve") or {}
    for entry in result.get("files") or []:
        if entry.get("type") == "ConnectedApp" and entry.get("fullName") == app_name:
            return entry.get("filePath")
    return None


_CONSUMER_KEY = re.compile(r"<consumerKey>([^<]+)</consumerKey>")
_CALLBACK_URL = re.compile(r"<callbackUrl>([^<]+)</callbackUrl>")


def parse_connected_app_xml(xml: str) -> tuple[str | None, str | None]:
    """``(consumerKey, callbackUrl)`` from a ConnectedApp metadata file."""
    key = _CONSUMER_KEY.search(xml)
    url = _CALLBACK_URL.search(xml)
    return (key.group(1).strip() if key else None, url.group(1).strip() if url else None)


class FetchOrgsNode(CommandNode):
    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("fetch_orgs", runner, logger)

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        if state.get("org_list"):
            self.logger.debug("Org list already in state, skipping fetch")
            return {}

        result = self.run_command(
            "sf", ["org", "list", "--json"], context, config.SF_TIMEOUT_S, "Fetch Org List",
        )
        if not result.success:
            return self.fail(
                f"Failed to fetch Salesforce orgs: {result.error_message()}. "
                "Please ensure the Salesforce CLI is installed and you have authenticated orgs."
            )
        try:
            orgs = parse_org_list(result.stdout)
        except ValueError as exc:
            return self.fail(f"Failed to fetch Salesforce orgs: {exc}")

        self.logger.info("Found %d connected org(s)", len(orgs))
        return {"org_list": orgs}


class SelectOrgNode(ToolNode):
    tool_id = ORG_SELECTION_TOOL
    input_schema = OrgSelectionInput
    output_schema = OrgSelectionResult
    description = "Ask the user which connected org to use"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("select_org", tool_executor, logger)

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        if not state.get("org_list"):
            return "No orgs available to select from"
        return None

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {"orgs": list(state["org_list"])}

    def apply_result(self, result: OrgSelectionResult, state: Mapping[str, Any]) -> StatePatch:
        usernames = {org.get("username") for org in state.get("org_list") or []}
        if result.selected_org_username not in usernames:
            return self.fail(f"Selected org {result.selected_org_username!r} is not one of the connected orgs")
        return {"selected_org_username": result.selected_org_username}


class FetchConnectedAppListNode(CommandNode):
    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("fetch_connected_app_list", runner, logger)

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        if state.get("connected_app_list"):
            self.logger.debug("Connected app list already in state, skipping fetch")
            return {}
        username = state.get("selected_org_username")
        if not username:
            return self.fail("An org must be selected before listing Connected Apps")

        result = self.run_command(
            "sf", ["org", "list", "metadata", "-m", "ConnectedApp", "--json", "-o", username],
            context, config.SF_TIMEOUT_S, "Fetch Connected App List",
        )
        if not result.success:
            return self.fail(
                f"Failed to fetch Connected Apps from org: {result.error_message()}. "
                "Please ensure you have a valid Salesforce org connection using 'sf org login'."
            )
        try:
            apps = parse_connected_app_list(result.stdout)
        except ValueError as exc:
            return self.fail(f"Failed to fetch Connected Apps: {exc}")

        self.logger.info("Found %d Connected App(s)", len(apps))
        return {"connected_app_list": apps}


class SelectConnectedAppNode(ToolNode):
    tool_id = CONNECTED_APP_SELECTION_TOOL
    input_schema = ConnectedAppSelectionInput
    output_schema = ConnectedAppSelectionResult
    description = "Ask the user which Connected App to use"

    def __init__(self, tool_executor: ToolExecutor, logger: logging.Logger | None = None):
        super().__init__("select_connected_app", tool_executor, logger)

    def check_preconditions(self, state: Mapping[str, Any]) -> str | None:
        if not state.get("connected_app_list"):
            return "No Connected Apps available to select from"
        return None

    def build_input(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return {"connected_apps": list(state["connected_app_list"])}

    def apply_result(self, result: ConnectedAppSelectionResult, state: Mapping[str, Any]) -> StatePatch:
        names = {app.get("full_name") for app in state.get("connected_app_list") or []}
        if result.selected_connected_app not in names:
            return self.fail(f"Selected Connected App {result.selected_connected_app!r} was not found in the org")
        return {"selected_connected_app": result.selected_connected_app}


class RetrieveConnectedAppMetadataNode(CommandNode):
    """Retrieves the selected Connected App and reads its OAuth settings."""

    def __init__(self, runner: CommandRunnerProtocol, logger: logging.Logger | None = None):
        super().__init__("retrieve_connected_app_metadata", runner, logger)

    def execute(self, state: Mapping[str, Any], context: RunContext) -> StatePatch:
        if state.get("connected_app_client_id") and state.get("connected_app_callback_uri"):
            self.logger.debug("Connected App credentials already in state, skipping retrieval")
            return {}
        app = state.get("selected_connected_app")
        if not app:
            return self.fail("No Connected App selected. Please select a Connected App first.")

        args = ["project", "retrieve", "start", "-m", f"ConnectedApp:{app}", "--json"]
        if state.get("selected_org_username"):
            args += ["-o", state["selected_org_username"]]
        result = self.run_command(
            "sf", args, context, config.SF_TIMEOUT_S * 2, "Retrieve Connected App Metadata",
            cwd=state.get("project_path") or None,
        )
        if not result.success:
            return self.fail(
                f"Failed to retrieve Connected App metadata: {result.error_message()}. "
                f'Please ensure you have access to the Connected App "{app}".'
            )

        try:
            xml_path = parse_retrieved_file_path(result.stdout, app)
        except ValueError as exc:
            self.logger.error("Could not parse retrieve output: %s", exc)
            xml_path = None
        if not xml_path or not os.path.isfile(xml_path):
            return self.fail(f'Connected App metadata file not found for "{app}". Parsed filePath: {xml_path}')

        with open(xml_path, encoding="utf-8") as fh:
            consumer_key, callback_url = parse_connected_app_xml(fh.read())
        if not consumer_key or not callback_url:
            return self.fail(
                f'Failed to extract OAuth credentials from Connected App "{app}". Please ensure the '
                "Connected App has OAuth settings configured with a consumerKey and callbackUrl."
            )

        self.logger.info("Retrieved Connected App %s (callback %s)", app, callback_url)
        return {"connected_app_client_id": consumer_key, "connected_app_callback_uri": callback_url}
