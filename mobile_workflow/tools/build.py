"""Build executor tool.

Runs the platform build for a generated project and reports the outcome as
JSON matching ``BuildExecutorResult``:

- Android: ``./gradlew assemble<BuildType>`` in the project root
- iOS: ``xcodebuild`` for the iphonesimulator SDK with derived data under
  ``<project>/build`` so the app bundle lands where the install step looks

The full build output is written to ``<project>/build/build-output.log``.
"""

from __future__ import annotations

import glob
import json
import logging
import os

from langchain_core.tools import BaseTool, tool

from mobile_workflow import config
from mobile_workflow.commands import CommandRunner, CommandRunnerProtocol, seconds_to_ms
from mobile_workflow.state import Platform
from mobile_workflow.tools.schemas import BUILD_EXECUTOR_TOOL, BuildExecutorInput

logger = logging.getLogger(__name__)

_BUILD_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_BUILD_TIMEOUT_S", "1800"))
_LOG_NAME = "build-output.log"
_ERROR_EXCERPT = 2000


def android_build_command(project_path: str, build_type: str) -> tuple[str, list[str]]:
    return os.path.join(project_path, "gradlew"), [f"assemble{build_type.capitalize()}"]


def ios_build_command(project_path: str, project_name: str, build_type: str) -> tuple[str, list[str]]:
    workspaces = sorted(glob.glob(os.path.join(project_path, "*.xcworkspace")))
    projects = sorted(glob.glob(os.path.join(project_path, "*.xcodeproj")))
    if workspaces:
        container = ["-workspace", os.path.basename(workspaces[0])]
    elif projects:
        container = ["-project", os.path.basename(projects[0])]
    else:
        container = []
    return "xcodebuild", [
        *container,
        "-scheme", project_name,
        "-configuration", build_type.capitalize(),
        "-sdk", "iphonesimulator",
        "-derivedDataPath", "build",
        "build",
    ]


def _write_log(project_path: str, stdout: str, stderr: str) -> str | None:
    path = os.path.join(project_path, "build", _LOG_NAME)
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(stdout)
            if stderr:
                fh.write("\n--- stderr ---\n")
                fh.write(stderr)
    except OSError as e:
        logger.warning("Could not write build log %s: %s", path, e)
        return None
    return path


def run_build(
    runner: CommandRunnerProtocol,
    platform: str,
    project_path: str,
    project_name: str = "",
    build_type: str = config.DEFAULT_BUILD_TYPE,
    timeout_s: float = _BUILD_TIMEOUT_S,
) -> dict:
    if not os.path.isdir(project_path):
        return {"success": False, "error": f"Project path does not exist: {project_path}"}

    if platform == Platform.ANDROID.value:
        program, args = android_build_command(project_path, build_type)
    elif platform == Platform.IOS.value:
        if not project_name:
            return {"success": False, "error": "Project name is required to build an iOS project"}
        program, args = ios_build_command(project_path, project_name, build_type)
    else:
        return {"success": False, "error": f"Unsupported platform: {platform}"}

    logger.info("Building %s project at %s (%s)", platform, project_path, build_type)
    result = runner.execute(
        program, args, timeout_ms=seconds_to_ms(timeout_s), label=f"{platform} Build", cwd=project_path,
    )
    log_path = _write_log(project_path, result.stdout, result.stderr)

    if result.success:
        return {"success": True, "message": f"{platform} build succeeded", "build_output_file_path": log_path}
    return {
        "success": False,
        "message": f"{platform} build failed ({result.diagnosis(limit=0)})",
        "error": result.error_message()[-_ERROR_EXCERPT:],
        "build_output_file_path": log_path,
    }


def make_build_tools(runner: CommandRunnerProtocol | None = None) -> list[BaseTool]:
    """Build tools bound to ``runner`` (a real ``CommandRunner`` by default)."""
    runner = runner or CommandRunner()

    @tool(BUILD_EXECUTOR_TOOL, args_schema=BuildExecutorInput)
    def build_executor(
        platform: str, project_path: str, project_name: str = "", build_type: str = "debug"
    ) -> str:
        """Build the project for the given platform and report success, errors and the log path."""
        return json.dumps(run_build(runner, platform, project_path, project_name, build_type))

    return [build_executor]
