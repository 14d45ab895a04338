"""Project file lookups for deployment: Gradle, AndroidManifest, and build outputs.

Every reader returns None when the file or value is missing; callers decide
whether that is fatal.
"""

from __future__ import annotations

import logging
import os
import re
import xml.etree.ElementTree as ET

logger = logging.getLogger(__name__)

_ANDROID_NS = "{http://schemas.android.com/apk/res/android}"
_LAUNCHER_CATEGORY = "android.intent.category.LAUNCHER"
_GRADLE_FILES = ("build.gradle.kts", "build.gradle")

_APPLICATION_ID = re.compile(r"""applicationId\s*=?\s*["']([^"']+)["']""")
_MIN_SDK = re.compile(r"minSdk(?:Version)?\s*[=:]?\s*(\d+)")


def _read_text(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8") as fh:
            return fh.read()
    except OSError:
        return None


def _gradle_sources(project_path: str):
    for name in _GRADLE_FILES:
        text = _read_text(os.path.join(project_path, "app", name))
        if text is not None:
            yield name, text


def read_application_id(project_path: str) -> str | None:
    """applicationId from app/build.gradle(.kts)."""
    for name, text in _gradle_sources(project_path):
        match = _APPLICATION_ID.search(text)
        if match:
            logger.debug("applicationId %s found in %s", match.group(1), name)
            return match.group(1)
    return None


def read_min_sdk(project_path: str) -> int | None:
    """minSdk from app/build.gradle(.kts); accepts ``minSdk = 28``, ``minSdk 28`` and ``minSdkVersion 28``."""
    for name, text in _gradle_sources(project_path):
        match = _MIN_SDK.search(text)
        if match:
            logger.debug("minSdk %s found in %s", match.group(1), name)
            return int(match.group(1))
    return None


def read_launch_activity(project_path: str) -> str | None:
    """Activity carrying the LAUNCHER category in app/src/main/AndroidManifest.xml."""
    manifest = os.path.join(project_path, "app", "src", "main", "AndroidManifest.xml")
    try:
        root = ET.parse(manifest).getroot()
    except (OSError, ET.ParseError) as exc:
        logger.debug("Could not read %s: %s", manifest, exc)
        return None

    application = root.find("application")
    if application is None:
        return None
    for tag in ("activity", "activity-alias"):
        for activity in application.findall(tag):
            for intent_filter in activity.findall("intent-filter"):
                categories = {c.get(f"{_ANDROID_NS}name") for c in intent_filter.findall("category")}
                if _LAUNCHER_CATEGORY in categories:
                    return activity.get(f"{_ANDROID_NS}name")
    return None


def android_apk_path(project_path: str, build_type: str) -> str:
    return os.path.join(
        project_path, "app", "build", "outputs", "apk", build_type, f"app-{build_type}.apk"
    )


def ios_app_path(project_path: str, project_name: str, build_type: str = "debug") -> str:
    """Simulator .app bundle produced by an xcodebuild run with ``-derivedDataPath build``."""
    configuration = build_type.capitalize()
    return os.path.join(
        project_path,
        "build",
        "Build",
        "Products",
        f"{configuration}-iphonesimulator",
        f"{project_name}.app",
    )
