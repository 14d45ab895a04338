"""Shared fixtures for the mobile workflow test suite."""

from __future__ import annotations

from fakes import android_project, clock, ios_project, runner, tools  # noqa: F401
