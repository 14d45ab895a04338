"""Runtime configuration for the mobile workflows.

All values are read from the environment once, at import time. Timeouts are
in seconds unless the name says otherwise.
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Graph execution
# ---------------------------------------------------------------------------

MAX_STEPS = int(os.environ.get("MOBILE_WORKFLOW_MAX_STEPS", "200"))
RUN_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_RUN_TIMEOUT_S", "3600"))

# ---------------------------------------------------------------------------
# Requirements iteration
# ---------------------------------------------------------------------------

MAX_REQUIREMENTS_ITERATIONS = int(os.environ.get("MOBILE_WORKFLOW_MAX_REQUIREMENTS_ITERATIONS", "5"))
GAP_SCORE_THRESHOLD = float(os.environ.get("MOBILE_WORKFLOW_GAP_SCORE_THRESHOLD", "80"))
BLOCKING_GAP_SEVERITIES = frozenset({"critical", "high"})

# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------

MAX_BUILD_RETRIES = int(os.environ.get("MOBILE_WORKFLOW_MAX_BUILD_RETRIES", "3"))
DEFAULT_BUILD_TYPE = os.environ.get("MOBILE_WORKFLOW_BUILD_TYPE", "debug")

# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------

READINESS_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_READINESS_TIMEOUT_S", "120"))
IOS_POLL_INTERVAL_S = float(os.environ.get("MOBILE_WORKFLOW_IOS_POLL_INTERVAL_S", "2"))
ANDROID_POLL_INTERVAL_S = float(os.environ.get("MOBILE_WORKFLOW_ANDROID_POLL_INTERVAL_S", "3"))
LIST_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_LIST_TIMEOUT_S", "30"))
PROBE_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_PROBE_TIMEOUT_S", "10"))
BOOT_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_BOOT_TIMEOUT_S", "60"))
CREATE_EMULATOR_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_CREATE_EMULATOR_TIMEOUT_S", "120"))
INSTALL_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_INSTALL_TIMEOUT_S", "300"))
LAUNCH_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_LAUNCH_TIMEOUT_S", "30"))
DEFAULT_MIN_SDK = int(os.environ.get("MOBILE_WORKFLOW_DEFAULT_MIN_SDK", "28"))

# ---------------------------------------------------------------------------
# Salesforce CLI
# ---------------------------------------------------------------------------

SF_TIMEOUT_S = float(os.environ.get("MOBILE_WORKFLOW_SF_TIMEOUT_S", "60"))

# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

ARTIFACTS_DIR_NAME = os.environ.get("MOBILE_WORKFLOW_ARTIFACTS_DIR", "magi-sdd")
CHECKPOINT_DIR = os.environ.get(
    "MOBILE_WORKFLOW_CHECKPOINT_DIR",
    os.path.join(os.path.expanduser("~"), ".mobile-workflow", "checkpoints"),
)
