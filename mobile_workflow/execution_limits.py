"""Execution limits for workflow runs.

Bounds every run with:
- Max graph steps (200)
- A run-wide deadline shared by node work, commands, and readiness polling
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from mobile_workflow import config

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for errors that abort a workflow run."""


class StepLimitExceededError(WorkflowError):
    """Raised when a run takes more graph steps than its budget allows."""

    def __init__(self, max_steps: int, last_node: str | None = None):
        self.max_steps = max_steps
        self.last_node = last_node
        detail = f" (last node: {last_node})" if last_node else ""
        super().__init__(f"Workflow exceeded max steps ({max_steps}){detail}")


@dataclass
class ExecutionBudget:
    """Budget limits for a single workflow run."""

    max_steps: int = 200
    max_time_seconds: float = 3600.0

    @classmethod
    def from_env(cls) -> "ExecutionBudget":
        return cls(max_steps=config.MAX_STEPS, max_time_seconds=config.RUN_TIMEOUT_S)

    def deadline(self) -> "Deadline":
        return Deadline(self.max_time_seconds)


@dataclass
class Deadline:
    """A monotonic point in time after which no new external work may start.

    ``seconds=None`` never expires. ``bound()`` clips a per-operation timeout
    to what is left, so one deadline can govern a start command and the
    polling that follows it.
    """

    seconds: float | None = None
    _clock: object = field(default=time.monotonic, repr=False)
    _started: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._started = self._clock()

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining(self) -> float | None:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def bound(self, timeout_s: float | None) -> float | None:
        """Return the smaller of ``timeout_s`` and the time remaining."""
        remaining = self.remaining()
        if remaining is None:
            return timeout_s
        if timeout_s is None:
            return remaining
        return min(timeout_s, remaining)

    def child(self, seconds: float | None) -> "Deadline":
        """A deadline that ends at ``seconds`` from now or at this one, whichever is first."""
        return Deadline(self.bound(seconds), _clock=self._clock)
