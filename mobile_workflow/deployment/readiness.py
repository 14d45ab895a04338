"""Readiness polling: wait for a started device to report booted.

The waiter is driven by the same ``Deadline`` that bounded the start
command, so one budget covers both. A timed-out result keeps the last
observed state, which tells "never started" (shutdown/unknown) apart from
"started but never finished booting" (booting).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from mobile_workflow.execution_limits import Deadline
from mobile_workflow.state import BootState

logger = logging.getLogger(__name__)

Probe = Callable[[], BootState]


@dataclass(frozen=True)
class ReadinessResult:
    ready: bool
    last_status: BootState
    attempts: int
    error: str | None = None


class ReadinessWaiter:
    """Polls ``probe`` every ``poll_interval`` seconds until BOOTED or the deadline passes."""

    def __init__(
        self,
        probe: Probe,
        poll_interval: float,
        *,
        label: str = "device",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._probe = probe
        self._interval = poll_interval
        self._label = label
        self._sleep = sleep

    def wait(self, deadline: Deadline) -> ReadinessResult:
        last = BootState.UNKNOWN
        attempts = 0
        while True:
            attempts += 1
            try:
                last = self._probe()
            except Exception:
                logger.debug("Readiness probe for %s failed", self._label, exc_info=True)
                last = BootState.UNKNOWN

            if last is BootState.BOOTED:
                logger.debug("%s ready after %d attempts (%.1fs)", self._label, attempts, deadline.elapsed())
                return ReadinessResult(ready=True, last_status=last, attempts=attempts)

            remaining = deadline.remaining()
            if remaining is not None and remaining <= 0:
                break
            pause = self._interval if remaining is None else min(self._interval, remaining)
            logger.debug("%s not ready (%s), retrying in %.1fs", self._label, last.value, pause)
            self._sleep(pause)

        error = (
            f"{self._label} did not become ready within {deadline.seconds:g}s "
            f"(last status: {last.value})"
        )
        logger.warning("%s", error)
        return ReadinessResult(ready=False, last_status=last, attempts=attempts, error=error)
