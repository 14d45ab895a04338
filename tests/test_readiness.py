"""Tests for readiness polling and deadlines."""

from __future__ import annotations

from mobile_workflow.deployment.readiness import ReadinessWaiter
from mobile_workflow.execution_limits import Deadline, ExecutionBudget
from mobile_workflow.state import BootState


def _scripted(states):
    remaining = list(states)

    def probe():
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return probe


# ---------------------------------------------------------------------------
# Tests: Deadline
# ---------------------------------------------------------------------------


class TestDeadline:
    def test_unbounded(self):
        deadline = Deadline.unbounded()
        assert deadline.remaining() is None
        assert not deadline.expired
        assert deadline.bound(30) == 30

    def test_bound_clips_to_remaining(self, clock):
        deadline = Deadline(10, _clock=clock)
        clock.now += 4
        assert deadline.remaining() == 6
        assert deadline.bound(30) == 6
        assert deadline.bound(2) == 2

    def test_expired(self, clock):
        deadline = Deadline(5, _clock=clock)
        clock.now += 5
        assert deadline.expired
        assert deadline.remaining() == 0

    def test_child_never_outlives_parent(self, clock):
        parent = Deadline(10, _clock=clock)
        clock.now += 8
        assert parent.child(120).seconds == 2
        assert parent.child(1).seconds == 1

    def test_budget_from_env_defaults(self):
        budget = ExecutionBudget.from_env()
        assert budget.max_steps > 0
        assert budget.deadline().seconds == budget.max_time_seconds


# ---------------------------------------------------------------------------
# Tests: ReadinessWaiter
# ---------------------------------------------------------------------------


class TestReadinessWaiter:
    def test_ready_immediately(self, clock):
        waiter = ReadinessWaiter(lambda: BootState.BOOTED, 2, sleep=clock.sleep)
        result = waiter.wait(Deadline(60, _clock=clock))
        assert result.ready
        assert result.attempts == 1
        assert clock.sleeps == []

    def test_polls_until_booted(self, clock):
        probe = _scripted([BootState.SHUTDOWN, BootState.BOOTING, BootState.BOOTED])
        waiter = ReadinessWaiter(probe, 3, sleep=clock.sleep)
        result = waiter.wait(Deadline(60, _clock=clock))
        assert result.ready
        assert result.attempts == 3
        assert clock.sleeps == [3, 3]

    def test_timeout_reports_booting(self, clock):
        waiter = ReadinessWaiter(lambda: BootState.BOOTING, 2, label="iOS simulator", sleep=clock.sleep)
        result = waiter.wait(Deadline(5, _clock=clock))
        assert not result.ready
        assert result.last_status is BootState.BOOTING
        assert "iOS simulator did not become ready within 5s" in result.error
        assert "booting" in result.error

    def test_timeout_distinguishes_never_started(self, clock):
        waiter = ReadinessWaiter(lambda: BootState.SHUTDOWN, 2, sleep=clock.sleep)
        result = waiter.wait(Deadline(4, _clock=clock))
        assert not result.ready
        assert result.last_status is BootState.SHUTDOWN

    def test_last_sleep_clipped_to_deadline(self, clock):
        waiter = ReadinessWaiter(lambda: BootState.BOOTING, 3, sleep=clock.sleep)
        waiter.wait(Deadline(7, _clock=clock))
        assert clock.sleeps == [3, 3, 1]
        assert sum(clock.sleeps) == 7

    def test_probe_exception_counts_as_unknown(self, clock):
        calls = []

        def probe():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("adb exploded")
            return BootState.BOOTED

        result = ReadinessWaiter(probe, 1, sleep=clock.sleep).wait(Deadline(10, _clock=clock))
        assert result.ready
        assert result.attempts == 2
