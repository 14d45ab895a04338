"""Tests for CommandRunner against real short-lived processes."""

from __future__ import annotations

import time

import pytest

from mobile_workflow.commands import CommandResult, CommandRunner, seconds_to_ms


# ---------------------------------------------------------------------------
# Tests: CommandResult
# ---------------------------------------------------------------------------


class TestCommandResult:
    def test_error_message_prefers_stderr(self):
        result = CommandResult(success=False, exit_code=2, stderr="  no such device \n")
        assert result.error_message("Boot failed: ") == "Boot failed: no such device"

    def test_error_message_falls_back_to_exit_code(self):
        assert CommandResult(success=False, exit_code=3).error_message() == "exit code 3"

    def test_error_message_signal(self):
        assert CommandResult(success=False, signal="SIGTERM").error_message() == "terminated by SIGTERM"

    def test_diagnosis_includes_status_and_excerpt(self):
        result = CommandResult(success=False, exit_code=65, stderr="x" * 600)
        text = result.diagnosis(limit=10)
        assert text == "exit code 65: " + "x" * 10

    def test_diagnosis_timeout(self):
        result = CommandResult(success=False, signal="SIGKILL", timed_out=True)
        assert result.diagnosis() == "timed out (SIGKILL)"

    def test_seconds_to_ms(self):
        assert seconds_to_ms(None) is None
        assert seconds_to_ms(1.5) == 1500
        assert seconds_to_ms(0) == 1


# ---------------------------------------------------------------------------
# Tests: CommandRunner
# ---------------------------------------------------------------------------


class TestCommandRunner:
    def test_success_captures_output(self):
        result = CommandRunner().execute("sh", ["-c", "echo out; echo err >&2"], timeout_ms=5000)
        assert result.success
        assert result.exit_code == 0
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"

    def test_nonzero_exit(self):
        result = CommandRunner().execute("sh", ["-c", "exit 4"], timeout_ms=5000)
        assert not result.success
        assert result.exit_code == 4
        assert not result.timed_out

    def test_cwd(self, tmp_path):
        result = CommandRunner().execute("pwd", [], cwd=str(tmp_path), timeout_ms=5000)
        assert result.stdout.strip() == str(tmp_path.resolve())

    def test_missing_program(self):
        result = CommandRunner().execute("definitely-not-a-real-program-xyz", [], timeout_ms=1000)
        assert not result.success
        assert "Failed to start" in result.stderr

    def test_timeout_kills_process_group(self):
        started = time.monotonic()
        result = CommandRunner(tick_seconds=0.05).execute(
            "sh", ["-c", "sleep 30 & sleep 30"], timeout_ms=300, label="Sleepy"
        )
        assert time.monotonic() - started < 10
        assert not result.success
        assert result.timed_out
        assert result.signal == "SIGKILL"
        assert "Sleepy timed out after 300ms" in result.stderr

    def test_progress_callback_ticks(self):
        seen = []
        CommandRunner(tick_seconds=0.05).execute(
            "sh", ["-c", "sleep 0.3"], timeout_ms=5000,
            progress_callback=lambda message, current, total: seen.append((message, total)),
            label="Wait",
        )
        assert seen
        assert all(message.startswith("Wait:") for message, _ in seen)
        assert all(total == 5 for _, total in seen)

    def test_progress_callback_errors_do_not_fail_command(self):
        def explode(message, current, total):
            raise RuntimeError("reporter down")

        result = CommandRunner(tick_seconds=0.05).execute(
            "sh", ["-c", "sleep 0.2; echo done"], timeout_ms=5000, progress_callback=explode
        )
        assert result.success
        assert result.stdout.strip() == "done"

    @pytest.mark.parametrize("timeout_ms", [None, 5000])
    def test_timeout_optional(self, timeout_ms):
        assert CommandRunner().execute("true", [], timeout_ms=timeout_ms).success
