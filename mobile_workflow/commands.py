"""External command execution with timeouts and progress reporting.

Every command runs in its own process group so a timeout kills the whole
tree (simctl/sf/adb all spawn helpers). Output is captured in full; the
caller decides what to surface.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]

_TICK_SECONDS = 1.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external process invocation."""

    success: bool
    exit_code: int | None = None
    signal: str | None = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    def error_message(self, prefix: str = "") -> str:
        """stderr if there is any, else a synthesized exit code/signal description."""
        detail = self.stderr.strip()
        if not detail:
            if self.signal:
                detail = f"terminated by {self.signal}"
            else:
                code = self.exit_code if self.exit_code is not None else "unknown"
                detail = f"exit code {code}"
        return f"{prefix}{detail}"

    def diagnosis(self, limit: int = 500) -> str:
        """Exit status plus a stderr excerpt, for fatal error messages."""
        if self.timed_out:
            status = f"timed out ({self.signal or 'killed'})"
        elif self.signal:
            status = f"signal {self.signal}"
        else:
            status = f"exit code {self.exit_code if self.exit_code is not None else 'unknown'}"
        excerpt = self.stderr.strip()[:limit]
        return f"{status}: {excerpt}" if excerpt else status


class CommandRunnerProtocol(Protocol):
    def execute(
        self,
        program: str,
        args: Sequence[str],
        *,
        timeout_ms: int | None = None,
        progress_callback: ProgressCallback | None = None,
        label: str | None = None,
        cwd: str | None = None,
    ) -> CommandResult: ...


def _signal_name(returncode: int | None) -> str | None:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"signal {-returncode}"


class CommandRunner:
    """Runs programs with a hard timeout and a periodic progress callback."""

    def __init__(self, tick_seconds: float = _TICK_SECONDS):
        self._tick = tick_seconds

    def execute(
        self,
        program: str,
        args: Sequence[str],
        *,
        timeout_ms: int | None = None,
        progress_callback: ProgressCallback | None = None,
        label: str | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        name = label or program
        cmd = [program, *args]
        logger.debug("Executing %s: %s (timeout_ms=%s)", name, " ".join(cmd), timeout_ms)

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                start_new_session=True,
            )
        except OSError as exc:
            logger.warning("%s could not be started: %s", name, exc)
            return CommandResult(success=False, stderr=f"Failed to start {program}: {exc}")

        timeout_s = timeout_ms / 1000.0 if timeout_ms is not None else None
        total = int(timeout_s) if timeout_s is not None else 0
        started = time.monotonic()
        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []

        while True:
            elapsed = time.monotonic() - started
            if timeout_s is not None and elapsed >= timeout_s:
                return self._kill(proc, name, timeout_ms, stdout_chunks, stderr_chunks)

            wait = self._tick
            if timeout_s is not None:
                wait = min(wait, max(timeout_s - elapsed, 0.01))
            try:
                out, err = proc.communicate(timeout=wait)
            except subprocess.TimeoutExpired:
                self._report(progress_callback, name, int(time.monotonic() - started), total)
                continue
            stdout_chunks.append(out or "")
            stderr_chunks.append(err or "")
            break

        result = CommandResult(
            success=proc.returncode == 0,
            exit_code=proc.returncode if proc.returncode is not None and proc.returncode >= 0 else None,
            signal=_signal_name(proc.returncode),
            stdout="".join(stdout_chunks),
            stderr="".join(stderr_chunks),
        )
        logger.debug("%s finished: exit_code=%s signal=%s", name, result.exit_code, result.signal)
        return result

    def _kill(
        self,
        proc: subprocess.Popen,
        name: str,
        timeout_ms: int | None,
        stdout_chunks: list[str],
        stderr_chunks: list[str],
    ) -> CommandResult:
        logger.warning("%s timed out after %sms, killing process group %s", name, timeout_ms, proc.pid)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        # communicate() after the kill reaps the child and drains the pipes
        out, err = proc.communicate()
        stdout_chunks.append(out or "")
        stderr_chunks.append(err or "")
        captured_err = "".join(stderr_chunks).strip()
        message = f"{name} timed out after {timeout_ms}ms"
        if captured_err:
            message = f"{message}\n{captured_err}"
        return CommandResult(
            success=False,
            exit_code=None,
            signal="SIGKILL",
            stdout="".join(stdout_chunks),
            stderr=message,
            timed_out=True,
        )

    @staticmethod
    def _report(callback: ProgressCallback | None, name: str, current: int, total: int) -> None:
        if callback is None:
            return
        try:
            callback(f"{name}: running ({current}s)", current, total)
        except Exception:
            logger.debug("Progress callback failed for %s", name, exc_info=True)


def seconds_to_ms(seconds: float | None) -> int | None:
    if seconds is None:
        return None
    return max(1, int(seconds * 1000))
