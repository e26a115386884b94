"""Base shell adapter primitives for bounded command execution."""

from __future__ import annotations

import abc
import locale
import logging
import os
import re
import signal
import subprocess
import threading
import time
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
_POLL_INTERVAL_SECONDS = 0.1
_KILL_GRACE_SECONDS = 2.0

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


class CommandSetupError(RuntimeError):
    """Raised when the shell process could not be started at all."""


@dataclass(slots=True)
class ExecutionResult:
    """Result of a bounded command execution.

    ``exit_code`` is -1 when the process was killed before it produced one.
    """

    command: str
    output: str
    exit_code: int
    duration: float
    error: str | None = None
    timed_out: bool = False
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.error is None

    def format_failure(self) -> str:
        header = f"Command failed with exit code {self.exit_code}"
        if self.exit_code == -1 and self.error:
            header = f"{header} ({self.error})"
        return f"{header}:\n{self.output}"


class ShellAdapter(abc.ABC):
    """Abstract adapter for shell-specific command execution."""

    def __init__(self, *, default_timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.default_timeout = default_timeout

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly shell adapter name."""

    @abc.abstractmethod
    def build_argv(self, command: str) -> list[str]:
        """Return the argv that hands ``command`` to the shell verbatim."""

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run ``command`` and wait at most ``timeout`` seconds for it.

        A non-zero exit, a timeout or a cancellation is reported in the
        returned result. Only a failure to spawn the process raises.
        """
        budget = self.default_timeout if timeout is None else timeout
        self.log_request(command, timeout=budget, cwd=cwd)

        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                self.build_argv(command),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=cwd,
                start_new_session=os.name != "nt",
            )
        except (OSError, ValueError) as exc:
            LOGGER.error(
                "command_setup_failed",
                extra={"shell": self.name, "cwd": cwd, "error": str(exc)},
            )
            msg = f"could not start {self.name}: {exc}"
            raise CommandSetupError(msg) from exc

        raw_output = b""
        timed_out = False
        cancelled = False
        deadline = started + budget
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                remaining = deadline - self.monotonic_now()
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    raw_output, _ = process.communicate(
                        timeout=min(remaining, _POLL_INTERVAL_SECONDS)
                    )
                    break
                except subprocess.TimeoutExpired:
                    continue
        except BaseException:
            _kill_process_tree(process)
            raise

        if timed_out or cancelled:
            _kill_process_tree(process)
            raw_output = _drain(process)

        duration = self.monotonic_now() - started
        output = _normalize_output(raw_output)
        if timed_out:
            result = ExecutionResult(
                command=command,
                output=output,
                exit_code=-1,
                duration=duration,
                error=f"command timed out after {budget:g}s",
                timed_out=True,
            )
        elif cancelled:
            result = ExecutionResult(
                command=command,
                output=output,
                exit_code=-1,
                duration=duration,
                error="command cancelled",
                cancelled=True,
            )
        else:
            result = _result_from_returncode(command, output, process.returncode, duration)

        self.log_result(result)
        return result

    def log_request(self, command: str, *, timeout: float, cwd: str | None) -> None:
        LOGGER.info(
            "command_request",
            extra={
                "shell": self.name,
                "command": self._sanitize_command(command),
                "timeout": timeout,
                "cwd": cwd,
            },
        )

    def log_result(self, result: ExecutionResult) -> None:
        LOGGER.info(
            "command_result",
            extra={
                "shell": self.name,
                "exit_code": result.exit_code,
                "timed_out": result.timed_out,
                "cancelled": result.cancelled,
                "duration_seconds": round(result.duration, 4),
                "output_length": len(result.output),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()

    def _sanitize_command(self, command: str) -> str:
        sanitized = command
        for pattern in _SECRET_PATTERNS:
            sanitized = pattern.sub(r"\1***", sanitized)
        return sanitized


def _result_from_returncode(
    command: str, output: str, returncode: int, duration: float
) -> ExecutionResult:
    if returncode == 0:
        return ExecutionResult(command=command, output=output, exit_code=0, duration=duration)
    if returncode < 0:
        return ExecutionResult(
            command=command,
            output=output,
            exit_code=-1,
            duration=duration,
            error=f"terminated by signal {-returncode}",
        )
    return ExecutionResult(
        command=command,
        output=output,
        exit_code=returncode,
        duration=duration,
        error=f"exit status {returncode}",
    )


def _kill_process_tree(process: subprocess.Popen[bytes]) -> None:
    if os.name == "nt":
        if process.poll() is None:
            process.kill()
        return
    # the group can outlive its leader when the command backgrounds children
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _drain(process: subprocess.Popen[bytes]) -> bytes:
    try:
        raw_output, _ = process.communicate(timeout=_KILL_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        # a detached grandchild still holds the pipe open
        process.kill()
        if process.stdout is not None:
            process.stdout.close()
        process.wait()
        return b""
    return raw_output or b""


def _normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
