"""Bounded shell execution."""

from .base import (
    DEFAULT_TIMEOUT_SECONDS,
    CommandSetupError,
    ExecutionResult,
    ShellAdapter,
)
from .bash_adapter import BashAdapter

_POSIX_SHELLS = {"bash", "sh", "zsh"}


def create_shell_adapter(
    shell_name: str | None = None,
    *,
    default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> ShellAdapter:
    """Return the adapter for ``shell_name``; ``None`` picks bash, falling back to sh."""
    if shell_name is None:
        return BashAdapter(default_timeout=default_timeout)
    normalized = shell_name.strip().lower()
    if normalized in _POSIX_SHELLS:
        return BashAdapter(executable=normalized, default_timeout=default_timeout)
    msg = f"Unsupported shell adapter: {shell_name}"
    raise ValueError(msg)


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "BashAdapter",
    "CommandSetupError",
    "ExecutionResult",
    "ShellAdapter",
    "create_shell_adapter",
]
