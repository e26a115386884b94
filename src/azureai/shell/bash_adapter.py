"""POSIX shell adapter implementation."""

from __future__ import annotations

import shutil
from pathlib import Path

from .base import DEFAULT_TIMEOUT_SECONDS, ShellAdapter


class BashAdapter(ShellAdapter):
    """Adapter for command execution via ``bash``/``sh``/``zsh``.

    The command string is passed to ``<shell> -c`` unchanged; it is never split
    into argv on our side.
    """

    def __init__(
        self,
        executable: str | None = None,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        fallback_to_sh: bool = True,
    ) -> None:
        super().__init__(default_timeout=default_timeout)
        self.executable = executable or _default_executable(fallback_to_sh=fallback_to_sh)

    @property
    def name(self) -> str:
        return Path(self.executable).name

    def build_argv(self, command: str) -> list[str]:
        return [self.executable, "-c", command]


def _default_executable(*, fallback_to_sh: bool) -> str:
    if shutil.which("bash"):
        return "bash"
    if fallback_to_sh and shutil.which("sh"):
        return "sh"
    return "bash"
