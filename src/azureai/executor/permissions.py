"""Session-scoped permission policy for model-proposed commands."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from .classifier import RiskLevel, classify_command

LOGGER = logging.getLogger(__name__)

REASON_PREVIOUSLY_APPROVED = "previously approved by user"
REASON_SAFE = "Safe read-only command"
REASON_SAFE_STRICT = "Needs confirmation"
REASON_MAY_MODIFY = "Command may modify system state"
REASON_DANGEROUS_CONFIRM = "Dangerous command (requires explicit confirmation)"
REASON_DANGEROUS_BLOCKED = "Dangerous command blocked (use /allow-dangerous to enable)"


@dataclass(frozen=True, slots=True)
class PermissionDecision:
    """Outcome of a permission check.

    ``allowed`` and ``needs_confirm`` are never both true.
    """

    allowed: bool
    needs_confirm: bool
    reason: str

    def __post_init__(self) -> None:
        if self.allowed and self.needs_confirm:
            msg = "a permission decision cannot be both allowed and awaiting confirmation"
            raise ValueError(msg)

    @property
    def blocked(self) -> bool:
        return not self.allowed and not self.needs_confirm


@dataclass(frozen=True, slots=True)
class PermissionSettings:
    """Read-only snapshot of the policy flags."""

    auto_allow_reads: bool
    dangerous_enabled: bool
    allowlist_count: int

    def as_dict(self) -> dict[str, bool | int]:
        return {
            "auto_allow_reads": self.auto_allow_reads,
            "dangerous_enabled": self.dangerous_enabled,
            "allowlist_count": self.allowlist_count,
        }


class PermissionManager:
    """Decides whether a command may run, must be confirmed, or is blocked.

    The allowlist holds exact command strings approved with "always" and only
    lives as long as this object. Every read and write goes through a single
    lock so a confirmation on one thread cannot race a settings read on another.
    """

    def __init__(self, *, auto_allow_reads: bool = True, dangerous_enabled: bool = False) -> None:
        self._lock = threading.Lock()
        self._allowlist: set[str] = set()
        self._auto_allow_reads = auto_allow_reads
        self._dangerous_enabled = dangerous_enabled

    def check_permission(self, command: str) -> PermissionDecision:
        with self._lock:
            if command in self._allowlist:
                return PermissionDecision(True, False, REASON_PREVIOUSLY_APPROVED)

            risk = classify_command(command)
            if risk is RiskLevel.SAFE:
                if self._auto_allow_reads:
                    return PermissionDecision(True, False, REASON_SAFE)
                return PermissionDecision(False, True, REASON_SAFE_STRICT)
            if risk is RiskLevel.NEEDS_CONFIRM:
                return PermissionDecision(False, True, REASON_MAY_MODIFY)
            if self._dangerous_enabled:
                return PermissionDecision(False, True, REASON_DANGEROUS_CONFIRM)
            return PermissionDecision(False, False, REASON_DANGEROUS_BLOCKED)

    def add_to_allowlist(self, command: str) -> None:
        with self._lock:
            self._allowlist.add(command)
            count = len(self._allowlist)
        LOGGER.info("allowlist_added", extra={"allowlist_count": count})

    def clear_allowlist(self) -> None:
        with self._lock:
            self._allowlist.clear()
        LOGGER.info("allowlist_cleared")

    def enable_dangerous(self) -> None:
        with self._lock:
            self._dangerous_enabled = True
        LOGGER.warning("dangerous_commands_enabled")

    def disable_dangerous(self) -> None:
        with self._lock:
            self._dangerous_enabled = False
        LOGGER.info("dangerous_commands_disabled")

    def set_auto_allow_reads(self, enabled: bool) -> None:
        with self._lock:
            self._auto_allow_reads = enabled
        LOGGER.info("auto_allow_reads_changed", extra={"auto_allow_reads": enabled})

    def get_settings(self) -> PermissionSettings:
        with self._lock:
            return PermissionSettings(
                auto_allow_reads=self._auto_allow_reads,
                dangerous_enabled=self._dangerous_enabled,
                allowlist_count=len(self._allowlist),
            )
