"""Pattern-based risk classification for shell command strings."""

from __future__ import annotations

import enum
import re


class RiskLevel(enum.IntEnum):
    """Risk tier of a command, ordered by how much caution it needs."""

    SAFE = 0
    NEEDS_CONFIRM = 1
    DANGEROUS = 2


SAFE_COMMANDS = frozenset(
    {
        "ls",
        "cat",
        "pwd",
        "echo",
        "head",
        "tail",
        "grep",
        "find",
        "which",
        "whoami",
        "date",
        "wc",
        "sort",
        "uniq",
        "diff",
        "env",
        "printenv",
        "df",
        "du",
        "ps",
        "top",
        "tree",
        "file",
        "stat",
        "basename",
        "dirname",
        "realpath",
    }
)

_SAFE_PATTERNS = [
    re.compile(pattern)
    for pattern in (
        r"^git\s+(status|log|diff|branch|show|remote)",
        r"^npm\s+(list|ls|view|info|outdated)",
        r"^pip\s+(list|show|freeze)",
        r"^cargo\s+(tree|search|check)",
        r"^go\s+(list|version|env)",
        r"^docker\s+(ps|images|inspect|logs)",
        r"^kubectl\s+(get|describe|logs)",
    )
]

_DANGEROUS_PATTERNS = [
    re.compile(pattern)
    for pattern in (
        r"rm\s+(-[rf]*\s+)?/",
        r"sudo",
        r"dd\s+if=",
        r"mkfs",
        r":\(\)\{",
        r"curl.*\|\s*(sh|bash|zsh)",
        r"wget.*\|\s*(sh|bash|zsh)",
        r">\s*/dev/sd",
        r"chmod.*777",
        r"chown.*-R\s+",
        r"eval.*\$",
    )
]

_RISK_DESCRIPTIONS = {
    RiskLevel.SAFE: "Safe read-only command",
    RiskLevel.NEEDS_CONFIRM: "Command may modify system state",
    RiskLevel.DANGEROUS: "Potentially dangerous command",
}


def matched_danger_pattern(command: str) -> str | None:
    """Return the first dangerous pattern found in ``command``, if any."""
    stripped = command.strip()
    for pattern in _DANGEROUS_PATTERNS:
        if pattern.search(stripped):
            return pattern.pattern
    return None


def classify_command(command: str) -> RiskLevel:
    """Classify a command string.

    Dangerous patterns are checked before anything else so a string that
    matches both a dangerous and a safe rule is always dangerous. Commands
    that match nothing need confirmation.
    """
    stripped = command.strip()
    if not stripped:
        return RiskLevel.DANGEROUS

    if matched_danger_pattern(stripped) is not None:
        return RiskLevel.DANGEROUS

    program = stripped.split()[0]
    if program in SAFE_COMMANDS:
        return RiskLevel.SAFE

    if any(pattern.search(stripped) for pattern in _SAFE_PATTERNS):
        return RiskLevel.SAFE

    return RiskLevel.NEEDS_CONFIRM


def risk_description(level: RiskLevel) -> str:
    """Human-readable label for a risk level."""
    return _RISK_DESCRIPTIONS.get(level, "Unknown risk level")
