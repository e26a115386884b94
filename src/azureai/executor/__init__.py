"""Command risk classification and permission policy."""

from .classifier import RiskLevel, classify_command, matched_danger_pattern, risk_description
from .permissions import PermissionDecision, PermissionManager, PermissionSettings

__all__ = [
    "PermissionDecision",
    "PermissionManager",
    "PermissionSettings",
    "RiskLevel",
    "classify_command",
    "matched_danger_pattern",
    "risk_description",
]
