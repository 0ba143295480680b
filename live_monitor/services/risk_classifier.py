"""Maps a student's violations for one exam to an ordinal risk level."""

from typing import Iterable, Optional, Sequence

from .. import config
from ..models.violation import RiskLevel, ViolationLevel, ViolationRecord


def is_tab_switch(violation_type: str) -> bool:
    return config.TAB_SWITCH_TYPE in (violation_type or "")


def classify(group: Sequence[ViolationRecord],
             high_risk_types: Optional[Iterable[str]] = None,
             medium_risk_types: Optional[Iterable[str]] = None) -> RiskLevel:
    """Classify a violation group. Tiers are checked top-down and the first
    match wins; they are not cumulative scores.

    Tab-switch-only groups need more unresolved violations to reach Medium
    than other groups, since accidental focus loss is the most common false
    positive.
    """
    high_risk = set(config.HIGH_RISK_TYPES if high_risk_types is None else high_risk_types)
    medium_risk = set(config.MEDIUM_RISK_TYPES if medium_risk_types is None else medium_risk_types)

    unresolved = sum(1 for violation in group if not violation.resolved)
    if unresolved == 0:
        return RiskLevel.LOW

    types = [violation.type or "" for violation in group]
    mixed = len(set(types)) > config.MIXED_TYPE_COUNT
    has_error = any(violation.level == ViolationLevel.ERROR for violation in group)
    has_high_risk = any(t in high_risk for t in types)
    has_medium_risk = any(t in medium_risk for t in types)
    only_tab_switches = all(is_tab_switch(t) for t in types)

    if has_error or unresolved >= config.CRITICAL_UNRESOLVED:
        return RiskLevel.CRITICAL

    if (unresolved >= config.HIGH_UNRESOLVED
            or (has_high_risk and unresolved >= config.HIGH_RISK_TYPE_UNRESOLVED)
            or (mixed and unresolved >= config.HIGH_MIXED_UNRESOLVED)):
        return RiskLevel.HIGH

    if ((only_tab_switches and unresolved >= config.MEDIUM_TAB_SWITCH_UNRESOLVED)
            or (not only_tab_switches and unresolved >= config.MEDIUM_UNRESOLVED)
            or (mixed and unresolved >= config.MEDIUM_MIXED_UNRESOLVED)
            or has_medium_risk):
        return RiskLevel.MEDIUM

    return RiskLevel.LOW
