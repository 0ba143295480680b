"""Groups raw violation records into per-student risk summaries."""

from typing import Dict, Iterable, List, Tuple

from .. import config
from ..models.violation import RiskLevel, StudentViolationSummary, ViolationRecord
from .risk_classifier import classify

SUMMARY_FILTERS = ("all", "unresolved", "resolved", "auto-flagged")
SUMMARY_SORTS = ("violations", "time", "risk")


def summarize(group: List[ViolationRecord]) -> StudentViolationSummary:
    """Build the summary of one non-empty (student, exam) group."""
    first = group[0]
    resolved = sum(1 for violation in group if violation.resolved)
    unresolved = len(group) - resolved
    risk_level = classify(group)

    types: List[str] = []
    for violation in group:
        if violation.type not in types:
            types.append(violation.type)

    timestamps = [violation.timestamp for violation in group]
    return StudentViolationSummary(
        student_id=first.student_id,
        student_name=first.student_name,
        exam_id=first.exam_id,
        exam_title=first.exam_title,
        session_id=first.session_id,
        total_violations=len(group),
        resolved_violations=resolved,
        unresolved_violations=unresolved,
        risk_level=risk_level,
        first_violation_time=min(timestamps),
        last_violation_time=max(timestamps),
        violation_types=types,
        auto_flagged=unresolved >= config.AUTO_FLAG_UNRESOLVED or risk_level == RiskLevel.CRITICAL,
        violations=sorted(group, key=lambda v: v.timestamp, reverse=True),
    )


def group_by_student_exam(violations: Iterable[ViolationRecord]) -> List[StudentViolationSummary]:
    """Partition violations by (student_id, exam_id), in first-seen order."""
    grouped: Dict[Tuple[str, str], List[ViolationRecord]] = {}
    for violation in violations:
        grouped.setdefault((violation.student_id, violation.exam_id), []).append(violation)
    return [summarize(group) for group in grouped.values()]


def filter_summaries(summaries: Iterable[StudentViolationSummary], status: str = "all",
                     risk: str = "all") -> List[StudentViolationSummary]:
    """Keep summaries matching a resolution status and a risk level."""
    if status not in SUMMARY_FILTERS:
        raise ValueError(f"Unknown summary filter: {status}")

    def matches_status(summary: StudentViolationSummary) -> bool:
        if status == "unresolved":
            return summary.unresolved_violations > 0
        if status == "resolved":
            return summary.unresolved_violations == 0
        if status == "auto-flagged":
            return summary.auto_flagged
        return True

    return [
        summary for summary in summaries
        if matches_status(summary) and (risk == "all" or summary.risk_level.value == risk)
    ]


def sort_summaries(summaries: Iterable[StudentViolationSummary],
                   by: str = "violations") -> List[StudentViolationSummary]:
    """Order summaries for review, most urgent first."""
    if by not in SUMMARY_SORTS:
        raise ValueError(f"Unknown summary sort: {by}")
    if by == "violations":
        key = lambda s: s.unresolved_violations
    elif by == "time":
        key = lambda s: s.last_violation_time
    else:
        key = lambda s: s.risk_level.rank
    return sorted(summaries, key=key, reverse=True)
