"""Violation records and the per-student summaries derived from them."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..utils.time_utils import ensure_utc, utcnow
from .session import UNKNOWN_EXAM, UNKNOWN_STUDENT

logger = logging.getLogger(__name__)

UNKNOWN_ID = "unknown"


class ViolationLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# Server log levels outside ViolationLevel
_LEVEL_ALIASES = {
    "fatal": ViolationLevel.ERROR,
    "critical": ViolationLevel.ERROR,
    "warning": ViolationLevel.WARN,
}


def _normalize_level(level: Any) -> Any:
    if level is None or isinstance(level, ViolationLevel):
        return level
    name = str(level).lower()
    if name in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[name]
    if name in ViolationLevel._value2member_map_:
        return ViolationLevel(name)
    return ViolationLevel.INFO


class RiskLevel(str, Enum):
    """Ordinal risk classification of a student's violation history."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}


class ViolationRecord(BaseModel):
    """A single detected anomaly during a session.

    The exam server reports violations as log entries whose exam and session
    references sit in a nested ``details`` object; both that shape and a flat
    one are accepted.
    """

    id: str
    student_id: str = UNKNOWN_ID
    student_name: str = UNKNOWN_STUDENT
    exam_id: str = UNKNOWN_ID
    exam_title: str = UNKNOWN_EXAM
    session_id: str = UNKNOWN_ID
    message: str = ""
    level: ViolationLevel = ViolationLevel.INFO
    type: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    resolved: bool = False

    class Config:
        extra = "ignore"

    @model_validator(mode="before")
    @classmethod
    def _flatten_server_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        details = data.get("details") or {}
        if not isinstance(details, dict):
            details = {}

        flat: Dict[str, Any] = {
            "id": data.get("id") or data.get("_id"),
            "student_id": data.get("student_id") or data.get("studentId") or data.get("userId"),
            "student_name": data.get("student_name") or data.get("studentName") or data.get("userName"),
            "exam_id": data.get("exam_id") or data.get("examId") or details.get("examId"),
            "exam_title": data.get("exam_title") or data.get("examTitle") or details.get("examTitle"),
            "session_id": data.get("session_id") or data.get("sessionId") or details.get("sessionId"),
            "message": data.get("message"),
            "level": _normalize_level(data.get("level")),
            "type": data.get("type"),
            "timestamp": data.get("timestamp"),
            "resolved": data.get("resolved"),
        }
        flat = {key: value for key, value in flat.items() if value is not None}
        for key in ("student_id", "exam_id", "session_id", "id"):
            if key in flat:
                flat[key] = str(flat[key])
        if "id" not in flat:
            # Server rows without an id are addressed by student and time
            flat["id"] = f"{flat.get('student_id', UNKNOWN_ID)}-{data.get('timestamp')}"
        return flat

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class StudentViolationSummary(BaseModel):
    """Violations of one student in one exam, with the derived risk level."""

    student_id: str
    student_name: str
    exam_id: str
    exam_title: str
    session_id: str
    total_violations: int
    resolved_violations: int
    unresolved_violations: int
    risk_level: RiskLevel
    first_violation_time: datetime
    last_violation_time: datetime
    violation_types: List[str]
    auto_flagged: bool
    violations: List[ViolationRecord] = []

    class Config:
        frozen = True

    @property
    def key(self) -> tuple:
        return (self.student_id, self.exam_id)

    def unresolved(self) -> List[ViolationRecord]:
        return [violation for violation in self.violations if not violation.resolved]


def parse_violations(rows: Optional[List[Dict[str, Any]]]) -> List[ViolationRecord]:
    """Validate raw violation rows, skipping the ones that cannot be parsed."""
    records = []
    for row in rows or []:
        try:
            records.append(ViolationRecord.model_validate(row))
        except ValidationError as e:
            logger.warning(f"[DROPPED] invalid violation row: {e}")
    return records
