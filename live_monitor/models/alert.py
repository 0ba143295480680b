"""Live alert model."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.time_utils import ensure_utc, utcnow
from .session import UNKNOWN_EXAM, UNKNOWN_STUDENT


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Alert(BaseModel):
    """A violation that currently needs live attention from an operator."""

    id: str
    session_id: str = ""
    student_id: Optional[str] = None
    student_name: str = UNKNOWN_STUDENT
    exam_id: str = ""
    exam_title: str = UNKNOWN_EXAM
    type: str = "violation"
    message: str = "Violation detected"
    severity: AlertSeverity = AlertSeverity.MEDIUM
    timestamp: datetime = Field(default_factory=utcnow)
    resolved: bool = False

    class Config:
        frozen = True

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)
