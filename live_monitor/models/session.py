"""Live session data models."""

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, field_validator

from ..utils.time_utils import ensure_utc

UNKNOWN_STUDENT = "Unknown Student"
UNKNOWN_EXAM = "Unknown Exam"
UNKNOWN_IP = "Unknown"


class SessionStatus(str, Enum):
    """Statuses a session can hold while it is retained in the view."""

    ACTIVE = "active"
    FLAGGED = "flagged"
    COMPLETED = "completed"


class Progress(BaseModel):
    """Question progress of one attempt."""

    current: int = 0
    total: int = 0

    class Config:
        frozen = True


class LiveSession(BaseModel):
    """One student's in-progress attempt at one exam.

    Instances are immutable; the registry replaces an entry with a merged
    copy whenever a later event touches it, so snapshots handed to readers
    never change underneath them.
    """

    id: str
    student_id: Optional[str] = None
    student_name: str = UNKNOWN_STUDENT
    exam_id: Optional[str] = None
    exam_title: str = UNKNOWN_EXAM
    start_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    status: SessionStatus = SessionStatus.ACTIVE
    violation_count: int = 0
    progress: Progress = Progress()
    ip_address: str = UNKNOWN_IP

    class Config:
        frozen = True

    @field_validator("start_time")
    @classmethod
    def _aware_start_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def key(self) -> Optional[Tuple[str, str]]:
        """The (student_id, exam_id) pair, or None when either is unknown."""
        if self.student_id is None or self.exam_id is None:
            return None
        return (self.student_id, self.exam_id)


class SessionView(BaseModel):
    """A session as shown on one display tick, with derived remaining time."""

    session: LiveSession
    time_remaining: int
    time_remaining_text: str
    authoritative: bool
