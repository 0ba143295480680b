"""Inbound event shapes, validated before anything reaches the registry."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from ..config import TERMINAL_STATUSES
from ..models.alert import Alert, AlertSeverity

logger = logging.getLogger(__name__)

SESSION_CREATED = "live_session_created"
SESSION_UPDATED = "live_session_updated"
ALERT_CREATED = "alert_created"
ALERT_RESOLVED = "alert_resolved"


def _alias(*names: str) -> Any:
    return Field(default=None, validation_alias=AliasChoices(*names))


class SessionEventPayload(BaseModel):
    """Fields a session event may carry. Everything is optional; a missing
    field means "unchanged", which is different from an explicit zero."""

    session_id: Optional[str] = _alias("sessionId", "id", "session_id")
    student_id: Optional[str] = _alias("userId", "studentId", "student_id")
    student_name: Optional[str] = _alias("userName", "studentName", "student_name")
    exam_id: Optional[str] = _alias("examId", "exam_id")
    exam_title: Optional[str] = _alias("examTitle", "exam_title")
    start_time: Optional[datetime] = _alias("startTime", "start_time")
    duration_minutes: Optional[int] = _alias("examDuration", "durationMinutes", "duration_minutes")
    status: Optional[str] = _alias("status")
    violation_count: Optional[int] = _alias("violationCount", "violation_count")
    ip_address: Optional[str] = _alias("ipAddress", "ip_address")
    current_question: Optional[int] = _alias("currentQuestion", "progressCurrent", "current_question")
    total_questions: Optional[int] = _alias("totalQuestions", "progressTotal", "total_questions")
    time_remaining: Optional[float] = _alias("timeRemaining", "time_remaining")

    class Config:
        extra = "ignore"

    @model_validator(mode="before")
    @classmethod
    def _lift_progress(cls, data: Any) -> Any:
        # Snapshots may carry progress as a nested {current, total} object
        if isinstance(data, dict) and isinstance(data.get("progress"), dict):
            data = dict(data)
            progress = data.pop("progress")
            if data.get("currentQuestion") is None and progress.get("current") is not None:
                data["currentQuestion"] = progress["current"]
            if data.get("totalQuestions") is None and progress.get("total") is not None:
                data["totalQuestions"] = progress["total"]
        return data

    @field_validator("session_id", "student_id", "exam_id", mode="before")
    @classmethod
    def _ids_as_strings(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)

    @property
    def is_identifiable(self) -> bool:
        return bool(self.session_id) or (bool(self.student_id) and bool(self.exam_id))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def key(self) -> Optional[tuple]:
        if self.student_id and self.exam_id:
            return (self.student_id, self.exam_id)
        return None


class SessionCreated(SessionEventPayload):
    """A session was opened (or re-announced after a reconnect)."""


class SessionUpdated(SessionEventPayload):
    """Progress, status or counters of a session changed."""


class AlertCreated(BaseModel):
    alert_id: Optional[str] = _alias("id", "alertId", "_id")
    session_id: Optional[str] = _alias("sessionId", "session_id")
    student_id: Optional[str] = _alias("userId", "studentId", "student_id")
    student_name: Optional[str] = _alias("userName", "studentName", "student_name")
    exam_id: Optional[str] = _alias("examId", "exam_id")
    exam_title: Optional[str] = _alias("examTitle", "exam_title")
    type: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Union[str, Dict[str, Any], List[Any]]] = None
    severity: Optional[AlertSeverity] = None
    timestamp: Optional[datetime] = None
    resolved: bool = False

    class Config:
        extra = "ignore"

    @field_validator("alert_id", "session_id", "student_id", "exam_id", mode="before")
    @classmethod
    def _ids_as_strings(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)

    def derived_id(self) -> str:
        """Id for alerts sent without one; redelivery of the same event maps to the same id."""
        timestamp = self.timestamp.isoformat() if self.timestamp else ""
        source = "|".join([self.session_id or self.student_id or "", self.type or "", timestamp, self.message or ""])
        return f"alert-{uuid.uuid5(uuid.NAMESPACE_URL, source).hex}"

    def to_alert(self) -> Alert:
        """Build the alert model, filling defaults for missing fields."""
        fields: Dict[str, Any] = {
            "id": self.alert_id or self.derived_id(),
            "session_id": self.session_id,
            "student_id": self.student_id,
            "student_name": self.student_name,
            "exam_id": self.exam_id,
            "exam_title": self.exam_title,
            "type": self.type,
            "message": details_to_text(self.details) or self.message,
            "severity": self.severity,
            "timestamp": self.timestamp,
            "resolved": self.resolved,
        }
        return Alert(**{key: value for key, value in fields.items() if value is not None})


class AlertResolved(BaseModel):
    alert_id: Optional[str] = _alias("alertId", "id", "alert_id")

    class Config:
        extra = "ignore"

    @field_validator("alert_id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)


class SnapshotLoaded(BaseModel):
    """A full REST snapshot, applied through the same queue as push events."""

    sessions: List[SessionCreated] = []
    alerts: List[AlertCreated] = []
    seed: bool = False


Event = Union[SessionCreated, SessionUpdated, AlertCreated, AlertResolved, SnapshotLoaded]

_EVENT_TYPES = {
    SESSION_CREATED: SessionCreated,
    SESSION_UPDATED: SessionUpdated,
    ALERT_CREATED: AlertCreated,
    ALERT_RESOLVED: AlertResolved,
}


def details_to_text(details: Any) -> Optional[str]:
    """Render the server's violation details as readable text.

    Some servers serialise a string as an object keyed by character index
    ({"0": "T", "1": "a", ...}); those are joined back into the string.
    """
    if details is None:
        return None
    if isinstance(details, str):
        return details or None
    if isinstance(details, dict):
        keys = list(details.keys())
        if keys and all(str(key).isdigit() for key in keys):
            return "".join(str(details[key]) for key in sorted(keys, key=lambda k: int(k))) or None
        for field in ("message", "reason", "details"):
            if isinstance(details.get(field), str) and details[field]:
                return details[field]
        return None
    if isinstance(details, list):
        return " ".join(str(item) for item in details) or None
    return str(details)


def parse_event(name: str, payload: Any) -> Optional[Event]:
    """Validate one push event. Unknown names and bad payloads give None."""
    event_type = _EVENT_TYPES.get(name)
    if event_type is None:
        logger.debug(f"[PUSH] ignored event type: {name}")
        return None
    if not isinstance(payload, dict):
        logger.warning(f"[DROPPED] {name}: payload is not an object")
        return None
    try:
        return event_type.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"[DROPPED] {name} invalid message format: {e}")
        return None


def parse_snapshot(body: Any, seed: bool = False) -> SnapshotLoaded:
    """Turn a REST snapshot response into a SnapshotLoaded event.

    Accepts ``{"sessions": [...], "alerts": [...]}`` as well as the
    ``activeSessions`` key and a ``data`` wrapper. Entries that fail
    validation are skipped one by one.
    """
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        body = body["data"]
    if not isinstance(body, dict):
        logger.warning("[DROPPED] snapshot response is not an object")
        return SnapshotLoaded(seed=seed)

    sessions = []
    for row in body.get("activeSessions") or body.get("sessions") or []:
        try:
            sessions.append(SessionCreated.model_validate(row))
        except ValidationError as e:
            logger.warning(f"[DROPPED] snapshot session: {e}")

    alerts = []
    for row in body.get("alerts") or []:
        try:
            alert = AlertCreated.model_validate(row)
        except ValidationError as e:
            logger.warning(f"[DROPPED] snapshot alert: {e}")
            continue
        if not alert.resolved:
            alerts.append(alert)

    return SnapshotLoaded(sessions=sessions, alerts=alerts, seed=seed)


# ----------------------------------------------------------------------
# Operator requests
# ----------------------------------------------------------------------
class ResolveAlertRequest(BaseModel):
    alert_id: str = Field(validation_alias=AliasChoices("alert_id", "alertId"))


class FlagSessionRequest(BaseModel):
    session_id: str = Field(validation_alias=AliasChoices("session_id", "sessionId"))
    reason: str = "Flagged by proctor"


class InvalidateRequest(BaseModel):
    session_id: str = Field(validation_alias=AliasChoices("session_id", "sessionId"))
    reason: str = "Admin invalidated from dashboard"


class PenaltyRequest(BaseModel):
    session_id: str = Field(validation_alias=AliasChoices("session_id", "sessionId"))
    penalty_pct: float = Field(validation_alias=AliasChoices("penalty_pct", "penaltyPct"))


class RetakeRequest(BaseModel):
    session_id: str = Field(validation_alias=AliasChoices("session_id", "sessionId"))
    max_attempts: Optional[int] = Field(default=None, validation_alias=AliasChoices("max_attempts", "maxAttempts"))


class SummaryKey(BaseModel):
    """Addresses one student's violations in one exam."""
    student_id: str = Field(validation_alias=AliasChoices("student_id", "studentId"))
    exam_id: str = Field(validation_alias=AliasChoices("exam_id", "examId"))


class ResolveSummaryRequest(SummaryKey):
    pass


class DeleteSummaryRequest(SummaryKey):
    pass


class BulkActionRequest(BaseModel):
    action: str
    keys: List[SummaryKey]
    reason: str = "Bulk admin action"
    penalty_pct: Optional[float] = Field(default=None, validation_alias=AliasChoices("penalty_pct", "penaltyPct"))
    background: bool = False


class ResumePollingRequest(BaseModel):
    token: Optional[str] = None


class ReportRequest(BaseModel):
    status: str = "all"
    risk: str = "all"
    sort: str = "violations"
