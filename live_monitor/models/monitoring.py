"""Derived monitoring state: stats, connectivity, notices and action results."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..utils.time_utils import utcnow
from .alert import Alert
from .session import SessionView


class ConnectionMode(str, Enum):
    """Which channel is currently the source of truth."""

    PUSH_ACTIVE = "push_active"
    POLLING_FALLBACK = "polling_fallback"


class ConnectionStatus(str, Enum):
    """Connectivity indicator shown to operators."""

    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class NoticeKind(str, Enum):
    AUTH_EXPIRED = "auth_expired"
    ACTION_FAILED = "action_failed"
    FETCH_FAILED = "fetch_failed"


class Notice(BaseModel):
    """A non-blocking, user-visible message."""

    kind: NoticeKind
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class MonitoringStats(BaseModel):
    total_sessions: int = 0
    active_sessions: int = 0
    flagged_sessions: int = 0
    total_alerts: int = 0
    critical_alerts: int = 0


class ActionOutcome(BaseModel):
    """Result of one operator command sent to the exam server."""

    action: str
    target: str
    success: bool
    error: Optional[str] = None


class ConnectionInfo(BaseModel):
    mode: ConnectionMode
    status: ConnectionStatus
    polling_paused: bool = False
    last_update: Optional[datetime] = None
    error_count: int = 0


class MonitorSnapshot(BaseModel):
    """Everything a live operator view shows on one tick."""

    sessions: List[SessionView]
    alerts: List[Alert]
    stats: MonitoringStats
    connection: ConnectionInfo
    timestamp: datetime
