from .alert import Alert, AlertSeverity
from .monitoring import (
    ActionOutcome,
    ConnectionInfo,
    ConnectionMode,
    ConnectionStatus,
    MonitorSnapshot,
    MonitoringStats,
    Notice,
    NoticeKind,
)
from .session import LiveSession, Progress, SessionStatus, SessionView
from .violation import RiskLevel, StudentViolationSummary, ViolationLevel, ViolationRecord

__all__ = [
    "Alert",
    "AlertSeverity",
    "ActionOutcome",
    "ConnectionInfo",
    "ConnectionMode",
    "ConnectionStatus",
    "MonitorSnapshot",
    "MonitoringStats",
    "Notice",
    "NoticeKind",
    "LiveSession",
    "Progress",
    "SessionStatus",
    "SessionView",
    "RiskLevel",
    "StudentViolationSummary",
    "ViolationLevel",
    "ViolationRecord",
]
