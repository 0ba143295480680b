"""Transient live alerts, keyed by alert id."""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..api.schemas import AlertCreated, AlertResolved
from ..models.alert import Alert, AlertSeverity

logger = logging.getLogger(__name__)


class AlertBook:
    """Unresolved alerts that need live attention, newest first."""

    def __init__(self):
        self._alerts: Dict[str, Alert] = {}
        self._listeners: List[Callable[[Tuple[Alert, ...]], None]] = []

    def __len__(self) -> int:
        return len(self._alerts)

    def apply_created(self, event: AlertCreated) -> bool:
        alert = event.to_alert()
        if alert.resolved:
            return self._discard(alert.id)
        if self._alerts.get(alert.id) == alert:
            return False
        self._alerts[alert.id] = alert
        logger.info(f"[ALERT] {alert.severity.value} {alert.type} for session {alert.session_id}")
        self._notify()
        return True

    def apply_resolved(self, event: AlertResolved) -> bool:
        if not event.alert_id:
            logger.warning("[DROPPED] alert_resolved without an alert id")
            return False
        return self._discard(event.alert_id)

    def replace_all(self, events: List[AlertCreated]) -> None:
        alerts = [event.to_alert() for event in events]
        self._alerts = {alert.id: alert for alert in alerts if not alert.resolved}
        self._notify()

    def _discard(self, alert_id: str) -> bool:
        if self._alerts.pop(alert_id, None) is None:
            return False
        logger.info(f"[ALERT RESOLVED] {alert_id}")
        self._notify()
        return True

    def query(self, exam_id: Optional[str] = None, limit: Optional[int] = None) -> Tuple[Alert, ...]:
        alerts = sorted(self._alerts.values(), key=lambda a: a.timestamp, reverse=True)
        if exam_id is not None and exam_id != "all":
            alerts = [alert for alert in alerts if alert.exam_id == str(exam_id)]
        if limit is not None:
            alerts = alerts[:limit]
        return tuple(alerts)

    def stats(self, exam_id: Optional[str] = None) -> Dict[str, int]:
        alerts = self.query(exam_id)
        return {
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL),
        }

    def subscribe(self, listener: Callable[[Tuple[Alert, ...]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.query()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"[ALERT] listener failed: {e}", exc_info=True)
