"""Monitor facade: wires the live state, the bridge, actions and the clock."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from .. import config
from ..clients.monitoring_api import MonitoringApiClient
from ..clients.push_channel import PushChannel
from ..exceptions import AuthExpiredError, MonitoringApiError
from ..models.alert import Alert
from ..models.monitoring import ConnectionInfo, MonitoringStats, MonitorSnapshot, NoticeKind
from ..models.session import SessionView
from ..models.violation import StudentViolationSummary, ViolationRecord
from ..utils.time_utils import utcnow
from .alert_book import AlertBook
from .event_bridge import EventBridge
from .notices import NoticeBoard
from .operator_actions import OperatorActions
from .session_registry import SessionRegistry
from .time_engine import SessionTimers
from .violation_aggregator import filter_summaries, group_by_student_exam, sort_summaries

logger = logging.getLogger(__name__)


class ViewSubscription:
    """A live view fed with the latest snapshot; older unread ones are dropped."""

    def __init__(self, exam_id: Optional[str] = None):
        self.exam_id = exam_id
        self._latest: "asyncio.Queue[MonitorSnapshot]" = asyncio.Queue(maxsize=1)

    def offer(self, snapshot: MonitorSnapshot) -> None:
        if self._latest.full():
            self._latest.get_nowait()
        self._latest.put_nowait(snapshot)

    async def get(self) -> MonitorSnapshot:
        return await self._latest.get()


class Monitor:
    def __init__(self, api: Optional[MonitoringApiClient] = None,
                 channel: Optional[PushChannel] = None,
                 exam_id: Optional[str] = config.EXAM_ID,
                 tick_seconds: float = config.TICK_SECONDS,
                 poll_interval: float = config.POLL_INTERVAL_SECONDS):
        self.api = api or MonitoringApiClient()
        self.channel = channel or PushChannel(exam_id=exam_id)
        self.exam_id = exam_id
        self.tick_seconds = tick_seconds

        self.registry = SessionRegistry()
        self.alerts = AlertBook()
        self.notices = NoticeBoard()
        self.timers = SessionTimers()
        self.bridge = EventBridge(self.registry, self.alerts, self.api, self.channel,
                                  notices=self.notices, poll_interval=poll_interval)
        self.actions = OperatorActions(self.api, self.notices, on_confirmed=self._after_action)

        self.violations: List[ViolationRecord] = []
        self._summaries: List[StudentViolationSummary] = []
        self._subscriptions: List[ViewSubscription] = []
        self._tick_task: Optional[asyncio.Task] = None
        self._unsubscribe = [
            self.registry.subscribe(lambda _: self._publish()),
            self.alerts.subscribe(lambda _: self._publish()),
        ]

    async def start(self) -> None:
        await self.bridge.start()
        await self.refresh_violations()
        self._tick_task = asyncio.create_task(self._tick())
        logger.info("[MONITOR] started")

    async def stop(self) -> None:
        if self._tick_task is not None:
            self._tick_task.cancel()
            await asyncio.gather(self._tick_task, return_exceptions=True)
            self._tick_task = None
        await self.actions.wait_pending()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._subscriptions.clear()
        await self.bridge.stop()
        await self.api.aclose()
        logger.info("[MONITOR] stopped")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def sessions_view(self, exam_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> List[SessionView]:
        """Sessions with remaining time recomputed at ``now``."""
        views = self.timers.view(self.registry.query(), now or utcnow())
        if exam_id is None or exam_id == "all":
            return views
        return [view for view in views if view.session.exam_id == str(exam_id)]

    def alerts_view(self, exam_id: Optional[str] = None, limit: Optional[int] = None) -> List[Alert]:
        return list(self.alerts.query(exam_id, limit))

    def stats(self, exam_id: Optional[str] = None) -> MonitoringStats:
        return MonitoringStats(**self.registry.stats(exam_id), **self.alerts.stats(exam_id))

    def connection(self) -> ConnectionInfo:
        return ConnectionInfo(
            mode=self.bridge.mode,
            status=self.bridge.status,
            polling_paused=self.bridge.polling_paused,
            last_update=self.bridge.last_update,
            error_count=self.bridge.error_count,
        )

    def snapshot(self, exam_id: Optional[str] = None, now: Optional[datetime] = None) -> MonitorSnapshot:
        now = now or utcnow()
        return MonitorSnapshot(
            sessions=self.sessions_view(exam_id, now),
            alerts=self.alerts_view(exam_id),
            stats=self.stats(exam_id),
            connection=self.connection(),
            timestamp=now,
        )

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------
    async def refresh_violations(self) -> List[StudentViolationSummary]:
        """Fetch violations and recompute the per-student summaries."""
        try:
            violations = await self.api.fetch_violations()
        except AuthExpiredError as e:
            self.notices.add(NoticeKind.AUTH_EXPIRED, f"Could not load violations: {e}")
            return self._summaries
        except MonitoringApiError as e:
            self.notices.add(NoticeKind.FETCH_FAILED, f"Could not load violations: {e}")
            return self._summaries
        self.violations = violations
        self._summaries = group_by_student_exam(violations)
        logger.info(f"[VIOLATIONS] {len(violations)} violations in {len(self._summaries)} summaries")
        return self._summaries

    def summaries(self, status: str = "all", risk: str = "all",
                  sort: str = "violations") -> List[StudentViolationSummary]:
        return sort_summaries(filter_summaries(self._summaries, status, risk), sort)

    def find_summary(self, student_id: str, exam_id: str) -> Optional[StudentViolationSummary]:
        for summary in self._summaries:
            if summary.key == (student_id, exam_id):
                return summary
        return None

    async def _after_action(self, action: str) -> None:
        # Confirmation comes from the server: re-read violations, and the
        # session snapshot too while push is down
        await self.refresh_violations()
        await self.bridge.refresh_now()

    # ------------------------------------------------------------------
    # Live subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, exam_id: Optional[str] = None) -> ViewSubscription:
        subscription = ViewSubscription(exam_id)
        self._subscriptions.append(subscription)
        subscription.offer(self.snapshot(exam_id))
        return subscription

    def unsubscribe(self, subscription: ViewSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _publish(self) -> None:
        if not self._subscriptions:
            return
        now = utcnow()
        for subscription in list(self._subscriptions):
            subscription.offer(self.snapshot(subscription.exam_id, now))

    async def _tick(self) -> None:
        # Only derived values are recomputed here; session state is untouched
        while True:
            await asyncio.sleep(self.tick_seconds)
            self._publish()
