"""Bridges the push channel and the REST snapshot to the live state.

The bridge is a two-state machine:

- ``PUSH_ACTIVE``: the push channel is connected and is the only source of
  truth. No polling runs, and a snapshot that arrives in this state is
  discarded, since a stale snapshot could regress reconciled progress or bring
  back a session that already finished.
- ``POLLING_FALLBACK``: the push channel is down; a full snapshot is fetched
  every ``poll_interval`` seconds until it reconnects.

Every mutation (push events and snapshots alike) goes through one queue with
one consumer, so events are applied strictly in arrival order.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from .. import config
from ..api.schemas import (
    AlertCreated,
    AlertResolved,
    Event,
    SessionCreated,
    SessionUpdated,
    SnapshotLoaded,
    parse_event,
    parse_snapshot,
)
from ..clients.monitoring_api import MonitoringApiClient
from ..clients.push_channel import PushChannel
from ..exceptions import AuthExpiredError, MonitoringApiError, PushChannelError
from ..models.monitoring import ConnectionMode, ConnectionStatus, NoticeKind
from ..utils.time_utils import utcnow
from .alert_book import AlertBook
from .notices import NoticeBoard
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)

CLIENT_DISCONNECT_REASONS = ("io client disconnect", "client disconnect")


class EventBridge:
    def __init__(self, registry: SessionRegistry, alerts: AlertBook,
                 api: MonitoringApiClient, channel: PushChannel,
                 notices: Optional[NoticeBoard] = None,
                 poll_interval: float = config.POLL_INTERVAL_SECONDS,
                 reconnect_delay: float = config.RECONNECT_DELAY_SECONDS,
                 reconnect_delay_max: float = config.RECONNECT_DELAY_MAX_SECONDS):
        self.registry = registry
        self.alerts = alerts
        self.api = api
        self.channel = channel
        self.notices = notices or NoticeBoard()
        self.poll_interval = poll_interval
        self.reconnect_delay = reconnect_delay
        self.reconnect_delay_max = reconnect_delay_max

        self.mode = ConnectionMode.POLLING_FALLBACK
        self.status = ConnectionStatus.DISCONNECTED
        self.polling_paused = False
        self.last_update: Optional[datetime] = None
        self.error_count = 0

        self._queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._poller: Optional[asyncio.Task] = None
        self._connector: Optional[asyncio.Task] = None
        self._auth_notice_raised = False
        self._started = False
        self._closed = False

        channel.bind(self._on_push_event, self._on_push_connected, self._on_push_disconnected)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Seed state with exactly one full fetch, then go push-driven."""
        if self._started:
            return
        self._started = True
        self._consumer = asyncio.create_task(self._consume())
        await self.refresh_now(seed=True)
        self._connector = asyncio.create_task(self._connect_push())

    async def stop(self) -> None:
        """Stop processing events and cancel timers and the subscription.

        Requests already in flight are not aborted; their results are
        ignored once the bridge is closed.
        """
        if self._closed:
            return
        self._closed = True
        tasks = [task for task in (self._poller, self._connector, self._consumer) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await self.channel.disconnect()
        except Exception as e:
            logger.warning(f"[BRIDGE] error while disconnecting push channel: {e}")
        self.status = ConnectionStatus.DISCONNECTED
        logger.info("[BRIDGE] stopped")

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    async def refresh_now(self, seed: bool = False) -> bool:
        """The single entry point for fetching a full snapshot.

        Returns True when a snapshot was queued for application.
        """
        if self._closed:
            return False
        if self.mode == ConnectionMode.PUSH_ACTIVE and not seed:
            logger.debug("[REFRESH] skipped, push channel is the source of truth")
            return False

        try:
            body = await self.api.fetch_snapshot()
        except AuthExpiredError as e:
            self._on_auth_expired(e)
            return False
        except MonitoringApiError as e:
            self.error_count += 1
            logger.error(f"[REFRESH] snapshot fetch failed: {e}")
            if self.mode == ConnectionMode.POLLING_FALLBACK:
                self.status = ConnectionStatus.DISCONNECTED
            return False

        if self._closed:
            return False
        self.error_count = 0
        await self._queue.put(parse_snapshot(body, seed=seed))
        return True

    def resume_polling(self, token: Optional[str] = None) -> None:
        """Re-arm polling after the credential was renewed."""
        if token:
            self.api.set_token(token)
            self.channel.token = token
        self.polling_paused = False
        self._auth_notice_raised = False
        if self.mode == ConnectionMode.POLLING_FALLBACK:
            self._start_polling()

    def _on_auth_expired(self, error: AuthExpiredError) -> None:
        self.polling_paused = True
        if self._poller is not None and self._poller is not asyncio.current_task():
            self._poller.cancel()
        if not self._auth_notice_raised:
            self._auth_notice_raised = True
            self.notices.add(NoticeKind.AUTH_EXPIRED,
                             f"Monitoring paused: credentials expired ({error}). Sign in again to resume.")

    # ------------------------------------------------------------------
    # Push channel callbacks
    # ------------------------------------------------------------------
    async def _on_push_event(self, name: str, payload: Any) -> None:
        if self._closed:
            return
        event = parse_event(name, payload)
        if event is not None:
            await self._queue.put(event)

    async def _on_push_connected(self) -> None:
        if self._closed:
            return
        self.mode = ConnectionMode.PUSH_ACTIVE
        self.status = ConnectionStatus.CONNECTED
        self._stop_polling()
        logger.info("[BRIDGE] push channel active, polling stopped")

    async def _on_push_disconnected(self, reason: Any = None) -> None:
        if self._closed:
            return
        self.mode = ConnectionMode.POLLING_FALLBACK
        if reason in CLIENT_DISCONNECT_REASONS:
            self.status = ConnectionStatus.DISCONNECTED
        else:
            self.status = ConnectionStatus.RECONNECTING
        self._start_polling()
        logger.info(f"[BRIDGE] push channel lost ({reason}), polling every {self.poll_interval}s")

    async def _connect_push(self) -> None:
        delay = self.reconnect_delay
        while not self._closed:
            try:
                await self.channel.connect()
                return
            except PushChannelError as e:
                logger.warning(f"[BRIDGE] {e}; retrying in {delay}s")
                if self.mode == ConnectionMode.POLLING_FALLBACK:
                    self.status = ConnectionStatus.RECONNECTING
                    self._start_polling()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.reconnect_delay_max)

    # ------------------------------------------------------------------
    # Polling fallback
    # ------------------------------------------------------------------
    def _start_polling(self) -> None:
        if self._closed or self.polling_paused:
            return
        if self._poller is not None and not self._poller.done():
            return
        self._poller = asyncio.create_task(self._poll())

    def _stop_polling(self) -> None:
        if self._poller is not None and not self._poller.done():
            self._poller.cancel()
        self._poller = None

    async def _poll(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            if self._closed or self.polling_paused or self.mode != ConnectionMode.POLLING_FALLBACK:
                return
            logger.info("[POLL] refreshing snapshot (push channel down)")
            await self.refresh_now()

    # ------------------------------------------------------------------
    # Single writer
    # ------------------------------------------------------------------
    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.apply(event)
            except Exception as e:
                logger.error(f"[BRIDGE] failed to apply {type(event).__name__}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def apply(self, event: Event) -> bool:
        """Route one event to the state it belongs to."""
        if isinstance(event, (SessionCreated, SessionUpdated)):
            changed = self.registry.apply(event)
        elif isinstance(event, AlertCreated):
            changed = self.alerts.apply_created(event)
        elif isinstance(event, AlertResolved):
            changed = self.alerts.apply_resolved(event)
        elif isinstance(event, SnapshotLoaded):
            if self.mode == ConnectionMode.PUSH_ACTIVE and not event.seed:
                logger.info("[POLL] discarded snapshot, push channel is active")
                return False
            self.registry.replace_all(event.sessions)
            self.alerts.replace_all(event.alerts)
            changed = True
        else:
            logger.warning(f"[DROPPED] unknown event {type(event).__name__}")
            return False
        if changed:
            self.last_update = utcnow()
        return changed
