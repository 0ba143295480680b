"""Socket.IO push channel carrying live session and alert events."""

import logging
from typing import Any, Awaitable, Callable, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from .. import config
from ..api.schemas import ALERT_CREATED, ALERT_RESOLVED, SESSION_CREATED, SESSION_UPDATED
from ..exceptions import PushChannelError

logger = logging.getLogger(__name__)

PUSH_EVENTS = (SESSION_CREATED, SESSION_UPDATED, ALERT_CREATED, ALERT_RESOLVED)

EventHandler = Callable[[str, Any], Awaitable[None]]
StateHandler = Callable[..., Awaitable[None]]


class PushChannel:
    """Wraps ``socketio.AsyncClient`` behind three callbacks.

    Once a connection has been established the Socket.IO client reconnects on
    its own; ``on_connected`` fires again after every successful reconnect.
    """

    def __init__(self, url: str = config.SERVER_URL, token: str = config.API_TOKEN,
                 exam_id: Optional[str] = config.EXAM_ID,
                 path: str = config.SOCKETIO_PATH,
                 client: Optional[socketio.AsyncClient] = None):
        self.url = url
        self.token = token
        self.exam_id = exam_id
        self.path = path
        self.on_event: Optional[EventHandler] = None
        self.on_connected: Optional[StateHandler] = None
        self.on_disconnected: Optional[StateHandler] = None

        self._sio = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=0,
            reconnection_delay=config.RECONNECT_DELAY_SECONDS,
            reconnection_delay_max=config.RECONNECT_DELAY_MAX_SECONDS,
        )
        self._sio.on("connect", self._handle_connect)
        self._sio.on("disconnect", self._handle_disconnect)
        self._sio.on("connect_error", self._handle_connect_error)
        for name in PUSH_EVENTS:
            self._sio.on(name, self._event_handler(name))

    def bind(self, on_event: EventHandler, on_connected: StateHandler,
             on_disconnected: StateHandler) -> None:
        self.on_event = on_event
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected

    async def connect(self) -> None:
        logger.info(f"[PUSH] connecting to {self.url}")
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            await self._sio.connect(
                self.url,
                headers=headers,
                auth={"token": self.token} if self.token else None,
                transports=["websocket", "polling"],
                socketio_path=self.path,
                wait_timeout=config.REQUEST_TIMEOUT_SECONDS,
            )
        except SocketIOConnectionError as e:
            raise PushChannelError(f"Could not connect to {self.url}: {e}") from e

    async def disconnect(self) -> None:
        await self._sio.disconnect()

    async def _handle_connect(self) -> None:
        logger.info(f"[CONNECTED] push channel {self._sio.sid}")
        await self._sio.emit("join_monitoring")
        if self.exam_id:
            await self._sio.emit("subscribe_exam", self.exam_id)
        if self.on_connected is not None:
            await self.on_connected()

    async def _handle_disconnect(self, *args: Any) -> None:
        reason = args[0] if args else None
        logger.warning(f"[DISCONNECTED] push channel: {reason}")
        if self.on_disconnected is not None:
            await self.on_disconnected(reason)

    async def _handle_connect_error(self, data: Any = None) -> None:
        logger.warning(f"[PUSH] connection error: {data}")

    def _event_handler(self, name: str) -> Callable[[Any], Awaitable[None]]:
        async def handler(payload: Any = None) -> None:
            logger.debug(f"[PUSH] {name}: {payload}")
            if self.on_event is not None:
                await self.on_event(name, payload)

        return handler
