"""Non-blocking, user-visible notices (auth expiry, failed commands)."""

import logging
from collections import deque
from typing import Deque, List

from ..config import NOTICE_HISTORY
from ..models.monitoring import Notice, NoticeKind

logger = logging.getLogger(__name__)


class NoticeBoard:
    """Keeps the most recent notices for the operator view."""

    def __init__(self, maxlen: int = NOTICE_HISTORY):
        self._notices: Deque[Notice] = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._notices)

    def add(self, kind: NoticeKind, message: str) -> Notice:
        notice = Notice(kind=kind, message=message)
        self._notices.append(notice)
        logger.warning(f"[NOTICE] {kind.value}: {message}")
        return notice

    def list(self) -> List[Notice]:
        """Newest first."""
        return list(reversed(self._notices))
