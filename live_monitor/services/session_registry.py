"""Session registry: the reconciled, in-memory view of live exam sessions.

Events arrive in arrival order, not origination order, may be duplicated, and
a reconnect can give the same logical attempt a new session id. The rules
below keep at most one entry per (student_id, exam_id):

- a created event for a known id merges without regressing progress;
- a created event for a known pair under a new id replaces the stale entry;
- an updated event is authoritative for the fields it carries, and an
  explicit zero is a value, not a missing field;
- a terminal status removes the session.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..api.schemas import SessionCreated, SessionEventPayload, SessionUpdated
from ..models.session import LiveSession, Progress, SessionStatus
from ..utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

SessionListener = Callable[[Tuple[LiveSession, ...]], None]

_RETAINED_STATUSES = {status.value: status for status in SessionStatus}


def _retained_status(status: Optional[str]) -> Optional[SessionStatus]:
    if status is None:
        return None
    if status not in _RETAINED_STATUSES:
        logger.debug(f"[SESSION] unknown status ignored: {status}")
        return None
    return _RETAINED_STATUSES[status]


def _scalar_updates(event: SessionEventPayload) -> Dict[str, object]:
    """Fields the event carries explicitly, progress excluded."""
    fields = {
        "student_id": event.student_id,
        "student_name": event.student_name,
        "exam_id": event.exam_id,
        "exam_title": event.exam_title,
        "start_time": ensure_utc(event.start_time),
        "duration_minutes": event.duration_minutes,
        "status": _retained_status(event.status),
        "violation_count": event.violation_count,
        "ip_address": event.ip_address,
    }
    return {key: value for key, value in fields.items() if value is not None}


def _synthetic_id(event: SessionEventPayload) -> str:
    return f"{event.student_id}-{event.exam_id}"


def session_from_event(event: SessionEventPayload, session_id: Optional[str] = None) -> LiveSession:
    """Build a fresh session from an event; absent progress starts at zero."""
    fields = _scalar_updates(event)
    fields["id"] = session_id or event.session_id or _synthetic_id(event)
    fields["progress"] = Progress(
        current=event.current_question if event.current_question is not None else 0,
        total=event.total_questions if event.total_questions is not None else 0,
    )
    if "status" not in fields and event.time_remaining is not None and event.time_remaining <= 0:
        fields["status"] = SessionStatus.COMPLETED
    return LiveSession(**fields)


class SessionRegistry:
    """Owns the live session collection.

    All mutations are expected to come from a single writer (the event
    bridge's queue consumer). Readers only ever receive tuples of immutable
    sessions.
    """

    def __init__(self):
        self._sessions: List[LiveSession] = []
        self._listeners: List[SessionListener] = []

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get(self, session_id: str) -> Optional[LiveSession]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def find_by_key(self, key: Optional[Tuple[str, str]]) -> Optional[LiveSession]:
        if key is None:
            return None
        for session in self._sessions:
            if session.key == key:
                return session
        return None

    def _match(self, event: SessionEventPayload) -> Optional[LiveSession]:
        match = self.get(event.session_id) if event.session_id else None
        return match or self.find_by_key(event.key)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def apply(self, event: SessionEventPayload) -> bool:
        """Apply one session event. Returns True when the view changed."""
        if isinstance(event, SessionCreated):
            return self.apply_created(event)
        if isinstance(event, SessionUpdated):
            return self.apply_updated(event)
        logger.warning(f"[DROPPED] not a session event: {type(event).__name__}")
        return False

    def apply_created(self, event: SessionEventPayload) -> bool:
        if not event.is_identifiable:
            logger.warning(f"[DROPPED] session_created without id or student/exam pair: {event}")
            return False

        if event.is_terminal:
            return self._remove_matching(event)

        session_id = event.session_id
        if session_id is None:
            by_key = self.find_by_key(event.key)
            session_id = by_key.id if by_key else _synthetic_id(event)

        existing = self.get(session_id)
        if existing is None:
            self._put(session_from_event(event, session_id))
            logger.info(f"[SESSION] added {session_id}")
            return True

        incoming = event.current_question
        progress = Progress(
            current=existing.progress.current if incoming is None else max(existing.progress.current, incoming),
            total=event.total_questions if event.total_questions is not None else existing.progress.total,
        )
        merged = existing.model_copy(update={**_scalar_updates(event), "progress": progress})
        if merged == existing and self._is_unique(merged):
            return False
        self._put(merged, replace_id=existing.id)
        logger.debug(f"[SESSION] merged created event into {session_id} (progress {progress.current}/{progress.total})")
        return True

    def apply_updated(self, event: SessionEventPayload) -> bool:
        if not event.is_identifiable:
            logger.warning(f"[DROPPED] session_updated without id or student/exam pair: {event}")
            return False

        if event.is_terminal:
            return self._remove_matching(event)

        match = self._match(event)
        if match is None:
            self._put(session_from_event(event))
            logger.info(f"[SESSION] added {event.session_id or _synthetic_id(event)} from update")
            return True

        progress = Progress(
            current=event.current_question if event.current_question is not None else match.progress.current,
            total=event.total_questions if event.total_questions is not None else match.progress.total,
        )
        fields = {**_scalar_updates(event), "progress": progress}
        if event.session_id:
            # A match by pair adopts the id of the newer connection
            fields["id"] = event.session_id
        updated = match.model_copy(update=fields)
        if updated == match and self._is_unique(updated):
            return False
        self._put(updated, replace_id=match.id)
        return True

    def remove(self, session_id: str) -> bool:
        before = len(self._sessions)
        self._sessions = [session for session in self._sessions if session.id != session_id]
        if len(self._sessions) == before:
            return False
        logger.info(f"[REMOVED] {session_id}")
        self._notify()
        return True

    def replace_all(self, events: List[SessionEventPayload]) -> None:
        """Replace the whole view with a full snapshot.

        Terminal and unidentifiable entries are skipped; a later entry for
        the same (student_id, exam_id) replaces an earlier one.
        """
        sessions: List[LiveSession] = []
        for event in events:
            if not event.is_identifiable:
                logger.warning(f"[DROPPED] snapshot session without id or student/exam pair: {event}")
                continue
            if event.is_terminal:
                continue
            session = session_from_event(event)
            sessions = [
                kept for kept in sessions
                if kept.id != session.id and (session.key is None or kept.key != session.key)
            ]
            sessions.append(session)
        self._sessions = sessions
        self._notify()

    def _remove_matching(self, event: SessionEventPayload) -> bool:
        """Drop every entry the terminal event refers to, by id or by pair."""
        match = self._match(event)
        doomed = {match.id} if match else set()
        if event.session_id:
            doomed.add(event.session_id)
        key = event.key
        before = len(self._sessions)
        self._sessions = [
            session for session in self._sessions
            if session.id not in doomed and (key is None or session.key != key)
        ]
        if len(self._sessions) == before:
            return False
        logger.info(f"[REMOVED] {event.session_id or _synthetic_id(event)} ({event.status})")
        self._notify()
        return True

    def _is_unique(self, session: LiveSession) -> bool:
        return all(
            other.id == session.id or session.key is None or other.key != session.key
            for other in self._sessions
        )

    def _put(self, session: LiveSession, replace_id: Optional[str] = None) -> None:
        """Store ``session``, evicting entries with its id, its pair, or
        ``replace_id``. A replaced entry keeps its position; new ones go first."""
        position = None
        kept = []
        for other in self._sessions:
            stale = (
                other.id == session.id
                or other.id == replace_id
                or (session.key is not None and other.key == session.key)
            )
            if stale:
                if other.id in (session.id, replace_id) and position is None:
                    position = len(kept)
                elif other.id not in (session.id, replace_id):
                    logger.info(f"[DEDUP] dropped {other.id}, superseded by {session.id}")
                continue
            kept.append(other)
        kept.insert(position if position is not None else 0, session)
        self._sessions = kept
        self._notify()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def query(self, exam_id: Optional[str] = None) -> Tuple[LiveSession, ...]:
        """Stable snapshot of the current sessions, optionally for one exam."""
        if exam_id is None or exam_id == "all":
            return tuple(self._sessions)
        return tuple(session for session in self._sessions if session.exam_id == str(exam_id))

    def stats(self, exam_id: Optional[str] = None) -> Dict[str, int]:
        sessions = self.query(exam_id)
        return {
            "total_sessions": len(sessions),
            "active_sessions": sum(1 for s in sessions if s.status == SessionStatus.ACTIVE),
            "flagged_sessions": sum(1 for s in sessions if s.status == SessionStatus.FLAGGED),
        }

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every change."""
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
                logger.error(f"[SESSION] listener failed: {e}", exc_info=True)
