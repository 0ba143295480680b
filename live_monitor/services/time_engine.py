"""Remaining-time computation from the authoritative session start time.

Remaining time is never stored as decrementing state. Every display tick
recomputes it from ``(start_time, duration)``, so a student and an operator
who began observing at different moments still see the same value.
"""

import math
from datetime import datetime
from typing import Dict, Hashable, Iterable, List, Optional

from ..config import DEFAULT_EXAM_DURATION_MINUTES
from ..models.session import LiveSession, SessionView
from ..utils.time_utils import ensure_utc

MS_PER_MINUTE = 60000


def remaining_minutes(now: datetime, start_time: datetime, duration_minutes: float) -> int:
    """Whole minutes left, rounded half up and never negative."""
    elapsed_ms = (ensure_utc(now) - ensure_utc(start_time)).total_seconds() * 1000
    remaining_ms = max(0.0, duration_minutes * MS_PER_MINUTE - elapsed_ms)
    return int(math.floor(remaining_ms / MS_PER_MINUTE + 0.5))


def format_time_remaining(minutes: int) -> str:
    if minutes <= 0:
        return "Time Up"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m" if hours > 0 else f"{mins}m"


class Countdown:
    """Remaining time as seen by one observer.

    Until the authoritative start time is known the countdown runs from the
    observer's own mount time. Once ``set_start_time`` is called that local
    seed is discarded for good.
    """

    def __init__(self, duration_minutes: Optional[float], mounted_at: datetime,
                 start_time: Optional[datetime] = None):
        self.duration_minutes = DEFAULT_EXAM_DURATION_MINUTES if duration_minutes is None else duration_minutes
        self._fallback_start: Optional[datetime] = ensure_utc(mounted_at)
        self.start_time: Optional[datetime] = None
        if start_time is not None:
            self.set_start_time(start_time)

    @property
    def authoritative(self) -> bool:
        return self.start_time is not None

    def set_start_time(self, start_time: datetime) -> None:
        self.start_time = ensure_utc(start_time)
        self._fallback_start = None

    def set_duration(self, duration_minutes: Optional[float]) -> None:
        if duration_minutes is not None:
            self.duration_minutes = duration_minutes

    def remaining(self, now: datetime) -> int:
        start = self.start_time if self.start_time is not None else self._fallback_start
        return remaining_minutes(now, start, self.duration_minutes)


class SessionTimers:
    """Per-session countdowns for the operator view.

    Countdowns are keyed by (student_id, exam_id) when known, so a reconnect
    that gives the attempt a new session id keeps its fallback seed.
    """

    def __init__(self, default_duration: float = DEFAULT_EXAM_DURATION_MINUTES):
        self.default_duration = default_duration
        self._countdowns: Dict[Hashable, Countdown] = {}

    def __len__(self) -> int:
        return len(self._countdowns)

    def view(self, sessions: Iterable[LiveSession], now: datetime) -> List[SessionView]:
        """Recompute remaining time for every session at ``now``."""
        views = []
        seen = set()
        for session in sessions:
            timer_key = session.key or session.id
            seen.add(timer_key)
            countdown = self._countdowns.get(timer_key)
            if countdown is None:
                duration = self.default_duration if session.duration_minutes is None else session.duration_minutes
                countdown = Countdown(duration, now)
                self._countdowns[timer_key] = countdown
            countdown.set_duration(session.duration_minutes)
            if session.start_time is not None and countdown.start_time != session.start_time:
                countdown.set_start_time(session.start_time)

            minutes = countdown.remaining(now)
            views.append(SessionView(
                session=session,
                time_remaining=minutes,
                time_remaining_text=format_time_remaining(minutes),
                authoritative=countdown.authoritative,
            ))

        # Forget sessions that left the registry
        for timer_key in list(self._countdowns):
            if timer_key not in seen:
                del self._countdowns[timer_key]
        return views
