"""Operator commands sent to the exam server.

Local state is never changed when a command is dispatched. It changes only
when a later push event or refresh confirms the command, so a failed command
leaves the view untouched and surfaces a notice instead.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from .. import config
from ..clients.monitoring_api import MonitoringApiClient
from ..exceptions import InvalidCommandError, MonitoringApiError
from ..models.monitoring import ActionOutcome, NoticeKind
from ..models.violation import StudentViolationSummary
from .notices import NoticeBoard

logger = logging.getLogger(__name__)

BULK_ACTIONS = ("resolve", "invalidate", "penalty", "delete")


class OperatorActions:
    def __init__(self, api: MonitoringApiClient, notices: NoticeBoard,
                 on_confirmed: Optional[Callable[[str], Awaitable[None]]] = None):
        self.api = api
        self.notices = notices
        self.on_confirmed = on_confirmed
        self._pending: Set[asyncio.Task] = set()

    async def _execute(self, action: str, target: str,
                       call: Callable[[], Awaitable[None]]) -> ActionOutcome:
        try:
            await call()
        except MonitoringApiError as e:
            message = f"Failed to {action.replace('_', ' ')} {target}: {e}"
            logger.error(f"[ACTION FAILED] {message}")
            self.notices.add(NoticeKind.ACTION_FAILED, message)
            return ActionOutcome(action=action, target=target, success=False, error=str(e))

        logger.info(f"[ACTION] {action} {target}")
        if self.on_confirmed is not None:
            await self.on_confirmed(action)
        return ActionOutcome(action=action, target=target, success=True)

    def dispatch(self, outcome: Awaitable[ActionOutcome]) -> "asyncio.Task[ActionOutcome]":
        """Run a command in the background without blocking the caller."""
        task = asyncio.ensure_future(outcome)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_pending(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def resolve_alert(self, alert_id: str) -> ActionOutcome:
        return await self._execute("resolve_alert", alert_id, lambda: self.api.resolve_alert(alert_id))

    async def flag_session(self, session_id: str, reason: str) -> ActionOutcome:
        return await self._execute("flag_session", session_id,
                                   lambda: self.api.flag_session(session_id, reason))

    async def invalidate_session(self, session_id: str,
                                 reason: str = "Admin invalidated from dashboard") -> ActionOutcome:
        return await self._execute("invalidate_session", session_id,
                                   lambda: self.api.invalidate_session(session_id, reason))

    async def apply_penalty(self, session_id: str, penalty_pct: float) -> ActionOutcome:
        if not config.PENALTY_MIN <= penalty_pct <= config.PENALTY_MAX:
            raise InvalidCommandError(
                f"Penalty must be between {config.PENALTY_MIN} and {config.PENALTY_MAX}, got {penalty_pct}")
        return await self._execute("apply_penalty", session_id,
                                   lambda: self.api.apply_penalty(session_id, penalty_pct))

    async def grant_retake(self, session_id: str, max_attempts: Optional[int] = None) -> ActionOutcome:
        if max_attempts is not None and max_attempts < 1:
            raise InvalidCommandError(f"max_attempts must be positive, got {max_attempts}")
        return await self._execute("grant_retake", session_id,
                                   lambda: self.api.grant_retake(session_id, max_attempts))

    async def resolve_summary(self, summary: StudentViolationSummary) -> ActionOutcome:
        """Resolve every unresolved violation of one student in one exam.

        Stops at the first failure; violations resolved before it stay
        resolved on the server and show up on the next refresh.
        """
        target = f"{summary.student_id}/{summary.exam_id}"

        async def resolve_all() -> None:
            for violation in summary.unresolved():
                await self.api.resolve_alert(violation.id)

        return await self._execute("resolve_violations", target, resolve_all)

    async def delete_violation(self, violation_id: str) -> ActionOutcome:
        return await self._execute("delete_violation", violation_id,
                                   lambda: self.api.delete_violation(violation_id))

    async def delete_summary(self, summary: StudentViolationSummary) -> ActionOutcome:
        """Delete every violation of one student in one exam, resolved or not."""
        target = f"{summary.student_id}/{summary.exam_id}"

        async def delete_all() -> None:
            for violation in summary.violations:
                await self.api.delete_violation(violation.id)

        return await self._execute("delete_violations", target, delete_all)

    def check_bulk(self, action: str, penalty_pct: Optional[float] = None) -> None:
        """Reject a bulk request before any command is sent."""
        if action not in BULK_ACTIONS:
            raise InvalidCommandError(f"Unknown bulk action: {action}")
        if action == "penalty":
            if penalty_pct is None:
                raise InvalidCommandError("Bulk penalty needs a percentage")
            if not config.PENALTY_MIN <= penalty_pct <= config.PENALTY_MAX:
                raise InvalidCommandError(
                    f"Penalty must be between {config.PENALTY_MIN} and {config.PENALTY_MAX}, got {penalty_pct}")

    async def bulk(self, action: str, summaries: List[StudentViolationSummary],
                   reason: str = "Bulk admin action",
                   penalty_pct: Optional[float] = None) -> List[ActionOutcome]:
        self.check_bulk(action, penalty_pct)

        outcomes = []
        for summary in summaries:
            if action == "resolve":
                outcomes.append(await self.resolve_summary(summary))
            elif action == "invalidate":
                outcomes.append(await self.invalidate_session(summary.session_id, reason))
            elif action == "delete":
                outcomes.append(await self.delete_summary(summary))
            else:
                outcomes.append(await self.apply_penalty(summary.session_id, penalty_pct))
        return outcomes
