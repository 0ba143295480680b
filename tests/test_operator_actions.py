import unittest
from unittest.mock import AsyncMock, MagicMock, call

from live_monitor.exceptions import InvalidCommandError, MonitoringApiError
from live_monitor.models.monitoring import NoticeKind
from live_monitor.models.violation import ViolationRecord
from live_monitor.services.notices import NoticeBoard
from live_monitor.services.operator_actions import OperatorActions
from live_monitor.services.violation_aggregator import summarize


def make_api():
    api = MagicMock()
    for name in ("resolve_alert", "flag_session", "invalidate_session", "apply_penalty", "grant_retake",
                 "delete_violation"):
        setattr(api, name, AsyncMock(return_value=None))
    return api


def summary(student="S1", session="sess-1", resolved=(False, True, False)):
    return summarize([
        ViolationRecord(id=f"{student}-v{i}", student_id=student, exam_id="E1", session_id=session,
                        type="tab_switch", resolved=flag)
        for i, flag in enumerate(resolved)
    ])


class TestOperatorActions(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.api = make_api()
        self.notices = NoticeBoard()
        self.confirmed = AsyncMock()
        self.actions = OperatorActions(self.api, self.notices, on_confirmed=self.confirmed)

    async def test_successful_command_triggers_confirmation(self):
        outcome = await self.actions.flag_session("sess-1", "Phone on desk")

        self.assertTrue(outcome.success)
        self.api.flag_session.assert_awaited_once_with("sess-1", "Phone on desk")
        self.confirmed.assert_awaited_once_with("flag_session")
        self.assertEqual(len(self.notices), 0)

    async def test_failed_command_raises_notice_without_confirmation(self):
        self.api.resolve_alert.side_effect = MonitoringApiError("server unavailable", 503)

        outcome = await self.actions.resolve_alert("x1")

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "server unavailable")
        self.confirmed.assert_not_awaited()
        notice = self.notices.list()[0]
        self.assertEqual(notice.kind, NoticeKind.ACTION_FAILED)
        self.assertIn("x1", notice.message)

    async def test_penalty_out_of_range_is_rejected_before_sending(self):
        with self.assertRaises(InvalidCommandError):
            await self.actions.apply_penalty("sess-1", 150)
        with self.assertRaises(InvalidCommandError):
            await self.actions.apply_penalty("sess-1", -1)
        self.api.apply_penalty.assert_not_awaited()

        outcome = await self.actions.apply_penalty("sess-1", 100)
        self.assertTrue(outcome.success)

    async def test_retake_needs_positive_attempts(self):
        with self.assertRaises(InvalidCommandError):
            await self.actions.grant_retake("sess-1", max_attempts=0)

        await self.actions.grant_retake("sess-1")
        self.api.grant_retake.assert_awaited_once_with("sess-1", None)

    async def test_invalidate_has_default_reason(self):
        await self.actions.invalidate_session("sess-1")

        self.api.invalidate_session.assert_awaited_once_with("sess-1", "Admin invalidated from dashboard")

    async def test_resolve_summary_resolves_only_unresolved(self):
        outcome = await self.actions.resolve_summary(summary())

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.target, "S1/E1")
        resolved = sorted(c.args[0] for c in self.api.resolve_alert.await_args_list)
        self.assertEqual(resolved, ["S1-v0", "S1-v2"])
        self.confirmed.assert_awaited_once_with("resolve_violations")

    async def test_bulk_actions(self):
        summaries = [summary("S1", "sess-1"), summary("S2", "sess-2")]

        outcomes = await self.actions.bulk("penalty", summaries, penalty_pct=10)

        self.assertTrue(all(o.success for o in outcomes))
        self.api.apply_penalty.assert_has_awaits([call("sess-1", 10), call("sess-2", 10)])

        with self.assertRaises(InvalidCommandError):
            await self.actions.bulk("penalty", summaries)
        with self.assertRaises(InvalidCommandError):
            await self.actions.bulk("penalty", summaries, penalty_pct=150)
        with self.assertRaises(InvalidCommandError):
            await self.actions.bulk("archive", summaries)
        self.assertEqual(self.api.apply_penalty.await_count, 2)

    async def test_delete_violation(self):
        outcome = await self.actions.delete_violation("v9")

        self.assertTrue(outcome.success)
        self.api.delete_violation.assert_awaited_once_with("v9")
        self.confirmed.assert_awaited_once_with("delete_violation")

    async def test_delete_summary_deletes_resolved_too(self):
        outcome = await self.actions.delete_summary(summary())

        self.assertTrue(outcome.success)
        deleted = sorted(c.args[0] for c in self.api.delete_violation.await_args_list)
        self.assertEqual(deleted, ["S1-v0", "S1-v1", "S1-v2"])
        self.confirmed.assert_awaited_once_with("delete_violations")

    async def test_bulk_delete(self):
        outcomes = await self.actions.bulk("delete", [summary("S1"), summary("S2", resolved=(True,))])

        self.assertEqual([o.target for o in outcomes], ["S1/E1", "S2/E1"])
        self.assertEqual(self.api.delete_violation.await_count, 4)

    async def test_failed_delete_stops_and_raises_notice(self):
        self.api.delete_violation.side_effect = [None, MonitoringApiError("not found", 404)]

        outcome = await self.actions.delete_summary(summary())

        self.assertFalse(outcome.success)
        self.assertEqual(self.api.delete_violation.await_count, 2)
        self.assertEqual(self.notices.list()[0].kind, NoticeKind.ACTION_FAILED)
        self.confirmed.assert_not_awaited()

    async def test_dispatch_runs_in_background(self):
        task = self.actions.dispatch(self.actions.resolve_alert("x1"))

        await self.actions.wait_pending()

        self.assertTrue(task.done())
        self.assertTrue(task.result().success)


if __name__ == '__main__':
    unittest.main()
