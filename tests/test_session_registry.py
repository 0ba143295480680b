import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from live_monitor.api.schemas import SessionCreated, SessionUpdated
from live_monitor.models.session import SessionStatus
from live_monitor.services.session_registry import SessionRegistry


def created(**fields):
    return SessionCreated.model_validate(fields)


def updated(**fields):
    return SessionUpdated.model_validate(fields)


class TestSessionRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = SessionRegistry()

    def test_created_event_adds_session(self):
        changed = self.registry.apply(created(sessionId="A", userId="S1", examId="E1",
                                              userName="Ana", currentQuestion=2, totalQuestions=10))

        self.assertTrue(changed)
        session = self.registry.get("A")
        self.assertEqual(session.student_name, "Ana")
        self.assertEqual(session.progress.current, 2)
        self.assertEqual(session.progress.total, 10)
        self.assertEqual(session.status, SessionStatus.ACTIVE)

    def test_duplicate_created_event_is_idempotent(self):
        event = created(sessionId="A", userId="S1", examId="E1", currentQuestion=4, totalQuestions=10)
        self.registry.apply(event)
        before = self.registry.query()

        changed = self.registry.apply(event)

        self.assertFalse(changed)
        self.assertEqual(self.registry.query(), before)

    def test_replayed_created_event_does_not_regress_progress(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", currentQuestion=3, totalQuestions=10))
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", currentQuestion=0, totalQuestions=10))

        self.assertEqual(self.registry.get("A").progress.current, 3)

    def test_update_with_explicit_zero_overwrites(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", currentQuestion=4))
        self.registry.apply(updated(sessionId="A", currentQuestion=0, violationCount=0))

        session = self.registry.get("A")
        self.assertEqual(session.progress.current, 0)
        self.assertEqual(session.violation_count, 0)

    def test_update_without_field_leaves_it_unchanged(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1",
                                    currentQuestion=4, totalQuestions=10, violationCount=2))
        self.registry.apply(updated(sessionId="A", status="flagged"))

        session = self.registry.get("A")
        self.assertEqual(session.status, SessionStatus.FLAGGED)
        self.assertEqual(session.progress.current, 4)
        self.assertEqual(session.violation_count, 2)

    def test_end_to_end_reconnect_keeps_one_entry_per_pair(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", currentQuestion=0, totalQuestions=10))
        self.registry.apply(updated(sessionId="A", currentQuestion=0, totalQuestions=10))
        self.registry.apply(updated(sessionId="A", currentQuestion=3, totalQuestions=10))
        self.registry.apply(created(sessionId="B", userId="S1", examId="E1", currentQuestion=0, totalQuestions=10))

        sessions = self.registry.query()
        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].id, "B")
        self.assertEqual(sessions[0].progress.current, 0)
        self.assertEqual(sessions[0].progress.total, 10)

    def test_update_matched_by_pair_adopts_new_id(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", currentQuestion=2))
        self.registry.apply(updated(sessionId="B", userId="S1", examId="E1", currentQuestion=5))

        self.assertIsNone(self.registry.get("A"))
        self.assertEqual(self.registry.get("B").progress.current, 5)
        self.assertEqual(len(self.registry), 1)

    def test_remove_evicts_by_id(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1"))

        self.assertTrue(self.registry.remove("A"))
        self.assertFalse(self.registry.remove("A"))
        self.assertEqual(len(self.registry), 0)

    def test_update_for_unknown_session_creates_it(self):
        changed = self.registry.apply(updated(sessionId="C", userId="S2", examId="E1", currentQuestion=1))

        self.assertTrue(changed)
        self.assertEqual(self.registry.get("C").progress.current, 1)

    def test_created_without_id_gets_pair_id(self):
        self.registry.apply(created(userId="S1", examId="E1"))

        self.assertEqual(self.registry.query()[0].id, "S1-E1")

    def test_terminal_status_removes_session(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1"))
        self.registry.apply(created(sessionId="X", userId="S2", examId="E1"))

        changed = self.registry.apply(updated(sessionId="A", status="submitted"))

        self.assertTrue(changed)
        self.assertIsNone(self.registry.get("A"))
        self.assertIsNotNone(self.registry.get("X"))

    def test_terminal_created_event_does_not_resurrect(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", status="expired"))

        self.assertEqual(len(self.registry), 0)

    def test_unidentifiable_event_is_dropped(self):
        changed = self.registry.apply(created(userName="Nobody", currentQuestion=3))

        self.assertFalse(changed)
        self.assertEqual(len(self.registry), 0)

    def test_zero_time_remaining_without_status_is_completed(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", timeRemaining=0))

        self.assertEqual(self.registry.get("A").status, SessionStatus.COMPLETED)

    def test_start_time_is_timezone_aware(self):
        self.registry.apply(updated(sessionId="A", userId="S1", examId="E1",
                                    startTime="2024-05-01T09:00:00"))

        self.assertEqual(self.registry.get("A").start_time,
                         datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))

    def test_replace_all_keeps_latest_entry_per_pair(self):
        self.registry.apply(created(sessionId="OLD", userId="S9", examId="E9"))

        self.registry.replace_all([
            created(sessionId="A", userId="S1", examId="E1", currentQuestion=1),
            created(sessionId="B", userId="S1", examId="E1", currentQuestion=2),
            created(sessionId="C", userId="S2", examId="E1", status="abandoned"),
            created(userName="no id"),
        ])

        sessions = self.registry.query()
        self.assertEqual([s.id for s in sessions], ["B"])

    def test_query_and_stats_by_exam(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1"))
        self.registry.apply(created(sessionId="B", userId="S2", examId="E1", status="flagged"))
        self.registry.apply(created(sessionId="C", userId="S3", examId="E2"))

        self.assertEqual(len(self.registry.query("E1")), 2)
        self.assertEqual(len(self.registry.query("all")), 3)
        self.assertEqual(self.registry.stats("E1"),
                         {"total_sessions": 2, "active_sessions": 1, "flagged_sessions": 1})

    def test_subscribers_receive_snapshots_until_unsubscribed(self):
        listener = MagicMock()
        unsubscribe = self.registry.subscribe(listener)

        self.registry.apply(created(sessionId="A", userId="S1", examId="E1"))
        unsubscribe()
        self.registry.apply(created(sessionId="B", userId="S2", examId="E1"))

        listener.assert_called_once()
        self.assertEqual([s.id for s in listener.call_args[0][0]], ["A"])

    def test_failing_listener_does_not_block_others(self):
        broken = MagicMock(side_effect=RuntimeError("boom"))
        listener = MagicMock()
        self.registry.subscribe(broken)
        self.registry.subscribe(listener)

        self.registry.apply(created(sessionId="A", userId="S1", examId="E1"))

        listener.assert_called_once()

    def test_snapshot_is_not_affected_by_later_changes(self):
        self.registry.apply(created(sessionId="A", userId="S1", examId="E1", currentQuestion=1))
        snapshot = self.registry.query()

        self.registry.apply(updated(sessionId="A", currentQuestion=7))

        self.assertEqual(snapshot[0].progress.current, 1)
        self.assertEqual(self.registry.get("A").progress.current, 7)


if __name__ == '__main__':
    unittest.main()
