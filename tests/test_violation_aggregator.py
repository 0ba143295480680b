import unittest
from datetime import datetime, timedelta, timezone

from live_monitor.models.violation import RiskLevel, ViolationLevel, ViolationRecord, parse_violations
from live_monitor.services.violation_aggregator import (
    filter_summaries,
    group_by_student_exam,
    sort_summaries,
    summarize,
)

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def record(id, student="S1", exam="E1", type="tab_switch", minutes=0, resolved=False, level="warn"):
    return ViolationRecord(id=id, student_id=student, exam_id=exam, type=type,
                           timestamp=T0 + timedelta(minutes=minutes), resolved=resolved, level=level)


class TestSummarize(unittest.TestCase):

    def test_five_unresolved_medium_is_auto_flagged(self):
        summary = summarize([record(f"v{i}", minutes=i) for i in range(5)])

        self.assertEqual(summary.unresolved_violations, 5)
        self.assertEqual(summary.risk_level, RiskLevel.MEDIUM)
        self.assertTrue(summary.auto_flagged)

    def test_critical_is_auto_flagged(self):
        summary = summarize([record("v1", level="error")])

        self.assertEqual(summary.risk_level, RiskLevel.CRITICAL)
        self.assertTrue(summary.auto_flagged)

    def test_counts_times_and_types(self):
        summary = summarize([
            record("v1", type="tab_switch", minutes=5),
            record("v2", type="copy_paste", minutes=1, resolved=True),
            record("v3", type="tab_switch", minutes=9),
        ])

        self.assertEqual(summary.total_violations, 3)
        self.assertEqual(summary.resolved_violations, 1)
        self.assertEqual(summary.unresolved_violations, 2)
        self.assertEqual(summary.first_violation_time, T0 + timedelta(minutes=1))
        self.assertEqual(summary.last_violation_time, T0 + timedelta(minutes=9))
        self.assertEqual(summary.violation_types, ["tab_switch", "copy_paste"])
        self.assertEqual([v.id for v in summary.violations], ["v3", "v1", "v2"])
        self.assertEqual([v.id for v in summary.unresolved()], ["v3", "v1"])
        self.assertFalse(summary.auto_flagged)


class TestGrouping(unittest.TestCase):

    def setUp(self):
        self.summaries = group_by_student_exam([
            record("a1", student="S1", minutes=1),
            record("b1", student="S2", minutes=8, type="dev_tools", level="error"),
            record("a2", student="S1", minutes=2, resolved=True),
            record("c1", student="S1", exam="E2", minutes=3),
        ])

    def test_groups_by_student_and_exam_in_first_seen_order(self):
        self.assertEqual([s.key for s in self.summaries], [("S1", "E1"), ("S2", "E1"), ("S1", "E2")])
        self.assertEqual(self.summaries[0].total_violations, 2)

    def test_filter_by_status_and_risk(self):
        self.assertEqual(len(filter_summaries(self.summaries, "unresolved")), 3)
        self.assertEqual([s.key for s in filter_summaries(self.summaries, "auto-flagged")], [("S2", "E1")])
        self.assertEqual([s.key for s in filter_summaries(self.summaries, risk="Critical")], [("S2", "E1")])
        self.assertEqual(filter_summaries(self.summaries, "resolved"), [])

    def test_unknown_filter_raises(self):
        with self.assertRaises(ValueError):
            filter_summaries(self.summaries, "pending")

    def test_sorts(self):
        self.assertEqual(sort_summaries(self.summaries, "time")[0].key, ("S2", "E1"))
        self.assertEqual(sort_summaries(self.summaries, "risk")[0].key, ("S2", "E1"))
        with self.assertRaises(ValueError):
            sort_summaries(self.summaries, "name")


class TestServerShape(unittest.TestCase):

    def test_nested_details_are_flattened(self):
        records = parse_violations([{
            "_id": 42,
            "userId": 7,
            "userName": "Ana",
            "type": "copy_paste",
            "level": "warn",
            "message": "Copy detected",
            "timestamp": "2024-05-01T09:10:00Z",
            "details": {"examId": 3, "examTitle": "Algebra", "sessionId": "sess-1"},
        }])

        record = records[0]
        self.assertEqual(record.id, "42")
        self.assertEqual(record.student_id, "7")
        self.assertEqual(record.exam_id, "3")
        self.assertEqual(record.exam_title, "Algebra")
        self.assertEqual(record.session_id, "sess-1")
        self.assertFalse(record.resolved)

    def test_invalid_rows_are_skipped(self):
        records = parse_violations([
            {"id": "ok", "userId": "S1", "timestamp": "2024-05-01T09:10:00Z"},
            {"id": "bad", "userId": "S1", "timestamp": "not a date"},
        ])

        self.assertEqual([r.id for r in records], ["ok"])

    def test_server_log_levels_are_mapped(self):
        rows = [
            {"id": "w1", "userId": "S1", "level": "warn", "timestamp": "2024-05-01T09:10:00Z",
             "details": {"examId": "E1"}},
            {"id": "w2", "userId": "S1", "level": "warn", "timestamp": "2024-05-01T09:11:00Z",
             "details": {"examId": "E1"}},
            {"id": "f1", "userId": "S1", "level": "fatal", "timestamp": "2024-05-01T09:12:00Z",
             "details": {"examId": "E1"}},
        ]

        records = parse_violations(rows)
        summary = summarize(records)

        self.assertEqual(len(records), 3)
        self.assertEqual(records[2].level, ViolationLevel.ERROR)
        self.assertEqual(summary.total_violations, 3)
        self.assertEqual(summary.risk_level, RiskLevel.CRITICAL)

    def test_debug_and_unknown_levels_count_as_info(self):
        records = parse_violations([
            {"id": "d1", "userId": "S1", "level": "debug", "timestamp": "2024-05-01T09:10:00Z"},
            {"id": "t1", "userId": "S1", "level": "TRACE", "timestamp": "2024-05-01T09:11:00Z"},
            {"id": "w1", "userId": "S1", "level": "WARNING", "timestamp": "2024-05-01T09:12:00Z"},
        ])

        self.assertEqual([r.level for r in records],
                         [ViolationLevel.INFO, ViolationLevel.INFO, ViolationLevel.WARN])


if __name__ == '__main__':
    unittest.main()
