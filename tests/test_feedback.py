"""
Tests for feedback/recorder.py: hit batching, reports and config issues.
"""

import sys
import tempfile
import threading
import time
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.categories import BlockingCategory
from catalog.patterns import PatternEntry, hash_identifier
from catalog.store import CatalogStore
from core.errors import InvalidPatternError, InvalidScheduleError
from core.storage import atomic_write_json
from feedback.recorder import FeedbackRecorder, ReportStatus
from schedule.evaluator import is_blocked_now
from schedule.rules import ScheduleRule, ScheduleType


class FeedbackTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.path = self.dir / "feedback.json"
        self.clock_value = 1_700_000_000.0
        self.recorder = FeedbackRecorder(self.path, clock=lambda: self.clock_value)

    def tearDown(self):
        self.recorder.stop()
        self._tmp.cleanup()


class TestHitCounters(FeedbackTestCase):

    def test_record_hit_batches_in_memory(self):
        for _ in range(3):
            self.recorder.record_hit(1)
        self.recorder.record_hit(2)
        self.assertEqual(self.recorder.pending_hits(), {1: 3, 2: 1})
        self.assertFalse(self.path.exists())

    def test_flush_delivers_to_sink(self):
        sink = MagicMock(return_value=True)
        self.recorder.hit_sink = sink
        self.recorder.record_hit(1)
        self.recorder.record_hit(1)
        self.assertEqual(self.recorder.flush(), 1)
        sink.assert_called_once_with({1: 2})
        self.assertEqual(self.recorder.pending_hits(), {})

    def test_failed_sink_keeps_counts(self):
        self.recorder.hit_sink = MagicMock(return_value=False)
        self.recorder.record_hit(1)
        self.recorder.flush()
        self.recorder.record_hit(1)
        self.assertEqual(self.recorder.pending_hits(), {1: 2})

    def test_sink_exception_keeps_counts(self):
        self.recorder.hit_sink = MagicMock(side_effect=OSError("disk full"))
        self.recorder.record_hit(4)
        self.assertEqual(self.recorder.flush(), 0)
        self.assertEqual(self.recorder.pending_hits(), {4: 1})

    def test_hits_reach_catalog_store(self):
        store = CatalogStore(self.dir / "catalog.json")
        entry = store.add_custom_site("casino.example", BlockingCategory.GAMBLING)
        self.recorder.hit_sink = store.apply_hit_counts
        for _ in range(5):
            self.recorder.record_hit(entry.id)
        self.recorder.flush()
        self.assertEqual(CatalogStore(self.dir / "catalog.json").get_entry(entry.id).block_count, 5)

    def test_background_flush(self):
        sink = MagicMock(return_value=True)
        recorder = FeedbackRecorder(self.path, hit_sink=sink, flush_interval=0.02)
        recorder.start()
        recorder.record_hit(9)
        deadline = time.time() + 2.0
        while not sink.called and time.time() < deadline:
            time.sleep(0.01)
        recorder.stop()
        sink.assert_called_with({9: 1})


class TestFalsePositiveReports(FeedbackTestCase):

    def test_report_is_pending_and_hashed(self):
        report = self.recorder.report_false_positive("https://www.Example.com/a", "school site")
        self.assertEqual(report.status, ReportStatus.PENDING)
        self.assertEqual(report.url_hash, hash_identifier("example.com"))
        self.assertEqual(report.reported_at, self.clock_value)

    def test_reports_persist(self):
        self.recorder.report_false_positive("example.com", "wrong", app_package="com.browser")
        reloaded = FeedbackRecorder(self.path)
        reports = reloaded.get_reports_by_status(ReportStatus.PENDING)
        self.assertEqual(len(reports), 1)
        self.assertEqual(reports[0].app_package, "com.browser")

    def test_resolve_report(self):
        report = self.recorder.report_false_positive("example.com", "wrong")
        self.assertTrue(self.recorder.resolve_report(report.id, ReportStatus.APPROVED, "unblocked"))
        self.assertFalse(self.recorder.resolve_report(999, ReportStatus.REJECTED))

        resolved = self.recorder.get_report(report.id)
        self.assertEqual(resolved.status, ReportStatus.APPROVED)
        self.assertEqual(resolved.resolution_notes, "unblocked")
        self.assertEqual(self.recorder.get_reports_by_status(ReportStatus.PENDING), [])

    def test_counts_and_frequent(self):
        for _ in range(3):
            self.recorder.report_false_positive("a.example", "x")
        self.recorder.report_false_positive("www.a.example/page", "x")
        self.recorder.report_false_positive("b.example", "x")

        self.assertEqual(self.recorder.get_report_count_for_url("https://a.example"), 4)
        frequent = self.recorder.get_frequently_reported(min_reports=2)
        self.assertEqual(frequent, [(hash_identifier("a.example"), 4)])
        self.assertEqual(self.recorder.get_status_counts(), {ReportStatus.PENDING: 5})

    def test_newest_first_and_delete_old(self):
        first = self.recorder.report_false_positive("a.example", "x")
        self.clock_value += 100
        second = self.recorder.report_false_positive("b.example", "x")
        ids = [r.id for r in self.recorder.get_reports_by_status(ReportStatus.PENDING)]
        self.assertEqual(ids, [second.id, first.id])

        self.assertEqual(self.recorder.delete_old_reports(self.clock_value), 1)
        self.assertIsNone(self.recorder.get_report(first.id))


class TestConfigIssues(FeedbackTestCase):

    def test_invalid_pattern_recorded_once(self):
        entry = PatternEntry(id=3, pattern="([", category=BlockingCategory.GAMBLING, is_regex=True)
        error = InvalidPatternError(entry.pattern, "missing )", entry_id=3)
        with self.assertLogs("feedback.recorder", level="WARNING"):
            self.recorder.report_invalid_pattern(entry, error)
        self.recorder.report_invalid_pattern(entry, error)

        issues = self.recorder.config_issues("pattern")
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].occurrences, 2)
        self.assertEqual(issues[0].ref_id, 3)

    def test_invalid_schedule_saved_on_flush(self):
        rule = ScheduleRule(id=8, schedule_type=ScheduleType.TIME_RANGE, app_package="com.x", start_hour=22)
        self.recorder.report_invalid_schedule(rule, InvalidScheduleError(8, "missing end_hour"))
        self.assertFalse(self.path.exists())

        self.recorder.flush()
        reloaded = FeedbackRecorder(self.path)
        issues = reloaded.config_issues("schedule")
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].reason, "missing end_hour")

    def test_reporting_not_blocked_by_slow_save(self):
        write_started = threading.Event()
        release_write = threading.Event()
        real_write = atomic_write_json

        def slow_write(path, data, prefix):
            write_started.set()
            release_write.wait(timeout=5.0)
            return real_write(path, data, prefix=prefix)

        first = ScheduleRule(id=1, schedule_type=ScheduleType.TIME_RANGE, app_package="com.a", start_hour=22)
        second = ScheduleRule(id=2, schedule_type=ScheduleType.TIME_RANGE, app_package="com.b", start_hour=22)
        self.recorder.report_invalid_schedule(first, InvalidScheduleError(1, "missing end_hour"))

        with patch("feedback.recorder.atomic_write_json", side_effect=slow_write):
            flusher = threading.Thread(target=self.recorder.flush)
            flusher.start()
            self.assertTrue(write_started.wait(timeout=2.0))

            # Decision path: evaluating a broken rule reports it while the save is stuck
            evaluating = threading.Thread(
                target=is_blocked_now,
                args=(second, datetime(2026, 3, 6, 23, 0), self.recorder.report_invalid_schedule),
            )
            evaluating.start()
            evaluating.join(timeout=1.0)
            still_blocked = evaluating.is_alive()

            release_write.set()
            flusher.join(timeout=5.0)
            evaluating.join(timeout=5.0)

        self.assertFalse(still_blocked)
        self.assertEqual({i.ref_id for i in self.recorder.config_issues("schedule")}, {1, 2})

        # The second issue arrived after the snapshot, so it is still pending a save
        self.recorder.flush()
        reloaded = FeedbackRecorder(self.path)
        self.assertEqual(len(reloaded.config_issues("schedule")), 2)


if __name__ == "__main__":
    unittest.main()
