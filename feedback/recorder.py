"""
Feedback recorder: hit counters, false-positive reports and config issues.

Write-only from the decision path's point of view. record_hit() and the
invalid-config hooks only touch memory; the background flush thread hands
hit counts to the catalog store and persists reports.
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import config
from catalog.patterns import PatternEntry, hash_identifier, normalize_identifier
from core.errors import InvalidPatternError, InvalidScheduleError
from core.storage import atomic_write_json, load_json
from schedule.rules import ScheduleRule

logger = logging.getLogger(__name__)

HitSink = Callable[[Dict[int, int]], bool]


class ReportStatus(Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESOLVED = "resolved"


@dataclass
class FalsePositiveReport:
    """A user's claim that a blocked site or app should not be blocked."""

    id: int
    url_hash: str
    original_url: str
    reason: str
    reported_at: float
    status: ReportStatus = ReportStatus.PENDING
    app_package: Optional[str] = None
    resolved_at: Optional[float] = None
    resolution_notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url_hash": self.url_hash,
            "original_url": self.original_url,
            "reason": self.reason,
            "reported_at": self.reported_at,
            "status": self.status.value,
            "app_package": self.app_package,
            "resolved_at": self.resolved_at,
            "resolution_notes": self.resolution_notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FalsePositiveReport":
        return cls(
            id=int(data["id"]),
            url_hash=data["url_hash"],
            original_url=data.get("original_url", ""),
            reason=data.get("reason", ""),
            reported_at=float(data["reported_at"]),
            status=ReportStatus(data.get("status", "pending")),
            app_package=data.get("app_package"),
            resolved_at=data.get("resolved_at"),
            resolution_notes=data.get("resolution_notes"),
        )


@dataclass
class ConfigIssue:
    """A malformed catalog pattern or schedule rule seen at runtime."""

    kind: str  # "pattern" or "schedule"
    ref_id: Any
    detail: str
    reason: str
    first_seen: float
    occurrences: int = 1

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.kind, str(self.ref_id), self.reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "ref_id": self.ref_id,
            "detail": self.detail,
            "reason": self.reason,
            "first_seen": self.first_seen,
            "occurrences": self.occurrences,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigIssue":
        return cls(
            kind=data["kind"],
            ref_id=data.get("ref_id"),
            detail=data.get("detail", ""),
            reason=data.get("reason", ""),
            first_seen=float(data.get("first_seen", 0.0)),
            occurrences=int(data.get("occurrences", 1)),
        )


class FeedbackRecorder:
    """
    Collects hits and reports without ever blocking a decision.

    Hit counts are commutative, so they are batched in memory and applied
    to the hit sink (normally CatalogStore.apply_hit_counts) on flush().
    """

    def __init__(
        self,
        feedback_path: Path,
        hit_sink: Optional[HitSink] = None,
        flush_interval: float = config.HIT_FLUSH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the recorder.

        Args:
            feedback_path: JSON file for reports and config issues
            hit_sink: Receives {entry_id: hits}; returns True when stored
            flush_interval: Seconds between background flushes
            clock: Time source for report timestamps
        """
        self.feedback_path = feedback_path
        self.hit_sink = hit_sink
        self.flush_interval = flush_interval
        self.clock = clock

        self._hit_lock = threading.Lock()
        self._pending_hits: Counter = Counter()

        # Reports; may be held while the file is first read
        self._lock = threading.RLock()
        self._reports: Optional[Dict[int, FalsePositiveReport]] = None

        # Config issues are reported from the decision path: never held during I/O
        self._issue_lock = threading.Lock()
        self._issues: Dict[Tuple[str, str, str], ConfigIssue] = {}
        self._dirty = False

        # Serializes file writes
        self._save_lock = threading.Lock()

        self.should_stop = threading.Event()
        self._flush_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Hit counters
    # ------------------------------------------------------------------

    def record_hit(self, entry_id: int) -> None:
        """Count a catalog hit. O(1), no I/O."""
        with self._hit_lock:
            self._pending_hits[entry_id] += 1

    def pending_hits(self) -> Dict[int, int]:
        with self._hit_lock:
            return dict(self._pending_hits)

    def flush(self) -> int:
        """
        Hand pending hit counts to the sink and persist dirty reports.

        Counts the sink fails to store are kept for the next flush.

        Returns:
            Number of entries whose counts were delivered
        """
        with self._hit_lock:
            batch = dict(self._pending_hits)
            self._pending_hits.clear()

        delivered = 0
        if batch and self.hit_sink is not None:
            try:
                stored = self.hit_sink(batch)
            except Exception as e:
                logger.error(f"Hit sink error: {e}")
                stored = False
            if stored:
                delivered = len(batch)
                logger.debug(f"Flushed hit counts for {delivered} entries")
            else:
                with self._hit_lock:
                    self._pending_hits.update(batch)
        elif batch:
            # Nowhere to deliver; keep counting
            with self._hit_lock:
                self._pending_hits.update(batch)

        with self._issue_lock:
            dirty = self._dirty
        if dirty:
            self.save()
        return delivered

    def start(self) -> None:
        """Start the background flush thread."""
        if self._flush_thread is not None and self._flush_thread.is_alive():
            return
        self.should_stop.clear()
        self._flush_thread = threading.Thread(target=self._flush_loop, name="feedback-flush", daemon=True)
        self._flush_thread.start()

    def stop(self) -> None:
        """Stop the flush thread and flush what is left."""
        self.should_stop.set()
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=2.0)
            if self._flush_thread.is_alive():
                logger.warning("Feedback flush thread did not stop within timeout")
        self._flush_thread = None
        self.flush()

    def _flush_loop(self) -> None:
        while not self.should_stop.wait(self.flush_interval):
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Feedback flush error: {e}")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Dict[int, FalsePositiveReport]:
        with self._lock:
            if self._reports is not None:
                return self._reports

            data = load_json(self.feedback_path, {})
            if not isinstance(data, dict):
                logger.warning(f"Invalid feedback file {self.feedback_path}, starting empty")
                data = {}

            reports: Dict[int, FalsePositiveReport] = {}
            for row in data.get("reports", []):
                try:
                    report = FalsePositiveReport.from_dict(row)
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Skipping unreadable report row: {e}")
                    continue
                reports[report.id] = report

            stored_issues = []
            for row in data.get("config_issues", []):
                try:
                    stored_issues.append(ConfigIssue.from_dict(row))
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Skipping unreadable config issue: {e}")

            with self._issue_lock:
                for issue in stored_issues:
                    existing = self._issues.get(issue.key)
                    if existing is not None:
                        existing.occurrences += issue.occurrences
                        existing.first_seen = min(existing.first_seen, issue.first_seen)
                    else:
                        self._issues[issue.key] = issue

            self._reports = reports
            return reports

    def save(self) -> bool:
        """
        Save reports and config issues atomically.

        The data is copied under the in-memory locks and written after
        they are released.

        Returns:
            True if saved successfully, False otherwise
        """
        with self._save_lock:
            with self._lock:
                reports = self._load()
                report_rows = [r.to_dict() for r in sorted(reports.values(), key=lambda r: r.id)]
            with self._issue_lock:
                issue_rows = [i.to_dict() for i in self._issues.values()]
                self._dirty = False

            data = {"reports": report_rows, "config_issues": issue_rows}
            saved = atomic_write_json(self.feedback_path, data, prefix="feedback_")
            if not saved:
                with self._issue_lock:
                    self._dirty = True
        return saved

    # ------------------------------------------------------------------
    # False-positive reports
    # ------------------------------------------------------------------

    def report_false_positive(
        self,
        url: str,
        reason: str,
        app_package: Optional[str] = None,
    ) -> FalsePositiveReport:
        """
        Record that a blocked site or app looks wrongly blocked.

        Args:
            url: URL or identifier the user was blocked on
            reason: User-supplied reason
            app_package: App the block happened in, if any

        Returns:
            The stored report (status PENDING)
        """
        identifier = normalize_identifier(url) or url
        with self._lock:
            reports = self._load()
            report = FalsePositiveReport(
                id=max(reports.keys(), default=0) + 1,
                url_hash=hash_identifier(identifier),
                original_url=url,
                reason=reason,
                reported_at=self.clock(),
                app_package=app_package,
            )
            reports[report.id] = report
        logger.info(f"False positive reported for {identifier} (report {report.id})")
        self.save()
        return report

    def resolve_report(self, report_id: int, status: ReportStatus, notes: Optional[str] = None) -> bool:
        """
        Move a report to a new status.

        Returns:
            False if no such report exists
        """
        with self._lock:
            report = self._load().get(report_id)
            if report is None:
                return False
            report.status = status
            report.resolved_at = self.clock()
            report.resolution_notes = notes
        logger.info(f"Report {report_id} marked {status.value}")
        self.save()
        return True

    def get_report(self, report_id: int) -> Optional[FalsePositiveReport]:
        with self._lock:
            return self._load().get(report_id)

    def get_reports_by_status(self, status: ReportStatus) -> List[FalsePositiveReport]:
        """Reports with the given status, newest first."""
        with self._lock:
            reports = [r for r in self._load().values() if r.status == status]
        return sorted(reports, key=lambda r: r.reported_at, reverse=True)

    def get_report_count_for_url(self, url: str) -> int:
        url_hash = hash_identifier(normalize_identifier(url) or url)
        with self._lock:
            return sum(1 for r in self._load().values() if r.url_hash == url_hash)

    def get_frequently_reported(self, min_reports: int = 3, since: Optional[float] = None) -> List[Tuple[str, int]]:
        """
        URL hashes reported at least min_reports times.

        Args:
            min_reports: Minimum number of reports
            since: Only count reports at or after this timestamp

        Returns:
            (url_hash, count) pairs, most reported first
        """
        with self._lock:
            counts = Counter(
                r.url_hash for r in self._load().values()
                if since is None or r.reported_at >= since
            )
        frequent = [(h, n) for h, n in counts.items() if n >= min_reports]
        return sorted(frequent, key=lambda item: item[1], reverse=True)

    def get_status_counts(self) -> Dict[ReportStatus, int]:
        with self._lock:
            return dict(Counter(r.status for r in self._load().values()))

    def delete_old_reports(self, older_than: float) -> int:
        """Delete reports filed before the given timestamp. Returns the count removed."""
        with self._lock:
            reports = self._load()
            old = [rid for rid, r in reports.items() if r.reported_at < older_than]
            for rid in old:
                del reports[rid]
        if old:
            logger.info(f"Deleted {len(old)} old false-positive reports")
            self.save()
        return len(old)

    # ------------------------------------------------------------------
    # Configuration problems
    # ------------------------------------------------------------------

    def _record_issue(self, issue: ConfigIssue) -> None:
        with self._issue_lock:
            existing = self._issues.get(issue.key)
            if existing is not None:
                existing.occurrences += 1
                return
            self._issues[issue.key] = issue
            self._dirty = True
        logger.warning(f"Invalid {issue.kind} {issue.ref_id} ({issue.detail}): {issue.reason}")

    def report_invalid_pattern(self, entry: PatternEntry, error: InvalidPatternError) -> None:
        """Record a catalog regex that failed to compile (in memory; saved on flush)."""
        self._record_issue(ConfigIssue(
            kind="pattern",
            ref_id=entry.id,
            detail=entry.pattern,
            reason=error.reason,
            first_seen=self.clock(),
        ))

    def report_invalid_schedule(self, rule: ScheduleRule, error: InvalidScheduleError) -> None:
        """Record a malformed schedule rule (in memory; saved on flush)."""
        self._record_issue(ConfigIssue(
            kind="schedule",
            ref_id=rule.id,
            detail=rule.name or rule.schedule_type.value,
            reason=error.reason,
            first_seen=self.clock(),
        ))

    def config_issues(self, kind: Optional[str] = None) -> List[ConfigIssue]:
        self._load()
        with self._issue_lock:
            issues = list(self._issues.values())
        if kind is not None:
            issues = [i for i in issues if i.kind == kind]
        return sorted(issues, key=lambda i: i.first_seen)
