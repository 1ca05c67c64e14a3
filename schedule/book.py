"""
ScheduleBook: creation, persistence and bookkeeping of schedule rules.

Rules are stored as JSON. Evaluation itself lives in schedule.evaluator;
the book only looks up which rules apply to a target and keeps duration
rules and next_scheduled_at up to date.
"""

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from catalog.patterns import hash_identifier, normalize_identifier
from core.storage import atomic_write_json, load_json
from schedule.evaluator import InvalidRuleHandler, is_target_blocked, next_transition
from schedule.rules import ScheduleRule, ScheduleType

logger = logging.getLogger(__name__)


class ScheduleBook:
    """
    Manages loading, saving and querying schedule rules.
    """

    def __init__(
        self,
        schedules_path: Path,
        now: Callable[[], datetime] = datetime.now,
        on_invalid: Optional[InvalidRuleHandler] = None,
    ):
        """
        Initialize the schedule book.

        Args:
            schedules_path: Path to the JSON schedules file
            now: Clock returning local time (injectable for tests)
            on_invalid: Called with (rule, error) for malformed rules
        """
        self.schedules_path = schedules_path
        self.now = now
        self.on_invalid = on_invalid
        self._rules: Optional[Dict[int, ScheduleRule]] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> List[ScheduleRule]:
        """
        Load rules from file. Unreadable rows are skipped with a warning.

        Returns:
            All stored rules (active and inactive)
        """
        with self._lock:
            if self._rules is not None:
                return list(self._rules.values())

            data = load_json(self.schedules_path, {"schedules": []})
            rows = data.get("schedules", []) if isinstance(data, dict) else []
            rules: Dict[int, ScheduleRule] = {}
            for row in rows:
                try:
                    rule = ScheduleRule.from_dict(row)
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Skipping unreadable schedule row {row!r}: {e}")
                    continue
                rules[rule.id] = rule
            self._rules = rules
            logger.debug(f"Loaded {len(rules)} schedules from {self.schedules_path}")
            return list(rules.values())

    def save(self) -> bool:
        """
        Save rules to file atomically.

        Returns:
            True if saved successfully, False otherwise
        """
        with self._lock:
            if self._rules is None:
                return False
            data = {"schedules": [r.to_dict() for r in sorted(self._rules.values(), key=lambda r: r.id)]}
            return atomic_write_json(self.schedules_path, data, prefix="schedules_")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def _target_fields(app_package: Optional[str], site: Optional[str]) -> Dict[str, Optional[str]]:
        site_hash = None
        if site:
            identifier = normalize_identifier(site)
            site_hash = hash_identifier(identifier) if identifier else None
        return {
            "app_package": app_package.strip().lower() if app_package else None,
            "site_domain_hash": site_hash,
        }

    def _add(self, rule: ScheduleRule) -> ScheduleRule:
        rule.validate()
        if not rule.name:
            rule.name = rule.describe()
        self.load()
        with self._lock:
            rule.id = max(self._rules.keys(), default=0) + 1
            rule.next_scheduled_at = self._next_timestamp(rule, self.now())
            self._rules[rule.id] = rule
        logger.info(f"Created schedule {rule.id}: {rule.name}")
        self.save()
        return rule

    def create_duration_schedule(
        self,
        duration_minutes: int,
        app_package: Optional[str] = None,
        site: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ScheduleRule:
        """
        Block a target for the next `duration_minutes`, starting now.

        Args:
            duration_minutes: Length of the block
            app_package: App package id to block (or)
            site: URL or hostname to block
            name: Optional display name

        Returns:
            The stored rule

        Raises:
            InvalidScheduleError: If the target or duration is invalid
        """
        rule = ScheduleRule(
            id=0,
            schedule_type=ScheduleType.DURATION,
            duration_minutes=duration_minutes,
            last_applied_at=self.now().timestamp(),
            name=name,
            **self._target_fields(app_package, site),
        )
        return self._add(rule)

    def create_time_range_schedule(
        self,
        start_hour: int,
        start_minute: int,
        end_hour: int,
        end_minute: int,
        app_package: Optional[str] = None,
        site: Optional[str] = None,
        days_of_week: Optional[Iterable[int]] = None,
        name: Optional[str] = None,
    ) -> ScheduleRule:
        """
        Block a target daily between two times (wrapping midnight if needed).

        Raises:
            InvalidScheduleError: If the target or time fields are invalid
        """
        rule = ScheduleRule(
            id=0,
            schedule_type=ScheduleType.TIME_RANGE,
            start_hour=start_hour,
            start_minute=start_minute,
            end_hour=end_hour,
            end_minute=end_minute,
            days_of_week=frozenset(days_of_week) if days_of_week else None,
            name=name,
            **self._target_fields(app_package, site),
        )
        return self._add(rule)

    def create_recurring_schedule(
        self,
        start_hour: int,
        start_minute: int,
        end_hour: int,
        end_minute: int,
        days_of_week: Iterable[int],
        app_package: Optional[str] = None,
        site: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ScheduleRule:
        """
        Block a target between two times on the given days (Sunday=0).

        Raises:
            InvalidScheduleError: If the target, times or days are invalid
        """
        rule = ScheduleRule(
            id=0,
            schedule_type=ScheduleType.RECURRING,
            start_hour=start_hour,
            start_minute=start_minute,
            end_hour=end_hour,
            end_minute=end_minute,
            days_of_week=frozenset(days_of_week),
            name=name,
            **self._target_fields(app_package, site),
        )
        return self._add(rule)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def remove_schedule(self, rule_id: int) -> bool:
        """Delete a rule. Returns False if it does not exist."""
        self.load()
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                return False
        logger.info(f"Removed schedule {rule_id}")
        self.save()
        return True

    def update_schedule_status(self, rule_id: int, is_active: bool) -> bool:
        """
        Enable or disable a rule.

        Re-enabling a duration rule restarts its countdown from now.

        Returns:
            True if the rule exists
        """
        self.load()
        now = self.now()
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return False
            rule.is_active = is_active
            rule.updated_at = time.time()
            if is_active and rule.schedule_type == ScheduleType.DURATION:
                rule.last_applied_at = now.timestamp()
            rule.next_scheduled_at = self._next_timestamp(rule, now)
        logger.info(f"Schedule {rule_id} {'enabled' if is_active else 'disabled'}")
        self.save()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_schedule(self, rule_id: int) -> Optional[ScheduleRule]:
        self.load()
        with self._lock:
            return self._rules.get(rule_id)

    def get_schedules_for_target(
        self,
        app_package: Optional[str] = None,
        site_domain_hashes: Iterable[str] = (),
    ) -> List[ScheduleRule]:
        """
        Rules targeting an app package or any of the given site hashes.

        Inactive rules are included; evaluation ignores them.
        """
        package = app_package.strip().lower() if app_package else None
        hashes = {h for h in site_domain_hashes if h}
        return [
            r for r in self.load()
            if (package and r.app_package == package)
            or (r.site_domain_hash and r.site_domain_hash in hashes)
        ]

    def rules_for_identifier(self, identifier: str, extra_hashes: Iterable[str] = ()) -> List[ScheduleRule]:
        """
        Rules that apply to a normalized identifier.

        The identifier is tried both as an app package and as a site (by
        hash); extra_hashes adds e.g. the domain_hash of a matched parent
        domain entry.
        """
        normalized = normalize_identifier(identifier)
        if not normalized:
            return []
        hashes = [hash_identifier(normalized), *extra_hashes]
        return self.get_schedules_for_target(app_package=normalized, site_domain_hashes=hashes)

    def get_active_schedules(self) -> List[ScheduleRule]:
        """Rules with is_active set, by id."""
        return sorted((r for r in self.load() if r.is_active), key=lambda r: r.id)

    def is_currently_blocked(
        self,
        app_package: Optional[str] = None,
        site: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Check whether any rule for the target blocks it right now."""
        hashes = []
        if site:
            identifier = normalize_identifier(site)
            if identifier:
                hashes.append(hash_identifier(identifier))
        rules = self.get_schedules_for_target(app_package=app_package, site_domain_hashes=hashes)
        return is_target_blocked(rules, now or self.now(), self.on_invalid)

    def get_next_scheduled_action(self, now: Optional[datetime] = None) -> Optional[Tuple[ScheduleRule, datetime]]:
        """
        Find the soonest upcoming state change among active rules.

        Returns:
            (rule, when) or None if nothing is scheduled
        """
        now = now or self.now()
        upcoming = []
        for rule in self.get_active_schedules():
            when = next_transition(rule, now)
            if when is not None:
                upcoming.append((when, rule.id, rule))
        if not upcoming:
            return None
        when, _, rule = min(upcoming)
        return rule, when

    def process_due(self, now: Optional[datetime] = None) -> List[ScheduleRule]:
        """
        Deactivate expired duration rules and refresh next_scheduled_at.

        Returns:
            Rules deactivated by this call
        """
        now = now or self.now()
        expired = []
        self.load()
        with self._lock:
            for rule in self._rules.values():
                if not rule.is_active:
                    continue
                if rule.schedule_type == ScheduleType.DURATION and next_transition(rule, now) is None:
                    rule.is_active = False
                    rule.updated_at = time.time()
                    expired.append(rule)
                rule.next_scheduled_at = self._next_timestamp(rule, now)

        for rule in expired:
            logger.info(f"Duration schedule {rule.id} expired")
        self.save()
        return expired

    @staticmethod
    def _next_timestamp(rule: ScheduleRule, now: datetime) -> Optional[float]:
        when = next_transition(rule, now)
        return when.timestamp() if when else None
