"""
Decides whether schedule rules put a block in effect at a given time.

Malformed rules fail open: they are treated as never-active and reported
through on_invalid rather than raised, since a broken schedule is a
configuration bug rather than a content risk.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from core.errors import InvalidScheduleError
from schedule.rules import ScheduleRule, ScheduleType, day_of_week

logger = logging.getLogger(__name__)

InvalidRuleHandler = Callable[[ScheduleRule, InvalidScheduleError], None]


def _check_valid(rule: ScheduleRule, on_invalid: Optional[InvalidRuleHandler]) -> bool:
    try:
        rule.validate()
        return True
    except InvalidScheduleError as e:
        logger.debug(f"Treating schedule {rule.id} as inactive: {e.reason}")
        if on_invalid:
            try:
                on_invalid(rule, e)
            except Exception as cb_error:
                logger.debug(f"on_invalid callback error: {cb_error}")
        return False


def _day_allowed(rule: ScheduleRule, day: int) -> bool:
    if rule.schedule_type == ScheduleType.RECURRING or rule.days_of_week:
        return day in (rule.days_of_week or ())
    return True


def _in_time_window(rule: ScheduleRule, now: datetime) -> bool:
    """
    Check the minute-of-day against the rule's window, then the day gate.

    The day gate always uses the day of `now`, including the early-morning
    part of a window that wraps midnight.
    """
    start = rule.start_minutes
    end = rule.end_minutes
    minute = now.hour * 60 + now.minute

    if start == end:
        return False

    if start < end:
        in_range = start <= minute < end
    else:
        # Wraps midnight
        in_range = minute >= start or minute < end
    return in_range and _day_allowed(rule, day_of_week(now.weekday()))


def duration_expiry(rule: ScheduleRule) -> Optional[datetime]:
    """When a duration rule stops blocking, or None if it was never applied."""
    if rule.last_applied_at is None or rule.duration_minutes is None:
        return None
    return datetime.fromtimestamp(rule.last_applied_at) + timedelta(minutes=rule.duration_minutes)


def is_blocked_now(
    rule: ScheduleRule,
    now: datetime,
    on_invalid: Optional[InvalidRuleHandler] = None,
) -> bool:
    """
    Check whether a single rule blocks its target at `now`.

    Args:
        rule: Schedule rule to evaluate.
        now: Local reference time.
        on_invalid: Called with (rule, error) when the rule is malformed.

    Returns:
        True if the rule is active and its window contains `now`.
    """
    if not rule.is_active:
        return False
    if not _check_valid(rule, on_invalid):
        return False

    if rule.schedule_type == ScheduleType.DURATION:
        started = datetime.fromtimestamp(rule.last_applied_at)
        return started <= now < duration_expiry(rule)

    return _in_time_window(rule, now)


def is_target_blocked(
    rules: Iterable[ScheduleRule],
    now: datetime,
    on_invalid: Optional[InvalidRuleHandler] = None,
) -> bool:
    """Any matching rule blocks the target."""
    return any(is_blocked_now(rule, now, on_invalid) for rule in rules)


def _window_boundaries(rule: ScheduleRule, now: datetime) -> List[datetime]:
    """
    Moments from yesterday through next week where the rule's blocked state flips.

    Candidates are each day's midnight, window start and window end; a
    candidate counts only if the state one minute before it differs.
    """
    if rule.start_minutes == rule.end_minutes:
        return []
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    boundaries = []
    for offset in range(-1, 9):
        day_start = midnight + timedelta(days=offset)
        for minutes in (0, rule.start_minutes, rule.end_minutes):
            candidate = day_start + timedelta(minutes=minutes)
            before = candidate - timedelta(minutes=1)
            if _in_time_window(rule, candidate) != _in_time_window(rule, before):
                boundaries.append(candidate)
    return boundaries


def next_transition(rule: ScheduleRule, now: datetime) -> Optional[datetime]:
    """
    Find the next moment the rule's blocked state changes.

    Returns:
        Expiry for a running duration rule, the window end while inside a
        window, the next window start otherwise; None for inactive,
        invalid or expired rules.
    """
    if not rule.is_active:
        return None
    try:
        rule.validate()
    except InvalidScheduleError:
        return None

    if rule.schedule_type == ScheduleType.DURATION:
        expiry = duration_expiry(rule)
        return expiry if now < expiry else None

    upcoming = [b for b in _window_boundaries(rule, now) if b > now]
    return min(upcoming) if upcoming else None
