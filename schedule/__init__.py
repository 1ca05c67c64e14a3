"""
Schedule package: time windows that put a block into effect.
"""

from schedule.book import ScheduleBook
from schedule.evaluator import is_blocked_now, is_target_blocked, next_transition
from schedule.rules import ScheduleRule, ScheduleType

__all__ = [
    "ScheduleBook",
    "ScheduleRule",
    "ScheduleType",
    "is_blocked_now",
    "is_target_blocked",
    "next_transition",
]
