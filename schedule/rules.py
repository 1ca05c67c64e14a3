"""Schedule rules that put a blocked app or site into effect at certain times."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from core.errors import InvalidScheduleError


class ScheduleType(Enum):
    DURATION = "duration"
    TIME_RANGE = "time_range"
    RECURRING = "recurring"


# Day numbering used by days_of_week: Sunday=0 ... Saturday=6
DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def day_of_week(weekday: int) -> int:
    """Convert Python's weekday() (Monday=0) to Sunday=0 numbering."""
    return (weekday + 1) % 7


@dataclass
class ScheduleRule:
    """
    A time window during which a target is blocked.

    Exactly one of app_package / site_domain_hash identifies the target.
    Time ranges are minute-precise, start inclusive and end exclusive, and
    wrap midnight when the start is after the end.
    """

    id: int
    schedule_type: ScheduleType
    app_package: Optional[str] = None
    site_domain_hash: Optional[str] = None
    duration_minutes: Optional[int] = None
    start_hour: Optional[int] = None
    start_minute: Optional[int] = None
    end_hour: Optional[int] = None
    end_minute: Optional[int] = None
    days_of_week: Optional[FrozenSet[int]] = None
    is_active: bool = True
    name: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    last_applied_at: Optional[float] = None
    next_scheduled_at: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.schedule_type, ScheduleType):
            self.schedule_type = ScheduleType(self.schedule_type)
        if self.days_of_week is not None:
            self.days_of_week = frozenset(int(d) for d in self.days_of_week)

    @property
    def target(self) -> Optional[str]:
        return self.app_package or self.site_domain_hash

    @property
    def start_minutes(self) -> int:
        """Minutes after midnight the window opens (validated rules only)."""
        return self.start_hour * 60 + (self.start_minute or 0)

    @property
    def end_minutes(self) -> int:
        return self.end_hour * 60 + (self.end_minute or 0)

    @property
    def wraps_midnight(self) -> bool:
        return self.start_minutes > self.end_minutes

    def validate(self) -> None:
        """
        Check that the rule's fields are consistent for its type.

        Raises:
            InvalidScheduleError: Describing the first problem found.
        """
        if bool(self.app_package) == bool(self.site_domain_hash):
            raise InvalidScheduleError(self.id, "exactly one of app_package or site_domain_hash must be set")

        if self.schedule_type == ScheduleType.DURATION:
            if self.duration_minutes is None or self.duration_minutes <= 0:
                raise InvalidScheduleError(self.id, "duration rule needs a positive duration_minutes")
            if self.last_applied_at is None:
                raise InvalidScheduleError(self.id, "duration rule has never been applied (no last_applied_at)")
            return

        if self.start_hour is None or self.end_hour is None:
            raise InvalidScheduleError(self.id, f"{self.schedule_type.value} rule needs start_hour and end_hour")
        for label, hour in (("start_hour", self.start_hour), ("end_hour", self.end_hour)):
            if not 0 <= hour <= 23:
                raise InvalidScheduleError(self.id, f"{label}={hour} outside 0-23")
        for label, minute in (("start_minute", self.start_minute), ("end_minute", self.end_minute)):
            if minute is not None and not 0 <= minute <= 59:
                raise InvalidScheduleError(self.id, f"{label}={minute} outside 0-59")

        if self.days_of_week is not None:
            bad = [d for d in self.days_of_week if not 0 <= d <= 6]
            if bad:
                raise InvalidScheduleError(self.id, f"days_of_week {sorted(bad)} outside 0-6")
        if self.schedule_type == ScheduleType.RECURRING and not self.days_of_week:
            raise InvalidScheduleError(self.id, "recurring rule needs at least one day in days_of_week")

    def describe(self) -> str:
        """Human-readable summary used as the default rule name."""
        if self.schedule_type == ScheduleType.DURATION:
            return f"Block for {self.duration_minutes} minutes"
        start = f"{self.start_hour or 0:02d}:{self.start_minute or 0:02d}"
        end = f"{self.end_hour or 0:02d}:{self.end_minute or 0:02d}"
        if self.days_of_week:
            days = ", ".join(DAY_NAMES[d] for d in sorted(self.days_of_week) if 0 <= d <= 6)
            return f"{start} - {end} ({days})"
        return f"{start} - {end} (Daily)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_type": self.schedule_type.value,
            "app_package": self.app_package,
            "site_domain_hash": self.site_domain_hash,
            "duration_minutes": self.duration_minutes,
            "start_hour": self.start_hour,
            "start_minute": self.start_minute,
            "end_hour": self.end_hour,
            "end_minute": self.end_minute,
            "days_of_week": sorted(self.days_of_week) if self.days_of_week is not None else None,
            "is_active": self.is_active,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_applied_at": self.last_applied_at,
            "next_scheduled_at": self.next_scheduled_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleRule":
        """
        Create a rule from a stored row.

        Field consistency is not checked here; invalid rows load fine and
        are treated as never-active by the evaluator.
        """
        days: Optional[Iterable[int]] = data.get("days_of_week")
        return cls(
            id=int(data["id"]),
            schedule_type=ScheduleType(data["schedule_type"]),
            app_package=data.get("app_package"),
            site_domain_hash=data.get("site_domain_hash"),
            duration_minutes=data.get("duration_minutes"),
            start_hour=data.get("start_hour"),
            start_minute=data.get("start_minute"),
            end_hour=data.get("end_hour"),
            end_minute=data.get("end_minute"),
            days_of_week=frozenset(days) if days is not None else None,
            is_active=bool(data.get("is_active", True)),
            name=data.get("name"),
            created_at=float(data.get("created_at", time.time())),
            updated_at=float(data.get("updated_at", time.time())),
            last_applied_at=data.get("last_applied_at"),
            next_scheduled_at=data.get("next_scheduled_at"),
        )
