"""
Error taxonomy for the blocking engine.

None of these escape the engine's public operations: pattern and schedule
errors are logged and reported, session conflicts come back as result
dicts, and stale decisions are dropped.
"""

from typing import Any, Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class InvalidPatternError(EngineError):
    """A catalog regex that fails to compile."""

    def __init__(self, pattern: str, reason: str, entry_id: Optional[int] = None):
        super().__init__(f"Invalid pattern '{pattern}': {reason}")
        self.pattern = pattern
        self.reason = reason
        self.entry_id = entry_id


class InvalidScheduleError(EngineError):
    """A schedule rule whose time fields are inconsistent."""

    def __init__(self, rule_id: Any, reason: str):
        super().__init__(f"Invalid schedule {rule_id}: {reason}")
        self.rule_id = rule_id
        self.reason = reason


class SessionConflictError(EngineError):
    """start() called while a reflection session already exists."""

    def __init__(self, active_session_id: str):
        super().__init__(f"Reflection session {active_session_id} is already active")
        self.active_session_id = active_session_id


class StaleDecisionError(EngineError):
    """A decision request tagged with an outdated generation token."""

    def __init__(self, generation: int, current: int):
        super().__init__(f"Generation {generation} is stale (current: {current})")
        self.generation = generation
        self.current = current
