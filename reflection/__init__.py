"""
Reflection package: the mandatory countdown behind blocking warnings.
"""

from reflection.session import (
    Language,
    ReflectionSession,
    ReflectionSessionManager,
    SessionState,
    WarningAction,
    WarningOutcome,
)
from reflection.ticker import ReflectionTicker

__all__ = [
    "Language",
    "ReflectionSession",
    "ReflectionSessionManager",
    "ReflectionTicker",
    "SessionState",
    "WarningAction",
    "WarningOutcome",
]
