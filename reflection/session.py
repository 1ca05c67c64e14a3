"""
Reflection session state machine.

A warning that requires reflection opens one session with a countdown.
Continue is only honoured once the countdown reaches zero, and never for
categories of severity 4 or above. At most one session exists at a time:
a second start() is rejected so re-triggering a milder warning cannot
reset the timer.

States: idle -> active -> completable -> closed (back to idle once the
session is destroyed).
"""

import logging
import math
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import config
from catalog.categories import BlockingCategory
from core.errors import SessionConflictError
from reflection.ticker import ReflectionTicker

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETABLE = "completable"
    CLOSED = "closed"


class WarningAction(Enum):
    CLOSE = "close"
    CONTINUE = "continue"
    DISMISS = "dismiss"
    CHANGE_LANGUAGE = "change_language"


class WarningOutcome(Enum):
    CLOSE_CONTENT = "close_content"
    ALLOW_CONTENT = "allow_content"
    WAIT_FOR_REFLECTION = "wait_for_reflection"
    IGNORED = "ignored"
    UPDATE_LANGUAGE = "update_language"
    CONTINUE_UNAVAILABLE = "continue_unavailable"
    NO_SESSION = "no_session"


class Language(Enum):
    """Warning dialog display languages: (display_name, code, is_rtl)."""

    ENGLISH = ("English", "en", False)
    ARABIC = ("العربية", "ar", True)
    URDU = ("اردو", "ur", True)
    FRENCH = ("Français", "fr", False)
    INDONESIAN = ("Bahasa Indonesia", "id", False)
    TURKISH = ("Türkçe", "tr", False)
    MALAY = ("Bahasa Melayu", "ms", False)
    BENGALI = ("বাংলা", "bn", False)

    def __init__(self, display_name: str, code: str, is_rtl: bool):
        self.display_name = display_name
        self.code = code
        self.is_rtl = is_rtl

    @classmethod
    def from_code(cls, code: str) -> "Language":
        for language in cls:
            if language.code == code:
                return language
        return cls.ENGLISH


@dataclass
class ReflectionSession:
    session_id: str
    category: BlockingCategory
    total_seconds: int
    remaining_seconds: int
    started_at: float
    state: SessionState = SessionState.ACTIVE
    language: Language = Language.ENGLISH

    @property
    def can_continue(self) -> bool:
        return self.state == SessionState.COMPLETABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "category": self.category.name,
            "total_seconds": self.total_seconds,
            "remaining_seconds": self.remaining_seconds,
            "can_continue": self.can_continue,
            "started_at": self.started_at,
            "state": self.state.value,
            "language": self.language.code,
        }


class ReflectionSessionManager:
    """
    Owns the single reflection session and its countdown.

    tick() is guarded by the wall-clock second of the injected clock, so
    concurrent or repeated calls within one second decrement only once.
    With auto_tick the manager drives tick() from a ReflectionTicker and
    stops it as soon as the countdown is done or the session ends.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        auto_tick: bool = False,
        tick_interval: float = config.TICK_INTERVAL_SECONDS,
    ):
        self.clock = clock
        self.auto_tick = auto_tick
        self.tick_interval = tick_interval
        self._lock = threading.RLock()
        self._session: Optional[ReflectionSession] = None
        self._last_tick_second: Optional[int] = None
        self._ticker: Optional[ReflectionTicker] = None
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, snapshot: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.debug(f"Session listener error: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._session.state if self._session else SessionState.IDLE

    @property
    def has_session(self) -> bool:
        return self.state != SessionState.IDLE

    def snapshot(self) -> Dict[str, Any]:
        """Current session as a dict ({"state": "idle"} when there is none)."""
        with self._lock:
            if self._session is None:
                return {"state": SessionState.IDLE.value}
            return self._session.to_dict()

    def progress(self) -> float:
        """Fraction of the countdown elapsed (1.0 when done, 0.0 when idle)."""
        with self._lock:
            session = self._session
            if session is None:
                return 0.0
            if session.total_seconds <= 0:
                return 1.0
            return 1.0 - session.remaining_seconds / session.total_seconds

    def available_actions(self) -> List[WarningAction]:
        """
        Actions the warning dialog should offer.

        Continue/Dismiss are listed for categories that allow them at all;
        the UI disables them until can_continue.
        """
        with self._lock:
            if self._session is None:
                return []
            actions = [WarningAction.CLOSE, WarningAction.CHANGE_LANGUAGE]
            if self._session.category.allows_continue:
                actions += [WarningAction.CONTINUE, WarningAction.DISMISS]
            return actions

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _current_second(self) -> int:
        return int(math.floor(self.clock()))

    def start(
        self,
        category: BlockingCategory,
        seconds: Optional[int] = None,
        language: Language = Language.ENGLISH,
    ) -> Dict[str, Any]:
        """
        Open a reflection session.

        Args:
            category: Category that triggered the warning
            seconds: Countdown length (defaults to the category's)
            language: Initial display language

        Returns:
            {"success": bool, "error": str | None, "error_type": str | None,
             "session_id": str | None}
            error_type "session_conflict" if a session already exists.
        """
        if seconds is None:
            seconds = category.default_reflection_seconds
        seconds = max(0, int(seconds))

        with self._lock:
            if self._session is not None:
                error = SessionConflictError(self._session.session_id)
                logger.info(f"Rejected start for {category.name}: {error}")
                return {
                    "success": False,
                    "error": str(error),
                    "error_type": "session_conflict",
                    "session_id": self._session.session_id,
                }

            session = ReflectionSession(
                session_id=uuid.uuid4().hex,
                category=category,
                total_seconds=seconds,
                remaining_seconds=seconds,
                started_at=self.clock(),
                state=SessionState.ACTIVE if seconds > 0 else SessionState.COMPLETABLE,
                language=language,
            )
            self._session = session
            self._last_tick_second = self._current_second()
            ticker = None
            if session.state == SessionState.ACTIVE and self.auto_tick:
                ticker = ReflectionTicker(self.tick, interval=self.tick_interval)
                self._ticker = ticker
            snapshot = session.to_dict()

        logger.info(f"Reflection session started: {category.name}, {seconds}s")
        if ticker is not None:
            ticker.start()
        self._notify(snapshot)
        return {"success": True, "error": None, "error_type": None, "session_id": session.session_id}

    def tick(self) -> bool:
        """
        Advance the countdown by one second.

        Returns:
            True if this call decremented the countdown
        """
        with self._lock:
            session = self._session
            if session is None or session.state != SessionState.ACTIVE:
                return False

            second = self._current_second()
            if self._last_tick_second is not None and second <= self._last_tick_second:
                return False
            self._last_tick_second = second

            session.remaining_seconds = max(0, session.remaining_seconds - 1)
            finished = session.remaining_seconds == 0
            ticker = None
            if finished:
                session.state = SessionState.COMPLETABLE
                ticker = self._detach_ticker()
            snapshot = session.to_dict()

        if finished:
            logger.info(f"Reflection complete for session {session.session_id}")
        self._stop(ticker)
        self._notify(snapshot)
        return True

    def handle(self, action: WarningAction, language: Optional[Language] = None) -> Dict[str, Any]:
        """
        Apply a warning-dialog action.

        Args:
            action: The user's action
            language: New display language (ChangeLanguage only)

        Returns:
            {"outcome": WarningOutcome, "remaining_seconds": int}
        """
        ended = False
        ticker = None
        with self._lock:
            session = self._session
            if session is None:
                return {"outcome": WarningOutcome.NO_SESSION, "remaining_seconds": 0}

            if action == WarningAction.CHANGE_LANGUAGE:
                if language is not None:
                    session.language = language
                outcome = WarningOutcome.UPDATE_LANGUAGE
            elif action == WarningAction.CLOSE:
                outcome = WarningOutcome.CLOSE_CONTENT
                ended = True
            elif not session.category.allows_continue:
                outcome = WarningOutcome.CONTINUE_UNAVAILABLE
            elif session.state == SessionState.COMPLETABLE:
                outcome = WarningOutcome.ALLOW_CONTENT
                ended = True
            elif action == WarningAction.CONTINUE:
                outcome = WarningOutcome.WAIT_FOR_REFLECTION
            else:
                outcome = WarningOutcome.IGNORED

            remaining = session.remaining_seconds
            if ended:
                session.state = SessionState.CLOSED
                self._session = None
                self._last_tick_second = None
                ticker = self._detach_ticker()
            snapshot = session.to_dict()

        logger.debug(f"Warning action {action.value} -> {outcome.value}")
        self._stop(ticker)
        if ended:
            logger.info(f"Reflection session {session.session_id} closed ({outcome.value})")
        self._notify(snapshot)
        return {"outcome": outcome, "remaining_seconds": remaining}

    def restart(self, seconds: int) -> bool:
        """
        Reset the countdown of an active session (e.g. settings changed).

        Returns:
            False unless the session is still counting down
        """
        seconds = max(0, int(seconds))
        with self._lock:
            session = self._session
            if session is None or session.state != SessionState.ACTIVE:
                return False
            session.total_seconds = seconds
            session.remaining_seconds = seconds
            self._last_tick_second = self._current_second()
            ticker = None
            if seconds == 0:
                session.state = SessionState.COMPLETABLE
                ticker = self._detach_ticker()
            snapshot = session.to_dict()

        logger.info(f"Reflection session {session.session_id} restarted with {seconds}s")
        self._stop(ticker)
        self._notify(snapshot)
        return True

    def cancel(self, reason: str = "app_backgrounded") -> bool:
        """
        Close the session without a user action and stop ticking.

        Returns:
            True if a session was open
        """
        with self._lock:
            session = self._session
            if session is None:
                return False
            session.state = SessionState.CLOSED
            self._session = None
            self._last_tick_second = None
            ticker = self._detach_ticker()
            snapshot = session.to_dict()

        self._stop(ticker)
        logger.info(f"Reflection session {session.session_id} cancelled: {reason}")
        self._notify(snapshot)
        return True

    # ------------------------------------------------------------------
    # Tick driver
    # ------------------------------------------------------------------

    def _detach_ticker(self) -> Optional[ReflectionTicker]:
        # Caller holds self._lock
        ticker = self._ticker
        self._ticker = None
        return ticker

    @staticmethod
    def _stop(ticker: Optional[ReflectionTicker]) -> None:
        if ticker is not None:
            ticker.stop()

    def shutdown(self) -> None:
        """Stop the tick driver (the session itself is left as is)."""
        with self._lock:
            ticker = self._detach_ticker()
        self._stop(ticker)
