"""
BlockingEngine: orchestration of matching, scheduling, decisions and reflection.

Control flow for one signal: the catalog matcher classifies the URL/app,
the schedule book confirms the block is time-active, the aggregator merges
that with the ML signals into a decision, and if the decision requires a
warning the reflection session manager gates the final allow/deny.

This module has no UI dependencies. A host (overlay service, CLI, tests)
feeds signals in and receives updates via callbacks.

Callbacks:
    on_decision(decision: BlockingDecision)
    on_session_change(snapshot: dict)
    on_navigate_away(reason: str)
    on_error(error_type: str, message: str)
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import config
from catalog.categories import BlockingCategory
from catalog.matcher import MatchResult, PatternMatcher
from catalog.patterns import PatternEntry
from catalog.store import CatalogStore
from core.errors import StaleDecisionError
from detection.aggregator import BlockingDecision, SignalAggregator
from detection.policy import Policy
from detection.signals import DetectionSignal, SignalEvent, SignalSource
from feedback.recorder import FeedbackRecorder
from reflection.session import (
    Language,
    ReflectionSessionManager,
    WarningAction,
    WarningOutcome,
)
from schedule.book import ScheduleBook
from schedule.evaluator import is_target_blocked

logger = logging.getLogger(__name__)


class BlockingEngine:
    """
    Core blocking engine.

    Handles:
    - Catalog loading and copy-on-write reloads
    - Schedule gating of catalog matches
    - Signal evaluation in arrival order, with generation tokens
    - Reflection sessions for warnings that require them
    - Signal-source threads and the feedback flush thread
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(
        self,
        catalog_store: Optional[CatalogStore] = None,
        schedule_book: Optional[ScheduleBook] = None,
        recorder: Optional[FeedbackRecorder] = None,
        policy: Optional[Policy] = None,
        sessions: Optional[ReflectionSessionManager] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialise the engine with its collaborators.

        Any collaborator left as None is built from config.py paths.
        """
        self.now = now
        self.catalog_store = catalog_store or CatalogStore(config.CATALOG_FILE)
        self.recorder = recorder or FeedbackRecorder(
            config.FEEDBACK_FILE, hit_sink=self.catalog_store.apply_hit_counts
        )
        self.schedule_book = schedule_book or ScheduleBook(
            config.SCHEDULES_FILE, now=now, on_invalid=self.recorder.report_invalid_schedule
        )
        self.matcher = PatternMatcher(
            on_hit=self.recorder.record_hit,
            on_invalid_pattern=self.recorder.report_invalid_pattern,
        )
        self.aggregator = SignalAggregator(policy or Policy.from_config())
        self.sessions = sessions or ReflectionSessionManager(auto_tick=True)
        self.sessions.add_listener(self._notify_session_change)

        # Run state
        self.is_running: bool = False
        self.should_stop: threading.Event = threading.Event()
        self.source_threads: List[threading.Thread] = []
        self._sources: List[SignalSource] = []

        # Ordering: one evaluation at a time, generation per page
        self._eval_lock: threading.Lock = threading.Lock()
        self._generation_lock: threading.Lock = threading.Lock()
        self._generation: int = 0
        self.page_key: Optional[str] = None

        # ---- Callbacks (set by the host) ----
        self.on_decision: Optional[Callable[[BlockingDecision], None]] = None
        self.on_session_change: Optional[Callable[[Dict[str, Any]], None]] = None
        self.on_navigate_away: Optional[Callable[[str], None]] = None
        self.on_error: Optional[Callable[[str, str], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Dict:
        """
        Load the catalog and schedules and start background work.

        Returns:
            {"success": bool, "error": str | None, "error_type": str | None}
        """
        if self.is_running:
            return {"success": False, "error": "Engine already running", "error_type": "already_running"}

        self.should_stop.clear()
        self.reload_catalog()
        expired = self.schedule_book.process_due()
        if expired:
            logger.info(f"Deactivated {len(expired)} expired schedules")
        self.recorder.start()
        self.is_running = True
        logger.info("Blocking engine started")
        return {"success": True, "error": None, "error_type": None}

    def stop(self) -> Dict:
        """
        Stop signal sources, end any reflection session and flush feedback.

        Returns:
            {"success": bool}
        """
        if not self.is_running:
            return {"success": False}

        self.should_stop.set()
        self.is_running = False
        for source in self._sources:
            try:
                source.close()
            except Exception as e:
                logger.debug(f"Signal source close error: {e}")
        self._join_threads()
        self._sources = []

        self.sessions.cancel("engine_stopped")
        self.recorder.stop()
        logger.info("Blocking engine stopped")
        return {"success": True}

    def reload_catalog(self) -> int:
        """
        Swap in a fresh catalog snapshot from the store.

        Returns:
            Number of usable entries in the new snapshot
        """
        snapshot = self.matcher.reload(self.catalog_store.active_entries())
        return len(snapshot)

    # ------------------------------------------------------------------
    # Catalog edits
    # ------------------------------------------------------------------

    def add_custom_site(self, url: str, category: BlockingCategory) -> Optional[PatternEntry]:
        """Block a site or app and make the block visible to match() immediately."""
        entry = self.catalog_store.add_custom_site(url, category)
        if entry is not None:
            self.reload_catalog()
        return entry

    def remove_site(self, url: str) -> bool:
        removed = self.catalog_store.remove_site(url)
        if removed:
            self.reload_catalog()
        return removed

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        with self._generation_lock:
            return self._generation

    def begin_page(self, page_key: Optional[str] = None) -> int:
        """
        Mark a navigation to a new page or app.

        Decisions tagged with an earlier generation are dropped from now on.

        Returns:
            The new generation token
        """
        with self._generation_lock:
            self._generation += 1
            self.page_key = page_key
            generation = self._generation
        logger.debug(f"Page generation {generation}: {page_key}")
        return generation

    def _check_generation(self, generation: Optional[int]) -> None:
        """
        Raises:
            StaleDecisionError: If generation is set and not the current one
        """
        if generation is None:
            return
        current = self.generation
        if generation != current:
            raise StaleDecisionError(generation, current)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def classify(self, identifier: Optional[str], now: Optional[datetime] = None) -> Optional[MatchResult]:
        """
        Match an identifier and apply its schedules.

        A target with schedule rules is only blocked while one of them is
        active; a target without rules is always blocked. Only blocked
        matches count towards the entry's block_count.

        Returns:
            The catalog match, or None if unmatched or outside schedule
        """
        match = self.matcher.match(identifier, record_hit=False)
        if match is None:
            return None

        rules = self.schedule_book.rules_for_identifier(identifier, extra_hashes=[match.domain_hash])
        if rules and not is_target_blocked(rules, now or self.now(), self.schedule_book.on_invalid):
            logger.debug(f"'{match.matched_pattern}' matched but no schedule is active")
            return None
        self.matcher.record_hit(match.entry_id)
        return match

    def evaluate(self, event: SignalEvent) -> Optional[BlockingDecision]:
        """
        Turn one signal event into a decision and act on it.

        Events are processed one at a time in arrival order. An event from
        an older generation is dropped.

        Returns:
            The decision, or None if the event was stale or failed
        """
        with self._eval_lock:
            try:
                self._check_generation(event.generation)

                signal = event.signal
                if event.identifier and signal.site_match is None:
                    # Work on a copy so the caller's signal can be evaluated again
                    signal = replace(signal, site_match=self.classify(event.identifier))

                decision = self.aggregator.decide(signal)

                # The page may have changed while deciding
                self._check_generation(event.generation)
                decision.generation = event.generation if event.generation is not None else self.generation

            except StaleDecisionError as e:
                logger.debug(f"Dropped decision: {e}")
                return None
            except Exception as e:
                logger.error(f"Evaluation error: {e}")
                self._notify_error("evaluation_error", str(e))
                return None

            if decision.requires_reflection:
                result = self.sessions.start(decision.category, decision.reflection_seconds)
                if not result["success"]:
                    logger.debug(f"Reflection already in progress ({result['error_type']})")

            logger.debug(f"Decision: {decision.recommended_action.value} ({decision.reason})")
            self._notify_decision(decision)
            return decision

    def evaluate_signal(
        self,
        signal: DetectionSignal,
        identifier: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> Optional[BlockingDecision]:
        """Convenience wrapper around evaluate() for a bare signal."""
        return self.evaluate(SignalEvent(signal=signal, identifier=identifier, generation=generation))

    # ------------------------------------------------------------------
    # Warning dialog / host events
    # ------------------------------------------------------------------

    def handle_action(self, action: WarningAction, language: Optional[Language] = None) -> Dict[str, Any]:
        """
        Forward a warning-dialog action to the session manager.

        Close also asks the host to navigate away from the content.
        """
        result = self.sessions.handle(action, language)
        if result["outcome"] == WarningOutcome.CLOSE_CONTENT:
            self._notify_navigate_away("warning_closed")
        return result

    def app_backgrounded(self) -> bool:
        """Cancel the reflection session when the host app goes to the background."""
        return self.sessions.cancel("app_backgrounded")

    def get_status(self) -> Dict[str, Any]:
        """Current engine state for display."""
        catalog = self.matcher.catalog
        return {
            "is_running": self.is_running,
            "generation": self.generation,
            "page_key": self.page_key,
            "session": self.sessions.snapshot(),
            "catalog_literals": catalog.literal_count,
            "catalog_regexes": catalog.regex_count,
            "pending_hits": sum(self.recorder.pending_hits().values()),
        }

    # ------------------------------------------------------------------
    # Signal sources
    # ------------------------------------------------------------------

    def attach_source(self, source: SignalSource) -> None:
        """Consume a signal source on a background thread until stop()."""
        thread = threading.Thread(target=self._source_loop, args=(source,), daemon=True)
        self._sources.append(source)
        self.source_threads.append(thread)
        thread.start()
        logger.info(f"Attached signal source {type(source).__name__}")

    def _source_loop(self, source: SignalSource) -> None:
        """Evaluate events from one source in the order it yields them."""
        try:
            for event in source.events():
                if self.should_stop.is_set():
                    break
                self.evaluate(event)
        except (KeyboardInterrupt, SystemExit):
            logger.info("Signal source loop interrupted by shutdown signal")
        except Exception as e:
            logger.error(f"Signal source error: {e}")
            self._notify_error("source_error", str(e))

    # ------------------------------------------------------------------
    # Callback helpers
    # ------------------------------------------------------------------

    def _notify_decision(self, decision: BlockingDecision) -> None:
        if self.on_decision:
            try:
                self.on_decision(decision)
            except Exception as e:
                logger.debug(f"on_decision callback error: {e}")

    def _notify_session_change(self, snapshot: Dict[str, Any]) -> None:
        if self.on_session_change:
            try:
                self.on_session_change(snapshot)
            except Exception as e:
                logger.debug(f"on_session_change callback error: {e}")

    def _notify_navigate_away(self, reason: str) -> None:
        if self.on_navigate_away:
            try:
                self.on_navigate_away(reason)
            except Exception as e:
                logger.debug(f"on_navigate_away callback error: {e}")

    def _notify_error(self, error_type: str, message: str) -> None:
        """Notify of an error via callback."""
        if self.on_error:
            try:
                self.on_error(error_type, message)
            except Exception as e:
                logger.debug(f"on_error callback error: {e}")

    # ------------------------------------------------------------------
    # Thread management
    # ------------------------------------------------------------------

    def _join_threads(self) -> None:
        """Wait for source threads to finish and clean up references."""
        for thread in self.source_threads:
            if thread.is_alive():
                thread.join(timeout=2.0)
                if thread.is_alive():
                    logger.warning("Signal source thread did not stop within timeout")
        self.source_threads = []
