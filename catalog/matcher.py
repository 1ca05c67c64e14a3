"""
Pattern matching against the blocked-site/app catalog.

The catalog is an immutable snapshot. Reloading builds a new snapshot and
swaps the reference, so concurrent match() calls always see one whole
catalog (copy-on-write).
"""

import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Tuple

from catalog.categories import BlockingCategory
from catalog.patterns import PatternEntry, hash_identifier, normalize_identifier, parent_domains
from core.errors import InvalidPatternError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a successful catalog match."""

    category: BlockingCategory
    confidence: float
    matched_pattern: str
    is_custom: bool
    entry_id: int
    domain_hash: str
    is_regex: bool = False

    @property
    def severity(self) -> int:
        return self.category.severity


def compile_pattern(entry: PatternEntry) -> Pattern:
    """
    Compile a regex catalog entry (case-insensitive).

    Raises:
        InvalidPatternError: If the regex source does not compile.
    """
    try:
        return re.compile(entry.pattern, re.IGNORECASE)
    except re.error as e:
        raise InvalidPatternError(entry.pattern, str(e), entry_id=entry.id) from e


class PatternCatalog:
    """
    Read-only snapshot of active catalog entries.

    Literal entries are indexed by domain_hash; regex entries are compiled
    once at construction. Malformed regexes are skipped and reported.
    """

    def __init__(
        self,
        entries: Iterable[PatternEntry],
        on_invalid_pattern: Optional[Callable[[PatternEntry, InvalidPatternError], None]] = None,
    ):
        self._literals: Dict[str, PatternEntry] = {}
        self._regexes: List[Tuple[PatternEntry, Pattern]] = []
        self.invalid_entries: List[PatternEntry] = []

        for entry in entries:
            if not entry.is_active:
                continue
            # Own copy; the store edits its rows in place
            entry = replace(entry)
            if entry.is_regex:
                try:
                    self._regexes.append((entry, compile_pattern(entry)))
                except InvalidPatternError as e:
                    logger.warning(f"Skipping catalog entry {entry.id}: {e}")
                    self.invalid_entries.append(entry)
                    if on_invalid_pattern:
                        try:
                            on_invalid_pattern(entry, e)
                        except Exception as cb_error:
                            logger.debug(f"on_invalid_pattern callback error: {cb_error}")
                continue

            existing = self._literals.get(entry.domain_hash)
            if existing is not None:
                # domain_hash must be unique among active literals; keep the stronger row
                winner = max(existing, entry, key=PatternEntry.rank_key)
                logger.warning(
                    f"Duplicate active literal '{entry.pattern}' (entries {existing.id}, {entry.id}); "
                    f"keeping {winner.id}"
                )
                self._literals[entry.domain_hash] = winner
            else:
                self._literals[entry.domain_hash] = entry

    @property
    def literal_count(self) -> int:
        return len(self._literals)

    @property
    def regex_count(self) -> int:
        return len(self._regexes)

    def __len__(self) -> int:
        return len(self._literals) + len(self._regexes)

    def lookup_literal(self, identifier: str) -> Optional[PatternEntry]:
        """Exact hash lookup, then parent domains ("m.example.com" -> "example.com")."""
        entry = self._literals.get(hash_identifier(identifier))
        if entry is not None:
            return entry
        for parent in parent_domains(identifier):
            entry = self._literals.get(hash_identifier(parent))
            if entry is not None:
                return entry
        return None

    def scan_regexes(self, identifier: str) -> List[PatternEntry]:
        """Return every active regex entry matching the identifier."""
        hits = []
        for entry, compiled in self._regexes:
            if compiled.search(identifier):
                hits.append(entry)
        return hits

    def find_hits(self, identifier: str) -> List[PatternEntry]:
        """
        Collect catalog hits (literal and regex) for a normalized identifier.

        Regexes are scanned even after a literal hit: a stronger regex entry
        must still be able to win the tie-break.
        """
        hits = self.scan_regexes(identifier)
        literal = self.lookup_literal(identifier)
        if literal is not None:
            hits.insert(0, literal)
        return hits


class PatternMatcher:
    """
    Classifies identifiers against the current catalog snapshot.

    match() is synchronous and never touches storage; the winning entry's
    hit is handed to on_hit (the feedback recorder), which must not block.
    """

    def __init__(
        self,
        entries: Iterable[PatternEntry] = (),
        on_hit: Optional[Callable[[int], None]] = None,
        on_invalid_pattern: Optional[Callable[[PatternEntry, InvalidPatternError], None]] = None,
    ):
        self.on_hit = on_hit
        self.on_invalid_pattern = on_invalid_pattern
        self._reload_lock = threading.Lock()
        self._catalog = PatternCatalog(entries, on_invalid_pattern=on_invalid_pattern)

    @property
    def catalog(self) -> PatternCatalog:
        return self._catalog

    def reload(self, entries: Iterable[PatternEntry]) -> PatternCatalog:
        """
        Build a new snapshot and swap it in.

        Readers holding the old snapshot finish against it undisturbed.

        Returns:
            The new snapshot.
        """
        with self._reload_lock:
            catalog = PatternCatalog(entries, on_invalid_pattern=self.on_invalid_pattern)
            self._catalog = catalog
        logger.info(
            f"Catalog reloaded: {catalog.literal_count} literal, {catalog.regex_count} regex entries"
        )
        return catalog

    def record_hit(self, entry_id: int) -> None:
        """Hand a hit to on_hit; errors are logged and dropped."""
        if self.on_hit:
            try:
                self.on_hit(entry_id)
            except Exception as e:
                logger.debug(f"on_hit callback error: {e}")

    def match(self, identifier: Optional[str], record_hit: bool = True) -> Optional[MatchResult]:
        """
        Classify an identifier against the catalog.

        Among all hits, the highest confidence wins; ties go to the more
        severe category, then to user-added over community over default.

        Args:
            identifier: Hostname, URL or app package id.
            record_hit: Count the winner's hit. Callers that may still
                discard the match pass False and call record_hit() later.

        Returns:
            MatchResult, or None if no active entry matches.
        """
        normalized = normalize_identifier(identifier)
        if not normalized:
            return None

        catalog = self._catalog  # single read of the shared reference
        hits = catalog.find_hits(normalized)
        if not hits:
            return None

        winner = max(hits, key=PatternEntry.rank_key)
        logger.debug(f"Catalog hit: '{winner.pattern}' ({winner.category.name}, {winner.confidence:.2f})")

        if record_hit:
            self.record_hit(winner.id)

        return MatchResult(
            category=winner.category,
            confidence=winner.confidence,
            matched_pattern=winner.pattern,
            is_custom=winner.is_custom,
            entry_id=winner.id,
            domain_hash=winner.domain_hash,
            is_regex=winner.is_regex,
        )
