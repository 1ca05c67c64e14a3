"""
Persistence of catalog rows.

The store is the storage boundary for the matcher: it loads rows, applies
user edits and hit counts, and hands out fresh entry lists for
PatternMatcher.reload(). Nothing in the decision path waits on it.
"""

import logging
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from catalog.categories import BlockingCategory
from catalog.defaults import build_default_entries
from catalog.patterns import PatternEntry, PatternSource, hash_identifier, normalize_identifier
from core.storage import atomic_write_json, load_json

logger = logging.getLogger(__name__)


class CatalogStore:
    """
    Manages loading, editing and saving of catalog rows.
    """

    def __init__(self, catalog_path: Path):
        """
        Initialize the catalog store.

        Args:
            catalog_path: Path to the JSON catalog file
        """
        self.catalog_path = catalog_path
        self._entries: Optional[Dict[int, PatternEntry]] = None
        self._lock = threading.RLock()

    def load(self) -> List[PatternEntry]:
        """
        Load catalog rows from file, or seed defaults if missing.

        Rows that cannot be parsed are skipped with a warning.

        Returns:
            Loaded entries (active and inactive)
        """
        with self._lock:
            if self._entries is not None:
                return list(self._entries.values())

            data = load_json(self.catalog_path, None)
            if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
                if data is not None:
                    logger.warning(f"Invalid catalog file {self.catalog_path}, using defaults")
                self._entries = {e.id: e for e in build_default_entries()}
                logger.info("Created default catalog")
                return list(self._entries.values())

            entries: Dict[int, PatternEntry] = {}
            for row in data["entries"]:
                try:
                    entry = PatternEntry.from_dict(row)
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping unreadable catalog row {row!r}: {e}")
                    continue
                entries[entry.id] = entry
            self._entries = entries
            logger.info(f"Loaded {len(entries)} catalog entries from {self.catalog_path}")
            return list(entries.values())

    def save(self) -> bool:
        """
        Save catalog rows to file atomically.

        Returns:
            True if saved successfully, False otherwise
        """
        with self._lock:
            if self._entries is None:
                logger.warning("No catalog to save")
                return False
            data = {"entries": [e.to_dict() for e in sorted(self._entries.values(), key=lambda e: e.id)]}
            saved = atomic_write_json(self.catalog_path, data, prefix="catalog_")
        if saved:
            logger.info(f"Saved catalog to {self.catalog_path}")
        return saved

    def entries(self) -> List[PatternEntry]:
        """Get all entries, loading if necessary."""
        return self.load()

    def active_entries(self) -> List[PatternEntry]:
        """Get entries with is_active set."""
        return [e for e in self.load() if e.is_active]

    def get_entry(self, entry_id: int) -> Optional[PatternEntry]:
        self.load()
        with self._lock:
            return self._entries.get(entry_id)

    def _next_id(self) -> int:
        return max(self._entries.keys(), default=0) + 1

    def _find_literal(self, domain_hash: str) -> Optional[PatternEntry]:
        for entry in self._entries.values():
            if not entry.is_regex and entry.domain_hash == domain_hash:
                return entry
        return None

    def add_custom_site(self, url: str, category: BlockingCategory, description: Optional[str] = None) -> Optional[PatternEntry]:
        """
        Add (or re-activate) a user-blocked site or app.

        Args:
            url: URL, hostname or app package id to block
            category: Category to tag the entry with

        Returns:
            The stored entry, or None if the identifier is empty
        """
        identifier = normalize_identifier(url)
        if not identifier:
            return None

        self.load()
        with self._lock:
            domain_hash = hash_identifier(identifier)
            entry = self._find_literal(domain_hash)
            if entry is not None:
                entry.category = category
                entry.confidence = 1.0
                entry.source = PatternSource.USER_ADDED
                entry.is_active = True
                entry.is_custom = True
                entry.added_by_user = True
                entry.last_updated = time.time()
            else:
                entry = PatternEntry(
                    id=self._next_id(),
                    pattern=identifier,
                    category=category,
                    confidence=1.0,
                    source=PatternSource.USER_ADDED,
                    is_custom=True,
                    added_by_user=True,
                    description=description or "User-added blocked site",
                )
                self._entries[entry.id] = entry
        logger.info(f"Added custom blocked site: {identifier} ({category.name})")
        self.save()
        return entry

    def remove_site(self, url: str) -> bool:
        """
        Soft-delete a literal entry (is_active=False).

        Returns:
            True if an active entry was deactivated, False if not found
        """
        return self._set_active(url, False)

    def reactivate_site(self, url: str) -> bool:
        """Re-enable a soft-deleted literal entry."""
        return self._set_active(url, True)

    def _set_active(self, url: str, active: bool) -> bool:
        identifier = normalize_identifier(url)
        if not identifier:
            return False
        self.load()
        with self._lock:
            entry = self._find_literal(hash_identifier(identifier))
            if entry is None or entry.is_active == active:
                return False
            entry.is_active = active
            entry.last_updated = time.time()
        logger.info(f"{'Activated' if active else 'Deactivated'} catalog entry: {identifier}")
        self.save()
        return True

    def import_entries(self, rows: Iterable[Dict[str, Any]]) -> int:
        """
        Import catalog rows (e.g. a downloaded update).

        Literal rows replace an existing row with the same domain_hash;
        new rows get fresh ids. Unreadable rows are skipped.

        Returns:
            Number of rows imported
        """
        self.load()
        imported = 0
        with self._lock:
            for row in rows:
                try:
                    entry = PatternEntry.from_dict({**row, "id": 0})
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping unreadable import row: {e}")
                    continue
                existing = None if entry.is_regex else self._find_literal(entry.domain_hash)
                if existing is not None:
                    entry.id = existing.id
                    entry.block_count = existing.block_count
                else:
                    entry.id = self._next_id()
                self._entries[entry.id] = entry
                imported += 1
        logger.info(f"Imported {imported} catalog rows")
        if imported:
            self.save()
        return imported

    def apply_hit_counts(self, counts: Dict[int, int]) -> bool:
        """
        Add batched hit counts to block_count.

        Args:
            counts: entry_id -> hits since last flush

        Returns:
            True if counts were applied and saved
        """
        if not counts:
            return True
        self.load()
        with self._lock:
            for entry_id, hits in counts.items():
                entry = self._entries.get(entry_id)
                if entry is None:
                    logger.debug(f"Hit count for unknown entry {entry_id} dropped")
                    continue
                entry.block_count += hits
        return self.save()

    def get_user_added_sites(self) -> List[PatternEntry]:
        """Active user-added entries, newest first."""
        sites = [e for e in self.load() if e.added_by_user and e.is_active]
        return sorted(sites, key=lambda e: e.last_updated, reverse=True)

    def search(self, query: str) -> List[PatternEntry]:
        """Active entries whose pattern contains query (user-added, then by confidence)."""
        needle = query.strip().lower()
        hits = [e for e in self.load() if e.is_active and needle in e.pattern.lower()]
        return sorted(hits, key=lambda e: (e.added_by_user, e.confidence), reverse=True)

    def category_counts(self) -> Dict[BlockingCategory, int]:
        """Number of active entries per category."""
        return dict(Counter(e.category for e in self.load() if e.is_active))
