"""
Catalog package: blocked site/app patterns and matching.

Provides the PatternMatcher used on the decision path and the
CatalogStore that persists catalog rows.
"""

from catalog.categories import BlockingCategory
from catalog.matcher import MatchResult, PatternCatalog, PatternMatcher
from catalog.patterns import PatternEntry, PatternSource, hash_identifier, normalize_identifier
from catalog.store import CatalogStore

__all__ = [
    "BlockingCategory",
    "CatalogStore",
    "MatchResult",
    "PatternCatalog",
    "PatternEntry",
    "PatternMatcher",
    "PatternSource",
    "hash_identifier",
    "normalize_identifier",
]
