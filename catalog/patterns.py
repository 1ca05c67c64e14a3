"""
Catalog entries and identifier normalization.

Identifiers are lowercase hostnames ("example.com") or app package ids
("com.example.app"). Literal entries are looked up by the SHA-256 hex of
the lowercased identifier so the catalog never needs plain domains to match.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from catalog.categories import BlockingCategory

logger = logging.getLogger(__name__)


class PatternSource(Enum):
    """Where a catalog entry came from."""

    DEFAULT = "default"
    USER_ADDED = "user_added"
    COMMUNITY = "community"

    @property
    def preference(self) -> int:
        """Tie-break rank: user additions beat community beats defaults."""
        return {"user_added": 2, "community": 1, "default": 0}[self.value]

    @classmethod
    def parse(cls, value: Any) -> "PatternSource":
        """Parse a stored source value, treating unknown sources as default."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.debug(f"Unknown pattern source {value!r}, treating as default")
            return cls.DEFAULT


def hash_identifier(identifier: str) -> str:
    """
    Hash an identifier for literal catalog lookup.

    Args:
        identifier: Domain or app package id (lowercased here).

    Returns:
        SHA-256 hex digest.
    """
    return hashlib.sha256(identifier.strip().lower().encode("utf-8")).hexdigest()


def normalize_identifier(raw: Optional[str]) -> str:
    """
    Normalize a URL, hostname or app package id to a lowercase identifier.

    URLs are reduced to their host with "www." and any port stripped:
    - "https://www.Example.com:443/path?q=1" -> "example.com"
    - "Example.com/path" -> "example.com"
    - "com.Example.App" -> "com.example.app"

    Args:
        raw: Raw identifier from the signal source.

    Returns:
        Normalized identifier, or "" if nothing usable remains.
    """
    if not raw:
        return ""
    value = raw.strip().lower()
    if not value:
        return ""

    if "://" in value or "/" in value or "?" in value or "#" in value:
        candidate = value if "://" in value else f"https://{value}"
        try:
            host = urlsplit(candidate).hostname or ""
        except ValueError:
            host = ""
        if not host:
            # Fallback: manual extraction
            host = value.split("://", 1)[-1].split("/")[0].split("?")[0].split("#")[0]
        value = host
    elif ":" in value:
        # "example.com:8080"
        value = value.split(":", 1)[0]

    if value.startswith("www."):
        value = value[4:]
    return value.strip(".")


def parent_domains(identifier: str) -> List[str]:
    """
    List parent domains of a hostname, most specific first.

    "a.b.example.com" -> ["b.example.com", "example.com"]. Stops at two
    labels so bare TLDs are never looked up.
    """
    labels = identifier.split(".")
    return [".".join(labels[i:]) for i in range(1, len(labels) - 1)]


@dataclass
class PatternEntry:
    """A literal or regex rule identifying a blocked site or app."""

    id: int
    pattern: str
    category: BlockingCategory
    confidence: float = 1.0
    is_regex: bool = False
    source: PatternSource = PatternSource.DEFAULT
    is_active: bool = True
    is_custom: bool = False
    added_by_user: bool = False
    block_count: int = 0
    last_updated: float = field(default_factory=time.time)
    description: Optional[str] = None
    domain_hash: str = ""

    def __post_init__(self):
        self.pattern = self.pattern.strip()
        if not self.is_regex:
            self.pattern = self.pattern.lower()
        if not self.domain_hash:
            self.domain_hash = hash_identifier(self.pattern)
        self.confidence = min(1.0, max(0.0, float(self.confidence)))
        self.source = PatternSource.parse(self.source)

    @property
    def severity(self) -> int:
        return self.category.severity

    def rank_key(self) -> tuple:
        """Sort key for picking a winner among hits (higher is better)."""
        return (self.confidence, self.category.severity, self.source.preference)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to a dictionary for JSON serialization."""
        return {
            "id": self.id,
            "domain_hash": self.domain_hash,
            "pattern": self.pattern,
            "is_regex": self.is_regex,
            "category": self.category.name,
            "confidence": self.confidence,
            "source": self.source.value,
            "is_active": self.is_active,
            "is_custom": self.is_custom,
            "added_by_user": self.added_by_user,
            "block_count": self.block_count,
            "last_updated": self.last_updated,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternEntry":
        """
        Create an entry from a stored row.

        Raises:
            ValueError: If the row has no pattern or an unknown category.
        """
        category = BlockingCategory.from_name(str(data.get("category", "")))
        if category is None:
            raise ValueError(f"Unknown category {data.get('category')!r}")
        pattern = data.get("pattern")
        if not pattern:
            raise ValueError("Catalog row has no pattern")
        return cls(
            id=int(data.get("id", 0)),
            pattern=pattern,
            category=category,
            confidence=float(data.get("confidence", 1.0)),
            is_regex=bool(data.get("is_regex", False)),
            source=PatternSource.parse(data.get("source", "default")),
            is_active=bool(data.get("is_active", True)),
            is_custom=bool(data.get("is_custom", False)),
            added_by_user=bool(data.get("added_by_user", False)),
            block_count=int(data.get("block_count", 0)),
            last_updated=float(data.get("last_updated", time.time())),
            description=data.get("description"),
            domain_hash=data.get("domain_hash", ""),
        )
