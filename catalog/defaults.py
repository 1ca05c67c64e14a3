"""
Built-in seed catalog.

Used when no catalog file exists yet (first run) or the file is unreadable.
Keyword regexes carry lower confidence than curated literal domains so a
literal entry always wins when both match.
"""

from typing import List

from catalog.categories import BlockingCategory
from catalog.patterns import PatternEntry, PatternSource

# (pattern, category, confidence)
DEFAULT_REGEX_PATTERNS = [
    (r"porn", BlockingCategory.EXPLICIT_CONTENT, 0.8),
    (r"xxx", BlockingCategory.EXPLICIT_CONTENT, 0.8),
    (r"nsfw", BlockingCategory.EXPLICIT_CONTENT, 0.8),
    (r"nude|naked", BlockingCategory.EXPLICIT_CONTENT, 0.7),
    (r"erotic", BlockingCategory.EXPLICIT_CONTENT, 0.7),
    (r"cam.*girl", BlockingCategory.ADULT_ENTERTAINMENT, 0.8),
    (r"escort", BlockingCategory.ADULT_ENTERTAINMENT, 0.7),
    (r"casino", BlockingCategory.GAMBLING, 0.8),
    (r"gambling|poker|jackpot", BlockingCategory.GAMBLING, 0.7),
    (r"(^|[.\-])bet([.\-]|$)", BlockingCategory.GAMBLING, 0.6),
    (r"dating.*hookup|hookup", BlockingCategory.DATING_SITES, 0.7),
]

# Well-known app package ids
DEFAULT_APP_PACKAGES = [
    ("com.tinder", BlockingCategory.DATING_SITES, 0.9),
    ("com.bumble.app", BlockingCategory.DATING_SITES, 0.9),
    ("com.pokerstars.mobile", BlockingCategory.GAMBLING, 0.9),
]


def build_default_entries() -> List[PatternEntry]:
    """
    Build the seed catalog rows.

    Returns:
        New PatternEntry list with sequential ids starting at 1.
    """
    entries = []
    next_id = 1
    for pattern, category, confidence in DEFAULT_REGEX_PATTERNS:
        entries.append(PatternEntry(
            id=next_id,
            pattern=pattern,
            category=category,
            confidence=confidence,
            is_regex=True,
            source=PatternSource.DEFAULT,
            description="Built-in keyword pattern",
        ))
        next_id += 1
    for package, category, confidence in DEFAULT_APP_PACKAGES:
        entries.append(PatternEntry(
            id=next_id,
            pattern=package,
            category=category,
            confidence=confidence,
            source=PatternSource.DEFAULT,
            description="Built-in app package",
        ))
        next_id += 1
    return entries
