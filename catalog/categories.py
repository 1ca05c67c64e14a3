"""Harm categories used to tag catalog entries and warnings."""

from enum import Enum
from typing import Optional


class BlockingCategory(Enum):
    """
    Categories for site blocking and content filtering.

    Each member carries (display_name, severity, default_reflection_seconds,
    warning_title). Severity is on a 1-5 scale, 5 being most severe.
    """

    EXPLICIT_CONTENT = ("Explicit Content", 5, 20, "Inappropriate Content Detected")
    ADULT_ENTERTAINMENT = ("Adult Entertainment", 5, 20, "Adult Content Blocked")
    INAPPROPRIATE_IMAGERY = ("Inappropriate Imagery", 4, 15, "Inappropriate Images Found")
    GAMBLING = ("Gambling", 3, 10, "Gambling Content Detected")
    SUSPICIOUS_CONTENT = ("Suspicious Content", 2, 10, "Questionable Content Found")
    DATING_SITES = ("Dating Sites", 3, 15, "Dating Site Blocked")
    SOCIAL_MEDIA_INAPPROPRIATE = ("Inappropriate Social Media", 2, 10, "Inappropriate Social Content")
    VIOLENCE = ("Violence", 4, 15, "Violent Content Detected")
    HATE_SPEECH = ("Hate Speech", 4, 15, "Harmful Content Blocked")
    SUBSTANCE_ABUSE = ("Substance Abuse", 3, 10, "Harmful Content Found")

    def __init__(self, display_name: str, severity: int, default_reflection_seconds: int, warning_title: str):
        self.display_name = display_name
        self.severity = severity
        self.default_reflection_seconds = default_reflection_seconds
        self.warning_title = warning_title

    @property
    def allows_continue(self) -> bool:
        """Severity 4 and above only ever offer Close."""
        return self.severity < 4

    @classmethod
    def from_name(cls, name: str) -> Optional["BlockingCategory"]:
        """
        Look up a category by member name, case-insensitively.

        Accepts "EXPLICIT_CONTENT", "explicit_content" or "ExplicitContent".

        Returns:
            The category, or None if the name is unknown.
        """
        if not name:
            return None
        key = name.strip()
        if key.upper() in cls.__members__:
            return cls.__members__[key.upper()]
        # CamelCase -> SNAKE_CASE
        snake = "".join(f"_{c}" if c.isupper() and i else c for i, c in enumerate(key)).upper()
        return cls.__members__.get(snake)


# Synthetic category for full-screen NSFW density warnings (severity 4)
NSFW_DENSITY_CATEGORY = BlockingCategory.INAPPROPRIATE_IMAGERY
