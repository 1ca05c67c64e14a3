"""Blocking policy constants used by the signal aggregator."""

import logging
from dataclasses import dataclass

import config

logger = logging.getLogger(__name__)

# Bounds for user-configurable reflection times (seconds)
REFLECTION_FLOOR = 1
REFLECTION_CEILING = 300


@dataclass
class Policy:
    """
    Thresholds and flags for turning signals into a decision.

    Out-of-range values are clamped (with a warning) when the policy is
    built, so decide() can rely on them.
    """

    gender_confidence_threshold: float = 0.8
    nsfw_confidence_threshold: float = 0.5
    content_density_threshold: float = 0.4
    blur_males: bool = False
    blur_females: bool = True
    min_site_confidence: float = 0.5
    mandatory_reflection_time: int = 15
    min_reflection_seconds: int = 5
    max_reflection_seconds: int = 30
    full_screen_warning_enabled: bool = True
    enable_site_blocking: bool = True

    def __post_init__(self):
        for name in (
            "gender_confidence_threshold",
            "nsfw_confidence_threshold",
            "content_density_threshold",
            "min_site_confidence",
        ):
            self._clamp(name, 0.0, 1.0)

        # density threshold of 1.0 would divide by zero in the warning scale
        if self.content_density_threshold >= 1.0:
            logger.warning("content_density_threshold=1.0 clamped to 0.99")
            self.content_density_threshold = 0.99

        self._clamp("min_reflection_seconds", REFLECTION_FLOOR, REFLECTION_CEILING)
        self._clamp("max_reflection_seconds", self.min_reflection_seconds, REFLECTION_CEILING)
        self._clamp("mandatory_reflection_time", REFLECTION_FLOOR, REFLECTION_CEILING)

    def _clamp(self, name: str, low: float, high: float) -> None:
        value = getattr(self, name)
        clamped = min(high, max(low, value))
        if clamped != value:
            logger.warning(f"Policy {name}={value} out of range [{low}, {high}], clamped to {clamped}")
            setattr(self, name, type(value)(clamped))

    def clip_reflection(self, seconds: int) -> int:
        """Clip a reflection time to the user's configured range."""
        return int(min(self.max_reflection_seconds, max(self.min_reflection_seconds, seconds)))

    @classmethod
    def from_config(cls) -> "Policy":
        """Build a policy from config.py (environment overrides included)."""
        return cls(
            gender_confidence_threshold=config.GENDER_CONFIDENCE_THRESHOLD,
            nsfw_confidence_threshold=config.NSFW_CONFIDENCE_THRESHOLD,
            content_density_threshold=config.CONTENT_DENSITY_THRESHOLD,
            blur_males=config.BLUR_MALES,
            blur_females=config.BLUR_FEMALES,
            min_site_confidence=config.MIN_SITE_CONFIDENCE,
            mandatory_reflection_time=config.MANDATORY_REFLECTION_TIME,
            min_reflection_seconds=config.MIN_REFLECTION_SECONDS,
            max_reflection_seconds=config.MAX_REFLECTION_SECONDS,
            full_screen_warning_enabled=config.FULL_SCREEN_WARNING_ENABLED,
            enable_site_blocking=config.ENABLE_SITE_BLOCKING,
        )
