"""
Detection signals fed to the aggregator.

Signals are produced upstream (face/gender classifier, NSFW classifier,
URL/app observers) and are opaque to the engine apart from these fields.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Protocol

import numpy as np

from catalog.matcher import MatchResult


class Gender(Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Region:
    """Screen rectangle in pixels, with the detector's confidence."""

    left: int
    top: int
    right: int
    bottom: int
    confidence: float = 1.0

    @property
    def area(self) -> int:
        return max(0, self.right - self.left) * max(0, self.bottom - self.top)


@dataclass(frozen=True)
class DetectedFace:
    region: Region
    gender: Gender = Gender.UNKNOWN
    gender_confidence: float = 0.0


@dataclass(frozen=True)
class SpatialDistribution:
    """
    NSFW density per screen area.

    Quadrant and center densities are in [0, 1]. Variance is the standard
    deviation of the five area densities: low values mean content is
    spread across the whole screen.
    """

    top_left: float = 0.0
    top_right: float = 0.0
    bottom_left: float = 0.0
    bottom_right: float = 0.0
    center: float = 0.0
    edges: float = 0.0

    @property
    def _areas(self) -> np.ndarray:
        return np.array([self.top_left, self.top_right, self.bottom_left, self.bottom_right, self.center])

    @property
    def max_quadrant_density(self) -> float:
        return float(self._areas.max())

    @property
    def distribution_variance(self) -> float:
        return float(np.std(self._areas))

    def is_content_concentrated(self) -> bool:
        return self.max_quadrant_density > 0.6

    def is_content_distributed(self) -> bool:
        return self.distribution_variance < 0.2

    def highest_density_area(self) -> str:
        densities = {
            "top_left": self.top_left,
            "top_right": self.top_right,
            "bottom_left": self.bottom_left,
            "bottom_right": self.bottom_right,
            "center": self.center,
        }
        return max(densities, key=densities.get)

    def to_dict(self) -> Dict[str, float]:
        return {
            "top_left": self.top_left,
            "top_right": self.top_right,
            "bottom_left": self.bottom_left,
            "bottom_right": self.bottom_right,
            "center": self.center,
            "edges": self.edges,
        }


@dataclass
class DetectionSignal:
    """
    One evaluation's worth of upstream signals.

    When `faces` is empty the counts plus the signal-level
    gender_confidence describe the detected faces.
    """

    male_count: int = 0
    female_count: int = 0
    unknown_count: int = 0
    gender_confidence: float = 0.0
    nsfw_content_density: float = 0.0
    spatial_distribution: Optional[SpatialDistribution] = None
    site_match: Optional[MatchResult] = None
    faces: List[DetectedFace] = field(default_factory=list)
    nsfw_regions: List[Region] = field(default_factory=list)

    def __post_init__(self):
        self.gender_confidence = min(1.0, max(0.0, float(self.gender_confidence)))
        self.nsfw_content_density = min(1.0, max(0.0, float(self.nsfw_content_density)))

    @property
    def face_count(self) -> int:
        if self.faces:
            return len(self.faces)
        return self.male_count + self.female_count + self.unknown_count


@dataclass
class SignalEvent:
    """
    A signal as delivered by a source, tagged for ordering.

    `identifier` is the URL or app package in front of the user (if known);
    the engine matches it against the catalog. `generation` ties the event
    to the page it was produced for.
    """

    signal: DetectionSignal
    identifier: Optional[str] = None
    generation: Optional[int] = None


class SignalSource(Protocol):
    """Anything that yields SignalEvents (a screen observer, a test feed...)."""

    def events(self) -> Iterator[SignalEvent]:
        ...

    def close(self) -> None:
        ...
