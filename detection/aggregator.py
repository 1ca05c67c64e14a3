"""
Signal aggregation: merges catalog matches and ML signals into one decision.

Content-signal uncertainty fails restrictive: a face whose gender is not
resolved confidently is blurred whenever any blur flag is on.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from catalog.categories import NSFW_DENSITY_CATEGORY, BlockingCategory
from detection.policy import Policy
from detection.signals import DetectionSignal, Gender, Region

logger = logging.getLogger(__name__)

# Warning levels outside the reflection path
WARNING_LEVEL_NONE = 0.0
WARNING_LEVEL_BLUR = 1.0


class RecommendedAction(Enum):
    ALLOW = "allow"
    BLUR_REGIONS = "blur_regions"
    FULL_SCREEN_BLUR = "full_screen_blur"
    BLOCK_NAVIGATION = "block_navigation"

    @property
    def requires_reflection(self) -> bool:
        return self in (RecommendedAction.FULL_SCREEN_BLUR, RecommendedAction.BLOCK_NAVIGATION)


@dataclass
class BlockingDecision:
    """What the overlay and navigation layers should do for one signal."""

    recommended_action: RecommendedAction
    should_blur: bool = False
    blur_regions: List[Region] = field(default_factory=list)
    blurred_face_count: int = 0
    category: Optional[BlockingCategory] = None
    confidence: float = 0.0
    reflection_seconds: int = 0
    warning_level: float = WARNING_LEVEL_NONE
    reason: str = ""
    generation: Optional[int] = None

    @property
    def requires_reflection(self) -> bool:
        return self.recommended_action.requires_reflection

    def to_dict(self) -> dict:
        return {
            "recommended_action": self.recommended_action.value,
            "should_blur": self.should_blur,
            "blur_regions": len(self.blur_regions),
            "blurred_face_count": self.blurred_face_count,
            "category": self.category.name if self.category else None,
            "confidence": round(self.confidence, 3),
            "reflection_seconds": self.reflection_seconds,
            "warning_level": round(self.warning_level, 2),
            "requires_reflection": self.requires_reflection,
            "reason": self.reason,
            "generation": self.generation,
        }


def face_should_blur(gender: Gender, gender_confidence: float, policy: Policy) -> bool:
    """
    Gender-gated blur for a single face.

    Below the confidence threshold the face counts as unresolved and is
    blurred if either blur flag is enabled.
    """
    if not (policy.blur_males or policy.blur_females):
        return False
    if gender_confidence < policy.gender_confidence_threshold:
        return True
    if gender == Gender.MALE:
        return policy.blur_males
    if gender == Gender.FEMALE:
        return policy.blur_females
    return True


def density_warning_level(density: float, threshold: float) -> float:
    """Scale linearly from 3 at the threshold to 5 at full density."""
    return float(np.interp(density, [threshold, 1.0], [3.0, 5.0]))


class SignalAggregator:
    """
    Turns a DetectionSignal into a BlockingDecision.

    decide() is pure and synchronous; it never touches storage.
    """

    def __init__(self, policy: Optional[Policy] = None):
        self.policy = policy or Policy()

    def decide(self, signal: DetectionSignal, policy: Optional[Policy] = None) -> BlockingDecision:
        """
        Combine site match, face and NSFW density signals.

        Args:
            signal: Signals for one evaluation.
            policy: Overrides the aggregator's policy for this call.

        Returns:
            The decision. Site and density warnings compete on severity;
            on equal severity the site block wins.
        """
        policy = policy or self.policy
        regions, blurred_faces = self._collect_blur_regions(signal, policy)

        site = self._site_decision(signal, policy)
        density = self._density_decision(signal, policy)

        if site and density:
            winner = site if site.category.severity >= NSFW_DENSITY_CATEGORY.severity else density
            logger.debug(
                f"Site ({site.category.name}) and density both qualify; "
                f"{winner.recommended_action.value} wins"
            )
        else:
            winner = site or density

        if winner is None:
            if regions or blurred_faces:
                winner = BlockingDecision(
                    recommended_action=RecommendedAction.BLUR_REGIONS,
                    confidence=max((r.confidence for r in regions), default=signal.gender_confidence),
                    warning_level=WARNING_LEVEL_BLUR,
                    reason=f"Blurring {len(regions)} region(s), {blurred_faces} face(s)",
                )
            else:
                winner = BlockingDecision(
                    recommended_action=RecommendedAction.ALLOW,
                    reason="No blocking signals",
                )

        winner.blur_regions = regions
        winner.blurred_face_count = blurred_faces
        winner.should_blur = winner.recommended_action != RecommendedAction.ALLOW
        return winner

    def _site_decision(self, signal: DetectionSignal, policy: Policy) -> Optional[BlockingDecision]:
        match = signal.site_match
        if match is None or not policy.enable_site_blocking:
            return None
        if match.confidence < policy.min_site_confidence:
            logger.debug(
                f"Site match '{match.matched_pattern}' below confidence "
                f"({match.confidence:.2f} < {policy.min_site_confidence:.2f})"
            )
            return None

        category = match.category
        if category.severity >= 5:
            seconds = max(category.default_reflection_seconds, policy.mandatory_reflection_time)
        else:
            seconds = policy.clip_reflection(category.default_reflection_seconds)

        return BlockingDecision(
            recommended_action=RecommendedAction.BLOCK_NAVIGATION,
            category=category,
            confidence=match.confidence,
            reflection_seconds=seconds,
            warning_level=float(category.severity),
            reason=f"{category.display_name} site blocked ({match.matched_pattern})",
        )

    def _density_decision(self, signal: DetectionSignal, policy: Policy) -> Optional[BlockingDecision]:
        density = signal.nsfw_content_density
        if not policy.full_screen_warning_enabled or density < policy.content_density_threshold:
            return None

        reason = (
            f"Content density ({int(density * 100)}%) exceeds threshold "
            f"({int(policy.content_density_threshold * 100)}%)"
        )
        spread = signal.spatial_distribution
        if spread is not None:
            if spread.is_content_distributed():
                reason += "; distributed across screen"
            elif spread.is_content_concentrated():
                reason += f"; concentrated in {spread.highest_density_area()}"

        return BlockingDecision(
            recommended_action=RecommendedAction.FULL_SCREEN_BLUR,
            category=NSFW_DENSITY_CATEGORY,
            confidence=density,
            reflection_seconds=policy.clip_reflection(policy.mandatory_reflection_time),
            warning_level=density_warning_level(density, policy.content_density_threshold),
            reason=reason,
        )

    @staticmethod
    def _collect_blur_regions(signal: DetectionSignal, policy: Policy):
        """Regions to blur plus the number of faces that need blurring."""
        regions: List[Region] = []
        blurred_faces = 0

        if signal.faces:
            for face in signal.faces:
                if face_should_blur(face.gender, face.gender_confidence, policy):
                    regions.append(face.region)
                    blurred_faces += 1
        else:
            counts = (
                (Gender.MALE, signal.male_count),
                (Gender.FEMALE, signal.female_count),
                (Gender.UNKNOWN, signal.unknown_count),
            )
            for gender, count in counts:
                if count > 0 and face_should_blur(gender, signal.gender_confidence, policy):
                    blurred_faces += count

        for region in signal.nsfw_regions:
            if region.confidence >= policy.nsfw_confidence_threshold:
                regions.append(region)

        return regions, blurred_faces
