"""
Tests for detection/: policy clamping and decision aggregation.
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import patch

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.categories import BlockingCategory
from catalog.matcher import MatchResult
from detection.aggregator import RecommendedAction, SignalAggregator, density_warning_level, face_should_blur
from detection.policy import Policy
from detection.signals import DetectedFace, DetectionSignal, Gender, Region, SpatialDistribution


def site_match(category, confidence=0.9):
    return MatchResult(
        category=category,
        confidence=confidence,
        matched_pattern="blocked.example",
        is_custom=False,
        entry_id=1,
        domain_hash="h",
    )


class TestPolicy(unittest.TestCase):

    def test_defaults(self):
        policy = Policy()
        self.assertEqual(policy.gender_confidence_threshold, 0.8)
        self.assertEqual(policy.content_density_threshold, 0.4)
        self.assertFalse(policy.blur_males)
        self.assertTrue(policy.blur_females)
        self.assertEqual(policy.mandatory_reflection_time, 15)

    def test_out_of_range_values_clamped(self):
        with self.assertLogs("detection.policy", level="WARNING"):
            policy = Policy(gender_confidence_threshold=1.5, nsfw_confidence_threshold=-0.2, content_density_threshold=1.0)
        self.assertEqual(policy.gender_confidence_threshold, 1.0)
        self.assertEqual(policy.nsfw_confidence_threshold, 0.0)
        self.assertLess(policy.content_density_threshold, 1.0)

    def test_reflection_range_clamped(self):
        policy = Policy(min_reflection_seconds=20, max_reflection_seconds=10)
        self.assertEqual(policy.max_reflection_seconds, 20)
        self.assertEqual(policy.clip_reflection(5), 20)

    def test_from_config(self):
        with patch("config.CONTENT_DENSITY_THRESHOLD", 0.55), patch("config.BLUR_MALES", True):
            policy = Policy.from_config()
        self.assertEqual(policy.content_density_threshold, 0.55)
        self.assertTrue(policy.blur_males)


class TestFaceBlur(unittest.TestCase):

    def test_fail_safe_unknown_low_confidence(self):
        policy = Policy(gender_confidence_threshold=0.8, blur_females=True, blur_males=False)
        self.assertTrue(face_should_blur(Gender.UNKNOWN, 0.5, policy))

    def test_confident_gender_follows_flags(self):
        policy = Policy(blur_females=True, blur_males=False)
        self.assertTrue(face_should_blur(Gender.FEMALE, 0.95, policy))
        self.assertFalse(face_should_blur(Gender.MALE, 0.95, policy))

    def test_low_confidence_male_blurred_when_any_flag(self):
        policy = Policy(blur_females=True, blur_males=False)
        self.assertTrue(face_should_blur(Gender.MALE, 0.3, policy))

    def test_no_flags_never_blurs(self):
        policy = Policy(blur_females=False, blur_males=False)
        self.assertFalse(face_should_blur(Gender.UNKNOWN, 0.1, policy))


class TestSignalAggregator(unittest.TestCase):

    def setUp(self):
        self.aggregator = SignalAggregator(Policy())

    def test_empty_signal_allows(self):
        decision = self.aggregator.decide(DetectionSignal())
        self.assertEqual(decision.recommended_action, RecommendedAction.ALLOW)
        self.assertFalse(decision.should_blur)
        self.assertFalse(decision.requires_reflection)
        self.assertEqual(decision.warning_level, 0)

    def test_density_above_threshold_full_screen(self):
        decision = self.aggregator.decide(DetectionSignal(nsfw_content_density=0.45))
        self.assertEqual(decision.recommended_action, RecommendedAction.FULL_SCREEN_BLUR)
        self.assertGreaterEqual(decision.warning_level, 3)
        self.assertLess(decision.warning_level, 4)
        self.assertTrue(decision.requires_reflection)
        self.assertEqual(decision.category, BlockingCategory.INAPPROPRIATE_IMAGERY)
        self.assertEqual(decision.reflection_seconds, 15)

    def test_density_below_threshold_at_most_blur_regions(self):
        signal = DetectionSignal(nsfw_content_density=0.35, nsfw_regions=[Region(0, 0, 10, 10, confidence=0.9)])
        decision = self.aggregator.decide(signal)
        self.assertEqual(decision.recommended_action, RecommendedAction.BLUR_REGIONS)
        self.assertEqual(decision.warning_level, 1)
        self.assertFalse(decision.requires_reflection)

        decision = self.aggregator.decide(DetectionSignal(nsfw_content_density=0.35))
        self.assertEqual(decision.recommended_action, RecommendedAction.ALLOW)

    def test_warning_level_scale(self):
        self.assertAlmostEqual(density_warning_level(0.4, 0.4), 3.0)
        self.assertAlmostEqual(density_warning_level(1.0, 0.4), 5.0)
        self.assertAlmostEqual(density_warning_level(0.7, 0.4), 4.0)

    def test_full_screen_disabled(self):
        aggregator = SignalAggregator(Policy(full_screen_warning_enabled=False))
        decision = aggregator.decide(DetectionSignal(nsfw_content_density=0.9))
        self.assertNotEqual(decision.recommended_action, RecommendedAction.FULL_SCREEN_BLUR)

    def test_unknown_face_low_confidence_blurred(self):
        policy = Policy(gender_confidence_threshold=0.8, blur_females=True, blur_males=False)
        face = DetectedFace(region=Region(0, 0, 50, 50), gender=Gender.UNKNOWN, gender_confidence=0.5)
        decision = SignalAggregator(policy).decide(DetectionSignal(faces=[face]))
        self.assertEqual(decision.recommended_action, RecommendedAction.BLUR_REGIONS)
        self.assertEqual(decision.blur_regions, [face.region])

    def test_counts_without_face_list(self):
        decision = self.aggregator.decide(DetectionSignal(male_count=2, gender_confidence=0.95))
        self.assertEqual(decision.recommended_action, RecommendedAction.ALLOW)

        decision = self.aggregator.decide(DetectionSignal(female_count=1, gender_confidence=0.95))
        self.assertEqual(decision.recommended_action, RecommendedAction.BLUR_REGIONS)
        self.assertEqual(decision.blurred_face_count, 1)

        decision = self.aggregator.decide(DetectionSignal(male_count=1, gender_confidence=0.5))
        self.assertEqual(decision.blurred_face_count, 1)

    def test_low_confidence_nsfw_region_ignored(self):
        signal = DetectionSignal(nsfw_regions=[Region(0, 0, 10, 10, confidence=0.3)])
        self.assertEqual(self.aggregator.decide(signal).recommended_action, RecommendedAction.ALLOW)

    def test_site_match_blocks_navigation(self):
        decision = self.aggregator.decide(DetectionSignal(site_match=site_match(BlockingCategory.GAMBLING)))
        self.assertEqual(decision.recommended_action, RecommendedAction.BLOCK_NAVIGATION)
        self.assertEqual(decision.category, BlockingCategory.GAMBLING)
        self.assertEqual(decision.warning_level, 3)
        self.assertEqual(decision.reflection_seconds, 10)
        self.assertTrue(decision.requires_reflection)
        self.assertTrue(decision.should_blur)

    def test_severe_site_uses_mandatory_reflection(self):
        aggregator = SignalAggregator(Policy(mandatory_reflection_time=25))
        decision = aggregator.decide(DetectionSignal(site_match=site_match(BlockingCategory.EXPLICIT_CONTENT)))
        self.assertEqual(decision.reflection_seconds, 25)

        aggregator = SignalAggregator(Policy(mandatory_reflection_time=10))
        decision = aggregator.decide(DetectionSignal(site_match=site_match(BlockingCategory.EXPLICIT_CONTENT)))
        self.assertEqual(decision.reflection_seconds, 20)

    def test_site_reflection_clipped_to_range(self):
        aggregator = SignalAggregator(Policy(min_reflection_seconds=12, max_reflection_seconds=30))
        decision = aggregator.decide(DetectionSignal(site_match=site_match(BlockingCategory.GAMBLING)))
        self.assertEqual(decision.reflection_seconds, 12)

    def test_low_confidence_site_ignored(self):
        signal = DetectionSignal(site_match=site_match(BlockingCategory.GAMBLING, confidence=0.3))
        self.assertEqual(self.aggregator.decide(signal).recommended_action, RecommendedAction.ALLOW)

    def test_site_blocking_disabled(self):
        aggregator = SignalAggregator(Policy(enable_site_blocking=False))
        decision = aggregator.decide(DetectionSignal(site_match=site_match(BlockingCategory.GAMBLING)))
        self.assertEqual(decision.recommended_action, RecommendedAction.ALLOW)

    def test_tie_break_higher_severity_wins(self):
        # Gambling (3) loses to the density warning (4)
        signal = DetectionSignal(site_match=site_match(BlockingCategory.GAMBLING), nsfw_content_density=0.9)
        decision = self.aggregator.decide(signal)
        self.assertEqual(decision.recommended_action, RecommendedAction.FULL_SCREEN_BLUR)
        self.assertEqual(decision.category, BlockingCategory.INAPPROPRIATE_IMAGERY)

        # Explicit content (5) beats it
        signal = DetectionSignal(site_match=site_match(BlockingCategory.EXPLICIT_CONTENT), nsfw_content_density=0.9)
        decision = self.aggregator.decide(signal)
        self.assertEqual(decision.recommended_action, RecommendedAction.BLOCK_NAVIGATION)
        self.assertEqual(decision.reflection_seconds, 20)

    def test_tie_break_equal_severity_site_wins(self):
        signal = DetectionSignal(site_match=site_match(BlockingCategory.VIOLENCE), nsfw_content_density=0.9)
        decision = self.aggregator.decide(signal)
        self.assertEqual(decision.recommended_action, RecommendedAction.BLOCK_NAVIGATION)
        self.assertEqual(decision.category, BlockingCategory.VIOLENCE)

    def test_per_call_policy_override(self):
        decision = self.aggregator.decide(
            DetectionSignal(nsfw_content_density=0.3),
            Policy(content_density_threshold=0.25),
        )
        self.assertEqual(decision.recommended_action, RecommendedAction.FULL_SCREEN_BLUR)

    def test_distribution_in_reason(self):
        spread = SpatialDistribution(0.5, 0.5, 0.5, 0.5, 0.5)
        decision = self.aggregator.decide(DetectionSignal(nsfw_content_density=0.5, spatial_distribution=spread))
        self.assertIn("distributed", decision.reason)


class TestSpatialDistribution(unittest.TestCase):

    def test_even_content_is_distributed(self):
        spread = SpatialDistribution(0.4, 0.4, 0.4, 0.4, 0.4)
        self.assertTrue(spread.is_content_distributed())
        self.assertFalse(spread.is_content_concentrated())

    def test_concentrated_content(self):
        spread = SpatialDistribution(top_left=0.9)
        self.assertTrue(spread.is_content_concentrated())
        self.assertFalse(spread.is_content_distributed())
        self.assertEqual(spread.highest_density_area(), "top_left")


if __name__ == "__main__":
    unittest.main()
