"""
Detection package: signal model, policy and decision aggregation.
"""

from detection.aggregator import BlockingDecision, RecommendedAction, SignalAggregator
from detection.policy import Policy
from detection.signals import (
    DetectedFace,
    DetectionSignal,
    Gender,
    Region,
    SignalEvent,
    SignalSource,
    SpatialDistribution,
)

__all__ = [
    "BlockingDecision",
    "DetectedFace",
    "DetectionSignal",
    "Gender",
    "Policy",
    "RecommendedAction",
    "Region",
    "SignalAggregator",
    "SignalEvent",
    "SignalSource",
    "SpatialDistribution",
]
