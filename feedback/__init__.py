"""
Feedback package: hit counters, false-positive reports and config issues.
"""

from feedback.recorder import ConfigIssue, FalsePositiveReport, FeedbackRecorder, ReportStatus

__all__ = [
    "ConfigIssue",
    "FalsePositiveReport",
    "FeedbackRecorder",
    "ReportStatus",
]
