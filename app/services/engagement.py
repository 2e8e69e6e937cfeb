"""
Percentile based engagement segmentation.
"""
import math
from typing import NamedTuple, Optional, Sequence, Tuple

HIGH = "high"
MEDIUM = "medium"
LOW = "low"
AT_RISK = "at_risk"


class EngagementSplit(NamedTuple):
    low: int
    medium: int
    high: int

    @property
    def total(self) -> int:
        return self.low + self.medium + self.high


def engagement_thresholds(scores: Sequence[float]) -> Optional[Tuple[float, float]]:
    """
    Values at the 30th and 70th percentile positions of the sorted scores.

    The positions are floor(n * 0.3) - 1 and floor(n * 0.7), clamped to the
    list. Returns None for an empty population.
    """
    if not scores:
        return None
    ordered = sorted(scores)
    n = len(ordered)
    p30 = ordered[max(0, math.floor(n * 0.3) - 1)]
    p70 = ordered[min(n - 1, math.floor(n * 0.7))]
    return p30, p70


def classify_score(score: float, thresholds: Tuple[float, float]) -> str:
    p30, p70 = thresholds
    if score > p70:
        return HIGH
    if score >= p30:
        return MEDIUM
    return LOW


def segment_engagement(scores: Sequence[float]) -> EngagementSplit:
    """Partition sizes (low, medium, high) of a population of activity scores."""
    thresholds = engagement_thresholds(scores)
    if thresholds is None:
        return EngagementSplit(0, 0, 0)

    counts = {LOW: 0, MEDIUM: 0, HIGH: 0}
    for score in scores:
        counts[classify_score(score, thresholds)] += 1
    return EngagementSplit(counts[LOW], counts[MEDIUM], counts[HIGH])
