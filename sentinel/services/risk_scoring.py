"""
Risk Scorer - crime-risk percentage for an arbitrary query point.

A report contributes to a point when the point lies inside that report's OWN
influence radius. Two statistics are exposed and deliberately kept apart:

- risk_by_category: mean of a per-category severity weight
- risk_by_stored_probability: mean of each report's crimeProb snapshot

Both are full scans over the current canonical collection; there is no
incremental state to keep in sync.
"""

from typing import Dict, Iterable, List
import math

from sentinel.models.report import Category, Coordinate, Report
from sentinel.utils.geo import distance


class RiskScorer:
    """
    Computes risk percentages (0-100) from nearby reports.
    """

    # Configuration: category weights
    CATEGORY_WEIGHTS: Dict[Category, int] = {
        Category.SEVERE: 90,
        Category.MODERATE: 60,
        Category.LOW: 30,
        Category.UNCATEGORIZED: 30,
    }

    @staticmethod
    def _round_half_up(value: float) -> int:
        return int(math.floor(value + 0.5))

    def neighborhood(self, point: Coordinate, reports: Iterable[Report]) -> List[Report]:
        """Spatially queryable reports whose influence radius covers point."""
        return [
            r for r in reports
            if r.spatially_queryable
            and r.position is not None
            and distance(point, r.position) <= r.radius
        ]

    def risk_by_category(self, point: Coordinate, reports: Iterable[Report]) -> int:
        nearby = self.neighborhood(point, reports)
        if not nearby:
            return 0
        total = sum(self.CATEGORY_WEIGHTS[r.category] for r in nearby)
        return self._clamp(self._round_half_up(total / len(nearby)))

    def risk_by_stored_probability(self, point: Coordinate, reports: Iterable[Report]) -> int:
        nearby = self.neighborhood(point, reports)
        if not nearby:
            return 0
        total = sum(r.crime_probability for r in nearby)
        return self._clamp(self._round_half_up(total / len(nearby)))

    def score(self, point: Coordinate, reports: Iterable[Report]) -> Dict[str, int]:
        """Both statistics plus the neighborhood size, from a single scan."""
        nearby = self.neighborhood(point, reports)
        if not nearby:
            return {"risk_by_category": 0, "risk_by_stored_probability": 0, "neighborhood_size": 0}
        by_category = sum(self.CATEGORY_WEIGHTS[r.category] for r in nearby) / len(nearby)
        by_probability = sum(r.crime_probability for r in nearby) / len(nearby)
        return {
            "risk_by_category": self._clamp(self._round_half_up(by_category)),
            "risk_by_stored_probability": self._clamp(self._round_half_up(by_probability)),
            "neighborhood_size": len(nearby),
        }

    @staticmethod
    def _clamp(value: int) -> int:
        return max(0, min(100, value))


_risk_scorer = None


def get_risk_scorer() -> RiskScorer:
    """Get or create RiskScorer singleton."""
    global _risk_scorer
    if _risk_scorer is None:
        _risk_scorer = RiskScorer()
    return _risk_scorer


def risk_by_category(point: Coordinate, reports: Iterable[Report]) -> int:
    return get_risk_scorer().risk_by_category(point, reports)


def risk_by_stored_probability(point: Coordinate, reports: Iterable[Report]) -> int:
    return get_risk_scorer().risk_by_stored_probability(point, reports)
