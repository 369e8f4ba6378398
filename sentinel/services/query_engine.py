"""
Query/Filter/Sort Engine - builds the ordered report list for a view.

Pipeline, always in this order:
1. text filter (case-insensitive substring of "title description")
2. spatial filter (nearby mode only)
3. stable sort by the selected key

Pure: identical inputs always give an identical list.
"""

from typing import Dict, Iterable, List, Optional

from sentinel.models.report import Category, Coordinate, Report
from sentinel.models.view import QueryState, SortKey, SpatialMode
from sentinel.utils.geo import distance


SEVERITY_RANK: Dict[Category, int] = {
    Category.SEVERE: 3,
    Category.MODERATE: 2,
    Category.LOW: 1,
    Category.UNCATEGORIZED: 0,
}


def matches_text(report: Report, search: str) -> bool:
    if not search:
        return True
    return search.lower() in f"{report.title} {report.description}".lower()


def within_range(report: Report, reference_point: Optional[Coordinate], range_km: float) -> bool:
    if not report.spatially_queryable or report.position is None:
        return False
    if reference_point is None:
        # No reference point yet: only queryability applies
        return True
    return distance(reference_point, report.position) <= range_km * 1000


def _sort_key(sort_by: SortKey):
    if sort_by == SortKey.DOWNVOTES:
        return lambda r: -r.votes.down
    if sort_by == SortKey.SEVERITY:
        return lambda r: -SEVERITY_RANK[r.category]
    return lambda r: -r.votes.up


def build_view(
    reports: Iterable[Report],
    query_state: QueryState,
    reference_point: Optional[Coordinate] = None,
) -> List[Report]:
    """
    Filter and order reports for presentation.

    Ties keep their incoming relative order (sorted() is stable), so a
    static collection renders in the same order every time.
    """
    selected = [r for r in reports if matches_text(r, query_state.search)]

    if query_state.mode == SpatialMode.NEARBY:
        selected = [r for r in selected if within_range(r, reference_point, query_state.range_km)]

    return sorted(selected, key=_sort_key(query_state.sort_by))
