"""
Ingestion Normalizer - turns raw store snapshots into canonical reports.

The store delivers the FULL collection on every change (replace-by-id, not
deltas). Each application replaces the canonical collection wholesale and
returns a diff against the previous one so consumers can skip work when
nothing changed.

Default policy (applied here and nowhere else):
- pos missing/invalid      -> position None, not spatially queryable
- votes missing/invalid    -> zero votes, not spatially queryable
- radius missing/invalid   -> DEFAULT_RADIUS_METERS; out of range -> clamped
- category unknown         -> Uncategorized
- crimeProb missing        -> DEFAULT_CRIME_PROBABILITY (50); out of range -> clamped to [0, 100]
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
import logging
import math

from sentinel.core.exceptions import ReportValidationError
from sentinel.core.settings import settings
from sentinel.models.report import (
    DEFAULT_CRIME_PROBABILITY,
    MAX_RADIUS_METERS,
    MIN_RADIUS_METERS,
    Category,
    Coordinate,
    Report,
    Votes,
)
from sentinel.utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotDiff:
    """Ids that differ between two consecutive canonical collections."""
    added: FrozenSet[str] = frozenset()
    changed: FrozenSet[str] = frozenset()
    removed: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)


def _as_number(value) -> Optional[float]:
    # bool is an int subclass; a stored True is not a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _first_present(data: Dict, *keys):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


class IngestionNormalizer:
    """
    Holds the canonical projection of the report collection.

    Not thread-safe on its own: the live view synchronizer calls apply()
    inside its critical section.
    """

    def __init__(self, default_radius: Optional[int] = None):
        radius = default_radius if default_radius is not None else settings.DEFAULT_RADIUS_METERS
        self.default_radius = min(MAX_RADIUS_METERS, max(MIN_RADIUS_METERS, int(radius)))
        self._reports: Mapping[str, Report] = MappingProxyType({})

    @property
    def reports(self) -> Mapping[str, Report]:
        """Current canonical collection (read-only view, replaced on apply)."""
        return self._reports

    def apply(self, raw_snapshot: Iterable[Dict]) -> SnapshotDiff:
        """
        Replace the canonical collection with the normalized snapshot.

        Applying the same snapshot twice leaves the state unchanged and
        returns an empty diff.
        """
        previous = self._reports
        current: Dict[str, Report] = {}
        problems: Dict[str, List[ReportValidationError]] = {}

        for raw in raw_snapshot:
            report_id = raw.get("id") if isinstance(raw, dict) else None
            if not isinstance(report_id, str) or not report_id:
                logger.warning("Dropping snapshot record without an id")
                continue
            if report_id in current:
                logger.debug(f"Duplicate id {report_id} in snapshot, keeping last occurrence")
            report, errors = self.normalize_record(report_id, raw)
            current[report_id] = report
            if errors:
                problems[report_id] = errors
            else:
                problems.pop(report_id, None)

        added = frozenset(current.keys() - previous.keys())
        removed = frozenset(previous.keys() - current.keys())
        changed = frozenset(
            rid for rid in current.keys() & previous.keys()
            if current[rid] != previous[rid]
        )

        # Only log validation problems for records that are new or changed
        for rid in added | changed:
            for error in problems.get(rid, []):
                logger.warning(f"ValidationError: {error}")

        self._reports = MappingProxyType(current)
        diff = SnapshotDiff(added=added, changed=changed, removed=removed)
        if not diff.is_empty:
            logger.info(
                f"Snapshot applied: {len(current)} reports "
                f"(+{len(added)} ~{len(changed)} -{len(removed)})"
            )
        return diff

    def normalize_record(self, report_id: str, data: Dict) -> Tuple[Report, List[ReportValidationError]]:
        """Coerce one raw document into a canonical Report."""
        errors: List[ReportValidationError] = []

        position = self._coerce_position(report_id, _first_present(data, "pos", "position"), errors)
        votes, votes_ok = self._coerce_votes(report_id, data.get("votes"), errors)

        title = data.get("title")
        description = _first_present(data, "desc", "description")
        title = title.strip() if isinstance(title, str) else ""
        description = description.strip() if isinstance(description, str) else ""

        report = Report(
            id=report_id,
            position=position,
            title=title,
            description=description,
            category=Category.parse(data.get("category")),
            votes=votes,
            radius=self._coerce_radius(data.get("radius")),
            crime_probability=self._coerce_probability(_first_present(data, "crimeProb", "crimeProbability")),
            created_at=parse_timestamp(_first_present(data, "createdAt", "created_at")),
            spatially_queryable=position is not None and votes_ok,
        )
        return report, errors

    def _coerce_position(self, report_id: str, raw, errors: List[ReportValidationError]) -> Optional[Coordinate]:
        if raw is None:
            errors.append(ReportValidationError(report_id, "pos", "missing"))
            return None
        if not isinstance(raw, dict):
            errors.append(ReportValidationError(report_id, "pos", "not a mapping"))
            return None
        lat = _as_number(raw.get("lat"))
        lng = _as_number(_first_present(raw, "lng", "lon", "longitude"))
        if lat is None or lng is None:
            errors.append(ReportValidationError(report_id, "pos", "lat/lng missing or not numeric"))
            return None
        if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
            errors.append(ReportValidationError(report_id, "pos", f"out of range ({lat}, {lng})"))
            return None
        return Coordinate(lat=lat, lng=lng)

    def _coerce_votes(self, report_id: str, raw, errors: List[ReportValidationError]) -> Tuple[Votes, bool]:
        if raw is None:
            errors.append(ReportValidationError(report_id, "votes", "missing"))
            return Votes(), False
        if not isinstance(raw, dict):
            errors.append(ReportValidationError(report_id, "votes", "not a mapping"))
            return Votes(), False
        counts = {}
        for key in ("up", "down"):
            value = _as_number(raw.get(key, 0))
            if value is None or value < 0 or value != int(value):
                errors.append(ReportValidationError(report_id, "votes", f"'{key}' is not a non-negative integer"))
                return Votes(), False
            counts[key] = int(value)
        return Votes(**counts), True

    def _coerce_radius(self, raw) -> int:
        value = _as_number(raw)
        if value is None:
            return self.default_radius
        return min(MAX_RADIUS_METERS, max(MIN_RADIUS_METERS, int(round(value))))

    @staticmethod
    def _coerce_probability(raw) -> float:
        value = _as_number(raw)
        if value is None:
            return DEFAULT_CRIME_PROBABILITY
        return min(100.0, max(0.0, value))
