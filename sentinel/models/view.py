"""
Query state and view snapshot models.

A ViewSnapshot is an immutable, fully computed result handed to the
presentation layer. Nothing downstream mutates it.
"""

from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional, Tuple
from enum import Enum

from sentinel.models.report import Coordinate, Report


class SpatialMode(str, Enum):
    NEARBY = "nearby"
    UNBOUNDED = "unbounded"

    @classmethod
    def _missing_(cls, value):
        # The map UI labels unbounded mode "worldwide"
        if isinstance(value, str) and value.lower() == "worldwide":
            return cls.UNBOUNDED
        return None


class SortKey(str, Enum):
    UPVOTES = "upvotes"
    DOWNVOTES = "downvotes"
    SEVERITY = "severity"


class Connectivity(str, Enum):
    READY = "READY"
    STALE = "STALE"
    LOADING = "LOADING"


class QueryState(BaseModel):
    """Ephemeral per-session query parameters."""
    search: str = ""
    mode: SpatialMode = SpatialMode.NEARBY
    range_km: float = Field(default=7.0, gt=0, description="Nearby range in kilometers")
    sort_by: SortKey = SortKey.UPVOTES

    class Config:
        frozen = True

    def merged(self, **partial) -> "QueryState":
        """Return a validated copy with the given fields replaced."""
        data = self.model_dump()
        data.update({k: v for k, v in partial.items() if v is not None})
        return QueryState(**data)


class ViewSnapshot(BaseModel):
    """Published result of one recomputation."""
    version: int = 0
    reports: Tuple[Report, ...] = ()
    risk_by_category: int = Field(default=0, ge=0, le=100)
    risk_by_stored_probability: int = Field(default=0, ge=0, le=100)
    connectivity: Connectivity = Connectivity.LOADING
    query: QueryState = Field(default_factory=QueryState)
    reference_point: Optional[Coordinate] = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True


class RiskResponse(BaseModel):
    lat: float
    lng: float
    risk_by_category: int
    risk_by_stored_probability: int
    neighborhood_size: int
