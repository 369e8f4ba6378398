"""
Pydantic models for incident reports.
These models hold the canonical (normalized) report shape and handle
validation for report submission and responses.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from enum import Enum


MIN_RADIUS_METERS = 50
MAX_RADIUS_METERS = 5000
# Assumed risk for a report stored without a crimeProb snapshot
DEFAULT_CRIME_PROBABILITY = 50.0


class Category(str, Enum):
    """
    Severity label assigned once at creation by the classifier.
    Never recomputed after the report is stored.
    """
    SEVERE = "Severe"
    MODERATE = "Moderate"
    LOW = "Low"
    UNCATEGORIZED = "Uncategorized"

    @classmethod
    def parse(cls, value) -> "Category":
        """Map a free-form label (e.g. raw model output) to a category."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.UNCATEGORIZED
        cleaned = value.strip().strip(".\"'*` ").lower()
        for member in cls:
            if member.value.lower() == cleaned:
                return member
        return cls.UNCATEGORIZED


class Coordinate(BaseModel):
    """A WGS84 point."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")

    class Config:
        frozen = True


class Votes(BaseModel):
    """Vote counters. Only ever incremented."""
    up: int = Field(default=0, ge=0)
    down: int = Field(default=0, ge=0)

    class Config:
        frozen = True

    @property
    def score(self) -> int:
        return self.up - self.down


class Report(BaseModel):
    """
    Canonical report record, produced only by the ingestion normalizer.

    Records whose position or votes failed validation are kept for display
    with spatially_queryable=False; they never take part in distance-based
    filtering or risk computation.
    """
    id: str = Field(..., description="Document ID assigned by the store")
    position: Optional[Coordinate] = Field(None, description="Report location")
    title: str = ""
    description: str = ""
    category: Category = Category.UNCATEGORIZED
    votes: Votes = Field(default_factory=Votes)
    radius: int = Field(default=300, ge=MIN_RADIUS_METERS, le=MAX_RADIUS_METERS, description="Influence radius in meters")
    crime_probability: float = Field(
        default=DEFAULT_CRIME_PROBABILITY, ge=0, le=100, description="Risk snapshot captured at creation"
    )
    created_at: Optional[datetime] = None
    spatially_queryable: bool = True

    class Config:
        frozen = True


class ReportCreate(BaseModel):
    """
    Model for creating a new report (incoming POST request).
    Category is assigned server-side. crime_rate is an optional reporter
    estimate; without it the stored crimeProb is the category-weighted risk
    at the position when the report is created.
    """
    title: str = Field(..., min_length=1, max_length=200, description="Short incident title")
    description: str = Field(..., min_length=1, max_length=2000, description="What was observed")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius: int = Field(default=300, ge=MIN_RADIUS_METERS, le=MAX_RADIUS_METERS, description="Influence radius in meters")
    crime_rate: Optional[float] = Field(None, ge=0, le=100, description="Reporter-supplied crime rate stored as crimeProb")

    class Config:
        str_strip_whitespace = True
        extra = "ignore"
        json_schema_extra = {
            "example": {
                "title": "Flooded street",
                "description": "Heavy rains have made the street impassable.",
                "latitude": 37.7749,
                "longitude": -122.4194,
                "radius": 300,
            }
        }


class ReportCreated(BaseModel):
    """Response for a stored report."""
    id: str
    category: Category
    crime_probability: float
