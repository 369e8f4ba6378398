"""
Report service - business logic for new incident reports.

DESIGN NOTE:
- Category is assigned once here by the severity classifier and never
  recomputed afterwards
- crimeProb is the reporter-supplied crime_rate when given, otherwise a
  snapshot of the category-weighted risk at the report's position at
  creation time. The fallback ties the two risk statistics together for
  reports created here
- Classifier failures never block creation (Uncategorized is stored)
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
import logging

from sentinel.models.report import Coordinate, Report, ReportCreate, ReportCreated
from sentinel.services.classifier.registry import ClassifierRegistry, get_classifier_registry
from sentinel.services.repository.base import ReportRepository
from sentinel.services.risk_scoring import RiskScorer, get_risk_scorer

logger = logging.getLogger(__name__)


def build_report_record(
    report_data: ReportCreate,
    category: str,
    crime_probability: float,
    created_at: Optional[datetime] = None,
) -> Dict:
    """Stored document shape shared with the web client."""
    created_at = created_at or datetime.now(timezone.utc)
    return {
        "pos": {"lat": report_data.latitude, "lng": report_data.longitude},
        "title": report_data.title,
        "desc": report_data.description,
        "category": category,
        "votes": {"up": 0, "down": 0},
        "radius": report_data.radius,
        "crimeProb": crime_probability,
        "createdAt": created_at.isoformat(),
    }


def create_report(
    report_data: ReportCreate,
    repository: ReportRepository,
    current_reports: Iterable[Report],
    registry: Optional[ClassifierRegistry] = None,
    scorer: Optional[RiskScorer] = None,
) -> ReportCreated:
    """
    Classify, score and store a new report.

    Flow:
    1. Classify severity (advisory, Uncategorized on failure)
    2. Take crime_rate, or capture risk at the position from the current collection
    3. Store the document; the live view picks it up from the stream

    Args:
        report_data: Validated report data from POST request
        repository: Backing store
        current_reports: Canonical collection at creation time

    Returns:
        ReportCreated with the store-assigned id
    """
    registry = registry or get_classifier_registry()
    scorer = scorer or get_risk_scorer()

    category = registry.classify(report_data.title, report_data.description)

    if report_data.crime_rate is not None:
        crime_probability = float(report_data.crime_rate)
    else:
        position = Coordinate(lat=report_data.latitude, lng=report_data.longitude)
        crime_probability = float(scorer.risk_by_category(position, current_reports))

    record = build_report_record(report_data, category.value, crime_probability)
    report_id = repository.create(record)

    logger.info(
        f"Report created: {report_id} category={category.value} crimeProb={crime_probability:.0f}"
    )
    return ReportCreated(id=report_id, category=category, crime_probability=crime_probability)
