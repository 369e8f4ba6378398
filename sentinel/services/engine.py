"""
Sentinel engine - wires the repository, synchronizer and vote ledger together.

All shared mutable state (canonical collection, vote bookkeeping) is guarded
by one re-entrant lock. The lock is never held across repository I/O.
"""

from typing import Optional, Set
import logging
import threading

from sentinel.core.settings import settings
from sentinel.models.report import Coordinate, ReportCreate, ReportCreated
from sentinel.models.view import QueryState, RiskResponse, ViewSnapshot
from sentinel.models.vote import VoteResult
from sentinel.services.classifier.registry import ClassifierRegistry
from sentinel.services.live_view import LiveViewSynchronizer, SnapshotListener, SyncState, ViewSession
from sentinel.services.report_service import create_report
from sentinel.services.repository.base import ReportRepository
from sentinel.services.risk_scoring import get_risk_scorer
from sentinel.services.vote_ledger import VoteLedger

logger = logging.getLogger(__name__)


def build_repository() -> ReportRepository:
    """Firestore, or the in-memory store when USE_MOCK_DB is set."""
    if settings.USE_MOCK_DB:
        from sentinel.services.repository.memory_repository import InMemoryReportRepository
        logger.info("Using in-memory report store (USE_MOCK_DB=true)")
        return InMemoryReportRepository()

    from sentinel.services.repository.firestore_repository import FirestoreReportRepository
    return FirestoreReportRepository()


class SentinelEngine:
    def __init__(
        self,
        repository: Optional[ReportRepository] = None,
        synchronizer: Optional[LiveViewSynchronizer] = None,
        ledger: Optional[VoteLedger] = None,
        registry: Optional[ClassifierRegistry] = None,
    ):
        self.repository = repository or build_repository()
        self.lock = threading.RLock()
        self.scorer = get_risk_scorer()
        self.synchronizer = synchronizer or LiveViewSynchronizer(
            self.repository, lock=self.lock, scorer=self.scorer
        )
        self.ledger = ledger or VoteLedger(
            self.repository, lock=self.lock, report_lookup=self.synchronizer.has_report
        )
        self.registry = registry

    def start(self) -> None:
        logger.info("Starting report synchronization")
        self.synchronizer.start()

    def stop(self) -> None:
        logger.info("Stopping report synchronization")
        self.synchronizer.stop()

    @property
    def state(self) -> SyncState:
        return self.synchronizer.state

    def status(self) -> dict:
        return {
            "state": self.synchronizer.state.value,
            "connectivity": self.synchronizer.connectivity.value,
            "reports": len(self.synchronizer.reports),
        }

    # Views

    def open_session(
        self,
        listener: Optional[SnapshotListener] = None,
        query_state: Optional[QueryState] = None,
        reference_point: Optional[Coordinate] = None,
    ) -> ViewSession:
        return self.synchronizer.open_session(listener, query_state, reference_point)

    def snapshot_for(
        self,
        query_state: QueryState,
        reference_point: Optional[Coordinate] = None,
    ) -> ViewSnapshot:
        return self.synchronizer.snapshot_for(query_state, reference_point)

    def risk_at(self, point: Coordinate) -> RiskResponse:
        scores = self.scorer.score(point, self.synchronizer.reports.values())
        return RiskResponse(lat=point.lat, lng=point.lng, **scores)

    # Writes

    def create_report(self, report_data: ReportCreate) -> ReportCreated:
        return create_report(
            report_data,
            self.repository,
            list(self.synchronizer.reports.values()),
            registry=self.registry,
            scorer=self.scorer,
        )

    def vote(self, user_id: Optional[str], report_id: str, direction) -> VoteResult:
        return self.ledger.vote(user_id, report_id, direction)

    def voted_report_ids(self, user_id: Optional[str]) -> Set[str]:
        return self.ledger.voted_report_ids(user_id)


# Global engine instance (singleton)
_engine: Optional[SentinelEngine] = None


def get_engine() -> SentinelEngine:
    global _engine
    if _engine is None:
        _engine = SentinelEngine()
    return _engine


def set_engine(engine: Optional[SentinelEngine]) -> None:
    """Replace the global engine (tests, alternative wiring)."""
    global _engine
    _engine = engine
