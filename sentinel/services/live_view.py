"""
Live View Synchronizer - keeps view sessions in step with the report stream.

State machine:
    LOADING -> READY -> UPDATING -> READY -> ...
    any state -> ERROR (terminal; subscription retries exhausted)

- LOADING: no snapshot yet, nothing queryable
- READY: canonical collection available
- UPDATING: a new snapshot is being normalized; the last READY collection
  stays servable
- ERROR: the last READY view is kept and served tagged STALE

Each consumer opens a ViewSession holding its own query state and reference
point. Every return to READY recomputes and publishes a fresh ViewSnapshot to
every open session.
"""

from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional
import itertools
import logging
import random
import threading

from sentinel.core.exceptions import RepositoryUnavailable
from sentinel.core.settings import settings
from sentinel.models.report import Coordinate, Report
from sentinel.models.view import Connectivity, QueryState, ViewSnapshot
from sentinel.services.ingestion import IngestionNormalizer
from sentinel.services.query_engine import build_view
from sentinel.services.repository.base import ReportRepository, Subscription
from sentinel.services.risk_scoring import RiskScorer, get_risk_scorer

logger = logging.getLogger(__name__)


SnapshotListener = Callable[[ViewSnapshot], None]


class SyncState(str, Enum):
    LOADING = "LOADING"
    READY = "READY"
    UPDATING = "UPDATING"
    ERROR = "ERROR"


ALLOWED_TRANSITIONS: Dict[SyncState, List[SyncState]] = {
    SyncState.LOADING: [SyncState.READY, SyncState.ERROR],
    SyncState.READY: [SyncState.UPDATING, SyncState.ERROR],
    SyncState.UPDATING: [SyncState.READY, SyncState.ERROR],
    SyncState.ERROR: [],
}


def compute_snapshot(
    reports: Mapping[str, Report],
    query_state: QueryState,
    reference_point: Optional[Coordinate],
    connectivity: Connectivity,
    version: int = 0,
    scorer: Optional[RiskScorer] = None,
) -> ViewSnapshot:
    """Pure recomputation of one view."""
    scorer = scorer or get_risk_scorer()
    collection = list(reports.values())
    ordered = build_view(collection, query_state, reference_point)

    if reference_point is not None:
        scores = scorer.score(reference_point, collection)
    else:
        scores = {"risk_by_category": 0, "risk_by_stored_probability": 0}

    return ViewSnapshot(
        version=version,
        reports=tuple(ordered),
        risk_by_category=scores["risk_by_category"],
        risk_by_stored_probability=scores["risk_by_stored_probability"],
        connectivity=connectivity,
        query=query_state,
        reference_point=reference_point,
    )


class ViewSession:
    """
    One consumer's view: query state, reference point and listener.

    Closing a session drops any recomputation still in flight for it.
    """

    def __init__(
        self,
        synchronizer: "LiveViewSynchronizer",
        session_id: int,
        listener: Optional[SnapshotListener],
        query_state: QueryState,
        reference_point: Optional[Coordinate],
    ):
        self.id = session_id
        self._synchronizer = synchronizer
        self._listener = listener
        self._query_state = query_state
        self._reference_point = reference_point
        self._lock = threading.Lock()
        self._notify_lock = threading.RLock()
        self._version = 0
        self._notified = 0
        self._latest: Optional[ViewSnapshot] = None
        self.closed = False

    @property
    def query_state(self) -> QueryState:
        return self._query_state

    @property
    def reference_point(self) -> Optional[Coordinate]:
        return self._reference_point

    @property
    def latest(self) -> Optional[ViewSnapshot]:
        """Most recently published snapshot (None until the first publish)."""
        return self._latest

    def set_query_state(self, **partial) -> Optional[ViewSnapshot]:
        """Merge partial query parameters and republish."""
        self._query_state = self._query_state.merged(**partial)
        return self.refresh()

    def set_reference_point(self, point: Optional[Coordinate]) -> Optional[ViewSnapshot]:
        self._reference_point = point
        return self.refresh()

    def refresh(self) -> Optional[ViewSnapshot]:
        return self._synchronizer._publish(self)

    def close(self) -> None:
        self.closed = True
        self._synchronizer._remove_session(self.id)

    def _deliver(self, compute: Callable[[int], ViewSnapshot]) -> Optional[ViewSnapshot]:
        with self._lock:
            if self.closed:
                return None
            snapshot = compute(self._version + 1)
            if self.closed:
                return None
            self._version = snapshot.version
            self._latest = snapshot
            listener = self._listener
        if listener is None:
            return snapshot
        with self._notify_lock:
            # Listeners see versions in order; one overtaken in flight is skipped
            if snapshot.version <= self._notified:
                return snapshot
            self._notified = snapshot.version
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"View session {self.id} listener failed: {e}", exc_info=True)
        return snapshot


class LiveViewSynchronizer:
    """
    Owns the canonical report collection and the subscription to the store.
    """

    def __init__(
        self,
        repository: ReportRepository,
        lock: Optional[threading.RLock] = None,
        normalizer: Optional[IngestionNormalizer] = None,
        scorer: Optional[RiskScorer] = None,
        timeout_seconds: Optional[float] = None,
        backoff_seconds: Optional[float] = None,
        max_backoff_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        poll_seconds: float = 1.0,
    ):
        self.repository = repository
        self.normalizer = normalizer or IngestionNormalizer()
        self.scorer = scorer or get_risk_scorer()
        self.timeout_seconds = settings.SUBSCRIPTION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.backoff_seconds = settings.SUBSCRIPTION_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.max_backoff_seconds = (
            settings.SUBSCRIPTION_MAX_BACKOFF_SECONDS if max_backoff_seconds is None else max_backoff_seconds
        )
        self.max_retries = settings.SUBSCRIPTION_MAX_RETRIES if max_retries is None else max_retries
        self.poll_seconds = poll_seconds

        self._lock = lock or threading.RLock()
        self._state = SyncState.LOADING
        self._has_data = False
        self._degraded = False
        self._sessions: Dict[int, ViewSession] = {}
        self._session_ids = itertools.count(1)

        self._subscription: Optional[Subscription] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._dropped = threading.Event()
        self._received = threading.Event()

    # State

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def reports(self) -> Mapping[str, Report]:
        return self.normalizer.reports

    @property
    def connectivity(self) -> Connectivity:
        if not self._has_data:
            return Connectivity.LOADING
        if self._state == SyncState.ERROR or self._degraded:
            return Connectivity.STALE
        return Connectivity.READY

    def has_report(self, report_id: str) -> bool:
        return report_id in self.normalizer.reports

    def _transition(self, new_state: SyncState) -> None:
        if new_state == self._state:
            return
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise ValueError(f"Invalid sync transition: {self._state.value} -> {new_state.value}")
        logger.debug(f"Sync state {self._state.value} -> {new_state.value}")
        self._state = new_state

    # Ingestion

    def handle_snapshot(self, raw_snapshot: List[Dict]) -> None:
        """Callback for every full snapshot pushed by the repository."""
        with self._lock:
            if self._state == SyncState.ERROR:
                logger.debug("Ignoring snapshot received after terminal error")
                return
            if self._state == SyncState.READY:
                self._transition(SyncState.UPDATING)
            try:
                diff = self.normalizer.apply(raw_snapshot)
            except Exception:
                # Keep serving the previous collection
                if self._state == SyncState.UPDATING:
                    self._transition(SyncState.READY)
                raise
            first = not self._has_data
            recovered = self._degraded
            self._has_data = True
            self._degraded = False
            self._transition(SyncState.READY)
            self._received.set()

        if first or recovered or not diff.is_empty:
            self._publish_all()

    def handle_error(self, error: Exception) -> None:
        """Callback when an established stream fails."""
        logger.warning(f"Report subscription dropped: {error}")
        with self._lock:
            self._degraded = True
        self._dropped.set()
        self._publish_all()

    # Sessions

    def open_session(
        self,
        listener: Optional[SnapshotListener] = None,
        query_state: Optional[QueryState] = None,
        reference_point: Optional[Coordinate] = None,
    ) -> ViewSession:
        session = ViewSession(
            self,
            next(self._session_ids),
            listener,
            query_state or QueryState(range_km=settings.DEFAULT_RANGE_KM),
            reference_point,
        )
        with self._lock:
            self._sessions[session.id] = session
        self._publish(session)
        return session

    def snapshot_for(
        self,
        query_state: QueryState,
        reference_point: Optional[Coordinate] = None,
    ) -> ViewSnapshot:
        """One-off snapshot without opening a session."""
        return compute_snapshot(
            self.normalizer.reports, query_state, reference_point, self.connectivity, scorer=self.scorer
        )

    def _remove_session(self, session_id: int) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def _publish(self, session: ViewSession) -> Optional[ViewSnapshot]:
        if session.closed:
            return None
        # LOADING emits nothing queryable
        if not self._has_data and self._state != SyncState.ERROR:
            return None
        return session._deliver(lambda version: self._compute(session, version))

    def _compute(self, session: ViewSession, version: int) -> ViewSnapshot:
        # Runs under the session lock so a newer version never carries older data
        with self._lock:
            reports = self.normalizer.reports
            connectivity = self.connectivity
        return compute_snapshot(
            reports,
            session.query_state,
            session.reference_point,
            connectivity,
            version=version,
            scorer=self.scorer,
        )

    def _publish_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            self._publish(session)

    # Subscription lifecycle

    def start(self) -> None:
        """Start the background subscription supervisor."""
        if self._thread is not None:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="report-subscription", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stopping.set()
        self._dropped.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._close_subscription()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the supervisor to exit (it only exits on stop or ERROR)."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()

    def _run(self) -> None:
        failures = 0
        while not self._stopping.is_set():
            self._dropped.clear()
            self._received.clear()
            try:
                self._subscription = self.repository.subscribe_all(self.handle_snapshot, self.handle_error)
            except Exception as e:
                failures += 1
                if not isinstance(e, RepositoryUnavailable):
                    logger.error(f"Report subscription failed: {e}", exc_info=True)
                if self._retries_exhausted(failures, e):
                    return
                self._wait_backoff(failures)
                continue

            if not self._received.wait(self.timeout_seconds) and not self._stopping.is_set():
                logger.warning(
                    f"No report snapshot within {self.timeout_seconds}s, connectivity degraded"
                )
                with self._lock:
                    self._degraded = True
                self._publish_all()

            while not self._stopping.is_set() and not self._dropped.is_set():
                if not self._subscription.is_active():
                    logger.warning("Report subscription is no longer active")
                    self.handle_error(RepositoryUnavailable("subscription closed"))
                    break
                self._dropped.wait(self.poll_seconds)

            self._close_subscription()
            if self._stopping.is_set():
                return

            failures = 1 if self._received.is_set() else failures + 1
            if self._retries_exhausted(failures, RepositoryUnavailable("subscription dropped")):
                return
            self._wait_backoff(failures)

    def _retries_exhausted(self, failures: int, error: Exception) -> bool:
        if self.max_retries is None or failures <= self.max_retries:
            return False
        logger.error(f"Report subscription failed {failures} time(s), giving up: {error}")
        with self._lock:
            self._transition(SyncState.ERROR)
        self._publish_all()
        return True

    def _wait_backoff(self, failures: int) -> None:
        delay = min(self.max_backoff_seconds, self.backoff_seconds * (2 ** (failures - 1)))
        delay += random.uniform(0, max(self.backoff_seconds / 3, 0.001))
        logger.info(f"Resubscribing to reports in {delay:.2f}s (attempt {failures + 1})")
        self._stopping.wait(delay)
