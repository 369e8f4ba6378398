import threading
import time

import pytest

from sentinel.core.exceptions import RepositoryUnavailable
from sentinel.models.report import Coordinate
from sentinel.models.view import Connectivity, QueryState, SpatialMode
from sentinel.services.ingestion import IngestionNormalizer
from sentinel.services.live_view import ALLOWED_TRANSITIONS, LiveViewSynchronizer, SyncState
from sentinel.services.repository.memory_repository import InMemoryReportRepository
from tests.conftest import SF, make_doc


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class Recorder:
    def __init__(self):
        self.snapshots = []

    def __call__(self, snapshot):
        self.snapshots.append(snapshot)


class FailingSubscribeRepository(InMemoryReportRepository):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.subscribe_calls = 0

    def subscribe_all(self, on_snapshot, on_error):
        self.subscribe_calls += 1
        raise RepositoryUnavailable("listener refused")


class DroppingRepository(InMemoryReportRepository):
    """Remembers error callbacks so a test can drop the stream."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.error_callbacks = []

    def subscribe_all(self, on_snapshot, on_error):
        self.error_callbacks.append(on_error)
        return super().subscribe_all(on_snapshot, on_error)


class PausingNormalizer(IngestionNormalizer):
    """Blocks the first collection read made on pause_thread until released."""

    def __init__(self):
        super().__init__()
        self.pause_thread = None
        self.reading = threading.Event()
        self.release = threading.Event()

    @property
    def reports(self):
        current = super().reports
        if threading.current_thread() is self.pause_thread and not self.reading.is_set():
            self.reading.set()
            self.release.wait(5)
        return current


def _fast_sync(repo, **kwargs):
    params = dict(timeout_seconds=1.0, backoff_seconds=0.0, max_backoff_seconds=0.0, poll_seconds=0.01)
    params.update(kwargs)
    return LiveViewSynchronizer(repo, **params)


class TestStateMachine:
    def test_loading_until_first_snapshot(self, memory_repo):
        sync = LiveViewSynchronizer(memory_repo)
        recorder = Recorder()
        session = sync.open_session(recorder)

        assert sync.state == SyncState.LOADING
        assert sync.connectivity == Connectivity.LOADING
        assert session.latest is None
        assert recorder.snapshots == []

    def test_first_snapshot_makes_ready(self, synchronizer):
        assert synchronizer.state == SyncState.READY
        assert synchronizer.connectivity == Connectivity.READY
        assert set(synchronizer.reports) == {"r-severe", "r-moderate", "r-low"}

    def test_error_is_terminal(self):
        assert ALLOWED_TRANSITIONS[SyncState.ERROR] == []
        assert SyncState.LOADING not in ALLOWED_TRANSITIONS[SyncState.READY]

    def test_invalid_transition_rejected(self, synchronizer):
        with pytest.raises(ValueError):
            synchronizer._transition(SyncState.LOADING)


class TestSessions:
    def test_session_gets_snapshot_on_open_and_after_writes(self, synchronizer, memory_repo):
        recorder = Recorder()
        session = synchronizer.open_session(
            recorder,
            QueryState(mode=SpatialMode.UNBOUNDED),
            Coordinate(lat=SF["lat"], lng=SF["lng"]),
        )

        first = recorder.snapshots[-1]
        assert first.version == 1
        assert first.connectivity == Connectivity.READY
        assert [r.id for r in first.reports] == ["r-severe", "r-moderate", "r-low"]
        assert first.risk_by_category == 60
        assert first.risk_by_stored_probability == 60

        memory_repo.create(make_doc("Broken glass", "Glass on the path", up=10))

        latest = session.latest
        assert latest.version == 2
        assert latest.reports[0].title == "Broken glass"

    def test_sessions_hold_independent_query_state(self, synchronizer):
        flood = Recorder()
        everything = Recorder()
        flood_session = synchronizer.open_session(flood, QueryState(mode=SpatialMode.UNBOUNDED))
        synchronizer.open_session(everything, QueryState(mode=SpatialMode.UNBOUNDED))

        flood_session.set_query_state(search="flood")

        assert [r.id for r in flood.snapshots[-1].reports] == ["r-severe"]
        assert len(everything.snapshots[-1].reports) == 3
        assert flood_session.query_state.mode == SpatialMode.UNBOUNDED

    def test_reference_point_change_republishes(self, synchronizer):
        recorder = Recorder()
        session = synchronizer.open_session(recorder, QueryState(range_km=1))
        assert len(recorder.snapshots[-1].reports) == 3

        # ~11 km away from every report
        session.set_reference_point(Coordinate(lat=SF["lat"] + 0.1, lng=SF["lng"]))

        snapshot = recorder.snapshots[-1]
        assert snapshot.reports == ()
        assert snapshot.risk_by_category == 0

    def test_closed_session_receives_nothing(self, synchronizer, memory_repo):
        recorder = Recorder()
        session = synchronizer.open_session(recorder)
        count = len(recorder.snapshots)

        session.close()
        memory_repo.create(make_doc())

        assert len(recorder.snapshots) == count
        assert session.refresh() is None

    def test_unchanged_snapshot_is_not_republished(self, synchronizer, memory_repo):
        recorder = Recorder()
        synchronizer.open_session(recorder)
        count = len(recorder.snapshots)

        synchronizer.handle_snapshot(memory_repo.snapshot())

        assert len(recorder.snapshots) == count

    def test_refresh_racing_a_snapshot_never_publishes_older_data(self, memory_repo):
        normalizer = PausingNormalizer()
        sync = LiveViewSynchronizer(memory_repo, normalizer=normalizer)
        sync.handle_snapshot(memory_repo.snapshot())
        recorder = Recorder()
        session = sync.open_session(recorder, QueryState(mode=SpatialMode.UNBOUNDED))

        refresher = threading.Thread(target=session.refresh)
        normalizer.pause_thread = refresher
        refresher.start()
        assert normalizer.reading.wait(5)

        newer = memory_repo.snapshot() + [{**make_doc("Broken glass"), "id": "r-new"}]
        writer = threading.Thread(target=sync.handle_snapshot, args=(newer,))
        writer.start()
        writer.join(0.2)
        normalizer.release.set()
        refresher.join(5)
        writer.join(5)

        assert len(session.latest.reports) == 4
        last = recorder.snapshots[-1]
        assert last.version == session.latest.version
        assert len(last.reports) == 4

    def test_failing_listener_does_not_break_others(self, synchronizer, memory_repo):
        def broken(snapshot):
            raise RuntimeError("render failed")

        recorder = Recorder()
        synchronizer.open_session(broken)
        synchronizer.open_session(recorder)
        memory_repo.create(make_doc())

        assert len(recorder.snapshots[-1].reports) == 4


class TestConnectivity:
    def test_stream_error_marks_stale_until_next_snapshot(self, synchronizer, memory_repo):
        recorder = Recorder()
        synchronizer.open_session(recorder)

        synchronizer.handle_error(RepositoryUnavailable("network"))
        assert recorder.snapshots[-1].connectivity == Connectivity.STALE
        assert len(recorder.snapshots[-1].reports) == 3

        synchronizer.handle_snapshot(memory_repo.snapshot())
        assert recorder.snapshots[-1].connectivity == Connectivity.READY

    def test_exhausted_retries_end_in_error(self, seed_docs):
        repo = FailingSubscribeRepository(seed=seed_docs)
        sync = _fast_sync(repo, max_retries=2)

        sync.start()
        sync.join(5)

        assert sync.state == SyncState.ERROR
        assert repo.subscribe_calls == 3
        sync.stop()

    def test_error_keeps_last_view_as_stale(self, seed_docs):
        repo = FailingSubscribeRepository(seed=seed_docs)
        sync = _fast_sync(repo, max_retries=0)
        sync.handle_snapshot(repo.snapshot())
        recorder = Recorder()
        sync.open_session(recorder, QueryState(mode=SpatialMode.UNBOUNDED))

        sync.start()
        sync.join(5)

        assert sync.state == SyncState.ERROR
        latest = recorder.snapshots[-1]
        assert latest.connectivity == Connectivity.STALE
        assert len(latest.reports) == 3

        # Snapshots after a terminal error are ignored
        sync.handle_snapshot([])
        assert len(sync.reports) == 3
        sync.stop()


class TestSubscriptionLifecycle:
    def test_background_subscription_tracks_writes(self, seed_docs):
        repo = InMemoryReportRepository(seed=seed_docs)
        sync = _fast_sync(repo)
        recorder = Recorder()
        sync.open_session(recorder, QueryState(mode=SpatialMode.UNBOUNDED))

        sync.start()
        try:
            assert wait_for(lambda: sync.state == SyncState.READY)
            repo.create(make_doc("Broken glass"))
            assert wait_for(lambda: recorder.snapshots and len(recorder.snapshots[-1].reports) == 4)
        finally:
            sync.stop()

    def test_resubscribes_after_drop(self, seed_docs):
        repo = DroppingRepository(seed=seed_docs)
        sync = _fast_sync(repo)
        recorder = Recorder()
        sync.open_session(recorder)

        sync.start()
        try:
            assert wait_for(lambda: len(repo.error_callbacks) == 1 and sync.state == SyncState.READY)
            repo.error_callbacks[0](RepositoryUnavailable("stream reset"))

            assert wait_for(lambda: len(repo.error_callbacks) == 2)
            assert wait_for(lambda: recorder.snapshots[-1].connectivity == Connectivity.READY)
            assert sync.state == SyncState.READY
        finally:
            sync.stop()

    def test_stop_cancels_subscription(self, seed_docs):
        repo = InMemoryReportRepository(seed=seed_docs)
        sync = _fast_sync(repo)
        sync.start()
        assert wait_for(lambda: sync.state == SyncState.READY)

        sync.stop()
        repo.create(make_doc("After stop"))

        assert len(sync.reports) == 3
