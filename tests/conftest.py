import threading
from typing import Dict, List, Optional, Sequence

import pytest

from sentinel.core.exceptions import RepositoryUnavailable
from sentinel.services.live_view import LiveViewSynchronizer
from sentinel.services.repository.base import Patch
from sentinel.services.repository.memory_repository import InMemoryReportRepository


SF = {"lat": 37.7749, "lng": -122.4194}


def make_doc(
    title: str = "Streetlight out",
    desc: str = "The streetlight is not working.",
    category: str = "Low",
    lat: float = SF["lat"],
    lng: float = SF["lng"],
    up: int = 0,
    down: int = 0,
    radius: Optional[int] = 300,
    crime_prob: Optional[float] = 0,
) -> Dict:
    doc = {
        "pos": {"lat": lat, "lng": lng},
        "title": title,
        "desc": desc,
        "category": category,
        "votes": {"up": up, "down": down},
        "createdAt": "2024-05-01T12:00:00Z",
    }
    if radius is not None:
        doc["radius"] = radius
    if crime_prob is not None:
        doc["crimeProb"] = crime_prob
    return doc


class FlakyRepository(InMemoryReportRepository):
    """
    In-memory repository with scripted write failures.

    Each entry in the failure plan is consumed by one atomic_update call:
    - "fail": raise RepositoryUnavailable without writing
    - "lost_ack": commit the write, then raise RepositoryUnavailable
    - None: behave normally
    """

    def __init__(self, seed=None, atomic: bool = True, plan: Optional[List[Optional[str]]] = None):
        super().__init__(seed=seed, atomic=atomic)
        self.plan = list(plan or [])
        self.calls: List[Sequence[Patch]] = []
        self.read_failures = 0

    def atomic_update(self, patches: Sequence[Patch]) -> None:
        self.calls.append(list(patches))
        step = self.plan.pop(0) if self.plan else None
        if step == "fail":
            raise RepositoryUnavailable("injected write failure")
        super().atomic_update(patches)
        if step == "lost_ack":
            raise RepositoryUnavailable("injected lost acknowledgement")

    def get_voted_report_ids(self, user_id: str):
        if self.read_failures:
            self.read_failures -= 1
            raise RepositoryUnavailable("injected read failure")
        return super().get_voted_report_ids(user_id)


@pytest.fixture
def seed_docs() -> Dict[str, Dict]:
    return {
        "r-severe": make_doc("Flooded street", "Heavy rains have made the street impassable.", "Severe", up=5, crime_prob=90),
        "r-moderate": make_doc("Fallen tree", "A large tree is blocking the sidewalk.", "Moderate", up=2, down=1, crime_prob=60),
        "r-low": make_doc("Streetlight out", "Reduced visibility at night.", "Low", up=2, down=3, crime_prob=30),
    }


@pytest.fixture
def memory_repo(seed_docs) -> InMemoryReportRepository:
    return InMemoryReportRepository(seed=seed_docs)


@pytest.fixture
def sleeps() -> List[float]:
    """Recorded backoff delays; pass sleeps.append as the sleep function."""
    return []


@pytest.fixture
def synchronizer(memory_repo) -> LiveViewSynchronizer:
    """Synchronizer wired straight to the repository listener (no thread)."""
    sync = LiveViewSynchronizer(memory_repo, lock=threading.RLock())
    subscription = memory_repo.subscribe_all(sync.handle_snapshot, sync.handle_error)
    yield sync
    subscription.unsubscribe()
