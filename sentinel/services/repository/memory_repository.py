"""
In-memory report repository.

Used for local development without Firebase credentials (USE_MOCK_DB=true)
and in tests. Mirrors the Firestore semantics the engine relies on:
full-collection snapshots pushed to every listener after each write, and
all-or-nothing batch updates.
"""

from copy import deepcopy
from typing import Dict, List, Optional, Sequence, Set
import itertools
import logging
import threading
import uuid

from sentinel.core.exceptions import DocumentNotFound
from sentinel.core.settings import settings
from sentinel.services.repository.base import (
    VOTE_ATTEMPTS_FIELD,
    DeleteField,
    ErrorCallback,
    Increment,
    Patch,
    ReportRepository,
    SetValue,
    SnapshotCallback,
    Subscription,
)

logger = logging.getLogger(__name__)


class MemorySubscription(Subscription):
    def __init__(self, repository: "InMemoryReportRepository", listener_id: int):
        self._repository = repository
        self._listener_id = listener_id
        self._active = True

    def unsubscribe(self) -> None:
        self._active = False
        self._repository._remove_listener(self._listener_id)

    def is_active(self) -> bool:
        return self._active


class InMemoryReportRepository(ReportRepository):
    """Dict-backed store keyed by collection then document id."""

    def __init__(self, seed: Optional[Dict[str, Dict]] = None, atomic: bool = True):
        self.supports_atomic_writes = atomic
        self.reports_collection = settings.REPORTS_COLLECTION
        self.user_votes_collection = settings.USER_VOTES_COLLECTION
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Dict]] = {
            self.reports_collection: deepcopy(seed) if seed else {},
            self.user_votes_collection: {},
        }
        self._listeners: Dict[int, SnapshotCallback] = {}
        self._listener_ids = itertools.count(1)
        self._delivery_lock = threading.Lock()
        self._version = 0
        self._delivered_version = 0

    # Reads

    def snapshot(self) -> List[Dict]:
        with self._lock:
            return [
                {**deepcopy(data), "id": doc_id}
                for doc_id, data in self._collections[self.reports_collection].items()
            ]

    def get_document(self, collection: str, document_id: str) -> Optional[Dict]:
        with self._lock:
            data = self._collections.get(collection, {}).get(document_id)
            return deepcopy(data) if data is not None else None

    def get_voted_report_ids(self, user_id: str) -> Set[str]:
        data = self.get_document(self.user_votes_collection, user_id) or {}
        return {report_id for report_id, voted in data.items() if voted}

    def report_exists(self, report_id: str) -> bool:
        with self._lock:
            return report_id in self._collections[self.reports_collection]

    def has_vote_attempt(self, report_id: str, user_id: str) -> bool:
        data = self.get_document(self.reports_collection, report_id) or {}
        attempts = data.get(VOTE_ATTEMPTS_FIELD)
        return isinstance(attempts, dict) and bool(attempts.get(user_id))

    # Writes

    def subscribe_all(self, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        with self._lock:
            listener_id = next(self._listener_ids)
            self._listeners[listener_id] = on_snapshot
        # Like Firestore, a new listener immediately receives the current state
        with self._delivery_lock:
            on_snapshot(self.snapshot())
        return MemorySubscription(self, listener_id)

    def create(self, record: Dict) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._collections[self.reports_collection][doc_id] = deepcopy(record)
        logger.info(f"Report saved to memory store: {doc_id}")
        self._notify()
        return doc_id

    def atomic_update(self, patches: Sequence[Patch]) -> None:
        with self._lock:
            staged = deepcopy(self._collections)
            for patch in patches:
                self._apply_patch(staged, patch)
            self._collections = staged
        self._notify()

    def _apply_patch(self, collections: Dict[str, Dict[str, Dict]], patch: Patch) -> None:
        docs = collections.setdefault(patch.collection, {})
        op = patch.operation

        *parents, leaf = patch.field_path.split(".")

        if isinstance(op, SetValue):
            # set(..., merge=True) creates the document and parent maps if needed
            doc = self._walk(docs.setdefault(patch.document_id, {}), parents)
            doc[leaf] = deepcopy(op.value)
            return

        if patch.document_id not in docs:
            raise DocumentNotFound(patch.collection, patch.document_id)
        doc = self._walk(docs[patch.document_id], parents)

        if isinstance(op, Increment):
            current = doc.get(leaf, 0)
            if isinstance(current, bool) or not isinstance(current, (int, float)):
                current = 0
            doc[leaf] = current + op.amount
        elif isinstance(op, DeleteField):
            doc.pop(leaf, None)
        else:
            raise ValueError(f"Unsupported operation {op!r}")

    @staticmethod
    def _walk(doc: Dict, parents: List[str]) -> Dict:
        for key in parents:
            child = doc.get(key)
            if not isinstance(child, dict):
                child = {}
                doc[key] = child
            doc = child
        return doc

    # Listeners

    def _remove_listener(self, listener_id: int) -> None:
        with self._lock:
            self._listeners.pop(listener_id, None)

    def _notify(self) -> None:
        with self._lock:
            self._version += 1
            version = self._version
            listeners = list(self._listeners.values())
            docs = self.snapshot()
        if not listeners:
            return
        # Deliver in write order; a snapshot overtaken by a newer one is dropped
        with self._delivery_lock:
            if version <= self._delivered_version:
                return
            self._delivered_version = version
            for listener in listeners:
                try:
                    listener(deepcopy(docs))
                except Exception as e:
                    logger.error(f"Snapshot listener failed: {e}", exc_info=True)
