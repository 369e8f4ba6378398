"""
Firestore-backed report repository.

Collections (document shapes match the web client):
- reports/{id}:    {pos: {lat, lng}, title, desc, category, votes: {up, down},
                    radius, crimeProb, createdAt, voteAttempts: {<uid>: true}}
- userVotes/{uid}: {<reportId>: true, ...}
"""

from contextlib import contextmanager
from typing import Dict, List, Sequence, Set
import logging

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

from sentinel.config.firebase import get_db
from sentinel.core.exceptions import DocumentNotFound, RepositoryUnavailable
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

TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.Aborted,
    google_exceptions.TooManyRequests,
    google_exceptions.RetryError,
)


@contextmanager
def _translate_errors(action: str):
    try:
        yield
    except TRANSIENT_ERRORS as e:
        logger.warning(f"Firestore {action} failed transiently: {e}")
        raise RepositoryUnavailable(f"Firestore {action} failed: {e}") from e


def _nested(field_path: str, value) -> Dict:
    data = value
    for key in reversed(field_path.split(".")):
        data = {key: data}
    return data


class FirestoreSubscription(Subscription):
    def __init__(self, watch):
        self._watch = watch

    def unsubscribe(self) -> None:
        try:
            self._watch.unsubscribe()
        except Exception as e:
            logger.warning(f"Failed to close Firestore listener cleanly: {e}")

    def is_active(self) -> bool:
        active = getattr(self._watch, "is_active", True)
        return bool(active() if callable(active) else active)


class FirestoreReportRepository(ReportRepository):
    """Repository on top of the firebase_admin Firestore client."""

    # Firestore write batches commit all-or-nothing
    supports_atomic_writes = True

    def __init__(self, db=None):
        self.db = db or get_db()
        self.reports_collection = settings.REPORTS_COLLECTION
        self.user_votes_collection = settings.USER_VOTES_COLLECTION

    def subscribe_all(self, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        def _callback(col_snapshot, changes, read_time):
            try:
                docs = [{**(doc.to_dict() or {}), "id": doc.id} for doc in col_snapshot]
            except Exception as e:
                logger.error(f"Failed to read Firestore snapshot: {e}", exc_info=True)
                on_error(e)
                return
            on_snapshot(docs)

        with _translate_errors("subscribe"):
            watch = self.db.collection(self.reports_collection).on_snapshot(_callback)
        logger.info(f"Listening to Firestore collection '{self.reports_collection}'")
        return FirestoreSubscription(watch)

    def create(self, record: Dict) -> str:
        with _translate_errors("create"):
            _, doc_ref = self.db.collection(self.reports_collection).add(record)
        logger.info(f"Report saved to Firestore: {doc_ref.id}")
        return doc_ref.id

    def atomic_update(self, patches: Sequence[Patch]) -> None:
        batch = self.db.batch()
        for patch in patches:
            ref = self.db.collection(patch.collection).document(patch.document_id)
            op = patch.operation
            if isinstance(op, Increment):
                batch.update(ref, {patch.field_path: firestore.Increment(op.amount)})
            elif isinstance(op, SetValue):
                # merge=True keeps sibling keys of every parent map
                batch.set(ref, _nested(patch.field_path, op.value), merge=True)
            elif isinstance(op, DeleteField):
                batch.update(ref, {patch.field_path: firestore.DELETE_FIELD})
            else:
                raise ValueError(f"Unsupported operation {op!r}")

        try:
            with _translate_errors("batch commit"):
                batch.commit()
        except google_exceptions.NotFound as e:
            target = patches[0] if patches else None
            raise DocumentNotFound(
                target.collection if target else "?",
                target.document_id if target else "?",
            ) from e

    def get_voted_report_ids(self, user_id: str) -> Set[str]:
        with _translate_errors("read user votes"):
            doc = self.db.collection(self.user_votes_collection).document(user_id).get()
        if not doc.exists:
            return set()
        return {report_id for report_id, voted in (doc.to_dict() or {}).items() if voted}

    def report_exists(self, report_id: str) -> bool:
        with _translate_errors("read report"):
            return self.db.collection(self.reports_collection).document(report_id).get().exists

    def has_vote_attempt(self, report_id: str, user_id: str) -> bool:
        with _translate_errors("read vote attempts"):
            doc = self.db.collection(self.reports_collection).document(report_id).get()
        if not doc.exists:
            return False
        attempts = (doc.to_dict() or {}).get(VOTE_ATTEMPTS_FIELD) or {}
        return bool(attempts.get(user_id))
