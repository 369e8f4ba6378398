"""
Vote Ledger - exactly-once-per-user voting on reports.

Every (user_id, report_id) pair may succeed at most once. The per-user voted
set is checked BEFORE the increment, so a retried client request is rejected
instead of counted twice.

A vote is two single-document units:
1. userVotes/{user_id}.{report_id} = true
2. reports/{report_id}.votes.up|down += 1 together with
   reports/{report_id}.voteAttempts.{user_id} = true

Atomic repositories apply both units in one batch. Other repositories apply
them in order, each unit on its own. Since the increment and its attempt
marker commit together, a failed or unacknowledged write is resolved by
reading the marker back: present means counted, absent means nothing to undo
but the userVotes entry. User ids and report ids contain no dots.
"""

from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple
import logging
import random
import threading
import time

from sentinel.core.exceptions import (
    AlreadyVoted,
    DocumentNotFound,
    NotFound,
    RepositoryUnavailable,
    Unauthenticated,
    Unavailable,
)
from sentinel.core.settings import settings
from sentinel.models.vote import VoteDirection, VoteResult
from sentinel.services.repository.base import VOTE_ATTEMPTS_FIELD, Increment, Patch, ReportRepository, SetValue

logger = logging.getLogger(__name__)


class VoteLedger:
    """Service for applying votes through the report repository."""

    def __init__(
        self,
        repository: ReportRepository,
        lock: Optional[threading.RLock] = None,
        report_lookup: Optional[Callable[[str], bool]] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository
        self.max_retries = settings.VOTE_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = settings.VOTE_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self._lock = lock or threading.RLock()
        self._report_lookup = report_lookup
        self._sleep = sleep
        # Votes this process has seen acknowledged; unioned with the store on every check
        self._voted: Dict[str, Set[str]] = {}
        self._in_flight: Set[Tuple[str, str]] = set()

    def vote(self, user_id: Optional[str], report_id: str, direction) -> VoteResult:
        """
        Record one vote.

        Raises:
            Unauthenticated: user_id missing or blank
            NotFound: report does not exist
            AlreadyVoted: user already voted on this report (no mutation)
            Unavailable: store kept failing after the retry budget
        """
        if not user_id or not user_id.strip():
            raise Unauthenticated(report_id)
        direction = VoteDirection(direction)

        if not self._report_exists(report_id):
            raise NotFound(report_id)

        stored = self._read_with_retries(report_id, lambda: self.repository.get_voted_report_ids(user_id))
        key = (user_id, report_id)

        with self._lock:
            voted = self._voted.setdefault(user_id, set())
            voted.update(stored)
            if report_id in voted:
                logger.info(f"Rejected duplicate vote by {user_id} on report {report_id}")
                raise AlreadyVoted(report_id)
            if key in self._in_flight:
                logger.info(f"Rejected concurrent vote by {user_id} on report {report_id}")
                raise AlreadyVoted(report_id, in_flight=True)
            self._in_flight.add(key)

        try:
            result = self._commit(user_id, report_id, direction)
            with self._lock:
                self._voted[user_id].add(report_id)
            logger.info(f"Vote recorded: {user_id} {direction.value} on report {report_id}")
            return result
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def voted_report_ids(self, user_id: Optional[str]) -> Set[str]:
        """Report ids the user has voted on (used to disable vote controls)."""
        if not user_id or not user_id.strip():
            raise Unauthenticated()
        stored = self._read_with_retries(None, lambda: self.repository.get_voted_report_ids(user_id))
        with self._lock:
            voted = self._voted.setdefault(user_id, set())
            voted.update(stored)
            return set(voted)

    def _build_units(self, user_id: str, report_id: str, direction: VoteDirection) -> List[List[Patch]]:
        # Marker unit first: if a non-atomic sequence dies half way the worst
        # case is a missing count, never a second one. The increment leads its
        # unit so a missing report fails before set() could create it.
        return [
            [Patch(self.repository_user_votes, user_id, report_id, SetValue(True))],
            [
                Patch(self.repository_reports, report_id, direction.field_path, Increment(1)),
                Patch(self.repository_reports, report_id, f"{VOTE_ATTEMPTS_FIELD}.{user_id}", SetValue(True)),
            ],
        ]

    @property
    def repository_reports(self) -> str:
        return getattr(self.repository, "reports_collection", settings.REPORTS_COLLECTION)

    @property
    def repository_user_votes(self) -> str:
        return getattr(self.repository, "user_votes_collection", settings.USER_VOTES_COLLECTION)

    def _commit(self, user_id: str, report_id: str, direction: VoteDirection) -> VoteResult:
        units = self._build_units(user_id, report_id, direction)
        marker_unit = units[0]
        attempt = 0
        while True:
            attempt += 1
            try:
                if attempt > 1 and self.repository.has_vote_attempt(report_id, user_id):
                    # The previous increment committed but its acknowledgement was lost
                    logger.warning(
                        f"Vote by {user_id} on report {report_id} found committed after a failed attempt"
                    )
                    return VoteResult(report_id=report_id, direction=direction, attempts=attempt - 1, recovered=True)
                self._apply(units)
                return VoteResult(report_id=report_id, direction=direction, attempts=attempt)
            except DocumentNotFound as e:
                if not self.repository.supports_atomic_writes:
                    self._rollback(marker_unit)
                raise NotFound(report_id) from e
            except RepositoryUnavailable as e:
                if attempt > self.max_retries:
                    logger.error(f"Vote on report {report_id} failed after {attempt} attempt(s): {e}")
                    if self._committed_after_failure(marker_unit, user_id, report_id):
                        return VoteResult(report_id=report_id, direction=direction, attempts=attempt, recovered=True)
                    raise Unavailable(report_id, attempt) from e
                delay = self._backoff(attempt)
                logger.warning(
                    f"Vote write on report {report_id} failed (attempt {attempt}), retrying in {delay:.2f}s: {e}"
                )
                self._sleep(delay)

    def _apply(self, units: Sequence[Sequence[Patch]]) -> None:
        if self.repository.supports_atomic_writes:
            self.repository.atomic_update([patch for unit in units for patch in unit])
            return
        # Re-applying the marker unit on a retry is a no-op
        for unit in units:
            self.repository.atomic_update(unit)

    def _committed_after_failure(self, marker_unit: Sequence[Patch], user_id: str, report_id: str) -> bool:
        """Settle a vote whose last write failed: True if the increment landed."""
        try:
            committed = self.repository.has_vote_attempt(report_id, user_id)
        except RepositoryUnavailable as e:
            if not self.repository.supports_atomic_writes:
                logger.critical(
                    f"Could not confirm vote by {user_id} on report {report_id}; "
                    f"keeping the userVotes marker for reconciliation: {e}"
                )
            return False
        if committed:
            logger.warning(f"Vote by {user_id} on report {report_id} found committed after the last attempt")
            return True
        if not self.repository.supports_atomic_writes:
            self._rollback(marker_unit)
        return False

    def _rollback(self, applied: Sequence[Patch]) -> None:
        for patch in reversed(applied):
            inverse = patch.inverse()
            for attempt in range(1, self.max_retries + 2):
                try:
                    self.repository.atomic_update([inverse])
                    logger.info(f"Rolled back {patch.collection}/{patch.document_id}.{patch.field_path}")
                    break
                except RepositoryUnavailable as e:
                    if attempt > self.max_retries:
                        logger.critical(
                            f"Rollback of {patch.collection}/{patch.document_id}.{patch.field_path} "
                            f"failed, manual reconciliation required: {e}"
                        )
                        raise Unavailable(patch.document_id, attempt) from e
                    self._sleep(self._backoff(attempt))

    def _report_exists(self, report_id: str) -> bool:
        if not report_id:
            return False
        if self._report_lookup is not None and self._report_lookup(report_id):
            return True
        # The projection can lag behind a report created moments ago
        return self._read_with_retries(report_id, lambda: self.repository.report_exists(report_id))

    def _read_with_retries(self, report_id: Optional[str], read):
        attempt = 0
        while True:
            attempt += 1
            try:
                return read()
            except RepositoryUnavailable as e:
                if attempt > self.max_retries:
                    raise Unavailable(report_id, attempt) from e
                self._sleep(self._backoff(attempt))

    def _backoff(self, attempt: int) -> float:
        delay = self.backoff_seconds * (2 ** (attempt - 1))
        jitter = random.uniform(0, max(self.backoff_seconds / 3, 0.001))
        return delay + jitter
