"""
Report Repository interface.

The repository is the sole source of truth for reports and per-user vote
records. The engine only ever reads it through full-collection snapshots and
writes it through create() and atomic_update().

Contract:
- subscribe_all() delivers the COMPLETE collection on every change
  (at-least-once; the same snapshot may be delivered twice)
- atomic_update() applies every patch or none of them when
  supports_atomic_writes is True; patches that all target ONE document are
  applied all-or-nothing by every adapter
- transient backend failures raise RepositoryUnavailable
- updating a document that does not exist raises DocumentNotFound
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Set, Union


# Per-report map of user ids whose vote increment has committed
VOTE_ATTEMPTS_FIELD = "voteAttempts"

SnapshotCallback = Callable[[List[Dict]], None]
ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class Increment:
    amount: int = 1


@dataclass(frozen=True)
class SetValue:
    value: Any = True


@dataclass(frozen=True)
class DeleteField:
    pass


Operation = Union[Increment, SetValue, DeleteField]


@dataclass(frozen=True)
class Patch:
    """One field-level write: (collection, document_id, field_path, operation)."""
    collection: str
    document_id: str
    field_path: str
    operation: Operation

    def inverse(self) -> "Patch":
        """
        Patch that undoes this one.

        SetValue is undone by deleting the field, which is correct for the
        insert-only fields the vote ledger writes.
        """
        if isinstance(self.operation, Increment):
            op: Operation = Increment(-self.operation.amount)
        elif isinstance(self.operation, SetValue):
            op = DeleteField()
        else:
            raise ValueError(f"Cannot invert {self.operation!r} on {self.field_path}")
        return Patch(self.collection, self.document_id, self.field_path, op)


class Subscription(ABC):
    """Handle for a live snapshot subscription."""

    @abstractmethod
    def unsubscribe(self) -> None:
        pass

    def is_active(self) -> bool:
        """False once the underlying stream has dropped."""
        return True


class ReportRepository(ABC):
    """
    Abstract backing store for reports and user vote records.
    """

    supports_atomic_writes: bool = True

    @abstractmethod
    def subscribe_all(self, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        """
        Subscribe to the full report collection.

        on_snapshot receives a list of dicts, each with an "id" key plus the
        stored fields. on_error is called if the stream fails after it was
        established.
        """
        pass

    @abstractmethod
    def create(self, record: Dict) -> str:
        """Store a new report and return its generated id."""
        pass

    @abstractmethod
    def atomic_update(self, patches: Sequence[Patch]) -> None:
        """Apply all patches as one unit (see supports_atomic_writes)."""
        pass

    @abstractmethod
    def get_voted_report_ids(self, user_id: str) -> Set[str]:
        """Report ids the user has already voted on."""
        pass

    @abstractmethod
    def report_exists(self, report_id: str) -> bool:
        pass

    @abstractmethod
    def has_vote_attempt(self, report_id: str, user_id: str) -> bool:
        """True if the report carries the user's committed vote-attempt marker."""
        pass
