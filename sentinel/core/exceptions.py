"""
Domain exceptions for the Sentinel engine.

Propagation policy:
- Validation and classification failures are absorbed where they happen
- Unauthenticated / NotFound / AlreadyVoted are deterministic rejections
- Unavailable is only raised after the retry budget is spent
"""

from typing import Optional


class SentinelError(Exception):
    """Base class for all engine errors."""


class ReportValidationError(SentinelError):
    """A stored report has malformed fields (logged, never fatal)."""

    def __init__(self, report_id: Optional[str], field: str, reason: str):
        self.report_id = report_id
        self.field = field
        self.reason = reason
        super().__init__(f"Report {report_id}: invalid '{field}' ({reason})")


class ClassificationFailure(SentinelError):
    """The severity classifier could not produce a category."""


class RepositoryUnavailable(SentinelError):
    """Transient failure talking to the backing store."""


class DocumentNotFound(SentinelError):
    """An update targeted a document that does not exist."""

    def __init__(self, collection: str, document_id: str):
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"{collection}/{document_id} does not exist")


class VoteError(SentinelError):
    """Base class for vote rejections returned to the caller."""

    code = "VOTE_FAILED"

    def __init__(self, detail: str, report_id: Optional[str] = None):
        self.detail = detail
        self.report_id = report_id
        super().__init__(detail)


class Unauthenticated(VoteError):
    code = "UNAUTHENTICATED"

    def __init__(self, report_id: Optional[str] = None):
        super().__init__("Please login to vote", report_id)


class NotFound(VoteError):
    code = "NOT_FOUND"

    def __init__(self, report_id: str):
        super().__init__(f"Report {report_id} not found", report_id)


class AlreadyVoted(VoteError):
    code = "ALREADY_VOTED"

    def __init__(self, report_id: str, in_flight: bool = False):
        self.in_flight = in_flight
        detail = (
            f"A vote on report {report_id} is already being recorded"
            if in_flight
            else f"Already voted on report {report_id}"
        )
        super().__init__(detail, report_id)


class Unavailable(VoteError):
    code = "UNAVAILABLE"

    def __init__(self, report_id: Optional[str] = None, attempts: int = 0):
        self.attempts = attempts
        super().__init__(
            f"Vote could not be recorded after {attempts} attempt(s), please try again later",
            report_id,
        )
