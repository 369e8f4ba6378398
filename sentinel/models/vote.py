"""
Vote models.
"""

from pydantic import BaseModel, Field
from typing import List
from enum import Enum


class VoteDirection(str, Enum):
    """Vote directions."""
    UP = "up"
    DOWN = "down"

    @property
    def field_path(self) -> str:
        return "votes.up" if self is VoteDirection.UP else "votes.down"


class VoteRequest(BaseModel):
    """Vote request body."""
    direction: VoteDirection


class VoteResult(BaseModel):
    """Outcome of a successful vote."""
    report_id: str
    direction: VoteDirection
    attempts: int = Field(default=1, description="Write attempts used")
    recovered: bool = Field(
        default=False,
        description="True if an earlier unacknowledged write was found already committed",
    )


class UserVotesResponse(BaseModel):
    user_id: str
    voted_report_ids: List[str] = Field(default_factory=list)
