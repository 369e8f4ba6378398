"""
Report endpoints - live view queries, risk lookups, report submission and voting.
"""

from typing import Optional
import logging

from fastapi import APIRouter, Header, HTTPException, Query, status

from sentinel.core.exceptions import (
    AlreadyVoted,
    NotFound,
    Unauthenticated,
    Unavailable,
    VoteError,
)
from sentinel.models.report import Coordinate, ReportCreate, ReportCreated
from sentinel.models.view import QueryState, RiskResponse, SortKey, SpatialMode, ViewSnapshot
from sentinel.models.vote import UserVotesResponse, VoteRequest, VoteResult
from sentinel.services.engine import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


VOTE_ERROR_STATUS = {
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    NotFound: status.HTTP_404_NOT_FOUND,
    AlreadyVoted: status.HTTP_409_CONFLICT,
    Unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _vote_http_error(error: VoteError) -> HTTPException:
    status_code = VOTE_ERROR_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": error.detail, "report_id": error.report_id},
    )


def _reference_point(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinate]:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="lat and lng must be given together",
        )
    return Coordinate(lat=lat, lng=lng)


@router.get("/view", response_model=ViewSnapshot)
async def get_view(
    search: str = "",
    mode: str = SpatialMode.NEARBY.value,
    range_km: Optional[float] = Query(None, gt=0),
    sort_by: str = SortKey.UPVOTES.value,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
):
    """
    Filtered, sorted report list plus risk at the reference point.

    mode accepts "nearby", "unbounded" or "worldwide".
    """
    try:
        query_state = QueryState().merged(
            search=search.strip(),
            mode=SpatialMode(mode.lower()),
            range_km=range_km,
            sort_by=SortKey(sort_by.lower()),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return get_engine().snapshot_for(query_state, _reference_point(lat, lng))


@router.get("/risk", response_model=RiskResponse)
async def get_risk(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
):
    return get_engine().risk_at(Coordinate(lat=lat, lng=lng))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ReportCreated)
def submit_report(report: ReportCreate):
    """
    Submit a new incident report.

    Severity is classified server-side; if the classifier fails the report
    is stored as Uncategorized.
    """
    logger.info(f"POST /reports - Creating report: title={report.title!r}")
    try:
        return get_engine().create_report(report)
    except Exception as e:
        logger.error(f"POST /reports - Report creation failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Report creation failed: {e}",
        )


@router.post("/{report_id}/vote", response_model=VoteResult)
def vote_on_report(
    report_id: str,
    vote: VoteRequest,
    x_user_id: Optional[str] = Header(None),
):
    try:
        return get_engine().vote(x_user_id, report_id, vote.direction)
    except VoteError as e:
        raise _vote_http_error(e)


@router.get("/votes/me", response_model=UserVotesResponse)
def get_my_votes(x_user_id: Optional[str] = Header(None)):
    try:
        voted = get_engine().voted_report_ids(x_user_id)
    except VoteError as e:
        raise _vote_http_error(e)
    return UserVotesResponse(user_id=x_user_id, voted_report_ids=sorted(voted))
