"""
matching.py
-----------
Purpose:
    Guest/podcast matching endpoints.

Usage:
    1. POST /matching/check-matches - Run a matching sweep (admin or cron secret)
    2. GET /matching/check-matches - Matching statistics (admin or cron secret)
    3. GET /matching/my-matches - Caller's live matches
    4. POST /matching/dismiss - Dismiss an active match
    5. GET /matching/recommendations - Scored suggestions for the caller
"""

from fastapi import APIRouter, Depends

from app.auth.verify import auth_dependency, privileged_dependency
from app.infrastructure.observability.logging import get_logger
from app.models.api.collaboration_response import (
    MatchListResponse,
    MatchResponse,
    MatchStatisticsResponse,
    RecommendationsResponse,
    SweepResponse,
)
from app.models.api.matching_request import DismissMatchRequest
from app.routes.errors import http_error
from app.services.errors import CollaborationServiceError
from app.services.matching.match_engine import MatchEngine, get_match_engine

router = APIRouter(prefix="/matching", tags=["matching"])
logger = get_logger(__name__)


@router.post("/check-matches", response_model=SweepResponse)
async def check_matches(
    claims: dict = Depends(privileged_dependency),
    engine: MatchEngine = Depends(get_match_engine),
):
    triggered_by = claims.get("sub") or claims.get("privileged_via")
    try:
        result = await engine.run_sweep(triggered_by=triggered_by)
    except CollaborationServiceError as e:
        raise http_error(e, "check_matches", triggered_by=triggered_by) from e

    return SweepResponse(result=result)


@router.get("/check-matches", response_model=MatchStatisticsResponse)
async def match_statistics(
    claims: dict = Depends(privileged_dependency),
    engine: MatchEngine = Depends(get_match_engine),
):
    return MatchStatisticsResponse(statistics=await engine.statistics())


@router.get("/my-matches", response_model=MatchListResponse)
async def my_matches(
    claims: dict = Depends(auth_dependency),
    engine: MatchEngine = Depends(get_match_engine),
):
    user_id = claims["sub"]
    matches = await engine.list_matches_for_user(user_id)
    logger.info("Matches listed", user_id=user_id, count=len(matches))
    return MatchListResponse(matches=matches, count=len(matches))


@router.post("/dismiss", response_model=MatchResponse)
async def dismiss_match(
    body: DismissMatchRequest,
    claims: dict = Depends(auth_dependency),
    engine: MatchEngine = Depends(get_match_engine),
):
    user_id = claims["sub"]
    try:
        match = await engine.dismiss_match(user_id, body.match_id, body.dismissed_by)
    except CollaborationServiceError as e:
        raise http_error(e, "dismiss_match", user_id=user_id, match_id=body.match_id) from e

    return MatchResponse(match=match)


@router.get("/recommendations", response_model=RecommendationsResponse)
async def recommendations(
    claims: dict = Depends(auth_dependency),
    engine: MatchEngine = Depends(get_match_engine),
):
    """
    Podcasts for a guest, guests for a podcast owner.

    Raises:
        400: Caller is neither a guest nor a podcast owner
        404: Caller has no user record
    """
    user_id = claims["sub"]
    try:
        found = await engine.recommend(user_id)
    except CollaborationServiceError as e:
        raise http_error(e, "recommendations", user_id=user_id) from e

    return RecommendationsResponse(
        user_type=found.user_type, recommendations=found.recommendations
    )
