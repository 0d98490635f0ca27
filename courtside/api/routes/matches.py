"""Match route handlers: lookup, confirmation, decline and feedback."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.api.auth_dependencies import get_current_user_id
from courtside.api.routes import to_http_exception
from courtside.database.db import get_db_session
from courtside.models.schemas import FeedbackRequest, MatchDetailResponse, SettlementResponse
from courtside.services import match_service, settlement_service
from courtside.services.exceptions import MatchmakingError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/matches/{match_id}", response_model=MatchDetailResponse)
async def get_match(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a match the caller participates in."""
    try:
        match = await match_service.get_match(session, match_id, requester_id=user_id)
        return match_service.match_to_dict(match)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching match")


@router.post("/api/matches/{match_id}/confirm", response_model=MatchDetailResponse)
async def confirm_match(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Confirm participation; the match is confirmed once both players have."""
    try:
        match = await match_service.confirm_participation(session, match_id, user_id)
        return match_service.match_to_dict(match)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error confirming match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error confirming match")


@router.post("/api/matches/{match_id}/start", response_model=MatchDetailResponse)
async def start_match(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Mark a confirmed match as in progress."""
    try:
        match = await match_service.start_match(session, match_id, user_id)
        return match_service.match_to_dict(match)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error starting match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error starting match")


@router.post("/api/matches/{match_id}/decline", response_model=MatchDetailResponse)
async def decline_match(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Decline (cancel) a match that has not started."""
    try:
        match = await match_service.decline_match(session, match_id, user_id)
        return match_service.match_to_dict(match)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error declining match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error declining match")


@router.post("/api/matches/{match_id}/feedback", response_model=SettlementResponse)
async def submit_feedback(
    match_id: int,
    payload: FeedbackRequest,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Report the result and rate the opponent's behavior.

    When both players have reported, the match is settled (or marked
    disputed if they disagree on the winner).
    """
    try:
        return await settlement_service.submit_feedback(
            session,
            match_id,
            user_id,
            payload.reported_winner_id,
            tone=payload.tone,
            aggressiveness=payload.aggressiveness,
            sportsmanship=payload.sportsmanship,
            comments=payload.comments,
        )
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error submitting feedback: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting feedback")
