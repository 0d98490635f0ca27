"""Player rating and match history route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.api.auth_dependencies import get_current_user_id
from courtside.api.routes import to_http_exception
from courtside.database.db import get_db_session
from courtside.database.models import MatchStatus
from courtside.models.schemas import PlayerMatchResponse, PlayerRatingResponse
from courtside.services import match_service, player_service
from courtside.services.exceptions import MatchmakingError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/players/{user_id}/ratings", response_model=List[PlayerRatingResponse])
async def get_player_ratings(
    user_id: int,
    session: AsyncSession = Depends(get_db_session),
):
    """Get a player's rating, tier and record for every sport they have played."""
    try:
        return await player_service.get_player_ratings(session, user_id)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching player ratings: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching player ratings")


@router.get("/api/players/{user_id}/matches", response_model=List[PlayerMatchResponse])
async def list_player_matches(
    user_id: int,
    status: Optional[MatchStatus] = None,
    current_user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """
    List the caller's own matches, newest first, optionally filtered by status.
    """
    if current_user_id != user_id:
        raise HTTPException(status_code=403, detail="Can only list your own matches")
    try:
        return await match_service.list_player_matches(session, user_id, status=status)
    except Exception as e:
        logger.error(f"Error listing player matches: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing player matches")
