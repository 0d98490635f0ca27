"""Matchmaking queue route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.api.auth_dependencies import get_current_user_id
from courtside.api.routes import limiter, to_http_exception
from courtside.database.db import get_db_session
from courtside.models.schemas import JoinQueueRequest, QueueEntryResponse
from courtside.services import matchmaking_service, queue_service
from courtside.services.exceptions import Forbidden, MatchmakingError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/queue", response_model=QueueEntryResponse, status_code=201)
@limiter.limit("30/minute")
async def join_queue(
    request: Request,
    payload: JoinQueueRequest,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Join the matchmaking queue.

    The returned entry already reflects matching: status is 'matched' (with
    match_id) if an opponent was found, otherwise 'waiting'.
    """
    try:
        criteria = payload.model_dump(exclude={"sport_id"})
        entry = await matchmaking_service.join_queue(
            session, user_id, payload.sport_id, criteria
        )
        return queue_service.entry_to_dict(entry)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error joining queue: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error joining queue")


@router.get("/api/queue/active", response_model=Optional[QueueEntryResponse])
async def get_active_queue_entry(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the caller's newest waiting or matched entry, if any."""
    try:
        entry = await queue_service.get_active_entry(session, user_id)
        return queue_service.entry_to_dict(entry) if entry else None
    except Exception as e:
        logger.error(f"Error fetching active queue entry: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching queue entry")


@router.get("/api/queue/{entry_id}", response_model=QueueEntryResponse)
async def get_queue_entry(
    entry_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Get one of the caller's queue entries."""
    try:
        entry = await queue_service.get_entry(session, entry_id)
        if entry.user_id != user_id:
            raise Forbidden("Not authorized to view this queue entry")
        return queue_service.entry_to_dict(entry)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching queue entry: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching queue entry")


@router.delete("/api/queue/{entry_id}", status_code=204)
async def cancel_queue_entry(
    entry_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Leave the queue. Only valid while the entry is still waiting."""
    try:
        await queue_service.cancel(session, entry_id, user_id)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error cancelling queue entry: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error cancelling queue entry")
