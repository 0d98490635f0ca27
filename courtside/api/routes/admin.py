"""Moderator route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.api.auth_dependencies import require_admin
from courtside.api.routes import to_http_exception
from courtside.database.db import get_db_session
from courtside.models.schemas import ResolveMatchRequest, SettlementResponse
from courtside.services import settlement_service
from courtside.services.exceptions import MatchmakingError
from courtside.services.queue_sweeper_service import get_queue_sweeper_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/api/admin/matches/{match_id}/resolve",
    response_model=SettlementResponse,
    dependencies=[Depends(require_admin)],
)
async def resolve_match(
    match_id: int,
    payload: ResolveMatchRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Settle a disputed or stalled match with an explicit winner."""
    try:
        return await settlement_service.force_resolve(session, match_id, payload.winner_id)
    except MatchmakingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error resolving match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error resolving match")


@router.post("/api/admin/queue/sweep", dependencies=[Depends(require_admin)])
async def sweep_queue():
    """Run one expiry and re-matching pass immediately."""
    try:
        return await get_queue_sweeper_service().run_once()
    except Exception as e:
        logger.error(f"Error sweeping queue: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error sweeping queue")
