"""WebSocket push of committed queue entry and match state."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from courtside.database import db
from courtside.services import match_service, queue_service
from courtside.services.exceptions import MatchmakingError
from courtside.services.subscription_service import (
    MATCH_TOPIC,
    QUEUE_ENTRY_TOPIC,
    get_subscription_manager,
)

logger = logging.getLogger(__name__)
router = APIRouter()

# Seconds without client traffic before the server pings
PING_INTERVAL_SECONDS = 30


async def _load_snapshot(topic: str, entity_id: int, user_id: int) -> dict:
    """Current committed state of the entity, checked against the caller."""
    async with db.AsyncSessionLocal() as session:
        if topic == QUEUE_ENTRY_TOPIC:
            entry = await queue_service.get_entry(session, entity_id)
            await session.commit()
            if entry.user_id != user_id:
                raise PermissionError("Not authorized to watch this queue entry")
            return queue_service.entry_to_dict(entry)
        match = await match_service.get_match(session, entity_id, requester_id=user_id)
        await session.commit()
        return match_service.match_to_dict(match)


async def _serve_subscription(websocket: WebSocket, topic: str, entity_id: int) -> None:
    """
    Stream committed state changes of one entity to a WebSocket client.

    Requires the caller's id in the query string: ?user_id=<id>
    """
    await websocket.accept()

    user_id = websocket.query_params.get("user_id")
    if not user_id or not user_id.isdigit():
        await websocket.close(code=1008, reason="Missing user_id")
        return

    # Events published before the snapshot is sent are held back, then
    # delivered after it in publish order
    pending = []
    live = False

    async def push(event: dict) -> None:
        if not live:
            pending.append(event)
            return
        await websocket.send_json(jsonable_encoder(event))

    # Subscribe before reading so no commit falls between snapshot and stream
    manager = get_subscription_manager()
    await manager.subscribe(topic, entity_id, push)
    try:
        snapshot = await _load_snapshot(topic, entity_id, int(user_id))
    except (MatchmakingError, PermissionError) as e:
        await manager.unsubscribe(topic, entity_id, push)
        await websocket.close(code=1008, reason=str(e))
        return
    except Exception:
        await manager.unsubscribe(topic, entity_id, push)
        raise

    try:
        await websocket.send_json(
            jsonable_encoder({"topic": topic, "id": entity_id, "data": snapshot})
        )
        while pending:
            await websocket.send_json(jsonable_encoder(pending.pop(0)))
        live = True
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(), timeout=PING_INTERVAL_SECONDS
                )
                # Handle ping messages (client sends "ping", server responds "pong")
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                await websocket.send_text("ping")
    except WebSocketDisconnect:
        logger.info(f"WebSocket for {topic} {entity_id} disconnected")
    except Exception as e:
        logger.error(f"WebSocket error for {topic} {entity_id}: {e}")
    finally:
        await manager.unsubscribe(topic, entity_id, push)


@router.websocket("/ws/queue/{entry_id}")
async def watch_queue_entry(websocket: WebSocket, entry_id: int):
    """Push updates for a queue entry (waiting -> matched/cancelled/expired)."""
    await _serve_subscription(websocket, QUEUE_ENTRY_TOPIC, entry_id)


@router.websocket("/ws/matches/{match_id}")
async def watch_match(websocket: WebSocket, match_id: int):
    """Push updates for a match (confirmation, completion, dispute)."""
    await _serve_subscription(websocket, MATCH_TOPIC, match_id)
