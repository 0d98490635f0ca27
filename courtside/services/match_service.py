"""
Match lifecycle after pairing: lookup, participant confirmation, start,
and decline.

Completion is handled by settlement_service. Cancelling a match never
touches the queue entries that produced it; those stay 'matched'.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from courtside.database.models import Match, MatchPlayer, MatchStatus
from courtside.services.exceptions import AlreadyTerminal, Forbidden, NotFound
from courtside.services.subscription_service import MATCH_TOPIC, get_subscription_manager
from courtside.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def match_to_dict(match: Match) -> Dict:
    """Serialize a match and its participants."""
    return {
        "id": match.id,
        "sport_id": match.sport_id,
        "venue_id": match.venue_id,
        "court_id": match.court_id,
        "scheduled_date": match.scheduled_date,
        "scheduled_time": match.scheduled_time,
        "status": match.status.value,
        "winner_id": match.winner_id,
        "created_at": match.created_at,
        "completed_at": match.completed_at,
        "players": [
            {
                "user_id": p.user_id,
                "queue_entry_id": p.queue_entry_id,
                "rating_before": p.rating_before,
                "rating_after": p.rating_after,
                "confirmed": p.confirmed,
            }
            for p in match.players
        ],
    }


async def get_match(
    session: AsyncSession, match_id: int, requester_id: Optional[int] = None
) -> Match:
    """
    Load a match with its players, fresh from the database.

    Raises:
        NotFound: If the match does not exist
        Forbidden: If requester_id is given and is not a participant
    """
    result = await session.execute(
        select(Match)
        .options(selectinload(Match.players), selectinload(Match.feedback))
        .where(Match.id == match_id)
        .execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise NotFound(f"Match {match_id} not found")
    if requester_id is not None and requester_id not in participant_ids(match):
        raise Forbidden("Not a participant in this match")
    return match


def participant_ids(match: Match) -> List[int]:
    return [p.user_id for p in match.players]


async def list_player_matches(
    session: AsyncSession,
    user_id: int,
    status: Optional[MatchStatus] = None,
) -> List[Dict]:
    """
    A player's matches, newest first.

    Each item is the serialized match plus the player's own outcome:
    'result' is 'won' or 'lost' once the match is completed (None before),
    and 'rating_change' is set once ratings have been applied.
    """
    query = (
        select(Match)
        .join(MatchPlayer, MatchPlayer.match_id == Match.id)
        .options(selectinload(Match.players))
        .where(MatchPlayer.user_id == user_id)
        .order_by(Match.created_at.desc(), Match.id.desc())
        .execution_options(populate_existing=True)
    )
    if status is not None:
        query = query.where(Match.status == status)
    result = await session.execute(query)

    items = []
    for match in result.scalars().all():
        data = match_to_dict(match)
        own = next(p for p in match.players if p.user_id == user_id)
        data["result"] = None
        if match.status == MatchStatus.COMPLETED:
            data["result"] = "won" if match.winner_id == user_id else "lost"
        data["rating_change"] = (
            own.rating_after - own.rating_before if own.rating_after is not None else None
        )
        items.append(data)
    return items


async def transition_match_status(
    session: AsyncSession,
    match_id: int,
    from_statuses: Iterable[MatchStatus],
    to_status: MatchStatus,
    **values,
) -> bool:
    """
    Compare-and-set a match status. Does not commit.

    Returns:
        True if the match was in one of from_statuses and has been moved
    """
    result = await session.execute(
        update(Match)
        .where(and_(Match.id == match_id, Match.status.in_(list(from_statuses))))
        .values(status=to_status, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def publish_match(session: AsyncSession, match_id: int) -> Match:
    """Reload a committed match and push it to subscribers."""
    match = await get_match(session, match_id)
    await session.commit()
    await get_subscription_manager().publish(MATCH_TOPIC, match_id, match_to_dict(match))
    return match


async def confirm_participation(session: AsyncSession, match_id: int, user_id: int) -> Match:
    """
    Mark a participant as confirmed; once both have confirmed, a pending
    match becomes confirmed.
    """
    match = await get_match(session, match_id, requester_id=user_id)
    status = match.status
    if status not in (MatchStatus.PENDING, MatchStatus.CONFIRMED):
        await session.rollback()
        raise AlreadyTerminal(f"Match {match_id} is {status.value}")

    for player in match.players:
        if player.user_id == user_id:
            player.confirmed = True
    await session.flush()
    unconfirmed = await session.execute(
        select(MatchPlayer.id).where(
            and_(MatchPlayer.match_id == match_id, MatchPlayer.confirmed.is_(False))
        )
    )
    if unconfirmed.first() is None:
        if await transition_match_status(
            session, match_id, [MatchStatus.PENDING], MatchStatus.CONFIRMED
        ):
            logger.info(f"Match {match_id} confirmed by both players")
    await session.commit()
    return await publish_match(session, match_id)


async def start_match(session: AsyncSession, match_id: int, user_id: int) -> Match:
    """Move a confirmed match to in_progress."""
    await get_match(session, match_id, requester_id=user_id)
    if not await transition_match_status(
        session, match_id, [MatchStatus.CONFIRMED], MatchStatus.IN_PROGRESS
    ):
        await session.rollback()
        match = await get_match(session, match_id)
        await session.commit()
        raise AlreadyTerminal(f"Match {match_id} is {match.status.value}, not confirmed")
    await session.commit()
    return await publish_match(session, match_id)


async def decline_match(session: AsyncSession, match_id: int, user_id: int) -> Match:
    """
    Cancel a match that has not started. Either participant may decline.

    Raises:
        AlreadyTerminal: If the match is in progress, completed, disputed or cancelled
    """
    await get_match(session, match_id, requester_id=user_id)
    if not await transition_match_status(
        session,
        match_id,
        [MatchStatus.PENDING, MatchStatus.CONFIRMED],
        MatchStatus.CANCELLED,
    ):
        await session.rollback()
        match = await get_match(session, match_id)
        await session.commit()
        raise AlreadyTerminal(f"Match {match_id} is {match.status.value}")
    await session.commit()
    logger.info(f"Match {match_id} declined by user {user_id}")
    return await publish_match(session, match_id)
