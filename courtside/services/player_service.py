"""
Read access to player profiles and per-sport ratings.

Profiles are owned by the profile subsystem; this module only reads them
and lazily creates the rating row a player starts with in a new sport.
"""

import logging
from typing import Dict, Iterable, List

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.database.models import PlayerProfile, PlayerRating, Sport
from courtside.services.exceptions import NotFound
from courtside.services.rating_service import rating_tier
from courtside.utils.constants import INITIAL_RATING

logger = logging.getLogger(__name__)


async def get_player(session: AsyncSession, user_id: int) -> PlayerProfile:
    """Load a player profile or raise NotFound."""
    player = await session.get(PlayerProfile, user_id)
    if player is None:
        raise NotFound(f"Player {user_id} not found")
    return player


async def get_active_sport(session: AsyncSession, sport_id: int) -> Sport:
    """Load an active sport from the catalog or raise NotFound."""
    sport = await session.get(Sport, sport_id)
    if sport is None or not sport.is_active:
        raise NotFound(f"Sport {sport_id} not found")
    return sport


async def get_or_create_rating(
    session: AsyncSession, user_id: int, sport_id: int
) -> PlayerRating:
    """
    Return the player's rating row for a sport, creating it at the base
    rating if the player has never played that sport.
    """
    query = select(PlayerRating).where(
        and_(PlayerRating.user_id == user_id, PlayerRating.sport_id == sport_id)
    )
    result = await session.execute(query)
    rating = result.scalar_one_or_none()
    if rating is not None:
        return rating

    rating = PlayerRating(
        user_id=user_id,
        sport_id=sport_id,
        rating=INITIAL_RATING,
        games_played=0,
        wins=0,
        losses=0,
    )
    session.add(rating)
    await session.flush()
    logger.info(f"Created rating row for user {user_id} in sport {sport_id}")
    return rating


async def get_ratings_map(
    session: AsyncSession, sport_id: int, user_ids: Iterable[int]
) -> Dict[int, int]:
    """Map user_id -> rating for one sport; missing rows count as the base rating."""
    user_ids = list(set(user_ids))
    if not user_ids:
        return {}
    result = await session.execute(
        select(PlayerRating.user_id, PlayerRating.rating).where(
            and_(PlayerRating.sport_id == sport_id, PlayerRating.user_id.in_(user_ids))
        )
    )
    ratings = {user_id: INITIAL_RATING for user_id in user_ids}
    ratings.update({row.user_id: row.rating for row in result})
    return ratings


async def get_genders_map(session: AsyncSession, user_ids: Iterable[int]) -> Dict[int, str]:
    """Map user_id -> gender value."""
    user_ids = list(set(user_ids))
    if not user_ids:
        return {}
    result = await session.execute(
        select(PlayerProfile.user_id, PlayerProfile.gender).where(
            PlayerProfile.user_id.in_(user_ids)
        )
    )
    return {row.user_id: row.gender.value for row in result}


async def get_player_ratings(session: AsyncSession, user_id: int) -> List[Dict]:
    """All sport ratings for a player, with display tier."""
    await get_player(session, user_id)
    result = await session.execute(
        select(PlayerRating)
        .where(PlayerRating.user_id == user_id)
        .order_by(PlayerRating.sport_id)
    )
    return [
        {
            "sport_id": r.sport_id,
            "rating": r.rating,
            "tier": rating_tier(r.rating),
            "games_played": r.games_played,
            "wins": r.wins,
            "losses": r.losses,
        }
        for r in result.scalars().all()
    ]
