"""
Queue store for matchmaking entries.

Owns the entry lifecycle: waiting -> matched | cancelled | expired. Every
transition is a compare-and-set on the status column so two transactions can
never both move the same entry out of 'waiting'.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.database.models import QueueEntry, QueueStatus, Venue
from courtside.models.schemas import QueueCriteria
from courtside.services import player_service
from courtside.services.exceptions import (
    AlreadyTerminal,
    DuplicateActiveEntry,
    Forbidden,
    NotFound,
    ValidationError,
)
from courtside.services.subscription_service import (
    QUEUE_ENTRY_TOPIC,
    get_subscription_manager,
)
from courtside.utils.datetime_utils import utcnow, expiry_from_now

logger = logging.getLogger(__name__)

# Minutes a waiting entry stays in the queue before the sweeper expires it
QUEUE_ENTRY_TTL_MINUTES = float(os.getenv("QUEUE_ENTRY_TTL_MINUTES", "10"))


def coerce_criteria(criteria: Union[QueueCriteria, Mapping[str, Any]]) -> QueueCriteria:
    """Validate raw criteria, raising ValidationError on bad input."""
    try:
        if isinstance(criteria, QueueCriteria):
            return QueueCriteria.model_validate(criteria.model_dump())
        return QueueCriteria.model_validate(dict(criteria))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid queue criteria: {e.errors()[0]['msg']}") from e
    except TypeError as e:
        raise ValidationError(f"Invalid queue criteria: {e}") from e


def entry_to_dict(entry: QueueEntry) -> Dict:
    """Serialize a queue entry for API responses and subscription events."""
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "sport_id": entry.sport_id,
        "venue_id": entry.venue_id,
        "preferred_date": entry.preferred_date,
        "preferred_time": entry.preferred_time,
        "gender_preference": entry.gender_preference.value,
        "rating_tolerance": entry.rating_tolerance,
        "latitude": entry.latitude,
        "longitude": entry.longitude,
        "radius_km": entry.radius_km,
        "status": entry.status.value,
        "match_id": entry.match_id,
        "created_at": entry.created_at,
        "expires_at": entry.expires_at,
    }


async def publish_entry(entry: QueueEntry) -> None:
    """Notify subscribers of an entry's committed state."""
    await get_subscription_manager().publish(
        QUEUE_ENTRY_TOPIC, entry.id, entry_to_dict(entry)
    )


async def join(
    session: AsyncSession,
    user_id: int,
    sport_id: int,
    criteria: Union[QueueCriteria, Mapping[str, Any]],
    ttl_minutes: Optional[float] = None,
) -> QueueEntry:
    """
    Insert and commit a new waiting entry.

    Args:
        session: Database session
        user_id: Player joining the queue
        sport_id: Sport to be matched in
        criteria: Date/time, tolerance, gender, venue and location criteria
        ttl_minutes: Override for the entry lifetime

    Returns:
        The committed QueueEntry

    Raises:
        ValidationError: If criteria are malformed
        NotFound: If the sport, venue or player does not exist
        DuplicateActiveEntry: If the user is already waiting for this sport
    """
    if sport_id is None:
        raise ValidationError("sport_id is required")
    criteria = coerce_criteria(criteria)

    await player_service.get_active_sport(session, sport_id)
    await player_service.get_player(session, user_id)
    if criteria.venue_id is not None:
        venue = await session.get(Venue, criteria.venue_id)
        if venue is None or not venue.is_active:
            raise NotFound(f"Venue {criteria.venue_id} not found")

    existing = await session.execute(
        select(QueueEntry.id).where(
            and_(
                QueueEntry.user_id == user_id,
                QueueEntry.sport_id == sport_id,
                QueueEntry.status == QueueStatus.WAITING,
            )
        )
    )
    if existing.first() is not None:
        await session.rollback()
        raise DuplicateActiveEntry(f"User {user_id} is already queued for sport {sport_id}")

    # Make sure the matcher can read a rating for this player
    await player_service.get_or_create_rating(session, user_id, sport_id)

    ttl = QUEUE_ENTRY_TTL_MINUTES if ttl_minutes is None else ttl_minutes
    entry = QueueEntry(
        user_id=user_id,
        sport_id=sport_id,
        venue_id=criteria.venue_id,
        preferred_date=criteria.preferred_date,
        preferred_time=criteria.preferred_time,
        gender_preference=criteria.gender_preference,
        rating_tolerance=criteria.rating_tolerance,
        latitude=criteria.latitude,
        longitude=criteria.longitude,
        radius_km=criteria.radius_km,
        status=QueueStatus.WAITING,
        version=1,
        created_at=utcnow(),
        expires_at=expiry_from_now(ttl),
    )
    session.add(entry)
    try:
        await session.flush()
        await session.commit()
    except IntegrityError as e:
        # Partial unique index caught a concurrent join by the same user
        await session.rollback()
        raise DuplicateActiveEntry(
            f"User {user_id} is already queued for sport {sport_id}"
        ) from e

    logger.info(f"User {user_id} joined queue for sport {sport_id} (entry {entry.id})")
    return entry


async def get_entry(session: AsyncSession, entry_id: int) -> QueueEntry:
    """Load an entry fresh from the database or raise NotFound."""
    result = await session.execute(
        select(QueueEntry)
        .where(QueueEntry.id == entry_id)
        .execution_options(populate_existing=True)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFound(f"Queue entry {entry_id} not found")
    return entry


async def get_active_entry(session: AsyncSession, user_id: int) -> Optional[QueueEntry]:
    """Newest waiting or matched entry for a user, for restoring client state."""
    result = await session.execute(
        select(QueueEntry)
        .where(
            and_(
                QueueEntry.user_id == user_id,
                QueueEntry.status.in_([QueueStatus.WAITING, QueueStatus.MATCHED]),
            )
        )
        .order_by(QueueEntry.created_at.desc(), QueueEntry.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_waiting(
    session: AsyncSession,
    sport_id: Optional[int] = None,
    exclude_user_id: Optional[int] = None,
    exclude_ids: Iterable[int] = (),
    live_at: Optional[datetime] = None,
) -> List[QueueEntry]:
    """
    Waiting entries, oldest first.

    Args:
        sport_id: Restrict to one sport (None for all sports)
        exclude_user_id: Skip entries belonging to this user
        exclude_ids: Skip these entry IDs
        live_at: Skip entries whose expires_at is at or before this instant
    """
    conditions = [QueueEntry.status == QueueStatus.WAITING]
    if live_at is not None:
        conditions.append(QueueEntry.expires_at > live_at)
    if sport_id is not None:
        conditions.append(QueueEntry.sport_id == sport_id)
    if exclude_user_id is not None:
        conditions.append(QueueEntry.user_id != exclude_user_id)
    exclude_ids = list(exclude_ids)
    if exclude_ids:
        conditions.append(QueueEntry.id.notin_(exclude_ids))

    result = await session.execute(
        select(QueueEntry)
        .where(and_(*conditions))
        .order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def is_overdue(
    session: AsyncSession, entry_id: int, now: Optional[datetime] = None
) -> bool:
    """True if the entry's TTL has run out, whether or not it is marked expired yet."""
    now = now or utcnow()
    result = await session.execute(
        select(QueueEntry.id).where(
            and_(QueueEntry.id == entry_id, QueueEntry.expires_at <= now)
        )
    )
    return result.first() is not None


async def transition_status(
    session: AsyncSession,
    entry_id: int,
    to_status: QueueStatus,
    match_id: Optional[int] = None,
    expires_before: Optional[datetime] = None,
) -> bool:
    """
    Compare-and-set an entry out of 'waiting'. Does not commit.

    Args:
        entry_id: Entry to transition
        to_status: MATCHED, CANCELLED or EXPIRED
        match_id: Required when moving to MATCHED
        expires_before: Only transition if expires_at is earlier than this

    Returns:
        True if this call performed the transition, False if the entry was
        no longer waiting (or not yet due to expire)
    """
    if to_status == QueueStatus.WAITING:
        raise ValueError("Entries cannot transition back to waiting")
    if (to_status == QueueStatus.MATCHED) != (match_id is not None):
        raise ValueError("match_id must be set exactly when marking an entry matched")

    conditions = [QueueEntry.id == entry_id, QueueEntry.status == QueueStatus.WAITING]
    if expires_before is not None:
        conditions.append(QueueEntry.expires_at < expires_before)

    result = await session.execute(
        update(QueueEntry)
        .where(and_(*conditions))
        .values(
            status=to_status,
            match_id=match_id,
            version=QueueEntry.version + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def cancel(session: AsyncSession, entry_id: int, requester_id: int) -> QueueEntry:
    """
    Cancel a waiting entry on behalf of its owner.

    Raises:
        NotFound: If the entry does not exist
        Forbidden: If the requester does not own the entry
        AlreadyTerminal: If the entry is matched, cancelled or expired
    """
    entry = await get_entry(session, entry_id)
    if entry.user_id != requester_id:
        await session.rollback()
        raise Forbidden("Not authorized to cancel this queue entry")
    status = entry.status
    if status != QueueStatus.WAITING:
        await session.rollback()
        raise AlreadyTerminal(f"Queue entry {entry_id} is already {status.value}")

    if not await transition_status(session, entry_id, QueueStatus.CANCELLED):
        # Lost the race to the matcher or the sweeper
        await session.rollback()
        entry = await get_entry(session, entry_id)
        await session.commit()
        raise AlreadyTerminal(f"Queue entry {entry_id} is already {entry.status.value}")

    await session.commit()
    entry = await get_entry(session, entry_id)
    await session.commit()
    logger.info(f"Queue entry {entry_id} cancelled by user {requester_id}")
    await publish_entry(entry)
    return entry


async def expire(session: AsyncSession, entry_id: int, now: Optional[datetime] = None) -> bool:
    """
    Expire a waiting entry whose expires_at has passed.

    Returns:
        True if the entry was expired by this call
    """
    now = now or utcnow()
    expired = await transition_status(
        session, entry_id, QueueStatus.EXPIRED, expires_before=now
    )
    await session.commit()
    if expired:
        logger.info(f"Queue entry {entry_id} expired")
        entry = await get_entry(session, entry_id)
        await session.commit()
        await publish_entry(entry)
    return expired


async def expire_overdue(session: AsyncSession, now: Optional[datetime] = None) -> List[int]:
    """Expire every waiting entry past its deadline. Returns the expired IDs."""
    now = now or utcnow()
    result = await session.execute(
        select(QueueEntry.id)
        .where(
            and_(
                QueueEntry.status == QueueStatus.WAITING,
                QueueEntry.expires_at < now,
            )
        )
        .order_by(QueueEntry.id)
    )
    overdue_ids = [row.id for row in result]
    await session.commit()

    expired_ids = []
    for entry_id in overdue_ids:
        if await expire(session, entry_id, now=now):
            expired_ids.append(entry_id)
    return expired_ids
