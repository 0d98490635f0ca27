"""
Matchmaking service.

Pairs a waiting queue entry with its best compatible counterpart and commits
the Match, both MatchPlayer rows and both entry transitions in a single
transaction. Entry transitions are compare-and-set on status, so an entry
can be claimed by at most one match no matter how many joins race.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Union

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.database.models import (
    Gender,
    GenderPreference,
    Match,
    MatchPlayer,
    MatchStatus,
    QueueEntry,
    QueueStatus,
)
from courtside.models.schemas import QueueCriteria
from courtside.services import match_service, player_service, queue_service
from courtside.services.exceptions import Conflict
from courtside.services.rating_service import compatible, match_quality
from courtside.services.subscription_service import MATCH_TOPIC, get_subscription_manager
from courtside.utils.constants import DEFAULT_RADIUS_KM
from courtside.utils.datetime_utils import utcnow
from courtside.utils.geo_utils import calculate_distance_km

logger = logging.getLogger(__name__)

# Attempts at claiming a candidate before the entry is left waiting
MATCH_RETRY_LIMIT = int(os.getenv("MATCH_RETRY_LIMIT", "3"))


class MatchCandidate(NamedTuple):
    """A waiting entry together with its owner's rating and gender."""

    entry: QueueEntry
    rating: int
    gender: str


# ============================================================================
# Compatibility
# ============================================================================

def gender_accepts(preference: GenderPreference, gender: str) -> bool:
    """Whether a gender preference admits an opponent of the given gender."""
    if preference == GenderPreference.ANY:
        return True
    return gender == preference.value


def venues_agree(a: QueueEntry, b: QueueEntry) -> bool:
    """Venues must be equal only when both entries name one."""
    if a.venue_id is None or b.venue_id is None:
        return True
    return a.venue_id == b.venue_id


def locations_agree(a: QueueEntry, b: QueueEntry) -> bool:
    """When both entries are located, they must lie within the smaller radius."""
    if not (a.has_location and b.has_location):
        return True
    radius = min(a.radius_km or DEFAULT_RADIUS_KM, b.radius_km or DEFAULT_RADIUS_KM)
    distance = calculate_distance_km(a.latitude, a.longitude, b.latitude, b.longitude)
    return distance <= radius


def is_compatible_pair(seeker: MatchCandidate, other: MatchCandidate) -> bool:
    """Symmetric predicate deciding whether two waiting entries may be paired."""
    a, b = seeker.entry, other.entry
    if a.user_id == b.user_id or a.sport_id != b.sport_id:
        return False
    tolerance = min(a.rating_tolerance, b.rating_tolerance)
    if not compatible(seeker.rating, other.rating, tolerance):
        return False
    if a.preferred_date != b.preferred_date:
        return False
    if not (
        gender_accepts(a.gender_preference, other.gender)
        and gender_accepts(b.gender_preference, seeker.gender)
    ):
        return False
    return venues_agree(a, b) and locations_agree(a, b)


def find_best_candidate(
    seeker: MatchCandidate, pool: Iterable[MatchCandidate]
) -> Optional[MatchCandidate]:
    """
    Pick the compatible candidate with the highest match quality.

    Ties go to the longest-waiting candidate (earliest created_at, then
    lowest id).
    """
    compatible_pool = [c for c in pool if is_compatible_pair(seeker, c)]
    if not compatible_pool:
        return None
    return min(
        compatible_pool,
        key=lambda c: (
            -match_quality(seeker.rating, c.rating),
            c.entry.created_at,
            c.entry.id,
        ),
    )


# ============================================================================
# Matching
# ============================================================================

async def _build_candidates(
    session: AsyncSession, sport_id: int, entries: List[QueueEntry]
) -> List[MatchCandidate]:
    user_ids = [e.user_id for e in entries]
    ratings = await player_service.get_ratings_map(session, sport_id, user_ids)
    genders = await player_service.get_genders_map(session, user_ids)
    return [
        MatchCandidate(
            entry=e,
            rating=ratings[e.user_id],
            gender=genders.get(e.user_id, Gender.UNSPECIFIED.value),
        )
        for e in entries
    ]


async def _commit_match(
    session: AsyncSession, seeker: MatchCandidate, partner: MatchCandidate
) -> Match:
    """
    Create the match and claim both entries in one transaction.

    Raises:
        Conflict: If either entry stopped being 'waiting' before commit
    """
    a, b = seeker.entry, partner.entry
    a_id, b_id = a.id, b.id
    match = Match(
        sport_id=a.sport_id,
        venue_id=a.venue_id if a.venue_id is not None else b.venue_id,
        scheduled_date=a.preferred_date,
        scheduled_time=a.preferred_time,
        status=MatchStatus.PENDING,
    )
    session.add(match)
    try:
        await session.flush()

        # Claim in id order so concurrent matchers lock rows in the same order
        for side in sorted((seeker, partner), key=lambda c: c.entry.id):
            claimed = await queue_service.transition_status(
                session, side.entry.id, QueueStatus.MATCHED, match_id=match.id
            )
            if not claimed:
                raise Conflict(f"Queue entry {side.entry.id} is no longer waiting")

        for side in (seeker, partner):
            session.add(
                MatchPlayer(
                    match_id=match.id,
                    user_id=side.entry.user_id,
                    queue_entry_id=side.entry.id,
                    rating_before=side.rating,
                    confirmed=False,
                )
            )
        await session.flush()
        await session.commit()
    except (IntegrityError, OperationalError) as e:
        raise Conflict(f"Could not commit match for entries {a_id} and {b_id}: {e}") from e
    return match


async def match_entry(session: AsyncSession, entry_id: int) -> Optional[Match]:
    """
    Try to match a waiting entry against the rest of its sport's queue.

    Lost races are retried against the remaining pool up to
    MATCH_RETRY_LIMIT times; after that the entry simply stays waiting.

    Returns:
        The committed Match, or None if the entry remains unmatched
    """
    excluded: set = set()
    for attempt in range(1, MATCH_RETRY_LIMIT + 1):
        now = utcnow()
        entry = await queue_service.get_entry(session, entry_id)
        if entry.status != QueueStatus.WAITING:
            await session.commit()
            return None
        if await queue_service.is_overdue(session, entry_id, now=now):
            # Left for the sweeper to mark expired
            await session.commit()
            return None

        waiting = await queue_service.list_waiting(
            session,
            sport_id=entry.sport_id,
            exclude_user_id=entry.user_id,
            exclude_ids=excluded | {entry.id},
            live_at=now,
        )
        if not waiting:
            await session.commit()
            return None

        candidates = await _build_candidates(session, entry.sport_id, [entry] + waiting)
        seeker, pool = candidates[0], candidates[1:]
        partner = find_best_candidate(seeker, pool)
        if partner is None:
            await session.commit()
            return None

        # Plain ids; a rollback expires the loaded entries
        seeker_id, partner_id = seeker.entry.id, partner.entry.id
        try:
            match = await _commit_match(session, seeker, partner)
        except Conflict as e:
            await session.rollback()
            excluded.add(partner_id)
            logger.warning(
                f"Matching entry {entry_id} lost a race (attempt {attempt}/{MATCH_RETRY_LIMIT}): {e}"
            )
            continue

        logger.info(
            f"Matched entry {seeker.entry.id} (user {seeker.entry.user_id}, {seeker.rating}) "
            f"with entry {partner.entry.id} (user {partner.entry.user_id}, {partner.rating}) "
            f"as match {match.id}"
        )
        await _publish_match_created(session, match.id, [seeker_id, partner_id])
        return match

    logger.info(f"Entry {entry_id} left waiting after {MATCH_RETRY_LIMIT} contended attempts")
    return None


async def _publish_match_created(
    session: AsyncSession, match_id: int, entry_ids: List[int]
) -> None:
    """Push the committed match and both entry transitions to subscribers."""
    entries = [await queue_service.get_entry(session, entry_id) for entry_id in entry_ids]
    match = await match_service.get_match(session, match_id)
    await session.commit()

    for entry in entries:
        await queue_service.publish_entry(entry)
    await get_subscription_manager().publish(
        MATCH_TOPIC, match_id, match_service.match_to_dict(match)
    )


async def join_queue(
    session: AsyncSession,
    user_id: int,
    sport_id: int,
    criteria: Union[QueueCriteria, Mapping[str, Any]],
) -> QueueEntry:
    """
    Join the queue and immediately try to match.

    The returned entry already reflects the outcome: 'matched' with its
    match_id, or 'waiting'.
    """
    entry = await queue_service.join(session, user_id, sport_id, criteria)
    await match_entry(session, entry.id)
    entry = await queue_service.get_entry(session, entry.id)
    await session.commit()
    return entry


async def run_matching_pass(session: AsyncSession, sport_id: Optional[int] = None) -> Dict[str, int]:
    """
    Re-evaluate every waiting entry, oldest first.

    Catches pairs whose join-time trigger missed each other.
    """
    waiting = await queue_service.list_waiting(session, sport_id=sport_id)
    entry_ids = [e.id for e in waiting]
    await session.commit()

    matches_created = 0
    for entry_id in entry_ids:
        if await match_entry(session, entry_id) is not None:
            matches_created += 1
    return {"evaluated": len(entry_ids), "matches_created": matches_created}
