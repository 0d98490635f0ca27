"""
Match settlement.

Collects post-match feedback, decides the winner and applies rating changes
exactly once per match. The Match.status compare-and-set to 'completed' is
the guard: concurrent or repeated settlements find the status already moved
and leave ratings alone.
"""

import logging
from typing import Dict, Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtside.database.models import (
    BehaviorMetrics,
    Match,
    MatchFeedback,
    MatchStatus,
    PlayerRating,
    SETTLEABLE_MATCH_STATUSES,
)
from courtside.services import match_service, player_service
from courtside.services.exceptions import (
    AlreadyTerminal,
    DisputedResult,
    DuplicateFeedback,
    Forbidden,
    ValidationError,
)
from courtside.services.rating_service import k_factor, rating_delta
from courtside.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

BEHAVIOR_SCORE_MIN = 1
BEHAVIOR_SCORE_MAX = 5


def settlement_result(match: Match, rating_changes: Optional[Dict[int, int]] = None,
                      settled: bool = False) -> Dict:
    """Summarize a match's settlement state."""
    if rating_changes is None:
        rating_changes = {
            p.user_id: p.rating_after - p.rating_before
            for p in match.players
            if p.rating_after is not None
        }
    return {
        "match_id": match.id,
        "status": match.status.value,
        "winner_id": match.winner_id,
        "rating_changes": rating_changes,
        "settled": settled,
    }


# ============================================================================
# Feedback
# ============================================================================

async def _reported_winners(session: AsyncSession, match_id: int) -> Dict[int, int]:
    """Map rater user_id -> reported winner for a match."""
    result = await session.execute(
        select(MatchFeedback.from_user_id, MatchFeedback.reported_winner_id).where(
            MatchFeedback.match_id == match_id
        )
    )
    return {row.from_user_id: row.reported_winner_id for row in result}


async def _record_behavior(
    session: AsyncSession, user_id: int, tone: int, aggressiveness: int, sportsmanship: int
) -> None:
    """Fold one set of behavior scores into the player's running averages."""
    metrics = await session.get(BehaviorMetrics, user_id, with_for_update=True)
    if metrics is None:
        metrics = BehaviorMetrics(
            user_id=user_id, tone=0.0, aggressiveness=0.0, sportsmanship=0.0, total_ratings=0
        )
        session.add(metrics)

    n = metrics.total_ratings
    metrics.tone = (metrics.tone * n + tone) / (n + 1)
    metrics.aggressiveness = (metrics.aggressiveness * n + aggressiveness) / (n + 1)
    metrics.sportsmanship = (metrics.sportsmanship * n + sportsmanship) / (n + 1)
    metrics.total_ratings = n + 1


async def submit_feedback(
    session: AsyncSession,
    match_id: int,
    from_user_id: int,
    reported_winner_id: int,
    tone: int,
    aggressiveness: int,
    sportsmanship: int,
    comments: Optional[str] = None,
) -> Dict:
    """
    Record a participant's result report and behavior ratings for the opponent.

    Once both participants have reported, the match is settled.

    Returns:
        Settlement summary (see settlement_result)

    Raises:
        NotFound: If the match does not exist
        Forbidden: If the rater is not a participant
        ValidationError: If the winner or scores are invalid or the match was cancelled
        DuplicateFeedback: If the rater already reported on this match
    """
    match = await match_service.get_match(session, match_id)
    participants = match_service.participant_ids(match)
    if from_user_id not in participants:
        await session.rollback()
        raise Forbidden("Not a participant in this match")
    if match.status == MatchStatus.CANCELLED:
        await session.rollback()
        raise ValidationError(f"Match {match_id} was cancelled")
    if reported_winner_id not in participants:
        await session.rollback()
        raise ValidationError("Reported winner must be one of the match participants")
    for name, score in (
        ("tone", tone),
        ("aggressiveness", aggressiveness),
        ("sportsmanship", sportsmanship),
    ):
        if not BEHAVIOR_SCORE_MIN <= score <= BEHAVIOR_SCORE_MAX:
            await session.rollback()
            raise ValidationError(
                f"{name} must be between {BEHAVIOR_SCORE_MIN} and {BEHAVIOR_SCORE_MAX}"
            )
    reports = await _reported_winners(session, match_id)
    if from_user_id in reports:
        await session.rollback()
        raise DuplicateFeedback(f"Feedback already submitted for match {match_id}")

    opponent_id = next(uid for uid in participants if uid != from_user_id)
    session.add(
        MatchFeedback(
            match_id=match_id,
            from_user_id=from_user_id,
            to_user_id=opponent_id,
            reported_winner_id=reported_winner_id,
            tone=tone,
            aggressiveness=aggressiveness,
            sportsmanship=sportsmanship,
            comments=comments,
        )
    )
    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        raise DuplicateFeedback(f"Feedback already submitted for match {match_id}") from e
    await _record_behavior(session, opponent_id, tone, aggressiveness, sportsmanship)
    await session.commit()
    logger.info(f"User {from_user_id} submitted feedback for match {match_id}")

    try:
        return await settle_match(session, match_id)
    except DisputedResult:
        match = await match_service.get_match(session, match_id)
        await session.commit()
        return settlement_result(match)


# ============================================================================
# Settlement
# ============================================================================

async def _apply_result(
    session: AsyncSession,
    match: Match,
    winner_id: int,
    from_statuses,
) -> Dict:
    """
    Complete the match and apply both rating changes in one transaction.

    A no-op if another settlement already moved the match out of from_statuses.
    """
    match_id = match.id
    completed = await match_service.transition_match_status(
        session,
        match_id,
        from_statuses,
        MatchStatus.COMPLETED,
        winner_id=winner_id,
        completed_at=utcnow(),
    )
    if not completed:
        await session.rollback()
        match = await match_service.get_match(session, match_id)
        await session.commit()
        logger.info(f"Match {match_id} already settled as {match.status.value}; skipping")
        return settlement_result(match)

    players = list(match.players)
    ratings: Dict[int, PlayerRating] = {}
    # Lock rating rows in user_id order so overlapping settlements queue up
    for p in sorted(players, key=lambda mp: mp.user_id):
        await player_service.get_or_create_rating(session, p.user_id, match.sport_id)
        result = await session.execute(
            select(PlayerRating)
            .where(
                and_(PlayerRating.user_id == p.user_id, PlayerRating.sport_id == match.sport_id)
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        ratings[p.user_id] = result.scalar_one()

    # Both deltas are computed from the pre-match ratings
    before = {uid: r.rating for uid, r in ratings.items()}
    rating_changes: Dict[int, int] = {}
    for p in players:
        opponent = next(o for o in players if o.user_id != p.user_id)
        own = ratings[p.user_id]
        k = k_factor(own.games_played, own.rating)
        rating_changes[p.user_id] = rating_delta(
            before[p.user_id], before[opponent.user_id], p.user_id == winner_id, k
        )

    for p in players:
        own = ratings[p.user_id]
        own.rating = before[p.user_id] + rating_changes[p.user_id]
        own.games_played += 1
        if p.user_id == winner_id:
            own.wins += 1
        else:
            own.losses += 1
        p.rating_after = own.rating

    await session.commit()
    logger.info(f"Settled match {match.id}: winner {winner_id}, changes {rating_changes}")
    match = await match_service.publish_match(session, match.id)
    return settlement_result(match, rating_changes=rating_changes, settled=True)


async def settle_match(session: AsyncSession, match_id: int) -> Dict:
    """
    Settle a match from its feedback. Safe to call repeatedly.

    - completed or disputed: no-op
    - fewer than two reports: no-op (awaiting the other participant)
    - reports agree: ratings applied, match completed
    - reports disagree: match marked disputed, DisputedResult raised

    Raises:
        ValidationError: If the match was cancelled
        DisputedResult: When this call marked the match disputed
    """
    match = await match_service.get_match(session, match_id)
    if match.status in (MatchStatus.COMPLETED, MatchStatus.DISPUTED):
        await session.commit()
        return settlement_result(match)
    if match.status == MatchStatus.CANCELLED:
        await session.rollback()
        raise ValidationError(f"Match {match_id} was cancelled")

    reports = await _reported_winners(session, match_id)
    if len(reports) < len(match.players):
        await session.commit()
        return settlement_result(match)

    reported_winners = set(reports.values())
    if len(reported_winners) > 1:
        disputed = await match_service.transition_match_status(
            session, match_id, SETTLEABLE_MATCH_STATUSES, MatchStatus.DISPUTED
        )
        await session.commit()
        if disputed:
            logger.warning(f"Match {match_id} disputed: participants reported different winners")
            await match_service.publish_match(session, match_id)
            raise DisputedResult(match_id)
        match = await match_service.get_match(session, match_id)
        await session.commit()
        return settlement_result(match)

    return await _apply_result(
        session, match, reported_winners.pop(), SETTLEABLE_MATCH_STATUSES
    )


async def force_resolve(session: AsyncSession, match_id: int, winner_id: int) -> Dict:
    """
    Resolve a match with an explicit winner (moderator action).

    Works on open and disputed matches; a completed match is left as is.

    Raises:
        NotFound: If the match does not exist
        ValidationError: If winner_id is not a participant
        AlreadyTerminal: If the match was cancelled
    """
    match = await match_service.get_match(session, match_id)
    if winner_id not in match_service.participant_ids(match):
        await session.rollback()
        raise ValidationError("Winner must be one of the match participants")
    if match.status == MatchStatus.COMPLETED:
        await session.commit()
        return settlement_result(match)
    if match.status == MatchStatus.CANCELLED:
        await session.rollback()
        raise AlreadyTerminal(f"Match {match_id} was cancelled")

    logger.info(f"Force-resolving match {match_id} with winner {winner_id}")
    return await _apply_result(
        session,
        match,
        winner_id,
        SETTLEABLE_MATCH_STATUSES + (MatchStatus.DISPUTED,),
    )
