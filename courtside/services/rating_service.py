"""
ELO rating model.

Pure functions over integer ratings; used by the matcher to judge
compatibility and by settlement to compute rating changes.
"""

from typing import NamedTuple
from courtside.utils.constants import (
    DEFAULT_K,
    ELO_SCALE,
    MATCH_QUALITY_SPREAD,
    NEW_PLAYER_GAMES,
    DEVELOPING_PLAYER_GAMES,
    K_NEW_PLAYER,
    K_DEVELOPING,
    K_INTERMEDIATE,
    K_ESTABLISHED,
    INTERMEDIATE_RATING,
    ESTABLISHED_RATING,
)


class EloResult(NamedTuple):
    """Outcome of a two-player rating exchange."""

    player1_new_rating: int
    player2_new_rating: int
    player1_change: int
    player2_change: int


# ============================================================================
# Core ELO Calculations
# ============================================================================

def expected_score(rating_a: float, rating_b: float) -> float:
    """
    Calculate expected score for player A against player B using ELO formula.

    Formula: P(A beats B) = 1 / (1 + 10^((rating_B - rating_A) / 400))
    If rating_A > rating_B, result > 0.5 (A is favored)
    """
    return 1 / (1 + 10 ** ((rating_b - rating_a) / ELO_SCALE))


def rating_delta(rating_a: int, rating_b: int, a_won: bool, k: float) -> int:
    """
    Rounded rating change for player A after a game against B.

    Equivalent to round(k * (actual - expected_score(a, b))). The win branch
    uses expected_score(b, a) in place of 1 - expected_score(a, b) so the
    winner's and loser's deltas are exact negatives of each other.
    """
    if a_won:
        return round(k * expected_score(rating_b, rating_a))
    return round(-k * expected_score(rating_a, rating_b))


def k_factor(games_played: int, rating: int) -> int:
    """
    K-factor based on experience and strength.

    New and developing players move fast; established high-rated players
    move slowly.
    """
    if games_played < NEW_PLAYER_GAMES:
        return K_NEW_PLAYER
    if games_played < DEVELOPING_PLAYER_GAMES or rating < INTERMEDIATE_RATING:
        return K_DEVELOPING
    if rating < ESTABLISHED_RATING:
        return K_INTERMEDIATE
    return K_ESTABLISHED


def elo_change(
    player1_rating: int, player2_rating: int, player1_won: bool, k: float = DEFAULT_K
) -> EloResult:
    """Calculate new ratings for both players using a shared K-factor."""
    change1 = rating_delta(player1_rating, player2_rating, player1_won, k)
    change2 = rating_delta(player2_rating, player1_rating, not player1_won, k)
    return EloResult(
        player1_new_rating=player1_rating + change1,
        player2_new_rating=player2_rating + change2,
        player1_change=change1,
        player2_change=change2,
    )


# ============================================================================
# Matchmaking Helpers
# ============================================================================

def compatible(rating1: int, rating2: int, tolerance: int) -> bool:
    """Whether two ratings are within `tolerance` of each other (inclusive)."""
    return abs(rating1 - rating2) <= tolerance


def match_quality(rating1: int, rating2: int) -> float:
    """
    Balance score between 0 and 1; 1 is a perfectly even pairing.

    Only used to rank compatible candidates, never to reject one.
    """
    return max(0.0, 1 - abs(rating1 - rating2) / MATCH_QUALITY_SPREAD)


RATING_TIERS = (
    (1000, "Beginner"),
    (1200, "Novice"),
    (1400, "Intermediate"),
    (1600, "Advanced"),
    (1800, "Expert"),
    (2000, "Master"),
)


def rating_tier(rating: int) -> str:
    """Display tier for a rating."""
    for upper_bound, name in RATING_TIERS:
        if rating < upper_bound:
            return name
    return "Grandmaster"
