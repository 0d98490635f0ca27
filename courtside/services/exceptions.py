"""
Matchmaking error taxonomy.

Every error subclasses ValueError so callers that only care about
"bad request" can keep catching ValueError.
"""


class MatchmakingError(ValueError):
    """Base class for errors surfaced by the matchmaking services."""


class ValidationError(MatchmakingError):
    """Malformed join criteria or feedback."""


class DuplicateActiveEntry(MatchmakingError):
    """The user already has a waiting entry for this sport."""


class DuplicateFeedback(MatchmakingError):
    """The participant already submitted feedback for this match."""


class NotFound(MatchmakingError):
    """Queue entry, match, sport or player does not exist."""


class Forbidden(MatchmakingError):
    """The requester does not own the entry or is not a match participant."""


class AlreadyTerminal(MatchmakingError):
    """The entry or match has already left its waiting/open state."""


class Conflict(MatchmakingError):
    """A compare-and-set transition lost a race with another transaction."""


class DisputedResult(MatchmakingError):
    """Participants reported different winners; needs moderation."""

    def __init__(self, match_id: int):
        super().__init__(f"Match {match_id} has conflicting result reports")
        self.match_id = match_id
