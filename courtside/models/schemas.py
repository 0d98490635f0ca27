"""
Pydantic models for API request/response validation.
"""

from datetime import date, time, datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, ConfigDict, model_validator

from courtside.database.models import GenderPreference, QueueStatus, MatchStatus
from courtside.utils.constants import DEFAULT_RATING_TOLERANCE, DEFAULT_RADIUS_KM


class QueueCriteria(BaseModel):
    """Search criteria for a queue entry."""

    venue_id: Optional[int] = None
    preferred_date: date
    preferred_time: time
    gender_preference: GenderPreference = GenderPreference.ANY
    rating_tolerance: int = Field(default=DEFAULT_RATING_TOLERANCE, ge=0)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    radius_km: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_location(self):
        """Latitude and longitude come as a pair; radius defaults when located."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        if self.latitude is None:
            self.radius_km = None
        elif self.radius_km is None:
            self.radius_km = DEFAULT_RADIUS_KM
        return self


class JoinQueueRequest(QueueCriteria):
    """Request to join the matchmaking queue."""

    sport_id: int


class QueueEntryResponse(BaseModel):
    """Queue entry state as observed by clients."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    sport_id: int
    venue_id: Optional[int] = None
    preferred_date: date
    preferred_time: time
    gender_preference: GenderPreference
    rating_tolerance: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None
    status: QueueStatus
    match_id: Optional[int] = None
    created_at: datetime
    expires_at: datetime


class MatchPlayerResponse(BaseModel):
    """Participant row of a match."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int
    queue_entry_id: int
    rating_before: int
    rating_after: Optional[int] = None
    confirmed: bool


class MatchDetailResponse(BaseModel):
    """Match with its two participants."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    sport_id: int
    venue_id: Optional[int] = None
    court_id: Optional[int] = None
    scheduled_date: date
    scheduled_time: time
    status: MatchStatus
    winner_id: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    players: List[MatchPlayerResponse]


class PlayerMatchResponse(MatchDetailResponse):
    """A match from one player's point of view."""

    result: Optional[str] = None
    rating_change: Optional[int] = None


class FeedbackRequest(BaseModel):
    """Post-match result report and behavior ratings for the opponent."""

    reported_winner_id: int
    tone: int = Field(ge=1, le=5)
    aggressiveness: int = Field(ge=1, le=5)
    sportsmanship: int = Field(ge=1, le=5)
    comments: Optional[str] = Field(default=None, max_length=2000)


class SettlementResponse(BaseModel):
    """Outcome of a feedback submission or settlement attempt."""

    match_id: int
    status: MatchStatus
    winner_id: Optional[int] = None
    rating_changes: Dict[int, int] = Field(default_factory=dict)
    settled: bool = False


class ResolveMatchRequest(BaseModel):
    """Admin resolution of a disputed or stalled match."""

    winner_id: int


class PlayerRatingResponse(BaseModel):
    """Rating for one sport."""

    sport_id: int
    rating: int
    tier: str
    games_played: int
    wins: int
    losses: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    message: Optional[str] = None
