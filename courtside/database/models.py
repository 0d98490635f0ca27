"""
SQLAlchemy ORM models for the Courtside matchmaking system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    Date,
    Time,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from courtside.database.db import Base
from courtside.utils.constants import INITIAL_RATING
from courtside.utils.datetime_utils import utcnow


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class Gender(str, enum.Enum):
    """Player gender as recorded on the profile."""

    MALE = "male"
    FEMALE = "female"
    UNSPECIFIED = "unspecified"


class GenderPreference(str, enum.Enum):
    """Opponent gender a queued player is willing to face."""

    ANY = "any"
    MALE = "male"
    FEMALE = "female"


class QueueStatus(str, enum.Enum):
    """Queue entry status enum."""

    WAITING = "waiting"
    MATCHED = "matched"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MatchStatus(str, enum.Enum):
    """Match status enum."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


# Statuses from which a match can still be settled
SETTLEABLE_MATCH_STATUSES = (
    MatchStatus.PENDING,
    MatchStatus.CONFIRMED,
    MatchStatus.IN_PROGRESS,
)


class Sport(Base):
    """Sport catalog."""

    __tablename__ = "sports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    players_required = Column(Integer, default=2, nullable=False)
    icon = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Venue(Base):
    """Venues hosting courts."""

    __tablename__ = "venues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    city = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    courts = relationship("Court", back_populates="venue")


class Court(Base):
    """Bookable courts at a venue."""

    __tablename__ = "courts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False)
    sport_id = Column(Integer, ForeignKey("sports.id"), nullable=False)
    name = Column(String, nullable=False)
    hourly_rate = Column(Float, nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)

    venue = relationship("Venue", back_populates="courts")


class PlayerProfile(Base):
    """Player profiles (owned by the profile subsystem, read by matchmaking)."""

    __tablename__ = "player_profiles"

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    gender = Column(
        Enum(Gender, name="gender", values_callable=_enum_values),
        default=Gender.UNSPECIFIED,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ratings = relationship("PlayerRating", back_populates="player")


class PlayerRating(Base):
    """Per-sport skill rating. Written only by match settlement."""

    __tablename__ = "player_ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("player_profiles.user_id"), nullable=False)
    sport_id = Column(Integer, ForeignKey("sports.id"), nullable=False)
    rating = Column(Integer, default=INITIAL_RATING, nullable=False)
    games_played = Column(Integer, default=0, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    player = relationship("PlayerProfile", back_populates="ratings")

    __table_args__ = (
        UniqueConstraint("user_id", "sport_id", name="uq_player_ratings_user_sport"),
    )


class QueueEntry(Base):
    """A player's standing request to be matched."""

    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("player_profiles.user_id"), nullable=False)
    sport_id = Column(Integer, ForeignKey("sports.id"), nullable=False)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=True)
    preferred_date = Column(Date, nullable=False)
    preferred_time = Column(Time, nullable=False)
    gender_preference = Column(
        Enum(GenderPreference, name="gender_preference", values_callable=_enum_values),
        default=GenderPreference.ANY,
        nullable=False,
    )
    rating_tolerance = Column(Integer, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    radius_km = Column(Float, nullable=True)
    status = Column(
        Enum(QueueStatus, name="queue_status", values_callable=_enum_values),
        default=QueueStatus.WAITING,
        nullable=False,
    )
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=True)
    version = Column(Integer, default=1, nullable=False)  # Bumped on every status transition
    # Set in Python for sub-second ordering; matching tie-breaks on it
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    match = relationship("Match", foreign_keys=[match_id])

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    __table_args__ = (
        CheckConstraint("rating_tolerance >= 0", name="ck_queue_entries_tolerance"),
        CheckConstraint(
            "(status = 'matched' AND match_id IS NOT NULL) "
            "OR (status <> 'matched' AND match_id IS NULL)",
            name="ck_queue_entries_match_id",
        ),
        # One waiting entry per user per sport
        Index(
            "uq_queue_entries_one_waiting",
            "user_id",
            "sport_id",
            unique=True,
            postgresql_where=text("status = 'waiting'"),
            sqlite_where=text("status = 'waiting'"),
        ),
        Index("idx_queue_entries_sport_status", "sport_id", "status", "created_at"),
        Index("idx_queue_entries_user", "user_id", "created_at"),
    )


class Match(Base):
    """A pairing of two queued players."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sport_id = Column(Integer, ForeignKey("sports.id"), nullable=False)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=True)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=True)  # Set when booked
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(Time, nullable=False)
    status = Column(
        Enum(MatchStatus, name="match_status", values_callable=_enum_values),
        default=MatchStatus.PENDING,
        nullable=False,
    )
    winner_id = Column(Integer, ForeignKey("player_profiles.user_id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    players = relationship(
        "MatchPlayer", back_populates="match", order_by="MatchPlayer.id"
    )
    feedback = relationship("MatchFeedback", back_populates="match")

    __table_args__ = (Index("idx_matches_status", "status"),)


class MatchPlayer(Base):
    """Participant row linking a match to the queue entry that produced it."""

    __tablename__ = "match_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("player_profiles.user_id"), nullable=False)
    # Unique: an entry can seed at most one match
    queue_entry_id = Column(
        Integer, ForeignKey("queue_entries.id"), nullable=False, unique=True
    )
    rating_before = Column(Integer, nullable=False)
    rating_after = Column(Integer, nullable=True)  # Null until settlement
    confirmed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    match = relationship("Match", back_populates="players")

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_match_players_match_user"),
    )


class MatchFeedback(Base):
    """Post-match report from one participant. Immutable once written."""

    __tablename__ = "match_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    from_user_id = Column(Integer, ForeignKey("player_profiles.user_id"), nullable=False)
    to_user_id = Column(Integer, ForeignKey("player_profiles.user_id"), nullable=False)
    reported_winner_id = Column(
        Integer, ForeignKey("player_profiles.user_id"), nullable=False
    )
    tone = Column(Integer, nullable=False)  # 1-5
    aggressiveness = Column(Integer, nullable=False)  # 1-5
    sportsmanship = Column(Integer, nullable=False)  # 1-5
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    match = relationship("Match", back_populates="feedback")

    __table_args__ = (
        UniqueConstraint("match_id", "from_user_id", name="uq_match_feedback_rater"),
    )


class BehaviorMetrics(Base):
    """Running averages of behavior scores a player has received."""

    __tablename__ = "behavior_metrics"

    user_id = Column(Integer, ForeignKey("player_profiles.user_id"), primary_key=True)
    tone = Column(Float, default=0.0, nullable=False)
    aggressiveness = Column(Float, default=0.0, nullable=False)
    sportsmanship = Column(Float, default=0.0, nullable=False)
    total_ratings = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
