"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000

Creates the full matchmaking schema:
- Catalog: sports, venues, courts
- Players: player_profiles, player_ratings, behavior_metrics
- Queue: queue_entries (with the one-waiting-entry-per-user-and-sport index)
- Matches: matches, match_players, match_feedback
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from scratch."""
    from courtside.database.db import Base
    from courtside.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Drop all tables."""
    from courtside.database.db import Base
    from courtside.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
