#!/usr/bin/env python3
"""
Initialize default database values.
Run on startup to make sure the sport catalog has its default entries.
"""

import asyncio
import logging

from sqlalchemy import select

from courtside.database import db
from courtside.database.models import Sport

logger = logging.getLogger(__name__)

DEFAULT_SPORTS = (
    ("Badminton", "🏸"),
    ("Tennis", "🎾"),
    ("Padel", "🎾"),
    ("Table Tennis", "🏓"),
    ("Squash", "🎾"),
)


async def init_defaults():
    """Initialize default database values."""
    logger.info("Initializing default database values...")

    async with db.AsyncSessionLocal() as session:
        result = await session.execute(select(Sport.name))
        existing = {row.name for row in result}

        for name, icon in DEFAULT_SPORTS:
            if name in existing:
                continue
            session.add(Sport(name=name, icon=icon, players_required=2, is_active=True))
            logger.info(f"✓ Added default sport: {name}")

        await session.commit()

    logger.info("✓ Default values initialized")


if __name__ == "__main__":
    asyncio.run(init_defaults())
