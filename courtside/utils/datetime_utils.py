"""
Datetime utility functions.
"""

from datetime import datetime, timedelta
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def expiry_from_now(minutes: float) -> datetime:
    """Return the UTC instant `minutes` from now."""
    return utcnow() + timedelta(minutes=minutes)
