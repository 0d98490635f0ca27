"""
Caller identity dependencies for FastAPI routes.

Authentication is handled upstream; the gateway forwards the authenticated
user's id in the X-User-Id header.
"""

import os
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status


async def get_current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    """
    Dependency to get the calling user's id.

    Raises:
        HTTPException: 401 if the header is missing
    """
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


async def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    """Require the moderator token configured in ADMIN_TOKEN."""
    expected = os.getenv("ADMIN_TOKEN")
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
