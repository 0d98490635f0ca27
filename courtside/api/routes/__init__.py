"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from courtside.services.exceptions import (
    AlreadyTerminal,
    Conflict,
    DisputedResult,
    DuplicateActiveEntry,
    DuplicateFeedback,
    Forbidden,
    MatchmakingError,
    NotFound,
)

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# ---------------------------------------------------------------------------
# Service error -> HTTP status
# ---------------------------------------------------------------------------
ERROR_STATUS_CODES = (
    (NotFound, 404),
    (Forbidden, 403),
    (DuplicateActiveEntry, 409),
    (DuplicateFeedback, 409),
    (AlreadyTerminal, 409),
    (Conflict, 409),
    (DisputedResult, 409),
)


def to_http_exception(error: MatchmakingError) -> HTTPException:
    """Map a matchmaking service error to an HTTPException (400 by default)."""
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from courtside.api.routes.queue import router as queue_router  # noqa: E402
from courtside.api.routes.matches import router as matches_router  # noqa: E402
from courtside.api.routes.players import router as players_router  # noqa: E402
from courtside.api.routes.admin import router as admin_router  # noqa: E402
from courtside.api.routes.subscriptions import router as subscriptions_router  # noqa: E402

router = APIRouter()
router.include_router(queue_router)
router.include_router(matches_router)
router.include_router(players_router)
router.include_router(admin_router)
router.include_router(subscriptions_router)
