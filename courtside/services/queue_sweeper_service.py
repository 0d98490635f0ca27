"""
Queue sweeper: expires overdue entries and re-runs matching.

Background worker that polls every QUEUE_SWEEP_INTERVAL_SECONDS. Each pass
first expires waiting entries past their deadline, then re-evaluates the
remaining waiting entries so pairs that missed each other at join time still
get matched.
"""

import asyncio
import logging
import os
from typing import Dict, Optional

from courtside.database import db
from courtside.services import matchmaking_service, queue_service

logger = logging.getLogger(__name__)

# How often the worker sweeps the queue (seconds)
POLL_INTERVAL_SECONDS = float(os.getenv("QUEUE_SWEEP_INTERVAL_SECONDS", "30"))


class QueueSweeperService:
    """Background service that keeps the matchmaking queue moving."""

    def __init__(self, poll_interval: float = POLL_INTERVAL_SECONDS):
        self.poll_interval = poll_interval
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background sweep worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Queue sweeper worker started")

    def stop(self) -> None:
        """Stop the background sweep worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Queue sweeper worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: sweep, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in queue sweeper worker: {e}", exc_info=True)

            # Wait for poll interval or until stop is signalled
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                # If wait_for returns normally, stop_event was set → exit
                break
            except asyncio.TimeoutError:
                # Timeout means interval elapsed, loop again
                pass

    async def run_once(self) -> Dict[str, int]:
        """
        Run a single sweep.

        Returns:
            Counts of expired entries, evaluated entries and matches created
        """
        async with db.AsyncSessionLocal() as session:
            expired_ids = await queue_service.expire_overdue(session)
            stats = await matchmaking_service.run_matching_pass(session)

        if expired_ids or stats["matches_created"]:
            logger.info(
                f"Queue sweep: expired {len(expired_ids)} entr(ies), "
                f"created {stats['matches_created']} match(es) from {stats['evaluated']} waiting"
            )
        return {"expired": len(expired_ids), **stats}


# Global sweeper instance
_queue_sweeper_service: Optional[QueueSweeperService] = None


def get_queue_sweeper_service() -> QueueSweeperService:
    """Get the global queue sweeper instance."""
    global _queue_sweeper_service
    if _queue_sweeper_service is None:
        _queue_sweeper_service = QueueSweeperService()
    return _queue_sweeper_service
