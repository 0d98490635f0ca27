"""
Subscription manager for queue entry and match state changes.

Subscribers register a callback against a (topic, entity id) key. Services
publish only after the transaction carrying the change has committed, so
subscribers never observe in-flight state.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)

QUEUE_ENTRY_TOPIC = "queue_entry"
MATCH_TOPIC = "match"

Callback = Callable[[Dict[str, Any]], Awaitable[None]]
SubscriptionKey = Tuple[str, int]


class SubscriptionManager:
    """Routes committed state-change events to per-entity subscribers."""

    def __init__(self):
        # Dictionary mapping (topic, entity_id) to set of callbacks
        self.subscribers: Dict[SubscriptionKey, Set[Callback]] = {}
        # Lock for safe access to the subscribers dict
        self._lock = asyncio.Lock()

    async def subscribe(self, topic: str, entity_id: int, callback: Callback) -> None:
        """
        Register a callback for changes to one entity.

        Args:
            topic: QUEUE_ENTRY_TOPIC or MATCH_TOPIC
            entity_id: ID of the queue entry or match
            callback: Coroutine function receiving the event payload
        """
        key = (topic, entity_id)
        async with self._lock:
            self.subscribers.setdefault(key, set()).add(callback)
        logger.debug(f"Subscribed to {topic} {entity_id}")

    async def unsubscribe(self, topic: str, entity_id: int, callback: Callback) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        key = (topic, entity_id)
        async with self._lock:
            callbacks = self.subscribers.get(key)
            if callbacks is None:
                return
            callbacks.discard(callback)
            # Clean up empty sets
            if not callbacks:
                del self.subscribers[key]
        logger.debug(f"Unsubscribed from {topic} {entity_id}")

    async def publish(self, topic: str, entity_id: int, payload: Dict[str, Any]) -> int:
        """
        Deliver an event to every subscriber of an entity.

        Subscribers whose callback raises are dropped.

        Returns:
            Number of subscribers the event was delivered to
        """
        key = (topic, entity_id)
        async with self._lock:
            callbacks = list(self.subscribers.get(key, ()))

        # Deliver outside the lock so slow subscribers don't block others
        delivered = 0
        failed = []
        event = {"topic": topic, "id": entity_id, "data": payload}
        for callback in callbacks:
            try:
                await callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Error delivering {topic} {entity_id} event: {e}")
                failed.append(callback)

        if failed:
            async with self._lock:
                callbacks = self.subscribers.get(key)
                if callbacks is not None:
                    callbacks.difference_update(failed)
                    if not callbacks:
                        del self.subscribers[key]

        return delivered

    async def get_subscriber_count(self, topic: str, entity_id: int) -> int:
        """Number of callbacks registered for an entity."""
        async with self._lock:
            return len(self.subscribers.get((topic, entity_id), ()))


# Global subscription manager instance
_subscription_manager: Optional[SubscriptionManager] = None


def get_subscription_manager() -> SubscriptionManager:
    """
    Get the global subscription manager instance.

    Returns:
        SubscriptionManager instance
    """
    global _subscription_manager
    if _subscription_manager is None:
        _subscription_manager = SubscriptionManager()
    return _subscription_manager
