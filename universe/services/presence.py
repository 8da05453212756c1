"""Online presence per room.

A room's members live in one Redis hash (``presence:<room>``) keyed by the
member key, with JSON metadata as the value. Joins and leaves are announced
on ``presence:<room>:events``. The hash is the source of truth: a join or
leave announcement that fails to send is logged and not raised; observers
resync with ``observe``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Set

from redis.exceptions import RedisError

from universe.services.exceptions import StoreUnavailableError
from universe.shared.redis_client import RedisManager

logger = logging.getLogger(__name__)

PRESENCE_PREFIX = "presence"
JOIN_EVENT = "join"
LEAVE_EVENT = "leave"


class PresenceTracker:
    """Tracks who is online in each room."""

    def __init__(self, redis_manager: RedisManager):
        self.redis_manager = redis_manager

    @staticmethod
    def _members_key(room: str) -> str:
        return f"{PRESENCE_PREFIX}:{room}"

    @staticmethod
    def events_channel(room: str) -> str:
        return f"{PRESENCE_PREFIX}:{room}:events"

    async def _announce(self, room: str, event: str, key: str) -> None:
        try:
            await self.redis_manager.publish(
                self.events_channel(room), json.dumps({"event": event, "key": key})
            )
        except RedisError as e:
            logger.warning(f"Presence {event} announcement for {key} in {room} failed: {e}")

    async def track(self, room: str, key: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Mark ``key`` as online in ``room``.

        Raises:
            StoreUnavailableError: If the member cannot be recorded
        """
        try:
            await self.redis_manager.hset(self._members_key(room), key, json.dumps(metadata or {}, default=str))
        except RedisError as e:
            logger.error(f"Failed to track presence of {key} in {room}: {e}")
            raise StoreUnavailableError("track_presence") from e

        await self._announce(room, JOIN_EVENT, key)

    async def untrack(self, room: str, key: str) -> None:
        """Mark ``key`` as gone from ``room``."""
        try:
            removed = await self.redis_manager.hdel(self._members_key(room), key)
        except RedisError as e:
            logger.error(f"Failed to untrack presence of {key} in {room}: {e}")
            raise StoreUnavailableError("untrack_presence") from e

        if removed:
            await self._announce(room, LEAVE_EVENT, key)

    async def observe(self, room: str) -> Set[str]:
        """Return the keys currently online in ``room``."""
        try:
            members = await self.redis_manager.hgetall(self._members_key(room))
        except RedisError as e:
            logger.error(f"Failed to read presence of {room}: {e}")
            raise StoreUnavailableError("observe_presence") from e
        return set(members or {})

    async def online_count(self, room: str) -> int:
        return len(await self.observe(room))
