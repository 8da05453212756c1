"""Realtime change feed over Redis pub/sub.

Each table has its own channel (``realtime:<table>``). Services publish a
change after their transaction commits; subscribers receive ChangeEvent
objects filtered by event type and by field equality on the record.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Iterable, Optional

from redis.exceptions import RedisError

from universe.services.exceptions import StoreUnavailableError
from universe.services.models import ChangeEvent
from universe.services.models import ChangeType
from universe.shared.redis_client import RedisManager

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "realtime"


def channel_for(table: str) -> str:
    return f"{CHANNEL_PREFIX}:{table}"


def encode_event(table: str, change_type: ChangeType, record: Dict[str, Any]) -> str:
    return json.dumps(
        {"table": table, "type": ChangeType(change_type).value, "record": record},
        default=str
    )


def decode_event(payload: str) -> Optional[ChangeEvent]:
    """Parse a channel payload; malformed payloads yield None."""
    try:
        data = json.loads(payload)
        return ChangeEvent(
            table=data["table"],
            type=ChangeType(data["type"]),
            record=data.get("record") or {}
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        logger.warning(f"Dropping malformed change event: {payload!r}")
        return None


class Subscription:
    """Async iterator over the change events of one table.

    Usage::

        subscription = await feed.subscribe("messages", filters={"community": "RVCE"})
        async for event in subscription:
            ...
        await subscription.unsubscribe()
    """

    def __init__(
        self,
        pubsub,
        table: str,
        events: Optional[Iterable[ChangeType]] = None,
        filters: Optional[Dict[str, Any]] = None
    ):
        self._pubsub = pubsub
        self.table = table
        self.channel = channel_for(table)
        self.events = {ChangeType(e) for e in events} if events else set(ChangeType)
        self.filters = dict(filters or {})
        self.active = True

    def accepts(self, event: ChangeEvent) -> bool:
        """Whether an event passes this subscription's type and field filters."""
        if event.table != self.table or event.type not in self.events:
            return False
        # Deletes only carry the id, so field filters cannot reject them.
        if event.type == ChangeType.DELETE:
            return True
        return all(event.record.get(field) == value for field, value in self.filters.items())

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        async for raw in self._pubsub.listen():
            if not self.active:
                break
            if raw.get("type") != "message":
                continue

            event = decode_event(raw.get("data"))
            if event is not None and self.accepts(event):
                yield event

    async def unsubscribe(self) -> None:
        """Stop receiving events and release the connection."""
        if not self.active:
            return
        self.active = False
        await self._pubsub.unsubscribe(self.channel)
        await self._pubsub.aclose()


class ChangeFeed:
    """Publishes and subscribes to row changes."""

    def __init__(self, redis_manager: RedisManager):
        self.redis_manager = redis_manager

    async def publish(
        self,
        table: str,
        change_type: ChangeType,
        record: Dict[str, Any]
    ) -> int:
        """Announce a committed row change.

        Returns:
            int: Number of subscribers that received it

        Raises:
            StoreUnavailableError: If Redis is unreachable
        """
        try:
            return await self.redis_manager.publish(
                channel_for(table), encode_event(table, change_type, record)
            )
        except RedisError as e:
            logger.error(f"Failed to publish {table} change: {e}")
            raise StoreUnavailableError("publish_change") from e

    async def subscribe(
        self,
        table: str,
        events: Optional[Iterable[ChangeType]] = None,
        filters: Optional[Dict[str, Any]] = None
    ) -> Subscription:
        """Start listening to a table's changes.

        Raises:
            StoreUnavailableError: If Redis is unreachable
        """
        pubsub = self.redis_manager.pubsub()
        subscription = Subscription(pubsub, table, events, filters)
        try:
            await pubsub.subscribe(subscription.channel)
        except RedisError as e:
            logger.error(f"Failed to subscribe to {table} changes: {e}")
            raise StoreUnavailableError("subscribe_changes") from e

        logger.debug(f"Subscribed to {subscription.channel} with filters {subscription.filters}")
        return subscription
