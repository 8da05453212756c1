"""Read side of the chat: views, hall of fame and the moderation queue."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.exceptions import InvalidTagError
from universe.services.message_router import parse_view_filter
from universe.services.models import MessageRef
from universe.shared.config import get_settings
from universe.shared.date_provider import time_until_purge
from universe.web.crud import MessageOperations

MODERATION_QUEUE_LIMIT = 100


def matches_view(record: Mapping[str, Any], active_filter: Optional[str]) -> bool:
    """Whether a message record belongs in the view selected by ``active_filter``.

    Used to decide if a realtime insert should be appended to what the
    client is showing. A hashtag view with no usable tag matches nothing.
    """
    try:
        group_name = parse_view_filter(active_filter)
    except InvalidTagError:
        return False
    return record.get("group_name") == group_name


class MessageFeed(BaseService):
    """Queries that build what a client shows."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        message_ops: Optional[MessageOperations] = None
    ):
        super().__init__(session_maker, service_name="MessageFeed")
        self._messages = message_ops or MessageOperations()

    async def fetch_view(
        self,
        community: str,
        active_filter: Optional[str] = "all",
        limit: Optional[int] = None
    ) -> List[MessageRef]:
        """Load the messages of one view, oldest first.

        Raises:
            InvalidTagError: If a hashtag view has no usable tag
            StoreUnavailableError: If the query fails
        """
        group_name = parse_view_filter(active_filter)
        limit = limit if limit is not None else get_settings().feed_limit

        async with self._transaction("fetch_view", community=community, group_name=group_name) as session:
            messages = await self._messages.get_group_messages(session, community, group_name, limit)
            return [MessageRef.from_row(message) for message in messages]

    async def hall_of_fame(self, community: str, size: Optional[int] = None) -> List[MessageRef]:
        """The most reacted-to messages of a community across every group.

        Ties keep posting order.
        """
        size = size if size is not None else get_settings().hall_of_fame_size

        async with self._transaction("hall_of_fame", community=community) as session:
            messages = [
                MessageRef.from_row(message)
                for message in await self._messages.get_community_messages(session, community)
            ]

        messages.sort(key=lambda message: message.total_reactions, reverse=True)
        return messages[:size]

    async def moderation_queue(
        self,
        community: str,
        limit: int = MODERATION_QUEUE_LIMIT
    ) -> List[MessageRef]:
        """Reported messages awaiting a moderator, newest first."""
        async with self._transaction("moderation_queue", community=community) as session:
            messages = await self._messages.get_recent_messages(
                session, community, flagged_only=True, limit=limit
            )
            return [MessageRef.from_row(message) for message in messages]

    def purge_countdown(self) -> timedelta:
        """Time left before the current view is purged."""
        return time_until_purge(self._now())
