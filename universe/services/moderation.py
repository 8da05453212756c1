"""Moderator tools: community counts, message listings, the user board and bans.

Banning removes a user's messages in every community together with their
profile, in one transaction. Replies to a banned user's messages survive
with their ``reply_to_id`` cleared.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.base import ChangePublisherProtocol
from universe.services.exceptions import ValidationError
from universe.services.models import BanOutcome
from universe.services.models import ChangeType
from universe.services.models import CommunityStats
from universe.services.models import MessageRef
from universe.services.models import ProfileRef
from universe.shared.date_provider import current_boundary
from universe.web.crud import GroupOperations
from universe.web.crud import MessageOperations
from universe.web.crud import ProfileOperations
from universe.web.models import KIND_CONFESSION

logger = logging.getLogger(__name__)

MODERATION_LIST_LIMIT = 100

FILTER_ALL = "all"
FILTER_FLAGGED = "flagged"
FILTER_CONFESSIONS = "confessions"
MESSAGE_FILTERS = (FILTER_ALL, FILTER_FLAGGED, FILTER_CONFESSIONS)


class ModerationService(BaseService):
    """Read and write operations behind the moderator panel."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        change_feed: Optional[ChangePublisherProtocol] = None,
        message_ops: Optional[MessageOperations] = None,
        group_ops: Optional[GroupOperations] = None,
        profile_ops: Optional[ProfileOperations] = None
    ):
        super().__init__(session_maker, change_feed, "ModerationService")
        self._messages = message_ops or MessageOperations()
        self._groups = group_ops or GroupOperations()
        self._profiles = profile_ops or ProfileOperations()

    async def community_stats(self, community: str) -> CommunityStats:
        """Count the users, messages and groups of a community.

        ``messages_this_cycle`` counts messages posted since the last purge
        boundary.

        Raises:
            StoreUnavailableError: If a count fails
        """
        since = current_boundary(self._now())

        async with self._transaction("community_stats", community=community) as session:
            return CommunityStats(
                community=community,
                users=await self._profiles.count_profiles(session, community),
                messages=await self._messages.count_messages(session, community),
                confessions=await self._messages.count_messages(
                    session, community, kind=KIND_CONFESSION
                ),
                flagged=await self._messages.count_messages(session, community, flagged_only=True),
                active_groups=await self._groups.count_active_groups(session, community),
                messages_this_cycle=await self._messages.count_messages(
                    session, community, since=since
                ),
            )

    async def list_messages(
        self,
        community: str,
        message_filter: str = FILTER_ALL,
        limit: int = MODERATION_LIST_LIMIT
    ) -> List[MessageRef]:
        """Newest messages of a community, optionally only flagged ones or confessions.

        Args:
            community: College identifier
            message_filter: One of ``"all"``, ``"flagged"`` or ``"confessions"``
            limit: Maximum number of messages

        Raises:
            ValidationError: If the filter is unknown
            StoreUnavailableError: If the query fails
        """
        if message_filter not in MESSAGE_FILTERS:
            raise ValidationError("message_filter", f"Unknown message filter: {message_filter}")

        async with self._transaction(
            "list_messages", community=community, message_filter=message_filter
        ) as session:
            messages = await self._messages.get_recent_messages(
                session,
                community,
                kind=KIND_CONFESSION if message_filter == FILTER_CONFESSIONS else None,
                flagged_only=message_filter == FILTER_FLAGGED,
                limit=limit
            )
            return [MessageRef.from_row(message) for message in messages]

    async def top_users(self, community: str, limit: int = MODERATION_LIST_LIMIT) -> List[ProfileRef]:
        """Profiles of a community ordered by karma, highest first."""
        async with self._transaction("top_users", community=community) as session:
            profiles = await self._profiles.get_top_profiles(session, community, limit)
            return [ProfileRef.from_row(profile) for profile in profiles]

    async def ban_user(self, user_id: str) -> BanOutcome:
        """Delete every message of a user and then their profile.

        Banning an unknown user is a no-op that reports nothing removed.

        Raises:
            StoreUnavailableError: If the deletes fail; nothing is removed then
        """
        async with self._transaction("ban_user", user_id=user_id) as session:
            message_ids = await self._messages.delete_by_author(session, user_id)
            profile_deleted = await self._profiles.delete_profile(session, user_id)

        outcome = BanOutcome(
            user_id=user_id,
            message_ids=tuple(message_ids),
            profile_deleted=profile_deleted
        )
        if not message_ids and not profile_deleted:
            logger.debug(f"Ban of {user_id} removed nothing")
            return outcome

        self._log_operation("user_banned", user_id=user_id, messages_deleted=len(message_ids))
        for message_id in message_ids:
            await self._publish("messages", ChangeType.DELETE, {"id": message_id})
        if profile_deleted:
            await self._publish("profiles", ChangeType.DELETE, {"id": user_id})
        return outcome
