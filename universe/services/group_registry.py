"""Hashtag group registry.

Owns the set of hashtag groups per community: making sure a group exists
before a message is filed into it, explicit user-created groups with the
global one-active-group-per-owner rule, and the sidebar listing.

Message counts and activity timestamps are not touched here; they are bumped
by the posting transaction itself (see MessageRouter).
"""

from __future__ import annotations

from dataclasses import asdict
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.base import ChangePublisherProtocol
from universe.services.exceptions import AlreadyOwnsGroupError
from universe.services.exceptions import GroupExistsError
from universe.services.hashtags import normalize_tag
from universe.services.models import ChangeType
from universe.services.models import GroupRef
from universe.shared.config import get_settings
from universe.web.crud import GroupOperations


class GroupRegistry(BaseService):
    """Creation, lookup and listing of hashtag groups."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        change_feed: Optional[ChangePublisherProtocol] = None,
        group_ops: Optional[GroupOperations] = None
    ):
        super().__init__(session_maker, change_feed, "GroupRegistry")
        self._groups = group_ops or GroupOperations()

    async def ensure_group(self, community: str, tag: str) -> GroupRef:
        """Return the group for ``(community, tag)``, creating it if absent.

        An existing group is returned unchanged. A new group starts with no
        messages, activity stamped now, and no owner.

        Raises:
            InvalidTagError: If the tag normalises to nothing
            StoreUnavailableError: If the store call fails
        """
        tag = normalize_tag(tag)
        async with self._transaction("ensure_group", community=community, tag=tag) as session:
            group, created = await self.ensure_group_in(session, community, tag)

        if created:
            await self._publish("hashtag_groups", ChangeType.INSERT, asdict(group))
        return group

    async def ensure_group_in(
        self,
        session: AsyncSession,
        community: str,
        tag: str
    ) -> tuple[GroupRef, bool]:
        """Ensure a group inside the caller's transaction.

        ``tag`` must already be normalised. Two processes racing on the same
        new tag both end up with the single row that won the insert.

        Returns:
            tuple[GroupRef, bool]: The group and whether this call created it
        """
        existing = await self._groups.get_group(session, community, tag)
        if existing is not None:
            return GroupRef.from_row(existing), False

        created = await self._groups.insert_group_if_absent(session, community, tag, self._now())
        group = await self._groups.get_group(session, community, tag)
        if created:
            self._log_operation("group_created", community=community, tag=tag)
        return GroupRef.from_row(group), created

    async def create_owned_group(self, community: str, tag: str, owner_id: str) -> GroupRef:
        """Create a group on behalf of a user.

        A user may own at most one active group across every community.

        Raises:
            InvalidTagError: If the tag normalises to nothing
            AlreadyOwnsGroupError: If the owner already has an active group
            GroupExistsError: If the tag is taken in this community
            StoreUnavailableError: If the store call fails
        """
        tag = normalize_tag(tag)
        async with self._transaction(
            "create_owned_group", community=community, tag=tag, owner_id=owner_id
        ) as session:
            owned = await self._groups.get_active_owned_group(session, owner_id)
            if owned is not None:
                raise AlreadyOwnsGroupError(owned.tag, owned.community)

            inserted = await self._groups.insert_group_if_absent(
                session, community, tag, self._now(), owner_id=owner_id
            )
            if not inserted:
                raise GroupExistsError(tag, community)

            group = GroupRef.from_row(await self._groups.get_group(session, community, tag))

        self._log_operation("owned_group_created", community=community, tag=tag, owner_id=owner_id)
        await self._publish("hashtag_groups", ChangeType.INSERT, asdict(group))
        return group

    async def get_group(self, community: str, tag: str) -> Optional[GroupRef]:
        """Look up a group without creating it."""
        tag = normalize_tag(tag)
        async with self._transaction("get_group", community=community, tag=tag) as session:
            group = await self._groups.get_group(session, community, tag)
            return GroupRef.from_row(group) if group is not None else None

    async def top_groups(self, community: str, limit: Optional[int] = None) -> List[GroupRef]:
        """List the busiest groups, most messages first.

        Ties are broken by creation order so the listing is stable.
        """
        limit = limit if limit is not None else get_settings().top_groups_limit
        async with self._transaction("top_groups", community=community) as session:
            groups = await self._groups.get_top_groups(session, community, limit)
            return [GroupRef.from_row(group) for group in groups]
