"""Database operations for the Universe chat engine.

This module provides CRUD operations for messages, hashtag groups and
profiles. All operations are async, take the caller's session and never
commit: transaction boundaries belong to the service layer so that a
multi-step operation lands as one unit or not at all.

Bulk updates and deletes are predicate based and skip session
synchronisation, which keeps them idempotent and safe to run from several
processes at once.
"""

from __future__ import annotations

from typing import Optional, List, Dict
from datetime import datetime

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from universe.web.models import (
    HashtagGroup,
    Message,
    Profile,
)


class DatabaseOperationError(Exception):
    """Base exception for database operations."""
    pass


class NotFoundError(DatabaseOperationError):
    """Raised when a requested resource is not found."""
    pass


class GroupOperations:
    """Database operations for hashtag groups."""

    async def get_group(
        self,
        session: AsyncSession,
        community: str,
        tag: str
    ) -> Optional[HashtagGroup]:
        """Get a group by its community-scoped tag.

        Args:
            session: Database session
            community: College identifier
            tag: Normalised tag

        Returns:
            Optional[HashtagGroup]: The group, or None if it doesn't exist

        Raises:
            DatabaseOperationError: If query fails
        """
        try:
            stmt = select(HashtagGroup).where(
                HashtagGroup.community == community,
                HashtagGroup.tag == tag
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get group: {e}") from e

    async def insert_group_if_absent(
        self,
        session: AsyncSession,
        community: str,
        tag: str,
        created_at: datetime,
        owner_id: Optional[str] = None
    ) -> bool:
        """Insert a new group with zero messages unless the tag is taken.

        Uses the dialect's ``ON CONFLICT DO NOTHING`` on the
        ``(community, tag)`` unique constraint, so two processes racing to
        create the same group both succeed and exactly one row survives.

        Args:
            session: Database session
            community: College identifier
            tag: Normalised tag
            created_at: Creation instant, also the initial activity time
            owner_id: Account that explicitly created the group

        Returns:
            bool: True if this call inserted the row

        Raises:
            DatabaseOperationError: If the insert fails
        """
        try:
            dialect = session.get_bind().dialect.name
            insert_fn = postgresql_insert if dialect == "postgresql" else sqlite_insert
            stmt = (
                insert_fn(HashtagGroup)
                .values(
                    community=community,
                    tag=tag,
                    message_count=0,
                    last_activity_at=created_at,
                    created_at=created_at,
                    updated_at=created_at,
                    owner_id=owner_id,
                    is_active=True
                )
                .on_conflict_do_nothing(index_elements=["community", "tag"])
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

        except Exception as e:
            raise DatabaseOperationError(f"Failed to create group: {e}") from e

    async def get_active_owned_group(
        self,
        session: AsyncSession,
        owner_id: str
    ) -> Optional[HashtagGroup]:
        """Get the active group owned by a user in any community."""
        try:
            stmt = (
                select(HashtagGroup)
                .where(
                    HashtagGroup.owner_id == owner_id,
                    HashtagGroup.is_active.is_(True)
                )
                .order_by(HashtagGroup.id)
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get owned group: {e}") from e

    async def get_top_groups(
        self,
        session: AsyncSession,
        community: str,
        limit: int = 50
    ) -> List[HashtagGroup]:
        """Get the busiest groups of a community.

        Ordered by message count descending; ties keep insertion order.
        """
        try:
            stmt = (
                select(HashtagGroup)
                .where(HashtagGroup.community == community)
                .order_by(HashtagGroup.message_count.desc(), HashtagGroup.id.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get top groups: {e}") from e

    async def record_activity(
        self,
        session: AsyncSession,
        community: str,
        tag: str,
        at: datetime
    ) -> int:
        """Atomically count one more message and bump the activity time.

        Returns:
            int: Number of groups updated (0 if the group vanished)
        """
        try:
            stmt = (
                update(HashtagGroup)
                .where(
                    HashtagGroup.community == community,
                    HashtagGroup.tag == tag
                )
                .values(
                    message_count=HashtagGroup.message_count + 1,
                    last_activity_at=at
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        except Exception as e:
            raise DatabaseOperationError(f"Failed to record group activity: {e}") from e

    async def count_active_groups(
        self,
        session: AsyncSession,
        community: str
    ) -> int:
        """Count the active groups of a community."""
        try:
            stmt = select(func.count(HashtagGroup.id)).where(
                HashtagGroup.community == community,
                HashtagGroup.is_active.is_(True)
            )
            result = await session.execute(stmt)
            return result.scalar() or 0

        except Exception as e:
            raise DatabaseOperationError(f"Failed to count groups: {e}") from e

    async def delete_inactive(
        self,
        session: AsyncSession,
        community: str,
        cutoff: datetime
    ) -> int:
        """Delete groups whose last activity is strictly before ``cutoff``."""
        try:
            stmt = (
                delete(HashtagGroup)
                .where(
                    HashtagGroup.community == community,
                    HashtagGroup.last_activity_at < cutoff
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        except Exception as e:
            raise DatabaseOperationError(f"Failed to delete inactive groups: {e}") from e

    async def delete_created_before(
        self,
        session: AsyncSession,
        community: str,
        boundary: datetime
    ) -> int:
        """Delete groups created strictly before ``boundary``."""
        try:
            stmt = (
                delete(HashtagGroup)
                .where(
                    HashtagGroup.community == community,
                    HashtagGroup.created_at < boundary
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        except Exception as e:
            raise DatabaseOperationError(f"Failed to purge groups: {e}") from e


class MessageOperations:
    """Database operations for chat messages."""

    async def create_message(
        self,
        session: AsyncSession,
        **message_data
    ) -> Message:
        """Insert a message and flush so its id is assigned.

        Raises:
            DatabaseOperationError: If the insert fails
        """
        try:
            message = Message(**message_data)
            session.add(message)
            await session.flush()
            return message

        except Exception as e:
            raise DatabaseOperationError(f"Failed to create message: {e}") from e

    async def get_message(
        self,
        session: AsyncSession,
        message_id: int
    ) -> Message:
        """Get message by ID.

        Raises:
            NotFoundError: If message doesn't exist
            DatabaseOperationError: If query fails
        """
        try:
            stmt = select(Message).where(Message.id == message_id)
            result = await session.execute(stmt)
            message = result.scalar_one_or_none()

            if message is None:
                raise NotFoundError(f"Message not found: {message_id}")

            return message

        except NotFoundError:
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get message: {e}") from e

    async def count_by_author_since(
        self,
        session: AsyncSession,
        author_id: str,
        kind: str,
        since: datetime
    ) -> int:
        """Count an author's messages of one kind created at or after ``since``."""
        try:
            stmt = select(func.count(Message.id)).where(
                Message.author_id == author_id,
                Message.kind == kind,
                Message.created_at >= since
            )
            result = await session.execute(stmt)
            return result.scalar_one()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to count messages: {e}") from e

    async def set_reactions(
        self,
        session: AsyncSession,
        message_id: int,
        reactions: Dict[str, List[str]]
    ) -> int:
        """Replace the reaction map of a message."""
        try:
            stmt = (
                update(Message)
                .where(Message.id == message_id)
                .values(reactions=reactions)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        except Exception as e:
            raise DatabaseOperationError(f"Failed to update reactions: {e}") from e

    async def set_reports(
        self,
        session: AsyncSession,
        message_id: int,
        reports: Dict[str, str]
    ) -> int:
        """Replace the report map of a message and recompute its flag count."""
        try:
            stmt = (
                update(Message)
                .where(Message.id == message_id)
                .values(reports=reports, flag_count=len(reports))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        except Exception as e:
            raise DatabaseOperationError(f"Failed to update reports: {e}") from e

    async def delete_message(
        self,
        session: AsyncSession,
        message_id: int
    ) -> bool:
        """Delete a message by id; deleting a missing message is a no-op."""
        try:
            stmt = (
                delete(Message)
                .where(Message.id == message_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

        except Exception as e:
            raise DatabaseOperationError(f"Failed to delete message: {e}") from e

    async def delete_created_before(
        self,
        session: AsyncSession,
        community: str,
        boundary: datetime
    ) -> int:
        """Delete messages created strictly before ``boundary``."""
        try:
            stmt = (
                delete(Message)
                .where(
                    Message.community == community,
                    Message.created_at < boundary
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        except Exception as e:
            raise DatabaseOperationError(f"Failed to purge messages: {e}") from e

    async def get_group_messages(
        self,
        session: AsyncSession,
        community: str,
        group_name: str,
        limit: int = 500
    ) -> List[Message]:
        """Get the oldest ``limit`` messages of one group, oldest first."""
        try:
            stmt = (
                select(Message)
                .where(
                    Message.community == community,
                    Message.group_name == group_name
                )
                .order_by(Message.created_at.asc(), Message.id.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get group messages: {e}") from e

    async def get_community_messages(
        self,
        session: AsyncSession,
        community: str
    ) -> List[Message]:
        """Get every message of a community in insertion order."""
        try:
            stmt = (
                select(Message)
                .where(Message.community == community)
                .order_by(Message.id.asc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get community messages: {e}") from e

    async def get_recent_messages(
        self,
        session: AsyncSession,
        community: str,
        kind: Optional[str] = None,
        flagged_only: bool = False,
        limit: int = 100
    ) -> List[Message]:
        """Get the newest messages of a community, newest first.

        Args:
            session: Database session
            community: College identifier
            kind: Only messages of this kind, if given
            flagged_only: Only messages with at least one report
            limit: Maximum number of messages

        Raises:
            DatabaseOperationError: If query fails
        """
        try:
            stmt = select(Message).where(Message.community == community)
            if kind is not None:
                stmt = stmt.where(Message.kind == kind)
            if flagged_only:
                stmt = stmt.where(Message.flag_count > 0)

            stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get recent messages: {e}") from e

    async def count_messages(
        self,
        session: AsyncSession,
        community: str,
        kind: Optional[str] = None,
        flagged_only: bool = False,
        since: Optional[datetime] = None
    ) -> int:
        """Count the messages of a community matching the given filters."""
        try:
            stmt = select(func.count(Message.id)).where(Message.community == community)
            if kind is not None:
                stmt = stmt.where(Message.kind == kind)
            if flagged_only:
                stmt = stmt.where(Message.flag_count > 0)
            if since is not None:
                stmt = stmt.where(Message.created_at >= since)

            result = await session.execute(stmt)
            return result.scalar() or 0

        except Exception as e:
            raise DatabaseOperationError(f"Failed to count messages: {e}") from e

    async def delete_by_author(
        self,
        session: AsyncSession,
        author_id: str
    ) -> List[int]:
        """Delete every message an author posted, in any community.

        Returns:
            List[int]: Ids of the deleted messages
        """
        try:
            ids_stmt = select(Message.id).where(Message.author_id == author_id).order_by(Message.id)
            message_ids = list((await session.execute(ids_stmt)).scalars().all())
            if not message_ids:
                return []

            stmt = (
                delete(Message)
                .where(Message.id.in_(message_ids))
                .execution_options(synchronize_session=False)
            )
            await session.execute(stmt)
            return message_ids

        except Exception as e:
            raise DatabaseOperationError(f"Failed to delete author messages: {e}") from e


class ProfileOperations:
    """Database operations for account profiles."""

    async def get_profile(
        self,
        session: AsyncSession,
        user_id: str
    ) -> Optional[Profile]:
        """Get a profile, or None if the account has none yet."""
        try:
            stmt = select(Profile).where(Profile.id == user_id)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get profile: {e}") from e

    async def increment_karma(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int = 1
    ) -> int:
        """Atomically add ``amount`` karma; missing profiles are left alone.

        Returns:
            int: Number of profiles updated
        """
        try:
            stmt = (
                update(Profile)
                .where(Profile.id == user_id)
                .values(karma=Profile.karma + amount)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount

        except Exception as e:
            raise DatabaseOperationError(f"Failed to update karma: {e}") from e

    async def save_identity(
        self,
        session: AsyncSession,
        user_id: str,
        display_name: str,
        display_color: str
    ) -> Profile:
        """Write the account copy of an identity, creating the profile if needed."""
        try:
            profile = await self.get_profile(session, user_id)
            if profile is None:
                profile = Profile(id=user_id)
                session.add(profile)

            profile.display_name = display_name
            profile.display_color = display_color
            await session.flush()
            return profile

        except DatabaseOperationError:
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to save identity: {e}") from e

    async def get_top_profiles(
        self,
        session: AsyncSession,
        community: str,
        limit: int = 100
    ) -> List[Profile]:
        """Get the profiles of a community by karma, highest first."""
        try:
            stmt = (
                select(Profile)
                .where(Profile.community == community)
                .order_by(Profile.karma.desc(), Profile.id.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get top profiles: {e}") from e

    async def count_profiles(
        self,
        session: AsyncSession,
        community: str
    ) -> int:
        """Count the profiles registered to a community."""
        try:
            stmt = select(func.count(Profile.id)).where(Profile.community == community)
            result = await session.execute(stmt)
            return result.scalar() or 0

        except Exception as e:
            raise DatabaseOperationError(f"Failed to count profiles: {e}") from e

    async def delete_profile(
        self,
        session: AsyncSession,
        user_id: str
    ) -> bool:
        """Delete a profile; deleting a missing profile is a no-op."""
        try:
            stmt = (
                delete(Profile)
                .where(Profile.id == user_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

        except Exception as e:
            raise DatabaseOperationError(f"Failed to delete profile: {e}") from e
