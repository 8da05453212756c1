"""Reactions, reports and moderator actions on messages.

Each author holds at most one reaction per message. Reacting again with the
same kind takes the reaction back; reacting with a different kind moves it.
Reports are keyed by reporter, so repeat reports overwrite the reason
instead of stacking, and a message reaching the flag threshold is deleted
inside the same transaction as the report that tipped it over.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.base import ChangePublisherProtocol
from universe.services.exceptions import MessageNotFoundError
from universe.services.exceptions import ValidationError
from universe.services.models import ChangeType
from universe.services.models import ReactionKind
from universe.services.models import ReportOutcome
from universe.shared.config import get_settings
from universe.web.crud import MessageOperations
from universe.web.crud import NotFoundError
from universe.web.crud import ProfileOperations
from universe.web.models import Message

logger = logging.getLogger(__name__)

KARMA_PER_REACTION = 1


def apply_reaction_toggle(
    reactions: Optional[Mapping[str, List[str]]],
    author_id: str,
    kind: Union[ReactionKind, str]
) -> Tuple[Dict[str, List[str]], bool]:
    """Toggle one author's reaction on a reaction map.

    The author is removed from every kind first, then added under ``kind``
    unless that is where they already were. The input is never mutated.

    Returns:
        Tuple of the new map (every kind present) and whether a reaction was added

    Raises:
        ValidationError: If ``kind`` is not a known reaction
    """
    try:
        kind = ReactionKind(kind)
    except ValueError as e:
        raise ValidationError("kind", f"Unknown reaction: {kind}") from e

    current = reactions or {}
    had_kind = author_id in current.get(kind.value, [])

    updated = {
        reaction.value: [a for a in current.get(reaction.value, []) if a != author_id]
        for reaction in ReactionKind
    }
    if not had_kind:
        updated[kind.value].append(author_id)

    return updated, not had_kind


class ReactionFlagAggregator(BaseService):
    """Applies reactions and reports to stored messages."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        change_feed: Optional[ChangePublisherProtocol] = None,
        flag_threshold: Optional[int] = None,
        message_ops: Optional[MessageOperations] = None,
        profile_ops: Optional[ProfileOperations] = None
    ):
        super().__init__(session_maker, change_feed, "ReactionFlagAggregator")
        self.flag_threshold = flag_threshold if flag_threshold is not None else get_settings().flag_threshold
        self._messages = message_ops or MessageOperations()
        self._profiles = profile_ops or ProfileOperations()

    async def _load(self, session: AsyncSession, message_id: int) -> Message:
        try:
            return await self._messages.get_message(session, message_id)
        except NotFoundError as e:
            raise MessageNotFoundError(message_id) from e

    async def toggle_reaction(
        self,
        message_id: int,
        author_id: str,
        kind: Union[ReactionKind, str]
    ) -> Dict[str, List[str]]:
        """Toggle a reaction and return the message's new reaction map.

        A newly added reaction earns the message's author one karma point.
        Taking a reaction back never costs karma.

        Raises:
            ValidationError: If ``kind`` is not a known reaction
            MessageNotFoundError: If the message is gone
            StoreUnavailableError: If the store call fails
        """
        async with self._transaction(
            "toggle_reaction", message_id=message_id, author_id=author_id
        ) as session:
            message = await self._load(session, message_id)
            reactions, added = apply_reaction_toggle(message.reactions, author_id, kind)
            await self._messages.set_reactions(session, message_id, reactions)

            if added:
                await self._profiles.increment_karma(session, message.author_id, KARMA_PER_REACTION)

            record = {**message.to_record(), "reactions": reactions}

        await self._publish("messages", ChangeType.UPDATE, record)
        return reactions

    async def submit_report(self, message_id: int, reporter_id: str, reason: str) -> ReportOutcome:
        """Record a report and delete the message once it hits the threshold.

        Raises:
            ValidationError: If the reason is blank
            MessageNotFoundError: If the message is gone
            StoreUnavailableError: If the store call fails
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason", "Please give a reason for the report")

        async with self._transaction(
            "submit_report", message_id=message_id, reporter_id=reporter_id
        ) as session:
            message = await self._load(session, message_id)
            reports = {**(message.reports or {}), reporter_id: reason}
            flag_count = len(reports)
            deleted = flag_count >= self.flag_threshold

            if deleted:
                await self._messages.delete_message(session, message_id)
            else:
                await self._messages.set_reports(session, message_id, reports)

            record = {**message.to_record(), "flag_count": flag_count}

        if deleted:
            self._log_operation("message_auto_deleted", message_id=message_id, flag_count=flag_count)
            await self._publish("messages", ChangeType.DELETE, {"id": message_id})
        else:
            await self._publish("messages", ChangeType.UPDATE, record)

        return ReportOutcome(message_id=message_id, flag_count=flag_count, deleted=deleted)

    async def clear_reports(self, message_id: int) -> None:
        """Dismiss every report on a message.

        Raises:
            MessageNotFoundError: If the message is gone
        """
        async with self._transaction("clear_reports", message_id=message_id) as session:
            message = await self._load(session, message_id)
            await self._messages.set_reports(session, message_id, {})
            record = {**message.to_record(), "flag_count": 0}

        self._log_operation("reports_cleared", message_id=message_id)
        await self._publish("messages", ChangeType.UPDATE, record)

    async def delete_message(self, message_id: int) -> bool:
        """Remove a message on a moderator's request.

        Returns:
            bool: False if the message was already gone
        """
        async with self._transaction("delete_message", message_id=message_id) as session:
            deleted = await self._messages.delete_message(session, message_id)

        if deleted:
            self._log_operation("message_deleted", message_id=message_id)
            await self._publish("messages", ChangeType.DELETE, {"id": message_id})
        else:
            logger.debug(f"Message {message_id} was already deleted")
        return deleted
