"""Message routing and the posting pipeline.

Routing is decided by the confession toggle and the view the poster is
looking at, never by hashtags found in the message body: posting from
``#study`` files into ``study`` even if the text mentions ``#exams``. Parsed
hashtags are kept on the message as metadata only: ``Message.hashtags`` lists
every tag mentioned in the body, so a hashtag post whose text names no tag
stores an empty list even though ``group_name`` is set.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.base import ChangePublisherProtocol
from universe.services.confession_quota import ConfessionQuotaTracker
from universe.services.exceptions import MessageNotFoundError
from universe.services.exceptions import ValidationError
from universe.services.group_registry import GroupRegistry
from universe.services.hashtags import extract_hashtags
from universe.services.hashtags import normalize_tag
from universe.services.models import ChangeType
from universe.services.models import MessageRef
from universe.services.models import PostRequest
from universe.services.models import RouteDecision
from universe.web.crud import GroupOperations
from universe.web.crud import MessageOperations
from universe.web.crud import NotFoundError
from universe.web.crud import ProfileOperations
from universe.web.models import CONFESSION_GROUP
from universe.web.models import KIND_CONFESSION
from universe.web.models import KIND_NORMAL
from universe.web.models import MAIN_GROUP
from universe.web.models import RESERVED_GROUPS

CONFESSION_FILTER = "confession"
HASHTAG_FILTER_PREFIX = "#"


def parse_view_filter(active_filter: Optional[str]) -> str:
    """Map a view filter (``"all"``, ``"confession"``, ``"#tag"``) to the group it shows.

    Anything that is neither the confession view nor a hashtag view shows
    the main group.

    Raises:
        InvalidTagError: If a ``#`` filter has no usable tag
    """
    view = (active_filter or "").strip()
    if view.lower() == CONFESSION_FILTER:
        return CONFESSION_GROUP
    if view.startswith(HASHTAG_FILTER_PREFIX):
        return normalize_tag(view[len(HASHTAG_FILTER_PREFIX):])
    return MAIN_GROUP


def resolve_route(confession_mode: bool, active_filter: Optional[str]) -> RouteDecision:
    """Decide where a post goes.

    1. Confession mode always files into the confession group.
    2. A hashtag view files into that hashtag group.
    3. Everything else goes to main.
    """
    if confession_mode:
        return RouteDecision(group_name=CONFESSION_GROUP, kind=KIND_CONFESSION)

    view = (active_filter or "").strip()
    if view.startswith(HASHTAG_FILTER_PREFIX):
        return RouteDecision(group_name=parse_view_filter(view), kind=KIND_NORMAL)

    return RouteDecision(group_name=MAIN_GROUP, kind=KIND_NORMAL)


class MessageRouter(BaseService):
    """Files posts into groups and persists them.

    One post is one transaction: quota check, group ensure, message insert,
    group counter bump and the poster's karma point all commit together or
    not at all.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        registry: GroupRegistry,
        quota: ConfessionQuotaTracker,
        change_feed: Optional[ChangePublisherProtocol] = None,
        message_ops: Optional[MessageOperations] = None,
        group_ops: Optional[GroupOperations] = None,
        profile_ops: Optional[ProfileOperations] = None
    ):
        super().__init__(session_maker, change_feed, "MessageRouter")
        self._registry = registry
        self._quota = quota
        self._messages = message_ops or MessageOperations()
        self._groups = group_ops or GroupOperations()
        self._profiles = profile_ops or ProfileOperations()

    def route(self, request: PostRequest) -> RouteDecision:
        return resolve_route(request.confession_mode, request.active_filter)

    async def post(self, request: PostRequest) -> MessageRef:
        """Route, validate and store a message.

        Raises:
            ValidationError: If the content is blank
            InvalidTagError: If the active hashtag view has no usable tag
            QuotaExceededError: If a confession exceeds today's quota
            MessageNotFoundError: If the replied-to message is gone
            StoreUnavailableError: If the store call fails
        """
        content = (request.content or "").strip()
        if not content:
            raise ValidationError("content", "Message cannot be empty")

        decision = self.route(request)
        hashtags = sorted(extract_hashtags(content))
        is_hashtag_group = decision.group_name not in RESERVED_GROUPS

        async with self._transaction(
            "post_message",
            community=request.community,
            author_id=request.author_id,
            group_name=decision.group_name
        ) as session:
            if decision.kind == KIND_CONFESSION:
                await self._quota.try_consume(request.author_id, session)

            new_group = None
            if is_hashtag_group:
                group, created = await self._registry.ensure_group_in(
                    session, request.community, decision.group_name
                )
                new_group = group if created else None

            if request.reply_to_id is not None:
                await self._require_message(session, request.reply_to_id)

            now = self._now()
            message = await self._messages.create_message(
                session,
                community=request.community,
                content=content,
                author_id=request.author_id,
                display_name=request.display_name,
                display_color=request.display_color,
                kind=decision.kind,
                group_name=decision.group_name,
                reply_to_id=request.reply_to_id,
                hashtags=hashtags,
                created_at=now,
                updated_at=now
            )

            if is_hashtag_group:
                await self._groups.record_activity(session, request.community, decision.group_name, now)

            await self._profiles.increment_karma(session, request.author_id)
            posted = MessageRef.from_row(message)

        self._log_operation(
            "message_posted",
            community=request.community,
            group_name=decision.group_name,
            message_id=posted.id
        )
        if new_group is not None:
            await self._publish("hashtag_groups", ChangeType.INSERT, asdict(new_group))
        await self._publish("messages", ChangeType.INSERT, message.to_record())
        return posted

    async def _require_message(self, session: AsyncSession, message_id: int) -> None:
        try:
            await self._messages.get_message(session, message_id)
        except NotFoundError as e:
            raise MessageNotFoundError(message_id) from e
