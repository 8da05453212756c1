"""Per-author daily confession quota.

The day is the purge cycle: the count covers confessions created at or after
the current purge boundary, so the quota resets at IST midnight together
with the purge.

Known limitation: the check and the insert that follows it share one
transaction but are not atomic across clients. Two confessions submitted at
the same instant can both pass the check and exceed the quota by one.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.exceptions import QuotaExceededError
from universe.shared.config import get_settings
from universe.shared.date_provider import current_boundary
from universe.shared.date_provider import next_boundary
from universe.web.crud import MessageOperations
from universe.web.models import KIND_CONFESSION


class ConfessionQuotaTracker(BaseService):
    """Counts confessions per author against the current purge boundary."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        daily_limit: Optional[int] = None,
        message_ops: Optional[MessageOperations] = None
    ):
        super().__init__(session_maker, service_name="ConfessionQuotaTracker")
        self.daily_limit = daily_limit if daily_limit is not None else get_settings().confession_daily_limit
        self._messages = message_ops or MessageOperations()

    async def used_in(self, session: AsyncSession, author_id: str) -> int:
        """Confessions the author posted since the current boundary."""
        boundary = current_boundary(self._now())
        return await self._messages.count_by_author_since(session, author_id, KIND_CONFESSION, boundary)

    async def remaining(self, author_id: str) -> int:
        """Confessions the author may still post before the next boundary.

        Raises:
            StoreUnavailableError: If the count query fails
        """
        async with self._transaction("confession_remaining", author_id=author_id) as session:
            used = await self.used_in(session, author_id)
        return max(0, self.daily_limit - used)

    async def try_consume(self, author_id: str, session: AsyncSession) -> int:
        """Claim one confession slot inside the caller's transaction.

        The caller must insert the confession in the same ``session`` for the
        slot to count.

        Returns:
            int: Slots left once this confession is stored

        Raises:
            QuotaExceededError: If the author has no slot left today
        """
        used = await self.used_in(session, author_id)
        if used >= self.daily_limit:
            self._logger.info(f"Confession quota exhausted for {author_id} ({used}/{self.daily_limit})")
            raise QuotaExceededError(self.daily_limit, next_boundary(self._now()))
        return self.daily_limit - used - 1
