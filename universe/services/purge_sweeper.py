"""Purge sweeps for expired messages and idle hashtag groups.

Two independent sweeps run per community:

* the inactivity sweep drops hashtag groups nobody has posted in for the
  inactivity timeout (two hours by default);
* the global purge drops every message and group created before the most
  recent IST midnight.

Every delete is a predicate over the store, so a sweep is idempotent and any
number of processes may run it at the same time. A failing step is logged
and recorded in the SweepReport; it never stops the remaining steps.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.base import ChangePublisherProtocol
from universe.services.exceptions import StoreUnavailableError
from universe.services.models import SweepReport
from universe.shared.config import get_settings
from universe.shared.date_provider import current_boundary
from universe.web.crud import GroupOperations
from universe.web.crud import MessageOperations

logger = logging.getLogger(__name__)


class PurgeSweeper(BaseService):
    """Deletes content that outlived its purge cycle or went idle."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        change_feed: Optional[ChangePublisherProtocol] = None,
        message_ops: Optional[MessageOperations] = None,
        group_ops: Optional[GroupOperations] = None
    ):
        super().__init__(session_maker, change_feed, "PurgeSweeper")
        self._messages = message_ops or MessageOperations()
        self._groups = group_ops or GroupOperations()

    async def sweep_inactive_groups(
        self,
        community: str,
        inactivity_timeout_minutes: Optional[int] = None
    ) -> int:
        """Delete groups whose last post is older than the timeout.

        Returns:
            int: Number of groups deleted

        Raises:
            StoreUnavailableError: If the delete fails
        """
        timeout = (
            inactivity_timeout_minutes if inactivity_timeout_minutes is not None
            else get_settings().group_inactivity_minutes
        )
        cutoff = self._now() - timedelta(minutes=timeout)

        async with self._transaction("sweep_inactive_groups", community=community) as session:
            deleted = await self._groups.delete_inactive(session, community, cutoff)

        if deleted:
            self._log_operation("inactive_groups_swept", community=community, deleted=deleted)
        return deleted

    async def sweep_global_purge(self, community: str) -> SweepReport:
        """Delete everything created before the current purge boundary.

        Messages and groups are deleted in separate transactions; a failure
        in one is recorded and the other still runs.
        """
        boundary = current_boundary(self._now())
        report = SweepReport(community=community, boundary=boundary)

        try:
            async with self._transaction("purge_messages", community=community) as session:
                report.messages_purged = await self._messages.delete_created_before(
                    session, community, boundary
                )
        except StoreUnavailableError as e:
            report.errors.append(str(e))

        try:
            async with self._transaction("purge_groups", community=community) as session:
                report.groups_purged = await self._groups.delete_created_before(
                    session, community, boundary
                )
        except StoreUnavailableError as e:
            report.errors.append(str(e))

        if report.messages_purged or report.groups_purged:
            self._log_operation(
                "global_purge",
                community=community,
                boundary=boundary.isoformat(),
                messages_purged=report.messages_purged,
                groups_purged=report.groups_purged
            )
        return report

    async def run_sweep(self, community: str) -> SweepReport:
        """Run the inactivity sweep followed by the global purge."""
        inactive_deleted = 0
        inactive_error: Optional[str] = None
        try:
            inactive_deleted = await self.sweep_inactive_groups(community)
        except StoreUnavailableError as e:
            inactive_error = str(e)

        report = await self.sweep_global_purge(community)
        report.groups_inactive_deleted = inactive_deleted
        if inactive_error:
            report.errors.insert(0, inactive_error)
        return report


class PurgeScheduler:
    """Runs purge sweeps over a set of communities on a fixed interval."""

    def __init__(
        self,
        sweeper: PurgeSweeper,
        communities: Iterable[str],
        interval_seconds: Optional[int] = None
    ):
        """Initialize the scheduler.

        Args:
            sweeper: Sweeper used for every community
            communities: Communities to sweep
            interval_seconds: Seconds between sweeps
        """
        self.sweeper = sweeper
        self.communities = list(communities)
        self.interval = (
            interval_seconds if interval_seconds is not None
            else get_settings().purge_sweep_interval_seconds
        )
        self.running = False

    async def run_once(self) -> List[SweepReport]:
        """Sweep every community once."""
        reports = []
        for community in self.communities:
            report = await self.sweeper.run_sweep(community)
            if not report.succeeded:
                logger.warning(f"Purge sweep for {community} had errors: {report.errors}")
            reports.append(report)
        return reports

    async def start(self):
        """Sweep immediately, then every interval until stopped."""
        if self.running:
            logger.warning("Purge scheduler is already running")
            return

        self.running = True
        logger.info(
            f"Starting purge scheduler for {len(self.communities)} communities "
            f"every {self.interval}s"
        )

        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in purge scheduler: {e}")
            if self.running:
                await asyncio.sleep(self.interval)

    async def stop(self):
        """Stop the purge scheduler."""
        self.running = False
        logger.info("Purge scheduler stopped")
