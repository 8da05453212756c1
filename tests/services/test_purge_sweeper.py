"""Tests for the purge sweeper and its scheduler."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from universe.services.group_registry import GroupRegistry
from universe.services.models import SweepReport
from universe.services.purge_sweeper import PurgeScheduler
from universe.services.purge_sweeper import PurgeSweeper
from universe.web.crud import DatabaseOperationError
from universe.web.crud import MessageOperations

# Midnight IST on 2024-01-16
MIDNIGHT = datetime(2024, 1, 15, 18, 30, tzinfo=timezone.utc)


class TestInactivitySweep:
    """Test suite for sweep_inactive_groups."""

    @pytest.fixture
    def sweeper(self, session_maker):
        return PurgeSweeper(session_maker)

    @pytest.fixture
    def registry(self, session_maker):
        return GroupRegistry(session_maker)

    async def test_group_survives_119_minutes(self, sweeper, registry, clock):
        await registry.ensure_group("RVCE", "study")
        clock.advance(timedelta(minutes=119))

        assert await sweeper.sweep_inactive_groups("RVCE") == 0
        assert await registry.get_group("RVCE", "study") is not None

    async def test_group_swept_after_121_minutes(self, sweeper, registry, clock):
        await registry.ensure_group("RVCE", "study")
        clock.advance(timedelta(minutes=121))

        assert await sweeper.sweep_inactive_groups("RVCE") == 1
        assert await registry.get_group("RVCE", "study") is None

    async def test_custom_timeout(self, sweeper, registry, clock):
        await registry.ensure_group("RVCE", "study")
        clock.advance(timedelta(minutes=11))

        assert await sweeper.sweep_inactive_groups("RVCE", inactivity_timeout_minutes=10) == 1

    async def test_zero_timeout_is_not_replaced_by_default(self, sweeper, registry, clock):
        await registry.ensure_group("RVCE", "study")
        clock.advance(timedelta(seconds=1))

        assert await sweeper.sweep_inactive_groups("RVCE", inactivity_timeout_minutes=0) == 1

    async def test_only_the_given_community_is_swept(self, sweeper, registry, clock):
        await registry.ensure_group("RVCE", "study")
        await registry.ensure_group("Manipal", "study")
        clock.advance(timedelta(hours=3))

        assert await sweeper.sweep_inactive_groups("RVCE") == 1
        assert await registry.get_group("Manipal", "study") is not None


class TestGlobalPurge:
    """Test suite for sweep_global_purge."""

    @pytest.fixture
    def sweeper(self, session_maker):
        return PurgeSweeper(session_maker)

    async def test_one_second_before_midnight_nothing_is_purged(self, sweeper, create_message, clock):
        clock.set_datetime(MIDNIGHT - timedelta(hours=2))
        await create_message(content="evening")
        clock.set_datetime(MIDNIGHT - timedelta(seconds=1))

        report = await sweeper.sweep_global_purge("RVCE")

        assert report.messages_purged == 0
        assert report.succeeded

    async def test_one_second_after_midnight_yesterday_is_purged(self, sweeper, create_message, clock):
        # Arrange
        await create_message(content="late", created_at=MIDNIGHT - timedelta(seconds=1))
        await create_message(content="early", created_at=MIDNIGHT)
        clock.set_datetime(MIDNIGHT + timedelta(seconds=1))

        # Act
        report = await sweeper.sweep_global_purge("RVCE")

        # Assert
        assert report.boundary == MIDNIGHT
        assert report.messages_purged == 1

    async def test_groups_created_before_boundary_are_purged(self, sweeper, session_maker, clock):
        registry = GroupRegistry(session_maker)
        clock.set_datetime(MIDNIGHT - timedelta(minutes=5))
        await registry.ensure_group("RVCE", "yesterday")
        clock.set_datetime(MIDNIGHT)
        await registry.ensure_group("RVCE", "today")
        clock.set_datetime(MIDNIGHT + timedelta(seconds=1))

        report = await sweeper.sweep_global_purge("RVCE")

        assert report.groups_purged == 1
        assert await registry.get_group("RVCE", "yesterday") is None
        assert await registry.get_group("RVCE", "today") is not None

    async def test_purge_is_idempotent(self, sweeper, create_message, clock):
        await create_message(created_at=MIDNIGHT - timedelta(hours=1))
        clock.set_datetime(MIDNIGHT + timedelta(minutes=1))

        first = await sweeper.sweep_global_purge("RVCE")
        second = await sweeper.sweep_global_purge("RVCE")

        assert first.messages_purged == 1
        assert second.messages_purged == 0

    async def test_failed_message_purge_does_not_block_groups(self, session_maker, clock):
        # Arrange
        registry = GroupRegistry(session_maker)
        clock.set_datetime(MIDNIGHT - timedelta(minutes=5))
        await registry.ensure_group("RVCE", "yesterday")
        clock.set_datetime(MIDNIGHT + timedelta(seconds=1))

        failing_messages = Mock(spec=MessageOperations)
        failing_messages.delete_created_before = AsyncMock(side_effect=DatabaseOperationError("disk full"))
        sweeper = PurgeSweeper(session_maker, message_ops=failing_messages)

        # Act
        report = await sweeper.sweep_global_purge("RVCE")

        # Assert
        assert not report.succeeded
        assert len(report.errors) == 1
        assert report.groups_purged == 1

    async def test_run_sweep_combines_both_sweeps(self, sweeper, session_maker, create_message, clock):
        registry = GroupRegistry(session_maker)
        await registry.ensure_group("RVCE", "idle")
        await create_message(created_at=MIDNIGHT - timedelta(hours=6))
        clock.set_datetime(MIDNIGHT + timedelta(minutes=1))

        report = await sweeper.run_sweep("RVCE")

        assert report.groups_inactive_deleted == 1
        assert report.messages_purged == 1
        assert report.groups_purged == 0
        assert report.succeeded


class TestPurgeScheduler:
    """Test suite for PurgeScheduler."""

    @pytest.fixture
    def sweeper(self):
        sweeper = Mock()
        sweeper.run_sweep = AsyncMock(side_effect=lambda community: SweepReport(community=community))
        return sweeper

    def test_initialization(self, sweeper):
        scheduler = PurgeScheduler(sweeper, ["RVCE"], interval_seconds=60)

        assert scheduler.interval == 60
        assert not scheduler.running

    def test_default_interval_is_five_minutes(self, sweeper):
        assert PurgeScheduler(sweeper, ["RVCE"]).interval == 300

    def test_zero_interval_is_kept(self, sweeper):
        assert PurgeScheduler(sweeper, ["RVCE"], interval_seconds=0).interval == 0

    async def test_run_once_sweeps_every_community(self, sweeper):
        scheduler = PurgeScheduler(sweeper, ["RVCE", "Manipal"])

        reports = await scheduler.run_once()

        assert [r.community for r in reports] == ["RVCE", "Manipal"]

    async def test_start_sweeps_immediately_then_sleeps(self, sweeper):
        scheduler = PurgeScheduler(sweeper, ["RVCE"], interval_seconds=300)
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 2:
                await scheduler.stop()

        with patch("universe.services.purge_sweeper.asyncio.sleep", side_effect=fake_sleep):
            await scheduler.start()

        assert sweeper.run_sweep.await_count == 2
        assert sleeps == [300, 300]
        assert not scheduler.running

    async def test_errors_do_not_stop_the_loop(self, sweeper):
        sweeper.run_sweep = AsyncMock(side_effect=[RuntimeError("boom"), SweepReport(community="RVCE")])
        scheduler = PurgeScheduler(sweeper, ["RVCE"], interval_seconds=1)

        async def fake_sleep(seconds):
            if sweeper.run_sweep.await_count == 2:
                await scheduler.stop()

        with patch("universe.services.purge_sweeper.asyncio.sleep", side_effect=fake_sleep):
            await scheduler.start()

        assert sweeper.run_sweep.await_count == 2

    async def test_start_when_already_running(self, sweeper):
        scheduler = PurgeScheduler(sweeper, ["RVCE"])
        scheduler.running = True

        await scheduler.start()

        sweeper.run_sweep.assert_not_awaited()
