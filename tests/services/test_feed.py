"""Tests for the read-side message feed."""

from datetime import timedelta

import pytest

from universe.services.exceptions import InvalidTagError
from universe.services.feed import MessageFeed
from universe.services.feed import matches_view


class TestMatchesView:
    """Test suite for matches_view."""

    @pytest.mark.parametrize("group_name, active_filter, expected", [
        ("main", "all", True),
        ("confession", "all", False),
        ("confession", "confession", True),
        ("study", "#Study", True),
        ("study", "#exams", False),
        ("main", "#", False),
    ])
    def test_matches(self, group_name, active_filter, expected):
        assert matches_view({"group_name": group_name}, active_filter) is expected


class TestMessageFeed:
    """Test suite for MessageFeed."""

    @pytest.fixture
    def feed(self, session_maker):
        return MessageFeed(session_maker)

    async def test_fetch_view_returns_one_group_oldest_first(self, feed, create_message, clock):
        first = await create_message(content="first")
        clock.advance(timedelta(minutes=1))
        second = await create_message(content="second")
        await create_message(group_name="study", content="elsewhere")
        await create_message(community="Manipal", content="other campus")

        messages = await feed.fetch_view("RVCE", "all")

        assert [m.id for m in messages] == [first, second]

    async def test_fetch_view_for_hashtag(self, feed, create_message):
        study = await create_message(group_name="study")
        await create_message()

        assert [m.id for m in await feed.fetch_view("RVCE", "#Study")] == [study]

    async def test_fetch_view_limit(self, feed, create_message):
        for _ in range(4):
            await create_message()

        assert len(await feed.fetch_view("RVCE", "all", limit=3)) == 3

    async def test_zero_limits_return_nothing(self, feed, create_message):
        await create_message(reactions={"fire": ["a"]})

        assert await feed.fetch_view("RVCE", "all", limit=0) == []
        assert await feed.hall_of_fame("RVCE", size=0) == []

    async def test_hall_of_fame_size(self, feed, create_message):
        for count in range(1, 6):
            await create_message(reactions={"fire": [f"u{n}" for n in range(count)]})

        fame = await feed.hall_of_fame("RVCE", size=4)

        assert [m.total_reactions for m in fame] == [5, 4, 3, 2]

    async def test_fetch_view_invalid_tag(self, feed):
        with pytest.raises(InvalidTagError):
            await feed.fetch_view("RVCE", "#!!")

    async def test_hall_of_fame_spans_groups(self, feed, create_message):
        # Arrange
        await create_message(content="meh", reactions={"fire": ["a"]})
        top = await create_message(
            group_name="confession", kind="confession", content="wild",
            reactions={"fire": ["a", "b"], "skull": ["c"]}
        )
        runner_up = await create_message(group_name="study", content="good", reactions={"laugh": ["a", "b"]})
        await create_message(content="quiet")

        # Act
        fame = await feed.hall_of_fame("RVCE")

        # Assert
        assert [m.id for m in fame] == [top, runner_up, fame[2].id]
        assert fame[0].total_reactions == 3
        assert fame[2].content == "meh"

    async def test_moderation_queue_newest_first(self, feed, create_message, clock):
        older = await create_message(reports={"r1": "spam"}, flag_count=1)
        clock.advance(timedelta(minutes=1))
        newer = await create_message(reports={"r1": "rude", "r2": "rude"}, flag_count=2)
        await create_message()

        queue = await feed.moderation_queue("RVCE")

        assert [m.id for m in queue] == [newer, older]

    async def test_purge_countdown(self, feed):
        # 12:00 UTC is 17:30 IST
        assert feed.purge_countdown() == timedelta(hours=6, minutes=30)
