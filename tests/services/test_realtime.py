"""Tests for the Redis-backed change feed and presence tracker."""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from universe.services.exceptions import StoreUnavailableError
from universe.services.models import ChangeEvent
from universe.services.models import ChangeType
from universe.services.presence import PresenceTracker
from universe.services.realtime import ChangeFeed
from universe.services.realtime import decode_event
from universe.services.realtime import encode_event


def make_pubsub(payloads):
    """Pub/sub double whose listen() yields the given raw messages."""
    pubsub = Mock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def listen():
        for payload in payloads:
            yield payload

    pubsub.listen = listen
    return pubsub


def raw_message(table, change_type, record):
    return {"type": "message", "channel": f"realtime:{table}", "data": encode_event(table, change_type, record)}


class TestChangeFeed:
    """Test suite for ChangeFeed."""

    async def test_publish_encodes_event(self, mock_redis_manager):
        feed = ChangeFeed(mock_redis_manager)

        await feed.publish("messages", ChangeType.INSERT, {"id": 1, "group_name": "main"})

        channel, payload = mock_redis_manager.publish.await_args.args
        assert channel == "realtime:messages"
        assert json.loads(payload) == {
            "table": "messages",
            "type": "insert",
            "record": {"id": 1, "group_name": "main"},
        }

    async def test_publish_failure_is_store_unavailable(self, mock_redis_manager):
        mock_redis_manager.publish = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(StoreUnavailableError):
            await ChangeFeed(mock_redis_manager).publish("messages", ChangeType.DELETE, {"id": 1})

    async def test_subscription_filters_by_event_and_field(self, mock_redis_manager):
        # Arrange
        pubsub = make_pubsub([
            {"type": "subscribe", "channel": "realtime:messages", "data": 1},
            raw_message("messages", ChangeType.INSERT, {"id": 1, "community": "RVCE"}),
            raw_message("messages", ChangeType.INSERT, {"id": 2, "community": "Manipal"}),
            raw_message("messages", ChangeType.UPDATE, {"id": 1, "community": "RVCE"}),
            {"type": "message", "channel": "realtime:messages", "data": "not json"},
            raw_message("messages", ChangeType.DELETE, {"id": 3}),
        ])
        mock_redis_manager.pubsub = Mock(return_value=pubsub)
        feed = ChangeFeed(mock_redis_manager)

        # Act
        subscription = await feed.subscribe(
            "messages", events=[ChangeType.INSERT, ChangeType.DELETE], filters={"community": "RVCE"}
        )
        received = [event async for event in subscription]

        # Assert
        pubsub.subscribe.assert_awaited_once_with("realtime:messages")
        assert [(e.type, e.record["id"]) for e in received] == [
            (ChangeType.INSERT, 1),
            (ChangeType.DELETE, 3),
        ]

    async def test_unsubscribe_closes_pubsub_once(self, mock_redis_manager):
        pubsub = make_pubsub([])
        mock_redis_manager.pubsub = Mock(return_value=pubsub)
        subscription = await ChangeFeed(mock_redis_manager).subscribe("hashtag_groups")

        await subscription.unsubscribe()
        await subscription.unsubscribe()

        pubsub.unsubscribe.assert_awaited_once_with("realtime:hashtag_groups")
        pubsub.aclose.assert_awaited_once()
        assert not subscription.active

    def test_decode_event(self):
        payload = encode_event("messages", ChangeType.UPDATE, {"id": 5})

        assert decode_event(payload) == ChangeEvent("messages", ChangeType.UPDATE, {"id": 5})
        assert decode_event('{"table": "messages", "type": "explode"}') is None


class TestPresenceTracker:
    """Test suite for PresenceTracker."""

    async def test_track_stores_member_and_announces_join(self, mock_redis_manager):
        tracker = PresenceTracker(mock_redis_manager)

        await tracker.track("RVCE", "user-1", {"display_name": "Sus NPC"})

        mock_redis_manager.hset.assert_awaited_once_with(
            "presence:RVCE", "user-1", json.dumps({"display_name": "Sus NPC"})
        )
        channel, payload = mock_redis_manager.publish.await_args.args
        assert channel == "presence:RVCE:events"
        assert json.loads(payload) == {"event": "join", "key": "user-1"}

    async def test_untrack_announces_leave(self, mock_redis_manager):
        tracker = PresenceTracker(mock_redis_manager)

        await tracker.untrack("RVCE", "user-1")

        mock_redis_manager.hdel.assert_awaited_once_with("presence:RVCE", "user-1")
        assert json.loads(mock_redis_manager.publish.await_args.args[1])["event"] == "leave"

    async def test_untrack_unknown_member_is_silent(self, mock_redis_manager):
        mock_redis_manager.hdel = AsyncMock(return_value=0)

        await PresenceTracker(mock_redis_manager).untrack("RVCE", "nobody")

        mock_redis_manager.publish.assert_not_awaited()

    async def test_observe_and_count(self, mock_redis_manager):
        mock_redis_manager.hgetall = AsyncMock(return_value={"user-1": "{}", "user-2": "{}"})
        tracker = PresenceTracker(mock_redis_manager)

        assert await tracker.observe("RVCE") == {"user-1", "user-2"}
        assert await tracker.online_count("RVCE") == 2

    async def test_redis_failure_is_store_unavailable(self, mock_redis_manager):
        mock_redis_manager.hgetall = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(StoreUnavailableError):
            await PresenceTracker(mock_redis_manager).online_count("RVCE")

    async def test_failed_join_announcement_keeps_member(self, mock_redis_manager):
        mock_redis_manager.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        tracker = PresenceTracker(mock_redis_manager)

        await tracker.track("RVCE", "user-1")

        mock_redis_manager.hset.assert_awaited_once_with("presence:RVCE", "user-1", "{}")

    async def test_failed_leave_announcement_is_not_raised(self, mock_redis_manager):
        mock_redis_manager.publish = AsyncMock(side_effect=RedisConnectionError("down"))

        await PresenceTracker(mock_redis_manager).untrack("RVCE", "user-1")

        mock_redis_manager.hdel.assert_awaited_once_with("presence:RVCE", "user-1")

    async def test_failed_member_write_is_store_unavailable(self, mock_redis_manager):
        mock_redis_manager.hset = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(StoreUnavailableError):
            await PresenceTracker(mock_redis_manager).track("RVCE", "user-1")

        mock_redis_manager.publish.assert_not_awaited()
