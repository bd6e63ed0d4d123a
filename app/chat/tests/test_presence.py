"""
Tests for the presence registry.

The registry is in-memory; tests drive it through async_to_sync and watch
the presence group through a listener channel on the in-memory layer.
"""

import asyncio
from unittest import mock

from asgiref.sync import async_to_sync

from chat.presence import PresenceRegistry, PresenceStatus


def _listen(channel_layer, registry):
    """Subscribe a fresh channel to the presence group and return its name."""

    async def subscribe():
        channel = await channel_layer.new_channel()
        await channel_layer.group_add(registry.group, channel)
        return channel

    return async_to_sync(subscribe)()


def _next(channel_layer, channel, timeout=0.5):
    async def receive():
        return await asyncio.wait_for(channel_layer.receive(channel), timeout)

    return async_to_sync(receive)()


def _nothing_queued(channel_layer, channel):
    try:
        _next(channel_layer, channel, timeout=0.1)
    except asyncio.TimeoutError:
        return True
    return False


class TestMarkOnline:
    """Tests for PresenceRegistry.mark_online()."""

    def test_first_connection_brings_user_online(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)

        came_online = async_to_sync(registry.mark_online)(7, "chan-a")

        assert came_online is True
        assert registry.is_online(7)
        assert registry.channels_for(7) == {"chan-a"}
        assert registry.user_for("chan-a") == 7

    def test_broadcasts_status_with_origin(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        listener = _listen(channel_layer, registry)

        async_to_sync(registry.mark_online)(7, "chan-a")

        event = _next(channel_layer, listener)
        assert event["type"] == "chat.event"
        assert event["event"] == "user_status_change"
        assert event["payload"] == {"userId": 7, "status": PresenceStatus.ONLINE}
        assert event["origin"] == "chan-a"

    def test_second_device_does_not_broadcast(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        async_to_sync(registry.mark_online)(7, "chan-a")
        listener = _listen(channel_layer, registry)

        came_online = async_to_sync(registry.mark_online)(7, "chan-b")

        assert came_online is False
        assert registry.channels_for(7) == {"chan-a", "chan-b"}
        assert _nothing_queued(channel_layer, listener)

    def test_same_handle_twice_is_a_no_op(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        async_to_sync(registry.mark_online)(7, "chan-a")

        assert async_to_sync(registry.mark_online)(7, "chan-a") is False
        assert registry.channels_for(7) == {"chan-a"}

    def test_handle_reused_by_another_user_moves_over(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        async_to_sync(registry.mark_online)(7, "chan-a")

        async_to_sync(registry.mark_online)(8, "chan-a")

        assert not registry.is_online(7)
        assert registry.user_for("chan-a") == 8

    def test_broadcast_failure_keeps_registration(self):
        layer = mock.Mock()
        layer.group_send = mock.AsyncMock(side_effect=RuntimeError("layer down"))
        registry = PresenceRegistry(channel_layer=layer)

        assert async_to_sync(registry.mark_online)(7, "chan-a") is True
        assert registry.is_online(7)


class TestMarkOffline:
    """Tests for PresenceRegistry.mark_offline()."""

    def test_user_stays_online_until_last_handle_leaves(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        async_to_sync(registry.mark_online)(7, "chan-a")
        async_to_sync(registry.mark_online)(7, "chan-b")

        assert async_to_sync(registry.mark_offline)("chan-a") is None
        assert registry.is_online(7)

        assert async_to_sync(registry.mark_offline)("chan-b") == 7
        assert not registry.is_online(7)
        assert registry.online_user_ids() == set()

    def test_broadcasts_offline_status(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        async_to_sync(registry.mark_online)(7, "chan-a")
        listener = _listen(channel_layer, registry)

        async_to_sync(registry.mark_offline)("chan-a")

        event = _next(channel_layer, listener)
        assert event["payload"] == {"userId": 7, "status": PresenceStatus.OFFLINE}

    def test_unknown_handle_is_ignored(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        listener = _listen(channel_layer, registry)

        assert async_to_sync(registry.mark_offline)("never-seen") is None
        assert _nothing_queued(channel_layer, listener)


class TestQueries:
    """Tests for read-only registry queries."""

    def test_online_user_ids(self, channel_layer):
        registry = PresenceRegistry(channel_layer=channel_layer)
        async_to_sync(registry.mark_online)(1, "chan-a")
        async_to_sync(registry.mark_online)(2, "chan-b")

        assert registry.online_user_ids() == {1, 2}
        assert not registry.is_online(3)
        assert registry.channels_for(3) == set()
        assert registry.user_for("chan-c") is None
