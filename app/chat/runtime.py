"""
Per-process realtime state.

ChatRuntime owns the in-memory registries of one server process and the
components that use them. It is built once in config/asgi.py and handed to
every ChatConsumer through as_asgi(runtime=...), so nothing lives in module
globals and tests can build an isolated runtime per test.
"""

from __future__ import annotations

from dataclasses import dataclass

from chat.fanout import FanoutEngine
from chat.lifecycle import GroupLifecycleManager
from chat.presence import PresenceRegistry
from chat.receipts import ReadStateCoordinator
from chat.rooms import RoomMembershipManager


@dataclass
class ChatRuntime:
    presence: PresenceRegistry
    rooms: RoomMembershipManager
    receipts: ReadStateCoordinator
    fanout: FanoutEngine
    lifecycle: GroupLifecycleManager

    @classmethod
    def build(cls, channel_layer=None) -> ChatRuntime:
        """
        Wire up the realtime components.

        Args:
            channel_layer: Explicit layer; by default each component resolves
                the configured layer lazily
        """
        presence = PresenceRegistry(channel_layer=channel_layer)
        receipts = ReadStateCoordinator(channel_layer=channel_layer)
        rooms = RoomMembershipManager(receipts, channel_layer=channel_layer)
        return cls(
            presence=presence,
            rooms=rooms,
            receipts=receipts,
            fanout=FanoutEngine(rooms, presence, channel_layer=channel_layer),
            lifecycle=GroupLifecycleManager(rooms, channel_layer=channel_layer),
        )
