"""
Presence registry for connected users.

Tracks which users hold at least one live websocket connection in this
server process. A user with two devices has two connection handles
(channel names); they count as online until the last handle disconnects.

State is in memory only and rebuilt from scratch when the process restarts:
clients re-announce themselves on reconnect. With several processes behind
a load balancer each registry only knows its own connections; status
broadcasts still reach every client through the channel layer.

Usage:
    registry = PresenceRegistry()
    await registry.mark_online(user.id, self.channel_name)
    registry.is_online(user.id)
    await registry.mark_offline(self.channel_name)
"""

from __future__ import annotations

import logging

from channels.layers import get_channel_layer

from chat.constants import REALTIME_CONFIG
from chat.events import ServerEvent, build_event

logger = logging.getLogger(__name__)


class PresenceStatus:
    ONLINE = "online"
    OFFLINE = "offline"


class PresenceRegistry:
    """
    Process-wide mapping of user id to connection handles.

    Attributes:
        group: Channel layer group every connection subscribes to for
            user_status_change events

    Mutations happen on the event loop thread without awaiting in between,
    so they are atomic with respect to other coroutines.
    """

    def __init__(self, channel_layer=None, group: str = REALTIME_CONFIG.PRESENCE_GROUP):
        self._channel_layer = channel_layer
        self.group = group
        self._handles: dict[int, set[str]] = {}
        self._owners: dict[str, int] = {}

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    async def mark_online(self, user_id: int, channel_name: str) -> bool:
        """
        Register a connection handle for a user.

        Registering the same handle twice is a no-op. The status change is
        broadcast only when the user goes from zero handles to one, and the
        originating connection does not receive its own announcement.

        Returns:
            True if the user just came online
        """
        previous_owner = self._owners.get(channel_name)
        if previous_owner == user_id:
            return False
        if previous_owner is not None:
            await self.mark_offline(channel_name)

        handles = self._handles.setdefault(user_id, set())
        came_online = not handles
        handles.add(channel_name)
        self._owners[channel_name] = user_id

        if came_online:
            logger.info(f"User {user_id} is now online")
            await self._broadcast(user_id, PresenceStatus.ONLINE, origin=channel_name)
        return came_online

    async def mark_offline(self, channel_name: str) -> int | None:
        """
        Remove one connection handle.

        Unknown handles are ignored. The user goes offline, and the status
        change is broadcast, only when their last handle is removed.

        Returns:
            The id of the user who went offline, or None
        """
        user_id = self._owners.pop(channel_name, None)
        if user_id is None:
            return None

        handles = self._handles.get(user_id, set())
        handles.discard(channel_name)
        if handles:
            return None

        self._handles.pop(user_id, None)
        logger.info(f"User {user_id} is now offline")
        await self._broadcast(user_id, PresenceStatus.OFFLINE, origin=channel_name)
        return user_id

    def is_online(self, user_id: int) -> bool:
        """Whether the user holds at least one connection in this process."""
        return bool(self._handles.get(user_id))

    def online_user_ids(self) -> set[int]:
        """Ids of every user currently online in this process."""
        return {user_id for user_id, handles in self._handles.items() if handles}

    def channels_for(self, user_id: int) -> set[str]:
        """Connection handles held by a user."""
        return set(self._handles.get(user_id, ()))

    def user_for(self, channel_name: str) -> int | None:
        """Owner of a connection handle."""
        return self._owners.get(channel_name)

    async def _broadcast(self, user_id: int, status: str, origin: str) -> None:
        try:
            await self.channel_layer.group_send(
                self.group,
                build_event(
                    ServerEvent.USER_STATUS_CHANGE,
                    {"userId": user_id, "status": status},
                    origin=origin,
                ),
            )
        except Exception:
            logger.exception(f"Failed to broadcast {status} status of user {user_id}")
