"""
Room membership for live connections.

A room is the set of connections currently joined to a conversation. It is
distinct from the conversation's participants: a participant may be
offline or looking at another screen, and then holds no connection in the
room. The fan-out engine uses rooms to decide who receives the full message
and who only gets a notification.

Membership is recorded twice: in the channel layer group (so broadcasts
reach connections on every process) and in local maps (so this process can
answer "who is in the room" without a round-trip).
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer

from chat.constants import REALTIME_CONFIG
from chat.receipts import ReadStateCoordinator
from chat.services import ConversationService, ReadResult
from core.services import ServiceResult

logger = logging.getLogger(__name__)


class RoomMembershipManager:
    """
    Maps connections to the conversation rooms they joined.

    A connection may be in many rooms and a room may hold many connections.

    Args:
        receipts: Used to mark the conversation read when a user joins
        channel_layer: Optional explicit layer (defaults to the configured one)
    """

    def __init__(self, receipts: ReadStateCoordinator, channel_layer=None):
        self.receipts = receipts
        self._channel_layer = channel_layer
        self._rooms: dict[int, set[str]] = {}
        self._memberships: dict[str, set[int]] = {}
        self._channel_users: dict[str, int] = {}

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    async def join_room(
        self,
        channel_name: str,
        conversation_id: int,
        user_id: int,
    ) -> ServiceResult[ReadResult]:
        """
        Join a connection to a conversation room.

        Only current participants may join. Joining means the user has
        caught up, so every message from others becomes read by them.

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: User is not a participant
        """
        membership = await database_sync_to_async(ConversationService.get_membership)(
            conversation_id, user_id
        )
        if not membership:
            logger.warning(
                f"User {user_id} rejected from conversation {conversation_id}: "
                f"{membership.error_code}"
            )
            return membership

        await self.channel_layer.group_add(
            REALTIME_CONFIG.room_group(conversation_id), channel_name
        )
        self._rooms.setdefault(conversation_id, set()).add(channel_name)
        self._memberships.setdefault(channel_name, set()).add(conversation_id)
        self._channel_users[channel_name] = user_id

        logger.info(f"User {user_id} joined conversation {conversation_id}")
        return await self.receipts.mark_read(
            conversation_id, user_id, exclude_channel=channel_name
        )

    async def leave_room(self, channel_name: str, conversation_id: int) -> bool:
        """
        Remove a connection from a room.

        Idempotent: leaving a room the connection never joined is not an error.

        Returns:
            True if the connection was in the room
        """
        was_member = self._forget(channel_name, conversation_id)
        await self.channel_layer.group_discard(
            REALTIME_CONFIG.room_group(conversation_id), channel_name
        )
        return was_member

    async def leave_all(self, channel_name: str) -> list[int]:
        """Remove a connection from every room (on disconnect)."""
        conversation_ids = sorted(self._memberships.get(channel_name, ()))
        for conversation_id in conversation_ids:
            await self.leave_room(channel_name, conversation_id)
        self._channel_users.pop(channel_name, None)
        return conversation_ids

    async def force_leave(self, user_id: int, conversation_id: int) -> list[str]:
        """
        Remove every local connection of a user from a room.

        Used when the user stops being a participant.

        Returns:
            The channel names that were removed
        """
        removed = [
            channel_name
            for channel_name in self.channels_in_room(conversation_id)
            if self._channel_users.get(channel_name) == user_id
        ]
        for channel_name in removed:
            await self.leave_room(channel_name, conversation_id)
        if removed:
            logger.info(
                f"Forced user {user_id} out of conversation {conversation_id} "
                f"({len(removed)} connections)"
            )
        return removed

    async def close_room(self, conversation_id: int) -> list[str]:
        """Remove every local connection from a room (conversation deleted)."""
        channels = self.channels_in_room(conversation_id)
        for channel_name in channels:
            await self.leave_room(channel_name, conversation_id)
        return channels

    def channels_in_room(self, conversation_id: int) -> list[str]:
        """Connections currently joined to a room."""
        return sorted(self._rooms.get(conversation_id, ()))

    def users_in_room(self, conversation_id: int) -> set[int]:
        """Users holding at least one connection in a room."""
        return {
            self._channel_users[channel_name]
            for channel_name in self._rooms.get(conversation_id, ())
            if channel_name in self._channel_users
        }

    def rooms_for(self, channel_name: str) -> set[int]:
        """Rooms a connection has joined."""
        return set(self._memberships.get(channel_name, ()))

    def is_in_room(self, channel_name: str, conversation_id: int) -> bool:
        return conversation_id in self._memberships.get(channel_name, ())

    def _forget(self, channel_name: str, conversation_id: int) -> bool:
        channels = self._rooms.get(conversation_id)
        was_member = bool(channels) and channel_name in channels
        if channels is not None:
            channels.discard(channel_name)
            if not channels:
                del self._rooms[conversation_id]

        memberships = self._memberships.get(channel_name)
        if memberships is not None:
            memberships.discard(conversation_id)
            if not memberships:
                del self._memberships[channel_name]
        return was_member
