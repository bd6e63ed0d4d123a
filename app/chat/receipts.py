"""
Read receipts and typing indicators.

Read state is durable (MessageRead rows and Participant.unread_count, see
MessageService.mark_read); typing is not stored anywhere. The server relays
typing signals to the other connections in the room and forgets them, so a
typing_start without a matching typing_stop leaves nothing behind.
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer

from chat.events import ServerEvent, room_event
from chat.services import MessageService, ReadResult
from core.services import ServiceResult

logger = logging.getLogger(__name__)


class ReadStateCoordinator:
    """
    Marks messages read and relays typing signals to a conversation room.

    Methods:
        mark_read: Mark a whole conversation read, one messages_read event
        mark_message_read: Mark a single message read
        typing: Relay a typing_start/typing_stop signal
    """

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    async def mark_read(
        self,
        conversation_id: int,
        user_id: int,
        exclude_channel: str | None = None,
    ) -> ServiceResult[ReadResult]:
        """
        Mark every unread message of a conversation read by a user.

        Emits a single messages_read event to the room, excluding the acting
        connection, and only when at least one receipt was added.
        """
        result = await database_sync_to_async(MessageService.mark_read)(
            conversation_id, user_id
        )
        if result and result.data.changed:
            await self._announce(conversation_id, user_id, exclude_channel)
        return result

    async def mark_message_read(
        self,
        message_id: int,
        user_id: int,
        conversation_id: int | None = None,
        exclude_channel: str | None = None,
    ) -> ServiceResult[ReadResult]:
        """Mark one message read; announced like mark_read when it changed."""
        result = await database_sync_to_async(MessageService.mark_message_read)(
            message_id, user_id, conversation_id
        )
        if result and result.data.changed:
            await self._announce(result.data.conversation_id, user_id, exclude_channel)
        return result

    async def typing(
        self,
        conversation_id: int,
        user_id: int,
        is_typing: bool,
        username: str | None = None,
        exclude_channel: str | None = None,
    ) -> None:
        """Relay a typing signal to the other connections in the room."""
        payload = {
            "conversationId": conversation_id,
            "userId": user_id,
            "isTyping": is_typing,
        }
        if username:
            payload["username"] = username
        await room_event(
            conversation_id,
            ServerEvent.USER_TYPING,
            payload,
            origin=exclude_channel,
            channel_layer=self.channel_layer,
        )

    async def _announce(
        self,
        conversation_id: int,
        user_id: int,
        exclude_channel: str | None,
    ) -> None:
        try:
            await room_event(
                conversation_id,
                ServerEvent.MESSAGES_READ,
                {"conversationId": conversation_id, "userId": user_id},
                origin=exclude_channel,
                channel_layer=self.channel_layer,
            )
        except Exception:
            logger.exception(
                f"Failed to announce read receipt of user {user_id} "
                f"in conversation {conversation_id}"
            )
