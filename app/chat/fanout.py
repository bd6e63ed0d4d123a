"""
Message fan-out engine.

Drives one message send through its states:

    RECEIVED -> AUTHORIZED -> PERSISTED -> DELIVERED

with terminal failures:

    REJECTED                  authorization or validation failed, nothing written
    PARTIAL_DELIVERY_FAILURE  message stored, but the summary update or some
                              deliveries failed (logged, never retried here)

Delivery has two audiences:
    1. Every connection joined to the room gets receive_message with the
       fully populated message.
    2. Every other participant who is online but has no connection in the
       room gets new_message_notification with a lightweight summary on
       their personal channel.

Sends to the same conversation are serialized inside this process with a
per-conversation lock, so room members see one sender's messages in the
order they were sent. A client disconnecting mid-send does not cancel the
send: the message is persisted regardless.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer

from chat.events import ServerEvent, room_event, user_event
from chat.models import MessageType
from chat.presence import PresenceRegistry
from chat.rooms import RoomMembershipManager
from chat.serializers import MessageNotificationSerializer, MessageSerializer
from chat.services import MessageService
from core.services import ErrorCode

logger = logging.getLogger(__name__)


class SendState(str, Enum):
    RECEIVED = "received"
    AUTHORIZED = "authorized"
    PERSISTED = "persisted"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    PARTIAL_DELIVERY_FAILURE = "partial_delivery_failure"


@dataclass
class SendOutcome:
    """
    Record of one send.

    Attributes:
        conversation_id: Target conversation
        sender_id: Author
        state: Current (finally: terminal) state
        history: Every state the send went through, in order
        message: Serialized message once persisted
        error, error_code: Why the send was rejected
        summary_updated: False if the conversation summary update failed
        notified: Users who received a new_message_notification
        failed_recipients: Users whose notification could not be delivered
        room_delivery_failed: True if the room broadcast itself failed
    """

    conversation_id: int
    sender_id: int
    state: SendState = SendState.RECEIVED
    history: list[SendState] = field(default_factory=lambda: [SendState.RECEIVED])
    message: dict | None = None
    error: str | None = None
    error_code: str | None = None
    summary_updated: bool = True
    notified: list[int] = field(default_factory=list)
    failed_recipients: list[int] = field(default_factory=list)
    room_delivery_failed: bool = False

    def transition(self, state: SendState) -> None:
        self.state = state
        self.history.append(state)

    def reject(self, error: str, error_code: str) -> None:
        self.error = error
        self.error_code = error_code
        self.transition(SendState.REJECTED)

    @property
    def persisted(self) -> bool:
        return self.message is not None

    @property
    def rejected(self) -> bool:
        return self.state == SendState.REJECTED


class FanoutEngine:
    """
    Persists messages and delivers them to rooms and absent participants.

    Args:
        rooms: Room membership, to find who is in the room
        presence: Presence registry, to find who is online elsewhere
        channel_layer: Optional explicit layer (defaults to the configured one)
    """

    def __init__(
        self,
        rooms: RoomMembershipManager,
        presence: PresenceRegistry,
        channel_layer=None,
    ):
        self.rooms = rooms
        self.presence = presence
        self._channel_layer = channel_layer
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    def _lock_for(self, conversation_id: int) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def send(
        self,
        conversation_id: int,
        sender_id: int,
        content: str | None,
        message_type: str = MessageType.TEXT,
        attachment: dict | None = None,
    ) -> SendOutcome:
        """
        Send a message and deliver it.

        Returns:
            SendOutcome; check outcome.rejected before using outcome.message
        """
        outcome = SendOutcome(conversation_id=conversation_id, sender_id=sender_id)

        async with self._lock_for(conversation_id):
            persisted = await database_sync_to_async(self._persist)(
                conversation_id, sender_id, content, message_type, attachment, outcome
            )
            if persisted is None:
                logger.warning(
                    f"Rejected message from user {sender_id} to conversation "
                    f"{conversation_id}: {outcome.error_code}"
                )
                return outcome

            summary, recipient_ids = persisted
            await self._deliver_to_room(outcome)
            await self._notify_absent(outcome, summary, recipient_ids)

        if outcome.room_delivery_failed or outcome.failed_recipients or not outcome.summary_updated:
            outcome.transition(SendState.PARTIAL_DELIVERY_FAILURE)
            logger.warning(
                f"{ErrorCode.PARTIAL_DELIVERY_FAILURE}: message {outcome.message['id']} "
                f"in conversation {conversation_id} (summary_updated="
                f"{outcome.summary_updated}, failed_recipients={outcome.failed_recipients})"
            )
        else:
            outcome.transition(SendState.DELIVERED)
        return outcome

    def _persist(
        self,
        conversation_id: int,
        sender_id: int,
        content: str | None,
        message_type: str,
        attachment: dict | None,
        outcome: SendOutcome,
    ) -> tuple[dict, list[int]] | None:
        result = MessageService.send_message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            attachment=attachment,
        )
        if not result:
            # Validation failures happen after the participant check passed
            if result.error_code == ErrorCode.VALIDATION_ERROR:
                outcome.transition(SendState.AUTHORIZED)
            outcome.reject(result.error, result.error_code)
            return None

        outcome.transition(SendState.AUTHORIZED)
        sent = result.data
        outcome.summary_updated = sent.summary_updated
        outcome.message = MessageSerializer(sent.message).data
        outcome.transition(SendState.PERSISTED)

        summary = MessageNotificationSerializer(sent.message).data
        return summary, sent.recipient_ids

    async def _deliver_to_room(self, outcome: SendOutcome) -> None:
        try:
            await room_event(
                outcome.conversation_id,
                ServerEvent.RECEIVE_MESSAGE,
                {"message": outcome.message},
                channel_layer=self.channel_layer,
            )
        except Exception:
            outcome.room_delivery_failed = True
            logger.exception(
                f"Failed to deliver message {outcome.message['id']} "
                f"to conversation {outcome.conversation_id}"
            )

    async def _notify_absent(
        self,
        outcome: SendOutcome,
        summary: dict,
        recipient_ids: list[int],
    ) -> None:
        in_room = self.rooms.users_in_room(outcome.conversation_id)
        for user_id in recipient_ids:
            if user_id in in_room or not self.presence.is_online(user_id):
                continue
            try:
                await user_event(
                    user_id,
                    ServerEvent.NEW_MESSAGE_NOTIFICATION,
                    {"conversationId": outcome.conversation_id, "message": summary},
                    channel_layer=self.channel_layer,
                )
            except Exception:
                outcome.failed_recipients.append(user_id)
                logger.exception(
                    f"Failed to notify user {user_id} of message {summary['id']}"
                )
            else:
                outcome.notified.append(user_id)
