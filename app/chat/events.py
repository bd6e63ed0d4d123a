"""
Channel layer publishing for chat events.

Every server-to-client frame travels through the channel layer as a
"chat.event" message that ChatConsumer.chat_event relays verbatim:

    {"type": "chat.event", "event": "receive_message",
     "payload": {...}, "origin": "<channel name or None>"}

A consumer skips an event whose origin is its own channel name, which is
how "broadcast to the room except the sender" is expressed.

Targets:
    room_event: Every connection joined to a conversation room
    user_event: Every connection of one user (personal group)
    presence_event: Every connected client

The async helpers are used by the realtime components; publish_* wrap them
for synchronous callers (REST views), where delivery is best effort.
"""

from __future__ import annotations

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from chat.constants import REALTIME_CONFIG

logger = logging.getLogger(__name__)


class ServerEvent:
    """Names of server-to-client websocket events."""

    RECEIVE_MESSAGE = "receive_message"
    NEW_MESSAGE_NOTIFICATION = "new_message_notification"
    USER_STATUS_CHANGE = "user_status_change"
    USER_TYPING = "user_typing"
    MESSAGES_READ = "messages_read"
    ERROR = "error"
    USER_JOINED = "user_joined"
    CONVERSATION_CREATED = "conversation_created"
    GROUP_CREATED = "group_created"
    ADDED_TO_GROUP = "added_to_group"
    REMOVED_FROM_GROUP = "removed_from_group"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    CONVERSATION_UPDATED = "conversation_updated"
    CONVERSATION_DELETED = "conversation_deleted"


def build_event(event: str, payload: dict, origin: str | None = None) -> dict:
    """Channel layer message relayed to clients by ChatConsumer.chat_event."""
    return {
        "type": "chat.event",
        "event": event,
        "payload": payload,
        "origin": origin,
    }


async def room_event(
    conversation_id: int,
    event: str,
    payload: dict,
    origin: str | None = None,
    channel_layer=None,
) -> None:
    """Send an event to every connection in a conversation room."""
    channel_layer = channel_layer or get_channel_layer()
    await channel_layer.group_send(
        REALTIME_CONFIG.room_group(conversation_id),
        build_event(event, payload, origin),
    )


async def user_event(
    user_id: int,
    event: str,
    payload: dict,
    channel_layer=None,
) -> None:
    """Send an event to every connection of one user."""
    channel_layer = channel_layer or get_channel_layer()
    await channel_layer.group_send(
        REALTIME_CONFIG.user_group(user_id),
        build_event(event, payload),
    )


async def force_leave(
    user_id: int,
    conversation_id: int,
    removed_by: int | None = None,
    channel_layer=None,
) -> None:
    """
    Ask every connection of a user to leave a conversation room.

    Delivered to the user's personal group, so connections held by other
    server processes leave as well.
    """
    channel_layer = channel_layer or get_channel_layer()
    await channel_layer.group_send(
        REALTIME_CONFIG.user_group(user_id),
        {
            "type": "chat.force_leave",
            "conversation_id": conversation_id,
            "removed_by": removed_by,
        },
    )


def publish_to_room(conversation_id: int, event: str, payload: dict) -> bool:
    """
    Best-effort room broadcast from synchronous code.

    Returns:
        True if the event was handed to the channel layer, False otherwise
    """
    try:
        async_to_sync(room_event)(conversation_id, event, payload)
    except Exception:
        logger.exception(
            f"Failed to publish {event} to conversation {conversation_id}"
        )
        return False
    return True


def publish_to_user(user_id: int, event: str, payload: dict) -> bool:
    """Best-effort personal-channel event from synchronous code."""
    try:
        async_to_sync(user_event)(user_id, event, payload)
    except Exception:
        logger.exception(f"Failed to publish {event} to user {user_id}")
        return False
    return True


def publish_force_leave(user_id: int, conversation_id: int, removed_by: int | None) -> bool:
    """Best-effort force-leave from synchronous code."""
    try:
        async_to_sync(force_leave)(user_id, conversation_id, removed_by)
    except Exception:
        logger.exception(
            f"Failed to force user {user_id} out of conversation {conversation_id}"
        )
        return False
    return True
