"""
WebSocket consumer for the chat application.

One connection per client carries every conversation: the client joins and
leaves conversation rooms with events instead of opening a socket per
conversation.

Consumers:
    ChatConsumer: Handles the realtime connection of one client

Authentication:
    Users are authenticated via JWT token passed as query parameter.
    JWTAuthMiddleware attaches the user to self.scope["user"]; anonymous
    connections are closed with code 4001.

Channel Groups:
    presence            every connection (user_status_change)
    user_<id>           every connection of one user (personal channel)
    conversation_<id>   every connection joined to a conversation room

Frames are JSON objects with a "type" naming the event:

Events (from client):
    - user_online: {userId}
    - join_conversation / leave_conversation: {conversationId, userId}
    - send_message: {conversationId, senderId, content, messageType,
      fileUrl?, fileName?, fileSize?, fileMimeType?, thumbnailUrl?, mediaMetadata?}
    - typing_start / typing_stop: {conversationId, userId, username?}
    - mark_read: {conversationId, userId}
    - start_direct_chat: {userId1, userId2}
    - create_group: {name, participants, adminId, type?, description?,
      category?, isPublic?, avatar?}
    - add_to_group / remove_from_group: {conversationId, userId, addedBy/removedBy}

Events (to client):
    See chat.events.ServerEvent. Rejected operations produce
    {"type": "error", "message", "error_code", "event"}, plus field-level
    "errors" when a send_message frame fails validation.

Ids in payloads (userId, senderId, adminId, addedBy, removedBy) must name
the authenticated user; when omitted they default to it.
"""

from __future__ import annotations

import logging

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from chat.constants import REALTIME_CONFIG
from chat.events import ServerEvent, room_event
from chat.models import ConversationType
from chat.runtime import ChatRuntime
from chat.serializers import MessageCreateSerializer
from core.services import ErrorCode

logger = logging.getLogger(__name__)

# Client field name -> MessageCreateSerializer field
MESSAGE_FIELDS = {
    "content": "content",
    "messageType": "message_type",
    "fileUrl": "file_url",
    "fileName": "file_name",
    "fileSize": "file_size",
    "fileMimeType": "file_mime_type",
    "thumbnailUrl": "thumbnail_url",
    "mediaMetadata": "media_metadata",
}


class PayloadError(Exception):
    """A client frame is malformed or names another user."""

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.VALIDATION_ERROR,
        errors: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.errors = errors


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Handles:
        - Connection authentication and presence registration
        - Joining/leaving conversation rooms
        - Sending messages through the fan-out engine
        - Typing indicators and read receipts
        - Group lifecycle operations

    Attributes:
        runtime: Shared per-process realtime state
        user: Authenticated user (after connect)
    """

    runtime: ChatRuntime | None = None

    handlers = {
        "user_online": "handle_user_online",
        "join_conversation": "handle_join_conversation",
        "leave_conversation": "handle_leave_conversation",
        "send_message": "handle_send_message",
        "typing_start": "handle_typing_start",
        "typing_stop": "handle_typing_stop",
        "mark_read": "handle_mark_read",
        "start_direct_chat": "handle_start_direct_chat",
        "create_group": "handle_create_group",
        "add_to_group": "handle_add_to_group",
        "remove_from_group": "handle_remove_from_group",
    }

    def __init__(self, *args, runtime: ChatRuntime | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        if runtime is not None:
            self.runtime = runtime
        self.user = None

    async def connect(self):
        """
        Handle WebSocket connection.

        Rejects anonymous connections; otherwise subscribes to the presence
        and personal groups and marks the user online.
        """
        user = self.scope.get("user")

        if user is None or not user.is_authenticated:
            logger.warning("Rejected unauthenticated websocket connection")
            await self.close(code=REALTIME_CONFIG.CLOSE_UNAUTHENTICATED)
            return

        self.user = user
        await self.channel_layer.group_add(REALTIME_CONFIG.PRESENCE_GROUP, self.channel_name)
        await self.channel_layer.group_add(
            REALTIME_CONFIG.user_group(user.id), self.channel_name
        )
        await self.accept()
        await self.runtime.presence.mark_online(user.id, self.channel_name)

        logger.info(f"User {user.id} connected ({self.channel_name})")

    async def disconnect(self, close_code):
        """
        Handle WebSocket disconnection.

        Leaves every room and drops the connection from the presence
        registry. Sends still in flight complete; their messages stay stored.
        """
        if self.user is None:
            return

        await self.runtime.rooms.leave_all(self.channel_name)
        await self.runtime.presence.mark_offline(self.channel_name)
        await self.channel_layer.group_discard(
            REALTIME_CONFIG.PRESENCE_GROUP, self.channel_name
        )
        await self.channel_layer.group_discard(
            REALTIME_CONFIG.user_group(self.user.id), self.channel_name
        )
        logger.info(f"User {self.user.id} disconnected (code {close_code})")

    async def receive_json(self, content, **kwargs):
        """
        Dispatch an incoming frame to its handler.

        Handler failures become error frames; the connection stays open.
        """
        event = content.get("type") if isinstance(content, dict) else None
        handler_name = self.handlers.get(event)

        if handler_name is None:
            await self.send_error(f"Unknown event: {event}", ErrorCode.VALIDATION_ERROR, event)
            return

        try:
            await getattr(self, handler_name)(content)
        except PayloadError as e:
            await self.send_error(e.message, e.error_code, event, errors=e.errors)
        except Exception:
            logger.exception(f"Error handling {event} from user {self.user.id}")
            await self.send_error(f"Failed to process {event}", None, event)

    async def send_error(
        self,
        message: str,
        error_code: str | None,
        event: str | None,
        errors: dict | None = None,
    ):
        """Send an error frame to this connection."""
        frame = {
            "type": ServerEvent.ERROR,
            "message": message,
            "error_code": error_code,
            "event": event,
        }
        if errors:
            frame["errors"] = errors
        await self.send_json(frame)

    async def send_failure(self, result, event: str):
        await self.send_error(result.error, result.error_code, event)

    # -------------------------------------------------------------------------
    # Payload helpers
    # -------------------------------------------------------------------------

    def _acting_user(self, content: dict, key: str = "userId") -> int:
        """Id claimed by the frame; must be the authenticated user."""
        claimed = content.get(key)
        if claimed is None:
            return self.user.id
        if str(claimed) != str(self.user.id):
            raise PayloadError(
                "You can only act as the authenticated user", ErrorCode.NOT_AUTHORIZED
            )
        return self.user.id

    def _message_fields(self, content: dict) -> MessageCreateSerializer:
        """Validate a send_message frame with the REST message rules."""
        serializer = MessageCreateSerializer(
            data={
                field: content[key]
                for key, field in MESSAGE_FIELDS.items()
                if content.get(key) is not None
            }
        )
        if not serializer.is_valid():
            raise PayloadError(
                "Invalid message",
                errors={
                    field: [str(error) for error in field_errors]
                    for field, field_errors in serializer.errors.items()
                },
            )
        return serializer

    def _int_field(self, content: dict, key: str) -> int:
        value = content.get(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise PayloadError(f"{key} is required") from None

    # -------------------------------------------------------------------------
    # Presence and rooms
    # -------------------------------------------------------------------------

    async def handle_user_online(self, content):
        user_id = self._acting_user(content)
        await self.runtime.presence.mark_online(user_id, self.channel_name)

    async def handle_join_conversation(self, content):
        conversation_id = self._int_field(content, "conversationId")
        user_id = self._acting_user(content)

        result = await self.runtime.rooms.join_room(
            self.channel_name, conversation_id, user_id
        )
        if not result:
            await self.send_failure(result, "join_conversation")
            return

        await room_event(
            conversation_id,
            ServerEvent.USER_JOINED,
            {"conversationId": conversation_id, "userId": user_id},
            origin=self.channel_name,
            channel_layer=self.channel_layer,
        )

    async def handle_leave_conversation(self, content):
        conversation_id = self._int_field(content, "conversationId")
        self._acting_user(content)
        await self.runtime.rooms.leave_room(self.channel_name, conversation_id)
        logger.info(f"User {self.user.id} left conversation {conversation_id}")

    # -------------------------------------------------------------------------
    # Messages, typing, read receipts
    # -------------------------------------------------------------------------

    async def handle_send_message(self, content):
        conversation_id = self._int_field(content, "conversationId")
        sender_id = self._acting_user(content, "senderId")
        serializer = self._message_fields(content)

        outcome = await self.runtime.fanout.send(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=serializer.validated_data["content"],
            message_type=serializer.validated_data["message_type"],
            attachment=serializer.get_attachment(),
        )
        if outcome.rejected:
            await self.send_error(outcome.error, outcome.error_code, "send_message")

    async def handle_typing_start(self, content):
        await self._typing(content, is_typing=True)

    async def handle_typing_stop(self, content):
        await self._typing(content, is_typing=False)

    async def _typing(self, content, is_typing: bool):
        conversation_id = self._int_field(content, "conversationId")
        user_id = self._acting_user(content)

        if not self.runtime.rooms.is_in_room(self.channel_name, conversation_id):
            raise PayloadError(
                "Join the conversation before sending typing signals",
                ErrorCode.NOT_AUTHORIZED,
            )

        await self.runtime.receipts.typing(
            conversation_id,
            user_id,
            is_typing,
            username=content.get("username") or self.user.username,
            exclude_channel=self.channel_name,
        )

    async def handle_mark_read(self, content):
        conversation_id = self._int_field(content, "conversationId")
        user_id = self._acting_user(content)

        result = await self.runtime.receipts.mark_read(
            conversation_id, user_id, exclude_channel=self.channel_name
        )
        if not result:
            await self.send_failure(result, "mark_read")

    # -------------------------------------------------------------------------
    # Group lifecycle
    # -------------------------------------------------------------------------

    async def handle_start_direct_chat(self, content):
        first = self._int_field(content, "userId1")
        second = self._int_field(content, "userId2")
        if self.user.id not in (first, second):
            raise PayloadError(
                "You can only start conversations you take part in",
                ErrorCode.NOT_AUTHORIZED,
            )

        other_id = second if first == self.user.id else first
        result = await self.runtime.lifecycle.start_direct(self.user.id, other_id)
        if not result:
            await self.send_failure(result, "start_direct_chat")

    async def handle_create_group(self, content):
        creator_id = self._acting_user(content, "adminId")
        participants = content.get("participants") or []
        if not isinstance(participants, list):
            raise PayloadError("participants must be a list")
        try:
            participant_ids = [int(uid) for uid in participants]
        except (TypeError, ValueError):
            raise PayloadError("participants must be user ids") from None

        result = await self.runtime.lifecycle.create_group(
            creator_id,
            content.get("name") or "",
            participant_ids,
            conversation_type=content.get("conversationType") or ConversationType.GROUP,
            description=content.get("description") or "",
            category=content.get("category"),
            is_public=bool(content.get("isPublic", False)),
            avatar=content.get("avatar") or "",
        )
        if not result:
            await self.send_failure(result, "create_group")

    async def handle_add_to_group(self, content):
        conversation_id = self._int_field(content, "conversationId")
        user_id = self._int_field(content, "userId")
        actor_id = self._acting_user(content, "addedBy")

        result = await self.runtime.lifecycle.add_participant(
            conversation_id, actor_id, user_id
        )
        if not result:
            await self.send_failure(result, "add_to_group")

    async def handle_remove_from_group(self, content):
        conversation_id = self._int_field(content, "conversationId")
        user_id = self._int_field(content, "userId")
        actor_id = self._acting_user(content, "removedBy")

        result = await self.runtime.lifecycle.remove_participant(
            conversation_id, actor_id, user_id
        )
        if not result:
            await self.send_failure(result, "remove_from_group")

    # -------------------------------------------------------------------------
    # Channel layer handlers
    # -------------------------------------------------------------------------

    async def chat_event(self, event):
        """
        Relay a chat.event message to the client.

        Skips events that originated from this connection. A deleted
        conversation's room is left before the client is told.
        """
        if event.get("origin") == self.channel_name:
            return

        payload = event.get("payload") or {}
        if event["event"] == ServerEvent.CONVERSATION_DELETED:
            await self.runtime.rooms.leave_room(self.channel_name, payload["conversationId"])

        await self.send_json({"type": event["event"], **payload})

    async def chat_force_leave(self, event):
        """Leave a room this user was removed from and tell the client."""
        conversation_id = event["conversation_id"]
        await self.runtime.rooms.leave_room(self.channel_name, conversation_id)
        await self.send_json(
            {
                "type": ServerEvent.REMOVED_FROM_GROUP,
                "conversationId": conversation_id,
                "removedBy": event.get("removed_by"),
            }
        )
