"""
Serializers for chat API.

This module provides serializers for the chat system:
- Message serializers (full, notification summary, preview, create)
- Participant serializers (read, create, update)
- Conversation serializers (list, detail, create, update, admin transfer)

Serializer Hierarchy:
    MessageSerializer: Fully populated message (sender profile, read-by set)
    MessageNotificationSerializer: Lightweight summary for absent participants
    MessagePreviewSerializer: Latest message in conversation lists
    MessageCreateSerializer: Send new message (REST fallback path)

    ParticipantSerializer: Participant with user info
    ParticipantCreateSerializer: Add participant to group
    ParticipantUpdateSerializer: Grant or revoke moderator role

    ConversationListSerializer: List view with computed fields
    ConversationDetailSerializer: Full details including participants
    ConversationCreateSerializer: Direct/group/club conversation creation
    ConversationUpdateSerializer: Metadata update
    TransferAdminSerializer: Admin hand-over

Design Decisions:
    - Read and write serializers are separate for clarity
    - The same read serializers build REST responses and websocket payloads,
      so clients parse one representation
    - Computed fields read the prefetched participants, never re-query
    - Business validation lives in the services; write serializers only
      check the shape of the input
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import CONVERSATION_CONFIG, MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationCategory,
    ConversationType,
    Message,
    MessageRead,
    MessageType,
    Participant,
)

if TYPE_CHECKING:
    from authentication.models import User


def _context_user_id(context: dict) -> int | None:
    """Id of the user a representation is built for, if any."""
    request = context.get("request")
    if request is not None and request.user.is_authenticated:
        return request.user.id
    return context.get("user_id")


# =============================================================================
# Message Serializers
# =============================================================================


class MessageReadSerializer(serializers.ModelSerializer):
    """One entry of a message's read-by set."""

    class Meta:
        model = MessageRead
        fields = ["user_id", "read_at"]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """
    Fully populated message.

    Broadcast to room members on delivery and returned by the history
    endpoint. Tombstones keep their placeholder content and SYSTEM type.
    """

    sender = UserSerializer(read_only=True, allow_null=True)
    read_by = MessageReadSerializer(source="read_receipts", many=True, read_only=True)
    is_deleted = serializers.BooleanField(read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "content",
            "message_type",
            "system_event",
            "metadata",
            "file_url",
            "file_name",
            "file_size",
            "file_mime_type",
            "thumbnail_url",
            "media_metadata",
            "read_by",
            "is_deleted",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class MessageNotificationSerializer(serializers.ModelSerializer):
    """
    Summary pushed to participants who are online but not in the room.

    Carries just enough to render a notification; clients fetch the full
    message when they open the conversation.
    """

    sender = UserSerializer(read_only=True, allow_null=True)
    content = serializers.CharField(source="get_preview", read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "sender",
            "content",
            "message_type",
            "file_name",
            "created_at",
        ]
        read_only_fields = fields


class MessagePreviewSerializer(serializers.ModelSerializer):
    """Minimal message serializer for conversation list preview."""

    sender_id = serializers.IntegerField(read_only=True, allow_null=True)
    sender_name = serializers.SerializerMethodField(
        help_text="Username of the message sender"
    )
    content = serializers.CharField(source="get_preview", read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "sender_id",
            "sender_name",
            "content",
            "message_type",
            "created_at",
        ]
        read_only_fields = fields

    def get_sender_name(self, obj: Message) -> str | None:
        """Get sender's username or None for automatic system messages."""
        if obj.sender is None:
            return None
        return obj.sender.username


class MessageCreateSerializer(serializers.Serializer):
    """
    Serializer for sending messages, over REST and the websocket.

    Text messages need content; image and file messages need file_url and
    may carry a caption.
    """

    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        required=False,
        allow_blank=True,
        default="",
        trim_whitespace=False,
        help_text="Message text or attachment caption (max 5,000 characters)",
    )
    message_type = serializers.ChoiceField(
        choices=[
            (MessageType.TEXT, "Text"),
            (MessageType.IMAGE, "Image"),
            (MessageType.FILE, "File"),
        ],
        default=MessageType.TEXT,
    )
    file_url = serializers.URLField(max_length=500, required=False)
    file_name = serializers.CharField(max_length=255, required=False)
    file_size = serializers.IntegerField(min_value=0, required=False)
    file_mime_type = serializers.CharField(max_length=100, required=False)
    thumbnail_url = serializers.URLField(max_length=500, required=False)
    media_metadata = serializers.JSONField(required=False)

    def get_attachment(self) -> dict:
        """Attachment fields present in the validated data."""
        return {
            key: value
            for key, value in self.validated_data.items()
            if key not in ("content", "message_type")
        }


# =============================================================================
# Participant Serializers
# =============================================================================


class ParticipantSerializer(serializers.ModelSerializer):
    """
    Read serializer for conversation participants.

    Includes user details and role information.
    """

    user = UserSerializer(read_only=True)
    joined_at = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Participant
        fields = [
            "id",
            "user",
            "role",
            "unread_count",
            "joined_at",
        ]
        read_only_fields = fields


class ParticipantCreateSerializer(serializers.Serializer):
    """Serializer for adding a participant to a group conversation."""

    user_id = serializers.IntegerField(help_text="User ID to add to the conversation")


class ParticipantUpdateSerializer(serializers.Serializer):
    """Serializer for granting or revoking the moderator role."""

    is_moderator = serializers.BooleanField(
        help_text="Whether the participant should be a moderator",
    )


# =============================================================================
# Conversation Serializers
# =============================================================================


class ConversationListSerializer(serializers.ModelSerializer):
    """
    Serializer for conversation list view.

    Includes computed fields:
    - unread_count: Unread messages for the current user
    - latest_message: Preview of the most recent message
    - display_name: Name for groups, other user's name for direct
    - member_count, admin_id, moderator_ids, participant_ids

    Outside a request (websocket broadcasts) pass context={"user_id": ...}
    to get a per-user unread count; without it unread_count is None.
    """

    display_name = serializers.SerializerMethodField(
        help_text="Display name for the conversation"
    )
    member_count = serializers.IntegerField(read_only=True)
    participant_ids = serializers.ListField(
        child=serializers.IntegerField(), read_only=True
    )
    admin_id = serializers.SerializerMethodField()
    moderator_ids = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField(
        help_text="Number of unread messages"
    )
    latest_message = MessagePreviewSerializer(read_only=True, allow_null=True)

    class Meta:
        model = Conversation
        fields = [
            "id",
            "conversation_type",
            "name",
            "display_name",
            "description",
            "avatar",
            "category",
            "is_public",
            "is_official",
            "member_count",
            "participant_ids",
            "admin_id",
            "moderator_ids",
            "unread_count",
            "latest_message",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_display_name(self, obj: Conversation) -> str:
        """
        Generate display name for conversation.

        - Groups and clubs: name
        - Direct: other user's name
        """
        if not obj.is_direct:
            return obj.name

        user_id = _context_user_id(self.context)
        for participant in obj.participants.all():
            if participant.user_id != user_id:
                return participant.user.full_name or participant.user.username
        return ""

    def get_admin_id(self, obj: Conversation) -> int | None:
        admin = obj.admin
        return admin.id if admin else None

    def get_moderator_ids(self, obj: Conversation) -> list[int]:
        return [user.id for user in obj.moderators]

    def get_unread_count(self, obj: Conversation) -> int | None:
        """Current user's unread count from the prefetched participants."""
        user_id = _context_user_id(self.context)
        if user_id is None:
            return None
        return obj.unread_counts.get(user_id, 0)


class ConversationDetailSerializer(ConversationListSerializer):
    """
    Full conversation details including all participants.

    Extends ConversationListSerializer with participant list and
    current user's role.
    """

    participants = ParticipantSerializer(many=True, read_only=True)
    current_user_role = serializers.SerializerMethodField(
        help_text="Current user's role in this conversation"
    )

    class Meta(ConversationListSerializer.Meta):
        fields = ConversationListSerializer.Meta.fields + [
            "participants",
            "current_user_role",
        ]
        read_only_fields = fields

    def get_current_user_role(self, obj: Conversation) -> str | None:
        """Get current user's role in conversation."""
        user_id = _context_user_id(self.context)
        for participant in obj.participants.all():
            if participant.user_id == user_id:
                return participant.role
        return None


class ConversationCreateSerializer(serializers.Serializer):
    """
    Serializer for creating conversations.

    Supports direct (1:1), group and club conversations:
    - Direct: Finds existing or creates new between two users
    - Group/club: Creates new conversation with the caller as admin
    """

    conversation_type = serializers.ChoiceField(
        choices=ConversationType.choices,
        help_text="Type of conversation to create",
    )
    participant_ids = serializers.ListField(
        child=serializers.IntegerField(),
        required=False,
        default=list,
        help_text="Users to include in the conversation",
    )
    name = serializers.CharField(
        max_length=CONVERSATION_CONFIG.MAX_NAME_LENGTH,
        required=False,
        allow_blank=True,
        default="",
        help_text="Name for group/club conversations (ignored for direct)",
    )
    description = serializers.CharField(
        max_length=CONVERSATION_CONFIG.MAX_DESCRIPTION_LENGTH,
        required=False,
        allow_blank=True,
        default="",
    )
    category = serializers.ChoiceField(
        choices=ConversationCategory.choices,
        required=False,
        allow_null=True,
        default=None,
    )
    is_public = serializers.BooleanField(required=False, default=False)
    avatar = serializers.URLField(required=False, allow_blank=True, default="")

    def validate(self, attrs: dict) -> dict:
        """Direct conversations need exactly one other participant."""
        if attrs["conversation_type"] == ConversationType.DIRECT:
            if len(attrs["participant_ids"]) != 1:
                raise serializers.ValidationError(
                    {
                        "participant_ids": "Direct conversations require exactly one other participant"
                    }
                )
        return attrs


class ConversationUpdateSerializer(serializers.Serializer):
    """Serializer for updating group/club metadata (all fields optional)."""

    name = serializers.CharField(
        max_length=CONVERSATION_CONFIG.MAX_NAME_LENGTH,
        required=False,
    )
    description = serializers.CharField(
        max_length=CONVERSATION_CONFIG.MAX_DESCRIPTION_LENGTH,
        required=False,
        allow_blank=True,
    )
    category = serializers.ChoiceField(
        choices=ConversationCategory.choices,
        required=False,
        allow_null=True,
    )
    avatar = serializers.URLField(required=False, allow_blank=True)
    is_public = serializers.BooleanField(required=False)

    def validate_name(self, value: str) -> str:
        """Ensure name is not empty."""
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name cannot be empty")
        return value


class TransferAdminSerializer(serializers.Serializer):
    """Serializer for handing the admin role to another participant."""

    user_id = serializers.IntegerField(help_text="Participant who becomes admin")


def conversation_payload(conversation: Conversation, user: User | None = None) -> dict:
    """
    Serialize a conversation for a websocket event.

    Reloads the conversation with its participants so computed fields are
    current. Must run in a synchronous (database) context.
    """
    conversation = (
        Conversation.objects.select_related("latest_message", "latest_message__sender")
        .prefetch_related("participants__user")
        .get(pk=conversation.pk)
    )
    context = {"user_id": user.id} if user is not None else {}
    return ConversationListSerializer(conversation, context=context).data
