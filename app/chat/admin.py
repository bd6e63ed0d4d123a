"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation management
- Participant viewing
- Message moderation
"""

from django.contrib import admin

from chat.models import (
    Conversation,
    DirectConversationPair,
    Message,
    MessageRead,
    Participant,
)


class ParticipantInline(admin.TabularInline):
    """Inline display of participants in conversation admin."""

    model = Participant
    extra = 0
    readonly_fields = ["created_at", "unread_count"]
    raw_id_fields = ["user"]


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = [
        "id",
        "conversation_type",
        "name",
        "category",
        "is_public",
        "is_official",
        "member_count",
        "updated_at",
    ]
    list_filter = ["conversation_type", "category", "is_public", "is_official"]
    search_fields = ["name", "id"]
    readonly_fields = ["created_at", "updated_at", "latest_message"]
    inlines = [ParticipantInline]
    ordering = ["-updated_at"]


@admin.register(DirectConversationPair)
class DirectConversationPairAdmin(admin.ModelAdmin):
    """Admin interface for DirectConversationPair model."""

    list_display = ["conversation", "user_lower", "user_higher"]
    raw_id_fields = ["conversation", "user_lower", "user_higher"]


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    """Admin interface for Participant model."""

    list_display = [
        "id",
        "conversation",
        "user",
        "role",
        "unread_count",
        "created_at",
    ]
    list_filter = ["role", "created_at"]
    search_fields = ["user__email", "user__username", "conversation__name"]
    readonly_fields = ["created_at", "updated_at"]
    raw_id_fields = ["conversation", "user"]
    ordering = ["-created_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "message_type",
        "system_event",
        "content_preview",
        "is_deleted",
        "created_at",
    ]
    list_filter = ["message_type", "system_event", "is_deleted", "created_at"]
    search_fields = ["content", "sender__email", "sender__username"]
    readonly_fields = ["created_at", "updated_at", "deleted_at"]
    raw_id_fields = ["conversation", "sender"]
    ordering = ["-created_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated content for list display."""
        max_length = 50
        if len(obj.content) > max_length:
            return obj.content[:max_length] + "..."
        return obj.content


@admin.register(MessageRead)
class MessageReadAdmin(admin.ModelAdmin):
    """Admin interface for read receipts."""

    list_display = ["id", "message", "user", "read_at"]
    raw_id_fields = ["message", "user"]
    ordering = ["-read_at"]
