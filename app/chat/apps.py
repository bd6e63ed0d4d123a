"""
Chat application configuration.

This app provides the realtime messaging core:
- Direct, group and club conversations
- Role-based permissions (admin, moderator, member)
- Message fan-out over websockets with soft deletion
- Read receipts, unread counts and typing indicators
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
