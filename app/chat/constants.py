"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, history paging, search)
- Conversation metadata limits
- Real-time group naming and event names

Import example:
    from chat.constants import MESSAGE_CONFIG, REALTIME_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 5000  # Characters

    # Tombstone left behind by a soft delete
    DELETED_PLACEHOLDER: Final[str] = "This message was deleted"

    # History paging (REST fallback path)
    HISTORY_DEFAULT_LIMIT: Final[int] = 50
    HISTORY_MAX_LIMIT: Final[int] = 100

    # Search settings
    SEARCH_MIN_QUERY_LENGTH: Final[int] = 1
    SEARCH_DEFAULT_LIMIT: Final[int] = 20
    SEARCH_MAX_LIMIT: Final[int] = 100

    # Length of the content preview carried by notifications
    PREVIEW_LENGTH: Final[int] = 100


# =============================================================================
# Conversation Configuration
# =============================================================================


class CONVERSATION_CONFIG:
    """Configuration for conversation metadata."""

    MAX_NAME_LENGTH: Final[int] = 100
    MAX_DESCRIPTION_LENGTH: Final[int] = 500


# =============================================================================
# Real-time Configuration
# =============================================================================


class REALTIME_CONFIG:
    """
    Channel layer group names and websocket close codes.

    Every connection joins PRESENCE_GROUP and its owner's personal group;
    joining a conversation adds it to that conversation's room group.
    """

    PRESENCE_GROUP: Final[str] = "presence"
    ROOM_GROUP_PREFIX: Final[str] = "conversation_"
    USER_GROUP_PREFIX: Final[str] = "user_"

    CLOSE_UNAUTHENTICATED: Final[int] = 4001

    @staticmethod
    def room_group(conversation_id) -> str:
        """Channel layer group for a conversation room."""
        return f"{REALTIME_CONFIG.ROOM_GROUP_PREFIX}{conversation_id}"

    @staticmethod
    def user_group(user_id) -> str:
        """Channel layer group reaching every connection of one user."""
        return f"{REALTIME_CONFIG.USER_GROUP_PREFIX}{user_id}"
