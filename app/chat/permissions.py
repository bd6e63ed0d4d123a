"""
Permission classes for chat API.

This module provides DRF permission classes for the chat system:
- IsConversationParticipant: User is a participant of the conversation in the URL
- IsConversationAdmin: User holds the admin role of that conversation

Permission Hierarchy:
    ADMIN > MODERATOR > MEMBER

    ADMIN can:
        - All MODERATOR permissions
        - Update name/description/category/avatar/visibility
        - Remove participants
        - Grant and revoke the moderator role
        - Transfer the admin role
        - Delete the conversation

    MODERATOR can:
        - All MEMBER permissions
        - Add participants

    MEMBER can:
        - View conversation and history
        - Send messages
        - Delete own messages
        - Leave

Design Decisions:
    - Permissions check against Participant rows, not User
    - A missing conversation is a 404, a non-participant a 403
    - Denials use the same body as service failures:
      {"error": ..., "error_code": ...}
    - Role rules are enforced again by the services; these classes only
      fail fast before any work is done
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions
from rest_framework.exceptions import NotFound

from chat.models import Conversation, Participant, ParticipantRole
from core.services import ErrorCode

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


def _conversation_id_from_view(view: APIView) -> str | None:
    return view.kwargs.get("conversation_pk") or view.kwargs.get("pk")


class IsConversationParticipant(permissions.BasePermission):
    """
    Allows access only to participants of the conversation in the URL.

    Works for /conversations/{pk}/... and nested
    /conversations/{conversation_pk}/... routes.
    """

    message = {
        "error": "You are not a participant in this conversation",
        "error_code": ErrorCode.NOT_AUTHORIZED,
    }
    role_filter: dict = {}

    def has_permission(self, request: Request, view: APIView) -> bool:
        """Check the user's participant row for the URL's conversation."""
        if not request.user.is_authenticated:
            return False

        conversation_id = _conversation_id_from_view(view)
        if conversation_id is None:
            return True

        if not Conversation.objects.filter(pk=conversation_id).exists():
            raise NotFound(
                {"error": "Conversation not found", "error_code": ErrorCode.NOT_FOUND}
            )

        return Participant.objects.filter(
            conversation_id=conversation_id,
            user=request.user,
            **self.role_filter,
        ).exists()


class IsConversationAdmin(IsConversationParticipant):
    """Allows access only to the admin of the conversation in the URL."""

    message = {
        "error": "Only the admin can perform this action",
        "error_code": ErrorCode.NOT_AUTHORIZED,
    }
    role_filter = {"role": ParticipantRole.ADMIN}
