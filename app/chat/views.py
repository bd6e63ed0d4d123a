"""
ViewSets for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: Conversation CRUD and actions
- ParticipantViewSet: Participant management (nested under conversation)
- MessageViewSet: Message operations (nested under conversation)

URL Structure:
    /api/v1/chat/conversations/                              GET, POST
    /api/v1/chat/conversations/{id}/                         GET, PATCH, DELETE
    /api/v1/chat/conversations/{id}/read/                    POST
    /api/v1/chat/conversations/{id}/join/                    POST
    /api/v1/chat/conversations/{id}/transfer-admin/          POST
    /api/v1/chat/conversations/{id}/participants/            GET, POST
    /api/v1/chat/conversations/{id}/participants/{user_id}/  PATCH, DELETE
    /api/v1/chat/conversations/{id}/messages/                GET, POST
    /api/v1/chat/conversations/{id}/messages/search/         GET
    /api/v1/chat/conversations/{id}/messages/{pk}/           DELETE
    /api/v1/chat/conversations/{id}/messages/{pk}/read/      PUT

Design Decisions:
    - All operations use the service layer for business logic
    - Service failures map to HTTP status by error code:
      NOT_FOUND -> 404, NOT_AUTHORIZED -> 403, anything else -> 400
    - Changes made over REST are broadcast to connected websocket clients
      on a best-effort basis; a failed broadcast never fails the request
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from chat.constants import MESSAGE_CONFIG
from chat.events import ServerEvent, publish_force_leave, publish_to_room, publish_to_user
from chat.models import Conversation, ConversationType, Participant
from chat.pagination import ConversationCursorPagination, MessageHistoryPagination
from chat.permissions import IsConversationAdmin, IsConversationParticipant
from chat.serializers import (
    ConversationCreateSerializer,
    ConversationDetailSerializer,
    ConversationListSerializer,
    ConversationUpdateSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    ParticipantCreateSerializer,
    ParticipantSerializer,
    ParticipantUpdateSerializer,
    TransferAdminSerializer,
    conversation_payload,
)
from chat.services import (
    ConversationService,
    MembershipChange,
    MessageService,
    ParticipantService,
)
from core.services import ErrorCode, ServiceResult

ERROR_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.NOT_AUTHORIZED: status.HTTP_403_FORBIDDEN,
}


def error_response(result: ServiceResult) -> Response:
    """Turn a failed ServiceResult into an error response."""
    return Response(
        result.to_response(),
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


def _publish_system_message(conversation_id: int, message) -> None:
    if message is not None:
        publish_to_room(
            conversation_id,
            ServerEvent.RECEIVE_MESSAGE,
            {"message": MessageSerializer(message).data},
        )


def _publish_conversation_updated(conversation: Conversation) -> None:
    publish_to_room(
        conversation.id,
        ServerEvent.CONVERSATION_UPDATED,
        {"conversation": conversation_payload(conversation)},
    )


def _detail_response(conversation_id: int, request, status_code: int = status.HTTP_200_OK):
    conversation = (
        Conversation.objects.select_related("latest_message", "latest_message__sender")
        .prefetch_related("participants__user")
        .get(pk=conversation_id)
    )
    serializer = ConversationDetailSerializer(conversation, context={"request": request})
    return Response(serializer.data, status=status_code)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        tags=["Chat - Conversations"],
    ),
    create=extend_schema(
        operation_id="create_conversation",
        summary="Create conversation",
        request=ConversationCreateSerializer,
        responses={201: ConversationDetailSerializer},
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        tags=["Chat - Conversations"],
    ),
    partial_update=extend_schema(
        operation_id="update_conversation",
        summary="Update conversation",
        request=ConversationUpdateSerializer,
        responses={200: ConversationDetailSerializer},
        tags=["Chat - Conversations"],
    ),
    destroy=extend_schema(
        operation_id="delete_conversation",
        summary="Delete conversation",
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(viewsets.GenericViewSet):
    """
    ViewSet for conversation operations.

    list:
        Get all conversations of the current user, most recently active
        first, with unread counts and the latest message.

    create:
        Create a conversation.
        For direct: returns the existing conversation if there is one.
        For group/club: creates a new one with the caller as admin.

    retrieve:
        Get conversation details including all participants.

    partial_update:
        Update name, description, category, avatar or visibility.
        Admin only.

    destroy:
        Delete the conversation and its messages.
        Admin only for groups and clubs; either user for direct chats.

    read:
        Mark every message of the conversation as read.

    join:
        Join a public group or club.

    transfer_admin:
        Hand the admin role to another participant.
    """

    permission_classes = [IsAuthenticated]
    pagination_class = ConversationCursorPagination
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        """Conversations the current user participates in."""
        if not self.request.user.is_authenticated:
            return Conversation.objects.none()
        return ConversationService.get_user_conversations(self.request.user.id)

    def get_serializer_class(self):
        """Return appropriate serializer based on action."""
        if self.action == "list":
            return ConversationListSerializer
        if self.action == "create":
            return ConversationCreateSerializer
        if self.action == "partial_update":
            return ConversationUpdateSerializer
        if self.action == "transfer_admin":
            return TransferAdminSerializer
        return ConversationDetailSerializer

    def get_permissions(self):
        """Return permissions based on action."""
        if self.action == "transfer_admin":
            return [IsAuthenticated(), IsConversationAdmin()]
        if self.action in ("retrieve", "partial_update", "destroy", "read"):
            return [IsAuthenticated(), IsConversationParticipant()]
        return [IsAuthenticated()]

    def list(self, request):
        """List the user's conversations."""
        page = self.paginate_queryset(self.get_queryset())
        serializer = ConversationListSerializer(page, many=True, context={"request": request})
        return self.get_paginated_response(serializer.data)

    def create(self, request):
        """Create a conversation (direct, group or club)."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data["conversation_type"] == ConversationType.DIRECT:
            result = ConversationService.find_or_create_direct(
                request.user.id, data["participant_ids"][0]
            )
            event = ServerEvent.CONVERSATION_CREATED
        else:
            result = ConversationService.create_group(
                creator_id=request.user.id,
                name=data["name"],
                participant_ids=data["participant_ids"],
                conversation_type=data["conversation_type"],
                description=data["description"],
                category=data["category"],
                is_public=data["is_public"],
                avatar=data["avatar"],
            )
            event = ServerEvent.GROUP_CREATED

        if not result:
            return error_response(result)

        conversation = result.data
        payload = {"conversation": conversation_payload(conversation)}
        for user_id in payload["conversation"]["participant_ids"]:
            publish_to_user(user_id, event, payload)

        return _detail_response(conversation.id, request, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        """Get conversation details."""
        conversation = self.get_object()
        serializer = ConversationDetailSerializer(conversation, context={"request": request})
        return Response(serializer.data)

    def partial_update(self, request, pk=None):
        """Update group or club metadata."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ConversationService.update_metadata(
            int(pk), request.user.id, **serializer.validated_data
        )
        if not result:
            return error_response(result)

        change = result.data
        if change.changed_fields:
            _publish_system_message(change.conversation.id, change.system_message)
            _publish_conversation_updated(change.conversation)

        return _detail_response(change.conversation.id, request)

    def destroy(self, request, pk=None):
        """Delete the conversation with all its messages."""
        conversation_id = int(pk)
        result = ConversationService.delete_conversation(conversation_id, request.user.id)
        if not result:
            return error_response(result)

        for user_id in result.data:
            publish_to_user(
                user_id,
                ServerEvent.CONVERSATION_DELETED,
                {"conversationId": conversation_id, "deletedBy": request.user.id},
            )
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        request=None,
        responses={200: OpenApiTypes.OBJECT},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        """Mark every message of the conversation as read."""
        conversation_id = int(pk)
        result = MessageService.mark_read(conversation_id, request.user.id)
        if not result:
            return error_response(result)

        if result.data.changed:
            publish_to_room(
                conversation_id,
                ServerEvent.MESSAGES_READ,
                {"conversationId": conversation_id, "userId": request.user.id},
            )
        return Response({"status": "read", "marked_count": result.data.marked_count})

    @extend_schema(
        operation_id="join_conversation",
        summary="Join public conversation",
        request=None,
        responses={
            200: ConversationDetailSerializer,
            403: OpenApiResponse(description="Conversation is not public"),
            404: OpenApiResponse(description="Conversation not found"),
        },
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def join(self, request, pk=None):
        """Join a public group or club."""
        conversation_id = int(pk)
        result = ParticipantService.join_public(conversation_id, request.user.id)
        if not result:
            return error_response(result)

        change = result.data
        _publish_system_message(conversation_id, change.system_message)
        publish_to_room(
            conversation_id,
            ServerEvent.PARTICIPANT_ADDED,
            {
                "conversationId": conversation_id,
                "userId": request.user.id,
                "addedBy": request.user.id,
            },
        )
        return _detail_response(conversation_id, request)

    @extend_schema(
        operation_id="transfer_conversation_admin",
        summary="Transfer admin role",
        request=TransferAdminSerializer,
        responses={200: ConversationDetailSerializer},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"], url_path="transfer-admin")
    def transfer_admin(self, request, pk=None):
        """Hand the admin role to another participant."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ParticipantService.transfer_admin(
            int(pk), request.user.id, serializer.validated_data["user_id"]
        )
        if not result:
            return error_response(result)

        change = result.data
        _publish_system_message(change.conversation_id, change.system_message)
        _publish_conversation_updated(change.conversation)
        return _detail_response(change.conversation_id, request)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_participants",
        summary="List participants",
        tags=["Chat - Participants"],
    ),
    create=extend_schema(
        operation_id="add_participant",
        summary="Add participant",
        request=ParticipantCreateSerializer,
        responses={201: ParticipantSerializer},
        tags=["Chat - Participants"],
    ),
    partial_update=extend_schema(
        operation_id="update_participant",
        summary="Grant or revoke moderator role",
        request=ParticipantUpdateSerializer,
        responses={200: ParticipantSerializer},
        tags=["Chat - Participants"],
    ),
    destroy=extend_schema(
        operation_id="remove_participant",
        summary="Remove participant or leave",
        tags=["Chat - Participants"],
    ),
)
class ParticipantViewSet(viewsets.GenericViewSet):
    """
    ViewSet for participant operations within a conversation.

    Participants are addressed by user id.

    list:
        Get all participants of the conversation.

    create:
        Add a participant to a group or club.
        Requires the admin or moderator role.

    partial_update:
        Grant or revoke the moderator role. Admin only.

    destroy:
        Remove a participant (admin), or leave (your own user id).
    """

    permission_classes = [IsAuthenticated, IsConversationParticipant]
    serializer_class = ParticipantSerializer

    def get_queryset(self):
        """Participants of the conversation in the URL."""
        return (
            Participant.objects.filter(conversation_id=self.kwargs["conversation_pk"])
            .select_related("user")
            .order_by("created_at", "id")
        )

    def get_serializer_class(self):
        """Return appropriate serializer based on action."""
        if self.action == "create":
            return ParticipantCreateSerializer
        if self.action == "partial_update":
            return ParticipantUpdateSerializer
        return ParticipantSerializer

    def list(self, request, conversation_pk=None):
        """List participants."""
        serializer = ParticipantSerializer(self.get_queryset(), many=True)
        return Response(serializer.data)

    def create(self, request, conversation_pk=None):
        """Add a participant to the conversation."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user_id = serializer.validated_data["user_id"]

        result = ParticipantService.add_participant(conversation_pk, request.user.id, user_id)
        if not result:
            return error_response(result)

        change: MembershipChange = result.data
        _publish_system_message(conversation_pk, change.system_message)
        publish_to_room(
            conversation_pk,
            ServerEvent.PARTICIPANT_ADDED,
            {"conversationId": conversation_pk, "userId": user_id, "addedBy": request.user.id},
        )
        publish_to_user(
            user_id,
            ServerEvent.ADDED_TO_GROUP,
            {"conversation": conversation_payload(change.conversation)},
        )

        participant = self.get_queryset().get(user_id=user_id)
        return Response(ParticipantSerializer(participant).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, conversation_pk=None, user_id=None):
        """Grant or revoke the moderator role."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ParticipantService.set_moderator(
            conversation_pk,
            request.user.id,
            user_id,
            serializer.validated_data["is_moderator"],
        )
        if not result:
            return error_response(result)

        _publish_conversation_updated(result.data.conversation)
        return Response(ParticipantSerializer(result.data).data)

    def destroy(self, request, conversation_pk=None, user_id=None):
        """Remove a participant, or leave when user_id is the caller."""
        result = ParticipantService.remove_participant(conversation_pk, request.user.id, user_id)
        if not result:
            return error_response(result)

        change: MembershipChange = result.data
        publish_force_leave(user_id, conversation_pk, request.user.id)

        if not change.conversation_deleted:
            _publish_system_message(conversation_pk, change.system_message)
            publish_to_room(
                conversation_pk,
                ServerEvent.PARTICIPANT_REMOVED,
                {
                    "conversationId": conversation_pk,
                    "userId": user_id,
                    "removedBy": request.user.id,
                },
            )
            if change.new_admin_id is not None:
                _publish_conversation_updated(change.conversation)

        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_messages",
        summary="List messages",
        parameters=[
            OpenApiParameter(
                name="before",
                type=OpenApiTypes.DATETIME,
                location=OpenApiParameter.QUERY,
                description="Only messages sent before this time",
            ),
            OpenApiParameter(
                name="limit",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Messages per page (default 50, max 100)",
            ),
            OpenApiParameter(
                name="page",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Page number, counted from the newest message",
            ),
        ],
        tags=["Chat - Messages"],
    ),
    create=extend_schema(
        operation_id="send_message",
        summary="Send message",
        request=MessageCreateSerializer,
        responses={201: MessageSerializer},
        tags=["Chat - Messages"],
    ),
    destroy=extend_schema(
        operation_id="delete_message",
        summary="Delete message",
        tags=["Chat - Messages"],
    ),
)
class MessageViewSet(viewsets.GenericViewSet):
    """
    ViewSet for message operations within a conversation.

    list:
        Message history, one page at a time. Deleted messages stay in the
        history as tombstones.

    create:
        Send a message. Connected room members receive it over the
        websocket; absent users are not notified from REST.

    destroy:
        Soft delete a message. Only the sender can delete.

    read:
        Mark one message as read.

    search:
        Search text messages of the conversation.
    """

    permission_classes = [IsAuthenticated, IsConversationParticipant]
    pagination_class = MessageHistoryPagination
    serializer_class = MessageSerializer

    def get_serializer_class(self):
        """Return appropriate serializer based on action."""
        if self.action == "create":
            return MessageCreateSerializer
        return MessageSerializer

    def list(self, request, conversation_pk=None):
        """Page through the conversation's history."""
        params = self.paginator.get_params(request)
        result = MessageService.get_history(conversation_pk, request.user.id, **params)
        if not result:
            return error_response(result)

        serializer = MessageSerializer(result.data.messages, many=True)
        return self.paginator.get_paginated_response(serializer.data, result.data)

    def create(self, request, conversation_pk=None):
        """Send a message."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = MessageService.send_message(
            conversation_id=conversation_pk,
            sender_id=request.user.id,
            content=serializer.validated_data["content"],
            message_type=serializer.validated_data["message_type"],
            attachment=serializer.get_attachment() or None,
        )
        if not result:
            return error_response(result)

        data = MessageSerializer(result.data.message).data
        publish_to_room(conversation_pk, ServerEvent.RECEIVE_MESSAGE, {"message": data})
        return Response(data, status=status.HTTP_201_CREATED)

    def destroy(self, request, conversation_pk=None, pk=None):
        """Soft delete a message."""
        result = MessageService.delete_message(pk, request.user.id, conversation_id=conversation_pk)
        if not result:
            return error_response(result)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="mark_message_read",
        summary="Mark message as read",
        request=None,
        responses={200: OpenApiTypes.OBJECT},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["put"])
    def read(self, request, conversation_pk=None, pk=None):
        """Mark a single message as read."""
        result = MessageService.mark_message_read(
            pk, request.user.id, conversation_id=conversation_pk
        )
        if not result:
            return error_response(result)

        if result.data.changed:
            publish_to_room(
                conversation_pk,
                ServerEvent.MESSAGES_READ,
                {"conversationId": conversation_pk, "userId": request.user.id},
            )
        return Response({"status": "read", "marked_count": result.data.marked_count})

    @extend_schema(
        operation_id="search_messages",
        summary="Search messages",
        parameters=[
            OpenApiParameter(
                name="q",
                type=str,
                location=OpenApiParameter.QUERY,
                required=True,
                description="Search query",
            ),
            OpenApiParameter(
                name="limit",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Maximum results (default 20, max 100)",
            ),
        ],
        responses={
            200: MessageSerializer(many=True),
            400: OpenApiResponse(description="Missing or invalid query"),
        },
        tags=["Chat - Messages"],
    )
    @action(detail=False, methods=["get"])
    def search(self, request, conversation_pk=None):
        """Search text messages, newest first."""
        try:
            limit = int(request.query_params.get("limit", MESSAGE_CONFIG.SEARCH_DEFAULT_LIMIT))
        except ValueError:
            return Response(
                {"error": "limit must be an integer", "error_code": ErrorCode.VALIDATION_ERROR},
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = MessageService.search(
            conversation_pk, request.user.id, request.query_params.get("q"), limit=limit
        )
        if not result:
            return error_response(result)

        serializer = MessageSerializer(result.data, many=True)
        return Response({"results": serializer.data, "count": len(serializer.data)})
