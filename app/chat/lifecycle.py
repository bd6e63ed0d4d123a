"""
Group lifecycle over the realtime channel.

Wraps ConversationService and ParticipantService with the broadcasts that
keep connected clients in sync:

    start_direct        conversation_created -> both users
    create_group        group_created -> every participant
    add_participant     receive_message (system) + participant_added -> room,
                        added_to_group -> added user
    remove_participant  force-leave + removed_from_group -> removed user,
                        receive_message (system) + participant_removed -> room
    join_public         receive_message (system) + participant_added -> room
    update_metadata     conversation_updated (+ renamed system message) -> room
    transfer_admin      receive_message (system) + conversation_updated -> room
    set_moderator       conversation_updated -> room
    delete_conversation conversation_deleted -> every former participant

Database work and serialization run together in one worker-thread call;
broadcasting happens afterwards on the event loop. A failed broadcast is
logged and never undoes the committed change.
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer

from chat import events
from chat.events import ServerEvent
from chat.rooms import RoomMembershipManager
from chat.serializers import MessageSerializer, conversation_payload
from chat.services import ConversationService, MembershipChange, ParticipantService
from core.services import ServiceResult

logger = logging.getLogger(__name__)


class GroupLifecycleManager:
    """
    Conversation and membership operations with realtime side effects.

    Every method returns the ServiceResult of the underlying service; on
    success its data is a dict holding the serialized conversation (and,
    where one was recorded, the serialized system message).
    """

    def __init__(self, rooms: RoomMembershipManager, channel_layer=None):
        self.rooms = rooms
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def start_direct(self, user_id: int, other_user_id: int) -> ServiceResult[dict]:
        """Find or create a direct conversation and announce it to both users."""
        result = await database_sync_to_async(self._start_direct)(user_id, other_user_id)
        if not result:
            return result

        for target_id in (user_id, other_user_id):
            await self._to_user(
                target_id,
                ServerEvent.CONVERSATION_CREATED,
                {"conversation": result.data["conversation"]},
            )
        return result

    def _start_direct(self, user_id: int, other_user_id: int) -> ServiceResult[dict]:
        result = ConversationService.find_or_create_direct(user_id, other_user_id)
        if not result:
            return result
        return ServiceResult.success({"conversation": conversation_payload(result.data)})

    async def create_group(
        self,
        creator_id: int,
        name: str,
        participant_ids: list[int] | None = None,
        **metadata,
    ) -> ServiceResult[dict]:
        """Create a group or club and announce it to every participant."""
        result = await database_sync_to_async(self._create_group)(
            creator_id, name, participant_ids, metadata
        )
        if not result:
            return result

        for target_id in result.data["conversation"]["participant_ids"]:
            await self._to_user(
                target_id,
                ServerEvent.GROUP_CREATED,
                {"conversation": result.data["conversation"]},
            )
        return result

    def _create_group(
        self,
        creator_id: int,
        name: str,
        participant_ids: list[int] | None,
        metadata: dict,
    ) -> ServiceResult[dict]:
        result = ConversationService.create_group(
            creator_id=creator_id,
            name=name,
            participant_ids=participant_ids,
            **metadata,
        )
        if not result:
            return result
        return ServiceResult.success({"conversation": conversation_payload(result.data)})

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    async def add_participant(
        self,
        conversation_id: int,
        actor_id: int,
        user_id: int,
    ) -> ServiceResult[dict]:
        """Add a user to a group; the added user is told so they can join the room."""
        result = await database_sync_to_async(self._membership)(
            ParticipantService.add_participant, conversation_id, actor_id, user_id
        )
        if not result:
            return result

        await self._system_message(conversation_id, result.data)
        await self._to_room(
            conversation_id,
            ServerEvent.PARTICIPANT_ADDED,
            {"conversationId": conversation_id, "userId": user_id, "addedBy": actor_id},
        )
        await self._to_user(
            user_id,
            ServerEvent.ADDED_TO_GROUP,
            {"conversation": result.data["conversation"]},
        )
        return result

    async def remove_participant(
        self,
        conversation_id: int,
        actor_id: int,
        user_id: int,
    ) -> ServiceResult[dict]:
        """
        Remove a user from a group (or let them leave).

        The removed user's room connections are force-left: locally right
        away, and on other processes through their personal channel, where
        each connection also receives removed_from_group.
        """
        result = await database_sync_to_async(self._membership)(
            ParticipantService.remove_participant, conversation_id, actor_id, user_id
        )
        if not result:
            return result

        await self.rooms.force_leave(user_id, conversation_id)
        try:
            await events.force_leave(
                user_id, conversation_id, removed_by=actor_id, channel_layer=self.channel_layer
            )
        except Exception:
            logger.exception(
                f"Failed to force user {user_id} out of conversation {conversation_id}"
            )

        if result.data["conversation_deleted"]:
            await self.rooms.close_room(conversation_id)
            return result

        await self._system_message(conversation_id, result.data)
        await self._to_room(
            conversation_id,
            ServerEvent.PARTICIPANT_REMOVED,
            {"conversationId": conversation_id, "userId": user_id, "removedBy": actor_id},
        )
        if result.data["new_admin_id"] is not None:
            await self._to_room(
                conversation_id,
                ServerEvent.CONVERSATION_UPDATED,
                {"conversation": result.data["conversation"]},
            )
        return result

    async def join_public(self, conversation_id: int, user_id: int) -> ServiceResult[dict]:
        """Join a public group or club."""
        result = await database_sync_to_async(self._membership)(
            ParticipantService.join_public, conversation_id, user_id
        )
        if not result:
            return result

        await self._system_message(conversation_id, result.data)
        await self._to_room(
            conversation_id,
            ServerEvent.PARTICIPANT_ADDED,
            {"conversationId": conversation_id, "userId": user_id, "addedBy": user_id},
        )
        return result

    async def transfer_admin(
        self,
        conversation_id: int,
        actor_id: int,
        new_admin_id: int,
    ) -> ServiceResult[dict]:
        """Hand the admin role to another participant."""
        result = await database_sync_to_async(self._membership)(
            ParticipantService.transfer_admin, conversation_id, actor_id, new_admin_id
        )
        if not result:
            return result

        await self._system_message(conversation_id, result.data)
        await self._to_room(
            conversation_id,
            ServerEvent.CONVERSATION_UPDATED,
            {"conversation": result.data["conversation"]},
        )
        return result

    async def set_moderator(
        self,
        conversation_id: int,
        actor_id: int,
        user_id: int,
        is_moderator: bool,
    ) -> ServiceResult[dict]:
        """Grant or revoke the moderator role."""
        result = await database_sync_to_async(self._set_moderator)(
            conversation_id, actor_id, user_id, is_moderator
        )
        if not result:
            return result

        await self._to_room(
            conversation_id,
            ServerEvent.CONVERSATION_UPDATED,
            {"conversation": result.data["conversation"]},
        )
        return result

    def _set_moderator(
        self,
        conversation_id: int,
        actor_id: int,
        user_id: int,
        is_moderator: bool,
    ) -> ServiceResult[dict]:
        result = ParticipantService.set_moderator(
            conversation_id, actor_id, user_id, is_moderator
        )
        if not result:
            return result
        return ServiceResult.success(
            {"conversation": conversation_payload(result.data.conversation)}
        )

    def _membership(self, operation, *args) -> ServiceResult[dict]:
        result = operation(*args)
        if not result:
            return result
        change: MembershipChange = result.data
        return ServiceResult.success(
            {
                "conversation": (
                    conversation_payload(change.conversation)
                    if change.conversation is not None
                    else None
                ),
                "system_message": (
                    MessageSerializer(change.system_message).data
                    if change.system_message is not None
                    else None
                ),
                "new_admin_id": change.new_admin_id,
                "conversation_deleted": change.conversation_deleted,
            }
        )

    # -------------------------------------------------------------------------
    # Metadata and deletion
    # -------------------------------------------------------------------------

    async def update_metadata(
        self,
        conversation_id: int,
        user_id: int,
        **changes,
    ) -> ServiceResult[dict]:
        """Update group metadata (admin only)."""
        result = await database_sync_to_async(self._update_metadata)(
            conversation_id, user_id, changes
        )
        if not result:
            return result

        if result.data["changed_fields"]:
            await self._system_message(conversation_id, result.data)
            await self._to_room(
                conversation_id,
                ServerEvent.CONVERSATION_UPDATED,
                {"conversation": result.data["conversation"]},
            )
        return result

    def _update_metadata(
        self,
        conversation_id: int,
        user_id: int,
        changes: dict,
    ) -> ServiceResult[dict]:
        result = ConversationService.update_metadata(conversation_id, user_id, **changes)
        if not result:
            return result
        change = result.data
        return ServiceResult.success(
            {
                "conversation": conversation_payload(change.conversation),
                "changed_fields": change.changed_fields,
                "system_message": (
                    MessageSerializer(change.system_message).data
                    if change.system_message is not None
                    else None
                ),
            }
        )

    async def delete_conversation(
        self,
        conversation_id: int,
        user_id: int,
    ) -> ServiceResult[list[int]]:
        """Delete a conversation and tell every former participant."""
        result = await database_sync_to_async(ConversationService.delete_conversation)(
            conversation_id, user_id
        )
        if not result:
            return result

        for target_id in result.data:
            await self._to_user(
                target_id,
                ServerEvent.CONVERSATION_DELETED,
                {"conversationId": conversation_id, "deletedBy": user_id},
            )
        await self.rooms.close_room(conversation_id)
        return result

    # -------------------------------------------------------------------------
    # Broadcast helpers
    # -------------------------------------------------------------------------

    async def _system_message(self, conversation_id: int, data: dict) -> None:
        if data.get("system_message") is not None:
            await self._to_room(
                conversation_id,
                ServerEvent.RECEIVE_MESSAGE,
                {"message": data["system_message"]},
            )

    async def _to_room(self, conversation_id: int, event: str, payload: dict) -> None:
        try:
            await events.room_event(
                conversation_id, event, payload, channel_layer=self.channel_layer
            )
        except Exception:
            logger.exception(f"Failed to send {event} to conversation {conversation_id}")

    async def _to_user(self, user_id: int, event: str, payload: dict) -> None:
        try:
            await events.user_event(user_id, event, payload, channel_layer=self.channel_layer)
        except Exception:
            logger.exception(f"Failed to send {event} to user {user_id}")
