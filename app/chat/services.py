"""
Chat system service layer.

This module provides the business logic for campus messaging, encapsulating
all operations on conversations, participants, messages and read receipts.
Both the REST views and the websocket gateway call these services, so every
rule is enforced in one place.

Services:
    ConversationService: Conversation store (find-or-create direct, groups,
        listing, metadata, deletion)
    ParticipantService: Group lifecycle (add, remove, join, admin transfer,
        moderators)
    MessageService: Messages (send, history, search, soft delete, read state)

Design Principles:
    - Services are stateless (use class methods)
    - Services take ids, so they can be called from async consumers through
      database_sync_to_async without passing model instances across threads
    - Expected failures return ServiceResult.failure() with an ErrorCode
    - Unexpected failures raise exceptions
    - System messages are generated for membership and metadata events

Usage:
    from chat.services import ConversationService, MessageService

    result = ConversationService.find_or_create_direct(user_a.id, user_b.id)
    if result.success:
        conversation = result.data

    result = MessageService.send_message(
        conversation_id=conversation.id,
        sender_id=user_a.id,
        content="Are you going to the lab session?",
    )
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import DatabaseError, IntegrityError, connection
from django.db.models import F, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from chat.constants import CONVERSATION_CONFIG, MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationCategory,
    ConversationType,
    DirectConversationPair,
    Message,
    MessageRead,
    MessageType,
    Participant,
    ParticipantRole,
    SystemEvent,
)
from core.services import BaseService, ErrorCode, ServiceResult

if TYPE_CHECKING:
    from datetime import datetime

    from django.db.models import QuerySet

    from authentication.models import User


# =============================================================================
# Result payloads
# =============================================================================


@dataclass
class SentMessage:
    """
    Outcome of persisting a message.

    Attributes:
        message: The persisted message
        recipient_ids: Participants other than the sender
        summary_updated: False when the message was stored but the
            conversation summary (latest message, unread counts) could not be
            updated; the reconciliation task repairs it later
    """

    message: Message
    recipient_ids: list[int]
    summary_updated: bool = True


@dataclass
class ReadResult:
    """Outcome of marking messages read for one user."""

    conversation_id: int
    user_id: int
    marked_count: int

    @property
    def changed(self) -> bool:
        return self.marked_count > 0


@dataclass
class MembershipChange:
    """
    Outcome of a membership operation.

    Attributes:
        conversation_id: Conversation that changed
        user_id: User who joined, was added, left or was removed
        actor_id: User who performed the operation
        conversation: The conversation, or None once it has been deleted
        system_message: System message recorded for the event, if any
        new_admin_id: Set when the admin role changed hands
        conversation_deleted: True when the last participant left
        remaining_ids: Participants after the change
    """

    conversation_id: int
    user_id: int
    actor_id: int
    conversation: Conversation | None = None
    system_message: Message | None = None
    new_admin_id: int | None = None
    conversation_deleted: bool = False
    remaining_ids: list[int] = field(default_factory=list)


@dataclass
class MetadataChange:
    """Outcome of a metadata update."""

    conversation: Conversation
    changed_fields: list[str]
    system_message: Message | None = None


@dataclass
class HistoryPage:
    """One page of message history in chronological order."""

    messages: list[Message]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


def _not_found(what: str) -> ServiceResult:
    return ServiceResult.failure(f"{what} not found", error_code=ErrorCode.NOT_FOUND)


def _not_participant() -> ServiceResult:
    return ServiceResult.failure(
        "You are not a participant in this conversation",
        error_code=ErrorCode.NOT_AUTHORIZED,
    )


# =============================================================================
# ConversationService
# =============================================================================


class ConversationService(BaseService):
    """
    Service for the conversation store.

    Methods:
        get_conversation: Look up a conversation by id
        get_membership: Look up a conversation and the caller's participant row
        find_or_create_direct: Idempotent direct conversation between two users
        create_group: Create a group or club with the creator as admin
        get_user_conversations: A user's conversations, most recent first
        update_metadata: Change name/description/category/avatar/visibility
        delete_conversation: Delete a conversation and all of its messages
    """

    @classmethod
    def get_conversation(cls, conversation_id: int) -> ServiceResult[Conversation]:
        """
        Look up a conversation by id.

        Error codes:
            NOT_FOUND: Conversation does not exist
        """
        conversation = Conversation.objects.filter(pk=conversation_id).first()
        if conversation is None:
            return _not_found("Conversation")
        return ServiceResult.success(conversation)

    @classmethod
    def get_membership(
        cls,
        conversation_id: int,
        user_id: int,
    ) -> ServiceResult[Participant]:
        """
        Look up the participant row of a user in a conversation.

        The returned participant has its conversation loaded.

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: User is not a participant
        """
        result = cls.get_conversation(conversation_id)
        if not result:
            return result
        conversation = result.data

        participant = Participant.objects.filter(
            conversation=conversation, user_id=user_id
        ).first()
        if participant is None:
            return _not_participant()

        participant.conversation = conversation
        return ServiceResult.success(participant)

    @classmethod
    def _find_direct(cls, user_lower_id: int, user_higher_id: int) -> Conversation | None:
        pair = (
            DirectConversationPair.objects.select_related("conversation")
            .filter(user_lower_id=user_lower_id, user_higher_id=user_higher_id)
            .first()
        )
        return pair.conversation if pair else None

    @classmethod
    def find_or_create_direct(
        cls,
        user_a_id: int,
        user_b_id: int,
    ) -> ServiceResult[Conversation]:
        """
        Find or create the direct conversation between two users.

        The pair is canonicalized (lower id first), so the argument order does
        not matter. Two concurrent callers may both miss the lookup and try to
        create the conversation; the unique constraint on the canonical pair
        rejects the second insert and the loser re-reads the winner's row.

        Implementation:
            1. Validate users are different and exist
            2. Canonicalize order (lower user_id first)
            3. Look up existing DirectConversationPair
            4. If not found, create conversation, pair and participants in
               one transaction
            5. On a uniqueness violation, retry the lookup

        Args:
            user_a_id: One participant
            user_b_id: The other participant

        Returns:
            ServiceResult with Conversation (existing or new)

        Error codes:
            VALIDATION_ERROR: Both ids refer to the same user
            NOT_FOUND: Either user does not exist or is inactive
        """
        if user_a_id == user_b_id:
            return ServiceResult.failure(
                "Cannot create a direct conversation with yourself",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        User = get_user_model()
        if User.objects.filter(pk__in=[user_a_id, user_b_id], is_active=True).count() != 2:
            return _not_found("User")

        user_lower_id, user_higher_id = sorted((user_a_id, user_b_id))

        existing = cls._find_direct(user_lower_id, user_higher_id)
        if existing is not None:
            cls.get_logger().debug(
                f"Found existing direct conversation {existing.id} "
                f"between users {user_lower_id} and {user_higher_id}"
            )
            return ServiceResult.success(existing)

        try:
            with cls.atomic():
                conversation = Conversation.objects.create(
                    conversation_type=ConversationType.DIRECT,
                )
                DirectConversationPair.objects.create(
                    conversation=conversation,
                    user_lower_id=user_lower_id,
                    user_higher_id=user_higher_id,
                )
                Participant.objects.bulk_create(
                    [
                        Participant(conversation=conversation, user_id=user_lower_id),
                        Participant(conversation=conversation, user_id=user_higher_id),
                    ]
                )
        except IntegrityError:
            existing = cls._find_direct(user_lower_id, user_higher_id)
            if existing is None:
                raise
            cls.get_logger().info(
                f"Concurrent creation of direct conversation between users "
                f"{user_lower_id} and {user_higher_id}; using {existing.id}"
            )
            return ServiceResult.success(existing)

        cls.get_logger().info(
            f"Created direct conversation {conversation.id} "
            f"between users {user_lower_id} and {user_higher_id}"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def _validate_metadata(
        cls,
        name: str | None = None,
        description: str | None = None,
        category: str | None = None,
    ) -> ServiceResult | None:
        errors: dict[str, list[str]] = {}
        if name is not None:
            if not name.strip():
                errors["name"] = ["This field is required."]
            elif len(name.strip()) > CONVERSATION_CONFIG.MAX_NAME_LENGTH:
                errors["name"] = [
                    f"Ensure this field has no more than {CONVERSATION_CONFIG.MAX_NAME_LENGTH} characters."
                ]
        if description is not None and len(description) > CONVERSATION_CONFIG.MAX_DESCRIPTION_LENGTH:
            errors["description"] = [
                f"Ensure this field has no more than {CONVERSATION_CONFIG.MAX_DESCRIPTION_LENGTH} characters."
            ]
        if category and category not in ConversationCategory.values:
            errors["category"] = [f'"{category}" is not a valid choice.']

        if errors:
            return ServiceResult.failure(
                "Invalid conversation details",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors=errors,
            )
        return None

    @classmethod
    def create_group(
        cls,
        creator_id: int,
        name: str,
        participant_ids: list[int] | None = None,
        conversation_type: str = ConversationType.GROUP,
        description: str = "",
        category: str | None = None,
        is_public: bool = False,
        avatar: str = "",
        is_official: bool = False,
    ) -> ServiceResult[Conversation]:
        """
        Create a new group or club conversation.

        The creator becomes the admin and is always a participant, whether or
        not they appear in participant_ids. A GROUP_CREATED system message
        records the event.

        Args:
            creator_id: User creating the group (becomes admin)
            name: Required name (cannot be blank)
            participant_ids: Other users to add as members
            conversation_type: GROUP or CLUB
            description, category, is_public, avatar, is_official: Metadata

        Returns:
            ServiceResult with new Conversation

        Error codes:
            VALIDATION_ERROR: Blank/oversized name, bad category or type
            NOT_FOUND: Creator or a listed participant does not exist
        """
        if conversation_type not in (ConversationType.GROUP, ConversationType.CLUB):
            return ServiceResult.failure(
                "Conversation type must be group or club",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        name = name or ""
        validation = cls._validate_metadata(
            name=name, description=description or "", category=category
        )
        if validation:
            return validation

        User = get_user_model()
        creator = User.objects.filter(pk=creator_id, is_active=True).first()
        if creator is None:
            return _not_found("User")

        member_ids = list(dict.fromkeys(uid for uid in participant_ids or [] if uid != creator_id))
        if User.objects.filter(pk__in=member_ids, is_active=True).count() != len(member_ids):
            return _not_found("User")

        with cls.atomic():
            conversation = Conversation.objects.create(
                conversation_type=conversation_type,
                name=name.strip(),
                description=description or "",
                category=category or None,
                is_public=is_public,
                avatar=avatar or "",
                is_official=is_official,
            )

            Participant.objects.create(
                conversation=conversation,
                user=creator,
                role=ParticipantRole.ADMIN,
            )
            Participant.objects.bulk_create(
                [
                    Participant(
                        conversation=conversation,
                        user_id=member_id,
                        role=ParticipantRole.MEMBER,
                    )
                    for member_id in member_ids
                ]
            )

            MessageService._create_system_message(
                conversation=conversation,
                event=SystemEvent.GROUP_CREATED,
                content=f'{creator.username} created "{conversation.name}"',
                actor=creator,
                metadata={"name": conversation.name},
            )

        cls.get_logger().info(
            f"Created {conversation_type} conversation {conversation.id} "
            f"'{conversation.name}' with {1 + len(member_ids)} participants"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def get_user_conversations(cls, user_id: int) -> QuerySet[Conversation]:
        """
        List the conversations a user participates in.

        Ordered by most recent activity first; participants and the latest
        message are prefetched for list rendering.
        """
        return (
            Conversation.objects.filter(participants__user_id=user_id)
            .select_related("latest_message", "latest_message__sender")
            .prefetch_related("participants__user")
            .order_by("-updated_at", "-id")
            .distinct()
        )

    @classmethod
    def update_metadata(
        cls,
        conversation_id: int,
        user_id: int,
        **changes,
    ) -> ServiceResult[MetadataChange]:
        """
        Update descriptive metadata of a group or club (admin only).

        Accepted keyword arguments: name, description, category, avatar,
        is_public. Unknown keys are ignored; a name change records a RENAMED
        system message.

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: Caller is not the admin
            INVALID_OPERATION: Conversation is direct
            VALIDATION_ERROR: Invalid field values
        """
        membership = cls.get_membership(conversation_id, user_id)
        if not membership:
            return membership
        participant = membership.data
        conversation = participant.conversation

        if conversation.is_direct:
            return ServiceResult.failure(
                "Direct conversations have no editable details",
                error_code=ErrorCode.INVALID_OPERATION,
            )
        if not participant.is_admin:
            return ServiceResult.failure(
                "Only the admin can update conversation details",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )

        allowed = ("name", "description", "category", "avatar", "is_public")
        updates = {key: value for key, value in changes.items() if key in allowed}

        validation = cls._validate_metadata(
            name=updates.get("name"),
            description=updates.get("description"),
            category=updates.get("category"),
        )
        if validation:
            return validation

        if "name" in updates:
            updates["name"] = updates["name"].strip()
        if "category" in updates:
            updates["category"] = updates["category"] or None

        old_name = conversation.name
        changed_fields = [
            key for key, value in updates.items() if getattr(conversation, key) != value
        ]
        if not changed_fields:
            return ServiceResult.success(MetadataChange(conversation, []))

        system_message = None
        with cls.atomic():
            for key in changed_fields:
                setattr(conversation, key, updates[key])
            conversation.save(update_fields=[*changed_fields, "updated_at"])

            if "name" in changed_fields:
                system_message = MessageService._create_system_message(
                    conversation=conversation,
                    event=SystemEvent.RENAMED,
                    content=f'{participant.user.username} renamed the group to "{conversation.name}"',
                    actor=participant.user,
                    metadata={
                        "old_name": old_name,
                        "new_name": conversation.name,
                        "changed_by_id": user_id,
                    },
                )

        cls.get_logger().info(
            f"User {user_id} updated {', '.join(changed_fields)} "
            f"of conversation {conversation.id}"
        )
        return ServiceResult.success(
            MetadataChange(conversation, changed_fields, system_message)
        )

    @classmethod
    def delete_conversation(
        cls,
        conversation_id: int,
        user_id: int,
    ) -> ServiceResult[list[int]]:
        """
        Delete a conversation together with every message it owns.

        Group and club conversations may only be deleted by their admin;
        either participant may delete a direct conversation. Messages are
        deleted before the conversation in the same transaction, so no
        message outlives its conversation.

        Returns:
            ServiceResult with the ids of the former participants

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: Caller is not a participant, or not the admin of
                a group/club
        """
        membership = cls.get_membership(conversation_id, user_id)
        if not membership:
            return membership
        participant = membership.data
        conversation = participant.conversation

        if conversation.is_group_like and not participant.is_admin:
            return ServiceResult.failure(
                "Only the admin can delete this conversation",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )

        participant_ids = conversation.participant_ids
        cls._delete_with_messages(conversation)

        cls.get_logger().info(
            f"User {user_id} deleted conversation {conversation_id}"
        )
        return ServiceResult.success(participant_ids)

    @classmethod
    def _delete_with_messages(cls, conversation: Conversation) -> int:
        with cls.atomic():
            Conversation.objects.filter(pk=conversation.pk).update(latest_message=None)
            deleted_messages, _ = Message.objects.filter(conversation=conversation).delete()
            conversation.delete()
        return deleted_messages


# =============================================================================
# ParticipantService
# =============================================================================


class ParticipantService(BaseService):
    """
    Service for group lifecycle operations.

    Methods:
        add_participant: Admin or moderator adds a user to a group/club
        remove_participant: Admin removes a user, or a user leaves
        join_public: Any user joins a public group/club
        transfer_admin: Admin hands the admin role to another participant
        set_moderator: Admin grants or revokes the moderator role

    Direct conversations have fixed membership; every operation here fails
    with INVALID_OPERATION on them.
    """

    @classmethod
    def _require_group(cls, conversation: Conversation) -> ServiceResult | None:
        if conversation.is_direct:
            return ServiceResult.failure(
                "Direct conversations have fixed membership",
                error_code=ErrorCode.INVALID_OPERATION,
            )
        return None

    @classmethod
    def add_participant(
        cls,
        conversation_id: int,
        actor_id: int,
        user_id: int,
    ) -> ServiceResult[MembershipChange]:
        """
        Add a user to a group or club conversation.

        Permission rules:
        - Admin and moderators can add members
        - Members cannot add anyone

        A MEMBER_ADDED system message is recorded and attributed to the actor.

        Args:
            conversation_id: Group or club conversation
            actor_id: User performing the action
            user_id: User to add

        Returns:
            ServiceResult with MembershipChange

        Error codes:
            NOT_FOUND: Conversation or user does not exist
            INVALID_OPERATION: Direct conversation, or user already a participant
            NOT_AUTHORIZED: Actor is not an admin or moderator
        """
        conv_result = ConversationService.get_conversation(conversation_id)
        if not conv_result:
            return conv_result
        conversation = conv_result.data

        invalid = cls._require_group(conversation)
        if invalid:
            return invalid

        actor = conversation.get_participant(actor_id)
        if actor is None:
            return _not_participant()
        if not actor.can_add_members:
            return ServiceResult.failure(
                "Only the admin or a moderator can add participants",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )

        user = get_user_model().objects.filter(pk=user_id, is_active=True).first()
        if user is None:
            return _not_found("User")

        if conversation.has_participant(user_id):
            return ServiceResult.failure(
                "User is already a participant in this conversation",
                error_code=ErrorCode.INVALID_OPERATION,
            )

        try:
            with cls.atomic():
                Participant.objects.create(
                    conversation=conversation,
                    user=user,
                    role=ParticipantRole.MEMBER,
                )
                system_message = MessageService._create_system_message(
                    conversation=conversation,
                    event=SystemEvent.MEMBER_ADDED,
                    content=f"{actor.user.username} added {user.username} to the group",
                    actor=actor.user,
                    metadata={"user_id": user.id, "added_by_id": actor_id},
                )
        except IntegrityError:
            return ServiceResult.failure(
                "User is already a participant in this conversation",
                error_code=ErrorCode.INVALID_OPERATION,
            )

        cls.get_logger().info(
            f"Added user {user_id} to conversation {conversation.id} by user {actor_id}"
        )
        return ServiceResult.success(
            MembershipChange(
                conversation_id=conversation.id,
                user_id=user_id,
                actor_id=actor_id,
                conversation=conversation,
                system_message=system_message,
                remaining_ids=conversation.participant_ids,
            )
        )

    @classmethod
    def remove_participant(
        cls,
        conversation_id: int,
        actor_id: int,
        user_id: int,
    ) -> ServiceResult[MembershipChange]:
        """
        Remove a user from a group or club conversation.

        Permission rules:
        - Admin can remove anyone
        - Any participant can remove themselves (leave)

        Removing the row also drops a moderator role. A LEFT system message
        is recorded when a user removes themselves, MEMBER_REMOVED otherwise.
        When the admin departs, the role passes to the oldest moderator, then
        the oldest member. When nobody remains the conversation is deleted.

        Error codes:
            NOT_FOUND: Conversation does not exist or user is not a participant
            INVALID_OPERATION: Direct conversation
            NOT_AUTHORIZED: Actor is neither the admin nor the user themselves
        """
        conv_result = ConversationService.get_conversation(conversation_id)
        if not conv_result:
            return conv_result
        conversation = conv_result.data

        invalid = cls._require_group(conversation)
        if invalid:
            return invalid

        is_self = actor_id == user_id
        actor = conversation.get_participant(actor_id)
        if actor is None:
            return _not_participant()
        if not is_self and not actor.is_admin:
            return ServiceResult.failure(
                "Only the admin can remove participants",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )

        target = actor if is_self else conversation.get_participant(user_id)
        if target is None:
            return _not_found("Participant")

        change = MembershipChange(
            conversation_id=conversation.id,
            user_id=user_id,
            actor_id=actor_id,
        )

        with cls.atomic():
            was_admin = target.is_admin
            username = target.user.username
            target.delete()

            if not conversation.participants.exists():
                ConversationService._delete_with_messages(conversation)
                change.conversation_deleted = True
            else:
                if is_self:
                    change.system_message = MessageService._create_system_message(
                        conversation=conversation,
                        event=SystemEvent.LEFT,
                        content=f"{username} left the group",
                        actor=actor.user,
                        metadata={"user_id": user_id},
                    )
                else:
                    change.system_message = MessageService._create_system_message(
                        conversation=conversation,
                        event=SystemEvent.MEMBER_REMOVED,
                        content=f"{actor.user.username} removed {username} from the group",
                        actor=actor.user,
                        metadata={"user_id": user_id, "removed_by_id": actor_id},
                    )

                if was_admin:
                    new_admin = cls._assign_successor(conversation, user_id)
                    change.new_admin_id = new_admin.user_id if new_admin else None

                change.conversation = conversation
                change.remaining_ids = conversation.participant_ids

        if change.conversation_deleted:
            cls.get_logger().info(
                f"Last participant {user_id} left conversation {conversation_id}; "
                f"conversation deleted"
            )
        else:
            cls.get_logger().info(
                f"User {user_id} removed from conversation {conversation_id} "
                f"by user {actor_id}"
            )
        return ServiceResult.success(change)

    @classmethod
    def _assign_successor(
        cls,
        conversation: Conversation,
        departed_user_id: int,
    ) -> Participant | None:
        """
        Internal: Promote a new admin after the admin departed.

        Succession order: oldest moderator, then oldest member. Must be called
        inside the transaction that removed the admin.
        """
        candidates = conversation.participants.select_related("user").order_by(
            "created_at", "id"
        )
        successor = (
            candidates.filter(role=ParticipantRole.MODERATOR).first()
            or candidates.filter(role=ParticipantRole.MEMBER).first()
        )
        if successor is None:
            return None

        successor.role = ParticipantRole.ADMIN
        successor.save(update_fields=["role", "updated_at"])

        MessageService._create_system_message(
            conversation=conversation,
            event=SystemEvent.ADMIN_CHANGED,
            content=f"{successor.user.username} is now the admin",
            metadata={
                "from_user_id": departed_user_id,
                "to_user_id": successor.user_id,
                "reason": "departure",
            },
        )

        cls.get_logger().info(
            f"Auto-transferred admin of conversation {conversation.id} "
            f"to user {successor.user_id} (admin departed)"
        )
        return successor

    @classmethod
    def join_public(
        cls,
        conversation_id: int,
        user_id: int,
    ) -> ServiceResult[MembershipChange]:
        """
        Join a public group or club without an invitation.

        Error codes:
            NOT_FOUND: Conversation or user does not exist
            INVALID_OPERATION: Direct conversation, or already a participant
            NOT_AUTHORIZED: Conversation is not public
        """
        conv_result = ConversationService.get_conversation(conversation_id)
        if not conv_result:
            return conv_result
        conversation = conv_result.data

        invalid = cls._require_group(conversation)
        if invalid:
            return invalid

        if not conversation.is_public:
            return ServiceResult.failure(
                "This conversation is invitation only",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )

        user = get_user_model().objects.filter(pk=user_id, is_active=True).first()
        if user is None:
            return _not_found("User")

        if conversation.has_participant(user_id):
            return ServiceResult.failure(
                "You are already a participant in this conversation",
                error_code=ErrorCode.INVALID_OPERATION,
            )

        with cls.atomic():
            Participant.objects.create(
                conversation=conversation,
                user=user,
                role=ParticipantRole.MEMBER,
            )
            system_message = MessageService._create_system_message(
                conversation=conversation,
                event=SystemEvent.JOINED,
                content=f"{user.username} joined the group",
                actor=user,
                metadata={"user_id": user_id},
            )

        cls.get_logger().info(f"User {user_id} joined public conversation {conversation.id}")
        return ServiceResult.success(
            MembershipChange(
                conversation_id=conversation.id,
                user_id=user_id,
                actor_id=user_id,
                conversation=conversation,
                system_message=system_message,
                remaining_ids=conversation.participant_ids,
            )
        )

    @classmethod
    def transfer_admin(
        cls,
        conversation_id: int,
        actor_id: int,
        new_admin_id: int,
    ) -> ServiceResult[MembershipChange]:
        """
        Hand the admin role to another participant.

        The previous admin stays in the conversation as a moderator.

        Error codes:
            NOT_FOUND: Conversation does not exist or target is not a participant
            INVALID_OPERATION: Direct conversation, or transfer to self
            NOT_AUTHORIZED: Actor is not the admin
        """
        membership = ConversationService.get_membership(conversation_id, actor_id)
        if not membership:
            return membership
        actor = membership.data
        conversation = actor.conversation

        invalid = cls._require_group(conversation)
        if invalid:
            return invalid
        if not actor.is_admin:
            return ServiceResult.failure(
                "Only the admin can transfer the admin role",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )
        if new_admin_id == actor_id:
            return ServiceResult.failure(
                "You are already the admin",
                error_code=ErrorCode.INVALID_OPERATION,
            )

        target = conversation.get_participant(new_admin_id)
        if target is None:
            return _not_found("Participant")

        with cls.atomic():
            # Demote first: at most one admin row may exist at any time
            actor.role = ParticipantRole.MODERATOR
            actor.save(update_fields=["role", "updated_at"])
            target.role = ParticipantRole.ADMIN
            target.save(update_fields=["role", "updated_at"])

            system_message = MessageService._create_system_message(
                conversation=conversation,
                event=SystemEvent.ADMIN_CHANGED,
                content=f"{actor.user.username} made {target.user.username} the admin",
                actor=actor.user,
                metadata={
                    "from_user_id": actor_id,
                    "to_user_id": new_admin_id,
                    "reason": "manual",
                },
            )

        cls.get_logger().info(
            f"Transferred admin of conversation {conversation.id} "
            f"from user {actor_id} to user {new_admin_id}"
        )
        return ServiceResult.success(
            MembershipChange(
                conversation_id=conversation.id,
                user_id=new_admin_id,
                actor_id=actor_id,
                conversation=conversation,
                system_message=system_message,
                new_admin_id=new_admin_id,
                remaining_ids=conversation.participant_ids,
            )
        )

    @classmethod
    def set_moderator(
        cls,
        conversation_id: int,
        actor_id: int,
        user_id: int,
        is_moderator: bool,
    ) -> ServiceResult[Participant]:
        """
        Grant or revoke the moderator role (admin only).

        Error codes:
            NOT_FOUND: Conversation does not exist or target is not a participant
            INVALID_OPERATION: Direct conversation, or target is the admin
            NOT_AUTHORIZED: Actor is not the admin
        """
        membership = ConversationService.get_membership(conversation_id, actor_id)
        if not membership:
            return membership
        actor = membership.data
        conversation = actor.conversation

        invalid = cls._require_group(conversation)
        if invalid:
            return invalid
        if not actor.is_admin:
            return ServiceResult.failure(
                "Only the admin can manage moderators",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )

        target = conversation.get_participant(user_id)
        if target is None:
            return _not_found("Participant")
        if target.is_admin:
            return ServiceResult.failure(
                "The admin cannot be made a moderator",
                error_code=ErrorCode.INVALID_OPERATION,
            )

        new_role = ParticipantRole.MODERATOR if is_moderator else ParticipantRole.MEMBER
        if target.role != new_role:
            target.role = new_role
            target.save(update_fields=["role", "updated_at"])
            cls.get_logger().info(
                f"User {actor_id} set role of user {user_id} in conversation "
                f"{conversation.id} to {new_role}"
            )
        return ServiceResult.success(target)


# =============================================================================
# MessageService
# =============================================================================


class MessageService(BaseService):
    """
    Service for message operations and read state.

    Methods:
        send_message: Authorize, validate, persist and update the summary
        get_history: Page through a conversation's messages
        search: Case-insensitive search over text messages
        delete_message: Sender-only soft delete leaving a tombstone
        mark_read: Mark every unread message of a conversation read
        mark_message_read: Mark one message read
        get_unread_count: Current unread count of a participant
    """

    ATTACHMENT_FIELDS = (
        "file_url",
        "file_name",
        "file_size",
        "file_mime_type",
        "thumbnail_url",
        "media_metadata",
    )

    @classmethod
    def send_message(
        cls,
        conversation_id: int,
        sender_id: int,
        content: str | None,
        message_type: str = MessageType.TEXT,
        attachment: dict | None = None,
    ) -> ServiceResult[SentMessage]:
        """
        Persist a message and update the conversation summary.

        Steps:
            1. Authorize: sender must be a participant (nothing is written
               otherwise)
            2. Validate: text messages need non-blank content, attachments
               need a file URL, content is bounded
            3. Persist the message with the sender already in its read-by set
            4. Update the summary: latest message, and +1 unread for every
               other participant

        Steps 3 and 4 run in separate transactions. If step 4 fails the
        message is still stored and returned with summary_updated=False; the
        reconciliation task restores latest_message later.

        Args:
            conversation_id: Target conversation
            sender_id: Author
            content: Text, or caption for attachments
            message_type: TEXT, IMAGE or FILE
            attachment: file_url, file_name, file_size, file_mime_type,
                thumbnail_url, media_metadata from the media service

        Returns:
            ServiceResult with SentMessage

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: Sender is not a participant
            VALIDATION_ERROR: Empty/oversized content, bad type, missing file
        """
        membership = ConversationService.get_membership(conversation_id, sender_id)
        if not membership:
            return membership
        conversation = membership.data.conversation

        if content is not None and not isinstance(content, str):
            return ServiceResult.failure(
                "Message content must be text",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"content": ["Not a valid string."]},
            )
        content = content.strip() if content else ""
        attachment = {
            key: value
            for key, value in (attachment or {}).items()
            if key in cls.ATTACHMENT_FIELDS and value is not None
        }

        if message_type not in (MessageType.TEXT, MessageType.IMAGE, MessageType.FILE):
            return ServiceResult.failure(
                "Unsupported message type",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"message_type": [f'"{message_type}" is not a valid choice.']},
            )
        if message_type == MessageType.TEXT and not content:
            return ServiceResult.failure(
                "Message content cannot be empty",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"content": ["This field may not be blank."]},
            )
        if message_type != MessageType.TEXT and not attachment.get("file_url"):
            return ServiceResult.failure(
                "Attachments require a file URL",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"file_url": ["This field is required."]},
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message content cannot exceed {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={
                    "content": [
                        f"Ensure this field has no more than {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters."
                    ]
                },
            )

        with cls.atomic():
            message = Message.objects.create(
                conversation=conversation,
                sender_id=sender_id,
                message_type=message_type,
                content=content,
                **attachment,
            )
            MessageRead.objects.create(
                message=message,
                user_id=sender_id,
                read_at=message.created_at,
            )

        recipient_ids = [
            uid for uid in conversation.participant_ids if uid != sender_id
        ]

        summary_updated = True
        try:
            cls._update_summary(conversation, message, sender_id)
        except DatabaseError:
            summary_updated = False
            cls.get_logger().exception(
                f"Message {message.id} stored but summary update of conversation "
                f"{conversation.id} failed"
            )

        cls.get_logger().debug(
            f"User {sender_id} sent message {message.id} "
            f"to conversation {conversation.id}"
        )
        return ServiceResult.success(
            SentMessage(
                message=message,
                recipient_ids=recipient_ids,
                summary_updated=summary_updated,
            )
        )

    @classmethod
    def _update_summary(
        cls,
        conversation: Conversation,
        message: Message,
        sender_id: int,
    ) -> None:
        with cls.atomic():
            Conversation.objects.filter(pk=conversation.pk).update(
                latest_message=message,
                updated_at=timezone.now(),
            )
            Participant.objects.filter(conversation=conversation).exclude(
                user_id=sender_id
            ).update(unread_count=F("unread_count") + 1)

    @classmethod
    def get_history(
        cls,
        conversation_id: int,
        user_id: int,
        before: datetime | None = None,
        limit: int = MESSAGE_CONFIG.HISTORY_DEFAULT_LIMIT,
        page: int = 1,
    ) -> ServiceResult[HistoryPage]:
        """
        Page through a conversation's messages.

        Pages are counted from the newest message backwards; the messages of
        a page are returned oldest first so clients can append them as-is.

        Args:
            conversation_id: Conversation to read
            user_id: Caller (must be a participant)
            before: Only messages created strictly before this instant
            limit: Page size (1..HISTORY_MAX_LIMIT)
            page: 1-based page number

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: Caller is not a participant
            VALIDATION_ERROR: limit or page out of range
        """
        membership = ConversationService.get_membership(conversation_id, user_id)
        if not membership:
            return membership

        if not 1 <= limit <= MESSAGE_CONFIG.HISTORY_MAX_LIMIT or page < 1:
            return ServiceResult.failure(
                "Invalid pagination parameters",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        queryset = Message.objects.filter(conversation_id=conversation_id)
        if before is not None:
            queryset = queryset.filter(created_at__lt=before)

        total = queryset.count()
        offset = (page - 1) * limit
        newest_first = list(
            queryset.select_related("sender")
            .prefetch_related("read_receipts")
            .order_by("-created_at", "-id")[offset : offset + limit]
        )
        newest_first.reverse()

        return ServiceResult.success(
            HistoryPage(messages=newest_first, page=page, limit=limit, total=total)
        )

    @classmethod
    def search(
        cls,
        conversation_id: int,
        user_id: int,
        query: str | None,
        limit: int = MESSAGE_CONFIG.SEARCH_DEFAULT_LIMIT,
    ) -> ServiceResult[list[Message]]:
        """
        Search text messages of one conversation, newest first.

        On PostgreSQL the query runs as English full-text search (stemmed,
        case-insensitive); other databases fall back to a case-insensitive
        substring match.

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: Caller is not a participant
            VALIDATION_ERROR: Empty query
        """
        membership = ConversationService.get_membership(conversation_id, user_id)
        if not membership:
            return membership

        query = (query or "").strip()
        if len(query) < MESSAGE_CONFIG.SEARCH_MIN_QUERY_LENGTH:
            return ServiceResult.failure(
                "Search query is required",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"q": ["This field is required."]},
            )
        limit = max(1, min(limit, MESSAGE_CONFIG.SEARCH_MAX_LIMIT))

        queryset = Message.objects.filter(
            conversation_id=conversation_id,
            message_type=MessageType.TEXT,
            is_deleted=False,
        ).select_related("sender")

        if connection.vendor == "postgresql":
            from django.contrib.postgres.search import SearchQuery, SearchVector

            queryset = queryset.annotate(
                search=SearchVector("content", config="english")
            ).filter(search=SearchQuery(query, config="english", search_type="websearch"))
        else:
            queryset = queryset.filter(content__icontains=query)

        return ServiceResult.success(list(queryset.order_by("-created_at", "-id")[:limit]))

    @classmethod
    def delete_message(
        cls,
        message_id: int,
        user_id: int,
        conversation_id: int | None = None,
    ) -> ServiceResult[Message]:
        """
        Soft delete a message (sender only).

        The row stays in the history as a tombstone: content becomes the
        deleted placeholder, the type becomes SYSTEM/DELETED and attachment
        fields are cleared. Participants who had not read the message get
        their unread count decremented, since tombstones are not unread
        messages. Deleting an already deleted message is a no-op.

        Error codes:
            NOT_FOUND: Message does not exist (in this conversation)
            NOT_AUTHORIZED: Caller is not the sender
        """
        queryset = Message.objects.select_related("conversation")
        if conversation_id is not None:
            queryset = queryset.filter(conversation_id=conversation_id)
        message = queryset.filter(pk=message_id).first()
        if message is None:
            return _not_found("Message")

        if message.sender_id != user_id:
            return ServiceResult.failure(
                "You can only delete your own messages",
                error_code=ErrorCode.NOT_AUTHORIZED,
            )

        if message.is_deleted:
            return ServiceResult.success(message)

        with cls.atomic():
            if message.counts_as_unread:
                readers = MessageRead.objects.filter(message=message).values("user_id")
                Participant.objects.filter(conversation_id=message.conversation_id).exclude(
                    user_id=user_id
                ).exclude(user_id__in=readers).update(
                    unread_count=Greatest(F("unread_count") - 1, Value(0))
                )

            message.content = MESSAGE_CONFIG.DELETED_PLACEHOLDER
            message.message_type = MessageType.SYSTEM
            message.system_event = SystemEvent.DELETED
            message.file_url = ""
            message.file_name = ""
            message.file_size = None
            message.file_mime_type = ""
            message.thumbnail_url = ""
            message.media_metadata = {}
            message.soft_delete(
                extra_update_fields=[
                    "content",
                    "message_type",
                    "system_event",
                    *cls.ATTACHMENT_FIELDS,
                ]
            )

        cls.get_logger().info(f"User {user_id} deleted message {message.id}")
        return ServiceResult.success(message)

    @classmethod
    def _unread_messages(cls, conversation_id: int, user_id: int) -> list[tuple[int, str]]:
        """(id, message_type) of messages from others the user has no receipt for."""
        return list(
            Message.objects.filter(conversation_id=conversation_id)
            .exclude(sender_id=user_id)
            .exclude(read_receipts__user_id=user_id)
            .values_list("id", "message_type")
        )

    @classmethod
    def mark_read(
        cls,
        conversation_id: int,
        user_id: int,
    ) -> ServiceResult[ReadResult]:
        """
        Mark every message of a conversation as read by a user.

        Only messages sent by others and not yet read by the user get a
        receipt; calling this again immediately changes nothing. The user's
        unread count drops by the number of newly read user-authored
        messages (never below zero).

        Error codes:
            NOT_FOUND: Conversation does not exist
            NOT_AUTHORIZED: User is not a participant
        """
        membership = ConversationService.get_membership(conversation_id, user_id)
        if not membership:
            return membership

        now = timezone.now()
        with cls.atomic():
            # Readers of the same participant queue on the row lock, so the
            # unread list below never includes receipts another reader counted
            participant = Participant.objects.select_for_update().get(pk=membership.data.pk)

            unread = cls._unread_messages(conversation_id, user_id)
            if not unread:
                if participant.unread_count:
                    Participant.objects.filter(pk=participant.pk).update(unread_count=0)
                return ServiceResult.success(ReadResult(conversation_id, user_id, 0))

            countable = sum(
                1 for _, message_type in unread if message_type != MessageType.SYSTEM
            )
            MessageRead.objects.bulk_create(
                [
                    MessageRead(message_id=message_id, user_id=user_id, read_at=now)
                    for message_id, _ in unread
                ],
                ignore_conflicts=True,
            )
            if countable:
                Participant.objects.filter(pk=participant.pk).update(
                    unread_count=Greatest(F("unread_count") - countable, Value(0))
                )

        cls.get_logger().debug(
            f"User {user_id} read {len(unread)} messages in conversation {conversation_id}"
        )
        return ServiceResult.success(ReadResult(conversation_id, user_id, len(unread)))

    @classmethod
    def mark_message_read(
        cls,
        message_id: int,
        user_id: int,
        conversation_id: int | None = None,
    ) -> ServiceResult[ReadResult]:
        """
        Mark a single message as read by a user.

        Idempotent; reading your own message is a no-op.

        Error codes:
            NOT_FOUND: Message does not exist (in this conversation)
            NOT_AUTHORIZED: User is not a participant
        """
        queryset = Message.objects.all()
        if conversation_id is not None:
            queryset = queryset.filter(conversation_id=conversation_id)
        message = queryset.filter(pk=message_id).first()
        if message is None:
            return _not_found("Message")

        membership = ConversationService.get_membership(message.conversation_id, user_id)
        if not membership:
            return membership

        if message.sender_id == user_id:
            return ServiceResult.success(ReadResult(message.conversation_id, user_id, 0))

        with cls.atomic():
            Participant.objects.select_for_update().filter(pk=membership.data.pk).first()
            _, created = MessageRead.objects.get_or_create(
                message=message,
                user_id=user_id,
                defaults={"read_at": timezone.now()},
            )
            if created and message.counts_as_unread:
                Participant.objects.filter(pk=membership.data.pk).update(
                    unread_count=Greatest(F("unread_count") - 1, Value(0))
                )

        return ServiceResult.success(
            ReadResult(message.conversation_id, user_id, 1 if created else 0)
        )

    @classmethod
    def get_unread_count(cls, conversation_id: int, user_id: int) -> int:
        """Unread count of a participant (0 if not a participant)."""
        return (
            Participant.objects.filter(conversation_id=conversation_id, user_id=user_id)
            .values_list("unread_count", flat=True)
            .first()
            or 0
        )

    @classmethod
    def _create_system_message(
        cls,
        conversation: Conversation,
        event: str,
        content: str,
        actor: User | None = None,
        metadata: dict | None = None,
    ) -> Message:
        """
        Internal: Create a system event message.

        System messages have:
        - sender = the actor (None for automatic events)
        - message_type = SYSTEM, system_event = event
        - content = human-readable description, metadata = structured data

        They become the conversation's latest message but do not count as
        unread. This method should be called within an existing transaction.
        """
        message = Message.objects.create(
            conversation=conversation,
            sender=actor,
            message_type=MessageType.SYSTEM,
            system_event=event,
            content=content[: MESSAGE_CONFIG.MAX_CONTENT_LENGTH],
            metadata=metadata or {},
        )

        conversation.latest_message = message
        conversation.save(update_fields=["latest_message", "updated_at"])

        return message
