"""
Chat system models.

This module defines the data models for campus messaging:
- Direct (1:1) conversations between exactly two users
- Group and club conversations with an admin and optional moderators

Models:
    Conversation: Container for messages between participants
    DirectConversationPair: Enforces uniqueness of direct conversations
    Participant: User membership in a conversation with role and unread count
    Message: Individual message within a conversation
    MessageRead: Read receipt of one user for one message

Design Decisions:
    - Direct conversations have exactly two participants and no roles
    - Group/club conversations have exactly one admin; moderators are a subset
      of participants with elevated rights
    - Unread counts live on Participant and are maintained incrementally
    - latest_message is a weak reference, cleared if the message disappears
    - Member count, admin and moderators are computed from Participant rows
      rather than stored, so they cannot drift
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from chat.constants import CONVERSATION_CONFIG, MESSAGE_CONFIG
from core.model_mixins import SoftDeleteMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from authentication.models import User


class ConversationType(models.TextChoices):
    """
    Type of conversation.

    DIRECT: Exactly two participants, immutable membership, no roles
    GROUP: Study or friend group, mutable membership, role-based permissions
    CLUB: Society or club channel, same rules as GROUP
    """

    DIRECT = "direct", "Direct Message"
    GROUP = "group", "Group"
    CLUB = "club", "Club"


class ConversationCategory(models.TextChoices):
    """Topic category for group and club conversations."""

    ACADEMIC = "Academic", "Academic"
    SPORTS = "Sports", "Sports"
    ARTS = "Arts", "Arts"
    TECHNOLOGY = "Technology", "Technology"
    SOCIAL = "Social", "Social"
    OTHER = "Other", "Other"


class ParticipantRole(models.TextChoices):
    """
    Role within a group or club conversation.

    Hierarchy: ADMIN > MODERATOR > MEMBER

    ADMIN: Full control (metadata, remove anyone, delete, transfer admin)
    MODERATOR: Can add participants
    MEMBER: Can send messages, delete own messages, leave

    Note: Direct conversations do not use roles (role is NULL for direct participants)
    """

    ADMIN = "admin", "Admin"
    MODERATOR = "moderator", "Moderator"
    MEMBER = "member", "Member"


class MessageType(models.TextChoices):
    """
    Type of message content.

    TEXT: User-authored text message
    IMAGE: Image attachment with optional caption
    FILE: File attachment with optional caption
    SYSTEM: Server-generated lifecycle event or deleted-message tombstone
    """

    TEXT = "text", "Text"
    IMAGE = "image", "Image"
    FILE = "file", "File"
    SYSTEM = "system", "System"


class SystemEvent(models.TextChoices):
    """
    Sub-kind of a system message.

    The structured details of the event are stored in Message.metadata:
        GROUP_CREATED: {"name": str}
        MEMBER_ADDED: {"user_id": int, "added_by_id": int}
        MEMBER_REMOVED: {"user_id": int, "removed_by_id": int}
        LEFT: {"user_id": int}
        JOINED: {"user_id": int}
        RENAMED: {"old_name": str, "new_name": str, "changed_by_id": int}
        ADMIN_CHANGED: {"from_user_id": int|None, "to_user_id": int, "reason": "manual"|"departure"}
        DELETED: {} (tombstone of a soft-deleted message)
    """

    GROUP_CREATED = "group_created", "Group created"
    MEMBER_ADDED = "member_added", "Member added"
    MEMBER_REMOVED = "member_removed", "Member removed"
    LEFT = "left", "Left"
    JOINED = "joined", "Joined"
    RENAMED = "renamed", "Renamed"
    ADMIN_CHANGED = "admin_changed", "Admin changed"
    DELETED = "deleted", "Deleted"


class Conversation(BaseModel):
    """
    A conversation between two or more users.

    Conversation Types:
        DIRECT: Exactly 2 participants, no metadata, no roles.
                Unique per user pair (enforced via DirectConversationPair).

        GROUP / CLUB: 1+ participants, exactly one admin.
               Creator automatically becomes admin.
               Deleted when the admin deletes it or the last member leaves.

    Fields:
        conversation_type: Type of conversation
        name: Display name (group/club only)
        description: Longer description (group/club only)
        avatar: Image URL (group/club only)
        category: Topic category (group/club only)
        is_public: Whether anyone may join without an invitation
        is_official: Whether the conversation is run by the university
        latest_message: Most recent message, for list previews

    Ordering:
        updated_at moves forward on every message, so the default ordering
        lists the most recently active conversations first.
    """

    conversation_type = models.CharField(
        max_length=10,
        choices=ConversationType.choices,
        default=ConversationType.GROUP,
        db_index=True,
        help_text="Type of conversation (direct, group or club)",
    )

    name = models.CharField(
        max_length=CONVERSATION_CONFIG.MAX_NAME_LENGTH,
        blank=True,
        default="",
        help_text="Name for group/club conversations (empty for direct)",
    )

    description = models.CharField(
        max_length=CONVERSATION_CONFIG.MAX_DESCRIPTION_LENGTH,
        blank=True,
        default="",
        help_text="Description for group/club conversations",
    )

    avatar = models.URLField(
        blank=True,
        default="",
        help_text="Image URL for group/club conversations",
    )

    category = models.CharField(
        max_length=20,
        choices=ConversationCategory.choices,
        null=True,
        blank=True,
        help_text="Topic category for group/club conversations",
    )

    is_public = models.BooleanField(
        default=False,
        help_text="Whether any user may join without being added",
    )

    is_official = models.BooleanField(
        default=False,
        help_text="Whether this conversation is run by the university",
    )

    latest_message = models.ForeignKey(
        "Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Most recent message (weak reference for previews)",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-updated_at", "-id"]
        indexes = [
            models.Index(
                fields=["conversation_type", "is_public"],
                name="chat_conv_type_public_idx",
            ),
            models.Index(
                fields=["-updated_at"],
                name="chat_conv_updated_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        if self.conversation_type == ConversationType.DIRECT:
            return f"Direct({self.pk})"
        label = self.get_conversation_type_display()
        if self.name:
            return f"{label}: {self.name}"
        return f"{label}({self.pk})"

    @property
    def is_direct(self) -> bool:
        """Check if this is a direct (1:1) conversation."""
        return self.conversation_type == ConversationType.DIRECT

    @property
    def is_group_like(self) -> bool:
        """Check if this conversation has roles and mutable membership."""
        return self.conversation_type in (ConversationType.GROUP, ConversationType.CLUB)

    # Computed accessors iterate self.participants.all() so a
    # prefetch_related("participants__user") is reused instead of re-queried.

    @property
    def member_count(self) -> int:
        """Number of current participants."""
        return len(self.participants.all())

    @property
    def participant_ids(self) -> list[int]:
        """Ids of all current participants."""
        return [p.user_id for p in self.participants.all()]

    @property
    def admin(self) -> User | None:
        """Admin user for group/club conversations, None for direct."""
        for participant in self.participants.all():
            if participant.role == ParticipantRole.ADMIN:
                return participant.user
        return None

    @property
    def moderators(self) -> list[User]:
        """Participants holding the moderator role."""
        return [
            p.user for p in self.participants.all() if p.role == ParticipantRole.MODERATOR
        ]

    @property
    def unread_counts(self) -> dict[int, int]:
        """Mapping of participant user id to unread message count."""
        return {p.user_id: p.unread_count for p in self.participants.all()}

    def get_participant(self, user_id: int) -> Participant | None:
        """
        Get participant record for a specific user.

        Args:
            user_id: Id of the user to look up

        Returns:
            Participant if the user is in the conversation, None otherwise
        """
        return self.participants.filter(user_id=user_id).first()

    def has_participant(self, user_id: int) -> bool:
        """Check whether a user is a current participant."""
        return self.participants.filter(user_id=user_id).exists()


class DirectConversationPair(models.Model):
    """
    Enforces uniqueness of direct conversations between two users.

    Stores user pairs in canonical order (lower user id first) so that
    regardless of who initiates the conversation, there can only be one
    direct conversation between any pair.

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One conversation per pair
        - CheckConstraint(user_lower_id < user_higher_id): Enforce canonical order
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The direct conversation this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this conversation pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this conversation pair",
    )

    class Meta:
        db_table = "chat_direct_conversation_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"


class Participant(BaseModel):
    """
    Membership of a user in a conversation.

    Removing a user from a conversation deletes the row, which also drops
    any moderator role they held.

    Fields:
        conversation: Conversation this membership belongs to
        user: Member of the conversation
        role: Role in group/club conversation (NULL for direct)
        unread_count: Messages from others this user has not read yet

    Constraints:
        - One row per (conversation, user)
        - At most one admin per conversation
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Conversation this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversation_participations",
        help_text="User participating in the conversation",
    )

    role = models.CharField(
        max_length=10,
        choices=ParticipantRole.choices,
        null=True,
        blank=True,
        db_index=True,
        help_text="Role in group conversation (null for direct conversations)",
    )

    unread_count = models.PositiveIntegerField(
        default=0,
        help_text="Unread messages from other participants (maintained incrementally)",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["user", "conversation"],
                name="chat_part_user_conv_idx",
            ),
            # Role-based lookups (for admin succession)
            models.Index(
                fields=["conversation", "role", "created_at"],
                name="chat_part_conv_role_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                name="unique_conversation_participant",
            ),
            models.UniqueConstraint(
                fields=["conversation"],
                condition=Q(role="admin"),
                name="unique_conversation_admin",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        role_str = f" ({self.role})" if self.role else ""
        return f"Participant: {self.user_id} in {self.conversation_id}{role_str}"

    @property
    def is_admin(self) -> bool:
        """Check if participant has ADMIN role."""
        return self.role == ParticipantRole.ADMIN

    @property
    def is_moderator(self) -> bool:
        """Check if participant has MODERATOR role."""
        return self.role == ParticipantRole.MODERATOR

    @property
    def can_add_members(self) -> bool:
        """Admins and moderators may add participants."""
        return self.role in (ParticipantRole.ADMIN, ParticipantRole.MODERATOR)


class Message(SoftDeleteMixin, BaseModel):
    """
    A message within a conversation.

    Message Types:
        TEXT: User-authored message with text content
        IMAGE / FILE: Attachment described by the file_* fields, optional caption
        SYSTEM: Lifecycle event (system_event + metadata) or deleted tombstone

    Soft Delete Behavior:
        Deleting a message replaces its content with a tombstone, forces the
        type to SYSTEM (event DELETED) and clears the attachment fields. The
        row stays in the history so clients see where it was.

    Fields:
        conversation: Conversation this message belongs to (never reassigned)
        sender: Author, or the actor of a system event (NULL when automatic)
        message_type: Type of message
        content: Message text (bounded length)
        system_event: Sub-kind of a system message
        metadata: Structured details of a system event
        file_url, file_name, file_size, file_mime_type, thumbnail_url,
        media_metadata: Attachment description from the media collaborator
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (actor for system events)",
    )

    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        db_index=True,
        help_text="Type of message (text, image, file or system)",
    )

    content = models.TextField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        blank=True,
        default="",
        help_text="Message text (caption for attachments)",
    )

    system_event = models.CharField(
        max_length=20,
        choices=SystemEvent.choices,
        null=True,
        blank=True,
        help_text="Sub-kind of a system message",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Structured details of a system event",
    )

    file_url = models.URLField(max_length=500, blank=True, default="")
    file_name = models.CharField(max_length=255, blank=True, default="")
    file_size = models.PositiveBigIntegerField(null=True, blank=True)
    file_mime_type = models.CharField(max_length=100, blank=True, default="")
    thumbnail_url = models.URLField(max_length=500, blank=True, default="")
    media_metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Width/height/duration reported by the media service",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            # History paging within a conversation
            models.Index(
                fields=["conversation", "-created_at"],
                name="chat_msg_conv_created_idx",
            ),
            models.Index(
                fields=["sender", "-created_at"],
                name="chat_msg_sender_idx",
            ),
            models.Index(
                fields=["conversation", "message_type"],
                name="chat_msg_conv_type_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        deleted_str = " [deleted]" if self.is_deleted else ""
        return f"{sender_str}: {content_preview}{deleted_str}"

    @property
    def is_system_message(self) -> bool:
        """Check if this is a system-generated message."""
        return self.message_type == MessageType.SYSTEM

    @property
    def has_attachment(self) -> bool:
        """Check if this message carries a file."""
        return bool(self.file_url)

    @property
    def counts_as_unread(self) -> bool:
        """User-authored messages count towards unread totals; system events do not."""
        return self.message_type != MessageType.SYSTEM

    def get_preview(self) -> str:
        """
        Short text used in notifications and conversation lists.

        Attachments without a caption are described by their type.
        """
        if self.content:
            return self.content[: MESSAGE_CONFIG.PREVIEW_LENGTH]
        if self.message_type == MessageType.IMAGE:
            return "Sent an image"
        if self.message_type == MessageType.FILE:
            return f"Sent a file: {self.file_name}" if self.file_name else "Sent a file"
        return ""


class MessageRead(models.Model):
    """
    Read receipt of one user for one message (the message's read-by set).

    A user appears at most once per message; inserts use ignore_conflicts so
    marking a message read twice is a no-op.

    Fields:
        message: Message that was read
        user: Reader
        read_at: When the message was first marked read
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="read_receipts",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_reads",
    )

    read_at = models.DateTimeField(
        help_text="When the user first read the message",
    )

    class Meta:
        db_table = "chat_message_read"
        ordering = ["read_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_message_read",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Read({self.message_id} by {self.user_id})"
