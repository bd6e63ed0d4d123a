"""
Tests for chat models.

Covers computed properties, string representations and database
constraints of Conversation, DirectConversationPair, Participant, Message
and MessageRead.
"""

import pytest
from django.db import IntegrityError, transaction

from authentication.tests.factories import UserFactory
from chat.models import (
    ConversationType,
    DirectConversationPair,
    MessageType,
    Participant,
    ParticipantRole,
)
from chat.tests.factories import (
    DirectConversationFactory,
    GroupConversationFactory,
    MessageFactory,
    MessageReadFactory,
    ParticipantFactory,
    SystemMessageFactory,
)


@pytest.mark.django_db
class TestConversation:
    """Tests for Conversation computed properties."""

    def test_type_helpers(self):
        group = GroupConversationFactory()
        club = GroupConversationFactory(conversation_type=ConversationType.CLUB)
        direct = DirectConversationFactory()

        assert group.is_group_like and not group.is_direct
        assert club.is_group_like
        assert direct.is_direct and not direct.is_group_like

    def test_roles_and_members(self):
        conversation = GroupConversationFactory()
        admin = ParticipantFactory(conversation=conversation, role=ParticipantRole.ADMIN)
        moderator = ParticipantFactory(
            conversation=conversation, role=ParticipantRole.MODERATOR
        )
        member = ParticipantFactory(conversation=conversation, unread_count=4)

        assert conversation.member_count == 3
        assert sorted(conversation.participant_ids) == sorted(
            [admin.user_id, moderator.user_id, member.user_id]
        )
        assert conversation.admin == admin.user
        assert conversation.moderators == [moderator.user]
        assert conversation.unread_counts[member.user_id] == 4

    def test_admin_is_none_without_admin_role(self):
        conversation = DirectConversationFactory()
        ParticipantFactory(conversation=conversation, role=None)

        assert conversation.admin is None

    def test_get_and_has_participant(self):
        conversation = GroupConversationFactory()
        participant = ParticipantFactory(conversation=conversation)
        stranger = UserFactory()

        assert conversation.get_participant(participant.user_id) == participant
        assert conversation.get_participant(stranger.id) is None
        assert conversation.has_participant(participant.user_id)
        assert not conversation.has_participant(stranger.id)

    def test_str(self):
        assert str(GroupConversationFactory(name="Robotics")) == "Group: Robotics"
        direct = DirectConversationFactory()
        assert str(direct) == f"Direct({direct.pk})"


@pytest.mark.django_db
class TestParticipant:
    """Tests for Participant roles and constraints."""

    def test_role_helpers(self):
        admin = ParticipantFactory(role=ParticipantRole.ADMIN)
        moderator = ParticipantFactory(role=ParticipantRole.MODERATOR)
        member = ParticipantFactory(role=ParticipantRole.MEMBER)

        assert admin.is_admin and admin.can_add_members
        assert moderator.is_moderator and moderator.can_add_members
        assert not member.can_add_members

    def test_user_joins_a_conversation_once(self):
        participant = ParticipantFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            Participant.objects.create(
                conversation=participant.conversation, user=participant.user
            )

    def test_single_admin_per_conversation(self):
        conversation = GroupConversationFactory()
        ParticipantFactory(conversation=conversation, role=ParticipantRole.ADMIN)

        with pytest.raises(IntegrityError), transaction.atomic():
            ParticipantFactory(conversation=conversation, role=ParticipantRole.ADMIN)


@pytest.mark.django_db
class TestDirectConversationPair:
    """Tests for direct pair uniqueness."""

    def test_pair_is_unique(self):
        first, second = sorted([UserFactory(), UserFactory()], key=lambda u: u.id)
        DirectConversationPair.objects.create(
            conversation=DirectConversationFactory(), user_lower=first, user_higher=second
        )

        with pytest.raises(IntegrityError), transaction.atomic():
            DirectConversationPair.objects.create(
                conversation=DirectConversationFactory(),
                user_lower=first,
                user_higher=second,
            )


@pytest.mark.django_db
class TestMessage:
    """Tests for Message helpers."""

    def test_text_preview_is_truncated(self):
        message = MessageFactory(content="x" * 150)

        assert message.get_preview() == "x" * 100

    def test_attachment_previews(self):
        image = MessageFactory(
            message_type=MessageType.IMAGE,
            content="",
            file_url="https://cdn.example.edu/photo.png",
        )
        file = MessageFactory(
            message_type=MessageType.FILE,
            content="",
            file_url="https://cdn.example.edu/notes.pdf",
            file_name="notes.pdf",
        )

        assert image.get_preview() == "Sent an image"
        assert image.has_attachment
        assert file.get_preview() == "Sent a file: notes.pdf"

    def test_system_messages_do_not_count_as_unread(self):
        system = SystemMessageFactory()
        text = MessageFactory()

        assert system.is_system_message
        assert not system.counts_as_unread
        assert text.counts_as_unread

    def test_soft_delete_keeps_row(self):
        message = MessageFactory(content="oops")
        message.content = "This message was deleted"
        message.soft_delete(extra_update_fields=["content"])

        message.refresh_from_db()
        assert message.is_deleted
        assert message.deleted_at is not None
        assert message.content == "This message was deleted"

    def test_read_receipt_is_unique(self):
        receipt = MessageReadFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageReadFactory(message=receipt.message, user=receipt.user)
