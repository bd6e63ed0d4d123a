"""
Tests for chat service layer business logic.

This module tests all chat services:
- ConversationService: Direct/group creation, metadata, deletion
- ParticipantService: Add, remove, leave, join, admin hand-over, moderators
- MessageService: Send, history, search, delete, read receipts

Test Organization:
    - Each service method has its own test class
    - Each test validates ONE specific behavior
    - Tests use descriptive names following: test_<scenario>_<expected_outcome>

Testing Philosophy:
    Tests focus on observable behavior, not implementation details:
    - ServiceResult success/failure states
    - Database state changes
    - Error codes for specific failure modes
    - System message creation
"""

from datetime import timedelta
from unittest import mock

from django.db import DatabaseError
from django.utils import timezone

from authentication.tests.factories import UserFactory
from chat.models import (
    Conversation,
    ConversationType,
    DirectConversationPair,
    Message,
    MessageRead,
    MessageType,
    Participant,
    ParticipantRole,
    SystemEvent,
)
from chat.services import ConversationService, MessageService, ParticipantService
from core.services import ErrorCode


def _participant(conversation, user):
    return Participant.objects.get(conversation=conversation, user=user)


# =============================================================================
# ConversationService
# =============================================================================


class TestFindOrCreateDirect:
    """Tests for ConversationService.find_or_create_direct()."""

    def test_creates_conversation_with_pair_and_participants(self, db):
        first, second = UserFactory(), UserFactory()

        result = ConversationService.find_or_create_direct(first.id, second.id)

        assert result.success is True
        conversation = result.data
        assert conversation.conversation_type == ConversationType.DIRECT
        assert sorted(conversation.participant_ids) == sorted([first.id, second.id])
        assert all(p.role is None for p in conversation.participants.all())
        assert DirectConversationPair.objects.filter(conversation=conversation).exists()

    def test_returns_existing_conversation_in_either_order(self, db):
        first, second = UserFactory(), UserFactory()

        created = ConversationService.find_or_create_direct(first.id, second.id)
        found = ConversationService.find_or_create_direct(second.id, first.id)

        assert found.data.id == created.data.id
        assert Conversation.objects.filter(conversation_type=ConversationType.DIRECT).count() == 1

    def test_fails_for_same_user_twice(self, db):
        user = UserFactory()

        result = ConversationService.find_or_create_direct(user.id, user.id)

        assert result.success is False
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_fails_for_missing_or_inactive_user(self, db):
        user = UserFactory()
        inactive = UserFactory(is_active=False)

        missing = ConversationService.find_or_create_direct(user.id, 999_999)
        deactivated = ConversationService.find_or_create_direct(user.id, inactive.id)

        assert missing.error_code == ErrorCode.NOT_FOUND
        assert deactivated.error_code == ErrorCode.NOT_FOUND
        assert not Conversation.objects.exists()

    def test_losing_a_creation_race_returns_the_winner(self, db):
        first, second = UserFactory(), UserFactory()
        existing = ConversationService.find_or_create_direct(first.id, second.id).data

        # The pair is created by someone else between lookup and insert
        with mock.patch.object(
            ConversationService, "_find_direct", side_effect=[None, existing]
        ) as find_direct:
            result = ConversationService.find_or_create_direct(second.id, first.id)

        assert result.success is True
        assert result.data.id == existing.id
        assert find_direct.call_count == 2
        assert Conversation.objects.filter(conversation_type=ConversationType.DIRECT).count() == 1
        assert DirectConversationPair.objects.count() == 1


class TestCreateGroup:
    """Tests for ConversationService.create_group()."""

    def test_creator_becomes_admin_and_others_members(self, db):
        creator, friend = UserFactory(), UserFactory()

        result = ConversationService.create_group(
            creator_id=creator.id,
            name="  Thesis Buddies ",
            participant_ids=[friend.id],
            description="Weekly check-ins",
            category="Academic",
        )

        assert result.success is True
        group = result.data
        assert group.name == "Thesis Buddies"
        assert group.category == "Academic"
        assert _participant(group, creator).role == ParticipantRole.ADMIN
        assert _participant(group, friend).role == ParticipantRole.MEMBER

    def test_records_group_created_system_message(self, db):
        creator = UserFactory(username="ada")

        group = ConversationService.create_group(creator_id=creator.id, name="Robotics").data

        message = Message.objects.get(conversation=group)
        assert message.message_type == MessageType.SYSTEM
        assert message.system_event == SystemEvent.GROUP_CREATED
        assert message.content == 'ada created "Robotics"'
        assert group.latest_message == message

    def test_creator_listed_in_participants_is_not_duplicated(self, db):
        creator, friend = UserFactory(), UserFactory()

        group = ConversationService.create_group(
            creator_id=creator.id,
            name="Band",
            participant_ids=[creator.id, friend.id, friend.id],
        ).data

        assert group.member_count == 2

    def test_creates_club(self, db):
        creator = UserFactory()

        result = ConversationService.create_group(
            creator_id=creator.id,
            name="Chess Club",
            conversation_type=ConversationType.CLUB,
            is_public=True,
        )

        assert result.data.conversation_type == ConversationType.CLUB
        assert result.data.is_public is True

    def test_blank_name_is_rejected(self, db):
        creator = UserFactory()

        result = ConversationService.create_group(creator_id=creator.id, name="   ")

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert "name" in result.errors

    def test_direct_type_is_rejected(self, db):
        creator = UserFactory()

        result = ConversationService.create_group(
            creator_id=creator.id, name="Nope", conversation_type=ConversationType.DIRECT
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_unknown_participant_is_rejected(self, db):
        creator = UserFactory()

        result = ConversationService.create_group(
            creator_id=creator.id, name="Ghosts", participant_ids=[999_999]
        )

        assert result.error_code == ErrorCode.NOT_FOUND
        assert not Conversation.objects.exists()


class TestGetMembership:
    """Tests for ConversationService.get_membership()."""

    def test_returns_participant_with_conversation(self, group, member_user):
        result = ConversationService.get_membership(group.id, member_user.id)

        assert result.success is True
        assert result.data.user_id == member_user.id
        assert result.data.conversation.id == group.id

    def test_missing_conversation(self, db, member_user):
        assert ConversationService.get_membership(999_999, member_user.id).error_code == (
            ErrorCode.NOT_FOUND
        )

    def test_non_participant(self, group, outsider):
        assert ConversationService.get_membership(group.id, outsider.id).error_code == (
            ErrorCode.NOT_AUTHORIZED
        )


class TestGetUserConversations:
    """Tests for ConversationService.get_user_conversations()."""

    def test_lists_only_own_conversations_most_recent_first(
        self, group, direct, admin_user, outsider
    ):
        MessageService.send_message(group.id, admin_user.id, "bump")

        conversations = list(ConversationService.get_user_conversations(admin_user.id))

        assert [c.id for c in conversations] == [group.id, direct.id]
        assert list(ConversationService.get_user_conversations(outsider.id)) == []


class TestUpdateMetadata:
    """Tests for ConversationService.update_metadata()."""

    def test_admin_renames_group(self, group, admin_user):
        result = ConversationService.update_metadata(
            group.id, admin_user.id, name="Algorithms II"
        )

        assert result.success is True
        assert result.data.changed_fields == ["name"]
        group.refresh_from_db()
        assert group.name == "Algorithms II"
        renamed = result.data.system_message
        assert renamed.system_event == SystemEvent.RENAMED
        assert renamed.metadata["old_name"] == "Algorithms Study Group"

    def test_description_change_records_no_system_message(self, group, admin_user):
        result = ConversationService.update_metadata(
            group.id, admin_user.id, description="Bring snacks", is_public=True
        )

        assert sorted(result.data.changed_fields) == ["description", "is_public"]
        assert result.data.system_message is None

    def test_unchanged_values_are_a_no_op(self, group, admin_user):
        result = ConversationService.update_metadata(
            group.id, admin_user.id, name="Algorithms Study Group"
        )

        assert result.success is True
        assert result.data.changed_fields == []

    def test_moderator_cannot_update(self, group, moderator_user):
        result = ConversationService.update_metadata(group.id, moderator_user.id, name="Mine")

        assert result.error_code == ErrorCode.NOT_AUTHORIZED

    def test_direct_conversation_cannot_be_updated(self, direct, admin_user):
        result = ConversationService.update_metadata(direct.id, admin_user.id, name="Us")

        assert result.error_code == ErrorCode.INVALID_OPERATION

    def test_invalid_category_is_rejected(self, group, admin_user):
        result = ConversationService.update_metadata(
            group.id, admin_user.id, category="Gardening"
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR


class TestDeleteConversation:
    """Tests for ConversationService.delete_conversation()."""

    def test_admin_deletes_group_with_messages(
        self, group, admin_user, moderator_user, member_user
    ):
        MessageService.send_message(group.id, member_user.id, "hello")

        result = ConversationService.delete_conversation(group.id, admin_user.id)

        assert result.success is True
        assert sorted(result.data) == sorted([admin_user.id, moderator_user.id, member_user.id])
        assert not Conversation.objects.filter(pk=group.id).exists()
        assert not Message.objects.filter(conversation_id=group.id).exists()

    def test_member_cannot_delete_group(self, group, member_user):
        result = ConversationService.delete_conversation(group.id, member_user.id)

        assert result.error_code == ErrorCode.NOT_AUTHORIZED
        assert Conversation.objects.filter(pk=group.id).exists()

    def test_either_user_deletes_direct_conversation(self, direct, member_user):
        result = ConversationService.delete_conversation(direct.id, member_user.id)

        assert result.success is True
        assert not DirectConversationPair.objects.exists()


# =============================================================================
# ParticipantService
# =============================================================================


class TestAddParticipant:
    """Tests for ParticipantService.add_participant()."""

    def test_moderator_adds_member(self, group, moderator_user, outsider):
        result = ParticipantService.add_participant(group.id, moderator_user.id, outsider.id)

        assert result.success is True
        assert _participant(group, outsider).role == ParticipantRole.MEMBER
        message = result.data.system_message
        assert message.system_event == SystemEvent.MEMBER_ADDED
        assert message.sender == moderator_user
        assert message.content == "grace added outsider to the group"
        assert outsider.id in result.data.remaining_ids

    def test_member_cannot_add(self, group, member_user, outsider):
        result = ParticipantService.add_participant(group.id, member_user.id, outsider.id)

        assert result.error_code == ErrorCode.NOT_AUTHORIZED

    def test_non_participant_cannot_add(self, group, outsider):
        newcomer = UserFactory()

        result = ParticipantService.add_participant(group.id, outsider.id, newcomer.id)

        assert result.error_code == ErrorCode.NOT_AUTHORIZED

    def test_existing_participant_cannot_be_added_again(self, group, admin_user, member_user):
        result = ParticipantService.add_participant(group.id, admin_user.id, member_user.id)

        assert result.error_code == ErrorCode.INVALID_OPERATION

    def test_unknown_user(self, group, admin_user):
        result = ParticipantService.add_participant(group.id, admin_user.id, 999_999)

        assert result.error_code == ErrorCode.NOT_FOUND

    def test_direct_conversation_membership_is_fixed(self, direct, admin_user, outsider):
        result = ParticipantService.add_participant(direct.id, admin_user.id, outsider.id)

        assert result.error_code == ErrorCode.INVALID_OPERATION

    def test_missing_conversation(self, db, admin_user, outsider):
        result = ParticipantService.add_participant(999_999, admin_user.id, outsider.id)

        assert result.error_code == ErrorCode.NOT_FOUND


class TestRemoveParticipant:
    """Tests for ParticipantService.remove_participant()."""

    def test_admin_removes_member(self, group, admin_user, member_user):
        result = ParticipantService.remove_participant(group.id, admin_user.id, member_user.id)

        assert result.success is True
        assert not group.has_participant(member_user.id)
        assert result.data.system_message.system_event == SystemEvent.MEMBER_REMOVED
        assert result.data.conversation_deleted is False

    def test_member_leaves(self, group, member_user):
        result = ParticipantService.remove_participant(group.id, member_user.id, member_user.id)

        assert result.success is True
        assert result.data.system_message.system_event == SystemEvent.LEFT
        assert result.data.system_message.content == "linus left the group"

    def test_removing_a_moderator_drops_the_role(self, group, admin_user, moderator_user):
        ParticipantService.remove_participant(group.id, admin_user.id, moderator_user.id)

        assert group.moderators == []

    def test_member_cannot_remove_others(self, group, member_user, moderator_user):
        result = ParticipantService.remove_participant(
            group.id, member_user.id, moderator_user.id
        )

        assert result.error_code == ErrorCode.NOT_AUTHORIZED
        assert group.has_participant(moderator_user.id)

    def test_removing_non_participant(self, group, admin_user, outsider):
        result = ParticipantService.remove_participant(group.id, admin_user.id, outsider.id)

        assert result.error_code == ErrorCode.NOT_FOUND

    def test_departing_admin_hands_over_to_moderator(self, group, admin_user, moderator_user):
        result = ParticipantService.remove_participant(group.id, admin_user.id, admin_user.id)

        assert result.data.new_admin_id == moderator_user.id
        assert _participant(group, moderator_user).role == ParticipantRole.ADMIN
        handover = Message.objects.get(
            conversation=group, system_event=SystemEvent.ADMIN_CHANGED
        )
        assert handover.metadata["reason"] == "departure"
        assert handover.metadata["to_user_id"] == moderator_user.id

    def test_departing_admin_hands_over_to_oldest_member(self, db):
        admin, first, second = UserFactory(), UserFactory(), UserFactory()
        group = ConversationService.create_group(
            creator_id=admin.id, name="Choir", participant_ids=[first.id]
        ).data
        ParticipantService.add_participant(group.id, admin.id, second.id)

        result = ParticipantService.remove_participant(group.id, admin.id, admin.id)

        assert result.data.new_admin_id == first.id
        assert group.admin == first

    def test_last_participant_leaving_deletes_conversation(self, public_club, admin_user):
        result = ParticipantService.remove_participant(
            public_club.id, admin_user.id, admin_user.id
        )

        assert result.data.conversation_deleted is True
        assert result.data.conversation is None
        assert not Conversation.objects.filter(pk=public_club.id).exists()


class TestJoinPublic:
    """Tests for ParticipantService.join_public()."""

    def test_user_joins_public_club(self, public_club, outsider):
        result = ParticipantService.join_public(public_club.id, outsider.id)

        assert result.success is True
        assert _participant(public_club, outsider).role == ParticipantRole.MEMBER
        assert result.data.system_message.system_event == SystemEvent.JOINED

    def test_private_group_cannot_be_joined(self, group, outsider):
        result = ParticipantService.join_public(group.id, outsider.id)

        assert result.error_code == ErrorCode.NOT_AUTHORIZED

    def test_cannot_join_twice(self, public_club, admin_user):
        result = ParticipantService.join_public(public_club.id, admin_user.id)

        assert result.error_code == ErrorCode.INVALID_OPERATION


class TestTransferAdmin:
    """Tests for ParticipantService.transfer_admin()."""

    def test_admin_hands_role_to_member(self, group, admin_user, member_user):
        result = ParticipantService.transfer_admin(group.id, admin_user.id, member_user.id)

        assert result.success is True
        assert _participant(group, member_user).role == ParticipantRole.ADMIN
        assert _participant(group, admin_user).role == ParticipantRole.MODERATOR
        assert result.data.system_message.metadata["reason"] == "manual"

    def test_non_admin_cannot_transfer(self, group, moderator_user, member_user):
        result = ParticipantService.transfer_admin(group.id, moderator_user.id, member_user.id)

        assert result.error_code == ErrorCode.NOT_AUTHORIZED

    def test_transfer_to_self(self, group, admin_user):
        result = ParticipantService.transfer_admin(group.id, admin_user.id, admin_user.id)

        assert result.error_code == ErrorCode.INVALID_OPERATION

    def test_transfer_to_non_participant(self, group, admin_user, outsider):
        result = ParticipantService.transfer_admin(group.id, admin_user.id, outsider.id)

        assert result.error_code == ErrorCode.NOT_FOUND


class TestSetModerator:
    """Tests for ParticipantService.set_moderator()."""

    def test_grant_and_revoke(self, group, admin_user, member_user):
        granted = ParticipantService.set_moderator(group.id, admin_user.id, member_user.id, True)
        assert granted.data.role == ParticipantRole.MODERATOR

        revoked = ParticipantService.set_moderator(
            group.id, admin_user.id, member_user.id, False
        )
        assert revoked.data.role == ParticipantRole.MEMBER

    def test_admin_cannot_be_made_moderator(self, group, admin_user):
        result = ParticipantService.set_moderator(group.id, admin_user.id, admin_user.id, True)

        assert result.error_code == ErrorCode.INVALID_OPERATION

    def test_moderator_cannot_manage_moderators(self, group, moderator_user, member_user):
        result = ParticipantService.set_moderator(
            group.id, moderator_user.id, member_user.id, True
        )

        assert result.error_code == ErrorCode.NOT_AUTHORIZED


# =============================================================================
# MessageService
# =============================================================================


class TestSendMessage:
    """Tests for MessageService.send_message()."""

    def test_persists_and_updates_summary(self, group, member_user, admin_user, moderator_user):
        result = MessageService.send_message(group.id, member_user.id, "  See you at 5  ")

        assert result.success is True
        sent = result.data
        assert sent.message.content == "See you at 5"
        assert sent.summary_updated is True
        assert sorted(sent.recipient_ids) == sorted([admin_user.id, moderator_user.id])

        group.refresh_from_db()
        assert group.latest_message_id == sent.message.id
        assert MessageService.get_unread_count(group.id, admin_user.id) == 1
        assert MessageService.get_unread_count(group.id, member_user.id) == 0
        assert MessageRead.objects.filter(message=sent.message, user=member_user).exists()

    def test_non_participant_is_rejected_without_writes(self, group, outsider):
        before = Message.objects.count()

        result = MessageService.send_message(group.id, outsider.id, "let me in")

        assert result.error_code == ErrorCode.NOT_AUTHORIZED
        assert Message.objects.count() == before

    def test_missing_conversation(self, db, outsider):
        result = MessageService.send_message(999_999, outsider.id, "hello?")

        assert result.error_code == ErrorCode.NOT_FOUND

    def test_blank_text_is_rejected(self, group, member_user):
        result = MessageService.send_message(group.id, member_user.id, "   ")

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_non_text_content_is_rejected(self, group, member_user):
        result = MessageService.send_message(group.id, member_user.id, 12345)

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert "content" in result.errors
        assert not Message.objects.filter(sender=member_user).exists()

    def test_content_length_limit(self, group, member_user):
        accepted = MessageService.send_message(group.id, member_user.id, "a" * 5000)
        rejected = MessageService.send_message(group.id, member_user.id, "a" * 5001)

        assert accepted.success is True
        assert rejected.error_code == ErrorCode.VALIDATION_ERROR

    def test_image_needs_file_url(self, group, member_user):
        missing = MessageService.send_message(
            group.id, member_user.id, "", message_type=MessageType.IMAGE
        )
        sent = MessageService.send_message(
            group.id,
            member_user.id,
            "",
            message_type=MessageType.IMAGE,
            attachment={
                "file_url": "https://cdn.example.edu/board.png",
                "file_mime_type": "image/png",
                "unexpected": "ignored",
            },
        )

        assert missing.error_code == ErrorCode.VALIDATION_ERROR
        assert sent.success is True
        assert sent.data.message.file_url == "https://cdn.example.edu/board.png"

    def test_system_type_cannot_be_sent(self, group, member_user):
        result = MessageService.send_message(
            group.id, member_user.id, "fake", message_type=MessageType.SYSTEM
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_summary_failure_keeps_message(self, group, member_user):
        with mock.patch.object(
            MessageService, "_update_summary", side_effect=DatabaseError("locked")
        ):
            result = MessageService.send_message(group.id, member_user.id, "still here")

        assert result.success is True
        assert result.data.summary_updated is False
        assert Message.objects.filter(pk=result.data.message.pk).exists()


class TestGetHistory:
    """Tests for MessageService.get_history()."""

    def test_pages_from_newest_in_chronological_order(self, group, member_user):
        for i in range(5):
            MessageService.send_message(group.id, member_user.id, f"message {i}")

        first_page = MessageService.get_history(group.id, member_user.id, limit=2)
        second_page = MessageService.get_history(group.id, member_user.id, limit=2, page=2)

        assert [m.content for m in first_page.data.messages] == ["message 3", "message 4"]
        assert [m.content for m in second_page.data.messages] == ["message 1", "message 2"]
        # Five messages plus the group-created event
        assert first_page.data.total == 6
        assert first_page.data.pages == 3

    def test_before_filters_older_messages(self, group, member_user):
        old = MessageService.send_message(group.id, member_user.id, "old").data.message
        Message.objects.filter(pk=old.pk).update(
            created_at=timezone.now() - timedelta(days=2)
        )
        MessageService.send_message(group.id, member_user.id, "new")

        result = MessageService.get_history(
            group.id, member_user.id, before=timezone.now() - timedelta(days=1)
        )

        assert [m.content for m in result.data.messages] == ["old"]

    def test_invalid_limit(self, group, member_user):
        assert MessageService.get_history(group.id, member_user.id, limit=0).error_code == (
            ErrorCode.VALIDATION_ERROR
        )
        assert MessageService.get_history(group.id, member_user.id, limit=101).error_code == (
            ErrorCode.VALIDATION_ERROR
        )

    def test_non_participant(self, group, outsider):
        assert MessageService.get_history(group.id, outsider.id).error_code == (
            ErrorCode.NOT_AUTHORIZED
        )


class TestSearch:
    """Tests for MessageService.search()."""

    def test_finds_text_messages_newest_first(self, group, member_user, admin_user):
        MessageService.send_message(group.id, member_user.id, "Final exam moved to Friday")
        MessageService.send_message(group.id, admin_user.id, "Lunch?")
        MessageService.send_message(group.id, admin_user.id, "Which exam room?")

        result = MessageService.search(group.id, member_user.id, "EXAM")

        assert [m.content for m in result.data] == [
            "Which exam room?",
            "Final exam moved to Friday",
        ]

    def test_skips_deleted_messages(self, group, member_user):
        sent = MessageService.send_message(group.id, member_user.id, "exam answers").data
        MessageService.delete_message(sent.message.id, member_user.id)

        result = MessageService.search(group.id, member_user.id, "exam")

        assert result.data == []

    def test_empty_query_is_rejected(self, group, member_user):
        result = MessageService.search(group.id, member_user.id, "  ")

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_non_participant(self, group, outsider):
        assert MessageService.search(group.id, outsider.id, "exam").error_code == (
            ErrorCode.NOT_AUTHORIZED
        )


class TestDeleteMessage:
    """Tests for MessageService.delete_message()."""

    def test_sender_deletes_to_tombstone(self, group, member_user):
        sent = MessageService.send_message(
            group.id,
            member_user.id,
            "caption",
            message_type=MessageType.FILE,
            attachment={"file_url": "https://cdn.example.edu/notes.pdf", "file_name": "notes.pdf"},
        ).data

        result = MessageService.delete_message(sent.message.id, member_user.id)

        assert result.success is True
        message = Message.objects.get(pk=sent.message.id)
        assert message.is_deleted is True
        assert message.content == "This message was deleted"
        assert message.message_type == MessageType.SYSTEM
        assert message.system_event == SystemEvent.DELETED
        assert message.file_url == ""
        assert message.file_name == ""

    def test_unread_count_drops_for_non_readers(self, group, member_user, admin_user):
        sent = MessageService.send_message(group.id, member_user.id, "typo").data
        assert MessageService.get_unread_count(group.id, admin_user.id) == 1

        MessageService.delete_message(sent.message.id, member_user.id)

        assert MessageService.get_unread_count(group.id, admin_user.id) == 0

    def test_only_sender_can_delete(self, group, member_user, admin_user):
        sent = MessageService.send_message(group.id, member_user.id, "mine").data

        result = MessageService.delete_message(sent.message.id, admin_user.id)

        assert result.error_code == ErrorCode.NOT_AUTHORIZED

    def test_deleting_twice_is_a_no_op(self, group, member_user, admin_user):
        sent = MessageService.send_message(group.id, member_user.id, "once").data
        MessageService.delete_message(sent.message.id, member_user.id)

        result = MessageService.delete_message(sent.message.id, member_user.id)

        assert result.success is True
        assert MessageService.get_unread_count(group.id, admin_user.id) == 0

    def test_message_must_belong_to_conversation(self, group, direct, member_user):
        sent = MessageService.send_message(group.id, member_user.id, "here").data

        result = MessageService.delete_message(
            sent.message.id, member_user.id, conversation_id=direct.id
        )

        assert result.error_code == ErrorCode.NOT_FOUND


class TestMarkRead:
    """Tests for MessageService.mark_read() and mark_message_read()."""

    def test_marks_everything_read(self, group, member_user, admin_user):
        MessageService.send_message(group.id, member_user.id, "one")
        MessageService.send_message(group.id, member_user.id, "two")

        result = MessageService.mark_read(group.id, admin_user.id)

        assert result.data.changed is True
        assert MessageService.get_unread_count(group.id, admin_user.id) == 0
        assert MessageRead.objects.filter(user=admin_user).count() == 2

    def test_second_call_changes_nothing(self, group, member_user, admin_user):
        MessageService.send_message(group.id, member_user.id, "one")
        MessageService.mark_read(group.id, admin_user.id)

        result = MessageService.mark_read(group.id, admin_user.id)

        assert result.data.marked_count == 0
        assert result.data.changed is False

    def test_unread_scan_runs_under_participant_lock(self, group, member_user, admin_user):
        MessageService.send_message(group.id, member_user.id, "one")
        calls = []
        lock = Participant.objects.select_for_update
        scan = MessageService._unread_messages

        def locked(*args, **kwargs):
            calls.append("lock")
            return lock(*args, **kwargs)

        def scanned(*args, **kwargs):
            calls.append("scan")
            return scan(*args, **kwargs)

        with mock.patch.object(
            Participant.objects, "select_for_update", side_effect=locked
        ), mock.patch.object(MessageService, "_unread_messages", side_effect=scanned):
            result = MessageService.mark_read(group.id, admin_user.id)

        assert calls == ["lock", "scan"]
        assert result.data.marked_count == 1
        assert MessageService.get_unread_count(group.id, admin_user.id) == 0

    def test_receipts_written_by_another_reader_are_not_counted_again(
        self, group, member_user, admin_user
    ):
        first = MessageService.send_message(group.id, member_user.id, "one").data.message
        MessageService.send_message(group.id, member_user.id, "two")
        MessageService.mark_message_read(first.id, admin_user.id)

        result = MessageService.mark_read(group.id, admin_user.id)

        assert result.data.marked_count == 1
        assert MessageService.get_unread_count(group.id, admin_user.id) == 0
        assert MessageRead.objects.filter(user=admin_user, message__sender=member_user).count() == 2

    def test_system_messages_are_read_without_touching_count(self, group, member_user):
        result = MessageService.mark_read(group.id, member_user.id)

        # The group-created event
        assert result.data.marked_count == 1
        assert MessageService.get_unread_count(group.id, member_user.id) == 0

    def test_non_participant(self, group, outsider):
        assert MessageService.mark_read(group.id, outsider.id).error_code == (
            ErrorCode.NOT_AUTHORIZED
        )

    def test_single_message_read_is_idempotent(self, group, member_user, admin_user):
        message = MessageService.send_message(group.id, member_user.id, "hi").data.message

        first = MessageService.mark_message_read(message.id, admin_user.id)
        second = MessageService.mark_message_read(message.id, admin_user.id)

        assert first.data.changed is True
        assert second.data.changed is False
        assert MessageService.get_unread_count(group.id, admin_user.id) == 0

    def test_reading_own_message_is_a_no_op(self, group, member_user):
        message = MessageService.send_message(group.id, member_user.id, "me").data.message

        result = MessageService.mark_message_read(message.id, member_user.id)

        assert result.success is True
        assert result.data.changed is False
