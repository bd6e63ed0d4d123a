"""
Tests for chat Celery tasks.
"""

from chat.models import Conversation
from chat.services import MessageService
from chat.tasks import reconcile_conversation_summaries
from chat.tests.factories import MessageFactory


class TestReconcileConversationSummaries:
    """Tests for reconcile_conversation_summaries."""

    def test_repairs_stale_latest_message(self, group, member_user):
        stale = MessageService.send_message(group.id, member_user.id, "first").data.message
        # Stored without a summary update
        newest = MessageFactory(conversation=group, sender=member_user, content="second")

        result = reconcile_conversation_summaries.apply().get()

        assert result == {"checked": 1, "repaired": 1}
        group.refresh_from_db()
        assert group.latest_message_id == newest.id
        assert group.latest_message_id != stale.id

    def test_consistent_conversations_are_untouched(self, group, direct, member_user):
        MessageService.send_message(group.id, member_user.id, "hello")

        result = reconcile_conversation_summaries.apply().get()

        # direct has no messages yet
        assert result == {"checked": 1, "repaired": 0}

    def test_second_run_repairs_nothing(self, group, member_user):
        MessageFactory(conversation=group, sender=member_user)
        reconcile_conversation_summaries.apply()

        result = reconcile_conversation_summaries.apply().get()

        assert result["repaired"] == 0
        assert Conversation.objects.get(pk=group.id).latest_message is not None
