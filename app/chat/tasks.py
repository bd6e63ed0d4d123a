"""
Celery tasks for chat app.

This module defines periodic maintenance tasks:
- Conversation summary reconciliation

Sending a message stores it first and updates the conversation summary
(latest message, unread counts) in a second step. When that second step
fails the message is still stored; reconcile_conversation_summaries puts
latest_message back in line with the newest stored message.

Related files:
    - services.py: MessageService.send_message
    - config/settings.py: CELERY_BEAT_SCHEDULE

Usage:
    from chat.tasks import reconcile_conversation_summaries

    reconcile_conversation_summaries.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.db.models import OuterRef, Subquery

from chat.models import Conversation, Message

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def reconcile_conversation_summaries(self) -> dict:
    """
    Repair conversations whose latest_message is not their newest message.

    Idempotent: a second run right after the first repairs nothing.

    Returns:
        Dict with the number of conversations checked and repaired
    """
    newest = (
        Message.objects.filter(conversation=OuterRef("pk"))
        .order_by("-created_at", "-id")
        .values("id")[:1]
    )
    candidates = (
        Conversation.objects.annotate(newest_id=Subquery(newest))
        .filter(newest_id__isnull=False)
        .only("id", "latest_message_id")
    )

    checked = 0
    repaired = 0
    for conversation in candidates.iterator():
        checked += 1
        if conversation.latest_message_id == conversation.newest_id:
            continue

        Conversation.objects.filter(pk=conversation.pk).update(
            latest_message_id=conversation.newest_id
        )
        repaired += 1
        logger.info(
            f"Repaired latest message of conversation {conversation.pk}: "
            f"{conversation.latest_message_id} -> {conversation.newest_id}"
        )

    if repaired:
        logger.warning(f"Reconciled {repaired} of {checked} conversation summaries")
    return {"checked": checked, "repaired": repaired}
