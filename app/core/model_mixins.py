"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    SoftDeleteMixin: Soft delete support (is_deleted, deleted_at)

Usage:
    from core.models import BaseModel
    from core.model_mixins import SoftDeleteMixin

    class Message(SoftDeleteMixin, BaseModel):
        content = models.TextField()

    message.soft_delete()

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
    - Soft deleted rows stay visible through the default manager; models
      decide how a deleted row is presented (e.g. a tombstone message)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone


class SoftDeleteMixin(models.Model):
    """
    Soft delete support for models.

    Instead of permanently deleting records, marks them as deleted.
    Deleted records stay in the database and are preserved for auditing.

    Fields:
        is_deleted: Boolean flag indicating soft delete status
        deleted_at: Timestamp when the record was soft deleted
    """

    is_deleted = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this record has been soft deleted",
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp when this record was soft deleted",
    )

    class Meta:
        abstract = True

    def soft_delete(self, extra_update_fields: list[str] | None = None) -> None:
        """
        Mark this record as deleted.

        Sets is_deleted=True and deleted_at to current time. Does not remove
        the record from the database.

        Args:
            extra_update_fields: Additional fields changed by the caller that
                should be persisted in the same UPDATE statement.

        Example:
            message.content = "This message was deleted"
            message.soft_delete(extra_update_fields=["content"])
        """
        self.is_deleted = True
        self.deleted_at = timezone.now()
        update_fields = ["is_deleted", "deleted_at", "updated_at"]
        if extra_update_fields:
            update_fields.extend(extra_update_fields)
        self.save(update_fields=update_fields)
