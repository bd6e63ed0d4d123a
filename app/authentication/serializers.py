"""
Serializers for authentication models.

This module provides DRF serializers for:
- UserSerializer: the public profile embedded in chat payloads
  (message senders, conversation participants)
- CurrentUserSerializer: the signed-in user's own account

Security:
    - Email is only exposed to the account owner
    - All fields are read-only; accounts are managed by the campus directory
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Public profile of a user.

    Used wherever another user is shown: the sender of a message, the
    members of a conversation, the actor of a group event.
    """

    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "full_name",
            "student_id",
            "role",
            "avatar_url",
        ]
        read_only_fields = fields


class CurrentUserSerializer(UserSerializer):
    """Account details for the signed-in user."""

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ["email", "date_joined"]
        read_only_fields = fields
