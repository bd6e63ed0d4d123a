"""
Authentication models.

This module defines the campus account used by every other app:
- User: Custom user model with email-based authentication and the public
  profile fields shown next to chat messages (username, student id, avatar)

Related files:
    - managers.py: Custom user manager for email-based creation
    - serializers.py: Public profile serializer embedded in chat payloads

Security:
    - User passwords hashed with Django's PBKDF2
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """Campus role of an account holder."""

    STUDENT = "student", "Student"
    LECTURER = "lecturer", "Lecturer"
    ALUMNI = "alumni", "Alumni"
    ADMIN = "admin", "Admin"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        username: Display handle shown in conversations
        first_name / last_name: Optional real name
        student_id: University student ID
        role: Campus role (student, lecturer, alumni, admin)
        avatar_url: Public URL of the profile picture
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )

    username = models.CharField(
        max_length=30,
        help_text="Display handle shown next to messages",
    )

    first_name = models.CharField(max_length=50, blank=True, default="")
    last_name = models.CharField(max_length=50, blank=True, default="")

    student_id = models.CharField(
        max_length=20,
        blank=True,
        default="",
        help_text="University student ID",
    )

    role = models.CharField(
        max_length=10,
        choices=UserRole.choices,
        default=UserRole.STUDENT,
        help_text="Campus role of the account holder",
    )

    avatar_url = models.URLField(
        blank=True,
        default="",
        help_text="Public URL of the profile picture",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        """Return the user's email as string representation."""
        return self.email

    @property
    def full_name(self) -> str:
        """First and last name joined, empty when neither is set."""
        return f"{self.first_name} {self.last_name}".strip()

    def get_full_name(self):
        """Return the real name, falling back to the username."""
        return self.full_name or self.username

    def get_short_name(self):
        """Return the username."""
        return self.username
