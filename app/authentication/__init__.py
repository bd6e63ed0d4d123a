"""
Authentication application.

This app provides the campus account model and JWT token endpoints used by
both the REST API and the websocket gateway.

Key components:
    - User model: Custom email-based user with public profile fields
    - UserSerializer: Public profile embedded in chat payloads

Usage:
    from authentication.models import User
    from authentication.serializers import UserSerializer
"""
