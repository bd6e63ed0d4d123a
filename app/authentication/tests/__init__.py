"""
Tests for authentication app.

This package contains test modules for:
- test_models.py: User and UserManager tests
- test_views.py: Token and current-user endpoint tests

Usage:
    pytest app/authentication/tests/
"""
