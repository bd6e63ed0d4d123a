"""
Test configuration and fixtures for chat tests.

This module provides:
- User fixtures for each group role (admin, moderator, member, outsider)
- Conversation fixtures (direct and group) built through the services, so
  participants, system messages and summaries are consistent
- API client helpers for authenticated requests
- Realtime fixtures: an isolated ChatRuntime and ASGI application per test,
  and a channel layer that is flushed between tests

Usage:
    def test_example(group, member_client):
        response = member_client.get(f"/api/v1/chat/conversations/{group.id}/")
        assert response.status_code == 200

Websocket tests run one coroutine per test through async_to_sync and need
@pytest.mark.django_db(transaction=True): database_sync_to_async closes
connections, which a wrapping test transaction does not survive.
"""

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from rest_framework.test import APIClient

from authentication.tests.factories import UserFactory
from chat.middleware import JWTAuthMiddleware
from chat.routing import build_websocket_urlpatterns
from chat.runtime import ChatRuntime
from chat.services import ConversationService, ParticipantService

# =============================================================================
# Realtime Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def channel_layer():
    """The in-memory channel layer, empty at the start and end of each test."""
    layer = get_channel_layer()
    async_to_sync(layer.flush)()
    yield layer
    async_to_sync(layer.flush)()


@pytest.fixture
def runtime(channel_layer):
    """Fresh realtime state (presence, rooms, fan-out) for one test."""
    return ChatRuntime.build(channel_layer=channel_layer)


@pytest.fixture
def application(runtime):
    """ASGI websocket application sharing the test's runtime."""
    return JWTAuthMiddleware(URLRouter(build_websocket_urlpatterns(runtime)))


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def admin_user(db):
    """User who creates (and administers) the test group."""
    return UserFactory(username="ada")


@pytest.fixture
def moderator_user(db):
    """User holding the moderator role in the test group."""
    return UserFactory(username="grace")


@pytest.fixture
def member_user(db):
    """Plain member of the test group."""
    return UserFactory(username="linus")


@pytest.fixture
def outsider(db):
    """User who is not a participant in any test conversation."""
    return UserFactory(username="outsider")


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def group(db, admin_user, moderator_user, member_user):
    """
    Group with a full role hierarchy.

    admin_user is the admin, moderator_user a moderator and member_user a
    member. Holds one GROUP_CREATED system message.
    """
    result = ConversationService.create_group(
        creator_id=admin_user.id,
        name="Algorithms Study Group",
        participant_ids=[moderator_user.id, member_user.id],
    )
    ParticipantService.set_moderator(result.data.id, admin_user.id, moderator_user.id, True)
    return result.data


@pytest.fixture
def public_club(db, admin_user):
    """Public club whose only participant is admin_user."""
    result = ConversationService.create_group(
        creator_id=admin_user.id,
        name="Chess Club",
        conversation_type="club",
        is_public=True,
    )
    return result.data


@pytest.fixture
def direct(db, admin_user, member_user):
    """Direct conversation between admin_user and member_user."""
    return ConversationService.find_or_create_direct(admin_user.id, member_user.id).data


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


def _client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def admin_client(admin_user):
    return _client_for(admin_user)


@pytest.fixture
def moderator_client(moderator_user):
    return _client_for(moderator_user)


@pytest.fixture
def member_client(member_user):
    return _client_for(member_user)


@pytest.fixture
def outsider_client(outsider):
    return _client_for(outsider)
