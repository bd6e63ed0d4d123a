"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/ - The single realtime connection of a client. Rooms are joined
               and left with events over this connection.

Authentication:
    JWT token should be passed as query parameter: ?token=<jwt_access_token>
    The JWTAuthMiddleware will validate the token and attach the user
    to the consumer's scope.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.urls import path

from chat import consumers

if TYPE_CHECKING:
    from chat.runtime import ChatRuntime


def build_websocket_urlpatterns(runtime: ChatRuntime) -> list:
    """URL patterns whose consumers share the given runtime."""
    return [
        path(
            "ws/chat/",
            consumers.ChatConsumer.as_asgi(runtime=runtime),
            name="chat-websocket",
        ),
    ]
