"""
Websocket helpers for chat tests.

Usage:
    async def scenario():
        ws = await connect(application, user)
        await ws.send_json_to({"type": "join_conversation", "conversationId": 1})
        frame = await receive_event(ws, "user_joined")
        await ws.disconnect()
"""

import asyncio

from channels.testing import WebsocketCommunicator
from rest_framework_simplejwt.tokens import AccessToken


async def connect(application, user) -> WebsocketCommunicator:
    """Open an authenticated websocket for a user."""
    token = AccessToken.for_user(user)
    communicator = WebsocketCommunicator(application, f"/ws/chat/?token={token}")
    connected, _ = await communicator.connect()
    assert connected, f"user {user.id} could not connect"
    return communicator


async def receive_event(communicator: WebsocketCommunicator, event_type: str, timeout: float = 1):
    """
    Return the next frame of the given type, skipping any other frames.

    Raises:
        AssertionError: No such frame arrived within the timeout
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise AssertionError(f"no {event_type} frame received")
        try:
            frame = await communicator.receive_json_from(timeout=remaining)
        except asyncio.TimeoutError:
            raise AssertionError(f"no {event_type} frame received") from None
        if frame.get("type") == event_type:
            return frame


async def drain(communicator: WebsocketCommunicator) -> list[dict]:
    """Consume every frame already queued for the client."""
    frames = []
    while not await communicator.receive_nothing(timeout=0.05):
        frames.append(await communicator.receive_json_from())
    return frames
