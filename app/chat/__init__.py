"""
Chat app for real-time messaging.

This app handles:
- Conversations (direct, group and club)
- Message sending, history and search
- WebSocket presence, rooms and message fan-out
- Read receipts and typing indicators
- Group lifecycle (members, moderators, admin hand-over)

Related apps:
    - authentication: User model for participants and senders
    - core: BaseModel, SoftDeleteMixin, ServiceResult

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers, runtime.py for the per-process
    realtime state and routing.py for WebSocket URL patterns.

Usage:
    from chat.services import ConversationService, MessageService

    # Find or create a direct conversation
    result = ConversationService.find_or_create_direct(user.id, other_user.id)

    # Send message
    result = MessageService.send_message(
        conversation_id=result.data.id,
        sender_id=user.id,
        content="Hello!",
    )
"""
