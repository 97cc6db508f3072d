"""Chat relay."""

from community.services.chat.relay import ChatConversation, ChatRelay, ConversationState

__all__ = [
    "ChatConversation",
    "ChatRelay",
    "ConversationState",
]
