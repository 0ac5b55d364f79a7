"""Conversation list synchronization for the chat client."""

from conversation_sync.models import (
    Conversation,
    ConversationKind,
    GroupDescriptor,
    Message,
    Peer,
    SendMessageRequest,
)
from conversation_sync.session import ChatSyncSession
from conversation_sync.store import ConversationStore

__all__ = [
    "ChatSyncSession",
    "Conversation",
    "ConversationKind",
    "ConversationStore",
    "GroupDescriptor",
    "Message",
    "Peer",
    "SendMessageRequest",
]
