"""Encrypted, owner-scoped conversation memory."""

from homecommand.memory.crypto import (
    ConversationCrypto,
    ConversationCryptoError,
    EnvelopeAuthenticationError,
    EnvelopeFormatError,
)
from homecommand.memory.store import (
    Conversation,
    ConversationMessage,
    ConversationNotFoundError,
    ConversationStore,
    SQLiteConversationRepository,
)

__all__ = [
    "Conversation",
    "ConversationCrypto",
    "ConversationCryptoError",
    "ConversationMessage",
    "ConversationNotFoundError",
    "ConversationStore",
    "EnvelopeAuthenticationError",
    "EnvelopeFormatError",
    "SQLiteConversationRepository",
]
