"""External collaborators consumed by node handlers."""

from febroflow.services.chat_memory import ChatMemoryStore, ChatMessage, InMemoryChatMemory
from febroflow.services.credentials import (
    CredentialResolver,
    EnvCredentialResolver,
    StaticCredentialResolver,
)
from febroflow.services.messaging import MessageSender, TelegramMessageSender
from febroflow.services.vector_store import (
    InMemoryVectorStore,
    VectorMatch,
    VectorRecord,
    VectorStore,
)

__all__ = [
    "ChatMemoryStore",
    "ChatMessage",
    "CredentialResolver",
    "EnvCredentialResolver",
    "InMemoryChatMemory",
    "InMemoryVectorStore",
    "MessageSender",
    "StaticCredentialResolver",
    "TelegramMessageSender",
    "VectorMatch",
    "VectorRecord",
    "VectorStore",
]
