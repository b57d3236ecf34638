"""Conversation memory for memory_manager and chat model nodes."""

import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """One stored conversation turn."""

    chat_id: str
    flow_id: str
    role: str  # "user", "assistant" or "system"
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def as_llm_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatMemoryStore(ABC):
    """Per-(flow, chat) message history."""

    @abstractmethod
    async def append(self, message: ChatMessage) -> None: ...

    @abstractmethod
    async def history(self, flow_id: str, chat_id: str, limit: int | None = None) -> list[ChatMessage]:
        """Messages in chronological order; ``limit`` keeps the most recent ones."""

    @abstractmethod
    async def clear(self, flow_id: str, chat_id: str) -> int:
        """Delete a conversation. Returns how many messages were removed."""


class InMemoryChatMemory(ChatMemoryStore):
    def __init__(self):
        self._messages: dict[tuple[str, str], list[ChatMessage]] = {}
        self._lock = asyncio.Lock()

    async def append(self, message: ChatMessage) -> None:
        async with self._lock:
            self._messages.setdefault((message.flow_id, message.chat_id), []).append(message)

    async def history(self, flow_id: str, chat_id: str, limit: int | None = None) -> list[ChatMessage]:
        messages = list(self._messages.get((flow_id, chat_id), []))
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    async def clear(self, flow_id: str, chat_id: str) -> int:
        async with self._lock:
            removed = self._messages.pop((flow_id, chat_id), [])
        return len(removed)
