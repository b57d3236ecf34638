"""LLM Provider abstraction for pluggable LLM backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any LLM backend.

    AI node handlers only ever talk to this interface. Implementations should
    handle authentication, request formatting and vendor error mapping; a
    transient vendor failure should surface as ``RetryableNodeError`` so the
    engine's retry budget applies.
    """

    @abstractmethod
    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation history [{role: "user"|"assistant", content: str}]
            system: System prompt
            model: Model override; None uses the provider default
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature; None uses the provider default

        Returns:
            LLMResponse with content and metadata
        """

    @abstractmethod
    async def aembed(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Embed each text into a vector."""
