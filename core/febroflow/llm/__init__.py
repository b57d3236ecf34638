"""LLM provider interface used by the AI node handlers."""

from febroflow.llm.provider import LLMProvider, LLMResponse

__all__ = ["LLMProvider", "LLMResponse"]
