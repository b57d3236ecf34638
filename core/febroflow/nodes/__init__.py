"""
Node handlers and the registry that binds them to node types.

``build_default_registry`` wires the built-in handlers. Handlers that depend
on an external service are registered only when that service is supplied,
so a flow using them fails fast with UnknownNodeTypeError instead of
midway through a call.
"""

from pathlib import Path

from febroflow.graph.flow import NodeType
from febroflow.llm.provider import LLMProvider
from febroflow.nodes.actions import FileOperationHandler, HttpRequestHandler, TelegramMessageHandler
from febroflow.nodes.ai import (
    ChainRetrievalQAHandler,
    ChatModelHandler,
    EmbeddingsHandler,
    MemoryManagerHandler,
    OpenAIHandler,
    PineconeVectorStoreHandler,
    SequentialThinkingHandler,
    TranslatorHandler,
    VectorStoreRetrieverHandler,
)
from febroflow.nodes.base import NodeContext, NodeHandler, NodeHandlerRegistry, NodeResult
from febroflow.nodes.dispatcher import NodeDispatcher
from febroflow.nodes.logic import CodeHandler, IfConditionHandler, SwitchHandler
from febroflow.nodes.triggers import (
    ScheduleTriggerHandler,
    TelegramTriggerHandler,
    WebhookTriggerHandler,
)
from febroflow.services.chat_memory import ChatMemoryStore
from febroflow.services.messaging import MessageSender
from febroflow.services.vector_store import VectorStore


def build_default_registry(
    llm: LLMProvider | None = None,
    vector_store: VectorStore | None = None,
    chat_memory: ChatMemoryStore | None = None,
    message_sender: MessageSender | None = None,
    file_base_dir: str | Path | None = None,
) -> NodeHandlerRegistry:
    registry = NodeHandlerRegistry()

    # Triggers and logic need nothing external
    registry.register(NodeType.TELEGRAM_TRIGGER, TelegramTriggerHandler())
    registry.register(NodeType.WEBHOOK_TRIGGER, WebhookTriggerHandler())
    registry.register(NodeType.SCHEDULE_TRIGGER, ScheduleTriggerHandler())
    registry.register(NodeType.IF_CONDITION, IfConditionHandler())
    registry.register(NodeType.SWITCH, SwitchHandler())
    registry.register(NodeType.CODE, CodeHandler())
    registry.register(NodeType.HTTP_REQUEST, HttpRequestHandler())

    if llm is not None:
        registry.register(NodeType.OPEN_AI, OpenAIHandler(llm))
        registry.register(NodeType.OPEN_AI_CHAT_MODEL, ChatModelHandler(llm, chat_memory))
        registry.register(NodeType.TRANSLATOR, TranslatorHandler(llm))
        registry.register(NodeType.SEQUENTIAL_THINKING, SequentialThinkingHandler(llm))
        registry.register(NodeType.EMBEDDINGS_OPEN_AI, EmbeddingsHandler(llm))
        if vector_store is not None:
            registry.register(
                NodeType.VECTOR_STORE_RETRIEVER, VectorStoreRetrieverHandler(llm, vector_store)
            )
            registry.register(
                NodeType.PINECONE_VECTOR_STORE, PineconeVectorStoreHandler(llm, vector_store)
            )
            registry.register(
                NodeType.CHAIN_RETRIEVAL_QA, ChainRetrievalQAHandler(llm, vector_store)
            )

    if chat_memory is not None:
        registry.register(NodeType.MEMORY_MANAGER, MemoryManagerHandler(chat_memory))

    if message_sender is not None:
        registry.register(NodeType.TELEGRAM_MESSAGE, TelegramMessageHandler(message_sender))

    if file_base_dir is not None:
        registry.register(NodeType.FILE_OPERATION, FileOperationHandler(file_base_dir))

    return registry


__all__ = [
    "NodeContext",
    "NodeDispatcher",
    "NodeHandler",
    "NodeHandlerRegistry",
    "NodeResult",
    "build_default_registry",
]
