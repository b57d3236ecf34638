"""
AI node handlers.

All of them talk to an LLMProvider; retrieval nodes also need a VectorStore,
memory-aware nodes a ChatMemoryStore. Supporting sub-nodes bound through
``ai_*`` connections refine a handler's settings:

- ai_language_model: model/temperature/max_tokens of an attached chat model
- ai_embedding: embedding model of an attached embeddings node
- ai_memory: window size of an attached memory node (enables memory)
- ai_retriever / ai_vector_store: namespace/top_k of an attached store

Common parameters: ``input_field`` (where the text is read, default
"text"), ``output_field`` (where the result is written), ``prompt`` and
``system_prompt`` (templates already rendered against the input).
"""

import logging
import uuid
from typing import Any

from febroflow.errors import FatalNodeError
from febroflow.graph.flow import ConnectionType, NodeSpec
from febroflow.llm.provider import LLMProvider
from febroflow.nodes.base import NodeContext, NodeHandler, NodeResult
from febroflow.nodes.templating import lookup_path
from febroflow.services.chat_memory import ChatMemoryStore, ChatMessage
from febroflow.services.vector_store import VectorMatch, VectorRecord, VectorStore

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_WINDOW = 10
DEFAULT_TOP_K = 4


def _read_text(ctx: NodeContext, key: str = "input_field", default_field: str = "text") -> str:
    field_path = ctx.params.get(key, default_field)
    value = lookup_path(ctx.input_data, str(field_path))
    return "" if value is None else str(value)


def _chat_id(ctx: NodeContext) -> str:
    chat_id = ctx.input_data.get("chat_id") or ctx.params.get("chat_id") or ctx.context_id
    if not chat_id:
        raise FatalNodeError("No chat_id in the input data and no context id for this execution")
    return str(chat_id)


def _attached_params(ctx: NodeContext, connection_type: ConnectionType) -> dict[str, Any]:
    node = ctx.attached(connection_type.value)
    return dict(node.parameters) if node else {}


class _LLMHandler(NodeHandler):
    def __init__(self, llm: LLMProvider):
        self.llm = llm

    def model_settings(self, ctx: NodeContext) -> dict[str, Any]:
        settings = _attached_params(ctx, ConnectionType.AI_LANGUAGE_MODEL)
        settings.update({k: v for k, v in ctx.params.items() if v is not None})
        return {
            "model": settings.get("model"),
            "max_tokens": int(settings.get("max_tokens", 1024)),
            "temperature": settings.get("temperature"),
        }

    async def complete(
        self,
        ctx: NodeContext,
        messages: list[dict[str, Any]],
        system: str = "",
    ) -> Any:
        settings = self.model_settings(ctx)
        response = await self.llm.acomplete(messages=messages, system=system, **settings)
        logger.debug(
            f"  LLM {response.model}: {response.input_tokens} in / {response.output_tokens} out"
        )
        return response

    async def embed_one(self, ctx: NodeContext, text: str) -> list[float]:
        model = _attached_params(ctx, ConnectionType.AI_EMBEDDING).get("model")
        model = ctx.params.get("embedding_model") or model
        vectors = await self.llm.aembed([text], model=model)
        return vectors[0]


class OpenAIHandler(_LLMHandler):
    """Single-turn completion: prompt (or the input text) in, response out."""

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        prompt = ctx.params.get("prompt") or _read_text(ctx)
        if not prompt:
            raise FatalNodeError("No prompt and no input text")

        response = await self.complete(
            ctx,
            [{"role": "user", "content": str(prompt)}],
            system=str(ctx.params.get("system_prompt", "")),
        )
        data = dict(ctx.input_data)
        data[ctx.params.get("output_field", "response")] = response.content
        data["model"] = response.model
        return NodeResult(data=data)


class ChatModelHandler(_LLMHandler):
    """
    Chat completion with optional conversation memory.

    Memory is used when a ChatMemoryStore is available and either a memory
    node is attached or ``use_memory`` is set. The user turn and the reply
    are appended to the conversation.
    """

    def __init__(self, llm: LLMProvider, chat_memory: ChatMemoryStore | None = None):
        super().__init__(llm)
        self.chat_memory = chat_memory

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        text = ctx.params.get("prompt") or _read_text(ctx)
        if not text:
            raise FatalNodeError("No prompt and no input text")
        text = str(text)

        memory_params = _attached_params(ctx, ConnectionType.AI_MEMORY)
        use_memory = self.chat_memory is not None and (
            ctx.attached(ConnectionType.AI_MEMORY.value) is not None
            or bool(ctx.params.get("use_memory"))
        )

        messages: list[dict[str, Any]] = []
        chat_id = None
        if use_memory:
            chat_id = _chat_id(ctx)
            window = int(
                memory_params.get("window_size")
                or ctx.params.get("memory_window")
                or DEFAULT_MEMORY_WINDOW
            )
            history = await self.chat_memory.history(ctx.flow_id, chat_id, limit=window)
            messages.extend(m.as_llm_message() for m in history)
        messages.append({"role": "user", "content": text})

        response = await self.complete(
            ctx, messages, system=str(ctx.params.get("system_prompt", ""))
        )

        if use_memory:
            await self.chat_memory.append(
                ChatMessage(chat_id=chat_id, flow_id=ctx.flow_id, role="user", content=text)
            )
            await self.chat_memory.append(
                ChatMessage(
                    chat_id=chat_id,
                    flow_id=ctx.flow_id,
                    role="assistant",
                    content=response.content,
                )
            )

        data = dict(ctx.input_data)
        data[ctx.params.get("output_field", "response")] = response.content
        data["model"] = response.model
        return NodeResult(data=data)


class TranslatorHandler(_LLMHandler):
    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        target = ctx.params.get("target_language")
        if not target:
            raise FatalNodeError("Translator needs 'target_language'")
        text = _read_text(ctx)
        source = ctx.params.get("source_language")

        system = (
            f"Translate the user's text {'from ' + str(source) + ' ' if source else ''}"
            f"into {target}. Reply with the translation only."
        )
        response = await self.complete(ctx, [{"role": "user", "content": text}], system=system)

        data = dict(ctx.input_data)
        data[ctx.params.get("output_field", "translation")] = response.content.strip()
        data["target_language"] = target
        return NodeResult(data=data)


class SequentialThinkingHandler(_LLMHandler):
    """
    Works a problem in ``steps`` rounds, each seeing the previous thoughts,
    then asks for a conclusion.
    """

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        problem = ctx.params.get("prompt") or _read_text(ctx)
        if not problem:
            raise FatalNodeError("No problem statement")
        steps = max(1, int(ctx.params.get("steps", 3)))
        system = str(
            ctx.params.get("system_prompt")
            or "Think through the problem one step at a time. Give only the next step."
        )

        thoughts: list[str] = []
        for i in range(steps):
            so_far = "\n".join(f"Step {n + 1}: {t}" for n, t in enumerate(thoughts))
            content = f"Problem: {problem}\n{so_far}\nWrite step {i + 1}."
            response = await self.complete(ctx, [{"role": "user", "content": content}], system)
            thoughts.append(response.content.strip())

        so_far = "\n".join(f"Step {n + 1}: {t}" for n, t in enumerate(thoughts))
        conclusion = await self.complete(
            ctx,
            [
                {
                    "role": "user",
                    "content": f"Problem: {problem}\n{so_far}\nState the final answer.",
                }
            ],
            system="Summarize the reasoning into a final answer.",
        )

        data = dict(ctx.input_data)
        data["steps"] = thoughts
        data[ctx.params.get("output_field", "response")] = conclusion.content.strip()
        return NodeResult(data=data)


class EmbeddingsHandler(_LLMHandler):
    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        text = _read_text(ctx)
        if not text:
            raise FatalNodeError("Nothing to embed")
        vectors = await self.llm.aembed([text], model=ctx.params.get("model"))
        data = dict(ctx.input_data)
        data[ctx.params.get("output_field", "embedding")] = vectors[0]
        return NodeResult(data=data)


class _RetrievalHandler(_LLMHandler):
    def __init__(self, llm: LLMProvider, vector_store: VectorStore):
        super().__init__(llm)
        self.vector_store = vector_store

    def store_settings(self, ctx: NodeContext) -> tuple[str, int]:
        settings = _attached_params(ctx, ConnectionType.AI_VECTOR_STORE)
        settings.update(_attached_params(ctx, ConnectionType.AI_RETRIEVER))
        settings.update(ctx.params)
        namespace = str(settings.get("namespace") or ctx.flow_id)
        top_k = int(settings.get("top_k", DEFAULT_TOP_K))
        return namespace, top_k

    async def retrieve(self, ctx: NodeContext, query: str) -> list[VectorMatch]:
        namespace, top_k = self.store_settings(ctx)
        vector = ctx.input_data.get("embedding")
        if not isinstance(vector, list) or not vector:
            vector = await self.embed_one(ctx, query)
        matches = await self.vector_store.query(namespace, vector, top_k=top_k)
        min_score = ctx.params.get("min_score")
        if min_score is not None:
            matches = [m for m in matches if m.score >= float(min_score)]
        return matches


class VectorStoreRetrieverHandler(_RetrievalHandler):
    """Adds ``documents`` (scored matches) and ``context`` (joined text)."""

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        query = str(ctx.params.get("query") or _read_text(ctx))
        if not query and not ctx.input_data.get("embedding"):
            raise FatalNodeError("No query text")

        matches = await self.retrieve(ctx, query)
        data = dict(ctx.input_data)
        data["documents"] = [m.to_dict() for m in matches]
        data["context"] = "\n\n".join(m.text for m in matches if m.text)
        return NodeResult(data=data)


class PineconeVectorStoreHandler(_RetrievalHandler):
    """
    Embeds and upserts documents.

    Documents are read from ``documents_field`` (default "documents"): a list
    of strings or of ``{"text", "id", "metadata"}`` objects. Without it the
    input text is stored as one document.
    """

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        raw = lookup_path(ctx.input_data, str(ctx.params.get("documents_field", "documents")))
        if raw is None:
            text = _read_text(ctx)
            raw = [text] if text else []
        if not isinstance(raw, list) or not raw:
            raise FatalNodeError("No documents to store")

        documents: list[dict[str, Any]] = []
        for item in raw:
            if isinstance(item, str):
                documents.append({"text": item})
            elif isinstance(item, dict) and item.get("text"):
                documents.append(item)
            else:
                raise FatalNodeError(f"Unsupported document: {item!r}")

        model = ctx.params.get("embedding_model") or _attached_params(
            ctx, ConnectionType.AI_EMBEDDING
        ).get("model")
        vectors = await self.llm.aembed([d["text"] for d in documents], model=model)

        records = [
            VectorRecord(
                id=str(doc.get("id") or uuid.uuid4().hex),
                vector=vector,
                text=doc["text"],
                metadata=dict(doc.get("metadata") or {}),
            )
            for doc, vector in zip(documents, vectors, strict=True)
        ]
        namespace, _ = self.store_settings(ctx)
        written = await self.vector_store.upsert(namespace, records)

        data = dict(ctx.input_data)
        data["upserted"] = written
        data["ids"] = [r.id for r in records]
        data["namespace"] = namespace
        return NodeResult(data=data)


class ChainRetrievalQAHandler(_RetrievalHandler):
    """Retrieves context for a question and answers from it."""

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        question = str(ctx.params.get("question") or _read_text(ctx))
        if not question:
            raise FatalNodeError("No question")

        matches = await self.retrieve(ctx, question)
        context = "\n\n".join(m.text for m in matches if m.text)
        system = str(
            ctx.params.get("system_prompt")
            or "Answer the question using only the provided context. "
            "If the context does not contain the answer, say you don't know."
        )
        response = await self.complete(
            ctx,
            [{"role": "user", "content": f"Context:\n{context}\n\nQuestion: {question}"}],
            system=system,
        )

        data = dict(ctx.input_data)
        data[ctx.params.get("output_field", "answer")] = response.content
        data["sources"] = [m.to_dict() for m in matches]
        return NodeResult(data=data)


class MemoryManagerHandler(NodeHandler):
    """
    Reads or writes the conversation of the current chat.

    ``action``: "load" (default; adds ``history``), "append" (stores the input
    text with ``role``, default "user"), or "clear".
    """

    def __init__(self, chat_memory: ChatMemoryStore):
        self.chat_memory = chat_memory

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        chat_id = _chat_id(ctx)
        action = str(ctx.params.get("action", "load")).lower()
        data = dict(ctx.input_data)

        if action == "append":
            content = ctx.params.get("content") or _read_text(ctx)
            await self.chat_memory.append(
                ChatMessage(
                    chat_id=chat_id,
                    flow_id=ctx.flow_id,
                    role=str(ctx.params.get("role", "user")),
                    content=str(content),
                )
            )
            data["memory_appended"] = True
        elif action == "load":
            window = int(ctx.params.get("window_size", DEFAULT_MEMORY_WINDOW))
            history = await self.chat_memory.history(ctx.flow_id, chat_id, limit=window)
            data["history"] = [m.as_llm_message() for m in history]
        elif action == "clear":
            data["memory_cleared"] = await self.chat_memory.clear(ctx.flow_id, chat_id)
        else:
            raise FatalNodeError(f"Unknown memory action '{action}'")

        return NodeResult(data=data)
