"""
Tests for the AI node handlers and their supporting services.

A scripted FakeLLM stands in for a real provider; embeddings are word counts
over a tiny vocabulary so similarity is easy to reason about.
"""

import pytest
from conftest import definition, edge, make_context, node

from febroflow.errors import FatalNodeError
from febroflow.graph.executor import FlowEngine
from febroflow.graph.flow import ConnectionType, NodeType
from febroflow.llm.provider import LLMProvider, LLMResponse
from febroflow.nodes import build_default_registry
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
from febroflow.schemas.execution_state import ExecutionStatus
from febroflow.services.chat_memory import ChatMessage, InMemoryChatMemory
from febroflow.services.vector_store import (
    InMemoryVectorStore,
    VectorRecord,
    cosine_similarity,
)
from febroflow.storage import InMemoryExecutionStore, InMemoryFlowRepository

VOCAB = ["cat", "dog", "fish"]


def _vector(text: str) -> list[float]:
    return [float(text.lower().count(word)) for word in VOCAB]


# ---- Fake provider that records every call ----
class FakeLLM(LLMProvider):
    def __init__(self, replies: list[str] | None = None):
        self.replies = list(replies or [])
        self.calls: list[dict] = []
        self.embed_calls: list[tuple[list[str], str | None]] = []

    async def acomplete(self, messages, system="", model=None, max_tokens=1024, temperature=None):
        self.calls.append(
            {
                "messages": messages,
                "system": system,
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        content = self.replies.pop(0) if self.replies else f"echo: {messages[-1]['content']}"
        return LLMResponse(content=content, model=model or "fake-model")

    async def aembed(self, texts, model=None):
        self.embed_calls.append((list(texts), model))
        return [_vector(t) for t in texts]


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def memory():
    return InMemoryChatMemory()


@pytest.fixture
def vectors():
    return InMemoryVectorStore()


def sub_node(node_id: str, node_type: NodeType, **parameters):
    return node(node_id, type=node_type, parameters=parameters)


# === COMPLETION NODES ===


class TestOpenAIHandler:
    @pytest.mark.asyncio
    async def test_prompt_template_and_output(self, llm):
        spec = node(
            "ai",
            type=NodeType.OPEN_AI,
            parameters={"prompt": "Summarize: {{ text }}", "system_prompt": "Be brief"},
        )

        result = await OpenAIHandler(llm).execute(spec, make_context(spec, {"text": "long"}))

        assert result.data["response"] == "echo: Summarize: long"
        assert result.data["model"] == "fake-model"
        assert llm.calls[0]["system"] == "Be brief"

    @pytest.mark.asyncio
    async def test_attached_language_model_settings(self, llm):
        spec = node("ai", type=NodeType.OPEN_AI, parameters={"temperature": 0.9})
        model = sub_node("m", NodeType.OPEN_AI_CHAT_MODEL, model="gpt-x", temperature=0.2,
                         max_tokens=64)
        ctx = make_context(spec, {"text": "hi"}, attachments={"ai_language_model": [model]})

        await OpenAIHandler(llm).execute(spec, ctx)

        call = llm.calls[0]
        assert call["model"] == "gpt-x"
        assert call["temperature"] == 0.9
        assert call["max_tokens"] == 64

    @pytest.mark.asyncio
    async def test_missing_prompt_is_fatal(self, llm):
        spec = node("ai", type=NodeType.OPEN_AI)

        with pytest.raises(FatalNodeError):
            await OpenAIHandler(llm).execute(spec, make_context(spec))


class TestChatModelHandler:
    @pytest.mark.asyncio
    async def test_without_memory(self, llm, memory):
        spec = node("chat", type=NodeType.OPEN_AI_CHAT_MODEL)

        result = await ChatModelHandler(llm, memory).execute(
            spec, make_context(spec, {"text": "hi", "chat_id": "42"})
        )

        assert result.data["response"] == "echo: hi"
        assert llm.calls[0]["messages"] == [{"role": "user", "content": "hi"}]
        assert await memory.history("flow-1", "42") == []

    @pytest.mark.asyncio
    async def test_attached_memory_window(self, llm, memory):
        for i in range(3):
            await memory.append(
                ChatMessage(chat_id="42", flow_id="flow-1", role="user", content=f"old {i}")
            )
        spec = node("chat", type=NodeType.OPEN_AI_CHAT_MODEL)
        mem_node = sub_node("mem", NodeType.MEMORY_MANAGER, window_size=2)
        ctx = make_context(
            spec, {"text": "new", "chat_id": "42"}, attachments={"ai_memory": [mem_node]}
        )

        await ChatModelHandler(llm, memory).execute(spec, ctx)

        assert [m["content"] for m in llm.calls[0]["messages"]] == ["old 1", "old 2", "new"]
        stored = await memory.history("flow-1", "42")
        assert [(m.role, m.content) for m in stored[-2:]] == [
            ("user", "new"),
            ("assistant", "echo: new"),
        ]

    @pytest.mark.asyncio
    async def test_memory_needs_a_chat_id(self, llm, memory):
        spec = node("chat", type=NodeType.OPEN_AI_CHAT_MODEL, parameters={"use_memory": True})

        with pytest.raises(FatalNodeError):
            await ChatModelHandler(llm, memory).execute(spec, make_context(spec, {"text": "x"}))


class TestTranslatorHandler:
    @pytest.mark.asyncio
    async def test_translation(self):
        llm = FakeLLM(replies=["  Bonjour  "])
        spec = node(
            "tr", type=NodeType.TRANSLATOR, parameters={"target_language": "French"}
        )

        result = await TranslatorHandler(llm).execute(spec, make_context(spec, {"text": "Hi"}))

        assert result.data["translation"] == "Bonjour"
        assert result.data["target_language"] == "French"
        assert "into French" in llm.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_target_language_required(self, llm):
        spec = node("tr", type=NodeType.TRANSLATOR)

        with pytest.raises(FatalNodeError):
            await TranslatorHandler(llm).execute(spec, make_context(spec, {"text": "Hi"}))


class TestSequentialThinkingHandler:
    @pytest.mark.asyncio
    async def test_steps_then_conclusion(self):
        llm = FakeLLM(replies=["first", "second", "answer"])
        spec = node("think", type=NodeType.SEQUENTIAL_THINKING, parameters={"steps": 2})

        result = await SequentialThinkingHandler(llm).execute(
            spec, make_context(spec, {"text": "2 + 2?"})
        )

        assert len(llm.calls) == 3
        assert result.data["steps"] == ["first", "second"]
        assert result.data["response"] == "answer"
        assert "Step 1: first" in llm.calls[1]["messages"][0]["content"]


# === EMBEDDINGS AND RETRIEVAL ===


class TestRetrieval:
    @pytest.mark.asyncio
    async def test_embeddings_node(self, llm):
        spec = node("emb", type=NodeType.EMBEDDINGS_OPEN_AI, parameters={"model": "emb-small"})

        result = await EmbeddingsHandler(llm).execute(spec, make_context(spec, {"text": "cat"}))

        assert result.data["embedding"] == [1.0, 0.0, 0.0]
        assert llm.embed_calls == [(["cat"], "emb-small")]

    @pytest.mark.asyncio
    async def test_upsert_then_retrieve(self, llm, vectors):
        upsert = node("store", type=NodeType.PINECONE_VECTOR_STORE)
        docs = {"documents": ["the cat sat", {"id": "d2", "text": "a dog ran"}]}

        stored = await PineconeVectorStoreHandler(llm, vectors).execute(
            upsert, make_context(upsert, docs)
        )

        assert stored.data["upserted"] == 2
        assert stored.data["namespace"] == "flow-1"
        assert stored.data["ids"][1] == "d2"

        retriever = node("find", type=NodeType.VECTOR_STORE_RETRIEVER, parameters={"top_k": 1})
        found = await VectorStoreRetrieverHandler(llm, vectors).execute(
            retriever, make_context(retriever, {"text": "where is my cat"})
        )

        assert [d["text"] for d in found.data["documents"]] == ["the cat sat"]
        assert found.data["context"] == "the cat sat"

    @pytest.mark.asyncio
    async def test_attached_store_namespace_and_min_score(self, llm, vectors):
        await vectors.upsert(
            "pets",
            [
                VectorRecord(id="c", vector=[1.0, 0.0, 0.0], text="cat"),
                VectorRecord(id="d", vector=[0.0, 1.0, 0.0], text="dog"),
            ],
        )
        spec = node("find", type=NodeType.VECTOR_STORE_RETRIEVER, parameters={"min_score": 0.5})
        store_node = sub_node("vs", NodeType.PINECONE_VECTOR_STORE, namespace="pets")
        ctx = make_context(
            spec, {"text": "cat"}, attachments={"ai_vector_store": [store_node]}
        )

        found = await VectorStoreRetrieverHandler(llm, vectors).execute(spec, ctx)

        assert [d["id"] for d in found.data["documents"]] == ["c"]

    @pytest.mark.asyncio
    async def test_input_embedding_skips_embedding_call(self, llm, vectors):
        await vectors.upsert("flow-1", [VectorRecord(id="f", vector=[0.0, 0.0, 1.0], text="fish")])
        spec = node("find", type=NodeType.VECTOR_STORE_RETRIEVER)

        found = await VectorStoreRetrieverHandler(llm, vectors).execute(
            spec, make_context(spec, {"embedding": [0.0, 0.0, 2.0]})
        )

        assert llm.embed_calls == []
        assert found.data["documents"][0]["id"] == "f"

    @pytest.mark.asyncio
    async def test_retrieval_qa(self, vectors):
        llm = FakeLLM(replies=["Cats sit."])
        await vectors.upsert(
            "flow-1", [VectorRecord(id="c", vector=[1.0, 0.0, 0.0], text="the cat sat")]
        )
        spec = node("qa", type=NodeType.CHAIN_RETRIEVAL_QA)

        result = await ChainRetrievalQAHandler(llm, vectors).execute(
            spec, make_context(spec, {"text": "what does the cat do?"})
        )

        assert result.data["answer"] == "Cats sit."
        assert result.data["sources"][0]["id"] == "c"
        assert "the cat sat" in llm.calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_no_documents_is_fatal(self, llm, vectors):
        spec = node("store", type=NodeType.PINECONE_VECTOR_STORE)

        with pytest.raises(FatalNodeError):
            await PineconeVectorStoreHandler(llm, vectors).execute(spec, make_context(spec))


# === MEMORY MANAGER ===


class TestMemoryManagerHandler:
    @pytest.mark.asyncio
    async def test_append_load_clear(self, memory):
        handler = MemoryManagerHandler(memory)

        def run(action: str, **params):
            spec = node("mem", type=NodeType.MEMORY_MANAGER, parameters={"action": action, **params})
            return handler.execute(spec, make_context(spec, {"text": "hello", "chat_id": "7"}))

        appended = await run("append")
        loaded = await run("load")
        cleared = await run("clear")

        assert appended.data["memory_appended"] is True
        assert loaded.data["history"] == [{"role": "user", "content": "hello"}]
        assert cleared.data["memory_cleared"] == 1
        assert await memory.history("flow-1", "7") == []

    @pytest.mark.asyncio
    async def test_unknown_action_is_fatal(self, memory):
        spec = node("mem", type=NodeType.MEMORY_MANAGER, parameters={"action": "forget"})

        with pytest.raises(FatalNodeError):
            await MemoryManagerHandler(memory).execute(spec, make_context(spec, {"chat_id": "7"}))


# === SERVICES ===


class TestServices:
    def test_cosine_similarity(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 2.0])

    @pytest.mark.asyncio
    async def test_vector_namespaces_are_isolated(self, vectors):
        await vectors.upsert("a", [VectorRecord(id="1", vector=[1.0, 0.0, 0.0])])

        assert await vectors.query("b", [1.0, 0.0, 0.0]) == []

    @pytest.mark.asyncio
    async def test_chat_history_limit(self, memory):
        for i in range(4):
            await memory.append(ChatMessage(chat_id="c", flow_id="f", role="user", content=str(i)))

        assert [m.content for m in await memory.history("f", "c", limit=2)] == ["2", "3"]
        assert await memory.history("f", "c", limit=0) == []


# === END TO END ===


class TestChatFlow:
    @pytest.mark.asyncio
    async def test_conversation_memory_spans_executions(self, llm, memory, engine_config):
        flow = definition(
            [
                node("start", type=NodeType.TELEGRAM_TRIGGER),
                node("chat", type=NodeType.OPEN_AI_CHAT_MODEL, parameters={"model": "gpt-x"}),
                node("mem", type=NodeType.MEMORY_MANAGER, parameters={"window_size": 10}),
            ],
            [
                edge("start", "chat"),
                edge("mem", "chat", type=ConnectionType.AI_MEMORY),
            ],
            flow_id="assistant",
        )
        engine = FlowEngine(
            flow_repository=InMemoryFlowRepository([flow]),
            execution_store=InMemoryExecutionStore(),
            registry=build_default_registry(llm=llm, chat_memory=memory),
            config=engine_config(strict_entry_resolution=True),
        )

        def update(text: str) -> dict:
            return {"message": {"chat": {"id": 42}, "from": {"id": 1}, "text": text}}

        await engine.execute_flow("assistant", "42", update("hi"))
        second_id = await engine.execute_flow("assistant", "42", update("again"))

        state = await engine.get_execution_state(second_id)
        assert state.status == ExecutionStatus.COMPLETED
        assert state.output_data["response"] == "echo: again"
        assert [m["content"] for m in llm.calls[1]["messages"]] == ["hi", "echo: hi", "again"]
        assert llm.calls[1]["model"] == "gpt-x"
