"""Vector store abstraction for retrieval nodes."""

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class VectorRecord:
    id: str
    vector: list[float]
    text: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    """A query hit, highest score first."""

    id: str
    score: float
    text: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "score": self.score, "text": self.text, "metadata": self.metadata}


class VectorStore(ABC):
    """Namespaced vector index."""

    @abstractmethod
    async def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        """Insert or replace records. Returns how many were written."""

    @abstractmethod
    async def query(self, namespace: str, vector: list[float], top_k: int = 4) -> list[VectorMatch]:
        ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorStore(VectorStore):
    """Brute-force cosine similarity over records kept in memory."""

    def __init__(self):
        self._namespaces: dict[str, dict[str, VectorRecord]] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        async with self._lock:
            index = self._namespaces.setdefault(namespace, {})
            for record in records:
                index[record.id] = record
        return len(records)

    async def query(self, namespace: str, vector: list[float], top_k: int = 4) -> list[VectorMatch]:
        records = list(self._namespaces.get(namespace, {}).values())
        scored = [
            VectorMatch(
                id=r.id,
                score=cosine_similarity(vector, r.vector),
                text=r.text,
                metadata=dict(r.metadata),
            )
            for r in records
        ]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[:top_k]
