# tests/test_memory.py
# @ai-rules:
# 1. [Constraint]: No Vertex AI, no Qdrant. The genai client is a SimpleNamespace stub; Qdrant is httpx.MockTransport.
# 2. [Pattern]: QdrantFake keeps points in a dict so embed -> recall can be observed end to end.
"""SemanticMemory + VectorStore: banks, collections, failure wrapping."""
from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from orchestrator.core.errors import SidecarError
from orchestrator.memory.semantic_memory import SemanticMemory, collection_for
from orchestrator.memory.vector_store import VectorStore


class QdrantFake:
    def __init__(self, search_status: int = 200):
        self.collections: set[str] = set()
        self.points: dict[str, list[dict]] = {}
        self.search_status = search_status
        self.requests: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        parts = path.strip("/").split("/")
        name = parts[1]
        if request.method == "GET" and len(parts) == 2:
            return httpx.Response(200 if name in self.collections else 404, json={})
        if request.method == "PUT" and len(parts) == 2:
            self.collections.add(name)
            return httpx.Response(200, json={"result": True})
        if request.method == "PUT" and parts[2:] == ["points"]:
            self.points.setdefault(name, []).extend(json.loads(request.content)["points"])
            return httpx.Response(200, json={"result": {"status": "completed"}})
        if request.method == "POST" and parts[2:] == ["points", "search"]:
            if self.search_status != 200:
                return httpx.Response(self.search_status, json={})
            body = json.loads(request.content)
            hits = [
                {"id": p["id"], "score": 0.9, "payload": p["payload"]}
                for p in self.points.get(name, [])[: body["limit"]]
            ]
            return httpx.Response(200, json={"result": hits})
        return httpx.Response(400, json={})


def _embedder(fail: bool = False, hang: bool = False):
    async def embed_content(model: str, contents: str):
        if hang:
            await asyncio.sleep(3600)
        if fail:
            raise RuntimeError("quota exceeded")
        return SimpleNamespace(embeddings=[SimpleNamespace(values=[0.1] * 768)])

    return SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(embed_content=embed_content)))


def _memory(qdrant: QdrantFake, fail_embed: bool = False, hang: bool = False, timeout: float = 10.0) -> SemanticMemory:
    store = VectorStore("http://qdrant.local", transport=httpx.MockTransport(qdrant))
    memory = SemanticMemory(project="test-project", vector_store=store, timeout=timeout)
    memory._client = _embedder(fail=fail_embed, hang=hang)
    return memory


class TestSemanticMemory:
    def test_collection_names(self) -> None:
        assert collection_for("chat-history") == "memory_chat_history"
        assert collection_for("general") == "memory_general"

    @pytest.mark.asyncio
    async def test_embed_then_recall(self) -> None:
        qdrant = QdrantFake()
        memory = _memory(qdrant)
        await memory.embed("viewer1 loves rust", "chat-history", {"user": "viewer1"})
        results = await memory.recall("chat-history", "rust", limit=3)
        await memory.close()

        assert "memory_chat_history" in qdrant.collections
        assert results == [{
            "content": "viewer1 loves rust",
            "score": 0.9,
            "metadata": {
                "user": "viewer1",
                "bank": "chat-history",
                "stored_at": results[0]["metadata"]["stored_at"],
            },
        }]
        # Collection existence is checked once per bank.
        assert qdrant.requests.count(("GET", "/collections/memory_chat_history")) == 1

    @pytest.mark.asyncio
    async def test_empty_content_is_skipped(self) -> None:
        qdrant = QdrantFake()
        await _memory(qdrant).embed("   ", "general")
        assert qdrant.requests == []

    @pytest.mark.asyncio
    async def test_missing_collection_recalls_nothing(self) -> None:
        qdrant = QdrantFake(search_status=404)
        assert await _memory(qdrant).recall("documents", "anything") == []

    @pytest.mark.asyncio
    async def test_embedding_failure_is_sidecar_error(self) -> None:
        memory = _memory(QdrantFake(), fail_embed=True)
        with pytest.raises(SidecarError, match="quota exceeded"):
            await memory.recall("general", "x")
        with pytest.raises(SidecarError):
            await memory.embed("hello", "general")

    @pytest.mark.asyncio
    async def test_hung_embedding_times_out(self) -> None:
        qdrant = QdrantFake()
        memory = _memory(qdrant, hang=True, timeout=0.05)
        with pytest.raises(SidecarError, match="timed out"):
            await asyncio.wait_for(memory.recall("general", "x"), timeout=2.0)
        with pytest.raises(SidecarError, match="timed out"):
            await asyncio.wait_for(memory.embed("hello", "general"), timeout=2.0)
        assert qdrant.requests == []

    @pytest.mark.asyncio
    async def test_qdrant_failure_is_sidecar_error(self) -> None:
        memory = _memory(QdrantFake(search_status=500))
        with pytest.raises(SidecarError):
            await memory.recall("general", "x")

    @pytest.mark.asyncio
    async def test_init_failure_is_remembered(self) -> None:
        memory = SemanticMemory(project="test-project", vector_store=VectorStore("http://qdrant.local"))
        memory._init_error = "no credentials"
        with pytest.raises(SidecarError, match="no credentials"):
            await memory.recall("general", "x")
        memory.reset()
        assert memory._init_error is None
