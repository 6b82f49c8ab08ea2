# orchestrator/memory/semantic_memory.py
# @ai-rules:
# 1. [Constraint]: Best-effort sidecar. recall()/embed() raise SidecarError; callers log "(non-fatal)" and continue.
# 2. [Pattern]: Uses google-genai SDK (lazy import) for embeddings (text-embedding-005), Qdrant for storage.
# 3. [Pattern]: One Qdrant collection per bank: memory_{bank with - -> _}.
# 4. [Gotcha]: Init failure is remembered; no retry storm. reset() clears it (used by tests).
# 5. [Constraint]: Embedding calls are bounded by `timeout`. A hung Vertex call becomes SidecarError.
"""
Semantic memory sidecar: recall(bank, query, limit) and embed(content, bank, metadata).

Banks: code, chat-history, conversations, documents, general.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Optional, Protocol

from ..core.errors import SidecarError
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-005"
VECTOR_SIZE = 768
COLLECTION_PREFIX = "memory_"

MEMORY_BANKS = ("code", "chat-history", "conversations", "documents", "general")


class MemorySidecar(Protocol):
    async def recall(self, bank: str, query: str, limit: int = 3) -> list[dict]: ...

    async def embed(self, content: str, bank: str, metadata: Optional[dict] = None) -> None: ...


def collection_for(bank: str) -> str:
    return COLLECTION_PREFIX + bank.replace("-", "_")


class SemanticMemory:
    """google-genai embeddings + Qdrant vectors."""

    def __init__(
        self,
        project: str,
        location: str = "global",
        vector_store: Optional[VectorStore] = None,
        embedding_model: str = EMBEDDING_MODEL,
        timeout: float = 10.0,
    ):
        self.project = project
        self.location = location
        self.embedding_model = embedding_model
        self.timeout = timeout
        self._vector_store = vector_store or VectorStore()
        self._client = None
        self._init_error: Optional[str] = None

    def _ensure_client(self):
        if self._client is not None:
            return self._client
        if self._init_error:
            raise SidecarError("memory", self._init_error)
        try:
            from google import genai

            self._client = genai.Client(vertexai=True, project=self.project, location=self.location)
            logger.info(f"Semantic memory initialized (model={self.embedding_model})")
        except Exception as e:
            self._init_error = str(e)
            logger.warning(f"Semantic memory init failed (non-fatal): {e}")
            raise SidecarError("memory", e) from e
        return self._client

    def reset(self) -> None:
        self._client = None
        self._init_error = None

    async def _vector(self, text: str) -> list[float]:
        client = self._ensure_client()
        try:
            response = await asyncio.wait_for(
                client.aio.models.embed_content(model=self.embedding_model, contents=text),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise SidecarError("memory", f"embedding timed out after {self.timeout}s") from e
        return list(response.embeddings[0].values)

    async def recall(self, bank: str, query: str, limit: int = 3) -> list[dict]:
        """Nearest memories in `bank`. Each item: {content, score, metadata}."""
        try:
            vector = await self._vector(query)
            collection = collection_for(bank)
            await self._vector_store.ensure_collection(collection, VECTOR_SIZE)
            hits = await self._vector_store.search(collection, vector, limit=limit)
        except SidecarError:
            raise
        except Exception as e:
            raise SidecarError("memory", e) from e

        results = []
        for hit in hits:
            payload = dict(hit.get("payload") or {})
            content = payload.pop("content", "")
            results.append({"content": content, "score": hit.get("score", 0), "metadata": payload})
        return results

    async def embed(self, content: str, bank: str, metadata: Optional[dict[str, Any]] = None) -> None:
        """Store `content` in `bank` with metadata as payload."""
        if not content.strip():
            return
        try:
            vector = await self._vector(content)
            collection = collection_for(bank)
            await self._vector_store.ensure_collection(collection, VECTOR_SIZE)
            payload = {**(metadata or {}), "content": content, "bank": bank, "stored_at": time.time()}
            await self._vector_store.upsert(collection, str(uuid.uuid4()), vector, payload)
        except SidecarError:
            raise
        except Exception as e:
            raise SidecarError("memory", e) from e
        logger.debug(f"Embedded {len(content)} chars into memory bank '{bank}'")

    async def close(self) -> None:
        await self._vector_store.close()
