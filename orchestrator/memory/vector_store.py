# orchestrator/memory/vector_store.py
# @ai-rules:
# 1. [Constraint]: Uses httpx only (no qdrant-client pip package). Qdrant REST API at QDRANT_URL.
# 2. [Pattern]: All methods are async and raise httpx errors. SemanticMemory wraps them in SidecarError.
# 3. [Gotcha]: ensure_collection is idempotent and cached per process -- one GET per bank, not per write.
# 4. [Pattern]: vector_size=768 for text-embedding-005 model.
"""Async Qdrant REST client. One collection per memory bank."""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class VectorStore:
    """Qdrant collections, upserts and similarity search over REST."""

    def __init__(
        self,
        base_url: str = "http://localhost:6333",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._ready: set[str] = set()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def ensure_collection(self, name: str, vector_size: int = 768) -> None:
        if name in self._ready:
            return
        client = await self._get_client()
        resp = await client.get(f"/collections/{name}")
        if resp.status_code != 200:
            resp = await client.put(
                f"/collections/{name}",
                json={"vectors": {"size": vector_size, "distance": "Cosine"}},
            )
            if resp.status_code not in (200, 409):  # 409 = created concurrently
                resp.raise_for_status()
            logger.info(f"Collection '{name}' ready (vector_size={vector_size})")
        self._ready.add(name)

    async def upsert(
        self,
        collection: str,
        point_id: str,
        vector: list[float],
        payload: dict[str, Any],
    ) -> None:
        client = await self._get_client()
        resp = await client.put(
            f"/collections/{collection}/points",
            params={"wait": "true"},
            json={"points": [{"id": point_id, "vector": vector, "payload": payload}]},
        )
        resp.raise_for_status()

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 5,
        score_threshold: Optional[float] = None,
    ) -> list[dict[str, Any]]:
        """Similarity search. Returns [{id, score, payload}], best first."""
        client = await self._get_client()
        body: dict[str, Any] = {"vector": vector, "limit": limit, "with_payload": True}
        if score_threshold is not None:
            body["score_threshold"] = score_threshold
        resp = await client.post(f"/collections/{collection}/points/search", json=body)
        if resp.status_code == 404:
            return []
        resp.raise_for_status()
        return [
            {"id": r.get("id"), "score": r.get("score", 0), "payload": r.get("payload", {})}
            for r in resp.json().get("result", [])
        ]
