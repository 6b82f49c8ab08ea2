# orchestrator/llm/openai_compat.py
# @ai-rules:
# 1. [Constraint]: Uses httpx only (no openai pip package). Every backend speaks POST {base_url}/chat/completions.
# 2. [Pattern]: Every failure (timeout, transport, non-2xx, malformed body) becomes ProviderError. No retries here.
# 3. [Gotcha]: tool_calls[].function.arguments is a JSON *string* on the wire. Decoded here; undecodable -> {"_raw": ...}.
# 4. [Pattern]: probe() is GET {base_url}/models. Never raises.
"""
OpenAI-compatible chat-completion client.

One instance per configured provider (openai, anthropic, gemini, grok, groq,
cerebras). All of them accept the same request shape behind their
OpenAI-compatible endpoints.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from ..config import ChatProviderConfig
from ..core.errors import ProviderError
from .types import ChatMessage, GenerateOptions, ProviderResponse, ToolCall, Usage

logger = logging.getLogger(__name__)


class OpenAICompatClient:
    """Async chat-completion client for a single OpenAI-compatible backend."""

    def __init__(
        self,
        config: ChatProviderConfig,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return self.config.provider.value

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _build_payload(self, messages: list[ChatMessage], options: GenerateOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_wire() for m in messages],
            "temperature": options.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if options.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t.get("description", ""),
                        "parameters": t.get("parameters", {"type": "object", "properties": {}}),
                    },
                }
                for t in options.tools
            ]
            payload["tool_choice"] = "auto"
        return payload

    async def generate(self, messages: list[ChatMessage], options: GenerateOptions) -> ProviderResponse:
        client = await self._get_client()
        payload = self._build_payload(messages, options)
        try:
            resp = await client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, f"timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, e) from e

        if resp.status_code >= 400:
            raise ProviderError(self.name, f"HTTP {resp.status_code}: {resp.text[:300]}")

        try:
            body = resp.json()
            message = body["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, f"malformed response: {e}") from e

        return ProviderResponse(
            content=message.get("content") or "",
            tool_calls=_parse_tool_calls(message.get("tool_calls") or []),
            usage=_parse_usage(body.get("usage")),
        )

    async def probe(self) -> bool:
        """Cheap availability check. Logs and returns False on any failure."""
        try:
            client = await self._get_client()
            resp = await client.get("/models")
        except httpx.HTTPError as e:
            logger.warning(f"Provider {self.name} probe failed: {e}")
            return False
        if resp.status_code != 200:
            logger.warning(f"Provider {self.name} probe returned HTTP {resp.status_code}")
            return False
        return True


def _parse_tool_calls(raw_calls: list[dict]) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for i, raw in enumerate(raw_calls):
        fn = raw.get("function") or {}
        raw_args = fn.get("arguments") or "{}"
        if isinstance(raw_args, dict):
            args = raw_args
        else:
            try:
                args = json.loads(raw_args)
            except ValueError:
                args = {"_raw": raw_args}
            if not isinstance(args, dict):
                args = {"_raw": raw_args}
        calls.append(ToolCall(
            id=raw.get("id") or f"call_{i}",
            name=fn.get("name", ""),
            arguments=args,
        ))
    return calls


def _parse_usage(raw: Optional[dict]) -> Optional[Usage]:
    if not raw:
        return None
    return Usage(
        prompt_tokens=int(raw.get("prompt_tokens", 0) or 0),
        completion_tokens=int(raw.get("completion_tokens", 0) or 0),
        total_tokens=int(raw.get("total_tokens", 0) or 0),
    )
