# orchestrator/tools/handler.py
# @ai-rules:
# 1. [Pattern]: execute_tool_calls() never raises for a single bad call -- the failure is recorded on that call's ToolResult.
# 2. [Pattern]: Tool servers speak MCP JSON-RPC at POST {server}/rpc (method "tools/call").
# 3. [Constraint]: Voice tool names (VOICE_TOOL_SCHEMAS) map onto server tools here. Keep in sync with llm/types.py.
# 4. [Gotcha]: "Speech produced" = audio_generated flag, or a successful speech tool. Failed speech -> Executor falls back.
"""
ToolCallHandler -- executes provider tool calls against local tool servers.

    handler = ToolCallHandler(settings.tool_servers, memory=memory)
    results = await handler.execute_tool_calls(response.tool_calls)
    spoke = any_speech_produced(results)
"""
from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ..core.errors import SidecarError, ToolExecutionError
from ..llm import ToolCall
from ..memory.semantic_memory import MemorySidecar
from .audio import DEFAULT_VOICE_ID

logger = logging.getLogger(__name__)

SPEECH_TOOLS = frozenset({"generate_speech", "generate_audio", "stream_audio"})

# Server-native tool name -> tool_servers key
SERVER_TOOLS: dict[str, str] = {
    "generate_audio": "elevenlabs",
    "stream_audio": "elevenlabs",
    "setAvatarExpression": "avatar",
    "setBatchExpressions": "avatar",
}


@dataclass
class ToolResult:
    call_id: str
    name: str
    content: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def produced_speech(self) -> bool:
        if self.error:
            return False
        if self.content.get("audio_generated") is True:
            return True
        return self.name in SPEECH_TOOLS and self.content.get("success") is True


def any_speech_produced(results: dict[str, ToolResult]) -> bool:
    return any(r.produced_speech for r in results.values())


class ToolCallHandler:
    """Dispatches normalized ToolCalls to the tool servers and memory sidecar."""

    def __init__(
        self,
        tool_servers: dict[str, str],
        memory: Optional[MemorySidecar] = None,
        voice_id: str = DEFAULT_VOICE_ID,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.tool_servers = {k: v.rstrip("/") for k, v in tool_servers.items()}
        self.memory = memory
        self.voice_id = voice_id
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._rpc_ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def execute_tool_calls(self, calls: list[ToolCall]) -> dict[str, ToolResult]:
        """Run each call in order. Returns {call_id: ToolResult}."""
        results: dict[str, ToolResult] = {}
        logger.info(f"Executing {len(calls)} tool calls")
        for call in calls:
            try:
                content = await self.execute_tool(call.name, call.arguments)
                results[call.id] = ToolResult(call.id, call.name, content)
                logger.debug(f"Tool {call.name} ({call.id}) completed")
            except ToolExecutionError as e:
                logger.warning(str(e))
                results[call.id] = ToolResult(call.id, call.name, error=str(e))
        return results

    async def execute_tool(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        """Execute one tool. Raises ToolExecutionError."""
        if name == "recall_memory":
            return await self._recall_memory(args)
        if name == "generate_speech":
            return await self._generate_speech(args)
        if name == "set_avatar_expression":
            content = await self.call_rpc("avatar", "setAvatarExpression", {
                "name": args.get("expression", "neutral"),
                "duration": int(args.get("duration") or 3000),
            })
            return {"success": True, "expression_set": args.get("expression"), **content}
        if name == "send_chat_message":
            # Outbound chat delivery belongs to the platform monitors; acknowledge only.
            logger.info(f"Chat message for {args.get('platform')}: {str(args.get('message', ''))[:100]}")
            return {"success": True, "platform": args.get("platform"), "message_queued": True}
        server = SERVER_TOOLS.get(name)
        if server is not None:
            return await self.call_rpc(server, name, args)
        raise ToolExecutionError(name, "unknown tool")

    async def _recall_memory(self, args: dict[str, Any]) -> dict[str, Any]:
        if self.memory is None:
            raise ToolExecutionError("recall_memory", "memory sidecar not configured")
        query = str(args.get("query", ""))
        bank = str(args.get("memory_bank") or "general")
        try:
            memories = await self.memory.recall(bank, query, 5)
        except SidecarError as e:
            raise ToolExecutionError("recall_memory", e) from e
        return {"success": True, "memories": memories, "count": len(memories), "memory_bank": bank}

    async def _generate_speech(self, args: dict[str, Any]) -> dict[str, Any]:
        text = str(args.get("text", "")).strip()
        if not text:
            raise ToolExecutionError("generate_speech", "empty text")
        content = await self.call_rpc("elevenlabs", "stream_audio", {
            "text": text,
            "voice_id": args.get("voice_id") or self.voice_id,
            "buffer_size": 1024,
        })
        return {"success": True, "audio_generated": True, **content}

    async def call_rpc(self, server: str, tool: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """MCP tools/call over JSON-RPC. Returns the decoded tool content."""
        base_url = self.tool_servers.get(server)
        if not base_url:
            raise ToolExecutionError(tool, f"no URL configured for server '{server}'")
        request = {
            "jsonrpc": "2.0",
            "id": next(self._rpc_ids),
            "method": "tools/call",
            "params": {"name": tool, "arguments": arguments},
        }
        client = await self._get_client()
        try:
            resp = await client.post(f"{base_url}/rpc", json=request)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ToolExecutionError(tool, e) from e

        if body.get("error"):
            error = body["error"]
            raise ToolExecutionError(tool, error.get("message", error) if isinstance(error, dict) else error)
        result = body.get("result") or {}
        if result.get("isError"):
            raise ToolExecutionError(tool, _text_of(result) or "tool reported an error")
        return _decode_content(result)


def _text_of(result: dict[str, Any]) -> str:
    parts = result.get("content") or []
    return "\n".join(p.get("text", "") for p in parts if isinstance(p, dict) and p.get("type") == "text")


def _decode_content(result: dict[str, Any]) -> dict[str, Any]:
    """MCP content blocks -> dict. A JSON object in the text block is merged in."""
    if "content" not in result:
        return dict(result)
    text = _text_of(result)
    try:
        decoded = json.loads(text) if text else {}
    except ValueError:
        decoded = {}
    if isinstance(decoded, dict) and decoded:
        return decoded
    return {"text": text}
