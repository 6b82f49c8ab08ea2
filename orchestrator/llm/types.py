# orchestrator/llm/types.py
# @ai-rules:
# 1. [Constraint]: All tool schemas are plain dicts (provider-agnostic). Chat clients wrap them as {"type": "function", "function": ...}.
# 2. [Pattern]: ProviderPort protocol defines generate() + probe(). Gateway owns one port per configured provider.
# 3. [Constraint]: VOICE_TOOL_SCHEMAS must stay in sync with ToolCallHandler dispatch in tools/handler.py.
"""
Provider-agnostic LLM types, protocol, and tool schemas.

Shared by the OpenAI-compatible chat client and the coding-agent manager.
The Executor and Gateway import from this module and never touch wire
formats directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Protocol


# =============================================================================
# Data Types
# =============================================================================

@dataclass
class ChatMessage:
    """One chat-completion message."""
    role: Literal["system", "user", "assistant", "tool"]
    content: str

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ToolCall:
    """Normalized tool call from any chat provider. Arguments already JSON-decoded."""
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ProviderResponse:
    """Uniform response from generate_response()."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Optional[Usage] = None
    metadata: dict[str, Any] = field(default_factory=dict)  # e.g. coding-agent instance_id


@dataclass
class GenerateOptions:
    tools: Optional[list[dict]] = None
    temperature: float = 0.7
    mcp_servers: list[str] = field(default_factory=list)
    event_id: Optional[str] = None


# =============================================================================
# Port Protocol
# =============================================================================

class ProviderPort(Protocol):
    """One backend. Raises ProviderError on any failure."""

    async def generate(
        self,
        messages: list[ChatMessage],
        options: GenerateOptions,
    ) -> ProviderResponse: ...

    async def probe(self) -> bool: ...

    async def close(self) -> None: ...


# =============================================================================
# Voice Tool Schemas (4 tools -- plain dicts, provider-agnostic)
# =============================================================================
# Offered to spoken use cases (chat, tools, social). Executed by ToolCallHandler.

VOICE_TOOL_SCHEMAS: list[dict] = [
    {
        "name": "recall_memory",
        "description": "Recall relevant information from semantic memory to provide context",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The query to search for in memory",
                },
                "memory_bank": {
                    "type": "string",
                    "enum": ["code", "chat-history", "conversations", "documents", "general"],
                    "description": "Which memory bank to search",
                },
            },
            "required": ["query"],
        },
    },
    {
        "name": "generate_speech",
        "description": "Generate speech audio from text using ElevenLabs",
        "parameters": {
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "description": "The text to convert to speech",
                },
                "voice_id": {
                    "type": "string",
                    "description": "Optional voice ID to use",
                },
            },
            "required": ["text"],
        },
    },
    {
        "name": "set_avatar_expression",
        "description": "Set the avatar expression to match the emotion",
        "parameters": {
            "type": "object",
            "properties": {
                "expression": {
                    "type": "string",
                    "enum": ["neutral", "happy", "sad", "angry", "surprised", "thinking", "excited"],
                    "description": "The expression to set",
                },
                "duration": {
                    "type": "number",
                    "description": "Duration in milliseconds",
                },
            },
            "required": ["expression"],
        },
    },
    {
        "name": "send_chat_message",
        "description": "Send a message back to the chat platform",
        "parameters": {
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "The message to send",
                },
                "platform": {
                    "type": "string",
                    "enum": ["twitch", "discord", "dashboard"],
                    "description": "Which platform to send to",
                },
            },
            "required": ["message", "platform"],
        },
    },
]
