# orchestrator/llm/__init__.py
# @ai-rules:
# 1. [Constraint]: This is the ONLY entry point. Consumers import from .llm, never from its submodules.
"""
LLM gateway and re-exports.

Usage:
    from .llm import ProviderGateway, ChatMessage, GenerateOptions, VOICE_TOOL_SCHEMAS
"""
from .coding_agent import CodingAgentManager
from .gateway import DEFAULT_OPERATION_MAX_AGE, ProviderGateway
from .openai_compat import OpenAICompatClient
from .types import (
    VOICE_TOOL_SCHEMAS,
    ChatMessage,
    GenerateOptions,
    ProviderPort,
    ProviderResponse,
    ToolCall,
    Usage,
)

__all__ = [
    "DEFAULT_OPERATION_MAX_AGE",
    "ProviderGateway",
    "OpenAICompatClient",
    "CodingAgentManager",
    "ChatMessage",
    "GenerateOptions",
    "ProviderPort",
    "ProviderResponse",
    "ToolCall",
    "Usage",
    "VOICE_TOOL_SCHEMAS",
]
