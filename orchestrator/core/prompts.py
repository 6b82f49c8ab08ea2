# orchestrator/core/prompts.py
# @ai-rules:
# 1. [Pattern]: Pure string builders. No I/O. The Executor composes them.
# 2. [Constraint]: Spoken use cases (chat, tools, social) append SPEECH_GUIDANCE -- responses are read aloud.
# 3. [Pattern]: Memory bank + platform limits are heuristics over event fields, kept here next to the prompts.
"""Prompt construction and response shaping for the Task Executor."""
from __future__ import annotations

import json
from typing import Iterable, Optional

from ..models import Event, UseCase

PERSONA = """You are Rusty Butter, a caffeinated programmer and live streamer focused on \
software development, tool building, and autonomy. You are fast-paced, excited, and \
fluent in tech jargon. Always acknowledge viewers by name."""

SPEECH_GUIDANCE = """Your reply will be spoken aloud.
- Keep it under about 10 seconds of speech (2-3 short sentences).
- No markdown, code blocks, or URLs.
- If a generate_speech tool is available, call it with your reply text.
- Use set_avatar_expression to match your mood before speaking."""

USE_CASE_INSTRUCTIONS: dict[UseCase, str] = {
    UseCase.CHAT: "Reply conversationally to the chat message.",
    UseCase.TOOLS: "The request needs tools. Use the available tools, then summarize what you did.",
    UseCase.SOCIAL: "Reply to the social media post. Be concise and on-brand; replies may be public.",
    UseCase.FAST: "Handle the event briefly. One or two sentences.",
    UseCase.CODING: "Complete the development task.",
}

PLATFORM_LIMITS: dict[str, int] = {
    "twitch": 500,
    "discord": 2000,
    "twitter": 280,
    "x": 280,
}

PREFERENCE_PHRASES = (
    "i like", "i prefer", "i hate", "i love", "i'm interested in",
    "my favorite", "i always", "i never", "i'm a fan of",
)

CODE_KEYWORDS = (
    "code", "function", "class", "bug", "error", "implement", "refactor", "debug",
    "compile", "syntax", "variable", "method", "api", "endpoint", "database", "query", "algorithm",
)

DOCUMENT_TYPES = frozenset({"documentation", "project_update"})
CHAT_HISTORY_TYPES = frozenset({"chat_message", "voice_message"})
CHAT_PLATFORMS = frozenset({"twitch", "discord"})

MCP_TOOL_DOCS: dict[str, str] = {
    "semantic-memory": "semantic-memory: recall / embed_text / semantic_search across banks "
                       "code, chat-history, conversations, documents, general",
    "elevenlabs": "elevenlabs: generate_audio / stream_audio (voice output)",
    "avatar": "rustybutter-avatar: setAvatarExpression / setBatchExpressions",
    "playwright": "playwright-sse: browser automation",
}


# =============================================================================
# Messages
# =============================================================================

def build_system_prompt(use_case: UseCase, source: str, memory_context: Optional[str] = None) -> str:
    parts = [PERSONA, f"Source platform: {source}.", USE_CASE_INSTRUCTIONS[use_case]]
    if use_case.is_spoken:
        parts.append(SPEECH_GUIDANCE)
    limit = PLATFORM_LIMITS.get(source.lower())
    if limit:
        parts.append(f"Keep the reply under {limit} characters.")
    if memory_context:
        parts.append(f"Relevant context from memory:\n{memory_context}")
    return "\n\n".join(parts)


def build_user_message(event: Event) -> str:
    lines = [
        f"Event: {event.type} from {event.source}",
        f"Priority: {event.priority.value}",
        f"Timestamp: {event.timestamp.isoformat()}",
        "",
    ]
    if event.message:
        lines.append(f"Message: {event.message}")
    if event.user:
        lines.append(f"From: {event.user}")
    extra = {k: v for k, v in event.data.items() if k not in ("message", "user", "username")}
    if extra:
        lines.append(f"Data: {json.dumps(extra, default=str)}")
    if event.context:
        lines.append(f"Context: {json.dumps(event.context, indent=2, default=str)}")
    return "\n".join(lines).strip()


def required_mcp_servers(event: Event) -> list[str]:
    """Tool servers a coding-agent run gets. Memory always; voice and avatar when there is a message."""
    servers = ["semantic-memory"]
    if event.message or event.flag("requiresVoice"):
        servers += ["elevenlabs", "avatar"]
    if event.flag("requiresBrowser"):
        servers.append("playwright")
    return servers


def build_coding_prompt(event: Event, mcp_servers: Iterable[str], memory_context: Optional[str] = None) -> str:
    tool_lines = [f"- {MCP_TOOL_DOCS[s]}" for s in mcp_servers if s in MCP_TOOL_DOCS]
    sections = []
    if memory_context:
        sections.append(f"Context from memory:\n{memory_context}")
    sections.append(
        "You are processing a development event.\n\n"
        "## Event Details\n"
        f"- ID: {event.id}\n"
        f"- Source: {event.source}\n"
        f"- Type: {event.type}\n"
        f"- Priority: {event.priority.value}\n"
        f"- Timestamp: {event.timestamp.isoformat()}\n\n"
        "## Event Data\n"
        f"{json.dumps(event.data, indent=2, default=str)}"
    )
    if tool_lines:
        sections.append("## Available MCP Tools\n" + "\n".join(tool_lines))
    sections.append(
        "## Your Task\n"
        "1. Check semantic memory for relevant past context.\n"
        "2. Complete the task.\n"
        "3. Store important learnings in the appropriate memory bank.\n"
        "4. Finish with a short summary of what you did."
    )
    return "\n\n".join(sections)


# =============================================================================
# Memory heuristics
# =============================================================================

def is_code_related(event: Event) -> bool:
    message = event.message.lower()
    return any(keyword in message for keyword in CODE_KEYWORDS)


def determine_memory_bank(event: Event) -> str:
    if is_code_related(event):
        return "code"
    source = event.source.lower()
    if source in CHAT_PLATFORMS:
        return "chat-history" if event.type in CHAT_HISTORY_TYPES else "conversations"
    if event.type in DOCUMENT_TYPES:
        return "documents"
    return "general"


def has_user_preference(event: Event) -> bool:
    message = event.message.lower()
    return any(phrase in message for phrase in PREFERENCE_PHRASES)


def memory_query(event: Event) -> str:
    return event.message or f"{event.source} {event.type}"


# =============================================================================
# Response shaping
# =============================================================================

def format_for_platform(text: str, source: str) -> str:
    limit = PLATFORM_LIMITS.get(source.lower())
    if limit is None or len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def summarize_tool_run(tool_names: Iterable[str]) -> str:
    names = list(dict.fromkeys(tool_names))
    if not names:
        return ""
    return f"Completed actions: {', '.join(names)}."
