# tests/test_executor.py
# @ai-rules:
# 1. [Pattern]: TaskExecutor over a real ProviderGateway with StubPort. Sidecars are in-memory stubs.
# 2. [Constraint]: Every best-effort side effect (speech, memory, tools) gets a failure test proving it is non-fatal.
"""Unit tests for TaskExecutor: dispatch, tools, fallback speech, memory, shaping."""
from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from orchestrator.core.errors import ProviderError, SidecarError, TaskError, TaskErrorKind
from orchestrator.core.executor import TaskExecutor
from orchestrator.core.prompts import SPEECH_GUIDANCE
from orchestrator.llm.gateway import ProviderGateway
from orchestrator.llm.types import ProviderResponse, ToolCall, Usage
from orchestrator.models import Event, Provider, RoutingDecision, UseCase
from orchestrator.tools.audio import AudioResult
from orchestrator.tools.handler import ToolResult


# =========================================================================
# Stubs
# =========================================================================

class StubPort:
    def __init__(self, response: Optional[ProviderResponse] = None, error: Optional[Exception] = None):
        self.response = response or ProviderResponse(content="Great question, chat!")
        self.error = error
        self.calls: list = []

    async def generate(self, messages, options) -> ProviderResponse:
        self.calls.append((messages, options))
        if self.error is not None:
            raise self.error
        return self.response

    async def probe(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class StubAudio:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: list[str] = []

    async def generate_audio(self, text: str, voice_id: Optional[str] = None) -> AudioResult:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return AudioResult(success=True, message="played")


class StubToolHandler:
    def __init__(self, results: dict[str, ToolResult]):
        self.results = results
        self.calls: list = []

    async def execute_tool_calls(self, calls):
        self.calls.extend(calls)
        return self.results


class StubMemory:
    def __init__(
        self,
        memories: Optional[list[dict]] = None,
        recall_error: bool = False,
        embed_error: bool = False,
        embed_failures: int = 0,
        hang: bool = False,
    ):
        self.memories = memories or []
        self.recall_error = recall_error
        self.embed_error = embed_error
        self.embed_failures = embed_failures
        self.hang = hang
        self.recalls: list[tuple[str, str, int]] = []
        self.embeds: list[tuple[str, str, dict]] = []

    async def recall(self, bank: str, query: str, limit: int = 3) -> list[dict]:
        self.recalls.append((bank, query, limit))
        if self.hang:
            await asyncio.sleep(3600)
        if self.recall_error:
            raise SidecarError("memory", "qdrant down")
        return self.memories

    async def embed(self, content: str, bank: str, metadata: Optional[dict] = None) -> None:
        if self.hang:
            await asyncio.sleep(3600)
        if self.embed_error:
            raise SidecarError("memory", "qdrant down")
        if self.embed_failures:
            self.embed_failures -= 1
            raise SidecarError("memory", "qdrant busy")
        self.embeds.append((content, bank, metadata or {}))


def _chat_event(message: str = "what are you building today?", source: str = "twitch", **data) -> Event:
    return Event(type="chat_message", source=source, data={"message": message, "user": "viewer1", **data})


def _routing(use_case: UseCase = UseCase.CHAT, provider: Provider = Provider.OPENAI) -> RoutingDecision:
    return RoutingDecision(provider=provider, use_case=use_case)


def _executor(port: StubPort, provider: Provider = Provider.OPENAI, **kwargs) -> TaskExecutor:
    return TaskExecutor(ProviderGateway({provider: port}), **kwargs)


# =========================================================================
# Chat path
# =========================================================================

class TestChatDispatch:
    @pytest.mark.asyncio
    async def test_spoken_prompt_and_tools(self) -> None:
        port = StubPort()
        executor = _executor(port, tool_handler=StubToolHandler({}))
        text = await executor.execute(_chat_event(), _routing())

        assert text == "Great question, chat!"
        messages, options = port.calls[0]
        assert messages[0].role == "system"
        assert SPEECH_GUIDANCE in messages[0].content
        assert "Keep the reply under 500 characters." in messages[0].content
        assert "Message: what are you building today?" in messages[1].content
        assert "From: viewer1" in messages[1].content
        assert len(options.tools) == 4
        assert options.event_id is not None

    @pytest.mark.asyncio
    async def test_fast_use_case_has_no_tools_or_speech(self) -> None:
        port = StubPort()
        audio = StubAudio()
        executor = _executor(port, provider=Provider.GROQ, tool_handler=StubToolHandler({}), audio=audio)
        event = Event(type="metrics_tick", source="monitor", data={"cpu": 0.9})
        await executor.execute(event, _routing(UseCase.FAST, Provider.GROQ))

        messages, options = port.calls[0]
        assert options.tools is None
        assert SPEECH_GUIDANCE not in messages[0].content
        assert audio.calls == []

    @pytest.mark.asyncio
    async def test_usage_lands_in_metadata(self) -> None:
        port = StubPort(ProviderResponse(content="hello!", usage=Usage(10, 5, 15)))
        result = await _executor(port).run(_chat_event(), _routing())
        assert result.metadata["usage"] == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}

    @pytest.mark.asyncio
    async def test_twitter_response_trimmed(self) -> None:
        port = StubPort(ProviderResponse(content="x" * 400))
        text = await _executor(port, provider=Provider.GROK).execute(
            Event(type="mention", source="twitter", data={"message": "hey"}),
            _routing(UseCase.SOCIAL, Provider.GROK),
        )
        assert len(text) == 280
        assert text.endswith("...")


# =========================================================================
# Tools and fallback speech
# =========================================================================

class TestToolsAndSpeech:
    @pytest.mark.asyncio
    async def test_speech_tool_suppresses_fallback(self) -> None:
        port = StubPort(ProviderResponse(
            content="Building a parser today!",
            tool_calls=[ToolCall(id="c1", name="generate_speech", arguments={"text": "Building a parser today!"})],
        ))
        handler = StubToolHandler({
            "c1": ToolResult("c1", "generate_speech", {"success": True, "audio_generated": True}),
        })
        audio = StubAudio()
        result = await _executor(port, tool_handler=handler, audio=audio).run(_chat_event(), _routing())

        assert audio.calls == []
        assert result.metadata["speech_produced"] is True
        assert [c.id for c in handler.calls] == ["c1"]

    @pytest.mark.asyncio
    async def test_failed_speech_tool_triggers_fallback(self) -> None:
        port = StubPort(ProviderResponse(
            content="Building a parser today!",
            tool_calls=[ToolCall(id="c1", name="generate_speech", arguments={"text": "hi"})],
        ))
        handler = StubToolHandler({"c1": ToolResult("c1", "generate_speech", error="Tool generate_speech failed")})
        audio = StubAudio()
        result = await _executor(port, tool_handler=handler, audio=audio).run(_chat_event(), _routing())

        assert audio.calls == ["Building a parser today!"]
        assert result.metadata["tool_failures"] == ["generate_speech"]

    @pytest.mark.asyncio
    async def test_empty_content_summarizes_tools(self) -> None:
        port = StubPort(ProviderResponse(
            content="",
            tool_calls=[
                ToolCall(id="c1", name="set_avatar_expression", arguments={"expression": "happy"}),
                ToolCall(id="c2", name="send_chat_message", arguments={"message": "hi", "platform": "twitch"}),
            ],
        ))
        handler = StubToolHandler({
            "c1": ToolResult("c1", "set_avatar_expression", {"success": True}),
            "c2": ToolResult("c2", "send_chat_message", {"success": True}),
        })
        text = await _executor(port, tool_handler=handler).execute(_chat_event(), _routing())
        assert text == "Completed actions: set_avatar_expression, send_chat_message."

    @pytest.mark.asyncio
    async def test_short_text_skips_fallback(self) -> None:
        audio = StubAudio()
        await _executor(StubPort(ProviderResponse(content="**ok**")), audio=audio).execute(_chat_event(), _routing())
        assert audio.calls == []

    @pytest.mark.asyncio
    async def test_fallback_text_is_cleaned(self) -> None:
        audio = StubAudio()
        port = StubPort(ProviderResponse(content="Check **this** out: https://example.com/x"))
        await _executor(port, audio=audio).execute(_chat_event(), _routing())
        assert audio.calls == ["Check this out: link"]

    @pytest.mark.asyncio
    async def test_audio_failure_is_non_fatal(self) -> None:
        audio = StubAudio(error=SidecarError("audio", "connection refused"))
        text = await _executor(StubPort(), audio=audio).execute(_chat_event(), _routing())
        assert text == "Great question, chat!"
        assert len(audio.calls) == 1


# =========================================================================
# Failures
# =========================================================================

class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_error_becomes_provider_failure(self) -> None:
        port = StubPort(error=ProviderError("openai", "HTTP 401: bad key"))
        with pytest.raises(TaskError) as exc_info:
            await _executor(port).execute(_chat_event(), _routing())
        assert exc_info.value.kind is TaskErrorKind.PROVIDER_FAILURE
        assert "HTTP 401" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal(self) -> None:
        port = StubPort(error=ValueError("unexpected shape"))
        with pytest.raises(TaskError) as exc_info:
            await _executor(port).execute(_chat_event(), _routing())
        assert exc_info.value.kind is TaskErrorKind.INTERNAL
        assert exc_info.value.message == "ValueError: unexpected shape"

    @pytest.mark.asyncio
    async def test_unrouted_provider_fails(self) -> None:
        with pytest.raises(TaskError) as exc_info:
            await _executor(StubPort()).execute(_chat_event(), _routing(provider=Provider.GEMINI))
        assert exc_info.value.kind is TaskErrorKind.PROVIDER_FAILURE


# =========================================================================
# Memory
# =========================================================================

class TestMemory:
    @pytest.mark.asyncio
    async def test_recalled_context_reaches_prompt(self) -> None:
        port = StubPort()
        memory = StubMemory(memories=[{"content": "viewer1 likes rust", "score": 0.9}])
        await _executor(port, memory=memory).execute(_chat_event(), _routing())

        assert memory.recalls == [("general", "what are you building today?", 3)]
        messages, _ = port.calls[0]
        assert "viewer1 likes rust" in messages[0].content

    @pytest.mark.asyncio
    async def test_interaction_stored_in_chat_history(self) -> None:
        memory = StubMemory()
        await _executor(StubPort(), memory=memory).execute(_chat_event("I love watching you stream"), _routing())

        banks = [(bank, meta["type"]) for _, bank, meta in memory.embeds]
        assert banks == [
            ("chat-history", "user_message"),
            ("chat-history", "response"),
            ("chat-history", "user_preference"),
        ]
        assert memory.embeds[2][0] == "User viewer1: I love watching you stream"

    @pytest.mark.asyncio
    async def test_code_question_stored_in_code_bank(self) -> None:
        memory = StubMemory()
        await _executor(StubPort(), memory=memory).execute(_chat_event("why does this function throw?"), _routing())
        assert {bank for _, bank, _ in memory.embeds} == {"code"}

    @pytest.mark.asyncio
    async def test_memory_failures_are_non_fatal(self) -> None:
        memory = StubMemory(recall_error=True, embed_error=True)
        text = await _executor(StubPort(), memory=memory).execute(_chat_event(), _routing())
        assert text == "Great question, chat!"

    @pytest.mark.asyncio
    async def test_failed_write_does_not_skip_later_writes(self) -> None:
        memory = StubMemory(embed_failures=1)
        await _executor(StubPort(), memory=memory).execute(_chat_event("I love watching you stream"), _routing())
        assert [meta["type"] for _, _, meta in memory.embeds] == ["response", "user_preference"]

    @pytest.mark.asyncio
    async def test_hung_memory_is_bounded(self) -> None:
        memory = StubMemory(hang=True)
        executor = _executor(StubPort(), memory=memory, side_effect_timeout=0.05)
        text = await asyncio.wait_for(executor.execute(_chat_event(), _routing()), timeout=2.0)
        assert text == "Great question, chat!"
        assert len(memory.recalls) == 1
        assert memory.embeds == []


# =========================================================================
# Coding path
# =========================================================================

class TestCodingPath:
    @pytest.mark.asyncio
    async def test_coding_prompt_and_mcp_servers(self) -> None:
        port = StubPort(ProviderResponse(content="Added the test.\n", metadata={"instance_id": "agent-abc"}))
        executor = _executor(port, provider=Provider.CLAUDE_CODE)
        event = Event(type="code_request", source="dashboard", data={"message": "add a test", "requiresBrowser": True})
        result = await executor.run(event, _routing(UseCase.CODING, Provider.CLAUDE_CODE))

        assert result.response == "Added the test."
        assert result.metadata["instance_id"] == "agent-abc"
        assert result.metadata["mcp_servers"] == ["semantic-memory", "elevenlabs", "avatar", "playwright"]
        messages, options = port.calls[0]
        assert len(messages) == 1
        assert "## Event Details" in messages[0].content
        assert options.mcp_servers == ["semantic-memory", "elevenlabs", "avatar", "playwright"]
