# tests/test_gateway.py
# @ai-rules:
# 1. [Constraint]: No real HTTP. OpenAICompatClient is driven through httpx.MockTransport.
# 2. [Pattern]: Gateway availability tests use FlakyPort with a toggled probe result.
"""Provider Gateway and OpenAI-compatible client tests."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from orchestrator.config import ChatProviderConfig, CodingAgentConfig, Settings
from orchestrator.core.errors import ProviderError
from orchestrator.llm.gateway import ProviderGateway
from orchestrator.llm.openai_compat import OpenAICompatClient
from orchestrator.llm.types import VOICE_TOOL_SCHEMAS, ChatMessage, GenerateOptions, ProviderResponse
from orchestrator.models import Provider

CONFIG = ChatProviderConfig(
    provider=Provider.OPENAI,
    api_key="sk-test",
    base_url="https://llm.example.com/v1",
    model="gpt-test",
)
MESSAGES = [ChatMessage("system", "be brief"), ChatMessage("user", "hi")]


def _client(handler) -> OpenAICompatClient:
    return OpenAICompatClient(CONFIG, timeout=5.0, transport=httpx.MockTransport(handler))


# =========================================================================
# OpenAICompatClient
# =========================================================================

class TestOpenAICompatClient:
    @pytest.mark.asyncio
    async def test_parses_content_tool_calls_and_usage(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {
                    "content": "Hello chat!",
                    "tool_calls": [
                        {"id": "call_abc", "type": "function", "function": {
                            "name": "set_avatar_expression",
                            "arguments": "{\"expression\": \"happy\"}",
                        }},
                        {"type": "function", "function": {"name": "generate_speech", "arguments": "not json"}},
                    ],
                }}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
            })

        client = _client(handler)
        response = await client.generate(MESSAGES, GenerateOptions(tools=VOICE_TOOL_SCHEMAS, temperature=0.2))
        await client.close()

        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-test"
        assert seen["body"]["temperature"] == 0.2
        assert seen["body"]["tool_choice"] == "auto"
        assert seen["body"]["tools"][0]["type"] == "function"
        assert seen["body"]["tools"][0]["function"]["name"] == "recall_memory"
        assert seen["body"]["messages"][1] == {"role": "user", "content": "hi"}

        assert response.content == "Hello chat!"
        assert response.tool_calls[0].arguments == {"expression": "happy"}
        assert response.tool_calls[0].id == "call_abc"
        assert response.tool_calls[1].id == "call_1"
        assert response.tool_calls[1].arguments == {"_raw": "not json"}
        assert response.usage.total_tokens == 16

    @pytest.mark.asyncio
    async def test_no_tools_omits_tool_choice(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": None}}]})

        response = await _client(handler).generate(MESSAGES, GenerateOptions())
        assert "tools" not in seen["body"]
        assert "tool_choice" not in seen["body"]
        assert response.content == ""
        assert response.usage is None

    @pytest.mark.asyncio
    async def test_http_error_status_raises_provider_error(self) -> None:
        client = _client(lambda request: httpx.Response(401, text="invalid api key"))
        with pytest.raises(ProviderError, match="HTTP 401") as exc_info:
            await client.generate(MESSAGES, GenerateOptions())
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_timeout_raises_provider_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderError, match="timeout"):
            await _client(handler).generate(MESSAGES, GenerateOptions())

    @pytest.mark.asyncio
    async def test_malformed_body_raises_provider_error(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(ProviderError, match="malformed"):
            await client.generate(MESSAGES, GenerateOptions())

    @pytest.mark.asyncio
    async def test_probe(self) -> None:
        ok = _client(lambda request: httpx.Response(200, json={"data": []}))
        bad = _client(lambda request: httpx.Response(503))
        assert await ok.probe() is True
        assert await bad.probe() is False


# =========================================================================
# ProviderGateway
# =========================================================================

class FlakyPort:
    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.gate: asyncio.Event | None = None

    async def generate(self, messages, options) -> ProviderResponse:
        if self.gate is not None:
            await self.gate.wait()
        if not self.healthy:
            raise ProviderError("openai", "HTTP 503")
        return ProviderResponse(content="ok")

    async def probe(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        return None


class TestGateway:
    @pytest.mark.asyncio
    async def test_unconfigured_provider_raises(self) -> None:
        gateway = ProviderGateway({Provider.OPENAI: FlakyPort()})
        with pytest.raises(ProviderError, match="not configured"):
            await gateway.generate_response(Provider.GROK, MESSAGES)

    @pytest.mark.asyncio
    async def test_available_in_declaration_order(self) -> None:
        gateway = ProviderGateway({Provider.GROQ: FlakyPort(), Provider.OPENAI: FlakyPort()})
        assert gateway.available_providers() == [Provider.OPENAI, Provider.GROQ]

    @pytest.mark.asyncio
    async def test_failed_probe_excludes_then_reprobe_restores(self) -> None:
        flaky = FlakyPort(healthy=False)
        gateway = ProviderGateway({Provider.OPENAI: flaky, Provider.GROQ: FlakyPort()})

        outcome = await gateway.test_all()
        assert outcome == {Provider.OPENAI: False, Provider.GROQ: True}
        assert gateway.available_providers() == [Provider.GROQ]
        assert gateway.is_known_bad(Provider.OPENAI)

        statuses = {s.provider: s for s in gateway.provider_statuses()}
        assert statuses[Provider.OPENAI].configured is True
        assert statuses[Provider.OPENAI].available is False
        assert statuses[Provider.OPENAI].last_error == "probe failed"
        assert statuses[Provider.GROK].configured is False

        flaky.healthy = True
        await gateway.reprobe_known_bad()
        assert gateway.available_providers() == [Provider.OPENAI, Provider.GROQ]
        assert not gateway.is_known_bad(Provider.OPENAI)

    @pytest.mark.asyncio
    async def test_operations_tracked_while_in_flight(self) -> None:
        port = FlakyPort()
        port.gate = asyncio.Event()
        gateway = ProviderGateway({Provider.OPENAI: port})

        call = asyncio.create_task(
            gateway.generate_response(Provider.OPENAI, MESSAGES, GenerateOptions(event_id="evt-1"))
        )
        await asyncio.sleep(0.01)
        ops = gateway.active_operations()
        assert len(ops) == 1
        assert ops[0]["event_id"] == "evt-1"
        assert ops[0]["provider"] == "openai"
        assert ops[0]["type"] == "chat_completion"

        port.gate.set()
        assert (await call).content == "ok"
        assert gateway.active_operations() == []

    @pytest.mark.asyncio
    async def test_operation_cleared_on_failure(self) -> None:
        gateway = ProviderGateway({Provider.OPENAI: FlakyPort(healthy=False)})
        with pytest.raises(ProviderError):
            await gateway.generate_response(Provider.OPENAI, MESSAGES)
        assert gateway.active_operations() == []

    @pytest.mark.asyncio
    async def test_cleanup_hanging_operations(self) -> None:
        gateway = ProviderGateway({Provider.OPENAI: FlakyPort()})
        gateway._start_operation("evt-old", Provider.OPENAI, "chat_completion")
        assert gateway.cleanup_hanging_operations(max_age=60) == 0
        assert gateway.cleanup_hanging_operations(max_age=-1) == 1
        assert gateway.active_operations() == []

    @pytest.mark.asyncio
    async def test_reprobe_loop_start_stop(self) -> None:
        gateway = ProviderGateway({Provider.OPENAI: FlakyPort()}, reprobe_interval=0.01)
        gateway.start_reprobe_loop()
        await asyncio.sleep(0.03)
        await gateway.close()
        assert gateway._reprobe_task is None

    def test_from_settings(self) -> None:
        settings = Settings(
            chat_providers={Provider.GROQ: ChatProviderConfig(Provider.GROQ, "k", "https://groq.example/v1", "m")},
            coding_agent=CodingAgentConfig(enabled=True),
        )
        gateway = ProviderGateway.from_settings(settings)
        assert gateway.configured_providers() == [Provider.CLAUDE_CODE, Provider.GROQ]
        assert gateway.coding_agent is not None
