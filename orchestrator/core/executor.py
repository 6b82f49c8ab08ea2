# orchestrator/core/executor.py
# @ai-rules:
# 1. [Constraint]: Only ProviderError (-> TaskError PROVIDER_FAILURE) and unexpected exceptions in prompt/dispatch/tool
#    steps (-> TaskError INTERNAL) escape run(). Everything else degrades with a log line.
# 2. [Pattern]: Tool failures degrade to text-only. Fallback speech, memory recall and memory writes are "(non-fatal)".
# 3. [Pattern]: Spoken use cases get VOICE_TOOL_SCHEMAS when a ToolCallHandler is wired; no speech produced -> fallback TTS.
# 4. [Gotcha]: Fallback speech is skipped for cleaned text of 5 characters or fewer.
# 5. [Constraint]: Memory recall and each memory write are bounded by side_effect_timeout. Timeout -> log and continue.
"""
Task Executor -- turns one routed event into a textual response.

    executor = TaskExecutor(gateway, tool_handler=handler, audio=audio, memory=memory)
    text = await executor.execute(event, routing)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..llm import VOICE_TOOL_SCHEMAS, ChatMessage, GenerateOptions, ProviderGateway
from ..memory.semantic_memory import MemorySidecar
from ..models import Event, RoutingDecision, UseCase
from ..tools.audio import DEFAULT_VOICE_ID, AudioSynthesizer, clean_for_speech
from ..tools.handler import ToolCallHandler, ToolResult, any_speech_produced
from . import prompts
from .errors import TaskError

logger = logging.getLogger(__name__)

MIN_SPEECH_CHARS = 6
PREFERENCE_BANK = "chat-history"
RECALL_BANK = "general"


@dataclass
class ExecutionResult:
    response: str
    metadata: dict[str, Any] = field(default_factory=dict)


class TaskExecutor:
    """Builds prompts, dispatches to the Gateway, runs tools and side effects."""

    def __init__(
        self,
        gateway: ProviderGateway,
        tool_handler: Optional[ToolCallHandler] = None,
        audio: Optional[AudioSynthesizer] = None,
        memory: Optional[MemorySidecar] = None,
        voice_id: str = DEFAULT_VOICE_ID,
        recall_limit: int = 3,
        temperature: float = 0.7,
        side_effect_timeout: float = 30.0,
    ):
        self.gateway = gateway
        self.tool_handler = tool_handler
        self.audio = audio
        self.memory = memory
        self.voice_id = voice_id
        self.recall_limit = recall_limit
        self.temperature = temperature
        self.side_effect_timeout = side_effect_timeout

    async def execute(self, event: Event, routing: RoutingDecision) -> str:
        """Response text only. Raises TaskError."""
        return (await self.run(event, routing)).response

    async def run(self, event: Event, routing: RoutingDecision) -> ExecutionResult:
        """Response text plus metadata for the event record. Raises TaskError."""
        try:
            if routing.use_case is UseCase.CODING:
                result = await self._run_coding(event, routing)
            else:
                result = await self._run_chat(event, routing)
        except Exception as e:
            raise TaskError.from_exception(e) from e

        await self._store_interaction(event, result.response)
        result.response = prompts.format_for_platform(result.response, event.source)
        return result

    # =========================================================================
    # Dispatch paths
    # =========================================================================

    async def _run_chat(self, event: Event, routing: RoutingDecision) -> ExecutionResult:
        memory_context = await self._recall(event)
        messages = [
            ChatMessage("system", prompts.build_system_prompt(routing.use_case, event.source, memory_context)),
            ChatMessage("user", prompts.build_user_message(event)),
        ]
        spoken = routing.use_case.is_spoken
        options = GenerateOptions(
            tools=VOICE_TOOL_SCHEMAS if spoken and self.tool_handler else None,
            temperature=self.temperature,
            event_id=event.id,
        )
        response = await self.gateway.generate_response(routing.provider, messages, options)

        results: dict[str, ToolResult] = {}
        if response.tool_calls:
            results = await self._execute_tools(event, response.tool_calls)

        content = response.content.strip()
        if not content and response.tool_calls:
            content = prompts.summarize_tool_run(c.name for c in response.tool_calls)

        speech_produced = any_speech_produced(results)
        if spoken and not speech_produced:
            await self._fallback_speech(event, content)

        metadata: dict[str, Any] = {
            "tool_calls": [c.name for c in response.tool_calls],
            "tool_failures": [r.name for r in results.values() if r.error],
            "speech_produced": speech_produced,
        }
        if response.usage:
            metadata["usage"] = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return ExecutionResult(response=content, metadata=metadata)

    async def _run_coding(self, event: Event, routing: RoutingDecision) -> ExecutionResult:
        memory_context = await self._recall(event)
        servers = prompts.required_mcp_servers(event)
        prompt = prompts.build_coding_prompt(event, servers, memory_context)
        options = GenerateOptions(mcp_servers=servers, temperature=self.temperature, event_id=event.id)
        response = await self.gateway.generate_response(
            routing.provider, [ChatMessage("user", prompt)], options,
        )
        return ExecutionResult(
            response=response.content.strip(),
            metadata={**response.metadata, "mcp_servers": servers},
        )

    async def _execute_tools(self, event: Event, calls) -> dict[str, ToolResult]:
        if self.tool_handler is None:
            logger.warning(f"Event {event.id}: {len(calls)} tool calls returned but no tool handler configured")
            return {}
        try:
            return await self.tool_handler.execute_tool_calls(calls)
        except Exception as e:
            logger.warning(f"Event {event.id}: tool execution failed, degrading to text-only: {e}")
            return {}

    # =========================================================================
    # Best-effort side effects
    # =========================================================================

    async def _fallback_speech(self, event: Event, text: str) -> None:
        if self.audio is None:
            return
        speech = clean_for_speech(text)
        if len(speech) < MIN_SPEECH_CHARS:
            return
        try:
            result = await self.audio.generate_audio(speech, self.voice_id)
            logger.info(f"Event {event.id}: fallback speech {'generated' if result.success else 'rejected'}: {result.message}")
        except Exception as e:
            logger.warning(f"Event {event.id}: fallback speech failed (non-fatal): {e}")

    async def _recall(self, event: Event) -> Optional[str]:
        if self.memory is None:
            return None
        try:
            memories = await asyncio.wait_for(
                self.memory.recall(RECALL_BANK, prompts.memory_query(event), self.recall_limit),
                timeout=self.side_effect_timeout,
            )
        except Exception as e:
            logger.debug(f"Event {event.id}: memory recall failed (non-fatal): {e}")
            return None
        contents = [str(m.get("content", "")) for m in memories if m.get("content")]
        if not contents:
            return None
        logger.debug(f"Event {event.id}: recalled {len(contents)} memories")
        return "\n\n".join(contents)

    async def _store_interaction(self, event: Event, response: str) -> None:
        if self.memory is None:
            return
        bank = prompts.determine_memory_bank(event)
        base = {
            "source": event.source,
            "user": event.user,
            "event_id": event.id,
            "event_type": event.type,
            "timestamp": event.timestamp.isoformat(),
        }
        writes: list[tuple[str, str, dict]] = []
        if event.message:
            writes.append((event.message, bank, {**base, "type": "user_message"}))
        if response:
            writes.append((response, bank, {**base, "type": "response"}))
        if event.user and prompts.has_user_preference(event):
            writes.append((f"User {event.user}: {event.message}", PREFERENCE_BANK, {**base, "type": "user_preference"}))

        for content, target_bank, metadata in writes:
            try:
                await asyncio.wait_for(
                    self.memory.embed(content, target_bank, metadata),
                    timeout=self.side_effect_timeout,
                )
            except Exception as e:
                logger.warning(f"Event {event.id}: memory write to '{target_bank}' failed (non-fatal): {e}")
                continue
