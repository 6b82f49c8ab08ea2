# orchestrator/llm/gateway.py
# @ai-rules:
# 1. [Pattern]: One ProviderPort per configured provider. Gateway never retries and never executes tools.
# 2. [Pattern]: test_provider() failure marks the provider known-bad. Known-bad providers drop out of available_providers().
# 3. [Pattern]: Re-probe loop (PROVIDER_REPROBE_SECONDS) restores known-bad providers that recover. Started in lifespan.
# 4. [Gotcha]: available_providers() is read by the Router on every queue_event. Keep it cheap and synchronous.
# 5. [Constraint]: Every in-flight call is tracked in _operations (finally-cleared). cleanup_hanging_operations() drops stale entries.
"""
Provider Gateway -- uniform interface over all LLM backends.

    gateway = ProviderGateway.from_settings(settings)
    await gateway.test_all()
    response = await gateway.generate_response(Provider.OPENAI, messages, GenerateOptions())
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from ..config import Settings
from ..core.errors import ProviderError
from ..models import Provider, ProviderStatus
from .coding_agent import CodingAgentManager
from .openai_compat import OpenAICompatClient
from .types import ChatMessage, GenerateOptions, ProviderPort, ProviderResponse

logger = logging.getLogger(__name__)

DEFAULT_OPERATION_MAX_AGE = 300.0


@dataclass
class _Operation:
    id: str
    event_id: Optional[str]
    provider: Provider
    type: str
    started: float


@dataclass
class _ProbeState:
    last_probe: Optional[float] = None
    last_error: Optional[str] = None


class ProviderGateway:
    """Registry of provider ports plus availability bookkeeping."""

    def __init__(
        self,
        ports: dict[Provider, ProviderPort],
        reprobe_interval: float = 300.0,
    ):
        self._ports = dict(ports)
        self.reprobe_interval = reprobe_interval
        self._known_bad: set[Provider] = set()
        self._probes: dict[Provider, _ProbeState] = {p: _ProbeState() for p in self._ports}
        self._operations: dict[str, _Operation] = {}
        self._reprobe_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderGateway":
        ports: dict[Provider, ProviderPort] = {}
        for provider, config in settings.chat_providers.items():
            ports[provider] = OpenAICompatClient(config, timeout=settings.provider_timeout)
        if settings.coding_agent.enabled:
            ports[Provider.CLAUDE_CODE] = CodingAgentManager(settings.coding_agent, settings.tool_servers)
        logger.info(f"Gateway configured providers: {[p.value for p in cls._ordered(ports)]}")
        return cls(ports, reprobe_interval=settings.provider_reprobe_seconds)

    @staticmethod
    def _ordered(providers) -> list[Provider]:
        return [p for p in Provider if p in providers]

    # =========================================================================
    # Availability
    # =========================================================================

    def configured_providers(self) -> list[Provider]:
        return self._ordered(self._ports)

    def available_providers(self) -> list[Provider]:
        """Configured and not known-bad, in Provider declaration order."""
        return [p for p in self._ordered(self._ports) if p not in self._known_bad]

    def is_known_bad(self, provider: Provider) -> bool:
        return provider in self._known_bad

    @property
    def coding_agent(self) -> Optional[CodingAgentManager]:
        port = self._ports.get(Provider.CLAUDE_CODE)
        return port if isinstance(port, CodingAgentManager) else None

    async def test_provider(self, provider: Provider) -> bool:
        """Probe one provider. Failure is logged and marks it known-bad; success clears it."""
        port = self._ports.get(provider)
        if port is None:
            return False
        state = self._probes.setdefault(provider, _ProbeState())
        state.last_probe = time.time()
        try:
            ok = await port.probe()
        except Exception as e:
            logger.warning(f"Provider {provider.value} probe raised: {e}")
            state.last_error = str(e)
            ok = False

        if ok:
            state.last_error = None
            if provider in self._known_bad:
                self._known_bad.discard(provider)
                logger.info(f"Provider {provider.value} recovered, restored to routing")
        else:
            state.last_error = state.last_error or "probe failed"
            if provider not in self._known_bad:
                self._known_bad.add(provider)
                logger.warning(f"Provider {provider.value} failed probe, excluded from routing")
        return ok

    async def test_all(self) -> dict[Provider, bool]:
        """Probe every configured provider concurrently (startup health check)."""
        providers = self.configured_providers()
        results = await asyncio.gather(*(self.test_provider(p) for p in providers))
        outcome = dict(zip(providers, results))
        logger.info(
            "Provider probe: "
            + ", ".join(f"{p.value}={'ok' if ok else 'FAILED'}" for p, ok in outcome.items())
        )
        return outcome

    async def reprobe_known_bad(self) -> None:
        for provider in list(self._known_bad):
            await self.test_provider(provider)

    async def _reprobe_loop(self) -> None:
        while True:
            await asyncio.sleep(self.reprobe_interval)
            if self._known_bad:
                logger.debug(f"Re-probing known-bad providers: {[p.value for p in self._known_bad]}")
                await self.reprobe_known_bad()
            stale = self.cleanup_hanging_operations()
            if stale:
                logger.warning(f"Dropped {stale} hanging LLM operations")

    def start_reprobe_loop(self) -> None:
        if self._reprobe_task is None or self._reprobe_task.done():
            self._reprobe_task = asyncio.create_task(self._reprobe_loop())

    async def stop_reprobe_loop(self) -> None:
        if self._reprobe_task is not None:
            self._reprobe_task.cancel()
            try:
                await self._reprobe_task
            except asyncio.CancelledError:
                pass
            self._reprobe_task = None

    def provider_statuses(self) -> list[ProviderStatus]:
        statuses = []
        for provider in Provider:
            configured = provider in self._ports
            state = self._probes.get(provider, _ProbeState())
            statuses.append(ProviderStatus(
                provider=provider,
                configured=configured,
                available=configured and provider not in self._known_bad,
                known_bad=provider in self._known_bad,
                last_probe=state.last_probe,
                last_error=state.last_error,
            ))
        return statuses

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_response(
        self,
        provider: Provider,
        messages: list[ChatMessage],
        options: Optional[GenerateOptions] = None,
    ) -> ProviderResponse:
        """Single call to one backend. Raises ProviderError on any backend failure."""
        options = options or GenerateOptions()
        port = self._ports.get(provider)
        if port is None:
            raise ProviderError(provider.value, "provider not configured")

        op_type = "coding_agent" if provider.is_coding_agent else "chat_completion"
        op_id = self._start_operation(options.event_id, provider, op_type)
        started = time.monotonic()
        try:
            response = await port.generate(messages, options)
        finally:
            self._end_operation(op_id)
        logger.debug(
            f"{provider.value} responded in {time.monotonic() - started:.2f}s "
            f"({len(response.content)} chars, {len(response.tool_calls)} tool calls)"
        )
        return response

    # =========================================================================
    # Active operation tracking
    # =========================================================================

    def _start_operation(self, event_id: Optional[str], provider: Provider, op_type: str) -> str:
        op_id = f"llm-{uuid.uuid4().hex[:10]}"
        self._operations[op_id] = _Operation(op_id, event_id, provider, op_type, time.time())
        return op_id

    def _end_operation(self, op_id: str) -> None:
        self._operations.pop(op_id, None)

    def active_operations(self) -> list[dict]:
        now = time.time()
        return [
            {
                "id": op.id,
                "event_id": op.event_id,
                "provider": op.provider.value,
                "type": op.type,
                "started": op.started,
                "duration_ms": int((now - op.started) * 1000),
            }
            for op in self._operations.values()
        ]

    def cleanup_hanging_operations(self, max_age: float = DEFAULT_OPERATION_MAX_AGE) -> int:
        """Drop tracking entries older than max_age seconds. Returns the count removed."""
        cutoff = time.time() - max_age
        stale = [op_id for op_id, op in self._operations.items() if op.started < cutoff]
        for op_id in stale:
            op = self._operations.pop(op_id)
            logger.warning(
                f"Hanging operation {op_id} ({op.provider.value}, event={op.event_id}) "
                f"exceeded {max_age:.0f}s"
            )
        return len(stale)

    async def close(self) -> None:
        await self.stop_reprobe_loop()
        for port in self._ports.values():
            await port.close()
