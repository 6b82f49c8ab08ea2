# orchestrator/config.py
# @ai-rules:
# 1. [Pattern]: Environment is the only config source. load_settings() snapshots it once at startup (lifespan).
# 2. [Pattern]: A provider is "configured" when its API key env var is set. claude-code is configured when the CLI is on PATH or CODING_AGENT_ENABLED=true.
# 3. [Pattern]: ROUTING_CONFIG_PATH points at a YAML file {use_case: [provider, ...]} that overrides DEFAULT_PREFERENCES per use case.
# 4. [Gotcha]: Unknown provider names in the routing YAML are dropped with a warning, not fatal.
"""
Orchestrator configuration.

All knobs come from environment variables; defaults mirror the production
orchestrator (general queue concurrency 5, voice queue strictly serialized).
"""
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .models import Provider, UseCase

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using default {default}")
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Provider catalogue (OpenAI-compatible chat backends)
# =============================================================================

# provider -> (api key env, default base url, default model)
CHAT_PROVIDER_DEFAULTS: dict[Provider, tuple[str, str, str]] = {
    Provider.OPENAI: ("OPENAI_API_KEY", "https://api.openai.com/v1", "gpt-4o"),
    Provider.ANTHROPIC: ("ANTHROPIC_API_KEY", "https://api.anthropic.com/v1", "claude-sonnet-4-5"),
    Provider.GEMINI: (
        "GEMINI_API_KEY",
        "https://generativelanguage.googleapis.com/v1beta/openai",
        "gemini-2.0-flash",
    ),
    Provider.GROK: ("GROK_API_KEY", "https://api.x.ai/v1", "grok-2"),
    Provider.GROQ: ("GROQ_API_KEY", "https://api.groq.com/openai/v1", "llama-3.3-70b-versatile"),
    Provider.CEREBRAS: ("CEREBRAS_API_KEY", "https://api.cerebras.ai/v1", "llama3.1-8b"),
}

# Static preference order per use case. Filtered to available providers at route time.
DEFAULT_PREFERENCES: dict[UseCase, tuple[Provider, ...]] = {
    UseCase.CODING: (Provider.CLAUDE_CODE,),
    UseCase.TOOLS: (Provider.OPENAI, Provider.ANTHROPIC, Provider.GROK, Provider.GEMINI),
    UseCase.CHAT: (Provider.OPENAI, Provider.ANTHROPIC, Provider.GROK, Provider.GEMINI, Provider.GROQ),
    UseCase.SOCIAL: (Provider.GROK, Provider.OPENAI, Provider.ANTHROPIC),
    UseCase.FAST: (Provider.GROQ, Provider.CEREBRAS, Provider.GEMINI, Provider.OPENAI),
}


# MCP sidecar name -> default base url
DEFAULT_TOOL_SERVERS: dict[str, str] = {
    "elevenlabs": "http://localhost:3454",
    "avatar": "http://localhost:8080",
    "playwright": "http://localhost:8081",
    "semantic-memory": "http://localhost:8750",
}


@dataclass(frozen=True)
class ChatProviderConfig:
    """Credentials and endpoint for one OpenAI-compatible backend."""
    provider: Provider
    api_key: str
    base_url: str
    model: str
    max_tokens: int = 2000


@dataclass(frozen=True)
class CodingAgentConfig:
    command: str = "claude"
    enabled: bool = False
    timeout: float = 120.0
    mcp_config_dir: str = "/tmp"
    orchestrator_url: str = "http://localhost:8742"


@dataclass(frozen=True)
class Settings:
    """Snapshot of all orchestrator configuration."""
    max_concurrency: int = 5
    voice_queue_concurrency: int = 1
    max_event_history: int = 1000
    provider_timeout: float = 30.0
    tool_timeout: float = 10.0
    audio_timeout: float = 15.0
    memory_timeout: float = 10.0
    side_effect_timeout: float = 30.0
    provider_reprobe_seconds: float = 300.0
    chat_providers: dict[Provider, ChatProviderConfig] = field(default_factory=dict)
    coding_agent: CodingAgentConfig = field(default_factory=CodingAgentConfig)
    preferences: dict[UseCase, tuple[Provider, ...]] = field(
        default_factory=lambda: dict(DEFAULT_PREFERENCES)
    )
    tool_servers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TOOL_SERVERS))
    elevenlabs_voice_id: str = "Au8OOcCmvsCaQpmULvvQ"
    memory_enabled: bool = False
    qdrant_url: str = "http://localhost:6333"
    gcp_project: str = ""
    gcp_location: str = "global"
    redis_host: Optional[str] = None
    redis_port: int = 6379
    redis_password: str = ""
    event_log_ttl_seconds: int = 86400

    def configured_providers(self) -> list[Provider]:
        """Providers with credentials, in Provider declaration order (deterministic)."""
        configured = []
        for provider in Provider:
            if provider.is_coding_agent:
                if self.coding_agent.enabled:
                    configured.append(provider)
            elif provider in self.chat_providers:
                configured.append(provider)
        return configured


def load_chat_providers() -> dict[Provider, ChatProviderConfig]:
    """Build configs for every chat provider whose API key is set."""
    providers: dict[Provider, ChatProviderConfig] = {}
    for provider, (key_env, default_url, default_model) in CHAT_PROVIDER_DEFAULTS.items():
        api_key = os.getenv(key_env, "")
        if not api_key:
            continue
        prefix = provider.value.upper()
        providers[provider] = ChatProviderConfig(
            provider=provider,
            api_key=api_key,
            base_url=os.getenv(f"{prefix}_BASE_URL", default_url).rstrip("/"),
            model=os.getenv(f"{prefix}_MODEL", default_model),
            max_tokens=_env_int(f"{prefix}_MAX_TOKENS", 2000),
        )
    return providers


def load_preferences(path: Optional[str]) -> dict[UseCase, tuple[Provider, ...]]:
    """Merge an optional routing YAML over DEFAULT_PREFERENCES."""
    preferences = dict(DEFAULT_PREFERENCES)
    if not path:
        return preferences

    config_path = Path(path)
    if not config_path.is_file():
        logger.warning(f"Routing config not found: {config_path}")
        return preferences

    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
    except Exception as e:
        logger.warning(f"Failed to parse routing config {config_path}: {e}")
        return preferences

    for use_case_name, names in raw.items():
        try:
            use_case = UseCase(use_case_name)
        except ValueError:
            logger.warning(f"Routing config: unknown use case '{use_case_name}'")
            continue
        order: list[Provider] = []
        for name in names or []:
            try:
                order.append(Provider(name))
            except ValueError:
                logger.warning(f"Routing config: unknown provider '{name}' for {use_case_name}")
        if order:
            preferences[use_case] = tuple(order)
    logger.info(f"Routing preferences loaded from {config_path}")
    return preferences


def load_settings() -> Settings:
    """Read the environment once and return a frozen Settings snapshot."""
    command = os.getenv("CODING_AGENT_COMMAND", "claude")
    coding_enabled = _env_bool("CODING_AGENT_ENABLED", default=shutil.which(command) is not None)
    port = _env_int("ORCHESTRATOR_PORT", 8742)

    tool_servers = {
        name: os.getenv(env, DEFAULT_TOOL_SERVERS[name])
        for name, env in (
            ("elevenlabs", "ELEVENLABS_URL"),
            ("avatar", "AVATAR_URL"),
            ("playwright", "PLAYWRIGHT_URL"),
            ("semantic-memory", "MEMORY_URL"),
        )
    }

    return Settings(
        max_concurrency=max(1, _env_int("MAX_CONCURRENCY", 5)),
        voice_queue_concurrency=max(1, _env_int("VOICE_QUEUE_CONCURRENCY", 1)),
        max_event_history=max(1, _env_int("MAX_EVENT_HISTORY", 1000)),
        provider_timeout=_env_float("PROVIDER_TIMEOUT_SECONDS", 30.0),
        tool_timeout=_env_float("TOOL_TIMEOUT_SECONDS", 10.0),
        audio_timeout=_env_float("AUDIO_TIMEOUT_SECONDS", 15.0),
        memory_timeout=_env_float("MEMORY_TIMEOUT_SECONDS", 10.0),
        side_effect_timeout=_env_float("SIDE_EFFECT_TIMEOUT_SECONDS", 30.0),
        provider_reprobe_seconds=_env_float("PROVIDER_REPROBE_SECONDS", 300.0),
        chat_providers=load_chat_providers(),
        coding_agent=CodingAgentConfig(
            command=command,
            enabled=coding_enabled,
            timeout=_env_float("CODING_AGENT_TIMEOUT_SECONDS", 120.0),
            mcp_config_dir=os.getenv("CODING_AGENT_MCP_DIR", "/tmp"),
            orchestrator_url=os.getenv("ORCHESTRATOR_URL", f"http://localhost:{port}"),
        ),
        preferences=load_preferences(os.getenv("ROUTING_CONFIG_PATH")),
        tool_servers=tool_servers,
        elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID", "Au8OOcCmvsCaQpmULvvQ"),
        memory_enabled=_env_bool("MEMORY_ENABLED", default=bool(os.getenv("GCP_PROJECT"))),
        qdrant_url=os.getenv("QDRANT_URL", "http://localhost:6333"),
        gcp_project=os.getenv("GCP_PROJECT", ""),
        gcp_location=os.getenv("GCP_LOCATION", "global"),
        redis_host=os.getenv("REDIS_HOST") or None,
        redis_port=_env_int("REDIS_PORT", 6379),
        redis_password=os.getenv("REDIS_PASSWORD", ""),
        event_log_ttl_seconds=_env_int("EVENT_LOG_TTL_SECONDS", 86400),
    )
