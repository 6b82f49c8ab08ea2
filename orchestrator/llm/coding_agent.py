# orchestrator/llm/coding_agent.py
# @ai-rules:
# 1. [Pattern]: spawn() returns immediately with an instance_id. wait_for_completion(instance_id, timeout) awaits the process.
# 2. [Constraint]: Timeout kills the process (SIGTERM, then SIGKILL) and raises ProviderError. Non-zero exit also raises.
# 3. [Pattern]: Each instance gets its own MCP config file ({mcp_config_dir}/mcp-{instance_id}.json), removed on completion.
# 4. [Gotcha]: Prompt is passed with -p, stdin is closed. The CLI reads its own credentials; we never inject API keys.
"""
Coding-agent backend: spawns the external coding assistant CLI per task.

The CLI is given an MCP config pointing at the local tool servers (SSE
transport) and an allow-list of tools, so the agent can speak, animate the
avatar, browse, and read/write semantic memory on its own.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config import CodingAgentConfig
from ..core.errors import ProviderError
from ..models import Provider
from .types import ChatMessage, GenerateOptions, ProviderResponse

logger = logging.getLogger(__name__)

PROVIDER_NAME = Provider.CLAUDE_CODE.value
PROBE_TIMEOUT = 10.0
KILL_GRACE_SECONDS = 5.0
OUTPUT_TAIL_CHARS = 500

# MCP server key (as requested by callers) -> (name in MCP config, tool_servers key)
MCP_SERVERS: dict[str, tuple[str, str]] = {
    "semantic-memory": ("semantic-memory", "semantic-memory"),
    "elevenlabs": ("elevenlabs", "elevenlabs"),
    "avatar": ("rustybutter-avatar", "avatar"),
    "playwright": ("playwright-sse", "playwright"),
}

BASE_ALLOWED_TOOLS = ["Bash(*)", "Read", "Write", "Edit", "MultiEdit", "WebFetch", "WebSearch"]

SERVER_ALLOWED_TOOLS: dict[str, list[str]] = {
    "semantic-memory": [
        "mcp__semantic-memory__embed_text",
        "mcp__semantic-memory__semantic_search",
        "mcp__semantic-memory__recall",
        "mcp__semantic-memory__get_stats",
    ],
    "elevenlabs": [
        "mcp__elevenlabs__generate_audio",
        "mcp__elevenlabs__stream_audio",
        "mcp__elevenlabs__list_voices",
    ],
    "avatar": [
        "mcp__rustybutter-avatar__setAvatarExpression",
        "mcp__rustybutter-avatar__listAvatarExpressions",
        "mcp__rustybutter-avatar__setBatchExpressions",
        "mcp__rustybutter-avatar__getAvatarStatus",
        "mcp__rustybutter-avatar__getAvatarWebInterface",
    ],
    "playwright": ["mcp__playwright-sse__*"],
}


@dataclass
class SpawnResult:
    instance_id: str
    response: Optional[str] = None


@dataclass
class AgentInstance:
    """One running coding-agent process."""
    id: str
    event_id: Optional[str]
    role: str
    process: asyncio.subprocess.Process
    config_path: Path
    output_task: asyncio.Task
    started: float = field(default_factory=time.time)
    status: str = "running"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "role": self.role,
            "pid": self.process.pid,
            "status": self.status,
            "duration_ms": int((time.time() - self.started) * 1000),
        }


def build_mcp_config(servers: list[str], tool_servers: dict[str, str]) -> dict:
    """MCP client config with one SSE entry per requested server. Unknown names are skipped."""
    mcp_servers: dict[str, dict] = {}
    for server in servers:
        entry = MCP_SERVERS.get(server)
        if entry is None:
            logger.warning(f"Unknown MCP server requested: {server}")
            continue
        config_name, url_key = entry
        base_url = tool_servers.get(url_key, "").rstrip("/")
        if not base_url:
            logger.warning(f"No URL configured for MCP server {server}")
            continue
        mcp_servers[config_name] = {"type": "sse", "url": f"{base_url}/sse"}
    return {"mcpServers": mcp_servers}


def build_allowed_tools(servers: list[str]) -> list[str]:
    allowed = list(BASE_ALLOWED_TOOLS)
    for server in servers:
        allowed.extend(SERVER_ALLOWED_TOOLS.get(server, []))
    return allowed


class CodingAgentManager:
    """Spawns and tracks coding-agent CLI processes."""

    def __init__(self, config: CodingAgentConfig, tool_servers: Optional[dict[str, str]] = None):
        self.config = config
        self.tool_servers = tool_servers or {}
        self._instances: dict[str, AgentInstance] = {}

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def build_args(self, config_path: Path, prompt: str, servers: list[str]) -> list[str]:
        args = [self.config.command, "--mcp-config", str(config_path), "--verbose"]
        if servers:
            args += ["--allowedTools", ",".join(build_allowed_tools(servers))]
        args += ["-p", prompt]
        return args

    async def spawn(
        self,
        role: str,
        prompt: str,
        mcp_servers: list[str],
        event_id: Optional[str] = None,
    ) -> SpawnResult:
        """Start a CLI process for one task. Raises ProviderError if it cannot start."""
        instance_id = f"agent-{uuid.uuid4().hex[:12]}"
        config_path = Path(self.config.mcp_config_dir) / f"mcp-{instance_id}.json"
        try:
            config_path.write_text(json.dumps(build_mcp_config(mcp_servers, self.tool_servers), indent=2))
        except OSError as e:
            raise ProviderError(PROVIDER_NAME, f"cannot write MCP config: {e}") from e

        env = {
            **os.environ,
            "ORCHESTRATOR_URL": self.config.orchestrator_url,
            "AGENT_INSTANCE_ID": instance_id,
            "AGENT_ROLE": role,
            "EVENT_ID": event_id or "",
        }
        args = self.build_args(config_path, prompt, mcp_servers)
        logger.info(
            f"Spawning coding agent {instance_id} (role={role}, event={event_id}, "
            f"servers={','.join(mcp_servers) or 'none'})"
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            config_path.unlink(missing_ok=True)
            raise ProviderError(PROVIDER_NAME, f"failed to spawn {self.config.command}: {e}") from e

        self._instances[instance_id] = AgentInstance(
            id=instance_id,
            event_id=event_id,
            role=role,
            process=process,
            config_path=config_path,
            output_task=asyncio.create_task(process.communicate()),
        )
        logger.debug(f"Coding agent {instance_id} started with PID {process.pid}")
        return SpawnResult(instance_id=instance_id)

    async def wait_for_completion(self, instance_id: str, timeout: Optional[float] = None) -> str:
        """Block until the instance exits. Returns stdout. Kills and raises on timeout."""
        instance = self._instances.get(instance_id)
        if instance is None:
            raise ProviderError(PROVIDER_NAME, f"unknown instance {instance_id}")
        timeout = self.config.timeout if timeout is None else timeout

        try:
            try:
                stdout, stderr = await asyncio.wait_for(asyncio.shield(instance.output_task), timeout)
            except asyncio.TimeoutError:
                instance.status = "timeout"
                logger.warning(f"Coding agent {instance_id} timed out after {timeout}s, killing")
                await self._kill(instance)
                raise ProviderError(PROVIDER_NAME, f"instance {instance_id} timed out after {timeout}s")

            output = (stdout or b"").decode(errors="replace").strip()
            code = instance.process.returncode
            if code != 0:
                instance.status = "failed"
                err = (stderr or b"").decode(errors="replace").strip()[-OUTPUT_TAIL_CHARS:]
                raise ProviderError(PROVIDER_NAME, f"instance {instance_id} exited with code {code}: {err}")

            instance.status = "completed"
            logger.info(
                f"Coding agent {instance_id} completed in "
                f"{time.time() - instance.started:.1f}s ({len(output)} chars)"
            )
            return output
        finally:
            self._instances.pop(instance_id, None)
            instance.config_path.unlink(missing_ok=True)

    async def _kill(self, instance: AgentInstance) -> None:
        process = instance.process
        if process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(asyncio.shield(instance.output_task), KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            process.kill()
            await instance.output_task

    async def generate(self, messages: list[ChatMessage], options: GenerateOptions) -> ProviderResponse:
        """ProviderPort adapter: spawn with the joined prompt and wait."""
        prompt = "\n\n".join(m.content for m in messages if m.content)
        result = await self.spawn("event-processor", prompt, options.mcp_servers, options.event_id)
        output = await self.wait_for_completion(result.instance_id)
        return ProviderResponse(content=output, metadata={"instance_id": result.instance_id})

    async def probe(self) -> bool:
        """Run `<command> --version`. Logs and returns False on any failure."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.config.command, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Coding agent probe failed: {e}")
            return False
        try:
            await asyncio.wait_for(process.communicate(), PROBE_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"Coding agent probe timed out after {PROBE_TIMEOUT}s")
            return False
        if process.returncode != 0:
            logger.warning(f"Coding agent probe exited with code {process.returncode}")
            return False
        return True

    def list_instances(self) -> list[dict]:
        return [i.to_dict() for i in self._instances.values()]

    def get_instance(self, instance_id: str) -> Optional[dict]:
        instance = self._instances.get(instance_id)
        return instance.to_dict() if instance is not None else None

    async def cleanup_stale(self, max_age: float) -> int:
        """Kill instances running longer than max_age seconds. Their waiters see a failed exit."""
        cutoff = time.time() - max_age
        stale = [i for i in self._instances.values() if i.started < cutoff and i.status == "running"]
        for instance in stale:
            logger.warning(f"Killing stale coding agent {instance.id} (event={instance.event_id})")
            instance.status = "killed"
            await self._kill(instance)
        return len(stale)

    async def close(self) -> None:
        for instance in list(self._instances.values()):
            await self._kill(instance)
            instance.config_path.unlink(missing_ok=True)
        self._instances.clear()
