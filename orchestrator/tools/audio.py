# orchestrator/tools/audio.py
# @ai-rules:
# 1. [Constraint]: Uses httpx only. POST {elevenlabs}/tools/generate_audio, response {jsonrpc, result: {success, message}}.
# 2. [Pattern]: Failures raise SidecarError. Caller (Executor) logs and continues -- fallback speech never fails an event.
# 3. [Pattern]: clean_for_speech() strips markdown/code/URLs before synthesis.
"""Audio synthesizer client for fallback speech."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from ..core.errors import SidecarError

logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "Au8OOcCmvsCaQpmULvvQ"


@dataclass
class AudioResult:
    success: bool
    message: str = ""


_SPEECH_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"```.*?```", re.DOTALL), " "),  # fenced code
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"`(.*?)`"), r"\1"),
    (re.compile(r"#{1,6}\s"), ""),
    (re.compile(r"https?://\S+"), "link"),
    (re.compile(r"[<>{}\[\]]"), ""),
    (re.compile(r"\s+"), " "),
]


def clean_for_speech(text: str) -> str:
    for pattern, repl in _SPEECH_RULES:
        text = pattern.sub(repl, text)
    return text.strip()


class AudioSynthesizer:
    """Thin async client for the TTS tool server."""

    def __init__(
        self,
        base_url: str,
        default_voice_id: str = DEFAULT_VOICE_ID,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_voice_id = default_voice_id
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def generate_audio(self, text: str, voice_id: Optional[str] = None) -> AudioResult:
        """Synthesize and play `text`. Raises SidecarError on transport or server failure."""
        client = await self._get_client()
        try:
            resp = await client.post(
                "/tools/generate_audio",
                json={"text": text, "voice_id": voice_id or self.default_voice_id},
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SidecarError("audio", e) from e

        error = body.get("error")
        if error:
            raise SidecarError("audio", error.get("message", error) if isinstance(error, dict) else error)
        result = body.get("result") or {}
        return AudioResult(
            success=bool(result.get("success")),
            message=str(result.get("message", "")),
        )
