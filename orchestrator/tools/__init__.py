# orchestrator/tools/__init__.py
"""Tool adapters: provider tool-call execution and fallback audio."""
from .audio import AudioResult, AudioSynthesizer, clean_for_speech
from .handler import ToolCallHandler, ToolResult, any_speech_produced

__all__ = [
    "AudioResult",
    "AudioSynthesizer",
    "ToolCallHandler",
    "ToolResult",
    "any_speech_produced",
    "clean_for_speech",
]
