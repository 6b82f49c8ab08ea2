# orchestrator/memory/__init__.py
"""Semantic memory sidecar client."""
from .semantic_memory import MEMORY_BANKS, MemorySidecar, SemanticMemory
from .vector_store import VectorStore

__all__ = [
    "MEMORY_BANKS",
    "MemorySidecar",
    "SemanticMemory",
    "VectorStore",
]
