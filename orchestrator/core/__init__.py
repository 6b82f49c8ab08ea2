# orchestrator/core/__init__.py
# @ai-rules:
# 1. [Gotcha]: Keep this module import-free. models.py imports core.errors; eager imports here would cycle.
"""Event processing core: router, executor, work queues, scheduler."""
