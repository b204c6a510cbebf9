"""Checkpoint storage for resumable translation tasks.

Usage:
    >>> from pdftrans.checkpoint import CheckpointStore
    >>>
    >>> store = CheckpointStore(Path(".checkpoints"))
    >>> store.save_page_stage("task-1", 3, Stage.TRANSLATION, text)
    >>> store.completed_page_count("task-1")
"""

from __future__ import annotations

from .store import CheckpointStore, PageDetail

__all__ = ["CheckpointStore", "PageDetail"]
