"""Task registry and progress types."""

from __future__ import annotations

from .registry import AdmissionSlot, TaskRegistry
from .types import LogEntry, PageRecord, PageState, TaskProgress, TaskStatus, TaskSummary

__all__ = [
    "AdmissionSlot",
    "TaskRegistry",
    "LogEntry",
    "PageRecord",
    "PageState",
    "TaskProgress",
    "TaskStatus",
    "TaskSummary",
]
