"""Data types for task state and progress snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task state machine: Rendering -> Processing -> Generating -> Complete, or Error."""

    RENDERING = "Rendering"
    PROCESSING = "Processing"
    GENERATING = "Generating"
    COMPLETE = "Complete"
    ERROR = "Error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETE, TaskStatus.ERROR)


class PageState(str, Enum):
    """Per-page sub-state."""

    PENDING = "pending"
    RECOGNIZING = "recognizing"
    TRANSLATING = "translating"
    DONE = "done"
    ERROR = "error"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class LogEntry:
    """One timestamped event in a task's log trail."""

    timestamp: datetime
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "message": self.message}


@dataclass
class PageRecord:
    """Observable state of a single page.

    Attributes:
        page_num: Page number (1-indexed)
        state: Current sub-state
        recognition_started_at: When recognition began
        translation_started_at: When translation began
        recognition_seconds: Recognition duration
        translation_seconds: Translation duration
        recognized_chars: Characters in the recognized text
        translated_chars: Characters in the translated text
        recognized_preview: Leading characters of the recognized text
        translated_preview: Leading characters of the translated text
        error: Last error message, if any
    """

    page_num: int
    state: PageState = PageState.PENDING
    recognition_started_at: datetime | None = None
    translation_started_at: datetime | None = None
    recognition_seconds: float | None = None
    translation_seconds: float | None = None
    recognized_chars: int | None = None
    translated_chars: int | None = None
    recognized_preview: str = ""
    translated_preview: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "page_num": self.page_num,
            "state": self.state.value,
            "recognition_started_at": _iso(self.recognition_started_at),
            "translation_started_at": _iso(self.translation_started_at),
            "recognition_seconds": self.recognition_seconds,
            "translation_seconds": self.translation_seconds,
            "recognized_chars": self.recognized_chars,
            "translated_chars": self.translated_chars,
            "recognized_preview": self.recognized_preview,
            "translated_preview": self.translated_preview,
            "error": self.error,
        }


@dataclass
class TaskSummary:
    """One row of the task listing."""

    task_id: str
    name: str
    status: TaskStatus
    percentage: float
    total_pages: int
    recognized_pages: int
    translated_pages: int
    created_at: datetime
    cancelled: bool = False
    retrying: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "status": self.status.value,
            "percentage": round(self.percentage, 1),
            "total_pages": self.total_pages,
            "recognized_pages": self.recognized_pages,
            "translated_pages": self.translated_pages,
            "created_at": self.created_at.isoformat(),
            "cancelled": self.cancelled,
            "retrying": self.retrying,
        }


@dataclass
class TaskProgress:
    """Point-in-time snapshot of a task, detached from registry state."""

    task_id: str
    name: str
    status: TaskStatus
    percentage: float
    message: str
    total_pages: int
    recognized_pages: int
    translated_pages: int
    created_at: datetime
    cancelled: bool = False
    retrying: bool = False
    pages: list[PageRecord] = field(default_factory=list)
    logs: list[LogEntry] = field(default_factory=list)

    @property
    def is_done(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "status": self.status.value,
            "percentage": round(self.percentage, 1),
            "message": self.message,
            "total_pages": self.total_pages,
            "recognized_pages": self.recognized_pages,
            "translated_pages": self.translated_pages,
            "created_at": self.created_at.isoformat(),
            "cancelled": self.cancelled,
            "retrying": self.retrying,
            "pages": [page.to_dict() for page in self.pages],
            "logs": [entry.to_dict() for entry in self.logs],
        }
