"""In-memory task registry.

The registry owns every task's observable state: status, progress counters,
per-page records, the capped log trail and the output artifact. It also enforces
the service-wide ceiling on concurrently running tasks.

All state lives behind a single lock. Every mutation is a short critical section
and nothing awaits while holding it, so the registry can be shared by the event
loop and worker threads alike.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from ..constants import DEFAULT_LOG_LIMIT, DEFAULT_MAX_CONCURRENT_TASKS, STAGE_WEIGHTS
from ..exceptions import AdmissionRejectedError, RetryRejectedError, TaskNotFoundError
from ..misc import tz_now
from ..types import Stage
from .types import LogEntry, PageRecord, PageState, TaskProgress, TaskStatus, TaskSummary

logger = logging.getLogger(__name__)


@dataclass
class _TaskRecord:
    task_id: str
    name: str
    created_at: datetime
    logs: deque[LogEntry]
    status: TaskStatus = TaskStatus.RENDERING
    message: str = "Rendering PDF..."
    percentage: float = 0.0
    total_pages: int = 0
    recognized_pages: int = 0
    translated_pages: int = 0
    cancelled: bool = False
    retrying: bool = False
    pages: dict[int, PageRecord] = field(default_factory=dict)
    artifact: bytes | None = None


class AdmissionSlot:
    """One unit of the concurrent-task ceiling.

    Releasing is idempotent, so the slot can be handed from the submitting code
    to the background attempt and released by whichever finishes with it.

    Example:
        >>> slot = registry.acquire_slot()
        >>> with slot:
        ...     await run_attempt()
    """

    def __init__(self, registry: TaskRegistry):
        self._registry = registry
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._registry.release_slot()

    def __enter__(self) -> AdmissionSlot:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class TaskRegistry:
    """Thread-safe registry of translation tasks.

    Args:
        max_concurrent: Ceiling on concurrently running tasks
        log_limit: Log entries kept per task
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT_TASKS, log_limit: int = DEFAULT_LOG_LIMIT):
        self.max_concurrent = max_concurrent
        self.log_limit = log_limit
        self._lock = threading.Lock()
        self._tasks: dict[str, _TaskRecord] = {}
        self._active = 0

    # ==================== Admission ====================

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    def try_acquire_slot(self) -> bool:
        """Take a slot if one is free; never blocks."""
        with self._lock:
            if self._active >= self.max_concurrent:
                return False
            self._active += 1
            return True

    def release_slot(self) -> None:
        with self._lock:
            if self._active > 0:
                self._active -= 1

    def acquire_slot(self) -> AdmissionSlot:
        """Take a slot wrapped in an idempotent guard.

        Raises:
            AdmissionRejectedError: If the ceiling has been reached
        """
        if not self.try_acquire_slot():
            raise AdmissionRejectedError(self.max_concurrent)
        return AdmissionSlot(self)

    # ==================== Task lifecycle ====================

    def create_task(self, name: str, task_id: str | None = None) -> str:
        """Register a new task in the Rendering state and return its id."""
        task_id = task_id or uuid.uuid4().hex
        now = tz_now()
        record = _TaskRecord(
            task_id=task_id,
            name=name,
            created_at=now,
            logs=deque(maxlen=self.log_limit),
        )
        record.logs.append(LogEntry(now, f"Task created: {name}"))
        with self._lock:
            self._tasks[task_id] = record
        logger.info("[%s] Task created: %s", task_id, name)
        return task_id

    def exists(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._tasks

    def get_status(self, task_id: str) -> TaskStatus | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.status if task else None

    def is_cancelled(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            return bool(task and task.cancelled)

    def cancel(self, task_id: str) -> bool:
        """Cancel a running task.

        Returns:
            False if the task is unknown or already terminal
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return False
            task.cancelled = True
            task.status = TaskStatus.ERROR
            task.message = "Task cancelled"
            self._append_log(task, "Task cancelled")
        logger.info("[%s] Task cancelled", task_id)
        return True

    def set_rendering(self, task_id: str) -> None:
        self._transition(task_id, TaskStatus.RENDERING, "Rendering PDF...")

    def set_processing(self, task_id: str, total_pages: int, done_pages: frozenset[int] | set[int] = frozenset()) -> None:
        """Enter Processing with a fixed page count.

        Args:
            task_id: Task identifier
            total_pages: Number of pages in the document
            done_pages: Pages already translated by an earlier attempt
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return
            if task.total_pages and task.total_pages != total_pages:
                logger.warning(
                    "[%s] Page count changed from %d to %d; keeping %d",
                    task_id,
                    task.total_pages,
                    total_pages,
                    task.total_pages,
                )
                total_pages = task.total_pages
            task.total_pages = total_pages
            for page_num in range(1, total_pages + 1):
                record = task.pages.setdefault(page_num, PageRecord(page_num))
                if page_num in done_pages:
                    record.state = PageState.DONE
                    record.error = None
                elif record.state != PageState.DONE:
                    record.state = PageState.PENDING
                    record.error = None
            completed = sum(1 for p in done_pages if 1 <= p <= total_pages)
            task.recognized_pages = completed
            task.translated_pages = completed
            task.status = TaskStatus.PROCESSING
            if completed:
                task.message = f"Processing {total_pages} pages ({completed} already done)"
            else:
                task.message = f"Processing {total_pages} pages"
            self._refresh_percentage(task)
            self._append_log(task, task.message)

    def set_generating(self, task_id: str) -> None:
        self._transition(task_id, TaskStatus.GENERATING, "Generating PDF...")

    def set_complete(self, task_id: str, artifact: bytes) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return
            task.artifact = bytes(artifact)
            task.status = TaskStatus.COMPLETE
            task.message = "Translation complete"
            task.percentage = 100.0
            self._append_log(task, f"Translation complete ({len(artifact)} bytes)")
        logger.info("[%s] Task complete", task_id)

    def set_error(self, task_id: str, message: str) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return
            task.status = TaskStatus.ERROR
            task.message = message
            self._append_log(task, f"Error: {message}")
        logger.error("[%s] Task failed: %s", task_id, message)

    def check_retry(self, task_id: str) -> None:
        """Raise the rejection :meth:`try_begin_retry` would raise right now, without mutating.

        Raises:
            TaskNotFoundError: If the task is unknown
            RetryRejectedError: If the task is not in a retryable state
        """
        with self._lock:
            self._retryable_task(task_id)

    def _retryable_task(self, task_id: str) -> _TaskRecord:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        if task.status != TaskStatus.ERROR:
            raise RetryRejectedError(f"Task is not in an error state (status: {task.status.value})")
        if task.cancelled:
            raise RetryRejectedError("Task was cancelled and cannot be retried")
        if task.retrying:
            raise RetryRejectedError("Retry already in progress")
        return task

    def try_begin_retry(self, task_id: str) -> None:
        """Move an errored task back to Processing for a retry attempt.

        Nothing is mutated when the retry is rejected.

        Raises:
            TaskNotFoundError: If the task is unknown
            RetryRejectedError: If the task is not in a retryable state
        """
        with self._lock:
            task = self._retryable_task(task_id)
            task.retrying = True
            task.status = TaskStatus.PROCESSING
            task.message = "Retrying..."
            self._append_log(task, "Retry started")
        logger.info("[%s] Retry started", task_id)

    def finish_retry(self, task_id: str) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is not None:
                task.retrying = False

    # ==================== Pages ====================

    def begin_page_stage(self, task_id: str, page_num: int, stage: Stage) -> None:
        with self._lock:
            page = self._page(task_id, page_num)
            if page is None:
                return
            now = tz_now()
            if Stage(stage) is Stage.RECOGNITION:
                page.state = PageState.RECOGNIZING
                page.recognition_started_at = now
            else:
                page.state = PageState.TRANSLATING
                page.translation_started_at = now
            page.error = None

    def finish_page_stage(self, task_id: str, page_num: int, stage: Stage, char_count: int, preview: str) -> None:
        """Record a finished stage and bump the matching counter.

        Finishing recognition leaves the page waiting for translation.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return
            page = task.pages.setdefault(page_num, PageRecord(page_num))
            now = tz_now()
            if Stage(stage) is Stage.RECOGNITION:
                if page.recognition_started_at is not None:
                    page.recognition_seconds = (now - page.recognition_started_at).total_seconds()
                page.recognized_chars = char_count
                page.recognized_preview = preview
                page.state = PageState.TRANSLATING
                task.recognized_pages = min(task.recognized_pages + 1, task.total_pages or task.recognized_pages + 1)
            else:
                if page.translation_started_at is not None:
                    page.translation_seconds = (now - page.translation_started_at).total_seconds()
                page.translated_chars = char_count
                page.translated_preview = preview
                page.state = PageState.DONE
                task.translated_pages = min(task.translated_pages + 1, task.total_pages or task.translated_pages + 1)
            self._refresh_percentage(task)

    def set_page_error(self, task_id: str, page_num: int, message: str) -> None:
        with self._lock:
            page = self._page(task_id, page_num)
            if page is None:
                return
            page.state = PageState.ERROR
            page.error = message

    def add_log(self, task_id: str, message: str) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return
            self._append_log(task, message)
        logger.info("[%s] %s", task_id, message)

    # ==================== Queries ====================

    def snapshot_progress(self, task_id: str) -> TaskProgress | None:
        """Return a consistent copy of a task's state, or None if unknown."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            return TaskProgress(
                task_id=task.task_id,
                name=task.name,
                status=task.status,
                percentage=task.percentage,
                message=task.message,
                total_pages=task.total_pages,
                recognized_pages=task.recognized_pages,
                translated_pages=task.translated_pages,
                created_at=task.created_at,
                cancelled=task.cancelled,
                retrying=task.retrying,
                pages=[replace(task.pages[n]) for n in sorted(task.pages)],
                logs=list(task.logs),
            )

    def list_tasks(self) -> list[TaskSummary]:
        """Summaries of every task, newest first."""
        with self._lock:
            summaries = [
                TaskSummary(
                    task_id=task.task_id,
                    name=task.name,
                    status=task.status,
                    percentage=task.percentage,
                    total_pages=task.total_pages,
                    recognized_pages=task.recognized_pages,
                    translated_pages=task.translated_pages,
                    created_at=task.created_at,
                    cancelled=task.cancelled,
                    retrying=task.retrying,
                )
                for task in self._tasks.values()
            ]
        summaries.sort(key=lambda s: s.created_at, reverse=True)
        return summaries

    def get_artifact(self, task_id: str) -> bytes | None:
        """Return the output document once the task is Complete."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.COMPLETE:
                return None
            return task.artifact

    def reclaim_expired(self, retention_seconds: float, now: datetime | None = None) -> list[str]:
        """Forget terminal tasks created more than ``retention_seconds`` ago.

        Returns:
            Ids of the removed tasks
        """
        now = now or tz_now()
        cutoff = now - timedelta(seconds=retention_seconds)
        with self._lock:
            expired = [
                task_id
                for task_id, task in self._tasks.items()
                if task.status.is_terminal and not task.retrying and task.created_at < cutoff
            ]
            for task_id in expired:
                del self._tasks[task_id]
        if expired:
            logger.info("Reclaimed %d expired task(s)", len(expired))
        return expired

    # ==================== Internals (lock held) ====================

    def _transition(self, task_id: str, status: TaskStatus, message: str) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return
            task.status = status
            task.message = message
            self._refresh_percentage(task)
            self._append_log(task, message)

    def _page(self, task_id: str, page_num: int) -> PageRecord | None:
        task = self._tasks.get(task_id)
        if task is None or task.status.is_terminal:
            return None
        return task.pages.setdefault(page_num, PageRecord(page_num))

    def _append_log(self, task: _TaskRecord, message: str) -> None:
        task.logs.append(LogEntry(tz_now(), message))

    def _refresh_percentage(self, task: _TaskRecord) -> None:
        """Recompute the weighted percentage; it never moves backwards."""
        if task.status == TaskStatus.RENDERING:
            computed = 0.0
        elif task.status == TaskStatus.GENERATING:
            computed = 100.0 - STAGE_WEIGHTS["generate"]
        elif task.status == TaskStatus.COMPLETE:
            computed = 100.0
        elif task.total_pages:
            computed = (
                STAGE_WEIGHTS["render"]
                + STAGE_WEIGHTS["recognize"] * task.recognized_pages / task.total_pages
                + STAGE_WEIGHTS["translate"] * task.translated_pages / task.total_pages
            )
        else:
            computed = STAGE_WEIGHTS["render"]
        task.percentage = max(task.percentage, computed)
