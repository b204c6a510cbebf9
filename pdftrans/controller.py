"""Task lifecycle controller.

Sequences one task attempt: render -> schedule pages -> assemble -> publish.
Fresh submissions process every page; retries only process pages without a
translated checkpoint. Every attempt holds one admission slot for its whole
lifetime and releases it on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Coroutine
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .api import AsyncOpenAIClient
from .batch import BatchPipelineScheduler
from .checkpoint import CheckpointStore, PageDetail
from .constants import PDF_MAGIC
from .conversion import PdfAssembler, PopplerRenderer
from .exceptions import (
    AssemblyError,
    InputInvalidError,
    RenderError,
    TaskCancelledError,
    TaskExpiredError,
    TranslatorError,
)
from .misc import get_default_timezone
from .tasks import AdmissionSlot, TaskProgress, TaskRegistry, TaskSummary
from .types import Stage

if TYPE_CHECKING:
    from .config import TranslatorConfig
    from .types import Assembler, Renderer, StageClient

logger = logging.getLogger(__name__)


class TaskController:
    """Top-level driver for submissions, retries and queries.

    All collaborators are constructed once and injected; :meth:`from_config`
    wires the production ones.

    Example:
        >>> controller = TaskController.from_config(config)
        >>> task_id = await controller.submit(pdf_bytes, "paper.pdf")
        >>> async for snapshot in controller.poll_progress(task_id):
        ...     print(snapshot.status, snapshot.percentage)
        >>> output = controller.get_result(task_id)
    """

    def __init__(
        self,
        config: TranslatorConfig,
        registry: TaskRegistry,
        store: CheckpointStore,
        scheduler: BatchPipelineScheduler,
        renderer: Renderer,
        assembler: Assembler,
        client: StageClient | None = None,
    ):
        self.config = config
        self.registry = registry
        self.store = store
        self.scheduler = scheduler
        self.renderer = renderer
        self.assembler = assembler
        self.client = client
        self._attempts: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_config(
        cls,
        config: TranslatorConfig,
        client: StageClient | None = None,
        renderer: Renderer | None = None,
        assembler: Assembler | None = None,
    ) -> TaskController:
        """Build a controller and its collaborators from configuration."""
        registry = TaskRegistry(max_concurrent=config.max_concurrent_tasks, log_limit=config.log_limit)
        store = CheckpointStore(config.checkpoint_dir)
        client = client or AsyncOpenAIClient.from_config(config)
        scheduler = BatchPipelineScheduler.from_config(config, registry, store, client)
        renderer = renderer or PopplerRenderer(
            dpi=config.render_dpi,
            scale_to=config.render_scale_to,
            jpeg_quality=config.render_jpeg_quality,
        )
        assembler = assembler or PdfAssembler()
        return cls(config, registry, store, scheduler, renderer, assembler, client=client)

    # ==================== Submission ====================

    def validate_input(self, data: bytes) -> None:
        """Reject empty, oversized and non-PDF payloads.

        Raises:
            InputInvalidError: With a readable reason
        """
        if not data:
            raise InputInvalidError("Empty upload")
        if len(data) > self.config.max_file_size:
            limit_mb = self.config.max_file_size / (1024 * 1024)
            raise InputInvalidError(f"File too large: {len(data)} bytes (limit {limit_mb:.0f} MB)")
        if not data.startswith(PDF_MAGIC):
            raise InputInvalidError("Invalid file format: not a PDF")

    async def submit(self, data: bytes, filename: str, task_id: str | None = None) -> str:
        """Validate, admit and start a task.

        Args:
            data: Uploaded PDF bytes
            filename: Display name of the task
            task_id: Reuse an id (and its checkpoints) from an earlier run

        Returns:
            The task id

        Raises:
            InputInvalidError: If the payload is rejected
            AdmissionRejectedError: If the concurrent task ceiling is reached
            FileSaveError: If the original input cannot be persisted
        """
        self.validate_input(data)
        if task_id is not None:
            try:
                self.store.task_dir(task_id)
            except ValueError as e:
                raise InputInvalidError(str(e)) from e
            if self.registry.exists(task_id):
                raise InputInvalidError(f"Task id already in use: {task_id}")

        slot = self.registry.acquire_slot()
        created: str | None = None
        try:
            created = self.registry.create_task(filename or "document.pdf", task_id=task_id)
            resume = task_id is not None and self.store.completed_page_count(created) > 0
            self.store.save_original_input(created, data)
        except BaseException as e:
            slot.release()
            if created is not None:
                self.registry.set_error(created, str(e))
            raise

        self._spawn(created, self._run_attempt(slot, created, data, resume=resume))
        return created

    async def retry(self, task_id: str) -> None:
        """Resume an errored task from its checkpoints.

        Pre-checks run in order and nothing is mutated when one fails.

        Raises:
            TaskNotFoundError: If the task is unknown
            RetryRejectedError: If the task is not in a retryable state
            TaskExpiredError: If the original input is no longer stored
            AdmissionRejectedError: If the concurrent task ceiling is reached
        """
        self.registry.check_retry(task_id)
        data = self.store.load_original_input(task_id)
        if data is None:
            raise TaskExpiredError(f"Task {task_id} has expired: original input is no longer available")

        slot = self.registry.acquire_slot()
        try:
            self.registry.try_begin_retry(task_id)
        except BaseException:
            slot.release()
            raise

        self._spawn(task_id, self._run_attempt(slot, task_id, data, resume=True))

    def cancel(self, task_id: str) -> bool:
        """Cancel a task; False if it is unknown or already terminal."""
        return self.registry.cancel(task_id)

    # ==================== Attempt ====================

    def _spawn(self, task_id: str, coro: Coroutine[Any, Any, None]) -> None:
        attempt = asyncio.create_task(coro, name=f"task-{task_id}")
        self._attempts[task_id] = attempt

        def _forget(finished: asyncio.Task[None]) -> None:
            if self._attempts.get(task_id) is finished:
                del self._attempts[task_id]

        attempt.add_done_callback(_forget)

    async def _run_attempt(self, slot: AdmissionSlot, task_id: str, data: bytes, resume: bool) -> None:
        started = time.monotonic()
        with slot:
            try:
                await self._execute(task_id, data, resume)
            except TaskCancelledError:
                logger.info("[%s] Attempt stopped: task cancelled", task_id)
            except TranslatorError as e:
                self.registry.set_error(task_id, str(e))
            except asyncio.CancelledError:
                self.registry.set_error(task_id, "Task interrupted")
                raise
            except Exception as e:
                logger.exception("[%s] Unexpected error during task attempt", task_id)
                self.registry.set_error(task_id, f"Unexpected error: {type(e).__name__}: {e}")
            finally:
                self.registry.finish_retry(task_id)
                logger.info("[%s] Attempt finished in %.1fs", task_id, time.monotonic() - started)

    async def _execute(self, task_id: str, data: bytes, resume: bool) -> None:
        pages = await asyncio.to_thread(self.renderer.render, data)
        self._check_cancelled(task_id)
        if not pages:
            raise RenderError("PDF has no pages")
        total = len(pages)
        self.registry.add_log(task_id, f"Rendered {total} page(s)")

        done_pages: set[int] = set()
        if resume:
            done_pages = {p.page_num for p in pages if self.store.has_page_stage(task_id, p.page_num, Stage.TRANSLATION)}
        self.registry.set_processing(task_id, total, done_pages)

        pending = [p for p in pages if p.page_num not in done_pages]
        if resume:
            self.registry.add_log(
                task_id,
                f"Resuming: {self.store.completed_page_count(task_id)} of {total} page(s) already translated, "
                f"{len(pending)} to process",
            )

        fresh = await self.scheduler.run(task_id, pending, reuse_recognition=resume)
        self._check_cancelled(task_id)

        stored = self.store.load_translated_pages(task_id, total)
        texts: list[str] = []
        for page_num in range(1, total + 1):
            text = fresh.get(page_num, stored.get(page_num))
            if text is None:
                raise AssemblyError(f"Missing translation for page {page_num}")
            texts.append(text)

        self.registry.set_generating(task_id)
        output = await asyncio.to_thread(self.assembler.generate, texts)
        self._check_cancelled(task_id)
        self.registry.set_complete(task_id, output)

    def _check_cancelled(self, task_id: str) -> None:
        if self.registry.is_cancelled(task_id):
            raise TaskCancelledError()

    # ==================== Queries ====================

    def get_progress(self, task_id: str) -> TaskProgress | None:
        return self.registry.snapshot_progress(task_id)

    def list_tasks(self) -> list[TaskSummary]:
        return self.registry.list_tasks()

    def get_result(self, task_id: str) -> bytes | None:
        """Output PDF of a Complete task, otherwise None."""
        return self.registry.get_artifact(task_id)

    def get_page_detail(self, task_id: str, page_num: int) -> PageDetail | None:
        """Checkpointed texts of one page of a known task."""
        progress = self.registry.snapshot_progress(task_id)
        if progress is None or not 1 <= page_num <= progress.total_pages:
            return None
        return self.store.load_page_detail(task_id, page_num)

    async def poll_progress(self, task_id: str, interval: float | None = None) -> AsyncIterator[TaskProgress | None]:
        """Yield snapshots until the task is terminal.

        A None snapshot means the task is unknown and ends the stream.
        """
        interval = self.config.poll_interval if interval is None else interval
        while True:
            snapshot = self.registry.snapshot_progress(task_id)
            yield snapshot
            if snapshot is None or snapshot.is_done:
                return
            await asyncio.sleep(interval)

    # ==================== Housekeeping ====================

    def reclaim_expired(self, now: float | None = None) -> list[str]:
        """Forget expired terminal tasks and delete their checkpoints.

        Checkpoint directories that no registered task owns (left over by an
        earlier process) are removed once they are older than the retention
        window.

        Returns:
            Ids of the removed tasks
        """
        now = time.time() if now is None else now
        retention = self.config.retention_seconds
        removed = self.registry.reclaim_expired(retention, now=datetime.fromtimestamp(now, tz=get_default_timezone()))
        for task_id in removed:
            self.store.remove_task(task_id)

        for task_id in self.store.task_ids():
            if self.registry.exists(task_id) or task_id in self._attempts:
                continue
            modified = self.store.last_modified(task_id)
            if modified is not None and now - modified > retention:
                self.store.remove_task(task_id)
                removed.append(task_id)
        return removed

    async def reclaim_loop(self) -> None:
        """Run :meth:`reclaim_expired` every ``reclaim_interval`` seconds."""
        while True:
            await asyncio.sleep(self.config.reclaim_interval)
            try:
                removed = self.reclaim_expired()
            except OSError as e:
                logger.error("Reclamation sweep failed: %s", e)
                continue
            if removed:
                logger.info("Reclamation sweep removed %d task(s)", len(removed))

    async def wait(self, task_id: str) -> None:
        """Wait for the running attempt of a task, if any."""
        attempt = self._attempts.get(task_id)
        if attempt is not None:
            await asyncio.gather(attempt, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for every running attempt."""
        while True:
            running = [attempt for attempt in self._attempts.values() if not attempt.done()]
            if not running:
                return
            await asyncio.gather(*running, return_exceptions=True)

    async def aclose(self) -> None:
        """Stop running attempts and close the external client."""
        attempts = list(self._attempts.values())
        for attempt in attempts:
            attempt.cancel()
        await asyncio.gather(*attempts, return_exceptions=True)
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
