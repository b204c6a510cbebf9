"""Batched two-phase page scheduler."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..constants import DEFAULT_BATCH_SIZE, DEFAULT_PREVIEW_CHARS, DEFAULT_TARGET_LANGUAGE, TRANSLATION_SKIP_RATIO
from ..exceptions import PageProcessingError, StageCallError, TaskCancelledError
from ..misc import make_preview, needs_translation
from ..retry import RetryPolicy, call_with_retry
from ..types import PageImage, Stage
from .types import PageWork, split_batches

if TYPE_CHECKING:
    from ..checkpoint import CheckpointStore
    from ..tasks import TaskRegistry
    from ..types import StageClient

logger = logging.getLogger(__name__)


class BatchPipelineScheduler:
    """Drives a task's pages through recognition and translation in batches.

    Architecture:
        Batch 1: [recognize p1, p2, p3 concurrently] -> [translate p1, p2, p3 concurrently]
        Batch 2: [recognize p4, p5, p6 concurrently] -> [translate p4, p5, p6 concurrently]
        ...

    A batch's translation phase starts only after its recognition phase has fully
    succeeded, and the next batch starts only after both phases succeeded. The
    first page failure or an observed cancellation stops the run; pages already
    checkpointed stay on disk so a retry only processes what is left.

    Example:
        >>> scheduler = BatchPipelineScheduler(registry, store, client, batch_size=3)
        >>> texts = await scheduler.run(task_id, pages)
        >>> [texts[n] for n in sorted(texts)]
    """

    def __init__(
        self,
        registry: TaskRegistry,
        store: CheckpointStore,
        client: StageClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
        translation_skip_ratio: float = TRANSLATION_SKIP_RATIO,
        target_language: str = DEFAULT_TARGET_LANGUAGE,
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.registry = registry
        self.store = store
        self.client = client
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.translation_skip_ratio = translation_skip_ratio
        self.target_language = target_language
        self.preview_chars = preview_chars
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: Any, registry: TaskRegistry, store: CheckpointStore, client: StageClient
    ) -> BatchPipelineScheduler:
        return cls(
            registry,
            store,
            client,
            batch_size=config.batch_size,
            retry_policy=config.retry_policy,
            translation_skip_ratio=config.translation_skip_ratio,
            target_language=config.target_language,
            preview_chars=config.preview_chars,
        )

    async def run(self, task_id: str, pages: list[PageImage], reuse_recognition: bool = False) -> dict[int, str]:
        """Process pending pages batch by batch.

        Args:
            task_id: Task identifier
            pages: Pages to process (any order; processed in page-number order)
            reuse_recognition: Use an existing recognition checkpoint instead of
                calling the recognition service again (retry path)

        Returns:
            Translated text per page number, in ascending page order

        Raises:
            TaskCancelledError: If the task was cancelled
            PageProcessingError: On the first page failure
        """
        work = [PageWork.from_image(page) for page in pages]
        batches = split_batches(work, self.batch_size)
        logger.info("[%s] Scheduling %d page(s) in %d batch(es)", task_id, len(work), len(batches))

        for index, batch in enumerate(batches, start=1):
            self._check_cancelled(task_id)
            page_list = ", ".join(str(p.page_num) for p in batch)
            self.registry.add_log(task_id, f"Batch {index}/{len(batches)}: recognizing pages {page_list}")
            await self._run_phase(task_id, batch, lambda p: self._recognize_page(task_id, p, reuse_recognition))

            self.registry.add_log(task_id, f"Batch {index}/{len(batches)}: translating pages {page_list}")
            await self._run_phase(task_id, batch, lambda p: self._translate_page(task_id, p))

        return {
            p.page_num: p.translated_text or ""
            for p in sorted(work, key=lambda p: p.page_num)
            if p.status == "completed"
        }

    async def _run_phase(
        self,
        task_id: str,
        batch: list[PageWork],
        worker: Callable[[PageWork], Awaitable[None]],
    ) -> None:
        """Run one unit per page concurrently and join them.

        Units are started in page order. After every completion the cancellation
        flag and the finished units are checked; on cancellation or failure the
        still-running units are cancelled before the error propagates.
        """
        tasks = {
            asyncio.create_task(worker(page), name=f"{task_id}-p{page.page_num}"): page
            for page in batch
        }
        pending: set[asyncio.Task[None]] = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # Retrieve every exception so none is reported as never retrieved
                outcomes = [t.exception() for t in sorted(done, key=lambda t: tasks[t].page_num)]
                errors = [error for error in outcomes if error is not None]
                self._check_cancelled(task_id)
                if errors:
                    raise errors[0]
        finally:
            if pending:
                for unfinished in pending:
                    unfinished.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                unfinished_pages = sorted(tasks[t].page_num for t in pending)
                failed_pages = {page.page_num: page.error for page in batch if page.status == "failed"}
                logger.debug(
                    "[%s] Aborted unfinished page unit(s) %s; failed pages: %s",
                    task_id,
                    unfinished_pages,
                    failed_pages,
                )

    async def _recognize_page(self, task_id: str, page: PageWork, reuse_recognition: bool) -> None:
        self._check_cancelled(task_id)
        started = time.monotonic()

        if reuse_recognition:
            cached = self.store.load_page_stage(task_id, page.page_num, Stage.RECOGNITION)
            if cached is not None:
                page.recognized_text = cached
                self.registry.begin_page_stage(task_id, page.page_num, Stage.RECOGNITION)
                self.registry.finish_page_stage(
                    task_id, page.page_num, Stage.RECOGNITION, len(cached), make_preview(cached, self.preview_chars)
                )
                self.registry.add_log(task_id, f"Page {page.page_num} recognition loaded from checkpoint")
                return

        self.registry.begin_page_stage(task_id, page.page_num, Stage.RECOGNITION)
        text = await self._call_stage(
            task_id,
            page,
            Stage.RECOGNITION,
            self.client.recognition_models,
            lambda model: self.client.recognize_text(page.image_bytes, model),
        )

        page.recognized_text = text
        self.store.save_page_stage(task_id, page.page_num, Stage.RECOGNITION, text)
        self.registry.finish_page_stage(
            task_id, page.page_num, Stage.RECOGNITION, len(text), make_preview(text, self.preview_chars)
        )
        self.registry.add_log(
            task_id,
            f"Page {page.page_num} recognized ({len(text)} chars, {time.monotonic() - started:.1f}s)",
        )

    async def _translate_page(self, task_id: str, page: PageWork) -> None:
        self._check_cancelled(task_id)
        started = time.monotonic()
        source = page.recognized_text or ""

        self.registry.begin_page_stage(task_id, page.page_num, Stage.TRANSLATION)
        if needs_translation(source, self.translation_skip_ratio, self.target_language):
            text = await self._call_stage(
                task_id,
                page,
                Stage.TRANSLATION,
                self.client.translation_models,
                lambda model: self.client.translate_text(source, model),
            )
            detail = f"translated ({len(text)} chars, {time.monotonic() - started:.1f}s)"
        else:
            text = source if source.strip() else ""
            detail = "already in target language, translation skipped" if text else "is empty, nothing to translate"

        page.translated_text = text
        page.mark_completed()
        self.store.save_page_stage(task_id, page.page_num, Stage.TRANSLATION, text)
        self.registry.finish_page_stage(
            task_id, page.page_num, Stage.TRANSLATION, len(text), make_preview(text, self.preview_chars)
        )
        self.registry.add_log(task_id, f"Page {page.page_num} {detail}")

    async def _call_stage(
        self,
        task_id: str,
        page: PageWork,
        stage: Stage,
        models: list[str],
        call: Callable[[str | None], Awaitable[str]],
    ) -> str:
        """Call a stage through the retry layer, then through the fallback model.

        Raises:
            TaskCancelledError: If the task was cancelled between attempts
            PageProcessingError: When every model failed
        """
        label = f"{task_id}-p{page.page_num}-{stage.value}"
        last_error: StageCallError | None = None

        for index, model in enumerate(models or [None]):
            if index > 0:
                self._check_cancelled(task_id)
                self.registry.add_log(task_id, f"Page {page.page_num} {stage.value}: falling back to {model}")
            try:
                return await call_with_retry(
                    lambda: call(model),
                    policy=self.retry_policy,
                    label=label,
                    should_abort=lambda: self.registry.is_cancelled(task_id),
                    sleep=self._sleep,
                )
            except StageCallError as e:
                last_error = e
                logger.warning("[%s] %s failed with model %s: %s", task_id, stage.value, model, e)

        assert last_error is not None
        page.mark_failed(str(last_error))
        self.registry.set_page_error(task_id, page.page_num, str(last_error))
        raise PageProcessingError(page.page_num, stage.value, str(last_error)) from last_error

    def _check_cancelled(self, task_id: str) -> None:
        if self.registry.is_cancelled(task_id):
            raise TaskCancelledError()
