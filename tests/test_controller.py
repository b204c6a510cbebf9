"""Lifecycle tests for the task controller with stub collaborators."""

from __future__ import annotations

import asyncio
import time

import pytest

from pdftrans.exceptions import (
    AdmissionRejectedError,
    InputInvalidError,
    PermanentStageError,
    RenderError,
    RetryRejectedError,
    TaskExpiredError,
    TaskNotFoundError,
)
from pdftrans.tasks import TaskStatus
from pdftrans.types import Stage

EXPECTED_OUTPUT = "\n\n".join(f"[zh] Page {n} text" for n in range(1, 6)).encode()


def _statuses(history: list[tuple[str, float]]) -> list[str]:
    collapsed: list[str] = []
    for status, _ in history:
        if not collapsed or collapsed[-1] != status:
            collapsed.append(status)
    return collapsed


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestSubmission:
    @pytest.mark.anyio
    async def test_five_page_document_end_to_end(self, controller, registry, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        history = registry.history[task_id]
        assert _statuses(history) == ["Rendering", "Processing", "Generating", "Complete"]
        percentages = [percentage for _, percentage in history]
        assert percentages == sorted(percentages)
        assert percentages[-1] == 100.0
        assert controller.get_result(task_id) == EXPECTED_OUTPUT
        assert registry.active_count == 0

    @pytest.mark.anyio
    async def test_snapshot_after_completion(self, controller, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        snapshot = controller.get_progress(task_id)
        assert snapshot.status == TaskStatus.COMPLETE
        assert snapshot.total_pages == 5
        assert snapshot.translated_pages == 5
        assert snapshot.name == "paper.pdf"
        assert any(entry.message == "Rendered 5 page(s)" for entry in snapshot.logs)
        assert [summary.task_id for summary in controller.list_tasks()] == [task_id]

    @pytest.mark.anyio
    async def test_input_is_persisted(self, controller, store, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        assert store.load_original_input(task_id) == sample_pdf

    @pytest.mark.anyio
    @pytest.mark.parametrize(
        ("payload", "reason"),
        [
            (b"", "Empty upload"),
            (b"hello world", "not a PDF"),
        ],
    )
    async def test_invalid_input_is_rejected_without_consuming_a_slot(self, controller, registry, payload, reason):
        with pytest.raises(InputInvalidError, match=reason):
            await controller.submit(payload, "bad.pdf")

        assert registry.active_count == 0
        assert controller.list_tasks() == []

    @pytest.mark.anyio
    async def test_oversized_input_is_rejected(self, controller, sample_pdf):
        controller.config.max_file_size = 10

        with pytest.raises(InputInvalidError, match="File too large"):
            await controller.submit(sample_pdf, "big.pdf")

    @pytest.mark.anyio
    async def test_admission_ceiling(self, controller, registry, stage_client, sample_pdf):
        stage_client.gate = asyncio.Event()
        first = await controller.submit(sample_pdf, "a.pdf")
        second = await controller.submit(sample_pdf, "b.pdf")

        with pytest.raises(AdmissionRejectedError):
            await controller.submit(sample_pdf, "c.pdf")

        assert registry.active_count == 2
        assert len(controller.list_tasks()) == 2

        stage_client.gate.set()
        await controller.drain()

        assert registry.get_status(first) == TaskStatus.COMPLETE
        assert registry.get_status(second) == TaskStatus.COMPLETE
        assert registry.active_count == 0

        third = await controller.submit(sample_pdf, "c.pdf")
        await controller.wait(third)
        assert registry.get_status(third) == TaskStatus.COMPLETE

    @pytest.mark.anyio
    async def test_task_id_in_use_is_rejected(self, controller, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        with pytest.raises(InputInvalidError, match="already in use"):
            await controller.submit(sample_pdf, "paper.pdf", task_id=task_id)

    @pytest.mark.anyio
    async def test_unsafe_task_id_is_rejected(self, controller, registry, sample_pdf):
        with pytest.raises(InputInvalidError, match="Invalid task id"):
            await controller.submit(sample_pdf, "paper.pdf", task_id="../outside")

        assert registry.active_count == 0


class TestFailures:
    @pytest.mark.anyio
    async def test_page_failure_then_retry(self, controller, registry, store, stage_client, sample_pdf):
        stage_client.translate_failures = {3: PermanentStageError("API error (HTTP 400): bad request")}

        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        snapshot = controller.get_progress(task_id)
        assert snapshot.status == TaskStatus.ERROR
        assert snapshot.message == "Page 3 translation failed: API error (HTTP 400): bad request"
        assert controller.get_result(task_id) is None
        assert registry.active_count == 0
        assert store.completed_page_count(task_id) == 2
        assert store.has_page_stage(task_id, 3, Stage.RECOGNITION)
        assert not store.has_page_stage(task_id, 3, Stage.TRANSLATION)
        assert not store.has_page_stage(task_id, 4, Stage.RECOGNITION)

        task_dir = store.task_dir(task_id)
        before = {n: (task_dir / f"stage2_translation_page{n}.txt").read_bytes() for n in (1, 2)}
        stage_client.translate_failures.clear()
        stage_client.recognize_calls.clear()
        stage_client.translate_calls.clear()

        await controller.retry(task_id)
        await controller.wait(task_id)

        assert registry.get_status(task_id) == TaskStatus.COMPLETE
        assert controller.get_result(task_id) == EXPECTED_OUTPUT
        assert sorted(page for page, _ in stage_client.recognize_calls) == [4, 5]
        assert sorted(page for page, _ in stage_client.translate_calls) == [3, 4, 5]
        after = {n: (task_dir / f"stage2_translation_page{n}.txt").read_bytes() for n in (1, 2)}
        assert after == before
        assert not controller.get_progress(task_id).retrying
        assert registry.active_count == 0

    @pytest.mark.anyio
    async def test_render_failure(self, controller, registry, renderer, sample_pdf):
        renderer.error = RenderError("Failed to render PDF: poppler (pdftoppm/pdfinfo) is not installed")

        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        snapshot = controller.get_progress(task_id)
        assert snapshot.status == TaskStatus.ERROR
        assert "poppler" in snapshot.message
        assert registry.active_count == 0

    @pytest.mark.anyio
    async def test_document_without_pages(self, controller, renderer, sample_pdf):
        renderer.page_count = 0

        task_id = await controller.submit(sample_pdf, "empty.pdf")
        await controller.wait(task_id)

        assert controller.get_progress(task_id).message == "PDF has no pages"

    @pytest.mark.anyio
    async def test_unexpected_error_is_reported(self, controller, registry, assembler, sample_pdf):
        assembler.error = RuntimeError("boom")

        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        snapshot = controller.get_progress(task_id)
        assert snapshot.status == TaskStatus.ERROR
        assert snapshot.message == "Unexpected error: RuntimeError: boom"
        assert registry.active_count == 0


class TestCancelAndRetry:
    @pytest.mark.anyio
    async def test_cancel_running_task(self, controller, registry, stage_client, sample_pdf):
        stage_client.gate = asyncio.Event()
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await _wait_for(lambda: stage_client.recognize_calls)

        assert controller.cancel(task_id)
        stage_client.gate.set()
        await controller.wait(task_id)

        snapshot = controller.get_progress(task_id)
        assert snapshot.status == TaskStatus.ERROR
        assert snapshot.message == "Task cancelled"
        assert stage_client.translate_calls == []
        assert controller.get_result(task_id) is None
        assert not controller.cancel(task_id)
        assert registry.active_count == 0

    @pytest.mark.anyio
    async def test_cancelled_task_cannot_be_retried(self, controller, registry, stage_client, sample_pdf):
        stage_client.gate = asyncio.Event()
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        controller.cancel(task_id)
        stage_client.gate.set()
        await controller.wait(task_id)

        with pytest.raises(RetryRejectedError, match="cancelled"):
            await controller.retry(task_id)

        assert registry.active_count == 0

    @pytest.mark.anyio
    async def test_cancel_unknown_or_finished_task(self, controller, sample_pdf):
        assert not controller.cancel("missing")

        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        assert not controller.cancel(task_id)
        assert controller.get_progress(task_id).status == TaskStatus.COMPLETE

    @pytest.mark.anyio
    async def test_retry_unknown_task(self, controller):
        with pytest.raises(TaskNotFoundError):
            await controller.retry("missing")

    @pytest.mark.anyio
    async def test_retry_of_complete_task_releases_slot(self, controller, registry, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        with pytest.raises(RetryRejectedError, match="not in an error state"):
            await controller.retry(task_id)

        assert registry.active_count == 0
        assert registry.get_status(task_id) == TaskStatus.COMPLETE

    @pytest.mark.anyio
    async def test_retry_without_stored_input(self, controller, registry, store, renderer, sample_pdf):
        renderer.error = RenderError("Failed to render PDF: broken")
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)
        store.remove_task(task_id)

        with pytest.raises(TaskExpiredError):
            await controller.retry(task_id)

        assert registry.active_count == 0
        assert registry.get_status(task_id) == TaskStatus.ERROR

    @pytest.mark.anyio
    async def test_retry_when_service_is_busy(self, controller, registry, renderer, sample_pdf):
        renderer.error = RenderError("Failed to render PDF: broken")
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)
        held = [registry.acquire_slot(), registry.acquire_slot()]

        with pytest.raises(AdmissionRejectedError):
            await controller.retry(task_id)

        assert registry.get_status(task_id) == TaskStatus.ERROR
        for slot in held:
            slot.release()


    @pytest.mark.anyio
    async def test_retry_of_running_task_is_rejected_before_admission(
        self, controller, registry, stage_client, sample_pdf
    ):
        stage_client.gate = asyncio.Event()
        first = await controller.submit(sample_pdf, "a.pdf")
        await controller.submit(sample_pdf, "b.pdf")

        with pytest.raises(RetryRejectedError, match="not in an error state"):
            await controller.retry(first)

        assert registry.active_count == 2
        stage_client.gate.set()
        await controller.drain()
        assert registry.get_status(first) == TaskStatus.COMPLETE


class TestResume:
    @pytest.mark.anyio
    async def test_resume_with_task_id_after_restart(
        self, config, controller, store, stage_client, renderer, assembler, fast_policy, sample_pdf
    ):
        from pdftrans.batch import BatchPipelineScheduler
        from pdftrans.controller import TaskController
        from pdftrans.tasks import TaskRegistry

        stage_client.translate_failures = {3: PermanentStageError("API error (HTTP 400): bad request")}
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)
        assert store.completed_page_count(task_id) == 2

        # A new process: fresh registry, same checkpoint directory
        stage_client.translate_failures.clear()
        stage_client.recognize_calls.clear()
        registry = TaskRegistry(max_concurrent=2)
        scheduler = BatchPipelineScheduler(registry, store, stage_client, batch_size=3, retry_policy=fast_policy)
        restarted = TaskController(config, registry, store, scheduler, renderer, assembler, client=stage_client)

        resumed = await restarted.submit(sample_pdf, "paper.pdf", task_id=task_id)
        await restarted.wait(resumed)

        assert resumed == task_id
        assert restarted.get_result(task_id) == EXPECTED_OUTPUT
        assert sorted(page for page, _ in stage_client.recognize_calls) == [4, 5]
        messages = [entry.message for entry in restarted.get_progress(task_id).logs]
        assert any(message.startswith("Resuming: 2 of 5") for message in messages)


class TestQueries:
    @pytest.mark.anyio
    async def test_poll_progress_until_terminal(self, controller, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")

        snapshots = [snapshot async for snapshot in controller.poll_progress(task_id, interval=0.001)]

        assert snapshots[-1].status == TaskStatus.COMPLETE
        assert all(snapshot is not None for snapshot in snapshots)
        percentages = [snapshot.percentage for snapshot in snapshots]
        assert percentages == sorted(percentages)

    @pytest.mark.anyio
    async def test_poll_unknown_task(self, controller):
        snapshots = [snapshot async for snapshot in controller.poll_progress("missing")]

        assert snapshots == [None]

    @pytest.mark.anyio
    async def test_page_detail(self, controller, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)

        detail = controller.get_page_detail(task_id, 2)

        assert detail.recognized_text == "Page 2 text"
        assert detail.translated_text == "[zh] Page 2 text"
        assert controller.get_page_detail(task_id, 6) is None
        assert controller.get_page_detail(task_id, 0) is None
        assert controller.get_page_detail("missing", 1) is None

    @pytest.mark.anyio
    async def test_reclaim_expired_tasks_and_orphans(self, controller, registry, store, sample_pdf):
        task_id = await controller.submit(sample_pdf, "paper.pdf")
        await controller.wait(task_id)
        store.save_page_stage("orphan", 1, Stage.RECOGNITION, "left behind")

        assert controller.reclaim_expired() == []

        later = time.time() + controller.config.retention_seconds + 60
        removed = controller.reclaim_expired(now=later)

        assert sorted(removed) == sorted([task_id, "orphan"])
        assert not registry.exists(task_id)
        assert store.task_ids() == []
        assert controller.get_result(task_id) is None

    @pytest.mark.anyio
    async def test_reclaim_keeps_running_tasks(self, controller, registry, stage_client, sample_pdf):
        stage_client.gate = asyncio.Event()
        task_id = await controller.submit(sample_pdf, "paper.pdf")

        later = time.time() + controller.config.retention_seconds + 60
        assert controller.reclaim_expired(now=later) == []
        assert registry.exists(task_id)

        stage_client.gate.set()
        await controller.wait(task_id)
