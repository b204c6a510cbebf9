"""Pytest configuration and shared fixtures for pdftrans tests.

This module provides:
- Stub collaborators (renderer, recognition/translation client, assembler)
- A registry that records every status transition
- Configuration, store and controller fixtures wired with the stubs
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# Register anyio pytest plugin for async test support
# This enables @pytest.mark.anyio decorator and anyio_backends config option
pytest_plugins = ("anyio",)

# Ensure project root is importable when running tests via uv or python -m pytest
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pdftrans.batch import BatchPipelineScheduler  # noqa: E402
from pdftrans.checkpoint import CheckpointStore  # noqa: E402
from pdftrans.config import TranslatorConfig  # noqa: E402
from pdftrans.controller import TaskController  # noqa: E402
from pdftrans.retry import RetryPolicy  # noqa: E402
from pdftrans.tasks import TaskRegistry  # noqa: E402
from pdftrans.types import PageImage  # noqa: E402

SAMPLE_PDF = b"%PDF-1.4\n% test document\n"


def page_of(image_bytes: bytes) -> int:
    """Page number encoded in a stub page image (b"image-<n>")."""
    return int(image_bytes.decode().split("-")[1])


def recognized_text(page_num: int) -> str:
    return f"Page {page_num} text"


# ==================== Stub Collaborators ====================


class StubRenderer:
    """Renders ``page_count`` fake pages, or raises ``error``."""

    def __init__(self, page_count: int = 5, error: Exception | None = None):
        self.page_count = page_count
        self.error = error
        self.calls = 0

    def render(self, data: bytes) -> list[PageImage]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [PageImage(page_num=n, image_bytes=f"image-{n}".encode()) for n in range(1, self.page_count + 1)]


class StubStageClient:
    """Deterministic recognition/translation service.

    Attributes:
        recognize_failures: page -> exception raised on every recognition call,
            or a list consumed one call at a time
        translate_failures: same for translation calls
        recognize_texts: page -> recognized text override
        delays: page -> seconds to sleep inside each call
        gate: when set, every call waits for the event first
        events: ("recognize-start" | "recognize-end" | "translate-start" | "translate-end", page)
    """

    def __init__(self, recognition_models: list[str] | None = None, translation_models: list[str] | None = None):
        self.recognition_models = recognition_models or ["ocr-model"]
        self.translation_models = translation_models or ["translate-model"]
        self.recognize_failures: dict[int, Any] = {}
        self.translate_failures: dict[int, Any] = {}
        self.recognize_texts: dict[int, str] = {}
        self.delays: dict[int, float] = {}
        self.gate: asyncio.Event | None = None
        self.on_recognize: Any = None
        self.recognize_calls: list[tuple[int, str | None]] = []
        self.translate_calls: list[tuple[int, str | None]] = []
        self.events: list[tuple[str, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self, kind: str, page: int) -> None:
        self.events.append((f"{kind}-start", page))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(self.delays.get(page, 0))

    @staticmethod
    def _next_failure(failures: dict[int, Any], page: int) -> Exception | None:
        failure = failures.get(page)
        if isinstance(failure, list):
            return failure.pop(0) if failure else None
        return failure

    def _exit(self, kind: str, page: int) -> None:
        self.in_flight -= 1
        self.events.append((f"{kind}-end", page))

    async def recognize_text(self, image_bytes: bytes, model: str | None = None) -> str:
        page = page_of(image_bytes)
        self.recognize_calls.append((page, model))
        if self.on_recognize is not None:
            self.on_recognize(page)
        await self._enter("recognize", page)
        try:
            failure = self._next_failure(self.recognize_failures, page)
            if failure is not None:
                raise failure
            return self.recognize_texts.get(page, recognized_text(page))
        finally:
            self._exit("recognize", page)

    async def translate_text(self, text: str, model: str | None = None) -> str:
        page = int(text.split()[1]) if text.startswith("Page ") else 0
        self.translate_calls.append((page, model))
        await self._enter("translate", page)
        try:
            failure = self._next_failure(self.translate_failures, page)
            if failure is not None:
                raise failure
            return f"[zh] {text}"
        finally:
            self._exit("translate", page)


class StubAssembler:
    """Joins page texts; records every call."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[list[str]] = []

    def generate(self, texts: list[str]) -> bytes:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return "\n\n".join(texts).encode("utf-8")


class RecordingRegistry(TaskRegistry):
    """TaskRegistry that records (status, percentage) after every mutation."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.history: dict[str, list[tuple[str, float]]] = {}

    def _record(self, task_id: str) -> None:
        snapshot = self.snapshot_progress(task_id)
        if snapshot is not None:
            self.history.setdefault(task_id, []).append((snapshot.status.value, snapshot.percentage))

    def create_task(self, name: str, task_id: str | None = None) -> str:
        created = super().create_task(name, task_id=task_id)
        self._record(created)
        return created

    def set_processing(self, task_id: str, *args: Any, **kwargs: Any) -> None:
        super().set_processing(task_id, *args, **kwargs)
        self._record(task_id)

    def finish_page_stage(self, task_id: str, *args: Any, **kwargs: Any) -> None:
        super().finish_page_stage(task_id, *args, **kwargs)
        self._record(task_id)

    def set_generating(self, task_id: str) -> None:
        super().set_generating(task_id)
        self._record(task_id)

    def set_complete(self, task_id: str, artifact: bytes) -> None:
        super().set_complete(task_id, artifact)
        self._record(task_id)

    def set_error(self, task_id: str, message: str) -> None:
        super().set_error(task_id, message)
        self._record(task_id)


class RecordingSleep:
    """Awaitable sleep replacement that only records delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ==================== Fixtures ====================


@pytest.fixture
def anyio_backend() -> str:
    """Force anyio to use asyncio backend only (trio not installed)."""
    return "asyncio"


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without real delays."""
    return RetryPolicy(max_retries=2, base_delays=(0.0,), min_delay=0.0)


@pytest.fixture
def config(tmp_path: Path) -> TranslatorConfig:
    return TranslatorConfig(
        base_url="http://llm.test",
        api_key="test-key",
        checkpoint_dir=tmp_path / "checkpoints",
        max_concurrent_tasks=2,
        batch_size=3,
        poll_interval=0.01,
    )


@pytest.fixture
def store(config: TranslatorConfig) -> CheckpointStore:
    return CheckpointStore(config.checkpoint_dir)


@pytest.fixture
def registry(config: TranslatorConfig) -> RecordingRegistry:
    return RecordingRegistry(max_concurrent=config.max_concurrent_tasks, log_limit=config.log_limit)


@pytest.fixture
def stage_client() -> StubStageClient:
    return StubStageClient()


@pytest.fixture
def renderer() -> StubRenderer:
    return StubRenderer(page_count=5)


@pytest.fixture
def assembler() -> StubAssembler:
    return StubAssembler()


@pytest.fixture
def scheduler(
    registry: RecordingRegistry,
    store: CheckpointStore,
    stage_client: StubStageClient,
    fast_policy: RetryPolicy,
) -> BatchPipelineScheduler:
    return BatchPipelineScheduler(registry, store, stage_client, batch_size=3, retry_policy=fast_policy)


@pytest.fixture
def controller(
    config: TranslatorConfig,
    registry: RecordingRegistry,
    store: CheckpointStore,
    scheduler: BatchPipelineScheduler,
    renderer: StubRenderer,
    assembler: StubAssembler,
    stage_client: StubStageClient,
) -> TaskController:
    return TaskController(config, registry, store, scheduler, renderer, assembler, client=stage_client)


@pytest.fixture
def sample_pdf() -> bytes:
    return SAMPLE_PDF


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (real collaborators)")
