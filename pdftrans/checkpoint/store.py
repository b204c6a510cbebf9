"""File-backed checkpoint store.

Layout under the base directory::

    <base_dir>/<task_id>/input.pdf
    <base_dir>/<task_id>/stage1_recognition_page<N>.txt
    <base_dir>/<task_id>/stage2_translation_page<N>.txt

Every write goes to a temporary file in the same directory, is fsynced and then
renamed over the target, so a reader never observes a partially written file.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import FileSaveError
from ..types import Stage

logger = logging.getLogger(__name__)

INPUT_FILENAME = "input.pdf"

_STAGE_PREFIX = {
    Stage.RECOGNITION: "stage1_recognition",
    Stage.TRANSLATION: "stage2_translation",
}

_TRANSLATION_RE = re.compile(r"^stage2_translation_page(\d+)\.txt$")
_TASK_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class PageDetail:
    """Checkpointed texts of one page."""

    page_num: int
    recognized_text: str | None
    translated_text: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "page_num": self.page_num,
            "recognized_text": self.recognized_text,
            "translated_text": self.translated_text,
        }


def _atomic_write(target: Path, data: bytes) -> None:
    """Write ``data`` to ``target`` via temp file, fsync and rename."""
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp", delete=False)
    tmp_path = Path(tmp.name)
    try:
        with tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class CheckpointStore:
    """Durable per-page stage outputs and original inputs, keyed by task id.

    Example:
        >>> store = CheckpointStore(Path(".checkpoints"))
        >>> store.save_original_input("task-1", pdf_bytes)
        >>> store.save_page_stage("task-1", 1, Stage.RECOGNITION, "Hello")
        True
        >>> store.load_page_stage("task-1", 1, Stage.RECOGNITION)
        'Hello'
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def task_dir(self, task_id: str) -> Path:
        """Directory holding every file of a task.

        Raises:
            ValueError: If the id could escape the base directory
        """
        if not _TASK_ID_RE.match(task_id):
            raise ValueError(f"Invalid task id: {task_id!r}")
        return self.base_dir / task_id

    def _page_path(self, task_id: str, page_num: int, stage: Stage) -> Path:
        return self.task_dir(task_id) / f"{_STAGE_PREFIX[Stage(stage)]}_page{page_num}.txt"

    # ==================== Page stages ====================

    def save_page_stage(self, task_id: str, page_num: int, stage: Stage, text: str) -> bool:
        """Persist one page's stage output.

        Failures are logged and reported through the return value; they never
        interrupt the task that produced the text.

        Args:
            task_id: Task identifier
            page_num: Page number (1-indexed)
            stage: Stage that produced ``text``
            text: Stage output (may be empty)

        Returns:
            True if the checkpoint was written
        """
        path = self._page_path(task_id, page_num, stage)
        try:
            _atomic_write(path, text.encode("utf-8"))
        except OSError as e:
            logger.error("[%s] Failed to save %s checkpoint for page %d: %s", task_id, Stage(stage).value, page_num, e)
            return False
        logger.debug("[%s] Saved %s checkpoint for page %d", task_id, Stage(stage).value, page_num)
        return True

    def load_page_stage(self, task_id: str, page_num: int, stage: Stage) -> str | None:
        """Return the checkpointed text, or None if absent or unreadable."""
        path = self._page_path(task_id, page_num, stage)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("[%s] Failed to read checkpoint %s: %s", task_id, path.name, e)
            return None

    def has_page_stage(self, task_id: str, page_num: int, stage: Stage) -> bool:
        return self._page_path(task_id, page_num, stage).is_file()

    def completed_page_count(self, task_id: str) -> int:
        """Number of pages with a translation checkpoint."""
        task_dir = self.task_dir(task_id)
        if not task_dir.is_dir():
            return 0
        return sum(1 for entry in task_dir.iterdir() if _TRANSLATION_RE.match(entry.name))

    def load_translated_pages(self, task_id: str, total_pages: int) -> dict[int, str]:
        """Return translated texts for pages 1..total_pages that have a checkpoint."""
        pages: dict[int, str] = {}
        for page_num in range(1, total_pages + 1):
            text = self.load_page_stage(task_id, page_num, Stage.TRANSLATION)
            if text is not None:
                pages[page_num] = text
        return pages

    def load_page_detail(self, task_id: str, page_num: int) -> PageDetail | None:
        """Return both checkpointed texts of a page, or None when neither exists."""
        recognized = self.load_page_stage(task_id, page_num, Stage.RECOGNITION)
        translated = self.load_page_stage(task_id, page_num, Stage.TRANSLATION)
        if recognized is None and translated is None:
            return None
        return PageDetail(page_num=page_num, recognized_text=recognized, translated_text=translated)

    # ==================== Original input ====================

    def save_original_input(self, task_id: str, data: bytes) -> None:
        """Persist the uploaded document so the task can be retried.

        Raises:
            FileSaveError: If the input cannot be written
        """
        path = self.task_dir(task_id) / INPUT_FILENAME
        try:
            _atomic_write(path, data)
        except OSError as e:
            raise FileSaveError(f"Failed to save input for task {task_id}: {e}") from e
        logger.info("[%s] Saved original input (%d bytes)", task_id, len(data))

    def load_original_input(self, task_id: str) -> bytes | None:
        path = self.task_dir(task_id) / INPUT_FILENAME
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("[%s] Failed to read original input: %s", task_id, e)
            return None

    # ==================== Housekeeping ====================

    def remove_task(self, task_id: str) -> None:
        """Delete every file stored for a task."""
        task_dir = self.task_dir(task_id)
        if not task_dir.exists():
            return
        try:
            shutil.rmtree(task_dir)
        except OSError as e:
            logger.warning("[%s] Failed to remove checkpoint directory: %s", task_id, e)
        else:
            logger.info("[%s] Removed checkpoint directory", task_id)

    def task_ids(self) -> list[str]:
        """Ids of every task with a checkpoint directory."""
        if not self.base_dir.is_dir():
            return []
        return sorted(
            entry.name for entry in self.base_dir.iterdir() if entry.is_dir() and _TASK_ID_RE.match(entry.name)
        )

    def last_modified(self, task_id: str) -> float | None:
        """Modification time (epoch seconds) of the task directory, or None if absent."""
        try:
            return self.task_dir(task_id).stat().st_mtime
        except FileNotFoundError:
            return None
