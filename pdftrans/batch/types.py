"""Data types for batched page processing."""

from __future__ import annotations

from dataclasses import dataclass

from ..types import PageImage


@dataclass
class PageWork:
    """A page moving through the recognition and translation phases.

    Attributes:
        page_num: Page number (1-indexed)
        image_bytes: Rendered page image (JPEG)
        recognized_text: Populated by the recognition phase
        translated_text: Populated by the translation phase
        status: "pending", "completed" or "failed"
        error: Error message if status == "failed"
    """

    page_num: int
    image_bytes: bytes
    recognized_text: str | None = None
    translated_text: str | None = None
    status: str = "pending"
    error: str | None = None

    @classmethod
    def from_image(cls, image: PageImage) -> PageWork:
        return cls(page_num=image.page_num, image_bytes=image.image_bytes)

    def mark_completed(self) -> None:
        self.status = "completed"
        self.error = None

    def mark_failed(self, error: str) -> None:
        self.status = "failed"
        self.error = error


def split_batches(pages: list[PageWork], batch_size: int) -> list[list[PageWork]]:
    """Split pages into contiguous batches, preserving page order.

    Example:
        >>> [len(b) for b in split_batches(pages_1_to_7, 3)]
        [3, 3, 1]
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    ordered = sorted(pages, key=lambda p: p.page_num)
    return [ordered[i : i + batch_size] for i in range(0, len(ordered), batch_size)]
