"""Shared types and collaborator interfaces.

The lifecycle controller and the batch scheduler only talk to the outside world
through the protocols defined here, which keeps them testable with stubs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class Stage(str, Enum):
    """Checkpointed per-page stages."""

    RECOGNITION = "recognition"
    TRANSLATION = "translation"


@dataclass(frozen=True)
class PageImage:
    """One rendered page.

    Attributes:
        page_num: Page number (1-indexed)
        image_bytes: Encoded page image (JPEG)
    """

    page_num: int
    image_bytes: bytes


@runtime_checkable
class Renderer(Protocol):
    """Rasterizes a PDF into ordered page images."""

    def render(self, data: bytes) -> list[PageImage]:
        """Render every page, ordered by page number.

        Raises:
            RenderError: If the document cannot be rasterized
        """
        ...


@runtime_checkable
class StageClient(Protocol):
    """Recognition and translation service."""

    @property
    def recognition_models(self) -> list[str]:
        """Models to try for recognition, primary first."""
        ...

    @property
    def translation_models(self) -> list[str]:
        """Models to try for translation, primary first."""
        ...

    async def recognize_text(self, image_bytes: bytes, model: str | None = None) -> str:
        """Return the text recognized on a page image.

        Raises:
            RetryableStageError: Transient failure
            PermanentStageError: Non-transient failure
        """
        ...

    async def translate_text(self, text: str, model: str | None = None) -> str:
        """Return ``text`` translated into the target language.

        Raises:
            RetryableStageError: Transient failure
            PermanentStageError: Non-transient failure
        """
        ...


@runtime_checkable
class Assembler(Protocol):
    """Serializes ordered page texts into an output document."""

    def generate(self, texts: list[str]) -> bytes:
        """Build the output document.

        Raises:
            AssemblyError: If the document cannot be generated
        """
        ...
