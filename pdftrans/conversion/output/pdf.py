"""Translated PDF generation with PyMuPDF.

Page texts are joined with blank lines, wrapped to a fixed A4 text width and
paginated. Wrapping counts ASCII characters as one width unit and everything
else (CJK) as two.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import fitz  # type: ignore[import-untyped]

from ...constants import CHAR_WIDTH_FACTOR, FONT_SIZE, LINE_HEIGHT, PAGE_HEIGHT, PAGE_MARGIN, PAGE_WIDTH
from ...exceptions import AssemblyError

logger = logging.getLogger(__name__)

CJK_FONT = "china-s"
"""PyMuPDF built-in font with Simplified Chinese glyphs."""


def char_width(char: str) -> int:
    return 1 if char.isascii() else 2


def wrap_text(text: str, max_units: int) -> list[str]:
    """Wrap text into lines of at most ``max_units`` width units.

    Existing line breaks are kept, and empty lines survive as empty strings.

    Example:
        >>> wrap_text("abcdef", 4)
        ['abcd', 'ef']
        >>> wrap_text("中文字", 4)
        ['中文', '字']
    """
    lines: list[str] = []
    for paragraph in text.split("\n"):
        if not paragraph:
            lines.append("")
            continue
        current: list[str] = []
        width = 0
        for char in paragraph:
            w = char_width(char)
            if current and width + w > max_units:
                lines.append("".join(current))
                current, width = [], 0
            current.append(char)
            width += w
        lines.append("".join(current))
    return lines


def paginate(lines: list[str], lines_per_page: int) -> list[list[str]]:
    """Split lines into pages; always returns at least one (possibly empty) page."""
    if lines_per_page < 1:
        raise ValueError(f"lines_per_page must be >= 1, got {lines_per_page}")
    pages = [lines[i : i + lines_per_page] for i in range(0, len(lines), lines_per_page)]
    return pages or [[]]


@contextmanager
def new_pdf_document() -> Iterator[Any]:
    """Context manager for an empty PyMuPDF document; closed on exit."""
    doc = fitz.open()
    try:
        yield doc
    finally:
        doc.close()


class PdfAssembler:
    """Builds the translated PDF from ordered page texts.

    Args:
        page_width: Page width in points
        page_height: Page height in points
        margin: Margin on every side in points
        font_size: Font size in points
        line_height: Baseline distance in points
        fontname: PyMuPDF font name
    """

    def __init__(
        self,
        page_width: float = PAGE_WIDTH,
        page_height: float = PAGE_HEIGHT,
        margin: float = PAGE_MARGIN,
        font_size: float = FONT_SIZE,
        line_height: float = LINE_HEIGHT,
        fontname: str = CJK_FONT,
    ):
        self.page_width = page_width
        self.page_height = page_height
        self.margin = margin
        self.font_size = font_size
        self.line_height = line_height
        self.fontname = fontname

    @property
    def max_units(self) -> int:
        usable_width = self.page_width - 2 * self.margin
        return max(1, int(usable_width / (self.font_size * CHAR_WIDTH_FACTOR)))

    @property
    def lines_per_page(self) -> int:
        usable_height = self.page_height - 2 * self.margin
        return max(1, int(usable_height / self.line_height))

    def layout(self, texts: list[str]) -> list[list[str]]:
        """Return the wrapped lines of each output page."""
        lines = wrap_text("\n\n".join(texts), self.max_units)
        return paginate(lines, self.lines_per_page)

    def generate(self, texts: list[str]) -> bytes:
        """Render ordered page texts into a PDF.

        Raises:
            AssemblyError: If PyMuPDF fails to build the document
        """
        pages = self.layout(texts)
        try:
            with new_pdf_document() as doc:
                for page_lines in pages:
                    page = doc.new_page(width=self.page_width, height=self.page_height)
                    for index, line in enumerate(page_lines):
                        if not line:
                            continue
                        y = self.margin + self.font_size + index * self.line_height
                        page.insert_text(
                            (self.margin, y),
                            line,
                            fontname=self.fontname,
                            fontsize=self.font_size,
                        )
                data = doc.tobytes()
        except (RuntimeError, ValueError) as e:
            raise AssemblyError(f"Failed to generate PDF: {e}") from e

        logger.info("Generated PDF: %d page(s), %d bytes", len(pages), len(data))
        return data
