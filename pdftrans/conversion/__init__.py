"""Document conversion: PDF to page images and page texts to PDF."""

from __future__ import annotations

from .input.pdf import PopplerRenderer
from .output.pdf import PdfAssembler

__all__ = ["PopplerRenderer", "PdfAssembler"]
