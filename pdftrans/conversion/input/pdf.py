"""PDF rasterization via poppler (pdf2image)."""

from __future__ import annotations

import io
import logging

from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from PIL import Image

from ...constants import RENDER_DPI, RENDER_JPEG_QUALITY, RENDER_SCALE_TO
from ...exceptions import RenderError
from ...types import PageImage

logger = logging.getLogger(__name__)


def encode_jpeg(image: Image.Image, quality: int = RENDER_JPEG_QUALITY) -> bytes:
    """Encode a PIL image as JPEG bytes."""
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


class PopplerRenderer:
    """Renders every page of a PDF to a JPEG image.

    Blocking: shells out to ``pdftoppm``. Call it from a worker thread inside
    async code.

    Args:
        dpi: Rendering resolution
        scale_to: Longest side of the output image in pixels
        jpeg_quality: JPEG quality (1-95)
        timeout: Seconds before poppler is killed (None for no limit)

    Example:
        >>> renderer = PopplerRenderer()
        >>> pages = renderer.render(Path("paper.pdf").read_bytes())
        >>> pages[0].page_num
        1
    """

    def __init__(
        self,
        dpi: int = RENDER_DPI,
        scale_to: int = RENDER_SCALE_TO,
        jpeg_quality: int = RENDER_JPEG_QUALITY,
        timeout: float | None = None,
    ):
        self.dpi = dpi
        self.scale_to = scale_to
        self.jpeg_quality = jpeg_quality
        self.timeout = timeout

    def render(self, data: bytes) -> list[PageImage]:
        """Rasterize ``data`` into ordered page images.

        Raises:
            RenderError: If poppler is missing or the document cannot be rendered
        """
        try:
            images = convert_from_bytes(
                data,
                dpi=self.dpi,
                fmt="jpeg",
                jpegopt={"quality": self.jpeg_quality},
                size=self.scale_to,
                timeout=self.timeout,
            )
        except PDFInfoNotInstalledError as e:
            raise RenderError("Failed to render PDF: poppler (pdftoppm/pdfinfo) is not installed") from e
        except PDFPopplerTimeoutError as e:
            raise RenderError(f"Failed to render PDF: timed out after {self.timeout}s") from e
        except (PDFPageCountError, PDFSyntaxError) as e:
            raise RenderError(f"Failed to render PDF: {e}") from e
        except OSError as e:
            raise RenderError(f"Failed to render PDF: {e}") from e

        pages = []
        for index, image in enumerate(images, start=1):
            try:
                pages.append(PageImage(page_num=index, image_bytes=encode_jpeg(image, self.jpeg_quality)))
            finally:
                image.close()

        logger.info("Rendered %d page(s) at %d dpi (scale-to %d)", len(pages), self.dpi, self.scale_to)
        return pages
