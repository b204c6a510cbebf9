"""Resumable page-by-page PDF translation service.

Each uploaded PDF is rendered to page images, every page is recognized and
translated by an OpenAI-compatible model in concurrent batches, each page stage
is checkpointed on disk, and the translated texts are assembled into a new PDF.

Example:
    >>> from pdftrans import TaskController, TranslatorConfig
    >>>
    >>> config = TranslatorConfig.from_env()
    >>> controller = TaskController.from_config(config)
    >>> task_id = await controller.submit(pdf_bytes, "paper.pdf")
    >>> await controller.wait(task_id)
    >>> output = controller.get_result(task_id)
"""

from __future__ import annotations

from .config import TranslatorConfig
from .controller import TaskController

__all__ = ["TaskController", "TranslatorConfig"]
