"""Batched page processing.

Pages of a task are split into fixed-size batches. Each batch runs two phases,
recognition then translation, with one concurrent unit per page; batches run
strictly one after another, so a task never has more than ``batch_size``
external calls in flight.

Usage:
    from pdftrans.batch import BatchPipelineScheduler

    scheduler = BatchPipelineScheduler(registry, store, client)
    texts = await scheduler.run(task_id, pages)
"""

from __future__ import annotations

from .processor import BatchPipelineScheduler
from .types import PageWork, split_batches

__all__ = [
    "BatchPipelineScheduler",
    "PageWork",
    "split_batches",
]
