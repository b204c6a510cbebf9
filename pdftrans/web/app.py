"""FastAPI surface over the task controller."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import quote

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import Response, StreamingResponse

from ..controller import TaskController
from ..exceptions import (
    AdmissionRejectedError,
    FileSaveError,
    InputInvalidError,
    RetryRejectedError,
    TaskExpiredError,
    TaskNotFoundError,
)

logger = logging.getLogger(__name__)

_SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse_event(event: str, data: Any) -> bytes:
    payload = json.dumps(data, ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n".encode()


def create_app(controller: TaskController, run_reclaim_loop: bool = True) -> FastAPI:
    """Build the web application.

    Args:
        controller: Controller shared by every request
        run_reclaim_loop: Run the periodic reclamation sweep during the app lifespan
    """

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        reclaimer = asyncio.create_task(controller.reclaim_loop()) if run_reclaim_loop else None
        try:
            yield
        finally:
            if reclaimer is not None:
                reclaimer.cancel()
                await asyncio.gather(reclaimer, return_exceptions=True)
            await controller.aclose()

    app = FastAPI(title="PDF Translator", lifespan=lifespan)
    app.state.controller = controller

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "active_tasks": controller.registry.active_count}

    @app.post("/upload")
    async def upload(file: UploadFile = File(...)) -> dict[str, str]:
        data = await file.read()
        try:
            task_id = await controller.submit(data, file.filename or "document.pdf")
        except InputInvalidError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except AdmissionRejectedError as e:
            raise HTTPException(status_code=429, detail=str(e)) from e
        except FileSaveError as e:
            logger.error("Upload failed: %s", e)
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"task_id": task_id}

    @app.get("/progress/{task_id}")
    async def progress(task_id: str) -> StreamingResponse:
        async def stream() -> AsyncIterator[bytes]:
            async for snapshot in controller.poll_progress(task_id):
                if snapshot is None:
                    yield _sse_event("error", {"detail": "Task not found"})
                    return
                yield _sse_event("progress", snapshot.to_dict())

        return StreamingResponse(stream(), media_type="text/event-stream", headers=_SSE_HEADERS)

    @app.get("/tasks")
    async def list_tasks() -> list[dict[str, Any]]:
        return [summary.to_dict() for summary in controller.list_tasks()]

    @app.get("/tasks/{task_id}")
    async def get_task(task_id: str) -> dict[str, Any]:
        snapshot = controller.get_progress(task_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return snapshot.to_dict()

    @app.get("/tasks/{task_id}/pages/{page_num}")
    async def get_page(task_id: str, page_num: int) -> dict[str, Any]:
        detail = controller.get_page_detail(task_id, page_num)
        if detail is None:
            raise HTTPException(status_code=404, detail="Page not found")
        return detail.to_dict()

    @app.post("/cancel/{task_id}")
    async def cancel(task_id: str) -> dict[str, str]:
        if not controller.cancel(task_id):
            raise HTTPException(status_code=404, detail="Task not found or already finished")
        return {"status": "cancelled"}

    @app.post("/retry/{task_id}")
    async def retry(task_id: str) -> dict[str, str]:
        try:
            await controller.retry(task_id)
        except TaskNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except TaskExpiredError as e:
            raise HTTPException(status_code=410, detail=str(e)) from e
        except AdmissionRejectedError as e:
            raise HTTPException(status_code=429, detail=str(e)) from e
        except RetryRejectedError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return {"status": "retrying"}

    @app.get("/download/{task_id}")
    async def download(task_id: str) -> Response:
        artifact = controller.get_result(task_id)
        snapshot = controller.get_progress(task_id)
        if artifact is None or snapshot is None:
            raise HTTPException(status_code=404, detail="Result not available")
        filename = f"translated_{snapshot.name}"
        if not filename.lower().endswith(".pdf"):
            filename += ".pdf"
        headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}
        return Response(content=artifact, media_type="application/pdf", headers=headers)

    return app
