"""
Clip API Router - segment re-timing, clip rendering, downloads and cleanup.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from app.config import get_settings
from app.schemas.requests import RenderClipRequest, TranscribeSegmentRequest
from app.schemas.responses import (
    CleanupResponse,
    RenderClipResponse,
    TranscribeSegmentResponse,
)
from app.services.clip_pipeline import (
    ClipPipeline,
    ClipRenderRequest,
    PipelineRun,
    SegmentRequest,
)
from app.services.errors import ClipPipelineError, ErrorKind
from app.services.progress import ProgressStream
from app.services.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Clips"])


# Pipeline error kind -> HTTP status
ERROR_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.EXTRACTION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.TRANSCRIPTION: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TRANSCODE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.CANCELLED: 499,
}


# ============================================================================
# Dependencies
# ============================================================================


async def get_clip_pipeline(request: Request) -> ClipPipeline:
    """Get the clip pipeline from app state (initialized at startup)."""
    if not hasattr(request.app.state, "clip_pipeline"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Clip pipeline not initialized",
        )
    return request.app.state.clip_pipeline


async def get_workspace_manager(request: Request) -> WorkspaceManager:
    """Get the workspace manager from app state (initialized at startup)."""
    if not hasattr(request.app.state, "workspace_manager"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workspace manager not initialized",
        )
    return request.app.state.workspace_manager


def to_http_exception(error: ClipPipelineError) -> HTTPException:
    """Convert a pipeline error into an HTTPException with a structured detail."""
    return HTTPException(
        status_code=ERROR_STATUS.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed requests with the same detail shape as pipeline errors."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))

    message = "; ".join(problems) or "Invalid request"
    logger.warning(f"Rejected request to {request.url.path}: {message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"kind": ErrorKind.VALIDATION.value, "message": message}},
    )


def to_segment_request(body: TranscribeSegmentRequest) -> SegmentRequest:
    return SegmentRequest(
        filename=body.filename,
        start_time=body.start_time,
        end_time=body.end_time,
        segment_id=body.segment_id,
        expected_transcript=body.expected_transcript,
    )


def to_render_request(body: RenderClipRequest) -> ClipRenderRequest:
    return ClipRenderRequest(
        filename=body.filename,
        start_time=body.start_time,
        end_time=body.end_time,
        captions=[c.to_chunk() for c in body.captions],
        words=[w.to_word() for w in body.words if w.text.strip()],
        tier=body.tier,
        watermark=body.watermark,
        aspect_ratio=body.aspect_ratio,
        crop_position=body.crop_position,
        segment_id=body.segment_id,
        transcript=body.transcript,
    )


# ============================================================================
# Server-Sent Events
# ============================================================================


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _discard_result(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.info(f"Discarded result of abandoned pipeline run: {task.exception()}")


async def stream_pipeline(
    request: Request,
    run: PipelineRun,
    operation: Callable[[], Awaitable[Any]],
    serialize: Callable[[Any], dict[str, Any]],
) -> AsyncIterator[str]:
    """
    Run a pipeline operation, streaming progress events then one terminal message.

    When the client disconnects the run is flagged as cancelled; the operation
    stops at its next checkpoint and still cleans up its workspace.
    """
    task = asyncio.create_task(operation())
    try:
        while not task.done():
            next_event = asyncio.create_task(run.progress.get())
            await asyncio.wait({task, next_event}, timeout=1.0, return_when=asyncio.FIRST_COMPLETED)

            if next_event.done():
                event = next_event.result()
                yield _sse({"type": "progress", **event.to_dict()})
            else:
                next_event.cancel()

            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling pipeline run")
                run.cancel()
                return

        for event in run.progress.drain():
            yield _sse({"type": "progress", **event.to_dict()})

        try:
            result = task.result()
        except ClipPipelineError as e:
            yield _sse({"type": "error", "error": e.to_dict()})
        except Exception as e:
            logger.exception(f"Unexpected pipeline error: {e}")
            yield _sse({"type": "error", "error": {"kind": ErrorKind.TRANSCODE.value, "message": "Internal error"}})
        else:
            yield _sse({"type": "complete", "result": serialize(result)})
    finally:
        if not task.done():
            run.cancel()
            task.add_done_callback(_discard_result)


def _event_stream(generator: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/transcribe-segment", response_model=TranscribeSegmentResponse)
async def transcribe_segment(
    body: TranscribeSegmentRequest,
    pipeline: ClipPipeline = Depends(get_clip_pipeline),
) -> TranscribeSegmentResponse:
    """
    Re-time an approximate segment and return its transcript and captions.

    The clip is extended to end on a sentence boundary (at most 10 seconds)
    and, when an expected transcript is given, moved to where that content
    is actually spoken.
    """
    try:
        result = await pipeline.transcribe_segment(to_segment_request(body))
    except ClipPipelineError as e:
        logger.warning(f"Segment transcription failed: {e.kind.value}: {e.message}")
        raise to_http_exception(e)

    return TranscribeSegmentResponse.from_result(result)


@router.post("/transcribe-segment/stream")
async def transcribe_segment_stream(
    body: TranscribeSegmentRequest,
    request: Request,
    pipeline: ClipPipeline = Depends(get_clip_pipeline),
) -> StreamingResponse:
    """Same as /transcribe-segment, streamed as Server-Sent Events."""
    run = PipelineRun(progress=ProgressStream(get_settings().progress_queue_size))
    segment_request = to_segment_request(body)

    return _event_stream(stream_pipeline(
        request,
        run,
        lambda: pipeline.transcribe_segment(segment_request, run),
        lambda result: TranscribeSegmentResponse.from_result(result).model_dump(by_alias=True),
    ))


@router.post("/render-clip", response_model=RenderClipResponse)
async def render_clip(
    body: RenderClipRequest,
    pipeline: ClipPipeline = Depends(get_clip_pipeline),
) -> RenderClipResponse:
    """
    Render a clip with burned-in captions.

    Word timings produce karaoke captions; caption chunks alone produce flat
    captions; with neither, the clip audio is transcribed first. Crop is
    applied for pro and developer tiers only.
    """
    try:
        result = await pipeline.render_clip(to_render_request(body))
    except ClipPipelineError as e:
        logger.warning(f"Clip render failed: {e.kind.value}: {e.message}")
        raise to_http_exception(e)

    return RenderClipResponse.from_result(result)


@router.post("/render-clip/stream")
async def render_clip_stream(
    body: RenderClipRequest,
    request: Request,
    pipeline: ClipPipeline = Depends(get_clip_pipeline),
) -> StreamingResponse:
    """Same as /render-clip, streamed as Server-Sent Events."""
    run = PipelineRun(progress=ProgressStream(get_settings().progress_queue_size))
    render_request = to_render_request(body)

    return _event_stream(stream_pipeline(
        request,
        run,
        lambda: pipeline.render_clip(render_request, run),
        lambda result: RenderClipResponse.from_result(result).model_dump(by_alias=True),
    ))


@router.get("/segment-video/{filename}/{start_time}/{end_time}/{segment_id}")
async def segment_video(
    filename: str,
    start_time: float,
    end_time: float,
    segment_id: str,
    background_tasks: BackgroundTasks,
    pipeline: ClipPipeline = Depends(get_clip_pipeline),
    workspaces: WorkspaceManager = Depends(get_workspace_manager),
) -> FileResponse:
    """
    Stream an uncaptioned preview of a segment.

    The preview is cut on demand and its workspace is removed once the
    response has been sent.
    """
    try:
        preview = await pipeline.render_preview(SegmentRequest(
            filename=filename,
            start_time=start_time,
            end_time=end_time,
            segment_id=segment_id,
        ))
    except ClipPipelineError as e:
        logger.warning(f"Segment preview failed: {e.kind.value}: {e.message}")
        raise to_http_exception(e)

    background_tasks.add_task(workspaces.release, preview.work_dir)
    return FileResponse(
        preview.file_path,
        media_type="video/mp4",
        headers={"Accept-Ranges": "bytes", "Cache-Control": "public, max-age=3600"},
    )


@router.get("/clips/{clip_id}")
async def download_clip(
    clip_id: str,
    workspaces: WorkspaceManager = Depends(get_workspace_manager),
) -> FileResponse:
    """Download a rendered clip."""
    try:
        path = workspaces.get_clip_path(clip_id)
    except ClipPipelineError as e:
        raise to_http_exception(e)

    return FileResponse(path, media_type="video/mp4", filename=f"clip-{clip_id}.mp4")


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    workspaces: WorkspaceManager = Depends(get_workspace_manager),
) -> CleanupResponse:
    """
    Remove uploads older than 24 hours and orphaned temp entries.

    Workspaces held by in-flight requests are never touched.
    """
    result = workspaces.sweep(get_settings().upload_max_age_seconds)
    return CleanupResponse(
        uploads_removed=result.uploads_removed,
        temp_entries_removed=result.temp_entries_removed,
        errors=result.errors,
    )
