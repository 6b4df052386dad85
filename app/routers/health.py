"""
Health check endpoints for the clip engine.
"""

from fastapi import APIRouter, Request

from app.config import get_settings
from app.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version="1.0.0",
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Returns whether the service is ready to accept clip requests: the pipeline
    is initialized and ffmpeg/ffprobe were found at startup.
    """
    pipeline = getattr(request.app.state, "clip_pipeline", None)
    ffmpeg_ready = bool(getattr(request.app.state, "ffmpeg_available", False))

    return ReadinessResponse(
        ready=pipeline is not None and ffmpeg_ready,
        ffmpeg=ffmpeg_ready,
        transcription_backend="groq" if get_settings().groq_api_key else "local",
    )
