"""
FastAPI application entry point for the ClipGenius clip engine.

The engine turns an approximate time range into a sentence-aligned clip with
word-synchronized captions:
1. Segment re-timing (content location, transcription, sentence alignment)
2. Clip rendering (karaoke captions, aspect-ratio crop, watermark)
"""

import logging
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.routers import clips, health
from app.services.clip_pipeline import ClipPipeline
from app.services.media_service import MediaService
from app.services.rendering_service import RenderingService
from app.services.transcription_service import TranscriptionService
from app.services.workspace import WorkspaceManager

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Creates the root directories and services on startup and removes the
    temp root on shutdown.
    """
    settings = get_settings()
    logger.info("Starting ClipGenius engine...")

    workspace_manager = WorkspaceManager(
        upload_directory=settings.upload_directory,
        temp_directory=settings.temp_directory,
        output_directory=settings.output_directory,
    )
    workspace_manager.ensure_directories()

    media_service = MediaService()
    rendering_service = RenderingService(
        media_service=media_service,
        max_concurrent=settings.max_concurrent_renders,
    )
    logger.info(f"Max concurrent renders: {settings.max_concurrent_renders}")

    clip_pipeline = ClipPipeline(
        workspace_manager=workspace_manager,
        media_service=media_service,
        transcription_service=TranscriptionService(),
        rendering_service=rendering_service,
    )

    # Store in app state for dependency injection
    app.state.workspace_manager = workspace_manager
    app.state.clip_pipeline = clip_pipeline

    # Verify external tools
    app.state.ffmpeg_available = _verify_external_tools()

    logger.info("ClipGenius engine ready to accept requests.")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down ClipGenius engine...")
    workspace_manager.remove_temp_root()
    logger.info("Shutdown complete")


def _verify_external_tools() -> bool:
    """Verify that required external tools are available."""
    tools = {
        "ffmpeg": "FFmpeg for audio extraction and rendering",
        "ffprobe": "FFprobe for duration probing",
    }

    available = True
    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            available = False
            logger.warning(f"✗ {description} NOT FOUND - some features may not work")
    return available


# Create FastAPI application
app = FastAPI(
    title="ClipGenius Engine",
    description="""
ClipGenius clip engine.

Turns approximate timestamps into sentence-aligned, captioned clips.

## Features

### Segments (`/api/transcribe-segment`)
- Content location for approximate timestamps
- Audio transcription via Groq Whisper
- Sentence-boundary extension (at most 10 seconds)
- Word-level caption timing

### Clips (`/api/render-clip`)
- Karaoke-style burned-in captions
- Aspect-ratio crop for pro and developer tiers
- Watermark for guest tier

Both endpoints have a `/stream` variant emitting Server-Sent Events progress.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(clips.router)
app.add_exception_handler(RequestValidationError, clips.validation_exception_handler)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    settings = get_settings()
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
