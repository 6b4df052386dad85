"""
Services for the clip engine.

Includes:
- Media services (ffprobe/ffmpeg probing, extraction, rendering)
- Timing services (content location, sentence alignment, caption layout)
- Orchestration (clip pipeline, workspaces, progress)
"""

from app.services.caption_generator import CaptionGeneratorService
from app.services.caption_layout import CaptionLayoutEngine
from app.services.clip_pipeline import ClipPipeline
from app.services.content_locator import ContentLocator
from app.services.media_service import MediaService
from app.services.rendering_service import RenderingService
from app.services.transcription_service import TranscriptionService
from app.services.workspace import WorkspaceManager

__all__ = [
    # Media
    "MediaService",
    "RenderingService",
    "CaptionGeneratorService",
    # Timing
    "TranscriptionService",
    "ContentLocator",
    "CaptionLayoutEngine",
    # Orchestration
    "ClipPipeline",
    "WorkspaceManager",
]
