"""
Rendering Service - FFmpeg-based clip rendering with crop, burned-in captions and watermark.
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

from app.config import CaptionStyle, get_settings
from app.services.caption_generator import CaptionGeneratorService
from app.services.errors import RenderingError
from app.services.media_service import MediaService
from app.services.models import RenderJob

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Result of rendering operation."""

    output_path: str
    file_size_bytes: int
    duration: float
    caption_path: Optional[str] = None


class RenderingService:
    """
    Service for rendering clips using FFmpeg.

    Features:
    - Static crop to a target aspect ratio
    - ASS caption burning (karaoke or flat)
    - Text watermark overlay
    - H.264 output optimized for social media

    Transcodes are bounded by a semaphore so a burst of render requests cannot
    start more ffmpeg processes than the configured worker count.
    """

    def __init__(
        self,
        media_service: Optional[MediaService] = None,
        caption_generator: Optional[CaptionGeneratorService] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.settings = get_settings()
        self.media = media_service or MediaService()
        self.caption_generator = caption_generator or CaptionGeneratorService()
        self._semaphore = asyncio.Semaphore(max_concurrent or self.settings.max_concurrent_renders)

    async def render_clip(
        self,
        job: RenderJob,
        output_path: str,
        duration: float,
        caption_style: Optional[CaptionStyle] = None,
    ) -> RenderResult:
        """
        Render a clip with crop, captions and watermark.

        Args:
            job: RenderJob with source, time range and caption timeline
            output_path: Destination .mp4 path
            duration: Clip length in seconds starting at ``job.time_range.start``
            caption_style: Optional custom caption styling

        Returns:
            RenderResult with output path and metadata
        """
        if duration <= 0:
            raise RenderingError("Invalid clip duration")

        os.makedirs(os.path.dirname(output_path), exist_ok=True)

        start = job.time_range.start
        logger.info(
            f"Rendering clip: {start:.2f}s + {duration:.2f}s, "
            f"captions={len(job.captions)}, crop={job.crop is not None}, watermark={job.watermark}"
        )

        caption_path: Optional[str] = None
        if job.captions:
            caption_dir = job.work_dir or os.path.dirname(output_path)
            caption_path = await self.caption_generator.generate_captions(
                captions=job.captions,
                clip_duration=duration,
                output_path=os.path.join(caption_dir, "captions.ass"),
                caption_style=caption_style,
            )

        filters = self.build_video_filters(job, caption_path)

        async with self._semaphore:
            await self.media.render_video(
                input_path=job.source_path,
                output_path=output_path,
                start_time=start,
                duration=duration,
                video_filters=filters,
            )

        file_size = os.path.getsize(output_path)
        logger.info(f"Clip rendered: {output_path} ({file_size / 1024 / 1024:.1f} MB)")

        return RenderResult(
            output_path=output_path,
            file_size_bytes=file_size,
            duration=duration,
            caption_path=caption_path,
        )

    def build_video_filters(self, job: RenderJob, caption_path: Optional[str]) -> list[str]:
        """Filter chain in application order: crop, subtitles, watermark."""
        filters: list[str] = []

        if job.crop is not None:
            filters.append(job.crop.to_filter())

        if caption_path:
            filters.append(f"ass={self._escape_filter_path(caption_path)}")

        if job.watermark:
            filters.append(self._watermark_filter())

        return filters

    def _watermark_filter(self) -> str:
        """drawtext overlay anchored to the bottom-right corner."""
        text = self.settings.watermark_text.replace("'", "")
        drawtext = (
            f"drawtext=text='{text}':fontsize=24:fontcolor=white@0.7"
            f":x=w-tw-20:y=h-th-20"
        )
        if self.settings.watermark_font_file:
            drawtext += f":fontfile={self._escape_filter_path(self.settings.watermark_font_file)}"
        return drawtext

    def _escape_filter_path(self, path: str) -> str:
        """
        Escape file path for FFmpeg filter usage.

        Args:
            path: The file path to escape

        Returns:
            Escaped path string safe for use in FFmpeg filter expressions
        """
        # Normalize path separators to forward slashes (works on all platforms in FFmpeg)
        escaped = path.replace("\\", "/")

        # On Windows, escape the drive letter colon (C: -> C\:)
        if sys.platform == "win32" and len(escaped) >= 2 and escaped[1] == ":":
            escaped = escaped[0] + "\\:" + escaped[2:]

        # Escape special characters used in FFmpeg filter syntax
        escaped = escaped.replace("'", "'\\''")
        escaped = escaped.replace("[", "\\[")
        escaped = escaped.replace("]", "\\]")

        return f"'{escaped}'"
