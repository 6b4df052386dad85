"""
Media Service - ffprobe/ffmpeg wrappers for probing, audio extraction and transcoding.
"""

import asyncio
import logging
import os
import subprocess
from typing import Optional

from app.config import get_settings
from app.services.errors import ExtractionError, RenderingError, SegmentValidationError
from app.services.models import MediaProbe

logger = logging.getLogger(__name__)


class MediaService:
    """
    Thin wrapper around the external transcoder.

    Every call is one blocking ffmpeg/ffprobe process executed in the default
    executor so the event loop keeps serving other requests.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe"):
        self.settings = get_settings()
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    async def get_duration(self, media_path: str) -> MediaProbe:
        """
        Get media duration using ffprobe.

        Never fails: on any probe error the fixed fallback duration is returned
        with ``degraded=True`` so callers can decide whether to trust it.
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            media_path,
        ]

        fallback = self.settings.fallback_duration_seconds
        try:
            result = await self._run(cmd)
            if result.returncode != 0:
                raise ValueError(f"ffprobe exited with code {result.returncode}")
            duration = float(result.stdout.decode().strip())
            if duration <= 0:
                raise ValueError(f"non-positive duration {duration}")
            return MediaProbe(duration=duration)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not get duration for {media_path}, using fallback {fallback}s: {e}")
            return MediaProbe(duration=fallback, degraded=True)

    async def extract_audio_segment(
        self,
        media_path: str,
        start_time: float,
        end_time: float,
        output_path: str,
    ) -> str:
        """
        Cut a mono 16 kHz speech-optimized audio slice between two timestamps.

        Args:
            media_path: Source media file
            start_time: Slice start in seconds
            end_time: Slice end in seconds
            output_path: Destination .mp3 path

        Returns:
            Path to the extracted audio file
        """
        if end_time <= start_time:
            raise SegmentValidationError(
                f"Cannot extract empty range {start_time:.2f}s-{end_time:.2f}s"
            )

        duration = end_time - start_time
        logger.info(
            f"Extracting audio segment: {start_time:.2f}s to {end_time:.2f}s (duration: {duration:.2f}s)"
        )

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-ss", f"{start_time:.3f}",
            "-i", media_path,
            "-t", f"{duration:.3f}",
            "-vn",  # No video
            "-ac", "1",  # Mono
            "-ar", str(self.settings.audio_sample_rate),
            "-af", ",".join(self.settings.audio_filters),
            "-acodec", "libmp3lame",
            "-b:a", self.settings.audio_bitrate,
            "-f", "mp3",
            output_path,
        ]

        try:
            result = await self._run(cmd)
        except OSError as e:
            raise ExtractionError(f"Failed to start ffmpeg: {e}") from e

        if result.returncode != 0:
            error_msg = result.stderr.decode()[-1000:] if result.stderr else "Unknown error"
            raise ExtractionError(f"Audio extraction failed: {error_msg}")

        if not os.path.isfile(output_path) or os.path.getsize(output_path) == 0:
            raise ExtractionError("Audio extraction produced no output file")

        logger.info(f"Audio segment extracted: {output_path}")
        return output_path

    async def render_video(
        self,
        input_path: str,
        output_path: str,
        start_time: float,
        duration: float,
        video_filters: Optional[list[str]] = None,
    ) -> str:
        """Transcode one clip bounded to [start, start + duration] with a filter chain."""
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-accurate_seek",
            "-ss", f"{start_time:.6f}",
            "-i", input_path,
            "-t", f"{duration:.6f}",
        ]

        if video_filters:
            cmd.extend(["-vf", ",".join(video_filters)])

        cmd.extend([
            "-c:v", "libx264",
            "-c:a", "aac",
            "-preset", self.settings.ffmpeg_preset,
            "-crf", str(self.settings.ffmpeg_crf),
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            "-f", "mp4",
            output_path,
        ])

        try:
            result = await self._run(cmd)
        except OSError as e:
            raise RenderingError(f"Failed to start ffmpeg: {e}") from e

        if result.returncode != 0:
            error_msg = result.stderr.decode()[-1000:] if result.stderr else "Unknown error"
            raise RenderingError(f"FFmpeg failed: {error_msg}")

        if not os.path.isfile(output_path):
            raise RenderingError("Render failed: output file not created")

        return output_path

    async def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        """Run a command in the default executor."""
        logger.debug(f"Running: {' '.join(cmd[:12])}...")

        # Use run_in_executor for Windows compatibility
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: subprocess.run(cmd, capture_output=True)
        )
