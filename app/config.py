"""
Configuration module using Pydantic Settings for environment variable management.

Only essential environment variables are exposed. All other settings are hardcoded
for consistency and simplicity.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class CaptionStyle:
    """Caption styling configuration for burned-in subtitles (hardcoded)."""

    font_name: str = "Arial"
    font_size: int = 16
    highlight_font_size: int = 20
    primary_color: str = "#FFFFFF"
    highlight_color: str = "#FFFFFF"
    outline_color: str = "#000000"
    back_color: str = "#000000"
    back_alpha: int = 0x80
    outline_width: int = 2
    shadow_depth: int = 1
    spacing: float = 0.3
    position: Literal["top", "center", "bottom"] = "bottom"
    # Fixed screen anchor (in PlayRes coordinates) for every caption line
    anchor_x: int = 640
    anchor_y: int = 600
    bold: bool = True


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    All processing/rendering settings are hardcoded for consistency.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "clipgenius-engine"
    debug: bool = False
    log_level: str = "INFO"

    # Transcription (Groq Whisper; local faster-whisper when no key is set)
    groq_api_key: Optional[str] = None
    transcription_model: str = "whisper-large-v3-turbo"
    transcription_language: Optional[str] = "en"
    local_whisper_model: str = "tiny"

    # Root directories (created at startup, temp root removed at shutdown)
    upload_directory: str = "/tmp/clipgenius/uploads"
    temp_directory: str = "/tmp/clipgenius/temp"
    output_directory: str = "/tmp/clipgenius/clips"

    # Performance tuning
    max_render_workers: int = 3  # Max concurrent FFmpeg transcodes

    # Watermark font (system default font when unset)
    watermark_font_file: Optional[str] = None

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    @property
    def max_concurrent_renders(self) -> int:
        return self.max_render_workers

    # Media probing
    @property
    def fallback_duration_seconds(self) -> float:
        return 300.0  # 5 minute fallback when ffprobe fails

    # Source frame size the crop transform and caption layout are computed for
    @property
    def source_frame_width(self) -> int:
        return 1280

    @property
    def source_frame_height(self) -> int:
        return 720

    # Audio extraction (tuned for speech recognition, not playback)
    @property
    def audio_sample_rate(self) -> int:
        return 16000

    @property
    def audio_bitrate(self) -> str:
        return "128k"

    @property
    def audio_filters(self) -> list[str]:
        return ["aresample=16000", "volume=1.5", "highpass=f=80", "lowpass=f=8000"]

    # Sentence alignment
    @property
    def max_extension_seconds(self) -> float:
        return 10.0

    @property
    def end_word_buffer_seconds(self) -> float:
        return 0.03

    # Content matching
    @property
    def min_expected_transcript_chars(self) -> int:
        return 10

    @property
    def content_match_threshold(self) -> float:
        return 0.5

    @property
    def min_search_radius_seconds(self) -> float:
        return 30.0

    # Transcription retry policy
    @property
    def transcription_max_attempts(self) -> int:
        return 3

    @property
    def transcription_retry_delay_seconds(self) -> float:
        return 2.0

    @property
    def min_transcript_chars(self) -> int:
        return 5

    # Captions
    @property
    def words_per_caption(self) -> int:
        return 6

    # Rendering Configuration
    @property
    def ffmpeg_preset(self) -> str:
        return "fast"

    @property
    def ffmpeg_crf(self) -> int:
        return 23

    @property
    def watermark_text(self) -> str:
        return "Made with ClipGenius"

    # Crop applied to pro/developer renders that name no aspect ratio
    @property
    def default_aspect_ratio(self) -> str:
        return "9:16"

    @property
    def default_crop_position(self) -> str:
        return "center"

    # Progress stream
    @property
    def progress_queue_size(self) -> int:
        return 32

    # Cleanup sweep
    @property
    def upload_max_age_seconds(self) -> int:
        return 24 * 60 * 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    def get_caption_style(self) -> CaptionStyle:
        """Build CaptionStyle anchored for the configured source frame."""
        style = CaptionStyle()
        style.anchor_x = self.source_frame_width // 2
        style.anchor_y = int(self.source_frame_height * 600 / 720)
        return style


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
