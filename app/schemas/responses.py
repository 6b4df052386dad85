"""
Response schemas for the clip API.
"""

from typing import Optional

from pydantic import Field

from app.schemas.requests import CamelModel
from app.services.clip_pipeline import ClipRenderResult, SegmentResult
from app.services.models import CaptionChunk, Word


class WordResponse(CamelModel):
    """Word-level timing relative to the clip start."""

    text: str
    start: float
    end: float

    @classmethod
    def from_word(cls, word: Word) -> "WordResponse":
        return cls(text=word.text, start=word.start, end=word.end)


class CaptionResponse(CamelModel):
    """A caption chunk relative to the clip start."""

    start: float
    end: float
    text: str

    @classmethod
    def from_chunk(cls, chunk: CaptionChunk) -> "CaptionResponse":
        return cls(start=chunk.start, end=chunk.end, text=chunk.text)


class TranscribeSegmentResponse(CamelModel):
    """Re-timed segment with transcript and captions."""

    segment_id: Optional[str] = Field(default=None, description="Caller reference")
    transcript: str = Field(..., description="Transcript of the adjusted clip")
    title: str = Field(..., description="Short generated title")
    adjusted_start_time: float = Field(..., description="Clip start in seconds")
    adjusted_end_time: float = Field(..., description="Sentence-aligned clip end in seconds")
    content_match_confidence: float = Field(
        ..., ge=0.0, le=1.0, description="Fraction of expected tokens found"
    )
    captions: list[CaptionResponse] = Field(default_factory=list)
    words: list[WordResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: SegmentResult) -> "TranscribeSegmentResponse":
        return cls(
            segment_id=result.segment_id,
            transcript=result.transcript,
            title=result.title,
            adjusted_start_time=result.adjusted_start_time,
            adjusted_end_time=result.adjusted_end_time,
            content_match_confidence=result.content_match_confidence,
            captions=[CaptionResponse.from_chunk(c) for c in result.captions],
            words=[WordResponse.from_word(w) for w in result.words],
        )


class RenderClipResponse(CamelModel):
    """Reference to a finished clip."""

    clip_id: str = Field(..., description="Clip identifier")
    filename: str = Field(..., description="Stored clip file name")
    download_url: str = Field(..., description="Relative URL to download the clip")
    start_time: float
    end_time: float
    duration: float
    file_size_bytes: int
    caption_mode: str = Field(..., description="karaoke, flat or none")

    @classmethod
    def from_result(cls, result: ClipRenderResult) -> "RenderClipResponse":
        return cls(
            clip_id=result.clip_id,
            filename=result.filename,
            download_url=f"/api/clips/{result.clip_id}",
            start_time=result.start_time,
            end_time=result.end_time,
            duration=result.duration,
            file_size_bytes=result.file_size_bytes,
            caption_mode=result.caption_mode.value,
        )


class CleanupResponse(CamelModel):
    """Result of a cleanup sweep."""

    uploads_removed: int
    temp_entries_removed: int
    errors: int = 0


class HealthResponse(CamelModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(CamelModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to accept requests")
    ffmpeg: bool = Field(..., description="Whether ffmpeg and ffprobe are on PATH")
    transcription_backend: str = Field(..., description="groq or local")
