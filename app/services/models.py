"""
Core value types shared by the clip pipeline services.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from app.services.errors import SegmentValidationError


@dataclass(frozen=True)
class TimeRange:
    """A start/end pair in seconds bounding a clip within the source media."""

    start: float
    end: float

    def __post_init__(self):
        if self.start is None or self.end is None:
            raise SegmentValidationError("start and end times are required")
        if not (math.isfinite(self.start) and math.isfinite(self.end)):
            raise SegmentValidationError(
                f"Time range must be finite, got {self.start}-{self.end}"
            )
        if self.start < 0:
            raise SegmentValidationError(f"start time must be >= 0, got {self.start}")
        if self.end <= self.start:
            raise SegmentValidationError(
                f"end time ({self.end}) must be greater than start time ({self.start})"
            )

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Word:
    """Word-level timing for precise caption display (seconds)."""

    text: str
    start: float
    end: float


@dataclass(frozen=True)
class TranscriptSegment:
    """A segment of transcribed audio with timing."""

    start: float
    end: float
    text: str


@dataclass(frozen=True)
class Transcript:
    """Result of one transcription call. Immutable after creation."""

    text: str
    words: tuple[Word, ...] = ()
    segments: tuple[TranscriptSegment, ...] = ()
    language: Optional[str] = None
    duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class CaptionChunk:
    """A caption line; karaoke sub-lines carry the index of the spoken word."""

    start: float
    end: float
    text: str
    highlighted_word_index: Optional[int] = None


@dataclass(frozen=True)
class ContentMatch:
    """Refined start/end estimate for an expected line of speech."""

    start_time: float
    end_time: float
    confidence: float = 0.0


@dataclass(frozen=True)
class CropRect:
    """Pixel crop rectangle for a fixed source frame."""

    width: int
    height: int
    x: int
    y: int

    def to_filter(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


@dataclass(frozen=True)
class MediaProbe:
    """Probed source duration; degraded when the fallback value was used."""

    duration: float
    degraded: bool = False


class AccountTier(str, Enum):
    """Account tier of the requester, gating crop and watermark features."""

    GUEST = "guest"
    PRO = "pro"
    DEVELOPER = "developer"

    @property
    def allows_crop(self) -> bool:
        return self in (AccountTier.PRO, AccountTier.DEVELOPER)

    @property
    def default_watermark(self) -> bool:
        return self == AccountTier.GUEST


@dataclass
class RenderJob:
    """Everything one render call needs. Owned by the orchestrator for its lifetime."""

    source_path: str
    time_range: TimeRange
    captions: list[CaptionChunk] = field(default_factory=list)
    crop: Optional[CropRect] = None
    watermark: bool = False
    work_dir: Optional[str] = None
