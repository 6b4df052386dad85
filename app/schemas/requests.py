"""
Request schemas for the clip API.

Bodies use camelCase on the wire; snake_case names are accepted too.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic.alias_generators import to_camel

from app.services.models import AccountTier, CaptionChunk, Word


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class WordInput(CamelModel):
    """Word-level timing relative to the clip start."""

    text: str = Field(
        ...,
        validation_alias=AliasChoices("text", "word"),
        description="Spoken word (accepted as 'text' or 'word')",
    )
    start: float = Field(..., description="Word start in seconds")
    end: float = Field(..., description="Word end in seconds")

    def to_word(self) -> Word:
        return Word(text=self.text.strip(), start=self.start, end=max(self.start, self.end))


class CaptionInput(CamelModel):
    """A caption chunk relative to the clip start."""

    start: float = Field(..., description="Caption start in seconds")
    end: float = Field(..., description="Caption end in seconds")
    text: str = Field(..., description="Caption text")

    def to_chunk(self) -> CaptionChunk:
        return CaptionChunk(start=self.start, end=self.end, text=" ".join(self.text.split()))


class TranscribeSegmentRequest(CamelModel):
    """Request body for /api/transcribe-segment."""

    filename: str = Field(..., description="Name of an uploaded source video")
    start_time: float = Field(..., description="Approximate segment start in seconds")
    end_time: float = Field(..., description="Approximate segment end in seconds")
    segment_id: Optional[str] = Field(default=None, description="Caller reference echoed back")
    expected_transcript: Optional[str] = Field(
        default=None,
        description="Expected line of speech used to refine the start time",
    )

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "filename": "1718000000000-interview.mp4",
                "startTime": 10.0,
                "endTime": 15.0,
                "segmentId": "seg-1",
                "expectedTranscript": "the hardest part of building a company is hiring",
            }
        }


class RenderClipRequest(CamelModel):
    """Request body for /api/render-clip."""

    filename: str = Field(..., description="Name of an uploaded source video")
    start_time: float = Field(..., description="Clip start in seconds")
    end_time: float = Field(..., description="Clip end in seconds")
    captions: list[CaptionInput] = Field(default_factory=list, description="Flat caption chunks")
    words: list[WordInput] = Field(
        default_factory=list,
        description="Word timings; when present captions are rendered karaoke-style",
    )
    tier: AccountTier = Field(default=AccountTier.GUEST, description="Requester account tier")
    watermark: Optional[bool] = Field(
        default=None,
        description="Force the watermark on or off (tier default when omitted)",
    )
    aspect_ratio: Optional[str] = Field(
        default=None,
        description="Target aspect ratio for pro and developer tiers (default '9:16')",
    )
    crop_position: Optional[str] = Field(
        default=None,
        description="Crop anchor: top, bottom, left, right or center",
    )
    segment_id: Optional[str] = Field(default=None, description="Caller reference")
    transcript: Optional[str] = Field(
        default=None,
        description="Clip transcript used to find the final spoken word",
    )

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "filename": "1718000000000-interview.mp4",
                "startTime": 10.0,
                "endTime": 16.3,
                "words": [{"word": "Hiring", "start": 0.1, "end": 0.5}],
                "tier": "pro",
                "aspectRatio": "9:16",
                "cropPosition": "center",
            }
        }
