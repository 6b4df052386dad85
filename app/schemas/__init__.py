"""
Pydantic schemas for request/response models.
"""

from app.schemas.requests import (
    CaptionInput,
    RenderClipRequest,
    TranscribeSegmentRequest,
    WordInput,
)
from app.schemas.responses import (
    CaptionResponse,
    CleanupResponse,
    HealthResponse,
    ReadinessResponse,
    RenderClipResponse,
    TranscribeSegmentResponse,
    WordResponse,
)

__all__ = [
    "TranscribeSegmentRequest",
    "RenderClipRequest",
    "WordInput",
    "CaptionInput",
    "TranscribeSegmentResponse",
    "RenderClipResponse",
    "WordResponse",
    "CaptionResponse",
    "CleanupResponse",
    "HealthResponse",
    "ReadinessResponse",
]
