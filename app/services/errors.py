"""
Error taxonomy for the clip pipeline.

Every failure a caller can see carries a kind and a message so the HTTP layer
can turn it into a structured result.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Kind of a caller-visible pipeline failure."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation_error"
    EXTRACTION = "extraction_error"
    TRANSCRIPTION = "transcription_error"
    TRANSCODE = "transcode_error"
    CANCELLED = "cancelled"


class ClipPipelineError(Exception):
    """Base exception for all clip pipeline failures."""

    kind: ErrorKind = ErrorKind.TRANSCODE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class SourceNotFoundError(ClipPipelineError):
    """Raised when the source media file does not exist."""

    kind = ErrorKind.NOT_FOUND


class SegmentValidationError(ClipPipelineError):
    """Raised when required fields are missing or malformed. No I/O is attempted."""

    kind = ErrorKind.VALIDATION


class ExtractionError(ClipPipelineError):
    """Raised when the transcoder fails to cut an audio/video slice."""

    kind = ErrorKind.EXTRACTION


class TranscriptionError(ClipPipelineError):
    """Raised when speech-to-text fails or returns an implausible result."""

    kind = ErrorKind.TRANSCRIPTION


class RenderingError(ClipPipelineError):
    """Raised when the final transcode fails."""

    kind = ErrorKind.TRANSCODE


class PipelineCancelledError(ClipPipelineError):
    """Raised at a checkpoint after the caller went away."""

    kind = ErrorKind.CANCELLED
