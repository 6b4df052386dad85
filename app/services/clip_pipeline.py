"""
Clip Pipeline - orchestrates segment re-timing and clip rendering.

Two request types share the same machinery:

1. transcribe_segment: probe the source, optionally locate the expected
   content, transcribe an extended window, extend the clip to a sentence
   boundary and lay out captions.
2. render_clip: probe, transcribe only when no timing was supplied, trim to
   the last spoken word, burn in captions, crop and watermark, and store the
   finished clip.

render_preview cuts the raw segment with no filters for quick playback.

Each request runs inside its own workspace, which is removed whatever the
outcome (for previews, once the file has been sent).
"""

import asyncio
import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from app.config import get_settings
from app.services.caption_layout import CaptionLayoutEngine
from app.services.content_locator import ContentLocator
from app.services.crop_transform import compute_crop_rect
from app.services.duration_adjuster import (
    adjust_duration_for_sentences,
    trim_duration_to_last_word,
)
from app.services.errors import (
    ClipPipelineError,
    PipelineCancelledError,
    SegmentValidationError,
    TranscriptionError,
)
from app.services.media_service import MediaService
from app.services.models import (
    AccountTier,
    CaptionChunk,
    MediaProbe,
    RenderJob,
    TimeRange,
    Transcript,
    Word,
)
from app.services.progress import ProgressStream
from app.services.rendering_service import RenderingService
from app.services.text_utils import generate_title_from_transcript
from app.services.transcription_service import TranscriptionService
from app.services.workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """State of a single pipeline run."""

    IDLE = "idle"
    PROBING = "probing"
    EXTRACTING = "extracting"
    TRANSCRIBING = "transcribing"
    ADJUSTING = "adjusting"
    LAYING_OUT_CAPTIONS = "laying_out_captions"
    TRANSCODING = "transcoding"
    DONE = "done"
    FAILED = "failed"


class CaptionMode(str, Enum):
    """How captions were burned into a rendered clip."""

    KARAOKE = "karaoke"
    FLAT = "flat"
    NONE = "none"


@dataclass
class SegmentRequest:
    """Request to re-time and caption one approximate segment."""

    filename: str
    start_time: float
    end_time: float
    segment_id: Optional[str] = None
    expected_transcript: Optional[str] = None


@dataclass
class SegmentResult:
    """Re-timed segment with transcript and captions (clip-relative seconds)."""

    segment_id: Optional[str]
    transcript: str
    title: str
    adjusted_start_time: float
    adjusted_end_time: float
    content_match_confidence: float
    captions: list[CaptionChunk]
    words: list[Word]


@dataclass
class ClipRenderRequest:
    """Request to render one captioned clip."""

    filename: str
    start_time: float
    end_time: float
    captions: list[CaptionChunk] = field(default_factory=list)
    words: list[Word] = field(default_factory=list)
    tier: AccountTier = AccountTier.GUEST
    watermark: Optional[bool] = None
    aspect_ratio: Optional[str] = None
    crop_position: Optional[str] = None
    segment_id: Optional[str] = None
    transcript: Optional[str] = None


@dataclass
class ClipRenderResult:
    """Reference to a finished clip artifact."""

    clip_id: str
    filename: str
    file_path: str
    start_time: float
    end_time: float
    duration: float
    file_size_bytes: int
    caption_mode: CaptionMode


@dataclass
class PreviewResult:
    """An uncaptioned preview file inside a workspace the caller must release."""

    file_path: str
    work_dir: str
    start_time: float
    duration: float


@dataclass
class PipelineRun:
    """
    Per-request context: progress channel, cancellation flag and state history.

    The cancellation flag is checked between steps. External calls already in
    flight are allowed to finish but their results are discarded.
    """

    progress: Optional[ProgressStream] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    transcription_attempts: int = 0

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class ClipPipeline:
    """
    Orchestrates the clip re-timing and render workflow.

    This service sequences:
    - Media probing (ffprobe)
    - Content location for approximate timestamps
    - Audio extraction and transcription with retry (Groq Whisper)
    - Sentence-aware duration adjustment
    - Caption layout and ASS burn-in
    - Crop/watermark rendering (FFmpeg)
    """

    def __init__(
        self,
        workspace_manager: WorkspaceManager,
        media_service: Optional[MediaService] = None,
        transcription_service: Optional[TranscriptionService] = None,
        rendering_service: Optional[RenderingService] = None,
        caption_layout: Optional[CaptionLayoutEngine] = None,
        retry_delay_seconds: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.workspaces = workspace_manager
        self.media = media_service or MediaService()
        self.transcriber = transcription_service or TranscriptionService()
        self.rendering = rendering_service or RenderingService(media_service=self.media)
        self.caption_layout = caption_layout or CaptionLayoutEngine()
        self.locator = ContentLocator(self.media, self.transcriber)
        self.retry_delay_seconds = (
            self.settings.transcription_retry_delay_seconds
            if retry_delay_seconds is None
            else retry_delay_seconds
        )

    async def transcribe_segment(
        self,
        request: SegmentRequest,
        run: Optional[PipelineRun] = None,
    ) -> SegmentResult:
        """
        Re-time an approximate segment so it starts on the expected content
        and ends on a sentence boundary.

        Args:
            request: SegmentRequest with source filename and approximate range
            run: Optional run context for progress, cancellation and state

        Returns:
            SegmentResult with adjusted times, transcript and captions
        """
        run = run or PipelineRun()

        try:
            time_range = TimeRange(request.start_time, request.end_time)
            source = self.workspaces.resolve_upload(request.filename)

            async with self.workspaces.workspace() as work_dir:
                self._transition(run, PipelineState.PROBING)
                self._publish(run, "probing", "Analyzing video duration...")
                source_copy = await self.workspaces.duplicate_source(source, work_dir)
                probe = await self.media.get_duration(source_copy)
                time_range = self._clamp_to_probe(time_range, probe)
                self._checkpoint(run)

                confidence = 0.0
                if request.expected_transcript:
                    self._publish(run, "probing", "Searching for expected content...")
                    match = await self.locator.locate(
                        source_copy,
                        time_range,
                        request.expected_transcript,
                        probe.duration,
                        work_dir,
                    )
                    confidence = match.confidence
                    if match.confidence > self.settings.content_match_threshold:
                        refined = self._refined_range(match.start_time, match.end_time, probe)
                        if refined is not None:
                            logger.info(
                                f"Using content match {refined.start:.2f}s-{refined.end:.2f}s "
                                f"(confidence {match.confidence:.2f})"
                            )
                            time_range = refined
                    self._checkpoint(run)

                self._transition(run, PipelineState.EXTRACTING)
                self._publish(run, "extracting", "Extracting audio segment...")
                max_extension = self.settings.max_extension_seconds
                window_end = max(
                    time_range.end,
                    min(time_range.end + max_extension, probe.duration),
                )
                audio_path = await self.media.extract_audio_segment(
                    source_copy,
                    time_range.start,
                    window_end,
                    os.path.join(work_dir, "segment.mp3"),
                )
                self._checkpoint(run)

                self._transition(run, PipelineState.TRANSCRIBING)
                self._publish(run, "transcribing", "Transcribing with AI...")
                transcript = await self._transcribe_with_retry(audio_path, run)

                self._transition(run, PipelineState.ADJUSTING)
                self._publish(run, "analyzing", "Aligning clip to sentence boundaries...")
                duration = adjust_duration_for_sentences(
                    transcript.text,
                    time_range.duration,
                    window_end - time_range.start,
                    max_extension,
                )
                self._checkpoint(run)

                self._transition(run, PipelineState.LAYING_OUT_CAPTIONS)
                clip_words = [w for w in transcript.words if w.start < duration]
                if clip_words:
                    clip_text = " ".join(w.text for w in clip_words)
                else:
                    clip_text = self._text_within(
                        transcript.text, duration, window_end - time_range.start
                    )
                captions = self.caption_layout.layout(clip_words, clip_text, duration)

                self._transition(run, PipelineState.DONE)
                self._publish(run, "complete", "Complete!")

                logger.info(
                    f"Segment {request.segment_id or '-'} adjusted to "
                    f"{time_range.start:.2f}s-{time_range.start + duration:.2f}s "
                    f"({len(captions)} captions, {len(clip_words)} words)"
                )

                return SegmentResult(
                    segment_id=request.segment_id,
                    transcript=clip_text,
                    title=generate_title_from_transcript(clip_text),
                    adjusted_start_time=time_range.start,
                    adjusted_end_time=time_range.start + duration,
                    content_match_confidence=confidence,
                    captions=captions,
                    words=clip_words,
                )
        except ClipPipelineError:
            self._transition(run, PipelineState.FAILED)
            raise

    async def render_clip(
        self,
        request: ClipRenderRequest,
        run: Optional[PipelineRun] = None,
    ) -> ClipRenderResult:
        """
        Render a captioned clip.

        Args:
            request: ClipRenderRequest with range, caption timing and options
            run: Optional run context for progress, cancellation and state

        Returns:
            ClipRenderResult referencing the stored clip
        """
        run = run or PipelineRun()

        try:
            time_range = TimeRange(request.start_time, request.end_time)
            source = self.workspaces.resolve_upload(request.filename)
            tier = self._parse_tier(request.tier)

            async with self.workspaces.workspace() as work_dir:
                self._transition(run, PipelineState.PROBING)
                self._publish(run, "probing", "Analyzing video duration...")
                source_copy = await self.workspaces.duplicate_source(source, work_dir)
                probe = await self.media.get_duration(source_copy)
                time_range = self._clamp_to_probe(time_range, probe)
                self._checkpoint(run)

                words = sorted(request.words, key=lambda w: w.start)
                captions = list(request.captions)
                text = request.transcript or " ".join(c.text for c in captions)

                if not words and not captions:
                    self._transition(run, PipelineState.EXTRACTING)
                    self._publish(run, "extracting", "Extracting audio segment...")
                    audio_path = await self.media.extract_audio_segment(
                        source_copy,
                        time_range.start,
                        time_range.end,
                        os.path.join(work_dir, "clip-audio.mp3"),
                    )
                    self._checkpoint(run)

                    self._transition(run, PipelineState.TRANSCRIBING)
                    self._publish(run, "transcribing", "Transcribing with AI...")
                    transcript = await self._transcribe_with_retry(audio_path, run)
                    words = list(transcript.words)
                    text = transcript.text

                self._transition(run, PipelineState.ADJUSTING)
                self._publish(run, "analyzing", "Preparing captions...")
                duration = time_range.duration
                if words:
                    duration = trim_duration_to_last_word(
                        words,
                        text or " ".join(w.text for w in words),
                        duration,
                        self.settings.end_word_buffer_seconds,
                    )

                self._transition(run, PipelineState.LAYING_OUT_CAPTIONS)
                if words:
                    render_captions = self.caption_layout.karaoke_lines(words, duration)
                    caption_mode = CaptionMode.KARAOKE
                elif captions:
                    render_captions = captions
                    caption_mode = CaptionMode.FLAT
                else:
                    render_captions = self.caption_layout.estimate_captions(text, duration)
                    caption_mode = CaptionMode.FLAT if render_captions else CaptionMode.NONE

                crop = None
                aspect_ratio = request.aspect_ratio
                if tier.allows_crop:
                    aspect_ratio = aspect_ratio or self.settings.default_aspect_ratio
                    crop = compute_crop_rect(
                        aspect_ratio,
                        request.crop_position or self.settings.default_crop_position,
                        self.settings.source_frame_width,
                        self.settings.source_frame_height,
                    )
                elif aspect_ratio:
                    logger.info(f"Crop to {aspect_ratio} ignored for {tier.value} tier")

                watermark = tier.default_watermark if request.watermark is None else request.watermark

                job = RenderJob(
                    source_path=source_copy,
                    time_range=time_range,
                    captions=render_captions,
                    crop=crop,
                    watermark=watermark,
                    work_dir=work_dir,
                )
                self._checkpoint(run)

                self._transition(run, PipelineState.TRANSCODING)
                self._publish(run, "rendering", "Rendering clip...")
                rendered = await self.rendering.render_clip(
                    job,
                    os.path.join(work_dir, "clip.mp4"),
                    duration,
                )
                self._checkpoint(run)

                stored = await self.workspaces.store_clip(
                    rendered.output_path,
                    metadata={
                        "segmentId": request.segment_id,
                        "sourceFilename": request.filename,
                        "startTime": time_range.start,
                        "endTime": time_range.start + duration,
                        "duration": duration,
                        "captionMode": caption_mode.value,
                        "tier": tier.value,
                        "aspectRatio": aspect_ratio if crop else None,
                        "watermark": watermark,
                    },
                )

                self._transition(run, PipelineState.DONE)
                self._publish(run, "complete", "Complete!")

                return ClipRenderResult(
                    clip_id=stored.clip_id,
                    filename=os.path.basename(stored.file_path),
                    file_path=stored.file_path,
                    start_time=time_range.start,
                    end_time=time_range.start + duration,
                    duration=duration,
                    file_size_bytes=stored.file_size_bytes,
                    caption_mode=caption_mode,
                )
        except ClipPipelineError:
            self._transition(run, PipelineState.FAILED)
            raise

    async def render_preview(
        self,
        request: SegmentRequest,
        run: Optional[PipelineRun] = None,
    ) -> PreviewResult:
        """
        Cut an uncaptioned, uncropped preview of a segment.

        The returned workspace holds the preview file and is left in place;
        the caller releases it once the file has been sent.
        """
        run = run or PipelineRun()
        work_dir: Optional[str] = None

        try:
            time_range = TimeRange(request.start_time, request.end_time)
            source = self.workspaces.resolve_upload(request.filename)
            work_dir = self.workspaces.create()

            self._transition(run, PipelineState.PROBING)
            source_copy = await self.workspaces.duplicate_source(source, work_dir)
            probe = await self.media.get_duration(source_copy)
            time_range = self._clamp_to_probe(time_range, probe)
            self._checkpoint(run)

            self._transition(run, PipelineState.TRANSCODING)
            self._publish(run, "rendering", "Rendering preview...")
            output_path = await self.media.render_video(
                source_copy,
                os.path.join(work_dir, "preview.mp4"),
                time_range.start,
                time_range.duration,
            )
            self._checkpoint(run)

            self._transition(run, PipelineState.DONE)
            logger.info(
                f"Preview {request.segment_id or '-'} rendered "
                f"{time_range.start:.2f}s-{time_range.end:.2f}s"
            )
            return PreviewResult(
                file_path=output_path,
                work_dir=work_dir,
                start_time=time_range.start,
                duration=time_range.duration,
            )
        except BaseException as e:
            if work_dir is not None:
                self.workspaces.release(work_dir)
            if isinstance(e, ClipPipelineError):
                self._transition(run, PipelineState.FAILED)
            raise

    async def _transcribe_with_retry(self, audio_path: str, run: PipelineRun) -> Transcript:
        """
        Transcribe with a bounded retry.

        Empty or implausibly short results count as failures. After the last
        attempt the last error is raised.
        """
        max_attempts = self.settings.transcription_max_attempts
        min_chars = self.settings.min_transcript_chars
        last_error: Optional[TranscriptionError] = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                self._transition(run, PipelineState.TRANSCRIBING)
            run.transcription_attempts += 1

            try:
                transcript = await self.transcriber.transcribe_audio(audio_path)
            except TranscriptionError as e:
                last_error = e
            else:
                if len(transcript.text.strip()) >= min_chars:
                    self._checkpoint(run)
                    return transcript
                last_error = TranscriptionError(
                    f"Transcription returned {len(transcript.text.strip())} characters"
                )

            self._checkpoint(run)
            logger.warning(
                f"Transcription attempt {attempt}/{max_attempts} failed: {last_error.message}"
            )
            if attempt < max_attempts:
                await asyncio.sleep(self.retry_delay_seconds)

        raise last_error

    def _text_within(self, text: str, duration: float, window_duration: float) -> str:
        """Words of an untimed transcript assumed spoken within the first `duration` seconds."""
        words = text.split()
        if not words or window_duration <= 0 or duration >= window_duration:
            return " ".join(words)
        words_per_second = len(words) / window_duration
        count = max(1, math.floor(duration * words_per_second + 1e-9))
        return " ".join(words[:count])

    def _clamp_to_probe(self, time_range: TimeRange, probe: MediaProbe) -> TimeRange:
        """Clamp a range to the probed duration. Degraded probes are not trusted."""
        if probe.degraded or time_range.end <= probe.duration:
            return time_range
        if time_range.start >= probe.duration:
            raise SegmentValidationError(
                f"start time {time_range.start:.2f}s is beyond the end of the media ({probe.duration:.2f}s)"
            )
        return TimeRange(time_range.start, probe.duration)

    def _parse_tier(self, tier) -> AccountTier:
        try:
            return AccountTier(tier)
        except ValueError as e:
            raise SegmentValidationError(f"Unknown account tier: {tier!r}") from e

    def _refined_range(self, start: float, end: float, probe: MediaProbe) -> Optional[TimeRange]:
        if not probe.degraded:
            end = min(end, probe.duration)
        if end <= start:
            return None
        return TimeRange(start, end)

    def _checkpoint(self, run: PipelineRun) -> None:
        if run.cancelled:
            raise PipelineCancelledError("Request cancelled by client")

    def _transition(self, run: PipelineRun, state: PipelineState) -> None:
        logger.debug(f"Pipeline state {run.state.value} -> {state.value}")
        run.state = state
        run.history.append(state)

    def _publish(self, run: PipelineRun, stage: str, status: str) -> None:
        if run.progress is not None:
            run.progress.publish(stage, status)
