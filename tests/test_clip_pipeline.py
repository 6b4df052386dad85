"""
Tests for the clip pipeline orchestration using fake media and transcription services.
"""

import asyncio
import json
import os

import pytest

from app.services.clip_pipeline import (
    CaptionMode,
    ClipPipeline,
    ClipRenderRequest,
    PipelineRun,
    PipelineState,
    SegmentRequest,
)
from app.services.errors import (
    PipelineCancelledError,
    RenderingError,
    SegmentValidationError,
    SourceNotFoundError,
    TranscriptionError,
)
from app.services.models import AccountTier, CaptionChunk
from app.services.progress import ProgressStream
from conftest import FakeMediaService, FakeTranscriptionService, make_transcript, make_words


def sentence_transcript(count=30, sentence_end_at=14):
    """Transcript of ``count`` timed words with one sentence end."""
    texts = [f"word{i}" for i in range(count)]
    texts[sentence_end_at] += "."
    words = make_words(texts)
    return make_transcript(" ".join(texts), words)


def temp_entries(workspace_manager):
    return os.listdir(workspace_manager.temp_directory)


def build_pipeline(workspace_manager, media, transcriber):
    return ClipPipeline(
        workspace_manager,
        media_service=media,
        transcription_service=transcriber,
        retry_delay_seconds=0,
    )


class TestTranscribeSegment:
    """Tests for ClipPipeline.transcribe_segment."""

    def test_extends_to_sentence_boundary(self, workspace_manager, source_video):
        """Test clip extended to the next sentence end."""
        media = FakeMediaService(duration=23.0)
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))
        run = PipelineRun()

        result = asyncio.run(pipeline.transcribe_segment(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0, segment_id="seg-1"),
            run,
        ))

        # Window is clipped at the media end: 10s..23s
        assert media.extract_calls == [(10.0, 23.0)]
        assert result.segment_id == "seg-1"
        assert result.adjusted_start_time == pytest.approx(10.0)
        assert result.adjusted_end_time == pytest.approx(16.3)
        assert result.content_match_confidence == 0.0
        assert all(w.start < 6.3 for w in result.words)
        assert result.transcript.startswith("word0 word1")
        assert result.captions[0].text == "word0 word1 word2 word3 word4 word5"
        assert result.title
        assert run.state == PipelineState.DONE
        assert run.history == [
            PipelineState.IDLE,
            PipelineState.PROBING,
            PipelineState.EXTRACTING,
            PipelineState.TRANSCRIBING,
            PipelineState.ADJUSTING,
            PipelineState.LAYING_OUT_CAPTIONS,
            PipelineState.DONE,
        ]
        assert temp_entries(workspace_manager) == []

    def test_untimed_transcript_limited_to_adjusted_duration(self, workspace_manager, source_video):
        """Test transcript and captions cover only the adjusted clip when words lack timing."""
        texts = [f"word{i}" for i in range(30)]
        transcriber = FakeTranscriptionService(make_transcript(" ".join(texts)))
        pipeline = build_pipeline(workspace_manager, FakeMediaService(), transcriber)

        result = asyncio.run(pipeline.transcribe_segment(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0),
        ))

        # 30 words over a 15s window, no sentence end: 5s + 1s extension at 2 words/s
        assert result.adjusted_end_time == pytest.approx(16.0)
        assert result.words == []
        assert result.transcript == " ".join(texts[:12])
        assert sum(len(c.text.split()) for c in result.captions) == 12
        assert result.captions[-1].end <= 6.0

    def test_progress_milestones(self, workspace_manager, source_video):
        """Test transcribe progress milestones."""
        pipeline = build_pipeline(
            workspace_manager, FakeMediaService(), FakeTranscriptionService(sentence_transcript())
        )
        run = PipelineRun(progress=ProgressStream())

        asyncio.run(pipeline.transcribe_segment(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0), run,
        ))

        assert [e.progress for e in run.progress.drain()] == [10, 25, 45, 70, 100]

    def test_retry_gives_up_after_three_attempts(self, workspace_manager, source_video):
        """Test transcription retry stops after three attempts."""
        transcriber = FakeTranscriptionService(make_transcript(""))
        pipeline = build_pipeline(workspace_manager, FakeMediaService(), transcriber)
        run = PipelineRun()

        with pytest.raises(TranscriptionError):
            asyncio.run(pipeline.transcribe_segment(
                SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0), run,
            ))

        assert len(transcriber.calls) == 3
        assert run.transcription_attempts == 3
        assert run.history.count(PipelineState.TRANSCRIBING) == 3
        assert run.state == PipelineState.FAILED
        assert temp_entries(workspace_manager) == []

    def test_retry_succeeds_on_second_attempt(self, workspace_manager, source_video):
        """Test transcription retry recovers on the second attempt."""
        transcriber = FakeTranscriptionService(
            TranscriptionError("503 from provider"),
            sentence_transcript(),
        )
        pipeline = build_pipeline(workspace_manager, FakeMediaService(duration=23.0), transcriber)
        run = PipelineRun()

        result = asyncio.run(pipeline.transcribe_segment(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0), run,
        ))

        assert len(transcriber.calls) == 2
        assert run.transcription_attempts == 2
        assert result.adjusted_end_time == pytest.approx(16.3)

    def test_short_transcript_counts_as_failure(self, workspace_manager, source_video):
        """Test too-short transcript is retried."""
        transcriber = FakeTranscriptionService(make_transcript("Hm."), sentence_transcript())
        pipeline = build_pipeline(workspace_manager, FakeMediaService(), transcriber)

        asyncio.run(pipeline.transcribe_segment(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0),
        ))

        assert len(transcriber.calls) == 2

    def test_content_match_refines_start(self, workspace_manager, source_video):
        """Test strong content match moves the clip start."""
        expected = "the hardest part of building a company is hiring great people"
        search_text = (
            "welcome back everyone to the show today we are talking about a few things "
            "that matter to founders and operators alike so stick around "
            + expected + " and then we moved on"
        )
        media = FakeMediaService()
        transcriber = FakeTranscriptionService(make_transcript(search_text), sentence_transcript())
        pipeline = build_pipeline(workspace_manager, media, transcriber)

        result = asyncio.run(pipeline.transcribe_segment(SegmentRequest(
            filename=source_video,
            start_time=40.0,
            end_time=45.0,
            expected_transcript=expected,
        )))

        assert media.extract_calls[0] == (10.0, 75.0)
        assert result.content_match_confidence == pytest.approx(1.0)
        assert result.adjusted_start_time != pytest.approx(40.0)
        assert media.extract_calls[1][0] == pytest.approx(result.adjusted_start_time)

    def test_weak_content_match_keeps_original_start(self, workspace_manager, source_video):
        """Test weak content match keeps the requested start."""
        media = FakeMediaService()
        transcriber = FakeTranscriptionService(
            make_transcript("nothing relevant was said in this part of the recording at all"),
            sentence_transcript(),
        )
        pipeline = build_pipeline(workspace_manager, media, transcriber)

        result = asyncio.run(pipeline.transcribe_segment(SegmentRequest(
            filename=source_video,
            start_time=40.0,
            end_time=45.0,
            expected_transcript="quarterly revenue numbers exceeded expectations",
        )))

        assert result.content_match_confidence == 0.0
        assert result.adjusted_start_time == pytest.approx(40.0)

    def test_missing_source(self, workspace_manager):
        """Test unknown upload fails before extraction."""
        transcriber = FakeTranscriptionService(sentence_transcript())
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, transcriber)
        run = PipelineRun()

        with pytest.raises(SourceNotFoundError):
            asyncio.run(pipeline.transcribe_segment(
                SegmentRequest(filename="nope.mp4", start_time=1.0, end_time=2.0), run,
            ))

        assert media.extract_calls == []
        assert run.state == PipelineState.FAILED

    @pytest.mark.parametrize("start,end", [(5.0, 5.0), (8.0, 3.0), (-1.0, 4.0), (float("nan"), 4.0)])
    def test_invalid_range(self, workspace_manager, source_video, start, end):
        """Test invalid time ranges are rejected."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        with pytest.raises(SegmentValidationError):
            asyncio.run(pipeline.transcribe_segment(
                SegmentRequest(filename=source_video, start_time=start, end_time=end),
            ))

        assert media.extract_calls == []

    def test_range_clamped_to_media_duration(self, workspace_manager, source_video):
        """Test range end clamped to the probed duration."""
        media = FakeMediaService(duration=12.0)
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        result = asyncio.run(pipeline.transcribe_segment(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0),
        ))

        assert media.extract_calls == [(10.0, 12.0)]
        assert result.adjusted_end_time >= 12.0

    def test_start_beyond_media_end(self, workspace_manager, source_video):
        """Test start past the media end is rejected."""
        pipeline = build_pipeline(
            workspace_manager, FakeMediaService(duration=12.0), FakeTranscriptionService(sentence_transcript())
        )

        with pytest.raises(SegmentValidationError):
            asyncio.run(pipeline.transcribe_segment(
                SegmentRequest(filename=source_video, start_time=30.0, end_time=35.0),
            ))

    def test_fallback_duration_is_not_trusted(self, workspace_manager, source_video):
        """Test fallback duration does not clamp the range."""
        media = FakeMediaService(duration=12.0, degraded=True)
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        asyncio.run(pipeline.transcribe_segment(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0),
        ))

        assert media.extract_calls == [(10.0, 15.0)]

    def test_cancellation_stops_at_next_checkpoint(self, workspace_manager, source_video):
        """Test cancellation stops the run and removes the workspace."""
        transcriber = FakeTranscriptionService(sentence_transcript())
        pipeline = build_pipeline(workspace_manager, FakeMediaService(), transcriber)
        run = PipelineRun()
        transcriber.on_call = lambda n: run.cancel()

        with pytest.raises(PipelineCancelledError):
            asyncio.run(pipeline.transcribe_segment(
                SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0), run,
            ))

        assert len(transcriber.calls) == 1
        assert run.state == PipelineState.FAILED
        assert PipelineState.ADJUSTING not in run.history
        assert temp_entries(workspace_manager) == []

    def test_concurrent_requests_use_separate_workspaces(self, workspace_manager, source_video):
        """Test concurrent runs get separate workspaces."""
        seen = []

        class RecordingMedia(FakeMediaService):
            async def extract_audio_segment(self, media_path, start_time, end_time, output_path):
                seen.append(os.path.dirname(output_path))
                await asyncio.sleep(0)
                return await super().extract_audio_segment(media_path, start_time, end_time, output_path)

        pipeline = build_pipeline(
            workspace_manager, RecordingMedia(), FakeTranscriptionService(sentence_transcript())
        )

        async def run_both():
            request = SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0)
            return await asyncio.gather(
                pipeline.transcribe_segment(request),
                pipeline.transcribe_segment(request),
            )

        first, second = asyncio.run(run_both())

        assert len(set(seen)) == 2
        assert first.adjusted_end_time == second.adjusted_end_time
        assert temp_entries(workspace_manager) == []


class TestRenderClip:
    """Tests for ClipPipeline.render_clip."""

    @pytest.fixture
    def words(self):
        return make_words(["This", "is", "the", "end."])

    def test_pro_render_crops_without_watermark(self, workspace_manager, source_video, words):
        """Test pro render crops and skips the watermark."""
        media = FakeMediaService()
        transcriber = FakeTranscriptionService(sentence_transcript())
        pipeline = build_pipeline(workspace_manager, media, transcriber)
        run = PipelineRun(progress=ProgressStream())

        result = asyncio.run(pipeline.render_clip(ClipRenderRequest(
            filename=source_video,
            start_time=10.0,
            end_time=15.0,
            words=words,
            tier=AccountTier.PRO,
            aspect_ratio="9:16",
            crop_position="center",
            segment_id="seg-1",
        ), run))

        render = media.render_calls[0]
        assert render["start_time"] == pytest.approx(10.0)
        # Last word ends at 1.9s, plus the end buffer
        assert render["duration"] == pytest.approx(1.93)
        assert render["filters"][0] == "crop=405:720:437:0"
        assert render["filters"][1].startswith("ass=")
        assert not any(f.startswith("drawtext") for f in render["filters"])
        assert "\\b1\\fs20}This" in render["captions"]

        assert transcriber.calls == []
        assert media.extract_calls == []
        assert result.caption_mode == CaptionMode.KARAOKE
        assert result.end_time == pytest.approx(11.93)
        assert os.path.isfile(result.file_path)
        assert result.file_size_bytes == os.path.getsize(result.file_path)
        assert workspace_manager.get_clip_path(result.clip_id) == result.file_path
        assert [e.progress for e in run.progress.drain()] == [10, 70, 85, 100]
        assert temp_entries(workspace_manager) == []

    def test_guest_render_watermarks_and_ignores_crop(self, workspace_manager, source_video, words):
        """Test guest render is watermarked and uncropped."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        asyncio.run(pipeline.render_clip(ClipRenderRequest(
            filename=source_video,
            start_time=10.0,
            end_time=15.0,
            words=words,
            tier=AccountTier.GUEST,
            aspect_ratio="9:16",
        )))

        filters = media.render_calls[0]["filters"]
        assert not any(f.startswith("crop=") for f in filters)
        assert filters[-1].startswith("drawtext=text='Made with ClipGenius'")

    def test_pro_render_defaults_to_vertical_center_crop(self, workspace_manager, source_video, words):
        """Test pro renders without an aspect ratio are cropped to 9:16 from the center."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        result = asyncio.run(pipeline.render_clip(ClipRenderRequest(
            filename=source_video, start_time=10.0, end_time=15.0, words=words, tier=AccountTier.PRO,
        )))

        assert media.render_calls[0]["filters"][0] == "crop=405:720:437:0"
        metadata_path = os.path.join(workspace_manager.output_directory, f"{result.clip_id}.json")
        with open(metadata_path, encoding="utf-8") as f:
            assert json.load(f)["aspectRatio"] == "9:16"

    def test_watermark_override(self, workspace_manager, source_video, words):
        """Test explicit watermark flag overrides the tier default."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        asyncio.run(pipeline.render_clip(ClipRenderRequest(
            filename=source_video, start_time=10.0, end_time=15.0, words=words, watermark=False,
        )))

        assert not any(f.startswith("drawtext") for f in media.render_calls[0]["filters"])

    def test_flat_captions_without_words(self, workspace_manager, source_video):
        """Test caption chunks alone render flat captions."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        result = asyncio.run(pipeline.render_clip(ClipRenderRequest(
            filename=source_video,
            start_time=10.0,
            end_time=15.0,
            captions=[CaptionChunk(start=0.0, end=2.0, text="Flat caption line")],
            tier=AccountTier.DEVELOPER,
        )))

        assert result.caption_mode == CaptionMode.FLAT
        assert media.render_calls[0]["duration"] == pytest.approx(5.0)
        assert "}Flat caption line" in media.render_calls[0]["captions"]
        assert media.extract_calls == []

    def test_transcribes_when_nothing_supplied(self, workspace_manager, source_video):
        """Test clip audio is transcribed when no timing is given."""
        media = FakeMediaService()
        transcriber = FakeTranscriptionService(
            make_transcript("This is the end.", make_words(["This", "is", "the", "end."]))
        )
        pipeline = build_pipeline(workspace_manager, media, transcriber)

        result = asyncio.run(pipeline.render_clip(ClipRenderRequest(
            filename=source_video, start_time=10.0, end_time=15.0, tier=AccountTier.PRO,
        )))

        assert media.extract_calls == [(10.0, 15.0)]
        assert len(transcriber.calls) == 1
        assert result.caption_mode == CaptionMode.KARAOKE
        assert result.duration == pytest.approx(1.93)

    def test_rendering_is_repeatable(self, workspace_manager, source_video, words):
        """Test identical requests render identical captions."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))
        request = ClipRenderRequest(
            filename=source_video, start_time=10.0, end_time=15.0, words=words, tier=AccountTier.PRO,
        )

        first = asyncio.run(pipeline.render_clip(request))
        second = asyncio.run(pipeline.render_clip(request))

        assert first.clip_id != second.clip_id
        assert first.duration == second.duration
        assert media.render_calls[0]["captions"] == media.render_calls[1]["captions"]

    def test_transcode_failure_is_not_retried(self, workspace_manager, source_video, words):
        """Test transcode failure is raised without retry."""
        media = FakeMediaService(render_error="Conversion failed!")
        transcriber = FakeTranscriptionService(sentence_transcript())
        pipeline = build_pipeline(workspace_manager, media, transcriber)
        run = PipelineRun()

        with pytest.raises(RenderingError):
            asyncio.run(pipeline.render_clip(ClipRenderRequest(
                filename=source_video, start_time=10.0, end_time=15.0, words=words,
            ), run))

        assert len(media.render_calls) == 1
        assert transcriber.calls == []
        assert run.state == PipelineState.FAILED
        assert temp_entries(workspace_manager) == []
        assert os.listdir(workspace_manager.output_directory) == []

    def test_unknown_tier(self, workspace_manager, source_video, words):
        """Test unknown tier is rejected before rendering."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        with pytest.raises(SegmentValidationError):
            asyncio.run(pipeline.render_clip(ClipRenderRequest(
                filename=source_video, start_time=10.0, end_time=15.0, words=words, tier="platinum",
            )))

        assert media.render_calls == []


class TestRenderPreview:
    """Tests for ClipPipeline.render_preview."""

    def test_renders_unfiltered_segment(self, workspace_manager, source_video):
        """Test preview is cut without filters and its workspace kept for the caller."""
        media = FakeMediaService()
        transcriber = FakeTranscriptionService(sentence_transcript())
        pipeline = build_pipeline(workspace_manager, media, transcriber)
        run = PipelineRun()

        preview = asyncio.run(pipeline.render_preview(
            SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0, segment_id="seg-3"),
            run,
        ))

        assert media.render_calls == [
            {"start_time": 10.0, "duration": 5.0, "filters": [], "captions": None}
        ]
        assert transcriber.calls == []
        assert preview.start_time == pytest.approx(10.0)
        assert preview.duration == pytest.approx(5.0)
        assert os.path.dirname(preview.file_path) == preview.work_dir
        assert os.path.isfile(preview.file_path)
        assert run.state == PipelineState.DONE

        workspace_manager.release(preview.work_dir)
        assert temp_entries(workspace_manager) == []

    def test_render_failure_releases_workspace(self, workspace_manager, source_video):
        """Test a failed preview transcode leaves no workspace behind."""
        media = FakeMediaService(render_error="Conversion failed!")
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))
        run = PipelineRun()

        with pytest.raises(RenderingError):
            asyncio.run(pipeline.render_preview(
                SegmentRequest(filename=source_video, start_time=10.0, end_time=15.0), run,
            ))

        assert run.state == PipelineState.FAILED
        assert temp_entries(workspace_manager) == []

    def test_missing_source(self, workspace_manager):
        """Test preview of an unknown upload is rejected before any workspace is made."""
        media = FakeMediaService()
        pipeline = build_pipeline(workspace_manager, media, FakeTranscriptionService(sentence_transcript()))

        with pytest.raises(SourceNotFoundError):
            asyncio.run(pipeline.render_preview(
                SegmentRequest(filename="nope.mp4", start_time=1.0, end_time=2.0),
            ))

        assert media.render_calls == []
        assert temp_entries(workspace_manager) == []
