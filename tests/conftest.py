"""
Pytest configuration and fixtures.
"""

import os
import sys

import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.services.errors import ExtractionError, RenderingError  # noqa: E402
from app.services.models import MediaProbe, Transcript, Word  # noqa: E402
from app.services.workspace import WorkspaceManager  # noqa: E402


class FakeMediaService:
    """Stands in for ffprobe/ffmpeg; writes placeholder files instead of media."""

    def __init__(self, duration=120.0, degraded=False, extract_error=None, render_error=None):
        self.duration = duration
        self.degraded = degraded
        self.extract_error = extract_error
        self.render_error = render_error
        self.extract_calls = []
        self.render_calls = []

    async def get_duration(self, media_path):
        return MediaProbe(duration=self.duration, degraded=self.degraded)

    async def extract_audio_segment(self, media_path, start_time, end_time, output_path):
        self.extract_calls.append((start_time, end_time))
        if self.extract_error:
            raise ExtractionError(self.extract_error)
        with open(output_path, "wb") as f:
            f.write(b"ID3audio")
        return output_path

    async def render_video(self, input_path, output_path, start_time, duration, video_filters=None):
        filters = list(video_filters or [])
        captions = None
        for video_filter in filters:
            if video_filter.startswith("ass="):
                with open(video_filter[len("ass='"):-1], encoding="utf-8") as f:
                    captions = f.read()
        self.render_calls.append({
            "start_time": start_time,
            "duration": duration,
            "filters": filters,
            "captions": captions,
        })
        if self.render_error:
            raise RenderingError(self.render_error)
        with open(output_path, "wb") as f:
            f.write(b"\x00\x00\x00\x18ftypmp42")
        return output_path


class FakeTranscriptionService:
    """Returns queued transcripts (or raises queued errors) in call order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []
        self.on_call = None

    async def transcribe_audio(self, audio_path, language=None):
        self.calls.append(audio_path)
        if self.on_call is not None:
            self.on_call(len(self.calls))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def make_words(texts, start=0.0, step=0.5, length=0.4):
    """Evenly spaced Word sequence."""
    return [
        Word(text=text, start=round(start + i * step, 3), end=round(start + i * step + length, 3))
        for i, text in enumerate(texts)
    ]


def make_transcript(text, words=()):
    return Transcript(text=text, words=tuple(words))


@pytest.fixture
def workspace_manager(tmp_path):
    """WorkspaceManager rooted in a temporary directory."""
    manager = WorkspaceManager(
        upload_directory=str(tmp_path / "uploads"),
        temp_directory=str(tmp_path / "temp"),
        output_directory=str(tmp_path / "clips"),
    )
    manager.ensure_directories()
    return manager


@pytest.fixture
def source_video(workspace_manager):
    """A placeholder upload; returns its filename."""
    filename = "1718000000000-interview.mp4"
    with open(os.path.join(workspace_manager.upload_directory, filename), "wb") as f:
        f.write(b"\x00\x00\x00\x18ftypmp42source")
    return filename


@pytest.fixture
def fake_media():
    return FakeMediaService()
