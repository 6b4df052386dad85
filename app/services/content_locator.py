"""
Content Locator - find where an expected line of speech actually occurs.

Approximate timestamps (from an LLM or a user) are often off by several
seconds. The locator transcribes a widened window around the estimate and
slides the expected text over it to refine the start time.
"""

import logging
import os
import uuid
from typing import Optional

from app.config import get_settings
from app.services.errors import ExtractionError, TranscriptionError
from app.services.media_service import MediaService
from app.services.models import ContentMatch, TimeRange
from app.services.transcription_service import TranscriptionService

logger = logging.getLogger(__name__)


def expected_tokens(expected_text: str) -> list[str]:
    """Lowercased whitespace tokens longer than two characters."""
    return [t for t in expected_text.lower().split() if len(t) > 2]


def find_best_match(search_text: str, expected_text: str) -> tuple[int, int]:
    """
    Slide a snippet of ``len(expected) + 50`` characters over the search text.

    Returns:
        (score, position) of the first position with the highest number of
        expected tokens contained in its snippet. Score 0 when nothing matched.
    """
    search_text = search_text.lower()
    expected_text = expected_text.lower()
    tokens = expected_tokens(expected_text)
    snippet_length = len(expected_text) + 50

    best_score, best_position = 0, 0
    for i in range(len(search_text) - 20):
        snippet = search_text[i:i + snippet_length]
        score = sum(1 for token in tokens if token in snippet)
        if score > best_score:
            best_score, best_position = score, i
            if best_score == len(tokens):
                break

    return best_score, best_position


class ContentLocator:
    """
    Refines an approximate time range by searching for its expected transcript.

    Never raises for extraction or transcription problems: any failure degrades
    to the original range with confidence 0.
    """

    def __init__(
        self,
        media_service: MediaService,
        transcription_service: TranscriptionService,
    ):
        self.settings = get_settings()
        self.media = media_service
        self.transcriber = transcription_service

    async def locate(
        self,
        source_path: str,
        time_range: TimeRange,
        expected_text: Optional[str],
        source_duration: float,
        work_dir: str,
    ) -> ContentMatch:
        """
        Return a refined start/end estimate for ``expected_text``.

        The character position of the best match is mapped back to time
        linearly over the search window. This assumes a uniform speech rate and
        is only an approximation.
        """
        no_match = ContentMatch(start_time=time_range.start, end_time=time_range.end, confidence=0.0)

        if not expected_text or len(expected_text) < self.settings.min_expected_transcript_chars:
            return no_match

        tokens = expected_tokens(expected_text)
        if not tokens:
            return no_match

        radius = max(self.settings.min_search_radius_seconds, time_range.duration * 2)
        search_start = max(0.0, time_range.start - radius)
        search_end = min(source_duration, time_range.end + radius)
        if search_end <= search_start:
            logger.warning(
                f"Empty search window {search_start:.1f}s-{search_end:.1f}s, keeping original range"
            )
            return no_match
        search_duration = search_end - search_start

        logger.info(f"Searching for content match in window {search_start:.1f}s to {search_end:.1f}s")

        audio_path = os.path.join(work_dir, f"search-{uuid.uuid4().hex}.mp3")
        try:
            await self.media.extract_audio_segment(source_path, search_start, search_end, audio_path)
            transcript = await self.transcriber.transcribe_audio(audio_path)
        except (ExtractionError, TranscriptionError, OSError) as e:
            logger.warning(f"Content search failed: {e}")
            return no_match
        finally:
            if os.path.exists(audio_path):
                try:
                    os.remove(audio_path)
                except OSError as e:
                    logger.warning(f"Failed to remove search audio {audio_path}: {e}")

        search_text = transcript.text or ""
        if not search_text:
            return no_match

        score, position = find_best_match(search_text, expected_text)

        if score < len(tokens) * self.settings.content_match_threshold:
            logger.info(f"Content not found in search window. Best match: {score}/{len(tokens)} words")
            return no_match

        ratio = position / len(search_text)
        start = max(0.0, search_start + search_duration * ratio)
        end = start + time_range.duration
        confidence = score / len(tokens)

        logger.info(
            f"Found content match at {start:.1f}s - {end:.1f}s (score {score}/{len(tokens)})"
        )
        return ContentMatch(start_time=start, end_time=end, confidence=confidence)
