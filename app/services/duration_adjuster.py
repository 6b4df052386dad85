"""
Sentence-aware clip duration adjustment.

Clips are cut from approximate timestamps, which tends to end them mid-word.
These helpers extend a clip so it ends on a sentence boundary (estimated from
the transcript of an extended window) and, at render time, trim it to the last
spoken word when word timings are available.
"""

import logging
import math
import re
from typing import Optional, Sequence

from app.services.models import Word

logger = logging.getLogger(__name__)


SENTENCE_ENDERS = (".", "!", "?", "...")

MIN_TRANSCRIPT_CHARS = 10


def adjust_duration_for_sentences(
    transcript: str,
    nominal_duration: float,
    transcribed_duration: float,
    max_extension: float = 10.0,
) -> float:
    """
    Decide how long a clip should run so it ends on a sentence boundary.

    Speech rate is assumed uniform across the transcribed window, so word
    positions map linearly onto time.

    Args:
        transcript: Text of the extended window (starting at the clip start)
        nominal_duration: Requested clip length in seconds
        transcribed_duration: Length of the audio that was transcribed
        max_extension: Upper bound on the added time

    Returns:
        Adjusted duration in [nominal, nominal + max_extension]
    """
    if not transcript or len(transcript) < MIN_TRANSCRIPT_CHARS or transcribed_duration <= 0:
        return nominal_duration

    words = transcript.strip().split()
    if not words:
        return nominal_duration

    upper = nominal_duration + max_extension
    words_per_second = len(words) / transcribed_duration
    end_index = math.floor(nominal_duration * words_per_second)

    if end_index >= len(words):
        # Already holding every transcribed word; use nearly all of the window
        adjusted = min(transcribed_duration * 0.95, upper)
        logger.info(
            f"Using {adjusted:.1f}s duration ({adjusted - nominal_duration:.1f}s extension for complete transcript)"
        )
        return _clamp(adjusted, nominal_duration, upper)

    search_range = min(math.floor(words_per_second * max_extension), len(words) - end_index)
    for i in range(search_range + 1):
        index = end_index + i
        if index >= len(words):
            break
        word = words[index]
        if word.endswith(SENTENCE_ENDERS):
            additional = i / words_per_second
            logger.info(f"Found sentence ending at word '{word}', extending duration by {additional:.1f}s")
            return _clamp(nominal_duration + additional, nominal_duration, upper)

    # No sentence end in reach: a tenth of the slack, at most 2 seconds
    available = max(0.0, transcribed_duration - nominal_duration)
    extension = min(available * 0.1, min(2.0, max_extension))
    logger.info(f"No sentence ending found, extending duration by {extension:.1f}s")
    return _clamp(nominal_duration + extension, nominal_duration, upper)


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


def _normalize_token(text: str) -> str:
    return re.sub(r"[^\w]", "", text.lower())


def find_last_word_for_transcript(
    words: Sequence[Word],
    transcript_text: str,
    clip_duration: float,
) -> Optional[Word]:
    """
    Find the word a clip should end on.

    Word times are relative to the clip start. Returns the last word inside the
    clip whose text matches the final token of the transcript, else the last
    word inside the clip, else None.
    """
    if not words or not transcript_text:
        return None

    clip_words = [w for w in words if w.start >= 0 and w.end <= clip_duration]
    if not clip_words:
        return None

    tokens = re.sub(r"[^\w\s]", " ", transcript_text.lower()).split()
    if tokens:
        last_token = tokens[-1]
        for word in reversed(clip_words):
            if _normalize_token(word.text) == last_token:
                logger.debug(f"Matched last word '{word.text}' ending at {word.end:.2f}s")
                return word

    logger.debug(f"No exact last-word match, using '{clip_words[-1].text}'")
    return clip_words[-1]


def trim_duration_to_last_word(
    words: Sequence[Word],
    transcript_text: str,
    requested_duration: float,
    buffer_seconds: float = 0.03,
) -> float:
    """Clip duration ending just after the last spoken word, never beyond the request."""
    last_word = find_last_word_for_transcript(words, transcript_text, requested_duration)
    if last_word is None:
        return requested_duration

    trimmed = min(last_word.end + buffer_seconds, requested_duration)
    if trimmed <= 0:
        return requested_duration
    return trimmed
