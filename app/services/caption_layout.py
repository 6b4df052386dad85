"""
Caption Layout Engine - group word timings into caption chunks and karaoke sub-lines.

All times are seconds relative to the clip start.
"""

import logging
from typing import Optional, Sequence

from app.config import get_settings
from app.services.models import CaptionChunk, Word

logger = logging.getLogger(__name__)


class CaptionLayoutEngine:
    """
    Builds the caption timeline for a clip.

    Chunks hold a fixed number of words and never overlap each other. Karaoke
    sub-lines repeat the chunk text once per word with that word highlighted,
    each bounded to its own chunk's span.
    """

    def __init__(self, words_per_caption: Optional[int] = None):
        self.settings = get_settings()
        self.words_per_caption = words_per_caption or self.settings.words_per_caption

    def group_words(self, words: Sequence[Word]) -> list[CaptionChunk]:
        """Partition words into chunks of ``words_per_caption`` in source order."""
        groups = self._partition(words)
        chunks: list[CaptionChunk] = []

        for i, group in enumerate(groups):
            start = group[0].start
            end = group[-1].end
            if i + 1 < len(groups):
                end = min(end, groups[i + 1][0].start)
            end = max(start, end)

            chunks.append(CaptionChunk(
                start=start,
                end=end,
                text=" ".join(w.text for w in group),
            ))

        return chunks

    def karaoke_lines(
        self,
        words: Sequence[Word],
        clip_duration: Optional[float] = None,
    ) -> list[CaptionChunk]:
        """
        One sub-line per word, carrying the index of the highlighted word.

        Sub-lines are clamped to their chunk (and to the clip duration when
        given); lines left with no positive length are dropped.
        """
        groups = self._partition(words)
        chunks = self.group_words(words)
        lines: list[CaptionChunk] = []

        for group, chunk in zip(groups, chunks):
            chunk_end = chunk.end
            if clip_duration is not None:
                chunk_end = min(chunk_end, clip_duration)

            for index, word in enumerate(group):
                start = max(word.start, chunk.start)
                end = min(word.end, chunk_end)
                if start >= end:
                    continue
                lines.append(CaptionChunk(
                    start=start,
                    end=end,
                    text=chunk.text,
                    highlighted_word_index=index,
                ))

        return lines

    def estimate_captions(self, text: str, duration: float) -> list[CaptionChunk]:
        """Spread words evenly across the clip when no word timing exists."""
        words = text.split() if text else []
        if not words or duration <= 0:
            return []

        seconds_per_word = duration / len(words)
        size = self.words_per_caption
        chunks: list[CaptionChunk] = []

        for i in range(0, len(words), size):
            chunks.append(CaptionChunk(
                start=i * seconds_per_word,
                end=min((i + size) * seconds_per_word, duration),
                text=" ".join(words[i:i + size]),
            ))

        return chunks

    def layout(
        self,
        words: Sequence[Word],
        text: str,
        duration: float,
    ) -> list[CaptionChunk]:
        """Chunk captions for a clip, from word timings when present, else estimated."""
        clip_words = [w for w in words if w.start < duration]
        if clip_words:
            return self.group_words(clip_words)

        logger.debug("No word timing available, estimating caption timing")
        return self.estimate_captions(text, duration)

    def _partition(self, words: Sequence[Word]) -> list[list[Word]]:
        size = self.words_per_caption
        return [list(words[i:i + size]) for i in range(0, len(words), size)]
