"""
Transcript text helpers: artifact cleanup and short clip titles.
"""

import logging
import re

logger = logging.getLogger(__name__)


# Prompt echoes and sign-offs Whisper tends to hallucinate on short or quiet audio
_ARTIFACT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"transcribe accurately and completely\.?\s*",
        r"accurately and completely\.?\s*",
        r"transcribe the complete audio without truncation[.\s]*",
        r"include all spoken words and maintain natural speech patterns[.\s]*",
        r"please transcribe the complete audio[.\s]*",
        r"maintain natural speech patterns and include all spoken words[.\s]*",
        r"this is part \d+ of \d+ of a[.\s]*",
        r"transcription by castingwords",
        r"thank you for watching[.\s]*",
        r"^please transcribe[.\s]*",
        r"^transcribe[.\s]*",
        r"audio segment \d+/\d+[.\s]*",
        r"complete accurate transcription required[.\s]*",
    )
]

_REPEATED_PHRASE = re.compile(r"(.{10,}?)(?:\s+\1)+")

_FILLER_WORDS = {"um", "uh", "like", "you know", "so", "well", "okay", "right"}

# First matching category wins
_TITLE_CATEGORIES = [
    (r"\b(how to|learn|tutorial|guide|tip|trick)\b", "How-To Guide"),
    (r"\b(mistake|error|wrong|avoid|don't|never)\b", "Common Mistakes"),
    (r"\b(secret|hidden|truth|reveal|expose)\b", "Hidden Truth"),
    (r"\b(money|profit|income|earn|make|rich|wealth)\b", "Money Talk"),
    (r"\b(success|achieve|win|accomplish|goal)\b", "Success Story"),
    (r"\b(story|experience|happened|remember|time)\b", "Personal Story"),
    (r"\b(problem|issue|challenge|difficult|hard)\b", "Problem Solving"),
    (r"\b(amazing|incredible|unbelievable|shocking)\b", "Amazing Fact"),
    (r"\b(think|believe|opinion|feel|perspective)\b", "Personal Opinion"),
    (r"\b(business|company|work|job|career)\b", "Business Talk"),
    (r"\b(technology|future|innovation|change)\b", "Tech Innovation"),
    (r"\b(relationship|family|friend|people)\b", "Relationships"),
]
_TITLE_CATEGORIES = [(re.compile(p, re.IGNORECASE), title) for p, title in _TITLE_CATEGORIES]


def clean_transcription_text(text: str) -> str:
    """
    Strip prompt echoes, repeated phrases and doubled punctuation from a transcript.

    Sentence-final punctuation is preserved because the duration adjuster
    looks for it.
    """
    if not text or not isinstance(text, str):
        return ""

    cleaned = text.strip()
    for pattern in _ARTIFACT_PATTERNS:
        cleaned = pattern.sub("", cleaned)

    cleaned = _REPEATED_PHRASE.sub(r"\1", cleaned)

    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = re.sub(r"(?<!\.)\.\s*\.(?!\.)", ".", cleaned)
    cleaned = re.sub(r",\s*,", ",", cleaned)
    cleaned = re.sub(r"^[.,;:\s]+", "", cleaned)
    cleaned = re.sub(r"[,;:\s]+$", "", cleaned)

    if cleaned != text.strip():
        logger.debug(f"Cleaned transcription: {len(text)} -> {len(cleaned)} chars")

    return cleaned


def generate_title_from_transcript(transcript: str) -> str:
    """Derive a short display title for a clip from its transcript."""
    if not transcript or len(transcript) < 10:
        return "Short Clip"

    for pattern, title in _TITLE_CATEGORIES:
        if pattern.search(transcript):
            return title

    words = [
        w for w in transcript.lower().split()
        if re.sub(r"[.,!?]", "", w, count=1) not in _FILLER_WORDS
    ][:50]

    meaningful = [re.sub(r"[.,!?]", "", w, count=1) for w in words[:4]]
    meaningful = [w for w in meaningful if len(w) > 2]
    if len(meaningful) >= 2:
        return " ".join(w[0].upper() + w[1:] for w in meaningful)

    first_sentence = re.split(r"[.!?]", transcript)[0].strip()
    if 5 < len(first_sentence) < 50:
        return first_sentence

    return "Video Highlight"
