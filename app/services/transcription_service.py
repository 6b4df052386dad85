"""
Transcription Service - Audio transcription using Whisper via Groq.
"""

import asyncio
import logging
import os
from typing import Optional

from app.config import get_settings
from app.services.errors import TranscriptionError
from app.services.models import Transcript, TranscriptSegment, Word
from app.services.text_utils import clean_transcription_text

logger = logging.getLogger(__name__)


class TranscriptionService:
    """
    Service for transcribing audio using Whisper models via Groq.

    Groq provides the fastest Whisper inference and returns word-level
    timestamps, which karaoke captions depend on. Without an API key a local
    faster-whisper model is loaded on first use.
    """

    def __init__(self):
        self.settings = get_settings()
        self._groq_client = None
        self._local_model = None
        self._init_client()

    def _init_client(self):
        """Initialize Groq client or local model."""
        if self.settings.groq_api_key:
            try:
                from groq import Groq
                self._groq_client = Groq(api_key=self.settings.groq_api_key)
                logger.info("Groq client initialized for transcription")
            except ImportError:
                logger.warning("groq package not installed. Falling back to local Whisper if needed.")
        else:
            logger.info("GROQ_API_KEY not set. Using local Whisper by default.")

    def _get_local_model(self):
        """Lazy load the local faster-whisper model."""
        if self._local_model is None:
            try:
                from faster_whisper import WhisperModel
                model_size = self.settings.local_whisper_model
                logger.info(f"Loading local Whisper model: {model_size}...")
                self._local_model = WhisperModel(model_size, device="cpu", compute_type="int8")
                logger.info("Local Whisper model loaded successfully")
            except Exception as e:
                logger.error(f"Failed to load local Whisper model: {e}")
                raise TranscriptionError(f"Local Whisper initialization failed: {e}") from e
        return self._local_model

    async def transcribe_audio(
        self,
        audio_path: str,
        language: Optional[str] = None,
    ) -> Transcript:
        """
        Transcribe an audio file.

        Args:
            audio_path: Path to audio file (MP3, WAV, etc.)
            language: Optional language code (configured default when not specified)

        Returns:
            Transcript with cleaned text, word timings and segments (seconds)
        """
        if not os.path.isfile(audio_path):
            raise TranscriptionError(f"Audio file not found: {audio_path}")

        language = language or self.settings.transcription_language

        if not self._groq_client:
            return await self._transcribe_local(audio_path, language)

        logger.info(f"Transcribing audio: {audio_path} (provider=groq)")
        return await self._transcribe_with_groq(
            audio_path=audio_path,
            model=self.settings.transcription_model,
            language=language,
        )

    async def _transcribe_local(self, audio_path: str, language: Optional[str] = None) -> Transcript:
        """Transcribe using local faster-whisper."""
        model = self._get_local_model()

        logger.info(f"Starting local transcription for: {audio_path}")

        # Run in executor to not block async loop
        def _sync_local_transcribe():
            segments, info = model.transcribe(audio_path, beam_size=5, word_timestamps=True, language=language)

            all_segments = []
            all_words = []
            for segment in segments:
                for word in segment.words or []:
                    all_words.append(Word(
                        text=word.word.strip(),
                        start=float(word.start),
                        end=float(word.end),
                    ))
                all_segments.append(TranscriptSegment(
                    start=float(segment.start),
                    end=float(segment.end),
                    text=segment.text.strip(),
                ))
            return all_segments, all_words, info

        loop = asyncio.get_running_loop()
        try:
            segments, words, info = await loop.run_in_executor(None, _sync_local_transcribe)
        except Exception as e:
            raise TranscriptionError(f"Local transcription failed: {e}") from e

        logger.info(f"Local transcription complete: {len(segments)} segments, {len(words)} words")

        return Transcript(
            text=clean_transcription_text(" ".join(s.text for s in segments)),
            words=tuple(words),
            segments=tuple(segments),
            language=info.language,
            duration_seconds=info.duration,
        )

    async def _transcribe_with_groq(
        self,
        audio_path: str,
        model: str,
        language: Optional[str] = None,
    ) -> Transcript:
        """Transcribe using Groq API."""
        # Run in thread pool since Groq client is sync
        loop = asyncio.get_running_loop()

        def _sync_transcribe():
            with open(audio_path, "rb") as audio_file:
                kwargs = {
                    "file": (os.path.basename(audio_path), audio_file),
                    "model": model,
                    "response_format": "verbose_json",
                    "timestamp_granularities": ["word", "segment"],
                    "temperature": 0.0,
                }

                if language and language != "auto":
                    kwargs["language"] = language

                return self._groq_client.audio.transcriptions.create(**kwargs)

        try:
            response = await loop.run_in_executor(None, _sync_transcribe)
        except Exception as e:
            raise TranscriptionError(f"Groq transcription failed: {e}") from e

        return self._parse_whisper_response(response)

    def _get_value(self, obj, key: str, default=None):
        """Get value from object (handles both dict and object attributes)."""
        if isinstance(obj, dict):
            return obj.get(key, default)
        return getattr(obj, key, default)

    def _parse_whisper_response(self, response) -> Transcript:
        """Parse Whisper API response into a Transcript."""
        if isinstance(response, str):
            return Transcript(text=clean_transcription_text(response))

        response_segments = self._get_value(response, "segments") or []
        response_words = self._get_value(response, "words") or []

        logger.debug(f"Response has {len(response_segments)} segments, {len(response_words)} words")

        words: list[Word] = []
        for word_data in response_words:
            text = str(self._get_value(word_data, "word", "")).strip()
            if not text:
                continue
            start = float(self._get_value(word_data, "start", 0) or 0)
            end = float(self._get_value(word_data, "end", 0) or 0)
            words.append(Word(text=text, start=start, end=max(start, end)))
        words.sort(key=lambda w: w.start)

        segments = [
            TranscriptSegment(
                start=float(self._get_value(seg, "start", 0) or 0),
                end=float(self._get_value(seg, "end", 0) or 0),
                text=str(self._get_value(seg, "text", "")).strip(),
            )
            for seg in response_segments
        ]

        full_text = str(self._get_value(response, "text", "") or "").strip()
        if not full_text and segments:
            full_text = " ".join(s.text for s in segments)

        duration = self._get_value(response, "duration")

        return Transcript(
            text=clean_transcription_text(full_text),
            words=tuple(words),
            segments=tuple(segments),
            language=self._get_value(response, "language"),
            duration_seconds=float(duration) if duration is not None else None,
        )
