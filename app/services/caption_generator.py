"""
Caption Generator Service - Serializes caption timelines into ASS subtitles for burn-in.
"""

import logging
import os
from typing import Optional, Sequence

from app.config import CaptionStyle, get_settings
from app.services.models import CaptionChunk

logger = logging.getLogger(__name__)


# ASS alignment values (numpad layout)
# 7 8 9 (top)
# 4 5 6 (middle)
# 1 2 3 (bottom)
ALIGNMENT_MAP = {
    "top": 8,
    "center": 5,
    "bottom": 2,
}


class CaptionGeneratorService:
    """
    Service for generating ASS captions.

    Karaoke mode renders every sub-line at one fixed anchor with the spoken
    word bold and larger; flat mode renders chunk captions as plain lines.
    """

    def __init__(self):
        self.settings = get_settings()

    async def generate_captions(
        self,
        captions: Sequence[CaptionChunk],
        clip_duration: float,
        output_path: str,
        caption_style: Optional[CaptionStyle] = None,
    ) -> Optional[str]:
        """
        Generate an ASS file for a clip.

        Args:
            captions: Karaoke sub-lines or flat caption chunks (clip-relative seconds)
            clip_duration: Clip length in seconds; nothing is shown past it
            output_path: Path to save the .ass file
            caption_style: Optional custom caption styling

        Returns:
            Path to generated .ass file, or None if there was nothing to show
        """
        style = caption_style or self.settings.get_caption_style()

        events = self.build_events(captions, clip_duration, style)
        if not events:
            logger.debug(f"No caption events for clip of {clip_duration:.2f}s")
            return None

        ass_content = self._generate_ass_header(style) + self._generate_events_header() + "\n".join(events) + "\n"

        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(ass_content)

        logger.debug(f"Generated ASS captions: {output_path} ({len(events)} events)")
        return output_path

    def build_events(
        self,
        captions: Sequence[CaptionChunk],
        clip_duration: float,
        style: CaptionStyle,
    ) -> list[str]:
        """Dialogue lines for every caption that is visible inside the clip."""
        position = f"{{\\pos({style.anchor_x},{style.anchor_y})}}"
        events: list[str] = []

        for caption in captions:
            start = min(caption.start, clip_duration)
            end = min(caption.end, clip_duration)
            if start >= end:
                continue

            if caption.highlighted_word_index is None:
                text = self._escape_ass_text(" ".join(caption.text.split()))
            else:
                text = self._karaoke_text(caption, style)

            events.append(
                f"Dialogue: 1,{self._format_ass_time(start)},{self._format_ass_time(end)},"
                f"Default,,0,0,0,,{position}{text}"
            )

        return events

    def _karaoke_text(self, caption: CaptionChunk, style: CaptionStyle) -> str:
        """Chunk text with the highlighted word bold and enlarged."""
        color = self._hex_to_ass(style.primary_color)
        highlight = self._hex_to_ass(style.highlight_color)
        parts: list[str] = []

        for i, word in enumerate(self._escape_ass_text(caption.text).split()):
            if i == caption.highlighted_word_index:
                parts.append(
                    f"{{\\c{highlight}&\\b1\\fs{style.highlight_font_size}}}{word}"
                    f"{{\\b0\\fs{style.font_size}}}"
                )
            else:
                parts.append(f"{{\\c{color}&}}{word}")

        return " ".join(parts)

    def _escape_ass_text(self, text: str) -> str:
        """Neutralize override-block braces and backslash tags in spoken text."""
        return text.replace("\\", "/").replace("{", "(").replace("}", ")")

    def _generate_ass_header(self, style: CaptionStyle) -> str:
        """Generate ASS header with style definitions."""
        primary_color = self._hex_to_ass(style.primary_color)
        highlight_color = self._hex_to_ass(style.highlight_color)
        outline_color = self._hex_to_ass(style.outline_color)
        back_color = self._hex_to_ass(style.back_color, style.back_alpha)

        alignment = ALIGNMENT_MAP[style.position]
        bold = -1 if style.bold else 0

        return f"""[Script Info]
Title: ClipGenius Captions
ScriptType: v4.00+
WrapStyle: 0
ScaledBorderAndShadow: yes
PlayResX: {self.settings.source_frame_width}
PlayResY: {self.settings.source_frame_height}

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
Style: Default,{style.font_name},{style.font_size},{primary_color},{highlight_color},{outline_color},{back_color},{bold},0,0,0,100,100,{style.spacing},0,1,{style.outline_width},{style.shadow_depth},{alignment},15,15,15,1
Style: Highlight,{style.font_name},{style.highlight_font_size},{highlight_color},{primary_color},{outline_color},{back_color},{bold},0,0,0,100,100,{style.spacing},0,1,{style.outline_width},{style.shadow_depth},{alignment},15,15,15,1

"""

    def _generate_events_header(self) -> str:
        """Generate ASS events section header."""
        return "[Events]\nFormat: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text\n"

    def _hex_to_ass(self, hex_color: str, alpha: int = 0) -> str:
        """Convert hex color to ASS format (&HAABBGGRR)."""
        # Remove # if present
        clean = hex_color.lstrip("#")

        # Parse RGB
        r = int(clean[0:2], 16)
        g = int(clean[2:4], 16)
        b = int(clean[4:6], 16)

        # ASS uses &HAABBGGRR format (alpha, blue, green, red)
        return f"&H{alpha:02X}{b:02X}{g:02X}{r:02X}"

    def _format_ass_time(self, seconds: float) -> str:
        """Format seconds to ASS time format (H:MM:SS.CC)."""
        centis = int(round(max(0.0, seconds) * 100))
        hours, rem = divmod(centis, 360000)
        minutes, rem = divmod(rem, 6000)
        secs, centiseconds = divmod(rem, 100)

        return f"{hours}:{minutes:02d}:{secs:02d}.{centiseconds:02d}"
