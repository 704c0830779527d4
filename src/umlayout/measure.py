"""Text width estimation used when sizing boxes, notes and labels."""
from __future__ import annotations

from typing import Optional

from PIL import ImageFont

from .geometry import longest_line, text_lines


class CharWidthMeasurer:
    """Fixed advance per character; the layout heuristics are tuned against it."""

    def text_width(self, text: Optional[str], char_width: float) -> float:
        return longest_line(text) * char_width


class FontMeasurer:
    """Caches its Pillow font and measures the longest line of a label in pixels.

    The per-element character width passed by the engines is ignored: the font's
    own advances decide the width.
    """

    def __init__(self, font_path: Optional[str] = None, size: float = 14.0) -> None:
        self.font_path = font_path
        self.size = max(1, int(round(size)))
        self._font: Optional["ImageFont.ImageFont"] = None

    def font(self) -> "ImageFont.ImageFont":
        if self._font is not None:
            return self._font
        if self.font_path:
            font = ImageFont.truetype(self.font_path, self.size)
        else:
            font = ImageFont.load_default(size=self.size)
        self._font = font
        return font

    def text_width(self, text: Optional[str], char_width: float) -> float:
        font = self.font()
        return max(float(font.getlength(line)) for line in text_lines(text))
