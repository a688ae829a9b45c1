"""Text measurement backed by Pillow fonts.

Families are resolved to TrueType file names and handed to Pillow, which
searches the platform font directories itself. Without any TrueType font the
measurer falls back to Pillow's built-in bitmap font, and without that to a
fixed per-character estimate.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import ImageFont

logger = logging.getLogger(__name__)

# Font files tried for the generic families, in order.
FONT_FILES = {
    "sans-serif": ["DejaVuSans.ttf", "LiberationSans-Regular.ttf", "Arial.ttf"],
    "serif": ["DejaVuSerif.ttf", "LiberationSerif-Regular.ttf", "Times New Roman.ttf"],
    "monospace": ["DejaVuSansMono.ttf", "LiberationMono-Regular.ttf", "Courier New.ttf"],
}


def _font_files(family: str) -> List[str]:
    generic = FONT_FILES.get(family.lower())
    if generic is not None:
        return generic
    compact = family.replace(" ", "")
    return [f"{family}.ttf", f"{compact}.ttf", f"{compact}-Regular.ttf"] + FONT_FILES["sans-serif"]


class TextMeasurer:
    """Caches Pillow fonts per (family, size); safe to share between threads."""

    def __init__(self) -> None:
        self._fonts: Dict[Tuple[str, int], Optional[ImageFont.ImageFont]] = {}
        self._lock = threading.Lock()

    def font(self, size: float, family: Optional[str]) -> Optional[ImageFont.ImageFont]:
        key = ((family or "sans-serif").lower(), max(1, int(round(size))))
        with self._lock:
            if key not in self._fonts:
                self._fonts[key] = self._load(*key)
            return self._fonts[key]

    @staticmethod
    def _load(family: str, size: int) -> Optional[ImageFont.ImageFont]:
        for filename in _font_files(family):
            try:
                return ImageFont.truetype(filename, size)
            except OSError:
                continue
        logger.debug("no TrueType font for %s; using Pillow default", family)
        try:
            return ImageFont.load_default()
        except OSError:
            return None

    def measure(self, text: str, size: float, family: Optional[str]) -> float:
        font = self.font(size, family)
        if font is None:
            return 0.6 * size * len(text)
        return float(font.getlength(text))

    def metrics(self, size: float, family: Optional[str]) -> Tuple[float, float, float]:
        """Return ``(ascent, descent, line_height)``."""
        font = self.font(size, family)
        if not isinstance(font, ImageFont.FreeTypeFont):
            return 0.8 * size, 0.2 * size, size
        ascent, descent = font.getmetrics()
        return float(ascent), float(descent), float(ascent + descent)

    def text_size(
        self, lines: Sequence[str], size: float, family: Optional[str]
    ) -> Tuple[float, float]:
        if not lines:
            return 0.0, 0.0
        ascent, descent, line_height = self.metrics(size, family)
        width = max(self.measure(line, size, family) for line in lines)
        height = ascent + descent + (len(lines) - 1) * line_height
        return width, height


TEXT_MEASURER = TextMeasurer()


__all__ = ["TextMeasurer", "TEXT_MEASURER", "FONT_FILES"]
