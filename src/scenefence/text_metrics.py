"""Text box measurement for text nodes that do not declare a size."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import ImageFont

DEFAULT_FONT_FAMILY = "sans-serif"
DEFAULT_FONT_SIZE = 14.0
TEXT_METRICS_ENV = "SCENEFENCE_TEXT_METRICS"
ESTIMATE_ADVANCE = 0.6
ESTIMATE_LINE_HEIGHT = 1.2
GENERIC_FONT_FALLBACKS = {
    "sans-serif": ["Helvetica", "Arial", "Liberation Sans", "DejaVu Sans"],
    "serif": ["Times New Roman", "Times", "Liberation Serif", "DejaVu Serif"],
    "monospace": ["Courier New", "Courier", "Liberation Mono", "DejaVu Sans Mono"],
}


class _TextMeasurer:
    """Caches Pillow fonts and exposes width/line height helpers."""

    FONT_DIRS = [
        Path("/System/Library/Fonts"),
        Path("/System/Library/Fonts/Supplemental"),
        Path("/Library/Fonts"),
        Path("~/Library/Fonts").expanduser(),
        Path("/usr/share/fonts"),
        Path("/usr/local/share/fonts"),
        Path("C:/Windows/Fonts"),
    ]

    def __init__(self) -> None:
        self._font_cache: Dict[Tuple[str, int], "ImageFont.ImageFont"] = {}
        self._font_paths: Dict[str, Optional[str]] = {}

    def font(self, size: float, family: Optional[str]) -> "ImageFont.ImageFont":
        key_size = max(1, int(round(size)))
        family = family or DEFAULT_FONT_FAMILY
        cache_key = (family.lower(), key_size)
        if cache_key in self._font_cache:
            return self._font_cache[cache_key]

        candidates: List[str] = []
        for fam in GENERIC_FONT_FALLBACKS.get(family.lower(), [family]):
            resolved = self._locate_font(fam)
            if resolved:
                candidates.append(resolved)
        candidates.append("DejaVuSans.ttf")

        font: Optional["ImageFont.ImageFont"] = None
        for candidate in candidates:
            try:
                font = ImageFont.truetype(candidate, key_size)
                break
            except OSError:
                continue
        if font is None:
            font = ImageFont.load_default(size=key_size)

        self._font_cache[cache_key] = font
        return font

    def measure(self, text: str, size: float, family: Optional[str]) -> float:
        return float(self.font(size, family).getlength(text))

    def line_height(self, size: float, family: Optional[str]) -> float:
        font = self.font(size, family)
        try:
            ascent, descent = font.getmetrics()
        except AttributeError:
            return size * 1.2
        return float(ascent + descent)

    def _locate_font(self, family: str) -> Optional[str]:
        key = family.lower()
        if key in self._font_paths:
            return self._font_paths[key]
        normalized = re.sub(r"[^a-z0-9]+", "", key)
        best_match: Optional[Tuple[int, str]] = None
        for directory in self.FONT_DIRS:
            if not normalized or not directory.exists():
                continue
            for path in directory.rglob("*.ttf"):
                stem = re.sub(r"[^a-z0-9]+", "", path.stem.lower())
                if stem == normalized:
                    score = 0
                elif stem.startswith(normalized):
                    score = 1
                else:
                    continue
                if best_match is None or score < best_match[0]:
                    best_match = (score, str(path))
        resolved = best_match[1] if best_match else None
        self._font_paths[key] = resolved
        return resolved


_TEXT_MEASURER = _TextMeasurer()


def estimate_text_box(text: str, font_size: Optional[float] = None) -> Tuple[float, float]:
    """Font-independent box: a fixed advance per character and line height."""
    size = float(font_size) if font_size else DEFAULT_FONT_SIZE
    return len(text) * size * ESTIMATE_ADVANCE, size * ESTIMATE_LINE_HEIGHT


def measure_text_box(
    text: str, font_size: Optional[float] = None, font_family: Optional[str] = None
) -> Tuple[float, float]:
    """Return ``(width, height)`` of a single line of text.

    Pillow measures with whatever fonts the host has, so results can differ
    between machines. Set ``SCENEFENCE_TEXT_METRICS=estimate`` to use
    :func:`estimate_text_box` instead and get the same boxes everywhere.
    """
    if os.getenv(TEXT_METRICS_ENV, "").strip().lower() == "estimate":
        return estimate_text_box(text, font_size)
    size = float(font_size) if font_size else DEFAULT_FONT_SIZE
    return _TEXT_MEASURER.measure(text, size, font_family), _TEXT_MEASURER.line_height(size, font_family)


__all__ = ["DEFAULT_FONT_SIZE", "TEXT_METRICS_ENV", "estimate_text_box", "measure_text_box"]
