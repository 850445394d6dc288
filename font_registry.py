from __future__ import annotations

from pathlib import Path

from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont

from log_utils import get_logger

LOGGER = get_logger(__name__)

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def resolve_font_name(font_name: str, fallback_font: str = "Helvetica") -> str:
    """Map *font_name* onto a font ReportLab can draw with.

    Exact names win, then a case/spacing-insensitive match against registered
    and base-14 fonts, then *fallback_font*, then Helvetica.
    """
    if font_is_available(font_name):
        return font_name

    normalized = _normalize_font_name(font_name)
    for candidate in sorted(pdfmetrics.getRegisteredFontNames()) + sorted(_BASE14_FONTS):
        if _normalize_font_name(candidate) == normalized and font_is_available(candidate):
            return candidate

    if font_is_available(fallback_font):
        LOGGER.warning("Font '%s' is unavailable. Falling back to '%s'.", font_name, fallback_font)
        return fallback_font

    LOGGER.warning("Font '%s' is unavailable. Falling back to 'Helvetica'.", font_name)
    return "Helvetica"


def register_fonts_from_directory(fonts_dir: Path) -> dict[str, str]:
    """Register every .ttf/.otf file in *fonts_dir* under its file stem.

    Returns a dict mapping font names to file paths.
    """
    font_map: dict[str, str] = {}
    if not fonts_dir.is_dir():
        return font_map

    font_files = sorted(fonts_dir.glob("*.ttf")) + sorted(fonts_dir.glob("*.otf"))
    for font_file in font_files:
        font_name = font_file.stem
        try:
            pdfmetrics.registerFont(TTFont(font_name, str(font_file)))
        except Exception as exc:  # TTFont raises TTFError and assorted struct errors
            LOGGER.warning("Failed to register %s: %s", font_file.name, exc)
            continue
        font_map[font_name] = str(font_file)
        LOGGER.debug("Registered font: %s", font_name)

    if font_map:
        LOGGER.info("Registered %d custom font(s) from %s", len(font_map), fonts_dir)
    return font_map
