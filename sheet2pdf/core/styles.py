"""Cell display text and style extraction for the preview grid."""

import datetime
from typing import Any, Optional

from openpyxl.styles.colors import COLOR_INDEX

# Default Office theme palette, in theme index order.
THEME_COLORS = (
    "FFFFFF", "000000", "EEECE1", "1F497D", "4F81BD", "C0504D",
    "9BBB59", "8064A2", "4BACC6", "F79646", "0000FF", "800080",
)

DEFAULT_FILL = "FFFFFF"
DEFAULT_TEXT = "000000"


def format_cell_value(value: Any) -> str:
    """Render a cell value as the text shown in previews and scanned by detectors."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, datetime.time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def apply_tint(hex_color: str, tint: float) -> str:
    """Lighten (tint > 0) or darken (tint < 0) a 6-digit hex color."""
    if not tint:
        return hex_color.upper()
    channels = []
    for i in (0, 2, 4):
        c = int(hex_color[i:i + 2], 16)
        if tint > 0:
            c = c + (255 - c) * tint
        else:
            c = c * (1 + tint)
        channels.append(max(0, min(255, int(round(c)))))
    return "".join(f"{c:02X}" for c in channels)


def color_to_hex(color: Any, default: str) -> str:
    """
    Resolve an openpyxl Color to 6-digit upper-case hex.

    Handles explicit ARGB, legacy indexed palette entries and theme colors
    with tint. Anything else (auto, system colors, out-of-range indices)
    falls back to `default`.
    """
    if color is None:
        return default

    kind = getattr(color, "type", None)
    if kind == "rgb":
        rgb = color.rgb
        if isinstance(rgb, str) and len(rgb) >= 6:
            return rgb[-6:].upper()
        return default
    if kind == "indexed":
        index = color.indexed
        if index is not None and 0 <= index < len(COLOR_INDEX):
            return COLOR_INDEX[index][-6:].upper()
        return default
    if kind == "theme":
        index = color.theme
        if index is not None and 0 <= index < len(THEME_COLORS):
            return apply_tint(THEME_COLORS[index], color.tint or 0.0)
        return default
    return default


def fill_color(cell: Any) -> str:
    fill = cell.fill
    if fill is None or getattr(fill, "fill_type", None) != "solid":
        return DEFAULT_FILL
    return color_to_hex(fill.fgColor, DEFAULT_FILL)


def text_color(cell: Any) -> str:
    font = cell.font
    if font is None:
        return DEFAULT_TEXT
    return color_to_hex(font.color, DEFAULT_TEXT)


def is_bold(cell: Any) -> bool:
    return bool(cell.font is not None and cell.font.b)


def horizontal_alignment(cell: Any) -> str:
    alignment: Optional[Any] = cell.alignment
    if alignment is None or not alignment.horizontal:
        return "general"
    return str(alignment.horizontal)
