"""Text formatting for speeds and byte counts."""

from statbar.config import TextFormat, UnitStyle

KIB = 1024
MIB = 1024 * 1024

_FORMATS = {
    TextFormat.THREE_DIGITS: "{:3.0f}{}",
    TextFormat.FOUR_DIGITS: "{:4.0f}{}",
    TextFormat.TWO_DIGITS_DECIMAL: "{:4.1f}{}",
}


def format_speed(
    num_bytes: int,
    text_format: TextFormat = TextFormat.FOUR_DIGITS,
    unit_style: UnitStyle = UnitStyle.STANDARD,
) -> str:
    """Format a per-interval byte count as e.g. ``"  12KB"``."""
    if num_bytes < KIB:
        value = float(num_bytes)
        unit = " b" if unit_style.lowercase else " B"
    elif num_bytes < MIB:
        value = num_bytes / KIB
        unit = "kb" if unit_style.lowercase else "KB"
    else:
        value = num_bytes / MIB
        unit = "mb" if unit_style.lowercase else "MB"
    if unit_style.per_second:
        unit += "/s"
    return _FORMATS[text_format].format(value, unit)


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"
