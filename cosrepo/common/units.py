from __future__ import annotations

from typing import Final

KB: Final[int] = 1024
MB: Final[int] = 1024 * KB
GB: Final[int] = 1024 * MB
TB: Final[int] = 1024 * GB

_UNIT_MULTIPLIERS: Final[dict[str, int]] = {
    "b": 1,
    "k": KB,
    "kb": KB,
    "m": MB,
    "mb": MB,
    "g": GB,
    "gb": GB,
    "t": TB,
    "tb": TB,
}


def parse_bytes(value: int | str) -> int:
    """Parse a byte quantity from an integer or unit-suffixed string.

    Supported string units (case-insensitive):
        b, k, kb, m, mb, g, gb, t, tb

    Args:
        value: Raw byte value as an ``int`` or string with an optional unit
            suffix.

    Returns:
        The parsed value in bytes.

    Raises:
        ValueError: If the input cannot be parsed or contains an unknown unit.
    """
    if isinstance(value, int):
        return value

    normalized_value = str(value).strip().lower()

    if normalized_value.isdigit():
        return int(normalized_value)

    numeric_part = ""
    unit_suffix = ""
    for character in normalized_value:
        if character.isdigit() and not unit_suffix:
            numeric_part += character
        elif not character.isspace():
            unit_suffix += character

    if not numeric_part or not unit_suffix:
        raise ValueError(f"Invalid byte value: {value!r}")

    multiplier = _UNIT_MULTIPLIERS.get(unit_suffix)
    if multiplier is None:
        raise ValueError(f"Unknown byte unit {unit_suffix!r} in {value!r}")
    return int(numeric_part) * multiplier


def format_bytes(value: int) -> str:
    """Render a byte count using the largest unit that divides it exactly."""
    for suffix, multiplier in (("tb", TB), ("gb", GB), ("mb", MB), ("kb", KB)):
        if value and value % multiplier == 0:
            return f"{value // multiplier}{suffix}"
    return f"{value}b"
