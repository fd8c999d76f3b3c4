"""Unit conversion utilities shared by every metric source.

All magnitude and percentage parsing goes through this module so host and
container metrics stay consistent.

Functions:
    parse_bytes: Human-readable size ("2.098MiB", "14.3MB") to bytes, 0 on failure
    try_parse_bytes: Same as parse_bytes but None on failure
    parse_percent: Percentage string ("0.50%") to float, 0 on failure
    bytes_to_mb: Convert bytes to megabytes
"""

from __future__ import annotations

import math
import re

from container_telemetry.core.constants import BINARY_STEP

# <number><optional K/M/G/T>[i][B], case-insensitive, e.g. "800B", "1.2kB", "3.6GiB"
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?)(I?)(B?)\s*$", re.IGNORECASE)

_SUFFIX_EXPONENTS = {"": 0, "K": 1, "M": 2, "G": 3, "T": 4}


def try_parse_bytes(value: str | None) -> float | None:
    """Convert a size string to a byte count.

    Every suffix is a binary multiple (x1024 per step) whether or not the IEC
    "i" marker is present, matching the container runtime's convention.

    Args:
        value: Size string such as "2.098MiB" or "14.3MB"

    Returns:
        Byte count as float, or None if the string is not a size
    """
    if not value:
        return None
    match = _SIZE_PATTERN.match(value)
    if match is None:
        return None
    number, suffix, iec, _unit = match.groups()
    # A bare "i" with no prefix ("12i") is not a size.
    if iec and not suffix:
        return None
    return float(number) * BINARY_STEP ** _SUFFIX_EXPONENTS[suffix.upper()]


def parse_bytes(value: str | None) -> float:
    """Convert a size string to a byte count, returning 0.0 when unparseable."""
    parsed = try_parse_bytes(value)
    return parsed if parsed is not None else 0.0


def parse_percent(value: str | None) -> float:
    """Convert a percentage string ("12.5%") to a float, returning 0.0 when unparseable."""
    if not value:
        return 0.0
    text = value.strip()
    if text.endswith("%"):
        text = text[:-1].strip()
    try:
        result = float(text)
    except ValueError:
        return 0.0
    if not math.isfinite(result):
        return 0.0
    return result


def bytes_to_mb(byte_count: int | float) -> float:
    """Convert bytes to megabytes.

    Args:
        byte_count: Number of bytes

    Returns:
        Megabytes (float)
    """
    return byte_count / (BINARY_STEP * BINARY_STEP)


def kb_to_bytes(kb: int | float) -> int:
    """Convert kibibytes (as reported by /proc/meminfo) to bytes."""
    return int(kb * BINARY_STEP)
