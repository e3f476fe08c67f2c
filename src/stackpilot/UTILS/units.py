"""
Utilities for converting compose duration and size strings.
"""
import re
from typing import Union

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(us|ms|h|m|s)')
_DURATION_UNITS = {'us': 1e-6, 'ms': 1e-3, 's': 1.0, 'm': 60.0, 'h': 3600.0}

_MEMORY_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([kmgt]?)(i?b)?\s*$', re.IGNORECASE)
_MEMORY_UNITS = {'': 1, 'k': 1024, 'm': 1024 ** 2, 'g': 1024 ** 3, 't': 1024 ** 4}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Converts a compose duration such as ``1m30s`` or ``500ms`` to seconds.
    Bare numbers are taken as seconds.

    :raises ValueError: If the string is not a valid duration.
    """
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip()
    if not text:
        raise ValueError("Empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


def format_duration(seconds: float) -> str:
    """
    Renders seconds back into compose duration syntax.
    """
    if seconds == int(seconds):
        seconds = int(seconds)
        if seconds and seconds % 3600 == 0:
            return f"{seconds // 3600}h"
        if seconds and seconds % 60 == 0:
            return f"{seconds // 60}m"
        return f"{seconds}s"
    return f"{int(round(seconds * 1000))}ms"


def parse_memory(value: Union[str, int]) -> int:
    """
    Converts a memory size such as ``512m``, ``1GB`` or ``256MiB`` to bytes.

    :raises ValueError: If the string is not a valid size.
    """
    if isinstance(value, int):
        return value
    match = _MEMORY_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid memory size: {value!r}")
    number, unit = match.group(1), match.group(2).lower()
    return int(float(number) * _MEMORY_UNITS[unit])
