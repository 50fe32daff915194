"""
Parsing helpers for ffmpeg diagnostic output.

ffmpeg prints container information (duration, metadata tags) to stderr even
when the invocation itself fails, which is the normal outcome of a probe run
with no output file. Nothing here looks at exit codes.
"""

from __future__ import annotations

import re
from typing import Dict, Optional

DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
METADATA_HEADER = re.compile(r"^(\s*)Metadata:\s*$")
METADATA_LINE = re.compile(r"^\s*([A-Za-z0-9_\-]+)\s*:\s?(.*)$")


def parse_duration(text: str) -> Optional[float]:
    """
    Extract the first ``Duration: HH:MM:SS[.frac]`` value as seconds.

    Returns:
        Total seconds, or None when no duration is reported (including
        ``Duration: N/A`` for streams without a known length)

    Example:
        >>> parse_duration("  Duration: 00:02:03.50, start: 0.000000")
        123.5
    """
    match = DURATION_PATTERN.search(text or "")
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_metadata_tags(text: str) -> Dict[str, str]:
    """
    Collect ``key : value`` pairs printed under ``Metadata:`` headers.

    Keys are lower-cased. The first occurrence of a key wins, which gives the
    container-level tags precedence over per-stream tags printed later.
    """
    tags: Dict[str, str] = {}
    block_indent: Optional[int] = None
    for line in (text or "").splitlines():
        header = METADATA_HEADER.match(line)
        if header:
            block_indent = len(header.group(1))
            continue
        if block_indent is None:
            continue
        indent = len(line) - len(line.lstrip())
        entry = METADATA_LINE.match(line)
        if indent <= block_indent or not entry:
            block_indent = None
            continue
        key, value = entry.group(1).lower(), entry.group(2).strip()
        if key not in tags and value:
            tags[key] = value
    return tags


def format_timestamp(seconds: float) -> str:
    """
    Render seconds as ``HH:MM:SS.mmm``.

    Example:
        >>> format_timestamp(123.5)
        '00:02:03.500'
    """
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"
