"""
Utility functions for storage key sanitization and filesystem helpers.

This module provides helper functions for:
- Sanitizing user-provided names into storage keys that survive URLs
- Best-effort cleanup of media titles before they become keys
- Joining caller-supplied folders and filenames into slash-delimited keys
- Ensuring directory creation for temporary job files
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Mapping
from urllib.parse import unquote, urlparse

# Characters that break a storage key or a URL path segment
UNSAFE_KEY_PATTERN = re.compile(r'[#%?&=+<>|\\/:*"]')
WHITESPACE_PATTERN = re.compile(r"\s+")
HYPHEN_RUN_PATTERN = re.compile(r"-{2,}")


def sanitize_key(name: str) -> str:
    """
    Turn an arbitrary name into a single storage key segment.

    Reserved characters are removed, whitespace runs become one hyphen,
    hyphen runs are collapsed and leading/trailing hyphens are trimmed.
    The result is stable: ``sanitize_key(sanitize_key(x)) == sanitize_key(x)``.

    Args:
        name: The original name (title, filename, folder segment)

    Returns:
        The sanitized segment, possibly empty

    Example:
        >>> sanitize_key("My Clip #1.mp4")
        'My-Clip-1.mp4'
        >>> sanitize_key("  --a // b--  ")
        'a-b'
    """
    cleaned = UNSAFE_KEY_PATTERN.sub("", name)
    cleaned = WHITESPACE_PATTERN.sub("-", cleaned)
    cleaned = HYPHEN_RUN_PATTERN.sub("-", cleaned)
    return cleaned.strip("-")


def clean_title(
    title: str,
    strip_prefixes: Iterable[str] = (),
    replacements: Mapping[str, str] | None = None,
) -> str:
    """
    Best-effort title cleanup for naming published media.

    Leading boilerplate matching any of ``strip_prefixes`` (regular expressions,
    matched case-insensitively at the start) is removed once, then each literal
    term in ``replacements`` is swapped case-insensitively. The result always
    goes through :func:`sanitize_key` last, so a substitution can never leave
    behind reserved characters or duplicate hyphens.
    """
    text = title.strip()
    for pattern in strip_prefixes:
        text = re.sub(pattern, "", text, count=1, flags=re.IGNORECASE)
    for term, replacement in (replacements or {}).items():
        if term:
            text = re.sub(re.escape(term), replacement, text, flags=re.IGNORECASE)
    return sanitize_key(text)


def join_key(folder: str | None, filename: str) -> str:
    """
    Build a slash-delimited key from an optional folder and a filename.

    Each folder segment is sanitized on its own and empty segments are dropped,
    so ``"/a//b c/"`` becomes ``"a/b-c"``.
    """
    segments = [sanitize_key(part) for part in (folder or "").split("/")]
    segments = [part for part in segments if part]
    segments.append(filename)
    return "/".join(segments)


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("clip.MP4")
        ('clip', '.mp4')
    """
    path = Path(filename)
    return path.stem, path.suffix.lower()


def filename_from_url(url: str) -> str:
    """Return the decoded last path segment of a URL, or an empty string."""
    path = unquote(urlparse(url).path)
    return path.rstrip("/").rsplit("/", 1)[-1]


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
