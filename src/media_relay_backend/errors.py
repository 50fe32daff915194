"""
Exception taxonomy for media relay jobs.

Routes never catch these themselves; ``main`` registers handlers that map
``ValidationError`` to HTTP 400 and every other ``MediaRelayError`` to HTTP 500.
"""

from __future__ import annotations

from typing import Optional


class MediaRelayError(Exception):
    """Base class for all failures surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MediaRelayError):
    status_code = 400


class NotFoundError(MediaRelayError):
    pass


class StorageError(MediaRelayError):
    pass


class FetchError(MediaRelayError):
    pass


class TooManyRedirects(FetchError):
    def __init__(self, url: str, hops: int) -> None:
        super().__init__(f"Too many redirects ({hops}) while fetching {url}")
        self.url = url
        self.hops = hops


class UnexpectedStatus(FetchError):
    def __init__(self, url: str, status: int) -> None:
        super().__init__(f"HTTP {status} while fetching {url}")
        self.url = url
        self.status = status


class FetchTransportError(FetchError):
    pass


class TranscodeError(MediaRelayError):
    pass


class TranscodeFailed(TranscodeError):
    def __init__(self, message: str, returncode: Optional[int] = None, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class TranscodeTimeout(TranscodeError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"ffmpeg timed out after {timeout:g}s and was killed")
        self.timeout = timeout


class MediaTooShortError(TranscodeError):
    def __init__(self, duration: float, minimum: float) -> None:
        super().__init__(f"Source is too short to trim ({duration:.2f}s < {minimum:g}s)")
        self.duration = duration
        self.minimum = minimum
