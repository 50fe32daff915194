"""
Download remote media to a local path.

Redirects are followed by hand in a bounded loop instead of relying on the
HTTP client, so the hop limit is explicit and a failed download never leaves a
partially written destination behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urljoin

import httpx

from .errors import FetchTransportError, TooManyRedirects, UnexpectedStatus

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
MAX_REDIRECTS = 5


def _discard(path: Path) -> None:
    path.unlink(missing_ok=True)


class RemoteFetcher:
    """
    Streams a URL to disk, following at most ``max_redirects`` redirects.

    The ``httpx.AsyncClient`` is owned by the caller (the application lifespan)
    and must be created with ``follow_redirects=False``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_redirects: int = MAX_REDIRECTS,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        self._client = client
        self.max_redirects = max_redirects
        self.chunk_size = chunk_size

    async def fetch(self, url: str, dest_path: Path) -> str:
        """
        Download ``url`` into ``dest_path``.

        Returns:
            The final URL after redirects

        Raises:
            TooManyRedirects: More than ``max_redirects`` hops were needed
            UnexpectedStatus: The chain ended in a non-200 response
            FetchTransportError: Network or local I/O failure
        """
        current = url
        hops = 0
        try:
            while True:
                async with self._client.stream("GET", current) as response:
                    if response.status_code in REDIRECT_STATUSES:
                        _discard(dest_path)
                        location = response.headers.get("location")
                        if not location:
                            raise UnexpectedStatus(current, response.status_code)
                        hops += 1
                        if hops > self.max_redirects:
                            raise TooManyRedirects(url, hops)
                        current = urljoin(str(response.url), location)
                        logger.debug(f"Redirect {hops} -> {current}")
                        continue

                    if response.status_code != 200:
                        raise UnexpectedStatus(current, response.status_code)

                    with dest_path.open("wb") as buffer:
                        async for chunk in response.aiter_bytes(self.chunk_size):
                            buffer.write(chunk)
                    return current
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            _discard(dest_path)
            raise FetchTransportError(f"Download failed for {current}: {exc}") from exc
        except BaseException:
            _discard(dest_path)
            raise
