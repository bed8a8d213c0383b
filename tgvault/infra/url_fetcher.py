"""Download an object body from a client-supplied URL.

Dependencies:
    - httpx
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "tgvault-fetch/1.0"


class UrlFetchError(Exception):
    """Raised when a URL cannot be fetched or is not acceptable."""


class UrlTooLargeError(UrlFetchError):
    """Raised when the remote body exceeds the allowed size."""

    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"Remote body exceeds {max_bytes} bytes")
        self.max_bytes = max_bytes


@dataclass(frozen=True, slots=True)
class FetchedBody:
    data: bytes
    content_type: str | None


def _guess_content_type(url: str) -> str | None:
    guessed, _ = mimetypes.guess_type(urlsplit(url).path)
    return guessed


class UrlFetcher:
    """Streams a URL into memory, stopping as soon as it grows too large."""

    def __init__(
        self,
        *,
        http_client: httpx.Client | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = http_client or httpx.Client(
            timeout=timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": DEFAULT_USER_AGENT},
        )

    def close(self) -> None:
        self._client.close()

    def fetch(self, url: str, *, max_bytes: int) -> FetchedBody:
        """Download ``url``.

        Raises:
            UrlFetchError: If the URL is not http(s), unreachable, or not 2xx.
            UrlTooLargeError: If the body is larger than ``max_bytes``.
        """
        scheme = urlsplit(url).scheme.lower()
        if scheme not in {"http", "https"}:
            raise UrlFetchError("Only http and https URLs are supported")

        try:
            with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise UrlFetchError(
                        f"Failed to download: status code {response.status_code}"
                    )
                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise UrlTooLargeError(max_bytes)
                buffer = bytearray()
                for chunk in response.iter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > max_bytes:
                        raise UrlTooLargeError(max_bytes)
                header_type = response.headers.get("Content-Type")
        except httpx.HTTPError as exc:
            raise UrlFetchError(f"Failed to download: {type(exc).__name__}") from exc

        content_type = None
        if header_type:
            content_type = header_type.split(";", 1)[0].strip().lower() or None
        if content_type in (None, "application/octet-stream"):
            content_type = _guess_content_type(url) or content_type
        return FetchedBody(data=bytes(buffer), content_type=content_type)
