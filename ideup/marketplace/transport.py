"""Minimal blocking HTTP transport.

Redirects are never followed here; callers see 3xx responses and decide what
to do with the ``Location`` header themselves.
"""

from __future__ import annotations

import logging
import ssl
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import BinaryIO, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import HTTPRedirectHandler, HTTPSHandler, Request, build_opener

from ideup import __version__
from ideup.config.schemas import DEFAULT_TIMEOUT
from ideup.errors import IdeupError

logger = logging.getLogger(__name__)

USER_AGENT = f"ideup/{__version__} (+python)"
CHUNK_SIZE = 64 * 1024


class TransportError(IdeupError):
    """Error transferring data over HTTP."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        plugin_id: str | None = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message, plugin_id)


@dataclass
class HttpResponse:
    """A response whose body has not been read yet."""

    url: str
    status: int
    reason: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: BinaryIO | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status < 400

    def header(self, name: str) -> str | None:
        """Get a header value, case-insensitively."""
        value = self.headers.get(name)
        if value is not None:
            return value
        lowered = name.lower()
        for key, val in self.headers.items():
            if key.lower() == lowered:
                return val
        return None

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        if self.body is None:
            return
        while True:
            chunk = self.body.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        if self.body is not None:
            self.body.close()

    def __enter__(self) -> HttpResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class Transport(Protocol):
    """Anything that can issue a GET and hand back the raw response."""

    def get(self, url: str, timeout: float | None = None) -> HttpResponse: ...


class _NoRedirectHandler(HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[no-untyped-def]
        return None


class UrllibTransport:
    """Transport backed by urllib that reports redirects instead of following them."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
    ):
        """Initialize the transport.

        Args:
            timeout: Connect/read timeout in seconds for every request
            headers: Extra HTTP headers to send
        """
        self._timeout = timeout
        self._headers = {"User-Agent": USER_AGENT, **(headers or {})}
        self._ssl_context = ssl.create_default_context()
        self._opener = build_opener(
            _NoRedirectHandler(), HTTPSHandler(context=self._ssl_context)
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    def get(self, url: str, timeout: float | None = None) -> HttpResponse:
        """Issue a GET request.

        Args:
            url: URL to request
            timeout: Override for the default timeout

        Returns:
            HttpResponse; the caller must close it

        Raises:
            TransportError: If the server can't be reached or times out
        """
        effective_timeout = self._timeout if timeout is None else min(timeout, self._timeout)
        logger.debug("GET %s (timeout=%.1fs)", url, effective_timeout)
        request = Request(url, method="GET")
        for key, value in self._headers.items():
            request.add_header(key, value)

        try:
            raw = self._opener.open(request, timeout=effective_timeout)
        except HTTPError as e:
            # 3xx and error statuses land here; they are still responses
            logger.debug("HTTP %d %s for %s", e.code, e.reason, url)
            return HttpResponse(
                url=url,
                status=e.code,
                reason=str(e.reason),
                headers=dict(e.headers.items()) if e.headers else {},
                body=e,
            )
        except URLError as e:
            logger.error("Failed to connect to %s: %s", url, e.reason)
            raise TransportError(f"Failed to connect to {url}: {e.reason}", url=url) from e
        except TimeoutError as e:
            logger.error("Request timed out for %s", url)
            raise TransportError(f"Request timed out for {url}", url=url) from e

        return HttpResponse(
            url=url,
            status=raw.status,
            reason=raw.reason,
            headers=dict(raw.headers.items()),
            body=raw,
        )


class Deadline:
    """Wall-clock budget for one plugin's network work."""

    def __init__(self, seconds: float | None, label: str = ""):
        self.seconds = seconds
        self.label = label
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> float | None:
        """Seconds left, or None when there is no deadline.

        Raises:
            TransportError: If the deadline has passed
        """
        if self._expires_at is None:
            return None
        left = self._expires_at - time.monotonic()
        if left <= 0:
            raise TransportError(f"Deadline of {self.seconds:.0f}s exceeded for {self.label}")
        return left

    def check(self) -> None:
        self.remaining()
