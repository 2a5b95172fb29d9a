"""
HTTP client for the jobs scraper.

Every request is wrapped with an explicit timeout. Source HTML fetches retry
transient failures (timeouts, aborted or dropped connections) with linear backoff;
non-2xx responses are terminal.
"""
import os
import time
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional
import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 30.0
RETRY_BACKOFF_SECONDS = 0.25

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
PDF_ACCEPT = "application/pdf,*/*;q=0.8"

TRANSIENT_ERROR_MARKERS = (
    "timeout",
    "timed out",
    "abort",
    "network",
    "fetch failed",
    "connection reset",
    "econnreset",
    "socket hang up",
)


class FetchError(Exception):
    """Raised when a URL cannot be fetched."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class HttpStatusError(FetchError):
    """Non-2xx response."""

    def __init__(self, status_code: int, url: Optional[str] = None):
        super().__init__(f"HTTP {status_code} while fetching source.", url)
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """Request exceeded its timeout."""


def is_transient_fetch_error(error: BaseException) -> bool:
    """True for timeouts and network failures, by type or by message."""
    if isinstance(error, HttpStatusError):
        return False
    if isinstance(error, (FetchTimeoutError, httpx.TimeoutException, httpx.NetworkError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def _log_retry(retry_state: RetryCallState):
    error = retry_state.outcome.exception() if retry_state.outcome else None
    url = getattr(error, "url", None) or "unknown"
    logger.warning(
        f"[net] Transient failure on attempt {retry_state.attempt_number} for {url}: {error} - retrying"
    )


class HTTPClient:
    """Async HTTP client shared by one scraper run."""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_backoff_seconds: float = RETRY_BACKOFF_SECONDS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize the client.

        Args:
            user_agent: User-Agent header (default: JOBS_SCRAPER_UA env var or a desktop Chrome UA)
            transport: Optional httpx transport, used by tests to stub the network
            retry_backoff_seconds: Linear backoff step; attempt n waits n * step
            sleep: Coroutine used between retries (default: asyncio.sleep)
        """
        self.user_agent = user_agent or os.getenv("JOBS_SCRAPER_UA", DEFAULT_UA)
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep or asyncio.sleep
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_headers(self, accept: str = HTML_ACCEPT) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.9",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(DEFAULT_TIMEOUT),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HTTPClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def fetch_with_timeout(self, url: str, timeout_ms: int, accept: str = HTML_ACCEPT) -> httpx.Response:
        """
        GET a URL, failing with FetchTimeoutError once timeout_ms elapses.

        Returns:
            The httpx response, whatever its status code
        """
        client = self._get_client()
        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                client.get(url, headers=self._get_headers(accept)),
                timeout=timeout_ms / 1000,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"[net] Timeout fetching {url} after {timeout_ms}ms")
            raise FetchTimeoutError(f"Request timeout after {timeout_ms}ms", url) from e

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(f"[net] GET {response.status_code} {url} ({len(response.content)} bytes, {elapsed_ms}ms)")
        return response

    async def fetch_text(self, url: str, timeout_ms: int, retry_attempts: int) -> str:
        """
        Fetch a page body as text, retrying transient failures.

        Args:
            url: URL to fetch
            timeout_ms: Per-attempt timeout
            retry_attempts: Retries after the first attempt

        Returns:
            Decoded response body
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(0, retry_attempts) + 1),
            wait=wait_incrementing(start=self.retry_backoff_seconds, increment=self.retry_backoff_seconds),
            retry=retry_if_exception(is_transient_fetch_error),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                try:
                    response = await self.fetch_with_timeout(url, timeout_ms)
                except httpx.HTTPError as e:
                    raise FetchError(f"Network error fetching {url}: {e}", url) from e
                if not response.is_success:
                    raise HttpStatusError(response.status_code, url)
                return response.text

    async def fetch_bytes(self, url: str, timeout_ms: int, max_bytes: Optional[int] = None) -> bytes:
        """Fetch a binary asset once, rejecting error statuses and oversized bodies."""
        try:
            response = await self.fetch_with_timeout(url, timeout_ms, accept=PDF_ACCEPT)
        except httpx.HTTPError as e:
            raise FetchError(f"Network error fetching {url}: {e}", url) from e
        if not response.is_success:
            raise HttpStatusError(response.status_code, url)

        body = response.content
        if max_bytes is not None and len(body) > max_bytes:
            raise FetchError(f"Response too large: {len(body)} bytes (limit: {max_bytes})", url)
        return body
