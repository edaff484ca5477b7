"""
Resilient HTTP transport for asset downloads.

Wraps a plain aiohttp GET with a retry policy:
- Timeouts, connection errors, 408/429/5xx are retried with exponential backoff
- 429 honours the Retry-After header
- Any other non-2xx status fails immediately
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..errors import TransferError
from ..stats import ApiCallStatistics

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class FetchedResource:
    """A fully buffered HTTP response body."""
    url: str
    body: bytes
    content_type: Optional[str] = None
    status: int = 200

    @property
    def media_type(self) -> str:
        """Content type without parameters, lower-cased."""
        if not self.content_type:
            return ""
        return self.content_type.split(";")[0].strip().lower()


class Transport(ABC):
    """Fetches the raw bytes behind a URL."""

    @abstractmethod
    async def fetch(self, url: str) -> FetchedResource:
        """Fetch a URL or raise TransferError."""
        pass


class ResilientTransport(Transport):
    """
    aiohttp-backed transport with retry and backoff.

    Usage:
        async with ResilientTransport(max_retries=3) as transport:
            resource = await transport.fetch(url)
    """

    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    def __init__(
        self,
        max_retries: int = 3,
        timeout: int = 60,
        backoff_base: float = 1.0,
        max_retry_after: float = 60.0,
        stats: Optional[ApiCallStatistics] = None,
        session: Optional[ClientSession] = None
    ):
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.max_retry_after = max_retry_after
        self.stats = stats
        self._session = session
        self._owns_session = session is None

    async def connect(self) -> None:
        """Initialize HTTP session."""
        if self._session is None:
            self._session = ClientSession(
                timeout=ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.USER_AGENT}
            )

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def fetch(self, url: str) -> FetchedResource:
        """Fetch a URL with retry logic."""
        if self._session is None:
            await self.connect()

        last_error = "no attempts made"
        last_status = None

        for attempt in range(self.max_retries):
            wait = self.backoff_base * (2 ** attempt)
            loop = asyncio.get_running_loop()
            started = loop.time()
            try:
                async with self._session.get(url) as response:
                    if 200 <= response.status < 300:
                        body = await response.read()
                        self._record(started, 0.0)
                        return FetchedResource(
                            url=url,
                            body=body,
                            content_type=response.headers.get("Content-Type"),
                            status=response.status
                        )

                    last_status = response.status
                    last_error = f"HTTP {response.status}"

                    if response.status not in RETRYABLE_STATUSES:
                        self._record(started, 0.0)
                        raise TransferError(url, last_error, status=response.status)

                    if response.status == 429:
                        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                        if retry_after is not None:
                            wait = min(retry_after, self.max_retry_after)
                        logger.warning(f"Rate limited on {url}, waiting {wait:.1f}s")
                        self._record(started, wait)
                    else:
                        self._record(started, 0.0)

            except asyncio.TimeoutError:
                last_error = "timeout"
                logger.warning(f"Timeout fetching {url}, attempt {attempt + 1}/{self.max_retries}")
            except aiohttp.ClientError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(f"Error fetching {url}: {last_error}, attempt {attempt + 1}/{self.max_retries}")

            if attempt < self.max_retries - 1:
                await asyncio.sleep(wait)

        raise TransferError(url, last_error, status=last_status)

    def _record(self, started: float, rate_limit_wait: float) -> None:
        if self.stats is not None:
            elapsed = asyncio.get_running_loop().time() - started
            self.stats.record_call("asset", elapsed, rate_limit_wait)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
