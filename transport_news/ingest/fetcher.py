"""HTTP fetching for news source pages."""

import asyncio
import socket
import time
from typing import Literal

import aiohttp

from ..config import Settings, SourceConfig, get_settings
from ..logging import get_logger, log_api_request
from ..utils import retry_async

logger = get_logger(__name__)

FetchErrorKind = Literal["timeout", "http_status", "dns", "network"]

MAX_REDIRECTS = 5


class FetchError(Exception):
    """Failure to retrieve a source page."""

    def __init__(
        self,
        kind: FetchErrorKind,
        url: str,
        status: int | None = None,
        code: str | None = None,
        message: str | None = None,
    ):
        self.kind = kind
        self.url = url
        self.status = status
        self.code = code
        detail = message or (f"HTTP {status}" if status else code or kind)
        super().__init__(f"{kind} fetching {url}: {detail}")

    @property
    def retryable(self) -> bool:
        """Timeouts, network errors, 5xx and 429 are worth retrying."""
        if self.kind == "timeout":
            return True
        if self.kind == "http_status":
            return self.status is not None and (self.status >= 500 or self.status == 429)
        if self.kind == "network":
            return self.code not in ("invalid_url", "too_many_redirects")
        return False


def browser_headers(user_agent: str) -> dict[str, str]:
    return {
        'User-Agent': user_agent,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Language': 'en-AU,en;q=0.9',
        'Cache-Control': 'no-cache',
        'Pragma': 'no-cache',
    }


class Fetcher:
    """Fetches raw HTML with timeout, retry and browser-like headers.

    Use as an async context manager; one ``ClientSession`` is shared by
    every request made inside the block.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "Fetcher":
        """Async context manager entry."""
        timeout = aiohttp.ClientTimeout(total=self.settings.fetch_timeout)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            headers=browser_headers(self.settings.user_agent),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _fetch_once(self, url: str) -> str:
        if not self.session:
            raise RuntimeError("Session not initialized. Use async context manager.")

        start = time.time()
        try:
            async with self.session.get(url, max_redirects=MAX_REDIRECTS) as response:
                if response.status >= 400:
                    raise FetchError("http_status", url, status=response.status)
                content = await response.text(errors="replace")
        except asyncio.TimeoutError as e:
            raise FetchError("timeout", url, message=str(e) or "request timed out") from e
        except aiohttp.InvalidURL as e:
            raise FetchError("network", url, code="invalid_url", message=str(e)) from e
        except aiohttp.TooManyRedirects as e:
            raise FetchError("network", url, code="too_many_redirects") from e
        except aiohttp.ClientConnectorError as e:
            if isinstance(e.os_error, socket.gaierror):
                raise FetchError("dns", url, code=str(e.os_error.errno), message=str(e)) from e
            raise FetchError("network", url, code=type(e).__name__, message=str(e)) from e
        except aiohttp.ClientError as e:
            raise FetchError("network", url, code=type(e).__name__, message=str(e)) from e

        logger.debug(**log_api_request(
            "GET", url,
            status_code=response.status,
            response_time=time.time() - start,
            content_length=len(content),
        ))
        return content

    async def fetch(self, source: SourceConfig | str) -> str:
        """Fetch a source page.

        Args:
            source: Source configuration or plain URL

        Returns:
            Response body as text

        Raises:
            FetchError: If the request fails permanently or after all retries
        """
        url = str(source.url) if isinstance(source, SourceConfig) else source

        return await retry_async(
            lambda: self._fetch_once(url),
            max_retries=self.settings.retry_attempts,
            backoff_factor=self.settings.retry_backoff,
            exceptions=(FetchError,),
            should_retry=lambda e: isinstance(e, FetchError) and e.retryable,
        )
