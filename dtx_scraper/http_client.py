"""HTTP client for page fetches: rate limiting, retries with exponential backoff.

httpx decodes ``gzip``/``deflate`` bodies according to Content-Encoding; the
decoded bytes are turned into text as UTF-8.
"""

import logging
import time
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

from .config import HttpConfig, RateLimitConfig
from .errors import (
    HttpStatusError,
    RateLimitError,
    RequestTimeoutError,
    RetriesExhaustedError,
    TransportError,
)
from .models import HttpResponse
from .rate_limiter import RateLimiter

logger = logging.getLogger("dtx_scraper")

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


class HttpClient:
    def __init__(self, config: HttpConfig = None, rate_limiter: RateLimiter = None,
                 headers: Dict[str, str] = None,
                 transport: Optional[httpx.BaseTransport] = None,
                 sleep=time.sleep):
        self.config = config or HttpConfig()
        self.rate_limiter = rate_limiter or RateLimiter(RateLimitConfig())
        self.headers = {"User-Agent": self.config.user_agent, **BROWSER_HEADERS, **(headers or {})}
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=True,
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    def close(self):
        if self._client and not self._client.is_closed:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get(self, url: str, extra_headers: Dict[str, str] = None) -> HttpResponse:
        """Fetch ``url`` as text. Raises RetriesExhaustedError when every attempt fails."""
        scheme = urlparse(url).scheme
        if scheme not in ("http", "https"):
            raise TransportError(url, f"Unsupported URL scheme '{scheme}' for {url}")

        start = time.monotonic()
        attempts = self.config.max_retries + 1
        last_error: Optional[TransportError] = None

        for attempt in range(attempts):
            self.rate_limiter.check_limit()
            try:
                response = self._request(url, extra_headers or {})
                response.duration = time.monotonic() - start
                logger.debug(f"GET {url} - {response.status_code} in {response.duration:.2f}s")
                return response
            except TransportError as e:
                last_error = e
                if attempt < attempts - 1:
                    wait = self.config.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Retry {attempt + 1}/{self.config.max_retries} for {url}: {e} (wait {wait}s)"
                    )
                    self._sleep(wait)

        raise RetriesExhaustedError(url, attempts, last_error) from last_error

    def _request(self, url: str, extra_headers: Dict[str, str]) -> HttpResponse:
        try:
            resp = self.client.get(url, headers=extra_headers)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(url, self.config.timeout) from e
        except httpx.HTTPError as e:
            raise TransportError(url, f"{type(e).__name__}: {e}") from e

        if resp.status_code == 429:
            raise RateLimitError(url, _retry_after(resp))
        if not 200 <= resp.status_code < 300:
            raise HttpStatusError(url, resp.status_code, resp.reason_phrase)

        return HttpResponse(
            status_code=resp.status_code,
            headers=dict(resp.headers),
            body=resp.content.decode("utf-8", errors="replace"),
            url=str(resp.url),
            duration=0.0,
        )


def _retry_after(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None
