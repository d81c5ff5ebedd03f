"""Exception hierarchy for scraping, storage and downloads."""

from typing import List, Optional


class DtxScraperError(Exception):
    """Base error for the whole package."""


# --- transport -------------------------------------------------------------

class TransportError(DtxScraperError):
    """Network failure, timeout or non-2xx status for one request."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class RequestTimeoutError(TransportError):
    def __init__(self, url: str, timeout: float):
        super().__init__(url, f"Request timeout after {timeout}s for {url}")
        self.timeout = timeout


class HttpStatusError(TransportError):
    def __init__(self, url: str, status_code: int, reason: str = ""):
        super().__init__(url, f"HTTP {status_code}: {reason}".rstrip(": "))
        self.status_code = status_code


class RateLimitError(HttpStatusError):
    """HTTP 429. Retried like any other transport error."""

    def __init__(self, url: str, retry_after: Optional[float] = None):
        super().__init__(url, 429, "Too Many Requests")
        self.retry_after = retry_after


class RetriesExhaustedError(TransportError):
    """Raised once every attempt for a URL has failed."""

    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException]):
        super().__init__(url, f"Failed to fetch {url} after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


# --- extraction / crawl ----------------------------------------------------

class ChartValidationError(DtxScraperError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(f"Chart validation failed: {message}")
        self.field = field


class ScrapingError(DtxScraperError):
    """Crawl-level failure, propagated to the caller."""


class SourceUnavailableError(ScrapingError):
    def __init__(self, source_name: str):
        super().__init__(f"Source is unavailable: {source_name}")
        self.source_name = source_name


class StrategyNotFoundError(ScrapingError):
    pass


class ErrorBudgetExceededError(ScrapingError):
    def __init__(self, source_name: str, errors: List[str]):
        super().__init__(
            f"Too many errors while scraping {source_name} "
            f"({len(errors)}): {'; '.join(errors)}"
        )
        self.source_name = source_name
        self.errors = list(errors)


# --- storage ---------------------------------------------------------------

class StoreError(DtxScraperError):
    pass


# --- downloads -------------------------------------------------------------

class DownloadItemError(DtxScraperError):
    """Failure isolated to a single chart download."""

    code = "download_failed"


class ChartNotFoundError(DownloadItemError):
    code = "chart_not_found"

    def __init__(self, chart_id: str):
        super().__init__(f"Chart not found: {chart_id}")
        self.chart_id = chart_id


class NoDownloadSourceError(DownloadItemError):
    code = "no_download_source"

    def __init__(self, chart_id: str):
        super().__init__(f"No download source for chart: {chart_id}")
        self.chart_id = chart_id


class UnsupportedLinkError(DownloadItemError):
    code = "unsupported_link"


class DownloadTimeoutError(DownloadItemError):
    code = "timeout"

    def __init__(self, url: str, timeout: float):
        super().__init__(f"Download timed out after {timeout}s for URL: {url}")
        self.url = url
        self.timeout = timeout


class DownloadFailedError(DownloadItemError):
    code = "download_failed"
