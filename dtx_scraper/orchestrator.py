"""Sequential page crawl for one source: fetch, extract, validate, follow older links."""

import dataclasses
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from .config import SourceConfig
from .db import ChartStore
from .errors import ChartValidationError, ErrorBudgetExceededError, StoreError
from .http_client import HttpClient
from .models import (
    Chart,
    PageStatus,
    ScrapingOptions,
    ScrapingProgress,
    ScrapingStatus,
)
from .strategies.base import ScrapingStrategy

logger = logging.getLogger("dtx_scraper")

MAX_PAGE_ERRORS = 5


class ScrapeOrchestrator:
    def __init__(self, http_client: HttpClient, store: ChartStore, sleep=time.sleep):
        self.http_client = http_client
        self.store = store
        self._sleep = sleep
        self._cancel = threading.Event()
        self.page_errors: List[str] = []
        self.progress: Optional[ScrapingProgress] = None

    def cancel(self):
        """Stop the running crawl before its next page."""
        self._cancel.set()

    def crawl(self, source: SourceConfig, strategy: ScrapingStrategy,
              options: ScrapingOptions = None) -> List[Chart]:
        """Walk the source newest to oldest and return the valid charts found.

        Page failures are recorded in the ledger and tolerated up to
        MAX_PAGE_ERRORS; one more raises ErrorBudgetExceededError.
        """
        options = options or ScrapingOptions()
        max_pages = options.max_pages or source.max_pages
        delay = options.request_delay if options.request_delay is not None else source.rate_limit

        self._cancel.clear()
        self.page_errors = []
        self.progress = ScrapingProgress(
            source_name=source.name, total_pages=max_pages, status=ScrapingStatus.RUNNING,
        )

        charts: List[Chart] = []
        visited = set()
        current_url, page_number = self._start_point(source, options)
        pages_done = 0

        logger.info(f"[{source.name}] Starting crawl at {current_url} (max {max_pages} pages)")

        while current_url and pages_done < max_pages:
            if self._cancel.is_set():
                logger.info(f"[{source.name}] Crawl cancelled after {pages_done} pages")
                self.progress.status = ScrapingStatus.CANCELLED
                break

            pages_done += 1
            page_number += 1
            visited.add(current_url)

            try:
                next_url, page_charts = self._crawl_page(
                    source, strategy, options, current_url, page_number,
                )
                charts.extend(page_charts)
            except Exception as e:
                message = f"Page {page_number} ({current_url}): {e}"
                self.page_errors.append(message)
                logger.error(f"[{source.name}] {message}")
                try:
                    self.store.record_page_scraped(
                        source.name, current_url, page_number, 0, PageStatus.FAILED, error=str(e),
                    )
                except StoreError as store_error:
                    logger.error(f"[{source.name}] {store_error}")
                    self.page_errors[-1] += f" (ledger not updated: {store_error})"
                if len(self.page_errors) > MAX_PAGE_ERRORS:
                    self.progress.status = ScrapingStatus.FAILED
                    self._report(options, pages_done, charts)
                    raise ErrorBudgetExceededError(source.name, self.page_errors) from e

                # No HTML to paginate from: retry the same page on the next turn
                next_url = strategy.get_next_page_url(current_url, "") or current_url
            else:
                if next_url in visited:
                    logger.warning(f"[{source.name}] Pagination loops back to {next_url}, stopping")
                    next_url = None

            self._report(options, pages_done, charts)

            current_url = next_url
            if current_url and pages_done < max_pages and delay > 0:
                self._sleep(delay)

        if self.progress.status == ScrapingStatus.RUNNING:
            self.progress.status = ScrapingStatus.COMPLETED
        self._report(options, pages_done, charts)

        logger.info(
            f"[{source.name}] Crawl {self.progress.status.value}: {pages_done} pages, "
            f"{len(charts)} charts, {len(self.page_errors)} page errors"
        )
        return charts

    def _start_point(self, source: SourceConfig,
                     options: ScrapingOptions) -> Tuple[str, int]:
        """URL to fetch first and the page number preceding it."""
        if not options.resume_from_older:
            return source.base_url, 0

        completed = [
            r for r in self.store.get_scraped_pages(source.name)
            if r.status == PageStatus.COMPLETED
        ]
        if not completed:
            return source.base_url, 0

        deepest = max(completed, key=lambda r: r.page_number)
        if not deepest.next_url:
            logger.info(f"[{source.name}] Archive already crawled to the end, restarting at base URL")
            return source.base_url, 0

        logger.info(
            f"[{source.name}] Resuming after page {deepest.page_number} at {deepest.next_url}"
        )
        return deepest.next_url, deepest.page_number

    def _crawl_page(self, source: SourceConfig, strategy: ScrapingStrategy,
                    options: ScrapingOptions, url: str,
                    page_number: int) -> Tuple[Optional[str], List[Chart]]:
        response = self.http_client.get(url, source.custom_headers)
        html = response.body

        # The head page gains new posts, so it is never skipped
        skip = (
            options.skip_existing
            and url != source.base_url
            and self.store.is_page_scraped(source.name, url)
        )

        page_charts = [] if skip else self._extract_page(source, strategy, html, url)
        next_url = strategy.get_next_page_url(url, html)

        if skip:
            logger.info(f"[{source.name}] Page {page_number} already scraped, skipping content")
        else:
            self.store.record_page_scraped(
                source.name, url, page_number, len(page_charts), PageStatus.COMPLETED,
                next_url=next_url,
            )
            logger.info(f"[{source.name}] Page {page_number}: {len(page_charts)} charts")

        return next_url, page_charts

    @staticmethod
    def _extract_page(source: SourceConfig, strategy: ScrapingStrategy,
                      html: str, page_url: str) -> List[Chart]:
        found = {}
        for element in strategy.get_chart_elements(html):
            try:
                chart = strategy.extract_chart_from_element(element, page_url)
                if chart is None:
                    continue
                chart = strategy.validate(chart)
            except ChartValidationError as e:
                logger.warning(f"[{source.name}] Skipping element on {page_url}: {e}")
                continue

            if chart.source != source.name:
                chart = dataclasses.replace(chart, source=source.name)
            found.setdefault(chart.id, chart)
        return list(found.values())

    def _report(self, options: ScrapingOptions, pages_done: int, charts: List[Chart]):
        progress = self.progress
        progress.current_page = pages_done
        progress.charts_found = len(charts)
        progress.elapsed = (datetime.now() - progress.start_time).total_seconds()
        if pages_done:
            per_page = progress.elapsed / pages_done
            progress.estimated_completion = progress.start_time + timedelta(
                seconds=per_page * progress.total_pages
            )
        if options.on_progress:
            options.on_progress(progress)
