"""Scrape entry points: run a source's crawl and merge the charts into the store."""

import logging
import time
from datetime import datetime, timedelta
from typing import Dict, Optional

from .config import AppConfig, SourceConfig
from .db import ChartStore
from .errors import (
    ScrapingError,
    SourceUnavailableError,
    StoreError,
    StrategyNotFoundError,
)
from .http_client import HttpClient
from .models import ScrapingOptions, ScrapingResult
from .orchestrator import ScrapeOrchestrator
from .strategies import ALL_STRATEGIES, get_strategy

logger = logging.getLogger("dtx_scraper")

DEFAULT_SCRAPE_INTERVAL_HOURS = 24


class ScrapingService:
    def __init__(self, config: AppConfig, store: ChartStore, http_client: HttpClient,
                 sleep=time.sleep):
        self.config = config
        self.store = store
        self.http_client = http_client
        self.orchestrator = ScrapeOrchestrator(http_client, store, sleep=sleep)

    def scrape_source(self, source: SourceConfig,
                      options: ScrapingOptions = None) -> ScrapingResult:
        """Crawl one source and store what it yields.

        Disabled sources, unknown strategies and a blown page-error budget
        raise; page and store failures end up in ``result.errors``.
        """
        options = options or ScrapingOptions()
        if not source.enabled:
            raise SourceUnavailableError(source.name)

        strategy = get_strategy(source.strategy, source.settings)
        if not strategy.can_handle(source.base_url):
            raise StrategyNotFoundError(
                f"Strategy '{source.strategy}' cannot handle {source.base_url}"
            )

        start = time.monotonic()
        charts = self.orchestrator.crawl(source, strategy, options)
        result = ScrapingResult(source_name=source.name, charts_found=len(charts))
        result.errors.extend(self.orchestrator.page_errors)

        for chart in charts:
            try:
                if self.store.exists(chart.id):
                    result.charts_duplicated += 1
                    if not options.skip_existing:
                        self.store.upsert(chart)
                else:
                    self.store.upsert(chart)
                    result.charts_added += 1
            except StoreError as e:
                logger.warning(f"[{source.name}] {e}")
                result.errors.append(f"Failed to save chart {chart.id}: {e}")

        result.duration = time.monotonic() - start
        result.next_scrape_time = self.next_scrape_time(source)

        logger.info(
            f"[{source.name}] Done: {result.charts_found} found, {result.charts_added} added, "
            f"{result.charts_duplicated} duplicates, {len(result.errors)} errors "
            f"in {result.duration:.1f}s"
        )
        return result

    def scrape_all_sources(self, options: ScrapingOptions = None) -> Dict[str, ScrapingResult]:
        """Run every enabled source; a hard failure becomes that source's error."""
        results = {}
        for name, source in self.config.sources.items():
            if not source.enabled:
                logger.info(f"[{name}] Disabled in config, skipping")
                continue
            try:
                results[name] = self.scrape_source(source, options)
            except ScrapingError as e:
                logger.error(f"[{name}] Scrape failed: {e}")
                results[name] = ScrapingResult(source_name=name, errors=[str(e)])
        return results

    def cancel(self):
        self.orchestrator.cancel()

    @staticmethod
    def validate_source(source: SourceConfig) -> bool:
        strategy_cls = ALL_STRATEGIES.get(source.strategy)
        if strategy_cls is None:
            return False
        return strategy_cls(source.settings).can_handle(source.base_url)

    @staticmethod
    def next_scrape_time(source: SourceConfig, now: Optional[datetime] = None) -> datetime:
        hours = source.settings.get("scrape_interval_hours", DEFAULT_SCRAPE_INTERVAL_HOURS)
        return (now or datetime.now()) + timedelta(hours=float(hours))
