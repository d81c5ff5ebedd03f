"""CLI entry point."""

import argparse
import os
import sys

from .config import load_config
from .db import ChartStore
from .downloader import Downloader
from .errors import ScrapingError
from .http_client import HttpClient
from .logger import setup_logger
from .models import ScrapingOptions
from .rate_limiter import RateLimiter
from .service import ScrapingService


def run_scraper(config, store, source_name=None, options=None):
    """Scrape one source, or every enabled one."""
    http_client = HttpClient(config.http, RateLimiter(config.rate_limit))
    service = ScrapingService(config, store, http_client)

    try:
        if source_name:
            sources_to_run = {source_name: config.sources[source_name]}
        else:
            sources_to_run = config.sources

        for name, source in sources_to_run.items():
            if not source.enabled:
                print(f"[{name}] Disabled in config, skipping.")
                continue

            print(f"\n{'='*60}")
            print(f"  Source: {name}")
            print(f"{'='*60}")

            try:
                result = service.scrape_source(source, options)
            except ScrapingError as e:
                print(f"  FAILED: {e}")
                continue

            print(f"  Found: {result.charts_found}  Added: {result.charts_added}  "
                  f"Duplicates: {result.charts_duplicated}  ({result.duration:.1f}s)")
            for err in result.errors:
                print(f"  ! {err}")
            if result.next_scrape_time:
                print(f"  Next scrape: {result.next_scrape_time:%Y-%m-%d %H:%M}")
    finally:
        http_client.close()


def run_download(config, store, chart_ids, dest=None, concurrency=None,
                 unzip=False, overwrite=False):
    with Downloader(config, store) as downloader:
        options = downloader.default_options(dest)
        if concurrency:
            options.max_concurrency = concurrency
        options.unzip = options.unzip or unzip
        options.overwrite = options.overwrite or overwrite

        result = downloader.download_charts(chart_ids, options)

    for item in result.results:
        if item.success:
            note = " (already present)" if item.skipped else ""
            print(f"  OK   {item.chart_id}: {item.file_path} "
                  f"[{_format_bytes(item.file_size)}, {item.elapsed:.1f}s]{note}")
        else:
            print(f"  FAIL {item.chart_id}: [{item.error_code}] {item.error}")
    print(f"\n{result.successful}/{result.total} downloaded, {result.failed} failed.")
    return result


def list_sources(config):
    print(f"{'Source':<20} {'Strategy':<16} {'Enabled':<8} {'Pages':>6}  Base URL")
    print("-" * 80)
    for name, source in config.sources.items():
        valid = "" if ScrapingService.validate_source(source) else "  (no matching strategy)"
        print(f"{name:<20} {source.strategy:<16} {str(source.enabled):<8} "
              f"{source.max_pages:>6}  {source.base_url}{valid}")


def search(store, text, limit=50):
    charts = store.query_charts(title=text, limit=limit)
    charts += [c for c in store.query_charts(artist=text, limit=limit)
               if c.id not in {x.id for x in charts}]
    if not charts:
        print(f"No charts matching '{text}'.")
        return
    for chart in charts[:limit]:
        diffs = "/".join(f"{d:.2f}" for d in chart.difficulties)
        link = chart.download_url or f"(folder) {chart.folder_url or '-'}"
        print(f"{chart.id}\n    {chart.artist} - {chart.title}  {chart.bpm} BPM  {diffs}\n    {link}")


def show_stats(store):
    """Display chart and crawl ledger statistics."""
    print("\n" + "=" * 70)
    print("  CHART STATISTICS")
    print("=" * 70)
    print(f"{'Source':<20} {'Charts':>8} {'No DL':>8} {'Pages OK':>10} {'Failed':>8}")
    print("-" * 70)

    total_charts = 0
    total_missing = 0
    for source, charts, missing, pages_ok, pages_failed in store.get_stats():
        print(f"{source:<20} {charts:>8} {missing:>8} {pages_ok:>10} {pages_failed:>8}")
        total_charts += charts
        total_missing += missing

    print("-" * 70)
    print(f"{'TOTAL':<20} {total_charts:>8} {total_missing:>8}")
    print()


def _format_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    elif n < 1024 ** 2:
        return f"{n / 1024:.1f} KB"
    elif n < 1024 ** 3:
        return f"{n / 1024 ** 2:.1f} MB"
    else:
        return f"{n / 1024 ** 3:.2f} GB"


def main(argv=None):
    parser = argparse.ArgumentParser(description="DTX Chart Scraper")
    parser.add_argument("--source", type=str, default=None,
                        help="Run a single source instead of all")
    parser.add_argument("--pages", type=int, default=None,
                        help="Maximum pages to crawl (overrides the source setting)")
    parser.add_argument("--skip-existing", action="store_true",
                        help="Skip pages already in the ledger and leave stored charts untouched")
    parser.add_argument("--resume", action="store_true",
                        help="Continue from the oldest page reached by earlier crawls")
    parser.add_argument("--list-sources", action="store_true",
                        help="List configured sources")
    parser.add_argument("--stats", action="store_true",
                        help="Show chart/crawl statistics")
    parser.add_argument("--search", type=str, default=None,
                        help="Search stored charts by title or artist")
    parser.add_argument("--download", type=str, nargs="+", metavar="ID",
                        help="Download charts by id")
    parser.add_argument("--dest", type=str, default=None,
                        help="Download directory")
    parser.add_argument("--concurrency", type=int, default=None,
                        help="Parallel downloads")
    parser.add_argument("--unzip", action="store_true",
                        help="Extract downloaded archives")
    parser.add_argument("--overwrite", action="store_true",
                        help="Re-download files that already exist")
    parser.add_argument("--config", type=str, default="config.yaml",
                        help="Path to config file")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logger(config.log_dir, "DEBUG" if args.verbose else config.log_level)
    if os.path.dirname(config.db_path):
        os.makedirs(os.path.dirname(config.db_path), exist_ok=True)
    store = ChartStore(config.db_path)

    if args.source and args.source not in config.sources:
        parser.error(f"unknown source '{args.source}' (have: {', '.join(config.sources)})")

    if args.list_sources:
        list_sources(config)
        return

    if args.stats:
        show_stats(store)
        return

    if args.search:
        search(store, args.search)
        return

    if args.download:
        result = run_download(config, store, args.download, args.dest, args.concurrency,
                              args.unzip, args.overwrite)
        if result.failed:
            sys.exit(1)
        return

    print("DTX Chart Scraper")
    print(f"Database: {config.db_path}")

    options = ScrapingOptions(
        max_pages=args.pages,
        skip_existing=args.skip_existing,
        resume_from_older=args.resume,
    )
    run_scraper(config, store, args.source, options)
    show_stats(store)


if __name__ == "__main__":
    main()
