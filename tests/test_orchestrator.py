from __future__ import annotations

import pytest

from dtx_scraper.config import SourceConfig
from dtx_scraper.errors import (
    ErrorBudgetExceededError,
    RetriesExhaustedError,
    StoreError,
    TransportError,
)
from dtx_scraper.models import PageStatus, ScrapingOptions, ScrapingStatus
from dtx_scraper.orchestrator import ScrapeOrchestrator
from dtx_scraper.strategies.approved_dtx import ApprovedDtxStrategy

from conftest import BASE_URL, PAGE_2_URL, PAGE_3_URL, FakeHttpClient, blog_page


class RecordingStore:
    """Ledger-only store that keeps every write instead of upserting by URL."""

    def __init__(self):
        self.records = []

    def record_page_scraped(self, source, url, page_number, chart_count, status,
                            error=None, next_url=None):
        self.records.append((url, page_number, chart_count, PageStatus(status), error))

    def is_page_scraped(self, source, url):
        return False

    def get_scraped_pages(self, source):
        return []


def _fetch_error(url):
    return RetriesExhaustedError(url, 4, TransportError(url, "connection reset"))


@pytest.fixture
def strategy() -> ApprovedDtxStrategy:
    return ApprovedDtxStrategy({"bucket_size": 50, "batch_folders": {}})


@pytest.fixture
def two_pages(post_768, post_741) -> dict:
    return {
        BASE_URL: blog_page(post_768, older=PAGE_2_URL),
        PAGE_2_URL: blog_page(post_741),
    }


def test_crawl_follows_older_links_until_the_end(store, source, strategy, two_pages, fake_clock):
    client = FakeHttpClient(two_pages)
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy, ScrapingOptions())

    assert [c.title for c in charts] == ["Bare your teeth", "COLORS"]
    assert client.calls == [BASE_URL, PAGE_2_URL]
    assert orchestrator.progress.status == ScrapingStatus.COMPLETED
    assert orchestrator.page_errors == []
    # one pause between the two pages, taken from the source
    assert fake_clock.sleeps == [0.5]

    pages = store.get_scraped_pages("approved-dtx")
    assert [(p.url, p.page_number, p.charts_extracted, p.status) for p in pages] == [
        (BASE_URL, 1, 1, PageStatus.COMPLETED),
        (PAGE_2_URL, 2, 1, PageStatus.COMPLETED),
    ]
    assert pages[0].next_url == PAGE_2_URL
    assert pages[1].next_url is None


def test_request_delay_option_overrides_source(store, source, strategy, two_pages, fake_clock):
    orchestrator = ScrapeOrchestrator(FakeHttpClient(two_pages), store, sleep=fake_clock.sleep)
    orchestrator.crawl(source, strategy, ScrapingOptions(request_delay=2.0))
    assert fake_clock.sleeps == [2.0]


def test_max_pages_budget(store, source, strategy, two_pages, fake_clock):
    client = FakeHttpClient(two_pages)
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy, ScrapingOptions(max_pages=1))

    assert len(charts) == 1
    assert client.calls == [BASE_URL]
    assert fake_clock.sleeps == []
    assert orchestrator.progress.status == ScrapingStatus.COMPLETED


def test_every_fetch_failing_exhausts_error_budget(source, strategy, fake_clock):
    client = FakeHttpClient({BASE_URL: _fetch_error(BASE_URL)})
    ledger = RecordingStore()
    orchestrator = ScrapeOrchestrator(client, ledger, sleep=fake_clock.sleep)

    with pytest.raises(ErrorBudgetExceededError) as exc_info:
        orchestrator.crawl(source, strategy, ScrapingOptions())

    assert len(exc_info.value.errors) == 6
    assert len(client.calls) == 6
    assert len(ledger.records) == 6
    assert all(r[3] == PageStatus.FAILED for r in ledger.records)
    assert all("connection reset" in r[4] for r in ledger.records)
    assert orchestrator.progress.status == ScrapingStatus.FAILED


def test_tolerated_errors_then_recovery(store, source, strategy, post_768, fake_clock):
    client = FakeHttpClient({
        BASE_URL: [_fetch_error(BASE_URL), _fetch_error(BASE_URL), blog_page(post_768)],
    })
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy, ScrapingOptions())

    assert [c.title for c in charts] == ["Bare your teeth"]
    assert len(orchestrator.page_errors) == 2
    assert orchestrator.progress.status == ScrapingStatus.COMPLETED
    assert store.is_page_scraped("approved-dtx", BASE_URL)


def test_invalid_elements_are_skipped(store, source, strategy, post_768, fake_clock):
    bad_post = '<div class="post">#9. No artist here<br>150BPM : 3.00</div>'
    client = FakeHttpClient({BASE_URL: blog_page(bad_post, post_768)})
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy)

    assert [c.title for c in charts] == ["Bare your teeth"]
    assert orchestrator.page_errors == []


def test_duplicate_posts_on_a_page_are_collapsed(store, source, strategy, post_768, fake_clock):
    client = FakeHttpClient({BASE_URL: blog_page(post_768, post_768)})
    charts = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep).crawl(source, strategy)
    assert len(charts) == 1


def test_skip_existing_still_fetches_for_pagination(store, source, strategy, post_768, post_741,
                                                    fake_clock):
    client = FakeHttpClient({
        BASE_URL: blog_page(post_768, older=PAGE_2_URL),
        PAGE_2_URL: blog_page(post_741, older=PAGE_3_URL),
        PAGE_3_URL: blog_page(),
    })
    store.record_page_scraped("approved-dtx", BASE_URL, 1, 1, PageStatus.COMPLETED)
    store.record_page_scraped("approved-dtx", PAGE_2_URL, 2, 1, PageStatus.COMPLETED)
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy, ScrapingOptions(skip_existing=True))

    # the head page is always re-read; page 2 is only used to find page 3
    assert [c.title for c in charts] == ["Bare your teeth"]
    assert client.calls == [BASE_URL, PAGE_2_URL, PAGE_3_URL]
    assert store.is_page_scraped("approved-dtx", PAGE_3_URL)


def test_resume_starts_after_deepest_completed_page(store, source, strategy, post_741, fake_clock):
    store.record_page_scraped("approved-dtx", BASE_URL, 1, 1, PageStatus.COMPLETED,
                              next_url=PAGE_2_URL)
    client = FakeHttpClient({PAGE_2_URL: blog_page(post_741)})
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy, ScrapingOptions(resume_from_older=True))

    assert [c.title for c in charts] == ["COLORS"]
    assert client.calls == [PAGE_2_URL]
    page_2 = [p for p in store.get_scraped_pages("approved-dtx") if p.url == PAGE_2_URL][0]
    assert page_2.page_number == 2


def test_resume_without_frontier_restarts_at_base(store, source, strategy, two_pages, fake_clock):
    store.record_page_scraped("approved-dtx", PAGE_2_URL, 2, 1, PageStatus.COMPLETED)
    client = FakeHttpClient(two_pages)
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    orchestrator.crawl(source, strategy, ScrapingOptions(resume_from_older=True))

    assert client.calls[0] == BASE_URL


def test_pagination_loop_stops(store, source, strategy, post_768, post_741, fake_clock):
    client = FakeHttpClient({
        BASE_URL: blog_page(post_768, older=PAGE_2_URL),
        PAGE_2_URL: blog_page(post_741, older=BASE_URL),
    })
    orchestrator = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy)

    assert len(charts) == 2
    assert client.calls == [BASE_URL, PAGE_2_URL]
    assert orchestrator.progress.status == ScrapingStatus.COMPLETED


def test_progress_callback_and_cancel(store, source, strategy, two_pages, fake_clock):
    seen = []
    orchestrator = ScrapeOrchestrator(FakeHttpClient(two_pages), store, sleep=fake_clock.sleep)

    def on_progress(progress):
        seen.append((progress.current_page, progress.charts_found, progress.status))
        if progress.current_page == 1:
            orchestrator.cancel()

    charts = orchestrator.crawl(source, strategy, ScrapingOptions(on_progress=on_progress))

    assert len(charts) == 1
    assert seen[0] == (1, 1, ScrapingStatus.RUNNING)
    assert seen[-1][2] == ScrapingStatus.CANCELLED
    assert orchestrator.progress.total_pages == 50
    assert orchestrator.progress.estimated_completion is not None


def test_chart_source_follows_source_name(store, strategy, post_768, fake_clock):
    mirror = SourceConfig(name="approved-dtx-mirror", base_url=BASE_URL,
                          strategy="approved-dtx", rate_limit=0)
    client = FakeHttpClient({BASE_URL: blog_page(post_768)})

    charts = ScrapeOrchestrator(client, store, sleep=fake_clock.sleep).crawl(mirror, strategy)

    assert charts[0].source == "approved-dtx-mirror"
    assert store.is_page_scraped("approved-dtx-mirror", BASE_URL)


class BrokenLedger(RecordingStore):
    """Ledger whose failed-page writes hit a locked database."""

    def record_page_scraped(self, source, url, page_number, chart_count, status,
                            error=None, next_url=None):
        if PageStatus(status) == PageStatus.FAILED:
            raise StoreError(f"Failed to record page {url}: database is locked")
        super().record_page_scraped(source, url, page_number, chart_count, status,
                                    error=error, next_url=next_url)


def test_ledger_failure_on_page_error_keeps_crawling(source, strategy, post_768, fake_clock):
    client = FakeHttpClient({BASE_URL: [_fetch_error(BASE_URL), blog_page(post_768)]})
    ledger = BrokenLedger()
    orchestrator = ScrapeOrchestrator(client, ledger, sleep=fake_clock.sleep)

    charts = orchestrator.crawl(source, strategy, ScrapingOptions())

    assert [c.title for c in charts] == ["Bare your teeth"]
    assert len(orchestrator.page_errors) == 1
    assert "connection reset" in orchestrator.page_errors[0]
    assert "ledger not updated" in orchestrator.page_errors[0]
    assert orchestrator.progress.status == ScrapingStatus.COMPLETED
    assert [r[3] for r in ledger.records] == [PageStatus.COMPLETED]


def test_ledger_failures_still_exhaust_error_budget(source, strategy, fake_clock):
    client = FakeHttpClient({BASE_URL: _fetch_error(BASE_URL)})
    orchestrator = ScrapeOrchestrator(client, BrokenLedger(), sleep=fake_clock.sleep)

    with pytest.raises(ErrorBudgetExceededError):
        orchestrator.crawl(source, strategy, ScrapingOptions())

    assert len(client.calls) == 6
    assert orchestrator.progress.status == ScrapingStatus.FAILED
