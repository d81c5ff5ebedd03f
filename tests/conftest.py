from __future__ import annotations

from pathlib import Path

import pytest

from dtx_scraper.config import SourceConfig
from dtx_scraper.db import ChartStore
from dtx_scraper.models import HttpResponse

FIXTURE_DIR = Path(__file__).resolve().parent / "fixtures"

BASE_URL = "http://approvedtx.blogspot.com/"
PAGE_2_URL = "http://approvedtx.blogspot.com/search?updated-max=2022-01-01T00:00:00-08:00"
PAGE_3_URL = "http://approvedtx.blogspot.com/search?updated-max=2021-06-01T00:00:00-08:00"


def read_fixture(name: str) -> str:
    return (FIXTURE_DIR / name).read_text(encoding="utf-8")


def blog_page(*posts: str, older: str | None = None) -> str:
    """Wrap post markup in a minimal Blogger page, with an optional older-posts link."""
    pager = ""
    if older:
        pager = (
            '<div class="blog-pager" id="blog-pager">'
            f'<a class="blog-pager-older-link" href="{older}">Older Posts</a>'
            '<a class="home-link" href="http://approvedtx.blogspot.com/">Home</a>'
            "</div>"
        )
    return (
        "<html><body><div class='blog-posts hfeed'>"
        + "".join(posts)
        + "</div>"
        + pager
        + "</body></html>"
    )


class FakeClock:
    """Manual clock; ``sleep`` advances it and remembers every delay."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeHttpClient:
    """Serves canned bodies by URL.

    A value may be a string (the body), an exception (raised), or a list of
    either, consumed one per request.
    """

    def __init__(self, pages: dict):
        self.pages = pages
        self.calls: list[str] = []

    def get(self, url, extra_headers=None) -> HttpResponse:
        self.calls.append(url)
        value = self.pages[url]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return HttpResponse(status_code=200, headers={}, body=value, url=url, duration=0.0)

    def close(self):
        pass


@pytest.fixture
def post_768() -> str:
    return read_fixture("post_768_bare_your_teeth.html")


@pytest.fixture
def post_741() -> str:
    return read_fixture("post_741_colors.html")


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> ChartStore:
    chart_store = ChartStore(str(tmp_path / "charts.db"))
    yield chart_store
    chart_store.close()


@pytest.fixture
def source() -> SourceConfig:
    return SourceConfig(
        name="approved-dtx",
        base_url=BASE_URL,
        strategy="approved-dtx",
        max_pages=50,
        rate_limit=0.5,
        settings={"bucket_size": 50, "batch_folders": {}},
    )
