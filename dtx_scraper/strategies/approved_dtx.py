"""ApprovedDTX (approvedtx.blogspot.com): DTXMania drum charts posted one per entry.

A post looks like:

    #768. Bare your teeth
    Bare your teeth / IRyS
    157BPM : 2.90/4.60/6.40/7.40 DL

The DL anchor points at a Google Drive or OneDrive file. Older posts only
link the shared folder holding a batch of 50 charts; those charts are kept
without a download URL.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from ..errors import ChartValidationError
from ..extraction import (
    BPM_LINE_MATCHERS,
    BpmLineMatcher,
    Heading,
    LinkMatcher,
    URL_TAIL,
    find_heading,
    first_match,
    fragment_soup,
    fragment_text,
    generate_chart_id,
    parse_difficulties,
    validate_chart,
)
from ..links import FOLDER_PATTERNS
from ..models import Chart
from ..pagination import BLOGGER_RULES, PaginationResolver
from .base import ScrapingStrategy

logger = logging.getLogger("dtx_scraper")

CHART_MARKER = re.compile(r"#\d+\.")

DOWNLOAD_MATCHERS = (
    LinkMatcher(
        "file-href",
        re.compile(r"^https?://(?:drive\.google\.com/file/d/[\w-]+|1drv\.ms/u/|onedrive\.live\.com/download)", re.I),
        in_href=True,
    ),
    LinkMatcher(
        "file-url-in-text",
        re.compile(rf"https?://(?:drive\.google\.com/file/d/[\w-]+|1drv\.ms/u/){URL_TAIL}", re.I),
    ),
    LinkMatcher(
        "id-param-url-in-text",
        re.compile(rf"https?://drive\.google\.com/(?:uc|open)\?[^\s)\]<>\"']*?\bid=[\w-]+{URL_TAIL}", re.I),
    ),
    LinkMatcher("markdown-dl", re.compile(r"\[DL\]\s*\(([^)\s]+)\)", re.I), group=1),
)


class ApprovedDtxStrategy(ScrapingStrategy):
    name = "approved-dtx"
    base_url = "http://approvedtx.blogspot.com/"

    POST_SELECTORS = ("div.post", "div.post-body", "div.entry-content", "article.post")
    FALLBACK_SELECTOR = "div, article, section"
    TAGS = ("dtx", "drum")
    DEFAULT_BUCKET_SIZE = 50

    def __init__(self, settings: Dict[str, Any] = None,
                 pagination: PaginationResolver = None,
                 bpm_matchers: Sequence[BpmLineMatcher] = BPM_LINE_MATCHERS,
                 download_matchers: Sequence[LinkMatcher] = DOWNLOAD_MATCHERS):
        super().__init__(settings)
        self.pagination = pagination or PaginationResolver(BLOGGER_RULES)
        self.bpm_matchers = tuple(bpm_matchers)
        self.download_matchers = tuple(download_matchers)

    def can_handle(self, url: str) -> bool:
        return "approvedtx.blogspot.com" in url

    # ------------------------------------------------------------------
    # Page -> fragments
    # ------------------------------------------------------------------

    @staticmethod
    def _looks_like_chart(text: str) -> bool:
        return bool(CHART_MARKER.search(text)) and "bpm" in text.lower()

    def get_chart_elements(self, html: str) -> List[Tag]:
        soup = BeautifulSoup(html, "html.parser")

        elements: List[Tag] = []
        for selector in self.POST_SELECTORS:
            elements = [el for el in soup.select(selector) if self._looks_like_chart(el.get_text())]
            if elements:
                break

        if not elements:
            candidates = [
                el for el in soup.select(self.FALLBACK_SELECTOR)
                if len(el.get_text()) > 50 and self._looks_like_chart(el.get_text())
            ]
            # Keep the innermost containers so one post is not read twice
            candidate_ids = {id(el) for el in candidates}
            elements = [
                el for el in candidates
                if not any(id(d) in candidate_ids for d in el.find_all(True))
            ]

        logger.debug(f"[{self.name}] Found {len(elements)} potential chart elements")
        return elements

    # ------------------------------------------------------------------
    # Fragment -> chart
    # ------------------------------------------------------------------

    def extract_chart_from_element(self, element, page_url: str = "") -> Optional[Chart]:
        try:
            soup = fragment_soup(element)
            text = fragment_text(soup)

            heading = find_heading(text)
            if heading is None:
                return None

            line = first_match(self.bpm_matchers, text)
            if line is None or not line.bpm:
                return None  # BPM is mandatory

            download_url = first_match(self.download_matchers, soup, text)
            folder_url = None if download_url else self._batch_folder_url(heading.number)

            img = soup.find("img", src=True)

            return Chart(
                id=self.generate_id(heading.title, line.artist, heading.number),
                title=heading.title,
                artist=line.artist,
                bpm=line.bpm,
                difficulties=parse_difficulties(line.difficulties),
                source=self.name,
                original_page_url=self._find_page_link(soup, heading) or page_url,
                download_url=download_url,
                preview_image_url=img["src"] if img else None,
                folder_url=folder_url,
                tags=list(self.TAGS),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ChartValidationError(
                f"Failed to extract chart from ApprovedDTX element: {e}"
            ) from e

    @staticmethod
    def _find_page_link(soup: Tag, heading: Heading) -> Optional[str]:
        number_ref = re.compile(rf"#{heading.number}(?!\d)")
        title_prefix = heading.title[:20]
        for a in soup.find_all("a", href=True):
            text = a.get_text()
            if number_ref.search(text) or (title_prefix and title_prefix in text):
                return a["href"].strip()
        return None

    def _batch_folder_url(self, number: int) -> Optional[str]:
        folders = self.settings.get("batch_folders") or {}
        if not folders:
            return None
        bucket = number // int(self.settings.get("bucket_size") or self.DEFAULT_BUCKET_SIZE)
        return folders.get(bucket) or folders.get(str(bucket))

    # ------------------------------------------------------------------
    # Capability hooks
    # ------------------------------------------------------------------

    def get_next_page_url(self, current_url: str, html: str) -> Optional[str]:
        return self.pagination.get_next_page_url(current_url, html)

    def validate(self, chart: Chart) -> Chart:
        return validate_chart(chart, FOLDER_PATTERNS)

    def generate_id(self, title: str, artist: str, number: Optional[int] = None) -> str:
        return generate_chart_id(self.name, title, artist, number)
