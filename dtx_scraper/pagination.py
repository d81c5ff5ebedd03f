"""Find the "older posts" link of a paginated blog page."""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup

logger = logging.getLogger("dtx_scraper")


@dataclass(frozen=True)
class PageLinkRule:
    """One heuristic: a CSS selector, optionally narrowed by link text or href."""

    name: str
    selector: str = "a[href]"
    text_contains: Tuple[str, ...] = ()
    href_pattern: Optional[str] = None

    def find(self, soup: BeautifulSoup, current_url: str) -> Optional[str]:
        href_re = re.compile(self.href_pattern, re.IGNORECASE) if self.href_pattern else None
        for a in soup.select(self.selector):
            href = (a.get("href") or "").strip()
            if not href or href.startswith(("#", "javascript:", "mailto:")):
                continue
            if self.text_contains:
                text = a.get_text(" ", strip=True).lower()
                if not any(word in text for word in self.text_contains):
                    continue
            if href_re and not href_re.search(href):
                continue
            url = urljoin(current_url, href)
            if url == current_url:
                continue
            return url
        return None


# Blogger templates, most explicit first
BLOGGER_RULES = (
    PageLinkRule("older-link-class", selector="a.blog-pager-older-link[href]"),
    PageLinkRule("older-text", text_contains=("older",)),
    PageLinkRule("next-text", text_contains=("next",)),
    PageLinkRule("updated-max-param", href_pattern=r"[?&]updated-max="),
    PageLinkRule("max-results-param", href_pattern=r"[?&]max-results="),
    PageLinkRule("year-archive", href_pattern=r"/(?:19|20)\d{2}/?(?:\?[^#]*)?$"),
)


class PaginationResolver:
    def __init__(self, rules: Sequence[PageLinkRule] = BLOGGER_RULES):
        self.rules = tuple(rules)

    def get_next_page_url(self, current_url: str, html: str) -> Optional[str]:
        """Return the next (older) page URL, or None at the end of the archive."""
        if not html or not html.strip():
            return None

        soup = BeautifulSoup(html, "html.parser")
        for rule in self.rules:
            url = rule.find(soup, current_url)
            if url:
                logger.debug(f"Pagination via {rule.name}: {url}")
                return url

        logger.debug(f"No pagination link found on {current_url}")
        return None
