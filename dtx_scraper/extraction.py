"""Heuristic extraction building blocks shared by scraping strategies.

Field extraction is an ordered list of independent matchers evaluated
first-match-wins. Strategies declare their matchers as data, so a new site
quirk is one more entry in a tuple rather than another branch.
"""

import dataclasses
import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Sequence

from bs4 import BeautifulSoup, Tag

from .errors import ChartValidationError
from .models import Chart

MISSING_DOWNLOAD_TAG = "missing-download"

HEADING_RE = re.compile(r"#(\d+)\.[^\S\n]*([^\n\r]+)")

_BPM_VALUE = r"\d+(?:\.\d+)?(?:[^\S\n]*[-~][^\S\n]*\d+(?:\.\d+)?)?"
_DIFFICULTIES = r"[^\s/]+(?:[^\S\n]*/[^\S\n]*[^\s/]+)*"
URL_TAIL = r"[^\s)\]<>\"']*"


@dataclass(frozen=True)
class Heading:
    number: int
    title: str


@dataclass(frozen=True)
class BpmLine:
    bpm: str
    difficulties: str
    artist: str = ""


@dataclass(frozen=True)
class BpmLineMatcher:
    """Finds the "<bpm>BPM : d1/d2/..." line.

    With ``artist_from_preceding`` the artist is not part of the pattern and is
    taken from the nearest non-blank line before the match: split on "/" and
    keep the last segment.
    """

    name: str
    pattern: Pattern
    artist_from_preceding: bool = False

    def match(self, text: str) -> Optional[BpmLine]:
        m = self.pattern.search(text)
        if not m:
            return None
        if self.artist_from_preceding:
            artist = _artist_before(text[:m.start()])
        else:
            artist = m.group("artist")
        return BpmLine(
            bpm=_squash(m.group("bpm")),
            difficulties=m.group("diffs"),
            artist=(artist or "").strip(),
        )


@dataclass(frozen=True)
class LinkMatcher:
    """Looks for a link either in anchor hrefs or in the fragment text."""

    name: str
    pattern: Pattern
    in_href: bool = False
    group: int = 0

    def match(self, fragment: Tag, text: str) -> Optional[str]:
        if self.in_href:
            for a in fragment.find_all("a", href=True):
                href = a["href"].strip()
                if self.pattern.search(href):
                    return href
            return None
        m = self.pattern.search(text)
        return m.group(self.group).strip() if m else None


BPM_LINE_MATCHERS = (
    BpmLineMatcher(
        "title-artist-bpm",
        re.compile(
            rf"^[^\S\n]*(?P<title>[^\n/]+?)[^\S\n]*/[^\S\n]*(?P<artist>[^\n]+?)[^\S\n]*"
            rf"(?P<bpm>{_BPM_VALUE})[^\S\n]*BPM[^\S\n]*:[^\S\n]*(?P<diffs>{_DIFFICULTIES})",
            re.MULTILINE | re.IGNORECASE,
        ),
    ),
    BpmLineMatcher(
        "bpm-only",
        re.compile(
            rf"(?P<bpm>{_BPM_VALUE})[^\S\n]*BPM[^\S\n]*:[^\S\n]*(?P<diffs>{_DIFFICULTIES})",
            re.IGNORECASE,
        ),
        artist_from_preceding=True,
    ),
)


def _squash(value: str) -> str:
    return re.sub(r"\s+", "", value)


def _artist_before(preceding: str) -> str:
    lines = [line.strip() for line in preceding.splitlines() if line.strip()]
    if not lines:
        return ""
    parts = lines[-1].split("/")
    if len(parts) < 2:
        return ""
    return parts[-1].strip()


def first_match(matchers: Iterable, *args):
    for matcher in matchers:
        value = matcher.match(*args)
        if value:
            return value
    return None


def fragment_soup(element) -> Tag:
    """Re-parse an element (or raw HTML) so it can be modified freely."""
    if isinstance(element, Tag):
        element = str(element)
    if not isinstance(element, str):
        raise TypeError(f"Expected HTML string or Tag, got {type(element).__name__}")
    return BeautifulSoup(element, "html.parser")


def fragment_text(soup: Tag) -> str:
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return soup.get_text()


def find_heading(text: str) -> Optional[Heading]:
    m = HEADING_RE.search(text)
    if not m:
        return None
    title = m.group(2).strip()
    if not title:
        return None
    return Heading(number=int(m.group(1)), title=title)


def parse_difficulties(raw: str) -> List[float]:
    """Split on "/", keep numeric values in (0, 10]."""
    values = []
    for token in (raw or "").split("/"):
        try:
            value = float(token.strip())
        except ValueError:
            continue
        if math.isfinite(value) and 0 < value <= 10:
            values.append(value)
    return values


def slugify(value: str) -> str:
    return re.sub(r"[\W_]+", "-", value.lower()).strip("-")


def generate_chart_id(prefix: str, title: str, artist: str,
                      number: Optional[int] = None, max_length: int = 100) -> str:
    slug = slugify(f"{title} {artist}")
    if not slug and number is not None:
        slug = str(number)
    return f"{prefix}-{slug}"[:max_length].rstrip("-")


def is_folder_url(url: str, folder_patterns: Sequence[Pattern]) -> bool:
    return any(p.search(url) for p in folder_patterns)


def validate_chart(chart: Chart, folder_patterns: Sequence[Pattern] = ()) -> Chart:
    """Validity gate run on every extracted chart before it is kept.

    Returns the chart with folder links moved out of ``download_url``;
    a chart without a per-file link is tagged ``missing-download`` so it can be
    stored now and repaired later.
    """
    if not (chart.title or "").strip():
        raise ChartValidationError("Title is required", "title")
    if not (chart.artist or "").strip():
        raise ChartValidationError("Artist is required", "artist")
    if not (chart.original_page_url or "").strip():
        raise ChartValidationError("Original page URL is required", "original_page_url")
    if not chart.difficulties:
        raise ChartValidationError("At least one difficulty is required", "difficulties")
    for value in chart.difficulties:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 < value <= 10:
            raise ChartValidationError(f"Difficulty out of range: {value!r}", "difficulties")

    download_url = chart.download_url or None
    folder_url = chart.folder_url
    if download_url and is_folder_url(download_url, folder_patterns):
        folder_url = folder_url or download_url
        download_url = None

    tags = list(chart.tags)
    if not download_url and MISSING_DOWNLOAD_TAG not in tags:
        tags.append(MISSING_DOWNLOAD_TAG)

    return dataclasses.replace(chart, download_url=download_url, folder_url=folder_url, tags=tags)
