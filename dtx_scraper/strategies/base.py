"""Interface every per-site scraping strategy implements."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from bs4 import Tag

from ..models import Chart


class ScrapingStrategy(ABC):
    """Parsing and pagination rules for one source site.

    The crawl loop only talks to a strategy through these methods; strategies
    hold no crawl state.
    """

    name: str = ""
    base_url: str = ""

    def __init__(self, settings: Dict[str, Any] = None):
        self.settings = dict(settings or {})

    @abstractmethod
    def can_handle(self, url: str) -> bool:
        ...

    @abstractmethod
    def get_chart_elements(self, html: str) -> List[Tag]:
        """Return the page fragments that may each hold one chart post."""
        ...

    @abstractmethod
    def extract_chart_from_element(self, element, page_url: str = "") -> Optional[Chart]:
        """Return a Chart, or None when the fragment is not a chart post.

        Raises ChartValidationError only when the fragment breaks the parser.
        """
        ...

    @abstractmethod
    def get_next_page_url(self, current_url: str, html: str) -> Optional[str]:
        ...

    @abstractmethod
    def validate(self, chart: Chart) -> Chart:
        """Raise ChartValidationError, or return the chart ready to store."""
        ...

    @abstractmethod
    def generate_id(self, title: str, artist: str, number: Optional[int] = None) -> str:
        ...
