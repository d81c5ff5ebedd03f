"""DTX chart scraper: crawl chart blogs, catalog charts, download archives."""

__version__ = "1.0.0"
