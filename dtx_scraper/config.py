"""YAML config loader."""

from dataclasses import dataclass, field
from typing import Any, Dict

import yaml

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


@dataclass
class HttpConfig:
    timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 1.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass
class RateLimitConfig:
    requests_per_second: int = 1
    requests_per_minute: int = 30
    requests_per_hour: int = 1000


@dataclass
class DownloadConfig:
    download_dir: str = "downloads"
    max_concurrency: int = 3
    timeout_per_item: float = 30.0
    overwrite: bool = False
    organize_by_source: bool = True
    unzip: bool = False
    keep_archive: bool = False
    max_file_size: int = 524288000


@dataclass(frozen=True)
class SourceConfig:
    """One crawlable site. Not mutated while a crawl runs."""

    name: str
    base_url: str
    strategy: str
    enabled: bool = True
    max_pages: int = 50
    rate_limit: float = 1.0  # seconds between pages
    custom_headers: Dict[str, str] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)
    description: str = ""


DEFAULT_SOURCES = {
    "approved-dtx": SourceConfig(
        name="approved-dtx",
        base_url="http://approvedtx.blogspot.com/",
        strategy="approved-dtx",
        description="ApprovedDTX Blogger archive",
        settings={"bucket_size": 50, "batch_folders": {}, "scrape_interval_hours": 24},
    ),
}


@dataclass
class AppConfig:
    data_dir: str = "data"
    db_path: str = "charts.db"
    log_dir: str = "logs"
    log_level: str = "INFO"
    http: HttpConfig = field(default_factory=HttpConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    sources: Dict[str, SourceConfig] = field(default_factory=lambda: dict(DEFAULT_SOURCES))


def _pick(cls, raw: dict) -> dict:
    return {k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__}


def parse_sources(raw_sources: dict) -> Dict[str, SourceConfig]:
    sources = {}
    for name, src_raw in (raw_sources or {}).items():
        values = _pick(SourceConfig, src_raw)
        values["name"] = name
        values.setdefault("strategy", name)
        if "base_url" not in values:
            default = DEFAULT_SOURCES.get(name)
            if default is None:
                raise ValueError(f"Source '{name}' has no base_url")
            values["base_url"] = default.base_url
        values["custom_headers"] = dict(values.get("custom_headers") or {})
        values["settings"] = dict(values.get("settings") or {})
        sources[name] = SourceConfig(**values)
    return sources


def load_config(config_path: str = "config.yaml") -> AppConfig:
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    sources = parse_sources(raw.get("sources", {})) or dict(DEFAULT_SOURCES)

    return AppConfig(
        data_dir=raw.get("data_dir", "data"),
        db_path=raw.get("db_path", "charts.db"),
        log_dir=raw.get("log_dir", "logs"),
        log_level=str(raw.get("log_level", "INFO")),
        http=HttpConfig(**_pick(HttpConfig, raw.get("http", {}))),
        rate_limit=RateLimitConfig(**_pick(RateLimitConfig, raw.get("rate_limit", {}))),
        download=DownloadConfig(**_pick(DownloadConfig, raw.get("download", {}))),
        sources=sources,
    )
