"""Data models for charts, crawl bookkeeping and download results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional


@dataclass
class Chart:
    id: str
    title: str
    artist: str
    bpm: str  # as published: "157", "157BPM", "120-140"
    difficulties: List[float]
    source: str
    original_page_url: str = ""
    download_url: Optional[str] = None
    preview_image_url: Optional[str] = None
    # Batch folder the chart lives in when no per-file link was found
    folder_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PageStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScrapedPageRecord:
    source_name: str
    url: str
    page_number: int
    charts_extracted: int
    status: PageStatus
    error_message: Optional[str] = None
    next_url: Optional[str] = None
    scraped_at: Optional[datetime] = None


class ScrapingStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ScrapingProgress:
    """Per-crawl progress. Lives only for the duration of one crawl."""

    source_name: str
    current_page: int = 0
    total_pages: int = 0
    charts_found: int = 0
    status: ScrapingStatus = ScrapingStatus.PENDING
    start_time: datetime = field(default_factory=datetime.now)
    estimated_completion: Optional[datetime] = None
    elapsed: float = 0.0


@dataclass
class ScrapingOptions:
    max_pages: Optional[int] = None
    request_delay: Optional[float] = None  # seconds between pages
    skip_existing: bool = False
    resume_from_older: bool = False
    on_progress: Optional[Callable[[ScrapingProgress], None]] = None


@dataclass
class ScrapingResult:
    source_name: str
    charts_found: int = 0
    charts_added: int = 0
    charts_duplicated: int = 0
    errors: List[str] = field(default_factory=list)
    duration: float = 0.0
    next_scrape_time: Optional[datetime] = None


@dataclass
class HttpResponse:
    status_code: int
    headers: Dict[str, str]
    body: str
    url: str
    duration: float


@dataclass
class DownloadOptions:
    destination_dir: str
    max_concurrency: int = 3
    overwrite: bool = False
    timeout_per_item: float = 30.0
    organize_by_source: bool = True
    unzip: bool = False
    keep_archive: bool = False


@dataclass
class DownloadItemResult:
    chart_id: str
    success: bool
    title: str = ""
    artist: str = ""
    file_path: Optional[str] = None
    file_size: int = 0
    elapsed: float = 0.0
    error: Optional[str] = None
    error_code: Optional[str] = None
    sha256: Optional[str] = None
    skipped: bool = False


@dataclass
class DownloadResult:
    download_id: str
    successful: int
    failed: int
    total: int
    results: List[DownloadItemResult] = field(default_factory=list)
