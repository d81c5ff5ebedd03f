"""Chart archive downloads: bounded worker pool, streaming with SHA-256, optional unzip."""

import hashlib
import logging
import os
import re
import secrets
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional, Tuple

import httpx

from .config import AppConfig
from .db import ChartStore
from .errors import (
    ChartNotFoundError,
    DownloadFailedError,
    DownloadItemError,
    DownloadTimeoutError,
    NoDownloadSourceError,
)
from .http_client import BROWSER_HEADERS
from .links import parse_confirm_form, resolve_download_url
from .models import Chart, DownloadItemResult, DownloadOptions, DownloadResult

logger = logging.getLogger("dtx_scraper")

ARCHIVE_EXTENSIONS = (".zip", ".rar", ".7z")
_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]+')
_DISPOSITION_NAME = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.I)


def safe_filename(chart: Chart, max_length: int = 150) -> str:
    name = _UNSAFE_CHARS.sub("_", f"{chart.artist} - {chart.title}").strip(" ._")
    return name[:max_length] or chart.id


def _archive_extension(resp: httpx.Response) -> str:
    m = _DISPOSITION_NAME.search(resp.headers.get("content-disposition", ""))
    if m:
        ext = os.path.splitext(m.group(1).strip())[1].lower()
        if ext in ARCHIVE_EXTENSIONS:
            return ext
    return ".zip"


class Downloader:
    def __init__(self, config: AppConfig, store: ChartStore,
                 transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.store = store
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.config.download.timeout_per_item, connect=30),
                follow_redirects=True,
                headers={"User-Agent": self.config.http.user_agent, **BROWSER_HEADERS},
                transport=self._transport,
            )
        return self._client

    def close(self):
        if self._client and not self._client.is_closed:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def default_options(self, destination_dir: str = None) -> DownloadOptions:
        dl = self.config.download
        return DownloadOptions(
            destination_dir=destination_dir or dl.download_dir,
            max_concurrency=dl.max_concurrency,
            overwrite=dl.overwrite,
            timeout_per_item=dl.timeout_per_item,
            organize_by_source=dl.organize_by_source,
            unzip=dl.unzip,
            keep_archive=dl.keep_archive,
        )

    def download_charts(self, chart_ids: Iterable[str],
                        options: DownloadOptions = None) -> DownloadResult:
        """Download every chart; one failure never stops the others.

        Results come back in the order of ``chart_ids``.
        """
        options = options or self.default_options()
        chart_ids = list(chart_ids)
        download_id = f"download_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

        logger.info(
            f"[{download_id}] Downloading {len(chart_ids)} charts "
            f"({options.max_concurrency} at a time) to {options.destination_dir}"
        )
        with ThreadPoolExecutor(max_workers=max(1, options.max_concurrency)) as pool:
            results = list(pool.map(lambda cid: self.download_one(cid, options), chart_ids))

        successful = sum(1 for r in results if r.success)
        logger.info(
            f"[{download_id}] Done: {successful} succeeded, {len(results) - successful} failed"
        )
        return DownloadResult(
            download_id=download_id,
            successful=successful,
            failed=len(results) - successful,
            total=len(results),
            results=results,
        )

    def download_one(self, chart_id: str, options: DownloadOptions) -> DownloadItemResult:
        start = time.monotonic()
        result = DownloadItemResult(chart_id=chart_id, success=False)
        try:
            chart = self.store.get_by_id(chart_id)
            if chart is None:
                raise ChartNotFoundError(chart_id)
            result.title, result.artist = chart.title, chart.artist
            if not chart.download_url:
                raise NoDownloadSourceError(chart_id)

            self._download_chart(chart, options, result)
            result.success = True
        except DownloadItemError as e:
            result.error = str(e)
            result.error_code = e.code
            logger.error(f"Download failed for {chart_id}: {e}")
        except Exception as e:
            result.error = str(e)
            result.error_code = DownloadFailedError.code
            logger.exception(f"Unexpected error downloading {chart_id}: {e}")
        finally:
            result.elapsed = time.monotonic() - start
        return result

    def _download_chart(self, chart: Chart, options: DownloadOptions,
                        result: DownloadItemResult):
        dest_dir = options.destination_dir
        if options.organize_by_source:
            dest_dir = os.path.join(dest_dir, chart.source)
        stem = safe_filename(chart)

        existing = None if options.overwrite else self._existing(dest_dir, stem, options)
        if existing:
            result.file_path = existing
            result.file_size = os.path.getsize(existing) if os.path.isfile(existing) else 0
            result.skipped = True
            logger.info(f"Already downloaded: {existing}")
            return

        url = resolve_download_url(chart.download_url)
        deadline = time.monotonic() + options.timeout_per_item

        try:
            os.makedirs(dest_dir, exist_ok=True)
            part_path = os.path.join(dest_dir, f"{stem}.{chart.id}.part")
            try:
                ext, sha256, size = self._stream_request("GET", url, part_path, options, deadline)
            except BaseException:
                if os.path.exists(part_path):
                    os.remove(part_path)
                raise

            archive_path = os.path.join(dest_dir, stem + ext)
            os.replace(part_path, archive_path)
            result.file_path = archive_path
            result.file_size = size
            result.sha256 = sha256
            logger.info(f"Downloaded: {archive_path} ({size:,} bytes)")

            if options.unzip:
                result.file_path = self._unzip(archive_path, os.path.join(dest_dir, stem),
                                               options.keep_archive)
        except httpx.TimeoutException as e:
            raise DownloadTimeoutError(url, options.timeout_per_item) from e
        except httpx.HTTPStatusError as e:
            raise DownloadFailedError(
                f"HTTP {e.response.status_code} while downloading {url}"
            ) from e
        # Bad headers, encrypted or oddly compressed zips
        except (httpx.HTTPError, OSError, ValueError, RuntimeError,
                zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise DownloadFailedError(f"Failed to download {url}: {e}") from e

    @staticmethod
    def _existing(dest_dir: str, stem: str, options: DownloadOptions) -> Optional[str]:
        if options.unzip and os.path.isdir(os.path.join(dest_dir, stem)):
            return os.path.join(dest_dir, stem)
        for ext in ARCHIVE_EXTENSIONS:
            path = os.path.join(dest_dir, stem + ext)
            if os.path.isfile(path):
                return path
        return None

    def _stream_request(self, method: str, url: str, local_path: str,
                        options: DownloadOptions, deadline: float,
                        confirm_form: bool = True, **kwargs) -> Tuple[str, str, int]:
        """Stream the response into ``local_path``. Returns (extension, sha256, size)."""
        sha = hashlib.sha256()
        size = 0
        max_size = self.config.download.max_file_size

        with self.client.stream(method, url, timeout=options.timeout_per_item, **kwargs) as resp:
            resp.raise_for_status()

            # Drive serves an HTML warning page for files too large to virus-scan
            ct = resp.headers.get("content-type", "")
            if "text/html" in ct:
                resp.read()
                form = parse_confirm_form(resp.text, str(resp.url)) if confirm_form else None
                if form is None:
                    raise DownloadFailedError(
                        f"Expected an archive but got HTML (content-type: {ct}) from {url}"
                    )
                logger.info(f"Following download confirmation for {url}")
                params = {"params": form.fields} if form.method == "GET" else {"data": form.fields}
                return self._stream_request(form.method, form.action, local_path, options,
                                            deadline, confirm_form=False, **params)

            content_length = resp.headers.get("content-length")
            if content_length and int(content_length) > max_size:
                raise DownloadFailedError(f"File too large: {content_length} bytes")

            with open(local_path, "wb") as f:
                for chunk in resp.iter_bytes(chunk_size=65536):
                    if time.monotonic() > deadline:
                        raise DownloadTimeoutError(url, options.timeout_per_item)
                    f.write(chunk)
                    sha.update(chunk)
                    size += len(chunk)
                    if size > max_size:
                        raise DownloadFailedError(
                            f"File exceeded max size during download: {size} bytes"
                        )

            ext = _archive_extension(resp)

        return ext, sha.hexdigest(), size

    @staticmethod
    def _unzip(archive_path: str, target_dir: str, keep_archive: bool) -> str:
        if not zipfile.is_zipfile(archive_path):
            logger.warning(f"Not a zip archive, leaving as is: {archive_path}")
            return archive_path

        with zipfile.ZipFile(archive_path) as zf:
            zf.extractall(target_dir)
        logger.info(f"Unzipped {archive_path} to {target_dir}")

        if not keep_archive:
            os.remove(archive_path)
        return target_dir
