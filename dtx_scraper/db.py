"""SQLite storage for charts and the per-source scraped-pages ledger."""

import json
import sqlite3
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .errors import StoreError
from .models import Chart, PageStatus, ScrapedPageRecord


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ChartStore:
    def __init__(self, db_path: str = "charts.db"):
        self.db_path = db_path
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._init_db()

    @property
    def _conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
        return self._local.conn

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _init_db(self):
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS charts (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                artist TEXT NOT NULL,
                bpm TEXT NOT NULL,
                difficulties TEXT DEFAULT '[]',
                download_url TEXT,
                folder_url TEXT,
                preview_image_url TEXT,
                source TEXT NOT NULL,
                original_page_url TEXT NOT NULL,
                tags TEXT DEFAULT '[]',
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_charts_source ON charts(source);
            CREATE INDEX IF NOT EXISTS idx_charts_artist ON charts(artist);
            CREATE INDEX IF NOT EXISTS idx_charts_title ON charts(title);

            CREATE TABLE IF NOT EXISTS scraped_pages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_name TEXT NOT NULL,
                url TEXT NOT NULL,
                page_number INTEGER NOT NULL,
                charts_extracted INTEGER DEFAULT 0,
                status TEXT NOT NULL,
                error_message TEXT,
                next_url TEXT,
                scraped_at TIMESTAMP NOT NULL,
                UNIQUE(source_name, url)
            );

            CREATE INDEX IF NOT EXISTS idx_scraped_pages_source ON scraped_pages(source_name);
        """)
        conn.commit()

    # ------------------------------------------------------------------
    # Charts
    # ------------------------------------------------------------------

    def exists(self, chart_id: str) -> bool:
        try:
            row = self._conn.execute("SELECT 1 FROM charts WHERE id = ?", (chart_id,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to look up chart {chart_id}: {e}") from e
        return row is not None

    def upsert(self, chart: Chart):
        """Insert a chart, or overwrite it keeping its original created_at."""
        now = _now()
        created = chart.created_at.isoformat(timespec="seconds") if chart.created_at else now
        try:
            with self._write_lock:
                self._conn.execute(
                    """INSERT INTO charts (id, title, artist, bpm, difficulties, download_url,
                           folder_url, preview_image_url, source, original_page_url, tags,
                           created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                           title = excluded.title, artist = excluded.artist, bpm = excluded.bpm,
                           difficulties = excluded.difficulties,
                           download_url = excluded.download_url,
                           folder_url = excluded.folder_url,
                           preview_image_url = excluded.preview_image_url,
                           source = excluded.source,
                           original_page_url = excluded.original_page_url,
                           tags = excluded.tags, updated_at = excluded.updated_at""",
                    (chart.id, chart.title, chart.artist, chart.bpm,
                     json.dumps(list(chart.difficulties)), chart.download_url, chart.folder_url,
                     chart.preview_image_url, chart.source, chart.original_page_url,
                     json.dumps(list(chart.tags)), created, now),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save chart {chart.id}: {e}") from e

    def get_by_id(self, chart_id: str) -> Optional[Chart]:
        try:
            row = self._conn.execute("SELECT * FROM charts WHERE id = ?", (chart_id,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load chart {chart_id}: {e}") from e
        return self._row_to_chart(row) if row else None

    def query_charts(self, source: str = None, artist: str = None, title: str = None,
                     min_bpm: int = None, max_bpm: int = None,
                     limit: int = None) -> List[Chart]:
        sql = "SELECT * FROM charts WHERE 1=1"
        params: list = []
        if source:
            sql += " AND source = ?"
            params.append(source)
        if artist:
            sql += " AND artist LIKE ?"
            params.append(f"%{artist}%")
        if title:
            sql += " AND title LIKE ?"
            params.append(f"%{title}%")
        if min_bpm is not None:
            sql += " AND CAST(bpm AS INTEGER) >= ?"
            params.append(min_bpm)
        if max_bpm is not None:
            sql += " AND CAST(bpm AS INTEGER) <= ?"
            params.append(max_bpm)
        sql += " ORDER BY created_at DESC, id"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_chart(r) for r in self._conn.execute(sql, params).fetchall()]

    def get_charts_missing_download(self, source: str = None) -> List[Chart]:
        """Charts stored without a per-file link, candidates for link repair."""
        if source:
            rows = self._conn.execute(
                "SELECT * FROM charts WHERE download_url IS NULL AND source = ? ORDER BY id",
                (source,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM charts WHERE download_url IS NULL ORDER BY id"
            ).fetchall()
        return [self._row_to_chart(r) for r in rows]

    def count_by_source(self) -> Dict[str, int]:
        rows = self._conn.execute(
            "SELECT source, COUNT(*) AS cnt FROM charts GROUP BY source ORDER BY source"
        ).fetchall()
        return {r["source"]: r["cnt"] for r in rows}

    def get_stats(self) -> List[Tuple]:
        """(source, charts, missing_download, pages_completed, pages_failed) per source."""
        rows = self._conn.execute(
            """SELECT s.source,
                      (SELECT COUNT(*) FROM charts c WHERE c.source = s.source),
                      (SELECT COUNT(*) FROM charts c
                        WHERE c.source = s.source AND c.download_url IS NULL),
                      (SELECT COUNT(*) FROM scraped_pages p
                        WHERE p.source_name = s.source AND p.status = 'completed'),
                      (SELECT COUNT(*) FROM scraped_pages p
                        WHERE p.source_name = s.source AND p.status = 'failed')
               FROM (SELECT source FROM charts
                     UNION SELECT source_name FROM scraped_pages) s
               ORDER BY s.source"""
        ).fetchall()
        return [tuple(r) for r in rows]

    @staticmethod
    def _row_to_chart(row: sqlite3.Row) -> Chart:
        return Chart(
            id=row["id"],
            title=row["title"],
            artist=row["artist"],
            bpm=row["bpm"],
            difficulties=json.loads(row["difficulties"] or "[]"),
            source=row["source"],
            original_page_url=row["original_page_url"],
            download_url=row["download_url"],
            preview_image_url=row["preview_image_url"],
            folder_url=row["folder_url"],
            tags=json.loads(row["tags"] or "[]"),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Scraped-pages ledger
    # ------------------------------------------------------------------

    def get_scraped_pages(self, source: str) -> List[ScrapedPageRecord]:
        rows = self._conn.execute(
            "SELECT * FROM scraped_pages WHERE source_name = ? ORDER BY page_number, id",
            (source,),
        ).fetchall()
        return [
            ScrapedPageRecord(
                source_name=r["source_name"],
                url=r["url"],
                page_number=r["page_number"],
                charts_extracted=r["charts_extracted"],
                status=PageStatus(r["status"]),
                error_message=r["error_message"],
                next_url=r["next_url"],
                scraped_at=_parse_ts(r["scraped_at"]),
            )
            for r in rows
        ]

    def is_page_scraped(self, source: str, url: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM scraped_pages WHERE source_name = ? AND url = ? AND status = 'completed'",
            (source, url),
        ).fetchone()
        return row is not None

    def record_page_scraped(self, source: str, url: str, page_number: int, chart_count: int,
                            status: PageStatus, error: str = None, next_url: str = None):
        status = PageStatus(status)
        try:
            with self._write_lock:
                self._conn.execute(
                    """INSERT INTO scraped_pages (source_name, url, page_number, charts_extracted,
                           status, error_message, next_url, scraped_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(source_name, url) DO UPDATE SET
                           page_number = excluded.page_number,
                           charts_extracted = excluded.charts_extracted,
                           status = excluded.status,
                           error_message = excluded.error_message,
                           next_url = COALESCE(excluded.next_url, scraped_pages.next_url),
                           scraped_at = excluded.scraped_at""",
                    (source, url, page_number, chart_count, status.value, error, next_url, _now()),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to record page {url}: {e}") from e
