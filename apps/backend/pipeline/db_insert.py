"""
Database persistence for scraped jobs.

Saves ScrapedJobRow objects to the jobs table, deduplicated on source_url.
"""

import os
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import psycopg2
from psycopg2.extras import execute_values
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_incrementing

from core.extraction_heuristics import get_hostname, is_linkedin_host
from crawler.models import SaveJobsResult, ScrapedJobRow

logger = logging.getLogger(__name__)

DEFAULT_JOBS_TABLE = 'jobs'
BATCH_SIZE = 100
DB_RETRY_ATTEMPTS = 3
DB_RETRY_BACKOFF_SECONDS = 0.3

DEFAULT_TITLE = "Job opening"
DEFAULT_LOCATION = "Unknown"
ON_DUPLICATE_MODES = ("update", "skip")

COLUMNS = ("title", "company", "location", "description", "source_url", "pdf_source_url", "pdf_cached_url")


def company_from_url(url: str) -> str:
    """Fallback company name derived from the listing host."""
    if url.startswith("manual://"):
        return "Manual source"
    host = get_hostname(url)
    if is_linkedin_host(host):
        return "LinkedIn"
    if host.startswith("www."):
        host = host[4:]
    return host or "Unknown"


def normalize_job_rows(rows: Iterable[ScrapedJobRow]) -> Tuple[List[Dict[str, Any]], int]:
    """
    Prepare rows for writing.

    Rows without a URL are dropped. Rows repeating a source_url within the batch
    are collapsed (the last one wins) and counted as duplicates.

    Returns:
        (normalized rows in first-seen order, duplicate count)
    """
    by_url: Dict[str, Dict[str, Any]] = {}
    duplicates = 0
    for row in rows:
        source_url = (row.source_url or "").strip()
        if not source_url:
            continue
        if source_url in by_url:
            duplicates += 1
        by_url[source_url] = {
            "title": (row.title or "").strip() or DEFAULT_TITLE,
            "company": (row.company or "").strip() or company_from_url(source_url),
            "location": (row.location or "").strip() or DEFAULT_LOCATION,
            "description": (row.description or "").strip(),
            "source_url": source_url,
            "pdf_source_url": row.pdf_source_url or None,
            "pdf_cached_url": row.pdf_cached_url or None,
        }
    return list(by_url.values()), duplicates


class JobStore:
    """Writes scraped jobs to PostgreSQL."""

    def __init__(self, db_url: str, jobs_table: Optional[str] = None, batch_size: int = BATCH_SIZE):
        """
        Initialize the store.

        Args:
            db_url: PostgreSQL connection string
            jobs_table: Table name (default: JOBS_TABLE env var or 'jobs')
            batch_size: Rows per INSERT statement
        """
        self.db_url = db_url
        self.jobs_table = jobs_table or os.getenv('JOBS_TABLE', DEFAULT_JOBS_TABLE)
        self.batch_size = batch_size

        logger.info(f"JobStore initialized: table={self.jobs_table}, batch_size={self.batch_size}")

    def _get_db_conn(self):
        """Get database connection."""
        try:
            return psycopg2.connect(self.db_url, connect_timeout=5)
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    def _select_existing(self, cur, urls: List[str]) -> Set[str]:
        cur.execute(
            f"SELECT source_url FROM {self.jobs_table} WHERE source_url = ANY(%s)",
            (urls,)
        )
        return {row[0] for row in cur.fetchall()}

    def _upsert_rows(self, cur, rows: List[Dict[str, Any]], on_duplicate: str) -> Set[str]:
        """Insert rows and return the source_urls actually written."""
        if on_duplicate == "update":
            conflict = f"""
                ON CONFLICT (source_url) DO UPDATE SET
                    title = EXCLUDED.title,
                    company = EXCLUDED.company,
                    location = EXCLUDED.location,
                    description = EXCLUDED.description,
                    pdf_source_url = COALESCE(EXCLUDED.pdf_source_url, {self.jobs_table}.pdf_source_url),
                    pdf_cached_url = COALESCE(EXCLUDED.pdf_cached_url, {self.jobs_table}.pdf_cached_url),
                    status = CASE WHEN {self.jobs_table}.status = 'inactive' THEN 'inactive' ELSE 'active' END
            """
        else:
            conflict = "ON CONFLICT (source_url) DO NOTHING"

        written = execute_values(
            cur,
            f"""
            INSERT INTO {self.jobs_table} ({', '.join(COLUMNS)}, status)
            VALUES %s
            {conflict}
            RETURNING source_url
            """,
            [tuple(row[column] for column in COLUMNS) + ('active',) for row in rows],
            page_size=self.batch_size,
            fetch=True,
        )
        return {row[0] for row in written}

    @retry(
        stop=stop_after_attempt(DB_RETRY_ATTEMPTS),
        wait=wait_incrementing(start=DB_RETRY_BACKOFF_SECONDS, increment=DB_RETRY_BACKOFF_SECONDS),
        retry=retry_if_exception_type((psycopg2.OperationalError, psycopg2.InterfaceError)),
        reraise=True
    )
    def _save_batch(self, batch: List[Dict[str, Any]], on_duplicate: str) -> Tuple[int, int, int]:
        """Write one batch in a transaction. Returns (inserted, updated, skipped)."""
        urls = [row["source_url"] for row in batch]
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cur:
                existing = self._select_existing(cur, urls)
                written = self._upsert_rows(cur, batch, on_duplicate)
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        inserted = sum(1 for url in written if url not in existing)
        updated = sum(1 for url in written if url in existing)
        return inserted, updated, len(batch) - len(written)

    def save_jobs(self, rows: Iterable[ScrapedJobRow], on_duplicate: str = "update") -> SaveJobsResult:
        """
        Save jobs, deduplicated on source_url.

        Args:
            rows: Scraped rows
            on_duplicate: "update" refreshes stored rows (inactive rows stay inactive),
                "skip" leaves them untouched

        Returns:
            SaveJobsResult with attempted/inserted/updated/skipped_duplicate counts

        Raises:
            psycopg2.Error: after retries are exhausted
        """
        if on_duplicate not in ON_DUPLICATE_MODES:
            raise ValueError(f"Unsupported on_duplicate mode: {on_duplicate}")

        normalized, in_batch_duplicates = normalize_job_rows(rows)
        result = SaveJobsResult(attempted=len(normalized), skipped_duplicate=in_batch_duplicates)

        for start in range(0, len(normalized), self.batch_size):
            batch = normalized[start:start + self.batch_size]
            inserted, updated, skipped = self._save_batch(batch, on_duplicate)
            result.inserted += inserted
            result.updated += updated
            result.skipped_duplicate += skipped

        logger.info(
            f"[job_store] save_complete attempted={result.attempted} inserted={result.inserted} "
            f"updated={result.updated} skipped_duplicate={result.skipped_duplicate} mode={on_duplicate}"
        )
        return result
