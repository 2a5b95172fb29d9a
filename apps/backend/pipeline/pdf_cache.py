"""
PDF asset cache.

Keeps a copy of every recruitment PDF linked from a job so the notice stays
available after the publisher removes it. Objects are content-addressed by the
source URL, so caching the same PDF twice reuses the stored object.

Supports two backends:
1. Supabase Storage (bucket JOBS_PDF_STORAGE_BUCKET, default 'jobs-pdfs')
2. Filesystem (for local development)
"""

import os
import re
import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote, urlparse

from supabase import create_client

from core.extraction_heuristics import looks_like_pdf_url
from core.net import FetchError, HTTPClient

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = "jobs-pdfs"
DEFAULT_BUCKET = "jobs-pdfs"
DEFAULT_STORAGE_PREFIX = "jobs"
DEFAULT_DOWNLOAD_TIMEOUT_MS = 25000
DEFAULT_MAX_BYTES = 20 * 1024 * 1024
MAX_SEGMENT_CHARS = 80

STORAGE_FILESYSTEM = "filesystem"
STORAGE_SUPABASE = "supabase"

_SEGMENT_RE = re.compile(r'[^a-z0-9._-]+')
_DUPLICATE_RE = re.compile(r'already exists|duplicate', re.IGNORECASE)


def sanitize_path_segment(value: str) -> str:
    segment = _SEGMENT_RE.sub('-', value.lower())
    segment = re.sub(r'-+', '-', segment).strip('-')
    return segment[:MAX_SEGMENT_CHARS]


def build_pdf_storage_key(pdf_url: str, prefix: str = DEFAULT_STORAGE_PREFIX) -> str:
    """
    Build the storage key for a PDF URL: {prefix}/{host}/{stem}-{hash}.pdf

    The host loses a leading "www."; host, stem and prefix keep only
    [a-z0-9._-]. The hash is the first 16 hex chars of sha256(url).
    """
    parsed = urlparse(pdf_url)
    host = sanitize_path_segment(re.sub(r'^www\.', '', parsed.hostname or '', flags=re.IGNORECASE)) or "source"
    basename = [part for part in unquote(parsed.path).split('/') if part]
    raw_stem = re.sub(r'\.pdf$', '', basename[-1] if basename else '', flags=re.IGNORECASE)
    stem = sanitize_path_segment(raw_stem) or "document"
    url_hash = hashlib.sha256(pdf_url.encode('utf-8')).hexdigest()[:16]
    clean_prefix = sanitize_path_segment(prefix.strip('/')) or DEFAULT_STORAGE_PREFIX
    return f"{clean_prefix}/{host}/{stem}-{url_hash}.pdf"


class FileSystemPdfStorage:
    """PDF objects under a local directory."""

    storage_type = STORAGE_FILESYSTEM

    def __init__(self, base_path: Path, public_base_url: str = ""):
        self.base_path = base_path
        self.public_base_url = public_base_url.rstrip('/')

    def exists(self, key: str) -> bool:
        return (self.base_path / key).exists()

    def save(self, key: str, body: bytes):
        file_path = self.base_path / key
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'wb') as f:
            f.write(body)

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return (self.base_path / key).absolute().as_uri()


class SupabasePdfStorage:
    """PDF objects in a Supabase Storage bucket."""

    storage_type = STORAGE_SUPABASE

    def __init__(self, client, bucket: str = DEFAULT_BUCKET):
        self.client = client
        self.bucket = bucket

    def exists(self, key: str) -> bool:
        folder, _, name = key.rpartition('/')
        entries = self.client.storage.from_(self.bucket).list(folder, {"search": name}) or []
        return any(entry.get("name") == name for entry in entries)

    def save(self, key: str, body: bytes):
        try:
            self.client.storage.from_(self.bucket).upload(
                key,
                body,
                file_options={"content-type": "application/pdf", "cache-control": "3600", "upsert": "false"},
            )
        except Exception as e:
            # Another run stored the same object first
            if not _DUPLICATE_RE.search(str(e)):
                raise
            logger.debug(f"[pdf_cache] {key} already in bucket {self.bucket}")

    def public_url(self, key: str) -> str:
        return str(self.client.storage.from_(self.bucket).get_public_url(key) or "").strip()


def create_pdf_storage(
    storage_type: Optional[str] = None,
    storage_path: Optional[str] = None,
    public_base_url: Optional[str] = None,
    supabase_client=None,
):
    """
    Pick the storage backend.

    Supabase is used when requested (JOBS_PDF_STORAGE_BACKEND) or, by default,
    whenever SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are set. Without
    credentials the filesystem backend is used.
    """
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    has_credentials = bool(supabase_url and supabase_key)

    storage_type = (
        storage_type
        or os.getenv("JOBS_PDF_STORAGE_BACKEND")
        or (STORAGE_SUPABASE if has_credentials or supabase_client is not None else STORAGE_FILESYSTEM)
    ).lower()
    public_base_url = public_base_url or os.getenv("JOBS_PDF_PUBLIC_BASE_URL", "")

    if storage_type == STORAGE_SUPABASE:
        bucket = os.getenv("JOBS_PDF_STORAGE_BUCKET", "").strip() or DEFAULT_BUCKET
        if supabase_client is not None:
            logger.info(f"PDF storage initialized: Supabase bucket '{bucket}'")
            return SupabasePdfStorage(supabase_client, bucket)
        if has_credentials:
            logger.info(f"PDF storage initialized: Supabase bucket '{bucket}'")
            return SupabasePdfStorage(create_client(supabase_url, supabase_key), bucket)
        logger.warning("Supabase credentials not found, falling back to filesystem")
    elif storage_type != STORAGE_FILESYSTEM:
        raise ValueError(f"Unknown storage type: {storage_type}")

    base_path = Path(storage_path or os.getenv('JOBS_PDF_STORAGE_PATH', DEFAULT_STORAGE_PATH))
    logger.info(f"PDF storage initialized: filesystem at {base_path}")
    return FileSystemPdfStorage(base_path, public_base_url)


class PdfAssetCache:
    """Downloads PDFs once and serves them from the configured storage."""

    def __init__(
        self,
        http_client: HTTPClient,
        storage_path: Optional[str] = None,
        prefix: Optional[str] = None,
        public_base_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        download_timeout_ms: Optional[int] = None,
        max_bytes: Optional[int] = None,
        storage_type: Optional[str] = None,
        supabase_client=None,
        storage=None,
    ):
        """
        Initialize the cache.

        Args:
            http_client: Client used for downloads
            storage_path: Filesystem base directory (default: JOBS_PDF_STORAGE_PATH or 'jobs-pdfs')
            prefix: Key prefix (default: JOBS_PDF_STORAGE_PREFIX or 'jobs')
            public_base_url: Base URL a filesystem cache is served from (default: JOBS_PDF_PUBLIC_BASE_URL);
                without one, file:// URIs are returned
            enabled: Master switch (default: JOBS_PDF_CACHE_ENABLED, true)
            download_timeout_ms: Download timeout (default: JOBS_PDF_DOWNLOAD_TIMEOUT_MS or 25000)
            max_bytes: Largest accepted PDF (default: JOBS_PDF_MAX_BYTES or 20 MB)
            storage_type: "supabase" or "filesystem" (default: JOBS_PDF_STORAGE_BACKEND, see create_pdf_storage)
            supabase_client: Pre-built Supabase client
            storage: Pre-built storage backend; overrides the options above
        """
        self.http_client = http_client
        self.enabled = (
            enabled if enabled is not None
            else os.getenv('JOBS_PDF_CACHE_ENABLED', 'true').strip().lower() not in ('false', '0', 'off', 'no')
        )
        self.prefix = prefix or os.getenv('JOBS_PDF_STORAGE_PREFIX', DEFAULT_STORAGE_PREFIX)
        self.download_timeout_ms = download_timeout_ms or int(
            os.getenv('JOBS_PDF_DOWNLOAD_TIMEOUT_MS', str(DEFAULT_DOWNLOAD_TIMEOUT_MS))
        )
        self.max_bytes = max_bytes or int(os.getenv('JOBS_PDF_MAX_BYTES', str(DEFAULT_MAX_BYTES)))
        self.storage = storage or create_pdf_storage(storage_type, storage_path, public_base_url, supabase_client)

        logger.info(
            f"PDF cache initialized: enabled={self.enabled}, storage={self.storage.storage_type}, prefix={self.prefix}"
        )

    async def cache_job_pdf_asset(self, pdf_url: str) -> Optional[str]:
        """
        Store a PDF and return its cached URL.

        Returns:
            Public URL of the cached copy, or None when caching is disabled,
            the URL is not a PDF, or the download or upload fails
        """
        pdf_url = (pdf_url or "").strip()
        if not self.enabled or not pdf_url:
            return None
        if urlparse(pdf_url).scheme not in ('http', 'https') or not looks_like_pdf_url(pdf_url):
            logger.debug(f"[pdf_cache] Skipping non-PDF URL {pdf_url}")
            return None

        key = build_pdf_storage_key(pdf_url, self.prefix)
        try:
            if await asyncio.to_thread(self.storage.exists, key):
                logger.debug(f"[pdf_cache] Reusing cached {key}")
                return self.storage.public_url(key) or None
        except Exception as e:
            logger.warning(f"[pdf_cache] Lookup failed for {key}: {e}")

        try:
            body = await self.http_client.fetch_bytes(pdf_url, self.download_timeout_ms, self.max_bytes)
        except FetchError as e:
            logger.warning(f"[pdf_cache] Download failed for {pdf_url}: {e}")
            return None

        if not body:
            logger.warning(f"[pdf_cache] Empty body for {pdf_url}")
            return None
        if not body.startswith(b"%PDF"):
            logger.warning(f"[pdf_cache] Not a PDF document: {pdf_url}")
            return None

        try:
            await asyncio.to_thread(self.storage.save, key, body)
            public_url = self.storage.public_url(key)
        except Exception as e:
            logger.error(f"[pdf_cache] Error storing {key}: {e}")
            return None

        if not public_url:
            return None
        logger.info(f"[pdf_cache] Cached {pdf_url} as {key} ({len(body)} bytes)")
        return public_url
