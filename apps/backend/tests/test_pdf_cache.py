"""
Tests for the PDF cache and its storage backends.
"""

import os
import re
import asyncio
import pytest
import httpx
from unittest.mock import MagicMock, patch

from core.net import HTTPClient
from pipeline.pdf_cache import (
    FileSystemPdfStorage,
    PdfAssetCache,
    SupabasePdfStorage,
    build_pdf_storage_key,
    create_pdf_storage,
)

PDF_URL = "https://meghalaya.gov.in/files/Advt No. 12 (Junior Clerk).pdf"
PDF_BODY = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n"
PUBLIC_BUCKET_URL = "https://proj.supabase.co/storage/v1/object/public/jobs-pdfs/"

def make_cache(tmp_path, handler, **kwargs):
    client = HTTPClient(transport=httpx.MockTransport(handler), retry_backoff_seconds=0)
    options = dict(storage_path=str(tmp_path), prefix="jobs", enabled=True, storage_type="filesystem")
    options.update(kwargs)
    return PdfAssetCache(client, **options), client

def make_supabase_client(existing=()):
    client = MagicMock()
    bucket = client.storage.from_.return_value
    bucket.list.return_value = [{"name": name} for name in existing]
    bucket.get_public_url.side_effect = lambda key: PUBLIC_BUCKET_URL + key
    return client, bucket

class TestStorageKey:
    """Test build_pdf_storage_key."""

    def test_layout(self):
        key = build_pdf_storage_key(PDF_URL)
        assert re.fullmatch(r"jobs/meghalaya\.gov\.in/advt-no\.-12-junior-clerk-[0-9a-f]{16}\.pdf", key)

    def test_deterministic(self):
        assert build_pdf_storage_key(PDF_URL) == build_pdf_storage_key(PDF_URL)
        assert build_pdf_storage_key(PDF_URL) != build_pdf_storage_key(PDF_URL + "?v=2")

    def test_www_stripped_from_host(self):
        key = build_pdf_storage_key("https://WWW.Meghalaya.gov.in/docs/Notice_01.PDF")
        assert re.fullmatch(r"jobs/meghalaya\.gov\.in/notice_01-[0-9a-f]{16}\.pdf", key)

    def test_long_stem_capped(self):
        key = build_pdf_storage_key("https://x.gov.in/" + "a" * 200 + ".pdf", prefix="/cache/")
        stem = key.split("/")[-1].rsplit("-", 1)[0]
        assert key.startswith("cache/x.gov.in/")
        assert len(stem) == 80

    def test_empty_stem(self):
        assert "/document-" in build_pdf_storage_key("https://x.gov.in/((%20)).pdf")
        assert "/document-" in build_pdf_storage_key("https://x.gov.in/.pdf")
        assert "/___-" in build_pdf_storage_key("https://x.gov.in/___.pdf")


class TestCacheJobPdfAsset:
    """Test PdfAssetCache.cache_job_pdf_asset."""

    @pytest.mark.asyncio
    async def test_stores_and_returns_public_url(self, tmp_path):
        cache, client = make_cache(
            tmp_path, lambda request: httpx.Response(200, content=PDF_BODY),
            public_base_url="https://cdn.example.org/",
        )
        async with client:
            url = await cache.cache_job_pdf_asset(PDF_URL)

        key = build_pdf_storage_key(PDF_URL, "jobs")
        assert url.startswith("https://cdn.example.org/jobs/meghalaya.gov.in/")
        assert (tmp_path / key).read_bytes() == PDF_BODY

    @pytest.mark.asyncio
    async def test_file_uri_without_public_base(self, tmp_path):
        cache, client = make_cache(tmp_path, lambda request: httpx.Response(200, content=PDF_BODY))
        async with client:
            url = await cache.cache_job_pdf_asset(PDF_URL)
        assert url.startswith("file://")

    @pytest.mark.asyncio
    async def test_existing_file_reused(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=PDF_BODY)

        cache, client = make_cache(tmp_path, handler)
        async with client:
            first = await cache.cache_job_pdf_asset(PDF_URL)
            second = await cache.cache_job_pdf_asset(PDF_URL)
        assert first == second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rejects_non_pdf_body(self, tmp_path):
        cache, client = make_cache(tmp_path, lambda request: httpx.Response(200, content=b"<html>login</html>"))
        async with client:
            assert await cache.cache_job_pdf_asset(PDF_URL) is None
        assert not any(tmp_path.rglob("*.pdf"))

    @pytest.mark.asyncio
    async def test_download_failure_returns_none(self, tmp_path):
        cache, client = make_cache(tmp_path, lambda request: httpx.Response(404))
        async with client:
            assert await cache.cache_job_pdf_asset(PDF_URL) is None

    @pytest.mark.asyncio
    async def test_disabled_or_not_pdf(self, tmp_path):
        def handler(request):
            raise AssertionError("no download expected")

        cache, client = make_cache(tmp_path, handler, enabled=False)
        assert await cache.cache_job_pdf_asset(PDF_URL) is None

        cache, client = make_cache(tmp_path, handler)
        assert await cache.cache_job_pdf_asset("https://meghalaya.gov.in/jobs.html") is None
        assert await cache.cache_job_pdf_asset("ftp://meghalaya.gov.in/a.pdf") is None

    @pytest.mark.asyncio
    async def test_storage_io_runs_off_the_event_loop(self, tmp_path):
        offloaded = []
        to_thread = asyncio.to_thread

        async def record_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        cache, client = make_cache(tmp_path, lambda request: httpx.Response(200, content=PDF_BODY))
        async with client:
            with patch("pipeline.pdf_cache.asyncio.to_thread", side_effect=record_to_thread):
                await cache.cache_job_pdf_asset(PDF_URL)

        assert offloaded == ["exists", "save"]

class TestSupabaseStorage:
    """Test the Supabase Storage backend."""

    @pytest.mark.asyncio
    async def test_uploads_to_bucket(self, tmp_path):
        supabase, bucket = make_supabase_client()
        cache, client = make_cache(
            tmp_path, lambda request: httpx.Response(200, content=PDF_BODY),
            storage_type="supabase", supabase_client=supabase,
        )
        async with client:
            url = await cache.cache_job_pdf_asset(PDF_URL)

        key = build_pdf_storage_key(PDF_URL, "jobs")
        supabase.storage.from_.assert_called_with("jobs-pdfs")
        args, kwargs = bucket.upload.call_args
        assert args == (key, PDF_BODY)
        assert kwargs["file_options"]["content-type"] == "application/pdf"
        assert url == PUBLIC_BUCKET_URL + key
        assert not any(tmp_path.rglob("*.pdf"))

    @pytest.mark.asyncio
    async def test_existing_object_reused_without_download(self, tmp_path):
        key = build_pdf_storage_key(PDF_URL, "jobs")
        supabase, bucket = make_supabase_client(existing=[key.rsplit("/", 1)[1]])

        def handler(request):
            raise AssertionError("no download expected")

        cache, client = make_cache(tmp_path, handler, storage_type="supabase", supabase_client=supabase)
        async with client:
            url = await cache.cache_job_pdf_asset(PDF_URL)

        assert url == PUBLIC_BUCKET_URL + key
        bucket.list.assert_called_once_with("jobs/meghalaya.gov.in", {"search": key.rsplit("/", 1)[1]})
        bucket.upload.assert_not_called()

    def test_duplicate_upload_is_not_an_error(self):
        supabase, bucket = make_supabase_client()
        bucket.upload.side_effect = Exception("The resource already exists")
        SupabasePdfStorage(supabase).save("jobs/x.gov.in/a-1.pdf", PDF_BODY)

    @pytest.mark.asyncio
    async def test_upload_failure_returns_none(self, tmp_path):
        supabase, bucket = make_supabase_client()
        bucket.upload.side_effect = Exception("Bucket not found")
        cache, client = make_cache(
            tmp_path, lambda request: httpx.Response(200, content=PDF_BODY),
            storage_type="supabase", supabase_client=supabase,
        )
        async with client:
            assert await cache.cache_job_pdf_asset(PDF_URL) is None

class TestCreatePdfStorage:
    """Test backend selection."""

    def test_supabase_when_credentials_present(self):
        env = {
            'SUPABASE_URL': 'https://proj.supabase.co',
            'SUPABASE_SERVICE_ROLE_KEY': 'service-key',
            'JOBS_PDF_STORAGE_BUCKET': 'notices',
        }
        with patch.dict(os.environ, env, clear=True):
            with patch("pipeline.pdf_cache.create_client") as create_client:
                storage = create_pdf_storage()

        create_client.assert_called_once_with('https://proj.supabase.co', 'service-key')
        assert isinstance(storage, SupabasePdfStorage)
        assert storage.bucket == 'notices'

    def test_filesystem_without_credentials(self, tmp_path):
        env = {'JOBS_PDF_STORAGE_BACKEND': 'supabase', 'JOBS_PDF_STORAGE_PATH': str(tmp_path)}
        with patch.dict(os.environ, env, clear=True):
            with patch("pipeline.pdf_cache.create_client") as create_client:
                storage = create_pdf_storage()

        create_client.assert_not_called()
        assert isinstance(storage, FileSystemPdfStorage)
        assert storage.base_path == tmp_path

    def test_unknown_backend(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError):
                create_pdf_storage("s3")
