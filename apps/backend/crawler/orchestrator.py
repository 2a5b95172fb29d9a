"""
Jobs scrape orchestrator.

Runs the configured sources one after another, deduplicates jobs across sources
by canonical URL, aggregates per-source stats into a run summary, and (in
run_jobs_scraper) persists the result.
"""
import os
import asyncio
import inspect
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from core.config import ScraperSettings, clamp_lookback_days
from core.net import HTTPClient
from crawler.models import (
    JobsScraperRuntimeOptions,
    RunJobsScraperResult,
    ScrapedJobRow,
    ScrapeJobsResult,
    ScrapeRunSummary,
    SourceConfig,
    SourceLifecycleEvent,
)
from crawler.source_registry import DEFAULT_JOB_SOURCES
from crawler.source_scraper import SourceScraper
from pipeline.db_insert import JobStore
from pipeline.pdf_cache import PdfAssetCache
from pipeline.pdf_enrichment import PdfEnricher
from pipeline.pdf_extractor import DocumentTextExtractor

logger = logging.getLogger(__name__)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _cancel_requested(should_cancel: Optional[Callable[[], Any]]) -> bool:
    if should_cancel is None:
        return False
    return bool(await _resolve(should_cancel()))


async def _emit(callback: Optional[Callable[[SourceLifecycleEvent], Any]], event: SourceLifecycleEvent):
    # Callback errors propagate to the caller of the run
    if callback is not None:
        await _resolve(callback(event))


async def scrape_jobs_from_sources(
    sources: Optional[List[SourceConfig]] = None,
    options: Optional[JobsScraperRuntimeOptions] = None,
    *,
    settings: Optional[ScraperSettings] = None,
    http_client: Optional[HTTPClient] = None,
    document_extractor=None,
    pdf_cache=None,
    now: Optional[datetime] = None,
) -> ScrapeJobsResult:
    """
    Scrape sources sequentially.

    Args:
        sources: Sources in processing order (default: DEFAULT_JOB_SOURCES)
        options: Lookback override, cancellation predicate and lifecycle callbacks
        settings: Pre-resolved settings (default: resolved from the environment once)
        http_client: Shared client; one is created and closed when omitted
        document_extractor: Provides extract_document_text() (default: DocumentTextExtractor)
        pdf_cache: Provides cache_job_pdf_asset() (default: PdfAssetCache)
        now: Reference time for date filtering

    Returns:
        ScrapeJobsResult; partial when cancelled
    """
    sources = list(DEFAULT_JOB_SOURCES if sources is None else sources)
    options = options or JobsScraperRuntimeOptions()
    if settings is None:
        settings = ScraperSettings.from_env(lookback_days=options.lookback_days)
    elif options.lookback_days is not None:
        settings = replace(settings, lookback_days=clamp_lookback_days(int(options.lookback_days)))
    now = now or datetime.now(timezone.utc)

    owns_client = http_client is None
    http_client = http_client or HTTPClient()

    # Run-scoped state, owned by this call
    pdf_url_cache: Dict[str, Optional[str]] = {}
    seen_urls: Set[str] = set()

    jobs: List[ScrapedJobRow] = []
    summary = ScrapeRunSummary(
        sources_processed=0,
        total_sources=len(sources),
        lookback_days=settings.lookback_days,
    )

    try:
        enricher = PdfEnricher(
            http_client=http_client,
            settings=settings,
            document_extractor=document_extractor or DocumentTextExtractor(http_client),
            pdf_cache=pdf_cache or PdfAssetCache(http_client),
            pdf_url_cache=pdf_url_cache,
        )
        scraper = SourceScraper(http_client, settings, enricher, now=now)

        for index, source in enumerate(sources):
            if await _cancel_requested(options.should_cancel):
                summary.cancelled = True
                break

            await _emit(options.on_source_start, SourceLifecycleEvent(source, index, len(sources)))
            logger.info(f"[jobs_scraper] source_start {index + 1}/{len(sources)} name={source.name}")

            source_jobs, stats = await scraper.scrape(source)
            summary.sources_processed += 1
            summary.source_stats.append(stats)
            summary.total_extracted += stats.extracted
            summary.total_filtered_by_location += stats.filtered_by_location
            summary.total_filtered_by_date += stats.filtered_by_date
            summary.total_filtered_by_keyword += stats.filtered_by_keyword

            for job in source_jobs:
                if job.source_url in seen_urls:
                    summary.total_duplicates_in_run += 1
                    continue
                seen_urls.add(job.source_url)
                jobs.append(job)

            await _emit(options.on_source_complete, SourceLifecycleEvent(source, index, len(sources), stats))

            if await _cancel_requested(options.should_cancel):
                summary.cancelled = True
                break
    finally:
        if owns_client:
            await http_client.aclose()

    if summary.cancelled:
        logger.warning(
            f"[jobs_scraper] run_cancelled after {summary.sources_processed}/{summary.total_sources} sources"
        )
    logger.info(
        f"[jobs_scraper] scrape_complete sources={summary.sources_processed}/{summary.total_sources} "
        f"jobs={len(jobs)} extracted={summary.total_extracted} duplicates={summary.total_duplicates_in_run} "
        f"lookback={summary.lookback_days}d"
    )
    return ScrapeJobsResult(jobs=jobs, summary=summary)


def get_job_store() -> JobStore:
    """Build a JobStore from DATABASE_URL (or SUPABASE_DB_URL)."""
    db_url = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL")
    if not db_url:
        raise ValueError("DATABASE_URL or SUPABASE_DB_URL must be set to persist jobs")
    return JobStore(db_url)


async def run_jobs_scraper(
    sources: Optional[List[SourceConfig]] = None,
    options: Optional[JobsScraperRuntimeOptions] = None,
    *,
    job_store=None,
    **scrape_kwargs,
) -> RunJobsScraperResult:
    """
    Scrape, then persist with update-on-duplicate semantics.

    Args:
        sources: Sources to scrape
        options: Runtime options
        job_store: Provides save_jobs(rows, on_duplicate=...) (default: get_job_store())
        **scrape_kwargs: Passed through to scrape_jobs_from_sources

    Raises:
        Whatever the job store raises; persistence errors are not masked
    """
    job_store = job_store or get_job_store()
    scraped = await scrape_jobs_from_sources(sources, options, **scrape_kwargs)
    persisted = await asyncio.to_thread(job_store.save_jobs, scraped.jobs, on_duplicate="update")

    summary = scraped.summary
    logger.info(
        f"[jobs_scraper] run_complete sources={summary.sources_processed} lookback={summary.lookback_days}d "
        f"cancelled={summary.cancelled} extracted_after_filters={len(scraped.jobs)} "
        f"attempted={persisted.attempted} inserted={persisted.inserted} updated={persisted.updated} "
        f"skipped_duplicates={persisted.skipped_duplicate + summary.total_duplicates_in_run}"
    )
    return RunJobsScraperResult(jobs=scraped.jobs, summary=summary, persisted=persisted)
