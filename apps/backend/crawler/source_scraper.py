"""
Source scraper.

Fetches one source's listing page, finds job containers (configured selector
first, heuristics second), extracts fields from each container, filters by
location scope, publish date and intent, and runs PDF enrichment on the rest.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag

from core.config import MAX_FALLBACK_TEXT_CHARS, ScraperSettings
from core.dates import is_within_lookback_window, parse_published_date
from core.extraction_heuristics import collect_heuristic_containers, resolve_source_url
from core.net import HTTPClient
from core.text import has_region_keyword, infer_location_from_text, normalize_whitespace, truncate_text
from crawler.models import LOCATION_SCOPE_MEGHALAYA_ONLY, ScrapedJobRow, SourceConfig, SourceScrapeStats
from pipeline.classifier import classify_job_intent
from pipeline.pdf_enrichment import PdfEnricher, PdfTextBudget

logger = logging.getLogger(__name__)

GENERIC_TITLE_SELECTOR = "h1, h2, h3, [class*='title'], a[href*='job'], a[href*='career']"
GENERIC_COMPANY_SELECTOR = "[class*='company'], .company, [class*='employer']"
GENERIC_LOCATION_SELECTOR = "[class*='location'], .location, [class*='city'], [class*='place']"
GENERIC_DESCRIPTION_SELECTOR = "[class*='description'], .description, [class*='summary'], p"
GENERIC_LINK_SELECTOR = "a[href*='job'], a[href*='career'], a[href]"
GENERIC_PUBLISHED_AT_SELECTOR = "time, [datetime], [class*='date'], [class*='posted']"

MAX_TITLE_CHARS = 240
MAX_CONTAINER_DESCRIPTION_CHARS = 4000
DEFAULT_COMPANY = "Unknown"
MISSING_SELECTORS_MESSAGE = "Missing one or more required selectors."


class SourceConfigError(ValueError):
    """Raised when a source cannot be scraped as configured."""


def safe_text(container: Tag, selector: Optional[str]) -> str:
    """Normalized text of the first match, or "" for empty/invalid selectors."""
    if not selector or not selector.strip():
        return ""
    try:
        element = container.select_one(selector)
    except Exception as e:
        logger.warning(f"[jobs_scraper] invalid_selector_text selector={selector!r}: {e}")
        return ""
    return normalize_whitespace(element.get_text(" ")) if element else ""


def safe_attr(container: Tag, selector: Optional[str], attr: str) -> str:
    """Attribute of the first match, or "" for empty/invalid selectors."""
    if not selector or not selector.strip():
        return ""
    try:
        element = container.select_one(selector)
    except Exception as e:
        logger.warning(f"[jobs_scraper] invalid_selector_attr selector={selector!r} attr={attr}: {e}")
        return ""
    if element is None:
        return ""
    value = element.get(attr)
    return value.strip() if isinstance(value, str) else ""


def validate_source_config(source: SourceConfig):
    missing = source.selectors.missing_required()
    if missing or not source.url:
        logger.debug(f"[jobs_scraper] source={source.name} missing selectors: {missing}")
        raise SourceConfigError(MISSING_SELECTORS_MESSAGE)


def extract_page_context(soup: BeautifulSoup) -> str:
    """Title and meta description of the listing page."""
    parts = []
    if soup.title and soup.title.string:
        parts.append(soup.title.string)
    for meta_name in ("description", "og:title", "og:description"):
        meta = soup.find("meta", attrs={"name": meta_name}) or soup.find("meta", attrs={"property": meta_name})
        if meta and meta.get("content"):
            parts.append(meta["content"])
    return normalize_whitespace(" ".join(parts))


class SourceScraper:
    """Scrapes one configured source at a time."""

    def __init__(
        self,
        http_client: HTTPClient,
        settings: ScraperSettings,
        enricher: PdfEnricher,
        now: Optional[datetime] = None,
    ):
        self.http_client = http_client
        self.settings = settings
        self.enricher = enricher
        self.now = now or datetime.now(timezone.utc)

    async def scrape(self, source: SourceConfig) -> Tuple[List[ScrapedJobRow], SourceScrapeStats]:
        """
        Scrape a source.

        Never raises: configuration, fetch and parse failures are recorded on the
        returned stats and yield an empty job list.

        Returns:
            (jobs, stats)
        """
        stats = SourceScrapeStats(source=source.name, source_url=source.url)

        try:
            validate_source_config(source)
        except SourceConfigError as e:
            stats.parse_errors += 1
            stats.error_message = str(e)
            logger.error(f"[jobs_scraper] source_config_error source={source.name}: {e}")
            return [], stats

        try:
            html = await self.http_client.fetch_text(
                source.url, self.settings.timeout_ms, self.settings.retry_attempts
            )
            stats.fetched = True
            soup = BeautifulSoup(html, "html.parser")

            try:
                containers = soup.select(source.selectors.job_container)
            except Exception as e:
                stats.parse_errors += 1
                stats.error_message = f"Invalid job container selector: {e}"
                logger.error(f"[jobs_scraper] invalid_container_selector source={source.name}: {e}")
                return [], stats

            if not containers:
                containers = collect_heuristic_containers(
                    soup, self.settings.max_items_per_source, self.settings.include_keywords
                )

            page_context = extract_page_context(soup)
            budget = PdfTextBudget(self.settings.max_pdf_enrichments_per_source)
            jobs: List[ScrapedJobRow] = []
            for container in containers[:self.settings.max_items_per_source]:
                stats.containers_scanned += 1
                job = await self._process_container(container, source, page_context, stats, budget)
                if job is not None:
                    jobs.append(job)

            stats.extracted = len(jobs)
            logger.info(
                f"[jobs_scraper] source_complete source={source.name} scanned={stats.containers_scanned} "
                f"extracted={stats.extracted} location={stats.filtered_by_location} "
                f"date={stats.filtered_by_date} keyword={stats.filtered_by_keyword} "
                f"incomplete={stats.skipped_incomplete} pdf={stats.pdf_detail_successes}/{stats.pdf_detail_attempts}"
            )
            return jobs, stats

        except Exception as e:
            if stats.fetched:
                stats.parse_errors += 1
            stats.error_message = str(e) or e.__class__.__name__
            logger.error(f"[jobs_scraper] source_failed source={source.name} url={source.url}: {stats.error_message}")
            return [], stats

    def _resolve_location(self, explicit: str, fallback_text: str, page_context: str, source: SourceConfig) -> str:
        if explicit:
            return explicit
        return infer_location_from_text(fallback_text, page_context, source.name, unquote(source.url)) or ""

    async def _process_container(
        self,
        container: Tag,
        source: SourceConfig,
        page_context: str,
        stats: SourceScrapeStats,
        budget: PdfTextBudget,
    ) -> Optional[ScrapedJobRow]:
        selectors = source.selectors
        fallback_text = truncate_text(normalize_whitespace(container.get_text(" ")), MAX_FALLBACK_TEXT_CHARS)

        title = (
            safe_text(container, selectors.title)
            or safe_text(container, GENERIC_TITLE_SELECTOR)
            or truncate_text(safe_text(container, "a[href]"), MAX_TITLE_CHARS)
        )
        company = safe_text(container, selectors.company) or safe_text(container, GENERIC_COMPANY_SELECTOR)
        explicit_location = (
            safe_text(container, selectors.location) or safe_text(container, GENERIC_LOCATION_SELECTOR)
        )
        raw_description = (
            safe_text(container, selectors.description) or safe_text(container, GENERIC_DESCRIPTION_SELECTOR)
        )
        href = safe_attr(container, selectors.link, "href") or safe_attr(container, GENERIC_LINK_SELECTOR, "href")
        if not href and container.name == "a":
            href = (container.get("href") or "").strip()
        item_url = resolve_source_url(source.url, href)

        if not title or not item_url:
            stats.skipped_incomplete += 1
            return None

        location = self._resolve_location(explicit_location, fallback_text, page_context, source)
        if source.location_scope == LOCATION_SCOPE_MEGHALAYA_ONLY and not has_region_keyword(location):
            stats.filtered_by_location += 1
            return None

        published_selector = selectors.published_at or GENERIC_PUBLISHED_AT_SELECTOR
        published_text = (
            safe_attr(container, published_selector, "datetime") or safe_text(container, published_selector)
        )
        published_at = parse_published_date(published_text, fallback_text, self.now)
        if published_at is None or not is_within_lookback_window(
            published_at, self.settings.lookback_days, self.now
        ):
            stats.filtered_by_date += 1
            return None

        description = truncate_text(raw_description or fallback_text, MAX_CONTAINER_DESCRIPTION_CHARS)
        decision = classify_job_intent(
            title,
            description,
            item_url,
            source.url,
            include_keywords=self.settings.include_keywords,
            exclude_keywords=self.settings.exclude_keywords,
        )
        if not decision.is_job:
            stats.filtered_by_keyword += 1
            logger.debug(f"[jobs_scraper] intent_rejected title={title[:80]!r} reason={decision.reason}")
            return None

        enrichment = await self.enricher.enrich(item_url, source.url, description, budget)
        if enrichment.attempted:
            stats.pdf_detail_attempts += 1
            if enrichment.text_extracted:
                stats.pdf_detail_successes += 1
            else:
                stats.pdf_detail_failures += 1
            stats.pdf_fields_extracted += enrichment.fields_extracted

        return ScrapedJobRow(
            title=truncate_text(title, MAX_TITLE_CHARS),
            company=company or DEFAULT_COMPANY,
            location=location,
            description=enrichment.description,
            source_url=item_url,
            pdf_source_url=enrichment.pdf_source_url,
            pdf_cached_url=enrichment.pdf_cached_url,
        )
