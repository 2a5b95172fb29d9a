"""
Job source registry.

Normalizes managed source records (as stored by the admin layer or listed in
config/job_sources.yaml) and turns them into scraper SourceConfigs. When no
managed source is enabled, the built-in LinkedIn Meghalaya searches are used.
"""
import re
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urldefrag, urlparse

from core.extraction_heuristics import get_hostname, is_linkedin_host
from core.text import normalize_whitespace
from crawler.models import (
    LOCATION_SCOPE_MEGHALAYA_ONLY,
    SourceConfig,
    SourceSelectors,
    normalize_location_scope,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCES_PATH = Path(__file__).parent.parent / 'config' / 'job_sources.yaml'

SOURCE_TYPES = ("linkedin", "generic", "auto")

LINKEDIN_SELECTORS = SourceSelectors(
    job_container="ul.jobs-search__results-list li",
    title="h3.base-search-card__title",
    location=".job-search-card__location",
    company="h4.base-search-card__subtitle",
    link="a.base-card__full-link",
    description=".base-search-card__metadata, .job-search-card__snippet",
    published_at="time",
)

GENERIC_SELECTORS = SourceSelectors(
    job_container="article, li, .job, [class*='job'], [data-job-id], [data-testid*='job']",
    title="h1, h2, h3, [class*='title'], a[href*='job'], a[href*='career']",
    location="[class*='location'], [data-location], .location, [class*='city'], [class*='place']",
    company="[class*='company'], [data-company], .company, [class*='employer'], [class*='organization']",
    link="a[href]",
    description="[class*='description'], .description, [class*='summary'], [class*='snippet'], p",
    published_at="time, [datetime], [class*='date'], [class*='posted']",
)

DEFAULT_JOB_SOURCES: List[SourceConfig] = [
    SourceConfig(
        name=f"LinkedIn Meghalaya {town}",
        url=f"https://in.linkedin.com/jobs/search/?keywords={town}&location=Meghalaya",
        selectors=LINKEDIN_SELECTORS,
        location_scope=LOCATION_SCOPE_MEGHALAYA_ONLY,
    )
    for town in ("Shillong", "Tura", "Jowai")
]

_ID_SLUG_RE = re.compile(r'[^a-z0-9]+')


@dataclass
class ManagedJobSource:
    id: str
    name: str
    url: str
    type: str = "auto"
    enabled: bool = True
    location_scope: str = LOCATION_SCOPE_MEGHALAYA_ONLY


@dataclass
class JobSourceResolution:
    managed_sources: List[ManagedJobSource]
    enabled_managed_sources: List[ManagedJobSource]
    scraper_sources: List[SourceConfig]
    used_fallback: bool
    explicit_sources: List[SourceConfig] = field(default_factory=list)


def _normalize_http_url(raw_url: Any) -> Optional[str]:
    if not isinstance(raw_url, str) or not raw_url.strip():
        return None
    url, _ = urldefrag(raw_url.strip())
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return url


def _sanitize_type(value: Any) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in SOURCE_TYPES else "auto"


def _sanitize_enabled(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return True


def _source_name_from_url(url: str) -> str:
    host = get_hostname(url)
    if host.startswith("www."):
        host = host[4:]
    return host or "Job source"


def normalize_managed_job_sources(raw_sources: Any) -> List[ManagedJobSource]:
    """
    Normalize raw managed source records.

    Records without a usable http(s) URL are dropped. Duplicate ids and
    duplicate URLs keep the first occurrence.
    """
    if not isinstance(raw_sources, list):
        return []

    sources: List[ManagedJobSource] = []
    seen_ids = set()
    seen_urls = set()
    for record in raw_sources:
        if not isinstance(record, dict):
            continue
        url = _normalize_http_url(record.get("url"))
        if not url:
            logger.warning(f"[sources] Dropping source with invalid URL: {record.get('url')!r}")
            continue

        name = normalize_whitespace(str(record.get("name") or "")) or _source_name_from_url(url)
        source_id = str(record.get("id") or "").strip() or _ID_SLUG_RE.sub('-', name.lower()).strip('-')
        if source_id in seen_ids or url in seen_urls:
            continue

        scope = normalize_location_scope(record, name)

        seen_ids.add(source_id)
        seen_urls.add(url)
        sources.append(ManagedJobSource(
            id=source_id,
            name=name,
            url=url,
            type=_sanitize_type(record.get("type")),
            enabled=_sanitize_enabled(record.get("enabled", True)),
            location_scope=scope,
        ))
    return sources


def to_job_source_config(source: ManagedJobSource) -> SourceConfig:
    """Attach selectors; "auto" means LinkedIn selectors on LinkedIn hosts, generic elsewhere."""
    effective_type = source.type
    if effective_type == "auto":
        effective_type = "linkedin" if is_linkedin_host(get_hostname(source.url)) else "generic"
    return SourceConfig(
        name=source.name,
        url=source.url,
        selectors=LINKEDIN_SELECTORS if effective_type == "linkedin" else GENERIC_SELECTORS,
        location_scope=source.location_scope,
    )


def resolve_job_scrape_sources(raw_sources: Any) -> JobSourceResolution:
    managed = normalize_managed_job_sources(raw_sources)
    enabled = [source for source in managed if source.enabled]
    used_fallback = not enabled
    if used_fallback:
        logger.info("[sources] No enabled managed sources, using default LinkedIn sources")
    return JobSourceResolution(
        managed_sources=managed,
        enabled_managed_sources=enabled,
        scraper_sources=list(DEFAULT_JOB_SOURCES) if used_fallback else [to_job_source_config(s) for s in enabled],
        used_fallback=used_fallback,
    )


def load_sources_file(path: Optional[Path] = None) -> JobSourceResolution:
    """
    Load sources from a YAML file with a top-level `sources:` list.

    Entries with a `selectors` mapping are explicit SourceConfigs and are used
    as-is; the rest are managed records. A missing file resolves to the defaults.
    """
    config_path = Path(path) if path else DEFAULT_SOURCES_PATH
    if not config_path.exists():
        logger.warning(f"Job sources file not found: {config_path}. Using defaults.")
        return resolve_job_scrape_sources([])

    with open(config_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    logger.info(f"Loaded job sources from {config_path}")

    entries = (data.get("sources") or []) if isinstance(data, dict) else []
    explicit: List[SourceConfig] = []
    managed_records: List[Dict[str, Any]] = []
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("selectors"), dict):
            if not _sanitize_enabled(entry.get("enabled", True)):
                continue
            explicit.append(SourceConfig.from_dict(entry))
        else:
            managed_records.append(entry)

    if explicit and not managed_records:
        return JobSourceResolution([], [], explicit, used_fallback=False, explicit_sources=explicit)

    resolution = resolve_job_scrape_sources(managed_records)
    if explicit:
        resolution.scraper_sources = explicit + ([] if resolution.used_fallback else resolution.scraper_sources)
        resolution.used_fallback = False
        resolution.explicit_sources = explicit
    return resolution
