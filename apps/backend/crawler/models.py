"""
Data model for the jobs scraper.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

LOCATION_SCOPE_MEGHALAYA_ONLY = "meghalaya_only"
LOCATION_SCOPE_ALL = "all_locations"
LOCATION_SCOPES = (LOCATION_SCOPE_MEGHALAYA_ONLY, LOCATION_SCOPE_ALL)

logger = logging.getLogger(__name__)

# snake_case field -> camelCase alias accepted in config files
_SELECTOR_ALIASES = {
    "job_container": "jobContainer",
    "published_at": "publishedAt",
}


def normalize_location_scope(data: Dict[str, Any], source_name: str = "") -> str:
    """Read location_scope (or locationScope); unknown values fall back to meghalaya_only."""
    scope = data.get("location_scope") or data.get("locationScope") or LOCATION_SCOPE_MEGHALAYA_ONLY
    if scope not in LOCATION_SCOPES:
        logger.warning(f"[sources] Unknown location scope {scope!r} for {source_name}, using meghalaya_only")
        return LOCATION_SCOPE_MEGHALAYA_ONLY
    return scope


@dataclass(frozen=True)
class SourceSelectors:
    job_container: str
    title: str
    location: str
    company: str
    link: str
    description: str
    published_at: Optional[str] = None

    REQUIRED_FIELDS = ("job_container", "title", "location", "company", "link", "description")

    def missing_required(self) -> List[str]:
        return [name for name in self.REQUIRED_FIELDS if not (getattr(self, name) or "").strip()]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceSelectors":
        def pick(name: str) -> str:
            value = data.get(name)
            if value is None and name in _SELECTOR_ALIASES:
                value = data.get(_SELECTOR_ALIASES[name])
            return str(value).strip() if value is not None else ""

        return cls(
            job_container=pick("job_container"),
            title=pick("title"),
            location=pick("location"),
            company=pick("company"),
            link=pick("link"),
            description=pick("description"),
            published_at=pick("published_at") or None,
        )


@dataclass(frozen=True)
class SourceConfig:
    name: str
    url: str
    selectors: SourceSelectors
    location_scope: str = LOCATION_SCOPE_MEGHALAYA_ONLY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceConfig":
        """Build from a config-file entry; camelCase keys are accepted."""
        name = str(data.get("name") or data.get("url") or "").strip()
        return cls(
            name=name,
            url=str(data.get("url") or "").strip(),
            selectors=SourceSelectors.from_dict(data.get("selectors") or {}),
            location_scope=normalize_location_scope(data, name),
        )


@dataclass(frozen=True)
class ScrapedJobRow:
    title: str
    company: str
    location: str
    description: str
    source_url: str
    pdf_source_url: Optional[str] = None
    pdf_cached_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SourceScrapeStats:
    source: str
    source_url: str = ""
    fetched: bool = False
    containers_scanned: int = 0
    extracted: int = 0
    filtered_by_location: int = 0
    filtered_by_date: int = 0
    filtered_by_keyword: int = 0
    skipped_incomplete: int = 0
    parse_errors: int = 0
    pdf_detail_attempts: int = 0
    pdf_detail_successes: int = 0
    pdf_detail_failures: int = 0
    pdf_fields_extracted: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapeRunSummary:
    sources_processed: int
    total_sources: int
    lookback_days: int
    total_extracted: int = 0
    total_filtered_by_location: int = 0
    total_filtered_by_date: int = 0
    total_filtered_by_keyword: int = 0
    total_duplicates_in_run: int = 0
    cancelled: bool = False
    source_stats: List[SourceScrapeStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapeJobsResult:
    jobs: List[ScrapedJobRow]
    summary: ScrapeRunSummary


@dataclass
class SaveJobsResult:
    attempted: int = 0
    inserted: int = 0
    updated: int = 0
    skipped_duplicate: int = 0


@dataclass
class RunJobsScraperResult:
    jobs: List[ScrapedJobRow]
    summary: ScrapeRunSummary
    persisted: SaveJobsResult


@dataclass
class SourceLifecycleEvent:
    source: SourceConfig
    source_index: int
    total_sources: int
    stats: Optional[SourceScrapeStats] = None


MaybeAwaitable = Union[Any, Awaitable[Any]]


@dataclass
class JobsScraperRuntimeOptions:
    """
    Options supplied by the caller of a run.

    should_cancel and the lifecycle callbacks may be plain functions or
    coroutine functions.
    """
    lookback_days: Optional[int] = None
    should_cancel: Optional[Callable[[], MaybeAwaitable]] = None
    on_source_start: Optional[Callable[[SourceLifecycleEvent], MaybeAwaitable]] = None
    on_source_complete: Optional[Callable[[SourceLifecycleEvent], MaybeAwaitable]] = None
