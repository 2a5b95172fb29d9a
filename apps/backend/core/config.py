"""
Scraper configuration.

Resolves the jobs scraper runtime settings from environment variables once per run.
Every field has a hardcoded fallback so the scraper runs with an empty environment.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 15000
DEFAULT_FETCH_RETRY_ATTEMPTS = 2
DEFAULT_MAX_ITEMS_PER_SOURCE = 200
DEFAULT_MAX_PDF_ENRICHMENTS_PER_SOURCE = 8
DEFAULT_MAX_PDF_TEXT_CHARS = 12000
DEFAULT_LOOKBACK_DAYS = 10
MIN_LOOKBACK_DAYS = 1
MAX_LOOKBACK_DAYS = 365

MAX_DESCRIPTION_CHARS = 8000
MAX_FALLBACK_TEXT_CHARS = 600
MAX_DETAIL_TEXT_CHARS = 4000
MAX_PDF_CANDIDATES_PER_JOB = 3

DEFAULT_INCLUDE_KEYWORDS: Tuple[str, ...] = (
    "job", "jobs", "vacancy", "vacancies", "recruitment", "recruit", "hiring",
    "career", "careers", "opening", "openings", "post", "posts", "position",
    "positions", "walk in", "walk-in", "interview", "apply", "employment",
    "engagement", "contractual", "appointment", "internship", "fellowship",
)

DEFAULT_EXCLUDE_KEYWORDS: Tuple[str, ...] = (
    "tender", "tenders", "quotation", "quotations", "auction", "procurement",
    "expression of interest", "eoi", "rfp", "bid", "bids", "corrigendum",
    "result", "results", "admit card", "answer key", "syllabus", "merit list",
)


def parse_positive_int(raw_value: Optional[str], fallback: int, allow_zero: bool = False) -> int:
    """Parse an integer env value, returning the fallback for blanks and invalid values."""
    if raw_value is None or not str(raw_value).strip():
        return fallback
    try:
        value = int(str(raw_value).strip())
    except ValueError:
        logger.warning(f"[config] Ignoring non-integer value {raw_value!r}, using {fallback}")
        return fallback
    if value < 0 or (value == 0 and not allow_zero):
        logger.warning(f"[config] Ignoring out-of-range value {raw_value!r}, using {fallback}")
        return fallback
    return value


def parse_keyword_list(raw_value: Optional[str], fallback: Tuple[str, ...]) -> Tuple[str, ...]:
    """
    Parse a comma-separated keyword override.

    The override replaces the fallback entirely, but only if it yields at least
    one non-empty token.
    """
    if not raw_value:
        return tuple(fallback)
    keywords = [k.strip().lower() for k in raw_value.split(',') if k.strip()]
    if not keywords:
        return tuple(fallback)
    return tuple(keywords)


def clamp_lookback_days(value: int) -> int:
    return max(MIN_LOOKBACK_DAYS, min(MAX_LOOKBACK_DAYS, value))


@dataclass(frozen=True)
class ScraperSettings:
    """Effective parameters for one scraper run."""

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_attempts: int = DEFAULT_FETCH_RETRY_ATTEMPTS
    max_items_per_source: int = DEFAULT_MAX_ITEMS_PER_SOURCE
    max_pdf_enrichments_per_source: int = DEFAULT_MAX_PDF_ENRICHMENTS_PER_SOURCE
    max_pdf_text_chars: int = DEFAULT_MAX_PDF_TEXT_CHARS
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    include_keywords: Tuple[str, ...] = field(default=DEFAULT_INCLUDE_KEYWORDS)
    exclude_keywords: Tuple[str, ...] = field(default=DEFAULT_EXCLUDE_KEYWORDS)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        lookback_days: Optional[int] = None,
    ) -> "ScraperSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)
            lookback_days: Runtime override that takes precedence over JOBS_SCRAPE_LOOKBACK_DAYS

        Returns:
            ScraperSettings with every field resolved
        """
        env = os.environ if environ is None else environ

        if lookback_days is not None:
            resolved_lookback = clamp_lookback_days(int(lookback_days))
        else:
            resolved_lookback = clamp_lookback_days(
                parse_positive_int(env.get('JOBS_SCRAPE_LOOKBACK_DAYS'), DEFAULT_LOOKBACK_DAYS)
            )

        settings = cls(
            timeout_ms=parse_positive_int(env.get('JOBS_SCRAPE_TIMEOUT_MS'), DEFAULT_TIMEOUT_MS),
            retry_attempts=parse_positive_int(
                env.get('JOBS_SCRAPE_FETCH_RETRY_ATTEMPTS'), DEFAULT_FETCH_RETRY_ATTEMPTS, allow_zero=True
            ),
            max_items_per_source=parse_positive_int(
                env.get('JOBS_SCRAPE_MAX_ITEMS_PER_SOURCE'), DEFAULT_MAX_ITEMS_PER_SOURCE
            ),
            max_pdf_enrichments_per_source=parse_positive_int(
                env.get('JOBS_SCRAPE_MAX_PDF_ENRICHMENTS_PER_SOURCE'),
                DEFAULT_MAX_PDF_ENRICHMENTS_PER_SOURCE,
                allow_zero=True,
            ),
            max_pdf_text_chars=parse_positive_int(
                env.get('JOBS_SCRAPE_MAX_PDF_TEXT_CHARS'), DEFAULT_MAX_PDF_TEXT_CHARS
            ),
            lookback_days=resolved_lookback,
            include_keywords=parse_keyword_list(
                env.get('JOBS_SCRAPE_INCLUDE_KEYWORDS'), DEFAULT_INCLUDE_KEYWORDS
            ),
            exclude_keywords=parse_keyword_list(
                env.get('JOBS_SCRAPE_EXCLUDE_KEYWORDS'), DEFAULT_EXCLUDE_KEYWORDS
            ),
        )

        logger.info(
            f"ScraperSettings: timeout={settings.timeout_ms}ms, retries={settings.retry_attempts}, "
            f"max_items={settings.max_items_per_source}, pdf_budget={settings.max_pdf_enrichments_per_source}, "
            f"lookback={settings.lookback_days}d, include={len(settings.include_keywords)}, "
            f"exclude={len(settings.exclude_keywords)}"
        )
        return settings

