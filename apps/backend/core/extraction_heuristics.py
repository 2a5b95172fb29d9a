"""
Extraction heuristics for job listing pages.

URL canonicalization, host classification, and the fallback strategies used to
find job containers when a source's configured selector matches nothing.
"""
import re
import logging
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import urljoin, urlparse, urlunparse
from bs4 import BeautifulSoup, Tag

from core.text import (
    find_matched_keywords,
    has_region_keyword,
    looks_like_job_listing_text,
    normalize_whitespace,
)

logger = logging.getLogger(__name__)

TRUSTED_JOB_BOARD_HOSTS = ("linkedin.com",)
GOVERNMENT_HOST_SUFFIXES = (".gov", ".gov.in")

_TRUSTED_JOB_PATH_RE = re.compile(r'^/(?:[a-z]{2}/)?jobs(?:/(?:view|search|collections)\b|/?$|-guest/)', re.IGNORECASE)

# Anchors that point at job-like pages
JOB_ANCHOR_SELECTOR = (
    "a[href*='job' i], a[href*='career' i], a[href*='vacancy' i], "
    "a[href*='opening' i], a[href*='recruit' i]"
)
BLOCK_TAGS = ("article", "li", "div", "section", "tr")
BROAD_LISTING_SELECTOR = "article, li, section, tr, [class*='job'], [data-job-id]"

MIN_CONTAINER_TEXT_CHARS = 20
MIN_HEURISTIC_SCAN = 300
HEURISTIC_SCAN_MULTIPLIER = 8


def resolve_source_url(base_url: str, href: Optional[str]) -> str:
    """
    Resolve href against base_url and canonicalize it for deduplication:
    query string and fragment are dropped, only http(s) URLs survive.

    Returns:
        Canonical URL, or "" when href is empty or unusable
    """
    if not href or not href.strip():
        return ""
    try:
        resolved = urlparse(urljoin(base_url, href.strip()))
    except ValueError as e:
        logger.debug(f"[heuristics] Could not resolve {href!r} against {base_url}: {e}")
        return ""
    if resolved.scheme not in ("http", "https") or not resolved.netloc:
        return ""
    return urlunparse((resolved.scheme, resolved.netloc.lower(), resolved.path or "/", resolved.params, "", ""))


def get_hostname(url: Optional[str]) -> str:
    if not url:
        return ""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith(f".{domain}")


def is_linkedin_host(host: str) -> bool:
    return _host_matches(host, "linkedin.com")


def is_trusted_job_board_url(url: Optional[str]) -> bool:
    """Known job-board host with a job view/search path."""
    host = get_hostname(url)
    if not host or not any(_host_matches(host, d) for d in TRUSTED_JOB_BOARD_HOSTS):
        return False
    return bool(_TRUSTED_JOB_PATH_RE.search(urlparse(url).path or "/"))


def is_government_host(host: str) -> bool:
    return bool(host) and host.endswith(GOVERNMENT_HOST_SUFFIXES)


def looks_like_pdf_url(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.path.lower().endswith(".pdf") or ".pdf" in parsed.query.lower()


def is_relevant_container_text(text: str, include_keywords: Iterable[str]) -> bool:
    """Long enough, and either job-like or mentioning the target region."""
    if len(text) < MIN_CONTAINER_TEXT_CHARS:
        return False
    return (
        looks_like_job_listing_text(text)
        or bool(find_matched_keywords(text, include_keywords))
        or has_region_keyword(text)
    )


def _closest_block(anchor: Tag) -> Optional[Tag]:
    for parent in anchor.parents:
        if not isinstance(parent, Tag) or parent.name in ("body", "html", "[document]"):
            return None
        if parent.name in BLOCK_TAGS:
            return parent
        classes = " ".join(parent.get("class", [])).lower()
        if "job" in classes:
            return parent
    return None


def drop_enclosing_containers(elements: Sequence[Tag]) -> List[Tag]:
    """Keep the innermost candidates; an element that contains another candidate is dropped."""
    selected = {id(element) for element in elements}
    enclosing = set()
    for element in elements:
        for parent in element.parents:
            if id(parent) in selected:
                enclosing.add(id(parent))
    return [element for element in elements if id(element) not in enclosing]


def anchor_block_strategy(soup: BeautifulSoup, include_keywords: Sequence[str], max_scan: int) -> List[Tag]:
    """Block-level ancestors of job-like anchors."""
    containers: List[Tag] = []
    seen = set()
    for anchor in soup.select(JOB_ANCHOR_SELECTOR)[:max_scan]:
        block = _closest_block(anchor)
        if block is None or id(block) in seen:
            continue
        seen.add(id(block))
        if is_relevant_container_text(normalize_whitespace(block.get_text(" ")), include_keywords):
            containers.append(block)
    return drop_enclosing_containers(containers)


def broad_listing_strategy(soup: BeautifulSoup, include_keywords: Sequence[str], max_scan: int) -> List[Tag]:
    """Generic listing-like tags under the same relevance filter."""
    return drop_enclosing_containers([
        element
        for element in soup.select(BROAD_LISTING_SELECTOR)[:max_scan]
        if is_relevant_container_text(normalize_whitespace(element.get_text(" ")), include_keywords)
    ])


ContainerStrategy = Callable[[BeautifulSoup, Sequence[str], int], List[Tag]]

HEURISTIC_CONTAINER_STRATEGIES: Sequence[ContainerStrategy] = (
    anchor_block_strategy,
    broad_listing_strategy,
)


def collect_heuristic_containers(
    soup: BeautifulSoup,
    max_items: int,
    include_keywords: Sequence[str],
    strategies: Sequence[ContainerStrategy] = HEURISTIC_CONTAINER_STRATEGIES,
) -> List[Tag]:
    """
    Run the container strategies in order; the first non-empty result wins.

    Args:
        soup: Parsed listing page
        max_items: Per-source item cap, used to bound how many elements are scanned
        include_keywords: Job vocabulary used by the relevance filter
        strategies: Ranked strategies

    Returns:
        Candidate container elements in document order
    """
    max_scan = max(max_items * HEURISTIC_SCAN_MULTIPLIER, MIN_HEURISTIC_SCAN)
    for strategy in strategies:
        containers = strategy(soup, include_keywords, max_scan)
        if containers:
            logger.info(f"[heuristics] {strategy.__name__} found {len(containers)} containers")
            return containers
    return []
