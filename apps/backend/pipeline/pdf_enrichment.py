"""
PDF enrichment for job listings.

Government recruitment notices usually carry the real posting in a linked PDF.
For those listings the detail page is fetched, PDF links on it are ranked by
how job-like their surroundings are, and the text of the best PDF is merged
into the job description together with salary and date fields parsed from it.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from core.config import MAX_DESCRIPTION_CHARS, MAX_DETAIL_TEXT_CHARS, MAX_PDF_CANDIDATES_PER_JOB, ScraperSettings
from core.extraction_heuristics import get_hostname, is_government_host, is_linkedin_host, looks_like_pdf_url
from core.net import HTTPClient
from core.text import find_matched_keywords, normalize_whitespace, truncate_text
from pipeline.heuristics import extract_pdf_fields, merge_description_text
from pipeline.pdf_extractor import DocumentAttachment, DocumentTextExtractor

logger = logging.getLogger(__name__)

PDF_JOB_CONTEXT_KEYWORDS = (
    "recruitment", "vacancy", "vacancies", "job", "jobs", "post", "posts",
    "advertisement", "advt", "notification", "walk in", "interview",
    "engagement", "application", "apply", "appointment", "contractual",
)
PDF_ORG_CONTEXT_KEYWORDS = (
    "meghalaya", "government", "govt", "department", "directorate", "council",
    "board", "society", "mission", "university", "commission", "office",
)
JOB_CONTEXT_WEIGHT = 3
ORG_CONTEXT_WEIGHT = 1

PDF_SOURCE_ELEMENTS = (("a", "href"), ("iframe", "src"), ("embed", "src"), ("object", "data"))
DETAIL_NOISE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "form", "template")
MAX_CONTEXT_CHARS = 300


@dataclass
class PdfEnrichmentResult:
    description: str
    pdf_source_url: Optional[str] = None
    pdf_cached_url: Optional[str] = None
    attempted: bool = False
    text_extracted: bool = False
    fields_extracted: int = 0


class PdfTextBudget:
    """Per-source allowance of PDF text extractions."""

    def __init__(self, remaining: int):
        self.remaining = max(0, remaining)

    def consume(self) -> bool:
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return True


def should_attempt_pdf_enrichment(item_url: str, source_url: Optional[str] = None) -> bool:
    """
    Job-board hosts never get PDF enrichment. Otherwise enrich when the item
    itself is a PDF, or when the item or source lives on a government domain.
    """
    item_host = get_hostname(item_url)
    source_host = get_hostname(source_url)
    if is_linkedin_host(item_host) or is_linkedin_host(source_host):
        return False
    if looks_like_pdf_url(item_url):
        return True
    return is_government_host(item_host) or is_government_host(source_host)


def _resolve_pdf_url(base_url: str, raw_url: Optional[str]) -> str:
    if not raw_url or not raw_url.strip():
        return ""
    try:
        resolved, _ = urldefrag(urljoin(base_url, raw_url.strip()))
    except ValueError:
        return ""
    if urlparse(resolved).scheme not in ("http", "https"):
        return ""
    return resolved


def _candidate_context(element: Tag) -> str:
    parts = [
        element.get_text(" "),
        element.get("title") or "",
        element.get("aria-label") or "",
        " ".join(element.get("class", [])),
    ]
    parent = element.parent
    if isinstance(parent, Tag):
        parts.append(parent.get_text(" ")[:MAX_CONTEXT_CHARS])
    return normalize_whitespace(" ".join(parts))


def score_pdf_candidate_context(context: str, url: str) -> int:
    text = f"{context} {urlparse(url).path}"
    return (
        JOB_CONTEXT_WEIGHT * len(find_matched_keywords(text, PDF_JOB_CONTEXT_KEYWORDS))
        + ORG_CONTEXT_WEIGHT * len(find_matched_keywords(text, PDF_ORG_CONTEXT_KEYWORDS))
    )


def extract_pdf_candidates_from_html(html: Union[str, BeautifulSoup], base_url: str) -> List[str]:
    """
    Find PDF links in anchors, iframes, embeds and objects.

    Returns:
        Unique resolved PDF URLs, best-scored first; ties keep document order
    """
    soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html or "", "html.parser")

    scores: Dict[str, int] = {}
    order: List[str] = []
    for tag_name, attr in PDF_SOURCE_ELEMENTS:
        for element in soup.find_all(tag_name, attrs={attr: True}):
            url = _resolve_pdf_url(base_url, element.get(attr))
            if not url or not looks_like_pdf_url(url):
                continue
            score = score_pdf_candidate_context(_candidate_context(element), url)
            if url not in scores:
                order.append(url)
                scores[url] = score
            else:
                scores[url] = max(scores[url], score)

    # stable sort: equal scores keep discovery order
    return sorted(order, key=lambda u: -scores[u])


def extract_detail_page_text(soup: BeautifulSoup, max_chars: int = MAX_DETAIL_TEXT_CHARS) -> str:
    """Readable body text of a detail page, without navigation and scripts."""
    for tag in soup.find_all(DETAIL_NOISE_TAGS):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    return truncate_text(normalize_whitespace(root.get_text(" ")), max_chars)


def _attachment_name(url: str) -> str:
    name = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    return name or "document.pdf"


def build_enriched_description(base_description: str, field_lines: List[str], pdf_url: str, pdf_text: str) -> str:
    sections = [section for section in (base_description.strip(), "\n".join(field_lines)) if section]
    sections.append(f"PDF Source: {pdf_url}")
    sections.append(pdf_text.strip())
    return truncate_text("\n\n".join(sections), MAX_DESCRIPTION_CHARS)


class PdfEnricher:
    """Runs PDF enrichment for the listings of one scraper run."""

    def __init__(
        self,
        http_client: HTTPClient,
        settings: ScraperSettings,
        document_extractor: DocumentTextExtractor,
        pdf_cache,
        pdf_url_cache: Dict[str, Optional[str]],
    ):
        """
        Args:
            http_client: Client for detail page fetches
            settings: Run settings (timeouts and text limits)
            document_extractor: Provides extract_document_text()
            pdf_cache: Provides async cache_job_pdf_asset(url)
            pdf_url_cache: Run-scoped PDF URL -> cached URL map, shared by every source
        """
        self.http_client = http_client
        self.settings = settings
        self.document_extractor = document_extractor
        self.pdf_cache = pdf_cache
        self.pdf_url_cache = pdf_url_cache

    async def _cache_pdf(self, pdf_url: str) -> Optional[str]:
        if pdf_url in self.pdf_url_cache:
            return self.pdf_url_cache[pdf_url]
        try:
            cached_url = await self.pdf_cache.cache_job_pdf_asset(pdf_url)
        except Exception as e:
            logger.warning(f"[pdf_enrichment] Caching failed for {pdf_url}: {e}")
            cached_url = None
        self.pdf_url_cache[pdf_url] = cached_url
        return cached_url

    async def _extract_text(self, pdf_url: str) -> str:
        name = _attachment_name(pdf_url)
        try:
            document = await self.document_extractor.extract_document_text(
                DocumentAttachment(name=name, url=pdf_url, media_type="application/pdf"),
                max_text_chars=self.settings.max_pdf_text_chars,
                download_timeout_ms=self.settings.timeout_ms,
            )
        except Exception as e:
            logger.warning(f"[pdf_enrichment] No text from {pdf_url}: {e}")
            return ""
        return document.text.strip()

    async def _fetch_detail_page(self, item_url: str) -> Optional[BeautifulSoup]:
        try:
            html = await self.http_client.fetch_text(item_url, self.settings.timeout_ms, retry_attempts=0)
        except Exception as e:
            logger.warning(f"[pdf_enrichment] Detail page fetch failed for {item_url}: {e}")
            return None
        return BeautifulSoup(html, "html.parser")

    async def enrich(
        self,
        item_url: str,
        source_url: str,
        fallback_description: str,
        budget: PdfTextBudget,
    ) -> PdfEnrichmentResult:
        """
        Enrich one listing.

        Args:
            item_url: Canonical listing URL
            source_url: URL of the listing's source
            fallback_description: Description taken from the listing container
            budget: Remaining PDF text extractions for the source

        Returns:
            PdfEnrichmentResult; description is always set
        """
        if not should_attempt_pdf_enrichment(item_url, source_url):
            return PdfEnrichmentResult(description=fallback_description)

        detail_text = ""
        if looks_like_pdf_url(item_url):
            candidates = [item_url]
        else:
            soup = await self._fetch_detail_page(item_url)
            candidates = []
            if soup is not None:
                candidates = extract_pdf_candidates_from_html(soup, item_url)
                detail_text = extract_detail_page_text(soup)

        base_description = merge_description_text(fallback_description, detail_text)

        first_pdf_url: Optional[str] = None
        first_cached_url: Optional[str] = None
        for pdf_url in candidates[:MAX_PDF_CANDIDATES_PER_JOB]:
            cached_url = await self._cache_pdf(pdf_url)
            if first_pdf_url is None:
                first_pdf_url, first_cached_url = pdf_url, cached_url

            if not budget.consume():
                logger.debug(f"[pdf_enrichment] Text budget exhausted, skipping {pdf_url}")
                break

            pdf_text = await self._extract_text(pdf_url)
            if not pdf_text:
                continue

            fields = extract_pdf_fields(pdf_text)
            return PdfEnrichmentResult(
                description=build_enriched_description(base_description, fields.to_lines(), pdf_url, pdf_text),
                pdf_source_url=pdf_url,
                pdf_cached_url=cached_url,
                attempted=True,
                text_extracted=True,
                fields_extracted=fields.count(),
            )

        return PdfEnrichmentResult(
            description=truncate_text(base_description, MAX_DESCRIPTION_CHARS),
            pdf_source_url=first_pdf_url,
            pdf_cached_url=first_cached_url,
            attempted=True,
        )
