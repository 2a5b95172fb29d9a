"""
Unit tests for link heuristics.
Tests URL canonicalization, host classification and heuristic container discovery.
"""
import pytest
from bs4 import BeautifulSoup
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "apps" / "backend"))

from core.config import DEFAULT_INCLUDE_KEYWORDS
from core.extraction_heuristics import (
    anchor_block_strategy, broad_listing_strategy, collect_heuristic_containers,
    drop_enclosing_containers, is_government_host, is_trusted_job_board_url, looks_like_pdf_url, resolve_source_url
)


def test_url_canonicalization():
    """Test that listing URLs are canonicalized for deduplication."""
    url = resolve_source_url("https://example.com/jobs", "/job/123?utm_source=google&id=456#apply")
    assert url == "https://example.com/job/123"

    # Host lowercased, path case kept
    assert resolve_source_url("https://example.com", "HTTPS://EXAMPLE.COM/Job/123") == "https://example.com/Job/123"

    # Relative links resolve against the listing page
    assert resolve_source_url("https://megpsc.gov.in/advt/list.html", "notice-12.pdf") == \
        "https://megpsc.gov.in/advt/notice-12.pdf"


def test_unusable_links_rejected():
    """Test that mailto, javascript and empty links resolve to nothing."""
    assert resolve_source_url("https://example.com", "mailto:hr@org.org") == ""
    assert resolve_source_url("https://example.com", "javascript:void(0)") == ""
    assert resolve_source_url("https://example.com", "   ") == ""
    assert resolve_source_url("https://example.com", None) == ""


def test_host_classification():
    """Test trusted job-board and government host detection."""
    assert is_trusted_job_board_url("https://in.linkedin.com/jobs/view/clerk-123") == True
    assert is_trusted_job_board_url("https://www.linkedin.com/jobs/search/?location=Shillong") == True
    assert is_trusted_job_board_url("https://www.linkedin.com/company/acme") == False
    assert is_trusted_job_board_url("https://notlinkedin.com/jobs/view/1") == False

    assert is_government_host("meghalaya.gov.in") == True
    assert is_government_host("usajobs.gov") == True
    assert is_government_host("gov.example.com") == False
    assert is_government_host("") == False


def test_pdf_url_detection():
    """Test PDF URL detection by path and query."""
    assert looks_like_pdf_url("https://x.gov.in/files/Advt.PDF") == True
    assert looks_like_pdf_url("https://x.gov.in/download.php?file=advt.pdf") == True
    assert looks_like_pdf_url("https://x.gov.in/pdf-notices") == False
    assert looks_like_pdf_url(None) == False


def test_anchor_block_strategy():
    """Test that block ancestors of job-like anchors become containers."""
    html = """
    <html>
        <body>
            <ul>
                <li><a href="/jobs/1">Junior Clerk vacancy at Shillong office</a></li>
                <li><a href="/careers/2">Recruitment of Staff Nurse, Tura</a></li>
                <li><a href="/about">About the department and its history</a></li>
                <li><a href="/jobs/3">Jobs</a></li>
            </ul>
        </body>
    </html>
    """
    soup = BeautifulSoup(html, 'html.parser')

    containers = anchor_block_strategy(soup, DEFAULT_INCLUDE_KEYWORDS, 300)

    # Short and non-job blocks are dropped
    assert [c.a['href'] for c in containers] == ["/jobs/1", "/careers/2"]


def test_broad_listing_fallback():
    """Test that listing-like tags are used when no job anchors exist."""
    html = """
    <html>
        <body>
            <table>
                <tr><td>Walk-in interview for Data Entry Operator, Jowai</td><td><a href="/n/1.pdf">View</a></td></tr>
                <tr><td>Office closed on public holiday</td></tr>
            </table>
        </body>
    </html>
    """
    soup = BeautifulSoup(html, 'html.parser')

    assert anchor_block_strategy(soup, DEFAULT_INCLUDE_KEYWORDS, 300) == []
    rows = broad_listing_strategy(soup, DEFAULT_INCLUDE_KEYWORDS, 300)
    assert len(rows) == 1

    containers = collect_heuristic_containers(soup, 10, DEFAULT_INCLUDE_KEYWORDS)
    assert containers == rows


def test_broad_listing_keeps_innermost_containers():
    """Test that a wrapper around several listings is not a container itself."""
    html = """
    <html>
        <body>
            <section>
                <article>Walk-in interview for Data Entry Operator, Jowai <a href="/n/1.pdf">View</a></article>
                <article>Recruitment of Staff Nurse at Tura civil hospital <a href="/n/2.pdf">View</a></article>
            </section>
        </body>
    </html>
    """
    soup = BeautifulSoup(html, 'html.parser')

    containers = broad_listing_strategy(soup, DEFAULT_INCLUDE_KEYWORDS, 300)

    assert [c.name for c in containers] == ["article", "article"]
    assert [c.a['href'] for c in containers] == ["/n/1.pdf", "/n/2.pdf"]


def test_anchor_blocks_keep_innermost_containers():
    """Test that an index link in a wrapping block does not swallow nested listings."""
    html = """
    <html>
        <body>
            <section>
                <a href="/jobs">All jobs at the Directorate of Health Services</a>
                <article><a href="/jobs/1">Junior Clerk vacancy at Shillong office</a></article>
            </section>
        </body>
    </html>
    """
    soup = BeautifulSoup(html, 'html.parser')

    containers = anchor_block_strategy(soup, DEFAULT_INCLUDE_KEYWORDS, 300)

    assert [c.name for c in containers] == ["article"]
    assert drop_enclosing_containers([soup.section, soup.article]) == [soup.article]
    assert drop_enclosing_containers([soup.section]) == [soup.section]


def test_first_non_empty_strategy_wins():
    """Test that strategies run in order and stop at the first hit."""
    soup = BeautifulSoup("<div>Vacancy for the post of Driver in Shillong</div>", 'html.parser')
    calls = []

    def empty(soup, keywords, max_scan):
        calls.append('empty')
        return []

    def found(soup, keywords, max_scan):
        calls.append(('found', max_scan))
        return [soup.div]

    def never(soup, keywords, max_scan):
        calls.append('never')
        return []

    containers = collect_heuristic_containers(soup, 100, DEFAULT_INCLUDE_KEYWORDS, strategies=(empty, found, never))

    assert containers == [soup.div]
    # Scan limit is max(max_items * 8, 300)
    assert calls == ['empty', ('found', 800)]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
