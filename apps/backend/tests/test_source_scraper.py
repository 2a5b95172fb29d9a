"""
Tests for scraping a single source: extraction, filters and failure handling.
"""

import pytest
import httpx
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock
from bs4 import BeautifulSoup

from core.config import ScraperSettings
from core.net import HTTPClient
from crawler.models import LOCATION_SCOPE_ALL, SourceConfig, SourceSelectors
from crawler.source_registry import LINKEDIN_SELECTORS
from crawler.source_scraper import MISSING_SELECTORS_MESSAGE, SourceScraper, safe_attr, safe_text
from pipeline.pdf_enrichment import PdfEnricher
from pipeline.pdf_extractor import ParsedDocument

NOW = datetime(2024, 3, 20, 12, 0, 0, tzinfo=timezone.utc)

LINKEDIN_SOURCE = SourceConfig(
    name="LinkedIn Meghalaya Shillong",
    url="https://in.linkedin.com/jobs/search/?keywords=Shillong&location=Meghalaya",
    selectors=LINKEDIN_SELECTORS,
)


def linkedin_card(title, location, datetime_attr, href="https://in.linkedin.com/jobs/view/{slug}?refId=abc&trk=guest"):
    slug = title.lower().replace(" ", "-")
    link = f'<a class="base-card__full-link" href="{href.format(slug=slug)}"></a>' if href else ""
    return f"""
    <li>
      {link}
      <h3 class="base-search-card__title">{title}</h3>
      <h4 class="base-search-card__subtitle">Acme Pvt Ltd</h4>
      <div class="base-search-card__metadata">
        <span class="job-search-card__location">{location}</span>
        <time datetime="{datetime_attr}">recently</time>
      </div>
    </li>
    """


LINKEDIN_HTML = f"""
<html><head><title>Jobs in Shillong</title></head><body>
<ul class="jobs-search__results-list">
  {linkedin_card("Accountant", "Shillong, Meghalaya, India", "2024-03-18")}
  {linkedin_card("Store Manager", "Guwahati, Assam, India", "2024-03-18")}
  {linkedin_card("Site Engineer", "Tura, Meghalaya, India", "2024-01-02")}
  {linkedin_card("Tender Clerk", "Shillong, Meghalaya, India", "2024-03-19")}
  {linkedin_card("Data Entry Operator", "Jowai, Meghalaya, India", "2024-03-19", href="")}
</ul>
</body></html>
"""

GOV_SOURCE = SourceConfig(
    name="Health Department",
    url="https://health.meghalaya.gov.in/notices",
    selectors=SourceSelectors(
        job_container="table.jobs tr",
        title="td.title",
        location="td.place",
        company="td.dept",
        link="a",
        description="td.details",
    ),
)

GOV_HTML = """
<html><body>
  <div class="notice">
    <a href="/recruitment/junior-clerk.pdf">Recruitment of Junior Clerk, Shillong</a>
    <span>Published 18/03/2024</span>
  </div>
  <div class="footer">Contact the webmaster</div>
</body></html>
"""

NOTICE_TEXT = "Salary: Rs. 35,000 per month\nLast Date: 15/03/2024"


def make_scraper(html, status=200, settings=None):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(status, text=html)

    client = HTTPClient(transport=httpx.MockTransport(handler), retry_backoff_seconds=0)
    settings = settings or ScraperSettings()
    document_extractor = Mock()
    document_extractor.extract_document_text = AsyncMock(
        return_value=ParsedDocument(name="junior-clerk.pdf", text=NOTICE_TEXT)
    )
    pdf_cache = Mock()
    pdf_cache.cache_job_pdf_asset = AsyncMock(return_value="https://cdn.example.org/jobs/junior-clerk.pdf")
    enricher = PdfEnricher(client, settings, document_extractor, pdf_cache, {})
    return SourceScraper(client, settings, enricher, now=NOW), client, requests


class TestSafeAccessors:
    """Test selector helpers."""

    def test_invalid_selector_returns_empty(self):
        soup = BeautifulSoup("<div><p>x</p></div>", "html.parser")
        assert safe_text(soup, "p[") == ""
        assert safe_attr(soup, "a[", "href") == ""
        assert safe_text(soup, "") == ""

    def test_values(self):
        soup = BeautifulSoup('<div><a href=" /jobs/1 ">  Clerk \n post </a></div>', "html.parser")
        assert safe_text(soup, "a") == "Clerk post"
        assert safe_attr(soup, "a", "href") == "/jobs/1"
        assert safe_attr(soup, "a", "title") == ""


class TestScrapeLinkedIn:
    """Configured selectors on a LinkedIn search page."""

    @pytest.mark.asyncio
    async def test_extraction_and_filters(self):
        scraper, client, _ = make_scraper(LINKEDIN_HTML)
        async with client:
            jobs, stats = await scraper.scrape(LINKEDIN_SOURCE)

        assert len(jobs) == 1
        job = jobs[0]
        assert job.title == "Accountant"
        assert job.company == "Acme Pvt Ltd"
        assert job.location == "Shillong, Meghalaya, India"
        assert job.source_url == "https://in.linkedin.com/jobs/view/accountant"
        assert job.pdf_source_url is None

        assert stats.fetched
        assert stats.containers_scanned == 5
        assert stats.extracted == 1
        assert stats.filtered_by_location == 1
        assert stats.filtered_by_date == 1
        assert stats.filtered_by_keyword == 1
        assert stats.skipped_incomplete == 1
        assert stats.pdf_detail_attempts == 0
        assert stats.error_message is None

    @pytest.mark.asyncio
    async def test_all_locations_scope_keeps_other_regions(self):
        source = SourceConfig(
            name=LINKEDIN_SOURCE.name,
            url=LINKEDIN_SOURCE.url,
            selectors=LINKEDIN_SELECTORS,
            location_scope=LOCATION_SCOPE_ALL,
        )
        scraper, client, _ = make_scraper(LINKEDIN_HTML)
        async with client:
            jobs, stats = await scraper.scrape(source)

        assert [job.title for job in jobs] == ["Accountant", "Store Manager"]
        assert stats.filtered_by_location == 0

    @pytest.mark.asyncio
    async def test_item_cap(self):
        scraper, client, _ = make_scraper(LINKEDIN_HTML, settings=ScraperSettings(max_items_per_source=2))
        async with client:
            _, stats = await scraper.scrape(LINKEDIN_SOURCE)
        assert stats.containers_scanned == 2

    @pytest.mark.asyncio
    async def test_missing_date_is_filtered(self):
        html = LINKEDIN_HTML.replace('datetime="2024-03-18"', 'datetime=""')
        scraper, client, _ = make_scraper(html)
        async with client:
            jobs, stats = await scraper.scrape(LINKEDIN_SOURCE)
        assert jobs == []
        assert stats.filtered_by_date == 2


class TestScrapeFailures:
    """Source-level failures are isolated into stats."""

    @pytest.mark.asyncio
    async def test_missing_selectors(self):
        source = SourceConfig(
            name="Broken",
            url="https://x.gov.in/jobs",
            selectors=SourceSelectors(
                job_container="li", title="", location="span", company="b", link="a", description="p"
            ),
        )
        scraper, client, requests = make_scraper(LINKEDIN_HTML)
        jobs, stats = await scraper.scrape(source)

        assert jobs == []
        assert stats.error_message == MISSING_SELECTORS_MESSAGE
        assert stats.parse_errors == 1
        assert requests == []

    @pytest.mark.asyncio
    async def test_http_error(self):
        scraper, client, requests = make_scraper("unavailable", status=503)
        async with client:
            jobs, stats = await scraper.scrape(LINKEDIN_SOURCE)

        assert jobs == []
        assert stats.error_message == "HTTP 503 while fetching source."
        assert not stats.fetched
        assert stats.parse_errors == 0
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_invalid_container_selector(self):
        source = SourceConfig(
            name="Bad selector",
            url="https://x.gov.in/jobs",
            selectors=SourceSelectors(
                job_container="li[", title="a", location="span", company="b", link="a", description="p"
            ),
        )
        scraper, client, _ = make_scraper(LINKEDIN_HTML)
        async with client:
            jobs, stats = await scraper.scrape(source)

        assert jobs == []
        assert stats.fetched
        assert stats.parse_errors == 1
        assert stats.error_message.startswith("Invalid job container selector")


class TestScrapeGovernmentSource:
    """Heuristic fallback and PDF enrichment on a government page."""

    @pytest.mark.asyncio
    async def test_heuristic_containers_and_pdf(self):
        scraper, client, _ = make_scraper(GOV_HTML)
        async with client:
            jobs, stats = await scraper.scrape(GOV_SOURCE)

        assert len(jobs) == 1
        job = jobs[0]
        assert job.title == "Recruitment of Junior Clerk, Shillong"
        assert job.company == "Unknown"
        assert job.location == "Shillong, Meghalaya"
        assert job.source_url == "https://health.meghalaya.gov.in/recruitment/junior-clerk.pdf"
        assert job.pdf_source_url == job.source_url
        assert job.pdf_cached_url == "https://cdn.example.org/jobs/junior-clerk.pdf"
        assert "Salary: Rs. 35,000 per month" in job.description
        assert "Last Date to Apply: 15/03/2024" in job.description

        assert stats.containers_scanned == 1
        assert stats.pdf_detail_attempts == 1
        assert stats.pdf_detail_successes == 1
        assert stats.pdf_detail_failures == 0
        assert stats.pdf_fields_extracted == 2

    @pytest.mark.asyncio
    async def test_wrapper_section_not_counted_as_job(self):
        html = """
        <html><body>
          <section>
            <article>
              <a href="/notices/junior-clerk.pdf">Recruitment of Junior Clerk, Shillong</a>
              <span>Published 18/03/2024</span>
            </article>
            <article>
              <a href="/notices/staff-nurse.pdf">Recruitment of Staff Nurse, Tura</a>
              <span>Published 19/03/2024</span>
            </article>
          </section>
        </body></html>
        """
        scraper, client, _ = make_scraper(html)
        async with client:
            jobs, stats = await scraper.scrape(GOV_SOURCE)

        assert [job.title for job in jobs] == [
            "Recruitment of Junior Clerk, Shillong",
            "Recruitment of Staff Nurse, Tura",
        ]
        assert [job.source_url for job in jobs] == [
            "https://health.meghalaya.gov.in/notices/junior-clerk.pdf",
            "https://health.meghalaya.gov.in/notices/staff-nurse.pdf",
        ]
        assert stats.containers_scanned == 2
        assert stats.extracted == 2


class TestBasicScenario:
    """Generic source with configured selectors and a relative date."""

    SOURCE = SourceConfig(
        name="Example Careers",
        url="https://careers.example.org/openings",
        selectors=SourceSelectors(
            job_container=".job",
            title=".title",
            location=".location",
            company=".company",
            link="a",
            description=".desc",
            published_at=".posted",
        ),
    )

    HTML = """
    <div class="job">
      <a href="/openings/junior-clerk?utm_source=feed#apply"><span class="title">Junior Clerk Recruitment</span></a>
      <span class="company">Shillong College</span>
      <span class="location">{location}</span>
      <p class="desc">Apply with documents</p>
      <span class="posted">2 days ago</span>
    </div>
    """

    @pytest.mark.asyncio
    async def test_basic_extraction(self):
        scraper, client, _ = make_scraper(self.HTML.format(location="Shillong, Meghalaya"))
        async with client:
            jobs, stats = await scraper.scrape(self.SOURCE)

        assert len(jobs) == 1
        assert "Meghalaya" in jobs[0].location
        assert jobs[0].title == "Junior Clerk Recruitment"
        assert jobs[0].company == "Shillong College"
        assert jobs[0].description == "Apply with documents"
        assert jobs[0].source_url == "https://careers.example.org/openings/junior-clerk"
        assert stats.filtered_by_location == 0
        assert stats.filtered_by_date == 0

    @pytest.mark.asyncio
    async def test_location_filter(self):
        scraper, client, _ = make_scraper(self.HTML.format(location="Mumbai"))
        async with client:
            jobs, stats = await scraper.scrape(self.SOURCE)

        assert jobs == []
        assert stats.filtered_by_location == 1
