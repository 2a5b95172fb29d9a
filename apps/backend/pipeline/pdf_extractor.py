"""
Document text extractor.

Downloads an attachment and extracts its text. PDFs go through pdftotext when
it is installed and pdfminer.six otherwise; HTML and plain text are decoded
directly.
"""

import io
import os
import asyncio
import logging
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from core.net import HTTPClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_DOWNLOAD_BYTES = 20 * 1024 * 1024
PDFTOTEXT_TIMEOUT_SECONDS = 30


class DocumentExtractionError(Exception):
    """Raised when an attachment yields no usable text."""


@dataclass
class DocumentAttachment:
    name: str
    url: str
    media_type: Optional[str] = None


@dataclass
class ParsedDocument:
    name: str
    text: str
    truncated: bool = False


def normalize_document_text(text: str) -> str:
    """Collapse whitespace inside lines and drop blank lines, keeping line breaks."""
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def _is_pdf(attachment: DocumentAttachment) -> bool:
    media_type = (attachment.media_type or "").lower()
    if media_type == "application/pdf":
        return True
    return urlparse(attachment.url).path.lower().endswith(".pdf") or attachment.name.lower().endswith(".pdf")


def _is_text(attachment: DocumentAttachment) -> bool:
    media_type = (attachment.media_type or "").lower()
    return media_type.startswith("text/") or media_type in ("application/xhtml+xml", "application/xml")


class DocumentTextExtractor:
    """Extracts text from downloaded documents."""

    def __init__(self, http_client: HTTPClient, max_download_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES):
        self.http_client = http_client
        self.max_download_bytes = max_download_bytes
        self.has_pdftotext = self._check_pdftotext()

    def _check_pdftotext(self) -> bool:
        """Check if pdftotext is available."""
        try:
            subprocess.run(['pdftotext', '-v'], capture_output=True, check=True)
            return True
        except (subprocess.CalledProcessError, FileNotFoundError):
            return False

    async def extract_document_text(
        self,
        attachment: DocumentAttachment,
        max_text_chars: int,
        download_timeout_ms: int,
    ) -> ParsedDocument:
        """
        Download an attachment and extract its text.

        Args:
            attachment: Name, URL and optional media type
            max_text_chars: Text beyond this length is cut off
            download_timeout_ms: Download timeout

        Returns:
            ParsedDocument with normalized text

        Raises:
            DocumentExtractionError: Unsupported type or no text found
            FetchError: Download failed
        """
        if _is_pdf(attachment):
            body = await self.http_client.fetch_bytes(attachment.url, download_timeout_ms, self.max_download_bytes)
            raw_text = await asyncio.to_thread(self._extract_pdf_text, body)
        elif _is_text(attachment):
            body = await self.http_client.fetch_bytes(attachment.url, download_timeout_ms, self.max_download_bytes)
            decoded = body.decode("utf-8", errors="replace")
            if "html" in (attachment.media_type or ""):
                decoded = BeautifulSoup(decoded, "html.parser").get_text("\n")
            raw_text = decoded
        else:
            raise DocumentExtractionError(f"Unsupported document type for {attachment.name}")

        text = normalize_document_text(raw_text or "")
        if not text:
            raise DocumentExtractionError(f"No text found in {attachment.name}")

        truncated = len(text) > max_text_chars
        if truncated:
            text = text[:max_text_chars]
        logger.info(f"[documents] Extracted {len(text)} chars from {attachment.name} (truncated={truncated})")
        return ParsedDocument(name=attachment.name, text=text, truncated=truncated)

    def _extract_pdf_text(self, body: bytes) -> Optional[str]:
        if not body.startswith(b"%PDF"):
            raise DocumentExtractionError("Downloaded file is not a PDF")

        text = None
        if self.has_pdftotext:
            text = self._extract_with_pdftotext(body)
        if not text:
            text = self._extract_with_pdfminer(body)
        return text

    def _extract_with_pdftotext(self, body: bytes) -> Optional[str]:
        """Extract text using pdftotext."""
        fd, pdf_path = tempfile.mkstemp(suffix=".pdf")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(body)
            result = subprocess.run(
                ['pdftotext', '-layout', pdf_path, '-'],
                capture_output=True,
                text=True,
                timeout=PDFTOTEXT_TIMEOUT_SECONDS,
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout
        except (subprocess.SubprocessError, OSError) as e:
            logger.debug(f"pdftotext failed: {e}")
        finally:
            os.remove(pdf_path)
        return None

    def _extract_with_pdfminer(self, body: bytes) -> Optional[str]:
        """Extract text using pdfminer.six."""
        from pdfminer.high_level import extract_text
        from pdfminer.pdfparser import PDFSyntaxError

        try:
            text = extract_text(io.BytesIO(body))
        except PDFSyntaxError as e:
            logger.debug(f"pdfminer extraction failed: {e}")
            return None
        return text if text and text.strip() else None
