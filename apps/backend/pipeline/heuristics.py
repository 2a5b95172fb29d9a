"""
Field heuristics for recruitment notice text.

Pulls salary, application deadline and notification date out of free text
(usually extracted from a PDF notice) using keyword-anchored patterns.
Synonym lists are kept as data so they can be extended per region.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from core.text import normalize_whitespace, truncate_text

SALARY_LABELS = (
    "salary",
    "pay scale",
    "pay level",
    "pay band",
    "pay matrix",
    "remuneration",
    "emoluments",
    "consolidated pay",
    "stipend",
    "honorarium",
    "compensation",
)

DEADLINE_KEYWORDS = (
    "last date of submission",
    "last date for submission",
    "last date of receipt",
    "last date to apply",
    "last date for applying",
    "last date",
    "closing date",
    "application deadline",
    "deadline",
    "apply before",
    "apply by",
    "on or before",
)

NOTIFICATION_KEYWORDS = (
    "date of notification",
    "notification date",
    "date of advertisement",
    "advertisement date",
    "date of issue",
    "issued on",
    "dated",
)

# Field values stop at the next label that commonly follows on the same line
FIELD_STOP_WORDS = (
    "last date",
    "closing date",
    "deadline",
    "age limit",
    "qualification",
    "eligibility",
    "no of post",
    "number of post",
    "how to apply",
    "selection",
)

MAX_FIELD_VALUE_CHARS = 120
KEYWORD_DATE_WINDOW_CHARS = 100

_MONTHS = r'(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?'
INLINE_DATE_PATTERN = (
    r'(?:'
    r'\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}'
    r'|\d{4}[/.\-]\d{1,2}[/.\-]\d{1,2}'
    rf'|\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTHS},?\s+\d{{4}}'
    rf'|{_MONTHS}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}'
    r')'
)

_SALARY_LABEL_RE = re.compile(
    r'\b(?:' + '|'.join(re.escape(label) for label in SALARY_LABELS) + r')\b\s*[:\-–]\s*([^\n]{2,200})',
    re.IGNORECASE,
)
_SALARY_AMOUNT_RE = re.compile(
    r'(?:\brs\.?|\binr|₹)\s*\d[\d,]*(?:\.\d+)?(?:\s*/-)?'
    r'(?:\s*(?:-|to)\s*(?:rs\.?|inr|₹)?\s*\d[\d,]*(?:\.\d+)?(?:\s*/-)?)?'
    r'(?:\s*(?:per\s+month|per\s+annum|p\.\s?m\.?|p\.\s?a\.?|pm|lpa|per\s+day))?'
    r'|\b\d+(?:\.\d+)?\s*(?:lpa|lakhs?\s+per\s+annum)\b',
    re.IGNORECASE,
)
_AS_PER_NORMS_RE = re.compile(r'\bas\s+per\s+(?:norms|rules)\b', re.IGNORECASE)
_STOP_WORD_RE = re.compile(
    r'\s+(?:' + '|'.join(re.escape(word) for word in FIELD_STOP_WORDS) + r')\b',
    re.IGNORECASE,
)


@dataclass
class ExtractedPdfFields:
    salary: Optional[str] = None
    application_last_date: Optional[str] = None
    notification_date: Optional[str] = None

    def count(self) -> int:
        return sum(1 for value in (self.salary, self.application_last_date, self.notification_date) if value)

    def to_lines(self):
        lines = []
        if self.salary:
            lines.append(f"Salary: {self.salary}")
        if self.application_last_date:
            lines.append(f"Last Date to Apply: {self.application_last_date}")
        if self.notification_date:
            lines.append(f"Notification Date: {self.notification_date}")
        return lines


def _trim_field_value(value: str) -> str:
    value = _STOP_WORD_RE.split(value, maxsplit=1)[0]
    value = normalize_whitespace(value).strip(" ;,|")
    return truncate_text(value, MAX_FIELD_VALUE_CHARS)


def extract_salary_from_text(text: Optional[str]) -> Optional[str]:
    """
    Extract a salary statement.

    Tries a labelled value ("Salary: ..."), then a currency amount with an
    optional period suffix, then a literal "as per norms".
    """
    if not text:
        return None

    match = _SALARY_LABEL_RE.search(text)
    if match:
        value = _trim_field_value(match.group(1))
        if value:
            return value

    match = _SALARY_AMOUNT_RE.search(text)
    if match:
        return normalize_whitespace(match.group(0))

    if _AS_PER_NORMS_RE.search(text):
        return "As per norms"
    return None


def extract_date_by_keywords(text: Optional[str], keywords: Sequence[str]) -> Optional[str]:
    """
    Find the first keyword (in list order) followed by a date token within
    KEYWORD_DATE_WINDOW_CHARS characters and return that date token.
    """
    if not text:
        return None
    for keyword in keywords:
        pattern = re.compile(
            rf'\b{re.escape(keyword)}\b[\s\S]{{0,{KEYWORD_DATE_WINDOW_CHARS}}}?({INLINE_DATE_PATTERN})',
            re.IGNORECASE,
        )
        match = pattern.search(text)
        if match:
            return normalize_whitespace(match.group(1))
    return None


def extract_pdf_fields(text: Optional[str]) -> ExtractedPdfFields:
    return ExtractedPdfFields(
        salary=extract_salary_from_text(text),
        application_last_date=extract_date_by_keywords(text, DEADLINE_KEYWORDS),
        notification_date=extract_date_by_keywords(text, NOTIFICATION_KEYWORDS),
    )


def merge_description_text(primary: Optional[str], secondary: Optional[str]) -> str:
    """
    Merge two descriptions.

    When one side's normalized content contains the other, only the longer one
    is kept; otherwise both are joined with a blank line.
    """
    first = (primary or "").strip()
    second = (secondary or "").strip()
    if not first:
        return second
    if not second:
        return first

    first_normalized = normalize_whitespace(first).lower()
    second_normalized = normalize_whitespace(second).lower()
    if second_normalized in first_normalized:
        return first
    if first_normalized in second_normalized:
        return second
    return f"{first}\n\n{second}"
