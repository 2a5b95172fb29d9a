"""
Text normalization and keyword matching helpers.
"""

import re
from typing import Iterable, List, Optional

REGION_KEYWORDS = (
    "meghalaya",
    "shillong",
    "tura",
    "jowai",
    "east khasi hills",
)

# Keyword -> canonical location label
REGION_LOCATION_LABELS = (
    ("east khasi hills", "East Khasi Hills, Meghalaya"),
    ("shillong", "Shillong, Meghalaya"),
    ("tura", "Tura, Meghalaya"),
    ("jowai", "Jowai, Meghalaya"),
    ("meghalaya", "Meghalaya"),
)

_WHITESPACE_RE = re.compile(r'\s+')
_NON_ALNUM_RE = re.compile(r'[^a-z0-9]+')
_JOB_LISTING_RE = re.compile(
    r'\b(job|jobs|vacanc\w*|hiring|opening\w*|career\w*|apply|recruit\w*|position\w*|post\s+of)\b',
    re.IGNORECASE,
)


def normalize_whitespace(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WHITESPACE_RE.sub(' ', text).strip()


def normalize_for_keyword_match(text: Optional[str]) -> str:
    """Lowercase, turn every non-alphanumeric run into a space and collapse whitespace."""
    if not text:
        return ""
    return normalize_whitespace(_NON_ALNUM_RE.sub(' ', text.lower()))


def find_matched_keywords(text: Optional[str], keywords: Iterable[str]) -> List[str]:
    """
    Return the keywords that occur in text as whole words.

    Both sides are normalized and compared with space padding, so "post" does not
    match "outpost" or "postpone". Results keep the order of the keyword list.
    """
    normalized_text = normalize_for_keyword_match(text)
    if not normalized_text:
        return []
    padded = f" {normalized_text} "

    matches = []
    for keyword in keywords:
        normalized_keyword = normalize_for_keyword_match(keyword)
        if not normalized_keyword:
            continue
        if f" {normalized_keyword} " in padded and keyword not in matches:
            matches.append(keyword)
    return matches


def has_region_keyword(text: Optional[str]) -> bool:
    return bool(find_matched_keywords(text, REGION_KEYWORDS))


def infer_location_from_text(*texts: Optional[str]) -> Optional[str]:
    """Map the first region keyword found in texts (checked in order) to a location label."""
    for text in texts:
        if not text:
            continue
        for keyword, label in REGION_LOCATION_LABELS:
            if find_matched_keywords(text, (keyword,)):
                return label
    return None


def looks_like_job_listing_text(text: Optional[str]) -> bool:
    if not text:
        return False
    return bool(_JOB_LISTING_RE.search(text))


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip()
