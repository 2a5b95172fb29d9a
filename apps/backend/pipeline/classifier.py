"""
Job intent classifier.

Decides whether an extracted listing is a genuine job posting or a tender,
result or other notice that shares job vocabulary.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from core.config import DEFAULT_EXCLUDE_KEYWORDS, DEFAULT_INCLUDE_KEYWORDS
from core.extraction_heuristics import is_trusted_job_board_url
from core.text import find_matched_keywords

logger = logging.getLogger(__name__)

REASON_EXCLUDE = "exclude_keyword_match"
REASON_TRUSTED_HOST = "trusted_linkedin_job_url"
REASON_INCLUDE = "include_keyword_match"
REASON_MISSING_INCLUDE = "missing_include_keyword"


@dataclass
class JobIntentDecision:
    is_job: bool
    reason: str
    matched_keywords: List[str] = field(default_factory=list)


def classify_job_intent(
    title: str,
    description: str = "",
    item_url: str = "",
    source_url: Optional[str] = None,
    include_keywords: Sequence[str] = DEFAULT_INCLUDE_KEYWORDS,
    exclude_keywords: Sequence[str] = DEFAULT_EXCLUDE_KEYWORDS,
) -> JobIntentDecision:
    """
    Classify a listing.

    Precedence: exclude keywords reject first, then a trusted job-board URL
    accepts, then include keywords accept; anything else is rejected.

    Args:
        title: Listing title
        description: Listing description
        item_url: Canonical URL of the listing
        source_url: URL of the source the listing came from
        include_keywords: Job vocabulary
        exclude_keywords: Non-job notice vocabulary

    Returns:
        JobIntentDecision with the deciding reason
    """
    text = " ".join(part for part in (title, description, item_url) if part)

    excluded = find_matched_keywords(text, exclude_keywords)
    if excluded:
        logger.debug(f"[classifier] Rejected {title[:80]!r}: exclude keywords {excluded}")
        return JobIntentDecision(False, REASON_EXCLUDE, excluded)

    if is_trusted_job_board_url(source_url) or is_trusted_job_board_url(item_url):
        return JobIntentDecision(True, REASON_TRUSTED_HOST)

    included = find_matched_keywords(text, include_keywords)
    if included:
        return JobIntentDecision(True, REASON_INCLUDE, included)

    return JobIntentDecision(False, REASON_MISSING_INCLUDE)
