"""
Unit tests for text normalization and keyword matching.
"""

import pytest

from core.text import (
    find_matched_keywords,
    has_region_keyword,
    infer_location_from_text,
    looks_like_job_listing_text,
    normalize_for_keyword_match,
    normalize_whitespace,
)


class TestNormalization:
    """Test whitespace and keyword normalization."""

    def test_normalize_whitespace(self):
        assert normalize_whitespace("  Junior \n\t Clerk   ") == "Junior Clerk"
        assert normalize_whitespace("") == ""
        assert normalize_whitespace(None) == ""

    def test_normalize_for_keyword_match(self):
        assert normalize_for_keyword_match("Walk-in  Interview!") == "walk in interview"
        assert normalize_for_keyword_match("Post/Vacancy (2024)") == "post vacancy 2024"


class TestFindMatchedKeywords:
    """Test whole-word keyword matching."""

    def test_substring_does_not_match(self):
        assert find_matched_keywords("outpost", ["post"]) == []
        assert find_matched_keywords("Meeting postponed", ["post"]) == []

    def test_whole_word_matches(self):
        assert find_matched_keywords("new job post today", ["post"]) == ["post"]

    def test_keyword_list_order_preserved(self):
        matches = find_matched_keywords("Vacancy for the post of clerk", ["post", "vacancy", "tender"])
        assert matches == ["post", "vacancy"]

    def test_multi_word_keywords_normalized(self):
        assert find_matched_keywords("WALK-IN interview on Monday", ["walk in"]) == ["walk in"]
        assert find_matched_keywords("Expression of Interest", ["expression of interest"]) == [
            "expression of interest"
        ]

    def test_empty_text(self):
        assert find_matched_keywords("", ["job"]) == []
        assert find_matched_keywords(None, ["job"]) == []


class TestRegionHelpers:
    """Test target-region detection and location inference."""

    def test_region_keyword(self):
        assert has_region_keyword("Shillong, Meghalaya")
        assert has_region_keyword("East Khasi Hills district")
        assert not has_region_keyword("Mumbai, Maharashtra")

    def test_region_keyword_is_word_bounded(self):
        assert not has_region_keyword("Future prospects")

    @pytest.mark.parametrize("text,expected", [
        ("Office at Shillong", "Shillong, Meghalaya"),
        ("Posting: Tura", "Tura, Meghalaya"),
        ("Jowai sub-division", "Jowai, Meghalaya"),
        ("Anywhere in Meghalaya", "Meghalaya"),
        ("Guwahati, Assam", None),
    ])
    def test_infer_location(self, text, expected):
        assert infer_location_from_text(text) == expected

    def test_infer_location_checks_texts_in_order(self):
        assert infer_location_from_text("", None, "Jobs in Tura") == "Tura, Meghalaya"

    def test_looks_like_job_listing(self):
        assert looks_like_job_listing_text("We are hiring an accountant")
        assert looks_like_job_listing_text("Vacancies for teachers")
        assert not looks_like_job_listing_text("Annual report 2023")
