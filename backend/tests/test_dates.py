"""
Tests for publication date parsing and page date extraction.
"""

from datetime import datetime, timedelta, timezone

from feedwatch.services.data_ingestion.dates import (
    extract_page_date,
    find_date_in_text,
    first_valid_date,
    parse_date_value,
    within_window,
)


NOW = datetime(2026, 10, 16, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestParseDateValue:
    """Tests for single-field date parsing."""

    def test_rfc822(self):
        assert parse_date_value("Mon, 15 Jan 2024 09:00:00 GMT", NOW) == utc(2024, 1, 15, 9)

    def test_iso_with_offset_is_converted_to_utc(self):
        parsed = parse_date_value("2024-03-05T10:00:00+02:00", NOW)
        assert parsed == utc(2024, 3, 5, 8)
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_values_are_taken_as_utc(self):
        assert parse_date_value("2024-03-05 10:00", NOW) == utc(2024, 3, 5, 10)
        assert parse_date_value(datetime(2024, 3, 5, 10), NOW) == utc(2024, 3, 5, 10)

    def test_plausibility_window(self):
        assert parse_date_value("2015-06-01", NOW) is None
        assert parse_date_value("2016-06-01", NOW) == utc(2016, 6, 1)
        assert parse_date_value("2031-01-01", NOW) == utc(2031, 1, 1)
        assert parse_date_value("2032-01-01", NOW) is None

    def test_partial_values_are_not_completed(self):
        for value in ("3:45 PM", "10:30", "12", "2025"):
            assert parse_date_value(value, NOW) is None, value

    def test_month_name_without_year_is_rejected(self):
        assert parse_date_value("March 5", NOW) is None

    def test_values_without_digits(self):
        assert parse_date_value("sometime last week", NOW) is None
        assert parse_date_value("", NOW) is None
        assert parse_date_value(None, NOW) is None

    def test_first_valid_date_skips_bad_candidates(self):
        candidates = [None, "", "yesterday", "1990-01-01", "2024-07-04T00:00:00Z"]
        assert first_valid_date(candidates, NOW) == utc(2024, 7, 4)
        assert first_valid_date([None, "soon"], NOW) is None

    def test_within_window(self):
        assert within_window(utc(2016, 1, 1), NOW)
        assert not within_window(utc(2015, 12, 31), NOW)


class TestFindDateInText:
    """Tests for free-text date patterns."""

    def test_month_day_year(self):
        assert find_date_in_text("Posted on March 5, 2024 by staff", NOW) == utc(2024, 3, 5)
        assert find_date_in_text("Sept. 9, 2023", NOW) == utc(2023, 9, 9)

    def test_day_month_year(self):
        assert find_date_in_text("Published 5 March 2024", NOW) == utc(2024, 3, 5)
        assert find_date_in_text("05-Mar-24", NOW) == utc(2024, 3, 5)

    def test_numeric_forms(self):
        assert find_date_in_text("Updated 2024-11-30 for accuracy", NOW) == utc(2024, 11, 30)
        assert find_date_in_text("3/5/2024", NOW) == utc(2024, 3, 5)

    def test_slash_separated_forms(self):
        assert find_date_in_text("Filed under 2024/11/30", NOW) == utc(2024, 11, 30)
        assert find_date_in_text("2024/3/5", NOW) == utc(2024, 3, 5)
        assert find_date_in_text("06/Nov/25", NOW) == utc(2025, 11, 6)

    def test_out_of_window_and_missing(self):
        assert find_date_in_text("January 1, 1999", NOW) is None
        assert find_date_in_text("Copyright 1999", NOW) is None
        assert find_date_in_text("no digits at all", NOW) is None


class TestExtractPageDate:
    """Tests for page-level date extraction."""

    def test_meta_tag(self):
        html = """<html><head>
        <meta property="article:published_time" content="2024-03-05T10:00:00Z">
        </head><body><p>Body</p></body></html>"""
        assert extract_page_date(html, NOW) == utc(2024, 3, 5, 10)

    def test_time_element(self):
        html = "<article><time datetime='2024-02-01'>Feb 1</time><p>Some text</p></article>"
        assert extract_page_date(html, NOW) == utc(2024, 2, 1)

    def test_json_ld_graph(self):
        html = """<html><head>
        <script type="application/ld+json">
        {"@context": "https://schema.org", "@graph": [
            {"@type": "WebPage", "name": "Post"},
            {"@type": "Article", "datePublished": "2023-11-20T08:00:00Z"}
        ]}
        </script>
        </head><body><p>Body</p></body></html>"""
        assert extract_page_date(html, NOW) == utc(2023, 11, 20, 8)

    def test_body_text(self):
        html = "<article><h1>Launch</h1><p>Written on June 3, 2025 by the team.</p></article>"
        assert extract_page_date(html, NOW) == utc(2025, 6, 3)

    def test_out_of_window_meta_falls_through(self):
        html = """<html><head><meta name="date" content="1990-01-01"></head>
        <body><article><p>Posted April 2, 2024.</p></article></body></html>"""
        assert extract_page_date(html, NOW) == utc(2024, 4, 2)

    def test_time_only_element_is_not_a_date(self):
        html = "<article><time>3:45 PM</time><p>No date here at all.</p></article>"
        assert extract_page_date(html, NOW) is None

    def test_no_date(self):
        assert extract_page_date("<html><body><p>No dates in here</p></body></html>", NOW) is None
        assert extract_page_date("", NOW) is None
