"""
Publication date extraction.

Dates come from three places: feed item fields, structured page markup
(meta tags, <time> elements, JSON-LD) and free text. Every candidate is
checked against a plausibility window of ten years back and five years
ahead; anything outside it is treated as unknown rather than guessed.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union
import logging

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from feedwatch.services.data_ingestion.strategies import first_result

logger = logging.getLogger(__name__)

MAX_YEARS_BACK = 10
MAX_YEARS_AHEAD = 5
PAGE_TEXT_LIMIT = 5000

# Two defaults with distinct year, month and day for dateutil
DEFAULT_FILLS = (datetime(2000, 1, 1), datetime(2001, 2, 2))

MONTH_NUMBERS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_FULL_MONTH = (
    r"(January|February|March|April|May|June|July|August|September|"
    r"October|November|December)"
)
_SHORT_MONTH = r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sept?|Oct|Nov|Dec)"

# (pattern, group order) where order names the (year, month, day) groups
TEXT_DATE_PATTERNS = [
    (re.compile(r"\b" + _FULL_MONTH + r"\s+(\d{1,2}),?\s+(\d{4})\b", re.I), "mdy"),
    (re.compile(r"\b" + _SHORT_MONTH + r"\.?\s+(\d{1,2}),?\s+(\d{4})\b", re.I), "mdy"),
    (re.compile(r"\b(\d{1,2})\s+" + _FULL_MONTH + r",?\s+(\d{4})\b", re.I), "dmy"),
    (re.compile(r"\b(\d{1,2})[-/]" + _SHORT_MONTH + r"[-/](\d{2,4})\b", re.I), "dmy"),
    (re.compile(r"\b(\d{4})[-/](\d{1,2})[-/](\d{1,2})\b"), "ymd"),
    (re.compile(r"\b(\d{1,2})[-/](\d{1,2})[-/](\d{4})\b"), "mdy"),
]

META_DATE_SELECTORS = [
    'meta[property="article:published_time"]',
    'meta[name="article:published_time"]',
    'meta[property="og:article:published_time"]',
    'meta[property="article:published"]',
    'meta[itemprop="datePublished"]',
    'meta[name="publishdate"]',
    'meta[name="publish-date"]',
    'meta[name="pubdate"]',
    'meta[name="date"]',
]

ELEMENT_DATE_SELECTORS = [
    "time[datetime]",
    "time",
    "[datetime]",
    "[data-date]",
    "[data-published]",
    ".published",
    ".post-date",
    ".entry-date",
    ".publish-date",
    ".date",
    '[class*="published"]',
    '[class*="date"]',
]

ARTICLE_BODY_SELECTORS = ["article", "main", ".post-content", ".entry-content"]


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def within_window(value: datetime, now: Optional[datetime] = None) -> bool:
    """Whether the year lies in [current - 10, current + 5]."""
    delta = value.year - _now(now).year
    return -MAX_YEARS_BACK <= delta <= MAX_YEARS_AHEAD


def _month_number(token: str) -> Optional[int]:
    return MONTH_NUMBERS.get(token[:3].lower())


def _build_date(year: str, month: Union[str, int], day: str) -> Optional[datetime]:
    y = int(year)
    if len(year) == 2:
        y += 2000
    m = month if isinstance(month, int) else (
        int(month) if month.isdigit() else _month_number(month)
    )
    if not m:
        return None
    try:
        return datetime(y, m, int(day), tzinfo=timezone.utc)
    except ValueError:
        return None


def find_date_in_text(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Search free text for the first plausible date.

    Patterns are tried in a fixed order (long month names first, numeric
    forms last) and the first in-window match wins.
    """
    if not text or not re.search(r"\d", text):
        return None

    for pattern, order in TEXT_DATE_PATTERNS:
        for match in pattern.finditer(text):
            a, b, c = match.groups()
            if order == "mdy":
                parsed = _build_date(c, a, b)
            elif order == "dmy":
                parsed = _build_date(c, b, a)
            else:
                parsed = _build_date(a, b, c)
            if parsed and within_window(parsed, now):
                return parsed
    return None


def _parse_complete_date(text: str) -> Optional[datetime]:
    """dateutil parse that rejects strings missing a year, month or day."""
    try:
        first = date_parser.parse(text, default=DEFAULT_FILLS[0])
        second = date_parser.parse(text, default=DEFAULT_FILLS[1])
    except (ValueError, OverflowError):
        return None
    # Any date part taken from the default differs between the two parses
    if first.date() != second.date():
        return None
    return first


def parse_date_value(
    value: Union[str, datetime, None],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Parse a single date field (feed pubDate, meta content, datetime attribute).

    RFC 822 and ISO 8601 go through dateutil; everything else falls back
    to the text patterns. Returns a UTC datetime or None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        value = _to_utc(value)
        return value if within_window(value, now) else None

    text = str(value).strip()
    if not text or not re.search(r"\d", text):
        return None

    current = _now(now)
    parsed = _parse_complete_date(text)
    if parsed is not None:
        parsed = _to_utc(parsed)
        if within_window(parsed, current):
            return parsed

    return find_date_in_text(text, current)


def parse_date_text(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse a date from a short string, trying the structured parser first."""
    return parse_date_value(text, now)


def first_valid_date(
    candidates: Iterable[Optional[str]],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """The first candidate that parses to a plausible date."""
    for candidate in candidates:
        if not candidate:
            continue
        parsed = parse_date_value(candidate, now)
        if parsed:
            return parsed
    return None


# ----------------------------------------------------------------------
# Page dates
# ----------------------------------------------------------------------

def _from_meta(soup: BeautifulSoup, now: Optional[datetime]) -> Optional[datetime]:
    for selector in META_DATE_SELECTORS:
        for tag in soup.select(selector):
            parsed = parse_date_value(tag.get("content"), now)
            if parsed:
                return parsed
    return None


def _from_elements(soup: BeautifulSoup, now: Optional[datetime]) -> Optional[datetime]:
    for selector in ELEMENT_DATE_SELECTORS:
        for tag in soup.select(selector):
            value = (
                tag.get("datetime")
                or tag.get("data-date")
                or tag.get("data-published")
                or tag.get_text(" ", strip=True)
            )
            # Long class-matched containers are not date labels
            if not value or len(value) > 100:
                continue
            parsed = parse_date_value(value, now)
            if parsed:
                return parsed
    return None


def _json_ld_dates(payload: Any) -> list[str]:
    if isinstance(payload, list):
        found = []
        for entry in payload:
            found.extend(_json_ld_dates(entry))
        return found
    if not isinstance(payload, dict):
        return []

    found = [
        payload[key] for key in ("datePublished", "dateCreated")
        if isinstance(payload.get(key), str)
    ]
    if "@graph" in payload:
        found.extend(_json_ld_dates(payload["@graph"]))
    return found


def _from_json_ld(soup: BeautifulSoup, now: Optional[datetime]) -> Optional[datetime]:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        parsed = first_valid_date(_json_ld_dates(payload), now)
        if parsed:
            return parsed
    return None


def _from_body_text(soup: BeautifulSoup, now: Optional[datetime]) -> Optional[datetime]:
    for selector in ARTICLE_BODY_SELECTORS:
        container = soup.select_one(selector)
        if container:
            parsed = find_date_in_text(container.get_text(" ", strip=True)[:PAGE_TEXT_LIMIT], now)
            if parsed:
                return parsed
    return find_date_in_text(soup.get_text(" ", strip=True)[:PAGE_TEXT_LIMIT], now)


PAGE_DATE_STRATEGIES = [
    ("meta", _from_meta),
    ("elements", _from_elements),
    ("json_ld", _from_json_ld),
    ("body_text", _from_body_text),
]


def extract_page_date(
    page: Union[str, BeautifulSoup],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Best publication date for an HTML page, or None when none is plausible."""
    soup = page if isinstance(page, BeautifulSoup) else BeautifulSoup(page or "", "html.parser")
    return first_result(PAGE_DATE_STRATEGIES, soup, now)
