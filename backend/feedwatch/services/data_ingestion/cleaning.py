"""
Text cleaning for article bodies and titles.

Content cleaning is driven by CLEANING_RULES, an ordered table of
(pattern, replacement) pairs, followed by repeated-substring collapsing,
metadata line filtering and whitespace normalization. The whole
sequence is applied until the text stops changing, so cleaning
already-clean text is a no-op.
"""

import html
import re
from typing import Optional
from urllib.parse import unquote, urlparse

MONTHS = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|"
    r"Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)
_DATE_TEXT = MONTHS + r"\.?[ \t]+\d{1,2},[ \t]*\d{4}"
_NAME = r"[A-Z][\w.'-]*(?:[ \t]+[A-Z][\w.'-]*){0,4}"

_I = re.IGNORECASE

# Applied in order. Patterns never cross line boundaries.
CLEANING_RULES: list[tuple[re.Pattern, str]] = [
    # Category and date stamps
    (re.compile(r"\bCategory:[ \t]*[\w ,]*?[ \t]*" + _DATE_TEXT, _I), ""),
    (re.compile(r"\bCategory:[ \t]*[\w ,]*", _I), ""),
    (re.compile(r"\bBy[ \t]+" + _NAME + r",[ \t]*" + _DATE_TEXT), ""),
    (re.compile(r"\b(?:Posted|Published|Updated) on[ \t]+[\w ,]+", _I), ""),
    (re.compile(r"\b\d+[ \t]*min read(?:[ \t]*·[ \t]*" + _DATE_TEXT + r")?", _I), ""),
    (re.compile(r"\b" + _DATE_TEXT + r"\b", _I), ""),
    (re.compile(r"\b\d{4}-\d{2}-\d{2}\b"), ""),
    (re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"), ""),
    # Authors and attribution
    (re.compile(r"\bAuthor:[ \t]*[\w .'-]+", _I), ""),
    (re.compile(r"^By[ \t]+" + _NAME + r"[ \t]*$", re.MULTILINE), ""),
    # Tags
    (re.compile(r"\bTags?:[ \t]*[\w ,]+", _I), ""),
    (re.compile(r"\bFiled under:[ \t]*[\w ,]+", _I), ""),
    # Navigation
    (re.compile(r"\bRead more[ \t]*(?:→|»|\.\.\.)?", _I), ""),
    (re.compile(r"\bContinue reading[ \t]*(?:→|»)?", _I), ""),
    (re.compile(r"\bView all articles\b", _I), ""),
    (re.compile(r"\bRelated Articles\b", _I), ""),
    (re.compile(r"\bSee also\b", _I), ""),
    # Social sharing
    (re.compile(r"\d*[ \t]*\bShare this post\b", _I), ""),
    (re.compile(r"\bShare this\b", _I), ""),
    (re.compile(r"\bTweet this\b", _I), ""),
    (re.compile(r"\bCopy link\b", _I), ""),
    # Platform noise (Medium, Substack, newsletter emoji headings)
    (re.compile(r"-*\bListen[ \t]+Share\b", _I), ""),
    (re.compile(r"Press enter or click to view image in full size", _I), ""),
    (re.compile(r"([✨🚀🌎🔥🎉📡🐶])[ \t]*[A-Z][^\n]{0,80}?[ \t]*\1"), ""),
]

REPEATED_SUBSTRING = re.compile(r"(.{20,200}?)\1+")

# Lines shaped like metadata or navigation
METADATA_LINE_PATTERNS = [
    re.compile(r"^By\s+[\w\s]+,\s*\w{3}\s+\d{1,2},\s*\d{4}$"),
    re.compile(r"^(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4})"),
    re.compile(r"^[A-Z][a-z]+\s+\d{1,2},\s*\d{4}$"),
    re.compile(r"^[\w\s]+\s+\d+\s*min read"),
    re.compile(r"^[\w\s]+\s+\w{3}\s+\d{2},\s*\d{4}$"),
    re.compile(r"^(Share|Copy|Facebook|Twitter|Email|Notes|More|Listen|Like|Comment)$", _I),
    re.compile(r"^\d+\s*Share this post$", _I),
]
LABEL_LINE = re.compile(r"^[A-Z][a-z]+:\s")
SHORT_CAPS_LINE = re.compile(r"^[A-Z\s]+$")

MAX_CLEAN_PASSES = 5


def strip_html(text: str) -> str:
    """Remove markup, keeping paragraph and line breaks, and decode entities."""
    if not text:
        return ""
    text = re.sub(r"(?is)<(script|style|noscript)[^>]*>.*?</\1>", " ", text)
    text = re.sub(r"(?i)<br\s*/?>", "\n", text)
    text = re.sub(r"(?i)</p\s*>", "\n\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    return text.strip()


def _is_metadata_line(line: str) -> bool:
    if LABEL_LINE.match(line) and len(line) < 80:
        return True
    if len(line) < 20 and SHORT_CAPS_LINE.match(line):
        return True
    return any(p.match(line) for p in METADATA_LINE_PATTERNS)


def normalize_whitespace(text: str) -> str:
    """Single spaces, trimmed lines, at most two consecutive line breaks."""
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def remove_metadata(text: str) -> str:
    """One pass of the rule table, duplicate collapsing and line filtering."""
    for pattern, replacement in CLEANING_RULES:
        text = pattern.sub(replacement, text)

    text = REPEATED_SUBSTRING.sub(r"\1", text)

    lines = [
        line for line in text.split("\n")
        if not line.strip() or not _is_metadata_line(line.strip())
    ]
    return normalize_whitespace("\n".join(lines))


def clean_content(content: Optional[str]) -> str:
    """Strip markup and boilerplate from article text."""
    if not content:
        return ""

    text = content
    for _ in range(MAX_CLEAN_PASSES):
        cleaned = remove_metadata(strip_html(text))
        if cleaned == text:
            break
        text = cleaned
    return text


# ----------------------------------------------------------------------
# Titles
# ----------------------------------------------------------------------

GENERIC_TITLE_PATTERNS = [
    re.compile(p, _I)
    for p in (
        r"^follow us on",
        r"^posts? related to",
        r"^latest by topic",
        r"^read more",
        r"^view all",
        r"^see more",
        r"^click here",
        r"^subscribe",
        r"^newsletter",
        r"^blog$",
        r"^home$",
        r"^search$",
        r"^category",
        r"^tag:",
        r"^author:",
        r"^article$",
        r"^untitled",
    )
]

ERROR_TITLE_PATTERNS = [
    re.compile(p, _I)
    for p in (
        r"^page not found",
        r"^404",
        r"^500",
        r"internal server error",
        r"^just a moment",
        r"^cloudflare",
        r"access denied",
        r"forbidden",
        r"could not be found",
        r"not found",
    )
]


def is_error_title(title: Optional[str]) -> bool:
    """Titles of error or bot-challenge pages."""
    if not title:
        return True
    return any(p.search(title.strip()) for p in ERROR_TITLE_PATTERNS)


def is_generic_title(title: Optional[str]) -> bool:
    """Navigation, placeholder or error titles that never name a real article."""
    if not title or len(title.strip()) < 10:
        return True
    stripped = title.strip()
    if any(p.search(stripped) for p in GENERIC_TITLE_PATTERNS):
        return True
    return is_error_title(stripped)


def clean_title(title: Optional[str]) -> str:
    """Remove listing-page prefixes and reading-time/date suffixes."""
    if not title:
        return "Untitled Article"

    cleaned = title.strip()
    cleaned = re.sub(r"^article\s*pinned\s*", "", cleaned, flags=_I)
    cleaned = re.sub(r"^pinned\s*article\s*", "", cleaned, flags=_I)
    cleaned = re.sub(r"^(PINNED|article)\b\s*", "", cleaned, flags=_I)
    cleaned = re.sub(r"\s*\d{4}-\d{2}-\d{1,2}\s*\d+\s*min\s*read.*$", "", cleaned, flags=_I)
    cleaned = re.sub(r"\s*\d+\s*min\s*read.*$", "", cleaned, flags=_I)
    cleaned = re.sub(r"\s*\d{4}-\d{2}-\d{2}.*$", "", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = re.sub(r"\.{3,}", "...", cleaned)
    return cleaned or "Untitled Article"


def looks_like_url(text: Optional[str]) -> bool:
    return bool(text) and bool(re.match(r"^https?://", text.strip(), _I))


def title_from_url(url: str) -> Optional[str]:
    """Readable title from the last path segment: /my-great-post -> My Great Post."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    if not segments:
        return None
    slug = unquote(segments[-1])
    slug = re.sub(r"\.(html?|php|aspx?)$", "", slug, flags=_I)
    words = [w for w in re.split(r"[-_]+", slug) if w]
    if not words or all(w.isdigit() for w in words):
        return None
    return " ".join(w.capitalize() for w in words)


def truncate(text: Optional[str], limit: int, ellipsis: str = "...") -> str:
    """Cut text to at most limit characters, the marking ellipsis included."""
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    if limit <= len(ellipsis):
        return text[:limit]
    return text[:limit - len(ellipsis)] + ellipsis
