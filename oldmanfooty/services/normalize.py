"""Normalization helpers for MySideline carnival ingestion.

All functions accept str | None and return the normalized value or None.
Nothing in here raises on bad input; unusable values become None.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from urllib.parse import urljoin, urlparse

from oldmanfooty.models import AUSTRALIAN_STATES

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\u200b-\u200f\u2028\u2029\ufeff]")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_DMY_NUMERIC = re.compile(r"^(\d{1,2})[\s/.\-](\d{1,2})[\s/.\-](\d{4})$")
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})(?:st|nd|rd|th)?\s+([A-Za-z]{3,})\.?,?\s+(\d{4})$", re.IGNORECASE)
_MONTH_DAY_YEAR = re.compile(r"^([A-Za-z]{3,})\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})$", re.IGNORECASE)

_DATE_FRAGMENT = (
    r"(?:\d{1,2}[\s/\-]\d{1,2}[\s/\-]\d{4}"
    r"|\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]{3,}\s+\d{4}"
    r"|[A-Za-z]{3,}\s+\d{1,2},?\s+\d{4})"
)
# Tried in order: bracketed, after a separator, trailing
_TITLE_DATE_PATTERNS = (
    re.compile(r"\s*\((" + _DATE_FRAGMENT + r")\)\s*", re.IGNORECASE),
    re.compile(r"\s*[\-|]\s*(" + _DATE_FRAGMENT + r")\s*", re.IGNORECASE),
    re.compile(r"\s+(" + _DATE_FRAGMENT + r")\s*$", re.IGNORECASE),
)

_STATE_ALIASES = {
    "NSW": "NSW",
    "NEW SOUTH WALES": "NSW",
    "QLD": "QLD",
    "QUEENSLAND": "QLD",
    "VIC": "VIC",
    "VICTORIA": "VIC",
    "WA": "WA",
    "WESTERN AUSTRALIA": "WA",
    "SA": "SA",
    "SOUTH AUSTRALIA": "SA",
    "TAS": "TAS",
    "TASMANIA": "TAS",
    "NT": "NT",
    "NORTHERN TERRITORY": "NT",
    "ACT": "ACT",
    "AUSTRALIAN CAPITAL TERRITORY": "ACT",
}
_STATE_TOKEN = re.compile(r"\b(" + "|".join(AUSTRALIAN_STATES) + r")\b")
_STATE_NAME = re.compile(
    r"\b(NEW SOUTH WALES|QUEENSLAND|VICTORIA|WESTERN AUSTRALIA|SOUTH AUSTRALIA"
    r"|TASMANIA|NORTHERN TERRITORY|AUSTRALIAN CAPITAL TERRITORY)\b",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Strings
# ---------------------------------------------------------------------------

def clean_text(value: str | None) -> str | None:
    """Strip control characters, collapse whitespace runs, trim; empty -> None."""
    if value is None:
        return None
    v = _CONTROL_CHARS.sub(" ", str(value))
    v = re.sub(r"\s+", " ", v).strip()
    return v or None


# ---------------------------------------------------------------------------
# Emails
# ---------------------------------------------------------------------------

def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address, dropping a mailto: prefix."""
    v = clean_text(value)
    if v is None:
        return None
    if v.lower().startswith("mailto:"):
        v = v[len("mailto:"):].split("?", 1)[0].strip()
    return v.lower() or None


def is_plausible_email(value: str | None) -> bool:
    return bool(value) and bool(_EMAIL_PATTERN.match(value))


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_event_date(value: str | None) -> date | None:
    """Parse ISO, numeric DMY and month-name dates. Invalid dates return None."""
    v = clean_text(value)
    if v is None:
        return None

    m = _ISO_DATE.match(v)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DMY_NUMERIC.match(v)
    if m:
        return _safe_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    m = _DAY_MONTH_YEAR.match(v)
    if m:
        month = _MONTHS.get(m.group(2).lower())
        return _safe_date(int(m.group(3)), month, int(m.group(1))) if month else None

    m = _MONTH_DAY_YEAR.match(v)
    if m:
        month = _MONTHS.get(m.group(1).lower())
        return _safe_date(int(m.group(3)), month, int(m.group(2))) if month else None

    return None


def extract_date_from_title(title: str | None) -> tuple[str | None, date | None]:
    """Pull an embedded date out of a carnival title.

    Returns the cleaned title and the date. The title is only changed when the
    embedded fragment is a real date.
    """
    v = clean_text(title)
    if v is None:
        return None, None

    for pattern in _TITLE_DATE_PATTERNS:
        m = pattern.search(v)
        if not m:
            continue
        parsed = parse_event_date(m.group(1))
        if parsed is None:
            continue
        remainder = clean_text(v[:m.start()] + " " + v[m.end():])
        return (remainder or v), parsed

    return v, None


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

def normalize_state(value: str | None) -> str | None:
    """Map a free-text location hint onto an Australian state code."""
    v = clean_text(value)
    if v is None:
        return None

    upper = v.upper().strip(" .,")
    if upper in _STATE_ALIASES:
        return _STATE_ALIASES[upper]

    tokens = _STATE_TOKEN.findall(v)
    if tokens:
        return tokens[-1]

    names = _STATE_NAME.findall(v)
    if names:
        return _STATE_ALIASES[names[-1].upper()]

    return None


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------

def absolute_url(value: str | None, base: str | None = None) -> str | None:
    """Resolve against base; only http(s) URLs survive."""
    v = clean_text(value)
    if v is None:
        return None
    if base:
        v = urljoin(base, v)
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return v


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def is_masters_title(title: str | None) -> bool:
    return bool(title) and "masters" in title.lower()


def to_iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None
