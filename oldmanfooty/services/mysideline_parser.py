"""Turn a raw MySideline document into canonical carnival records.

Two layouts are understood: the club-search HTML card list and the portal's
JSON search response. Output order follows the document; the Reconciler gets
at most one record per MySideline id.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag

from oldmanfooty.config import DEFAULT_MYSIDELINE_EVENT_URL
from oldmanfooty.services.mysideline_fetcher import RawPayload
from oldmanfooty.services.normalize import (
    absolute_url,
    clean_text,
    extract_date_from_title,
    is_masters_title,
    is_plausible_email,
    normalize_email,
    normalize_state,
    parse_event_date,
    to_iso,
)

logger = logging.getLogger(__name__)

SOURCE_NAME = "MySideline"

CARD_SELECTOR = "[data-carnival-id], [id^='clubsearch_']"
LIST_SELECTOR = ".carnival-list, #clubsearch-results"
TITLE_SELECTOR = "h3, h2, h4, .title, .el-card__header"


class ParseErrorKind(str, Enum):
    UNRECOGNIZED_SCHEMA = "unrecognizedSchema"
    REQUIRED_FIELD_MISSING = "requiredFieldMissing"
    ID_COLLISION_IN_BATCH = "idCollisionInBatch"


class ParseError(Exception):
    """The document as a whole cannot be turned into a batch."""

    def __init__(self, kind: ParseErrorKind, *, field: str | None = None, detail: str | None = None) -> None:
        self.kind = kind
        self.field = field
        self.detail = detail
        super().__init__(self.describe())

    def describe(self) -> str:
        text = self.kind.value
        if self.field:
            text = f"{text}({self.field})"
        if self.detail:
            text = f"{text}: {self.detail}"
        return text


@dataclass(frozen=True)
class CanonicalCarnival:
    my_sideline_id: str
    title: str
    my_sideline_title: str
    date: date | None = None
    state: str | None = None
    location_address: str | None = None
    organiser_contact_email: str | None = None
    registration_link: str | None = None
    description: str | None = None
    club_logo_url: str | None = None
    source: str = SOURCE_NAME

    def to_dict(self) -> dict[str, Any]:
        return {
            "mySidelineId": self.my_sideline_id,
            "title": self.title,
            "mySidelineTitle": self.my_sideline_title,
            "date": to_iso(self.date),
            "state": self.state,
            "locationAddress": self.location_address,
            "organiserContactEmail": self.organiser_contact_email,
            "registrationLink": self.registration_link,
            "description": self.description,
            "clubLogoURL": self.club_logo_url,
            "source": self.source,
        }


@dataclass
class ParseResult:
    records: list[CanonicalCarnival] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ids(self) -> list[str]:
        return [r.my_sideline_id for r in self.records]


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def parse_payload(payload: RawPayload, *, event_url: str = DEFAULT_MYSIDELINE_EVENT_URL) -> ParseResult:
    """Parse one fetched document into an ordered batch plus warnings."""
    content = payload.content or b""
    stripped = content.strip()
    if not stripped:
        return ParseResult()

    if payload.is_json or stripped[:1] in (b"{", b"["):
        raw_items, warnings = _json_items(content)
        images: dict[str, str] = {}
    else:
        raw_items, images = _html_items(content)
        warnings = []

    result = ParseResult(warnings=warnings)
    seen: set[str] = set()
    for position, raw in enumerate(raw_items, start=1):
        record = _build_record(raw, position, payload.url, event_url, images, result.warnings)
        if record is None:
            continue
        if record.my_sideline_id in seen:
            raise ParseError(ParseErrorKind.ID_COLLISION_IN_BATCH, detail=record.my_sideline_id)
        seen.add(record.my_sideline_id)
        result.records.append(record)

    logger.info(
        "Parsed %s Masters carnival(s) from %s candidate(s), %s warning(s)",
        len(result.records),
        len(raw_items),
        len(result.warnings),
    )
    return result


def parse(payload: RawPayload, **kwargs: Any) -> list[CanonicalCarnival]:
    return parse_payload(payload, **kwargs).records


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

def _text(element: Tag | None) -> str | None:
    if element is None:
        return None
    return clean_text(element.get_text(" "))


def _first_text(card: Tag, selector: str) -> str | None:
    for element in card.select(selector):
        value = _text(element)
        if value:
            return value
    return None


def _card_id(card: Tag) -> str | None:
    value = card.get("data-carnival-id")
    if value is None:
        element_id = card.get("id") or ""
        if element_id.startswith("clubsearch_"):
            value = element_id[len("clubsearch_"):]
    return value


def _card_date(card: Tag) -> str | None:
    time_el = card.select_one("time[datetime]")
    if time_el is not None:
        return time_el.get("datetime")
    return _first_text(card, ".date") or card.get("data-date")


def _card_location(card: Tag) -> str | None:
    located = _first_text(card, ".location, address")
    if located:
        return located
    for p in card.find_all("p"):
        if not p.get("class"):
            return _text(p)
    return None


def _card_email(card: Tag) -> str | None:
    mailto = card.select_one("a[href^='mailto:']")
    if mailto is not None:
        return mailto.get("href")
    return card.get("data-email") or _first_text(card, ".email")


def _card_logo(card: Tag) -> str | None:
    img = card.select_one("img")
    if img is None:
        return None
    return img.get("data-url") or img.get("src")


def _image_dictionary(soup: BeautifulSoup) -> dict[str, str]:
    """Page-level logo lookup keyed by image alt text; last one wins."""
    images: dict[str, str] = {}
    for img in soup.select("img[alt]"):
        alt = clean_text(img.get("alt"))
        src = img.get("data-url") or img.get("src")
        if alt and src:
            images[alt] = src
    return images


def _html_items(content: bytes) -> tuple[list[dict[str, Any]], dict[str, str]]:
    soup = BeautifulSoup(content, "html.parser")
    cards = soup.select(CARD_SELECTOR)
    if not cards:
        if soup.select_one(LIST_SELECTOR) is not None:
            return [], {}
        raise ParseError(ParseErrorKind.UNRECOGNIZED_SCHEMA, detail="no carnival cards or listing container")

    items = []
    for card in cards:
        register = card.select_one("a.register, a[data-register]")
        items.append({
            "id": _card_id(card),
            "title": _first_text(card, TITLE_SELECTOR),
            "date": _card_date(card),
            "location": _card_location(card),
            "state": card.get("data-state") or _first_text(card, ".state"),
            "email": _card_email(card),
            "link": register.get("href") if register is not None else None,
            "logo": _card_logo(card),
            "description": _first_text(card, ".description"),
        })
    return items, _image_dictionary(soup)


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def _dig(item: dict, *path: str) -> Any:
    current: Any = item
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _is_touch_event(item: dict) -> bool:
    association = str(_dig(item, "association", "name") or "").lower()
    competition = str(_dig(item, "competition", "name") or "").lower()
    return "touch" in association or "touch" in competition


def _json_items(content: bytes) -> tuple[list[dict[str, Any]], list[str]]:
    try:
        data = json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ParseError(ParseErrorKind.UNRECOGNIZED_SCHEMA, detail=f"invalid JSON: {exc}") from exc

    if isinstance(data, dict) and isinstance(data.get("data"), list):
        entries = data["data"]
    elif isinstance(data, list):
        entries = data
    else:
        raise ParseError(ParseErrorKind.UNRECOGNIZED_SCHEMA, detail="expected an object with a 'data' list")

    items: list[dict[str, Any]] = []
    warnings: list[str] = []
    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            warnings.append(f"item {index}: not an object, skipped")
            continue
        if _is_touch_event(entry):
            warnings.append(f"item {index}: touch football event skipped")
            continue
        address = _dig(entry, "venue", "address") or _dig(entry, "contact", "address") or {}
        if not isinstance(address, dict):
            address = {}
        items.append({
            "id": None if entry.get("_id") is None else str(entry.get("_id")),
            "title": entry.get("name"),
            "date": entry.get("startDate") or entry.get("date"),
            "location": address.get("formatted"),
            "state": address.get("state"),
            "email": _dig(entry, "contact", "email"),
            "link": entry.get("registrationLink"),
            "logo": _dig(entry, "logo", "url"),
            "description": _dig(entry, "finderDetails", "description"),
        })
    return items, warnings


# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------

def _build_record(
    raw: dict[str, Any],
    position: int,
    page_url: str,
    event_url: str,
    images: dict[str, str],
    warnings: list[str],
) -> CanonicalCarnival | None:
    source_title = clean_text(raw.get("title"))
    if source_title is None:
        raise ParseError(ParseErrorKind.REQUIRED_FIELD_MISSING, field="title", detail=f"record {position}")

    if not is_masters_title(source_title):
        warnings.append(f"record {position}: '{source_title}' is not a Masters event, skipped")
        return None

    my_sideline_id = clean_text(raw.get("id"))
    if my_sideline_id is None:
        raise ParseError(ParseErrorKind.REQUIRED_FIELD_MISSING, field="mySidelineId", detail=f"record {position}")

    title, title_date = extract_date_from_title(source_title)

    event_date = None
    date_text = clean_text(raw.get("date"))
    if date_text:
        event_date = parse_event_date(date_text)
        if event_date is None:
            warnings.append(f"{my_sideline_id}: unparseable date '{date_text}'")
    event_date = event_date or title_date

    location = clean_text(raw.get("location"))
    state = (
        normalize_state(raw.get("state"))
        or normalize_state(location)
        or normalize_state(source_title)
    )

    email = normalize_email(raw.get("email"))
    if email is not None and not is_plausible_email(email):
        warnings.append(f"{my_sideline_id}: invalid organiser email '{email}' dropped")
        email = None

    registration_link = (
        absolute_url(raw.get("link"), page_url)
        or absolute_url(event_url + quote(my_sideline_id, safe=""))
    )
    club_logo_url = absolute_url(raw.get("logo"), page_url) or absolute_url(images.get(source_title), page_url)

    return CanonicalCarnival(
        my_sideline_id=my_sideline_id,
        title=title or source_title,
        my_sideline_title=source_title,
        date=event_date,
        state=state,
        location_address=location,
        organiser_contact_email=email,
        registration_link=registration_link,
        description=clean_text(raw.get("description")),
        club_logo_url=club_logo_url,
    )


__all__ = [
    "CanonicalCarnival",
    "ParseError",
    "ParseErrorKind",
    "ParseResult",
    "parse",
    "parse_payload",
]
