"""Apply a parsed MySideline batch to the carnival catalog.

Identity is the MySideline id alone. Unclaimed records follow the source for
the authoritative fields; claimed records only track the source title. A
failing record is rolled back to its savepoint and reported, and the rest of
the batch carries on.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from flask import current_app
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from oldmanfooty.models import Carnival, utcnow
from oldmanfooty.services import catalog
from oldmanfooty.services.mysideline_parser import CanonicalCarnival

AUTHORITATIVE_FIELDS = (
    "title",
    "my_sideline_title",
    "date",
    "location_address",
    "state",
    "organiser_contact_email",
    "registration_link",
    "club_logo_url",
    "description",
)
CLAIMED_FIELDS = ("my_sideline_title",)


class ReconcileTimeout(Exception):
    """The run deadline passed before the batch was fully applied."""


class DecisionKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    my_sideline_id: str
    fields: tuple[str, ...] = ()
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"decision": self.kind.value, "id": self.my_sideline_id}
        if self.fields:
            data["fields"] = list(self.fields)
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class ReconcileReport:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.decisions)

    def record(self, decision: Decision) -> None:
        self.decisions.append(decision)
        if decision.kind is DecisionKind.CREATED:
            self.created += 1
        elif decision.kind is DecisionKind.UPDATED:
            self.updated += 1
        elif decision.kind is DecisionKind.SKIPPED:
            self.skipped += 1
        else:
            self.errors.append({"id": decision.my_sideline_id, "kind": decision.reason or "error"})


def _canonical_values(record: CanonicalCarnival) -> dict[str, Any]:
    return {name: getattr(record, name) for name in AUTHORITATIVE_FIELDS}


def _diff(carnival: Carnival, values: dict[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    """Non-null canonical values that differ from what is stored."""
    patch = {}
    for name in allowed:
        value = values.get(name)
        if value is None:
            continue
        if getattr(carnival, name) != value:
            patch[name] = value
    return patch


def _apply_one(tx: Session, record: CanonicalCarnival, proxy_user_id: str, now: datetime) -> Decision:
    values = _canonical_values(record)
    carnival = catalog.find_carnival_by_mysideline_id(tx, record.my_sideline_id, for_update=True)

    if carnival is None:
        catalog.insert_carnival(tx, {
            **values,
            "my_sideline_id": record.my_sideline_id,
            "original_my_sideline_contact_email": record.organiser_contact_email,
            "created_by_user_id": proxy_user_id,
            "club_id": None,
            "is_manually_entered": False,
            "is_active": True,
            "claimed_at": None,
            "last_my_sideline_sync": now,
        })
        return Decision(DecisionKind.CREATED, record.my_sideline_id)

    claimed = carnival.is_claimed
    patch = _diff(carnival, values, CLAIMED_FIELDS if claimed else AUTHORITATIVE_FIELDS)
    catalog.update_carnival(tx, carnival.id, {**patch, "last_my_sideline_sync": now})

    if patch:
        return Decision(DecisionKind.UPDATED, record.my_sideline_id, fields=tuple(patch))
    return Decision(DecisionKind.SKIPPED, record.my_sideline_id, reason="claimed" if claimed else "unchanged")


def reconcile(
    tx: Session,
    batch: Iterable[CanonicalCarnival],
    proxy_user_id: str,
    now: datetime | None = None,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ReconcileReport:
    """Apply every record; per-record faults are reported, transaction faults propagate.

    Raises ReconcileTimeout once ``clock()`` reaches ``deadline``; the caller
    rolls the transaction back.
    """
    now = now or utcnow()
    report = ReconcileReport()

    for record in batch:
        if deadline is not None and clock() >= deadline:
            raise ReconcileTimeout(f"deadline reached after {report.processed} record(s)")
        try:
            with tx.begin_nested():
                decision = _apply_one(tx, record, proxy_user_id, now)
        except (IntegrityError, DataError, ValueError) as exc:
            kind = type(exc).__name__
            current_app.logger.warning(f"MySideline record {record.my_sideline_id} rejected: {exc}")
            decision = Decision(DecisionKind.ERROR, record.my_sideline_id, reason=kind)
        report.record(decision)

    current_app.logger.info(
        f"Reconciled {report.processed} record(s): {report.created} created, "
        f"{report.updated} updated, {report.skipped} skipped, {len(report.errors)} error(s)"
    )
    return report


__all__ = [
    "AUTHORITATIVE_FIELDS",
    "Decision",
    "DecisionKind",
    "ReconcileReport",
    "ReconcileTimeout",
    "reconcile",
]
