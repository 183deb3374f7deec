"""Catalog access used by the MySideline ingestion pipeline.

Carnival operations take the session yielded by ``begin_sync_transaction``.
Sync-log operations run in their own short transactions so that a running row
is visible to other processes before the reconciliation starts.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterator

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from oldmanfooty.extensions import db
from oldmanfooty.models import (
    SYSTEM_USER_EMAIL,
    Carnival,
    Club,
    ClubAlternateName,
    SyncLog,
    SyncStatus,
    User,
    utcnow,
)

MYSIDELINE_SYNC = "mysideline"


class AlreadyRunning(Exception):
    def __init__(self, sync_type: str) -> None:
        self.sync_type = sync_type
        super().__init__(f"a {sync_type} sync is already running")


class InvalidSyncTransition(Exception):
    pass


@dataclass
class SyncOutcome:
    status: SyncStatus
    events_processed: int = 0
    events_created: int = 0
    events_updated: int = 0
    error_message: str | None = None
    metadata: dict[str, Any] | None = field(default=None)

    @classmethod
    def failed(cls, reason: str, metadata: dict[str, Any] | None = None, **counters: int) -> "SyncOutcome":
        return cls(status=SyncStatus.FAILED, error_message=reason, metadata=metadata, **counters)


# ---------------------------------------------------------------------------
# Transactions and carnivals
# ---------------------------------------------------------------------------

@contextmanager
def begin_sync_transaction() -> Iterator[Session]:
    """Yield the session; commit on success, roll back and re-raise otherwise."""
    session = db.session
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def find_carnival_by_mysideline_id(tx: Session, my_sideline_id: str, for_update: bool = False) -> Carnival | None:
    stmt = select(Carnival).where(Carnival.my_sideline_id == my_sideline_id)
    if for_update:
        # Re-read committed state so a claim made by another session is seen
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return tx.execute(stmt).scalar_one_or_none()


def insert_carnival(tx: Session, values: dict[str, Any]) -> Carnival:
    carnival = Carnival(**values)
    tx.add(carnival)
    tx.flush()
    return carnival


def update_carnival(tx: Session, carnival_id: str, patch: dict[str, Any]) -> Carnival:
    carnival = tx.get(Carnival, carnival_id)
    if carnival is None:
        raise LookupError(f"carnival {carnival_id} not found")
    for key, value in patch.items():
        if not hasattr(Carnival, key):
            raise ValueError(f"unknown carnival field {key!r}")
        setattr(carnival, key, value)
    tx.flush()
    return carnival


def ensure_system_user(tx: Session) -> User:
    """Create-or-get the proxy author for imported carnivals."""
    stmt = select(User).where(User.email == SYSTEM_USER_EMAIL)
    user = tx.execute(stmt).scalar_one_or_none()
    if user is not None:
        return user

    user = User(
        email=SYSTEM_USER_EMAIL,
        first_name="System",
        last_name="MySideline Sync",
        is_admin=False,
        active=True,
    )
    try:
        with tx.begin_nested():
            tx.add(user)
    except IntegrityError:
        # Created concurrently by another process
        user = tx.execute(stmt).scalar_one()
    return user


# ---------------------------------------------------------------------------
# Sync logs
# ---------------------------------------------------------------------------

def open_sync_log(sync_type: str = MYSIDELINE_SYNC, metadata: dict[str, Any] | None = None,
                  now: datetime | None = None) -> SyncLog:
    """Insert a running log; the partial unique index rejects a second one."""
    log = SyncLog(
        sync_type=sync_type,
        status=SyncStatus.RUNNING,
        started_at=now or utcnow(),
        meta=metadata or {},
    )
    db.session.add(log)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise AlreadyRunning(sync_type) from exc
    return log


def close_sync_log(log_id: int, outcome: SyncOutcome, now: datetime | None = None) -> SyncLog:
    if outcome.status is SyncStatus.RUNNING:
        raise InvalidSyncTransition("a sync log can only be closed as completed or failed")

    log = db.session.get(SyncLog, log_id, with_for_update=True, populate_existing=True)
    if log is None:
        raise InvalidSyncTransition(f"sync log {log_id} does not exist")
    if log.status is not SyncStatus.RUNNING:
        db.session.rollback()
        raise InvalidSyncTransition(f"sync log {log_id} is already {log.status.value}")

    log.status = outcome.status
    log.completed_at = now or utcnow()
    log.events_processed = outcome.events_processed
    log.events_created = outcome.events_created
    log.events_updated = outcome.events_updated
    log.error_message = outcome.error_message
    if outcome.metadata is not None:
        log.meta = outcome.metadata
    db.session.commit()
    return log


def find_orphan_running_logs(older_than: datetime, sync_type: str | None = MYSIDELINE_SYNC) -> list[SyncLog]:
    stmt = select(SyncLog).where(
        SyncLog.status == SyncStatus.RUNNING,
        SyncLog.started_at < older_than,
    )
    if sync_type is not None:
        stmt = stmt.where(SyncLog.sync_type == sync_type)
    return list(db.session.execute(stmt.order_by(SyncLog.started_at)).scalars())


def mark_failed(log_id: int, reason: str) -> SyncLog:
    return close_sync_log(log_id, SyncOutcome.failed(reason))


def get_sync_log(log_id: int) -> SyncLog | None:
    return db.session.get(SyncLog, log_id, populate_existing=True)


def recent_sync_logs(sync_type: str = MYSIDELINE_SYNC, limit: int = 10) -> list[SyncLog]:
    stmt = (
        select(SyncLog)
        .where(SyncLog.sync_type == sync_type)
        .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
        .limit(limit)
    )
    return list(db.session.execute(stmt).scalars())


def _last_with_status(sync_type: str, status: SyncStatus) -> SyncLog | None:
    stmt = (
        select(SyncLog)
        .where(SyncLog.sync_type == sync_type, SyncLog.status == status)
        .order_by(SyncLog.completed_at.desc(), SyncLog.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def last_successful_sync(sync_type: str = MYSIDELINE_SYNC) -> SyncLog | None:
    return _last_with_status(sync_type, SyncStatus.COMPLETED)


def last_failed_sync(sync_type: str = MYSIDELINE_SYNC) -> SyncLog | None:
    return _last_with_status(sync_type, SyncStatus.FAILED)


def should_run_sync(sync_type: str = MYSIDELINE_SYNC, interval_hours: int = 24,
                    now: datetime | None = None) -> bool:
    """True when no sync of this type completed within the interval."""
    cutoff = (now or utcnow()) - timedelta(hours=interval_hours)
    stmt = select(func.count(SyncLog.id)).where(
        SyncLog.sync_type == sync_type,
        SyncLog.status == SyncStatus.COMPLETED,
        SyncLog.completed_at >= cutoff,
    )
    return db.session.execute(stmt).scalar_one() == 0


def sync_stats(sync_type: str = MYSIDELINE_SYNC, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
    since = (now or utcnow()) - timedelta(days=days)
    completed = case((SyncLog.status == SyncStatus.COMPLETED, 1), else_=0)
    failed = case((SyncLog.status == SyncStatus.FAILED, 1), else_=0)
    stmt = select(
        func.count(SyncLog.id),
        func.coalesce(func.sum(completed), 0),
        func.coalesce(func.sum(failed), 0),
        func.coalesce(func.sum(SyncLog.events_processed), 0),
        func.coalesce(func.sum(SyncLog.events_created), 0),
        func.coalesce(func.sum(SyncLog.events_updated), 0),
    ).where(SyncLog.sync_type == sync_type, SyncLog.started_at >= since)
    total, successful, failures, processed, created, updated = db.session.execute(stmt).one()

    last_ok = last_successful_sync(sync_type)
    last_bad = last_failed_sync(sync_type)
    return {
        "syncType": sync_type,
        "days": days,
        "totalSyncs": int(total),
        "successful": int(successful),
        "failed": int(failures),
        "successRate": round(int(successful) / int(total) * 100, 1) if total else 0.0,
        "totalEventsProcessed": int(processed),
        "totalEventsCreated": int(created),
        "totalEventsUpdated": int(updated),
        "lastSuccessfulSync": last_ok.completed_at.isoformat() if last_ok and last_ok.completed_at else None,
        "lastFailedSync": last_bad.completed_at.isoformat() if last_bad and last_bad.completed_at else None,
    }


# ---------------------------------------------------------------------------
# Clubs
# ---------------------------------------------------------------------------

def search_clubs(term: str, limit: int = 20) -> list[Club]:
    """Active clubs whose name or an active alternate name contains the term."""
    normalized = " ".join((term or "").split()).lower()
    if not normalized:
        return []
    escaped = normalized.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    alternate_matches = select(ClubAlternateName.club_id).where(
        ClubAlternateName.is_active.is_(True),
        ClubAlternateName.alternate_name.like(pattern, escape="\\"),
    )
    stmt = (
        select(Club)
        .where(
            Club.is_active.is_(True),
            or_(
                func.lower(Club.club_name).like(pattern, escape="\\"),
                Club.id.in_(alternate_matches),
            ),
        )
        .order_by(Club.club_name)
        .limit(limit)
    )
    return list(db.session.execute(stmt).scalars())


__all__ = [
    "MYSIDELINE_SYNC",
    "AlreadyRunning",
    "InvalidSyncTransition",
    "SyncOutcome",
    "begin_sync_transaction",
    "close_sync_log",
    "ensure_system_user",
    "find_carnival_by_mysideline_id",
    "find_orphan_running_logs",
    "get_sync_log",
    "insert_carnival",
    "last_failed_sync",
    "last_successful_sync",
    "mark_failed",
    "open_sync_log",
    "recent_sync_logs",
    "search_clubs",
    "should_run_sync",
    "sync_stats",
    "update_carnival",
]
