from __future__ import annotations

import datetime as dt
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from sqlalchemy.sql import func

from oldmanfooty.extensions import db, bcrypt

JSONType = JSON().with_variant(JSONB, 'postgresql')

SYSTEM_USER_EMAIL = "system@oldmanfooty.internal"
AUSTRALIAN_STATES = ("ACT", "NSW", "NT", "QLD", "SA", "TAS", "VIC", "WA")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampedBase(db.Model):
    """Abstract base providing id/created/updated columns."""

    __abstract__ = True

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SyncStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class User(TimestampedBase):
    __tablename__ = "user"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column('is_active', Boolean, nullable=False, default=True)
    club_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("club.id", ondelete="SET NULL"),
        index=True,
    )
    is_primary_delegate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    club: Mapped["Club | None"] = relationship(
        back_populates="delegates",
        foreign_keys=[club_id],
    )
    audit_logs: Mapped[list["AuditLog"]] = relationship(back_populates="user")

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower() if value else value

    def set_password(self, password: str) -> None:
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))
        except ValueError:
            return False

    @property
    def is_system(self) -> bool:
        return self.email == SYSTEM_USER_EMAIL

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def is_active(self) -> bool:  # Flask-Login compatibility
        return bool(self.active)

    @property
    def is_anonymous(self) -> bool:
        return False

    def get_id(self) -> str:
        return self.id


class Club(TimestampedBase):
    __tablename__ = "club"

    club_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    state: Mapped[str | None] = mapped_column(String(3))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_proxy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by_user_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("user.id", ondelete="SET NULL", use_alter=True, name="fk_club_created_by_user"),
    )
    invite_email: Mapped[str | None] = mapped_column(String(255))

    delegates: Mapped[list[User]] = relationship(
        back_populates="club",
        foreign_keys=[User.club_id],
    )
    alternate_names: Mapped[list["ClubAlternateName"]] = relationship(
        back_populates="club",
        cascade="all, delete-orphan",
    )
    carnivals: Mapped[list["Carnival"]] = relationship(back_populates="club")

    @validates("club_name")
    def _normalize_name(self, key: str, value: str) -> str:
        return " ".join(value.split()) if value else value

    @validates("invite_email")
    def _normalize_invite_email(self, key: str, value: str | None) -> str | None:
        return value.strip().lower() if value else None

    @property
    def is_unclaimed(self) -> bool:
        return bool(self.created_by_proxy) and not any(u.active for u in self.delegates)


class ClubAlternateName(TimestampedBase):
    __tablename__ = "club_alternate_name"
    __table_args__ = (
        UniqueConstraint("club_id", "alternate_name", name="uq_club_alternate_name"),
    )

    club_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("club.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    alternate_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    club: Mapped[Club] = relationship(back_populates="alternate_names")

    @validates("alternate_name")
    def _normalize(self, key: str, value: str) -> str:
        return " ".join(value.split()).lower() if value else value


class Carnival(TimestampedBase):
    __tablename__ = "carnival"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    my_sideline_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    my_sideline_title: Mapped[str | None] = mapped_column(String(255))
    date: Mapped[dt.date | None] = mapped_column(Date)
    location_address: Mapped[str | None] = mapped_column(String(500))
    state: Mapped[str | None] = mapped_column(String(3))
    organiser_contact_email: Mapped[str | None] = mapped_column(String(255))
    original_my_sideline_contact_email: Mapped[str | None] = mapped_column(String(255))
    registration_link: Mapped[str | None] = mapped_column(String(1024))
    club_logo_url: Mapped[str | None] = mapped_column(String(1024))
    description: Mapped[str | None] = mapped_column(Text)
    created_by_user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("user.id"),
        nullable=False,
        index=True,
    )
    club_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("club.id", ondelete="SET NULL"),
        index=True,
    )
    is_manually_entered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_my_sideline_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    admin_notes: Mapped[str | None] = mapped_column(Text)

    club: Mapped[Club | None] = relationship(back_populates="carnivals")
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_user_id])

    @validates("my_sideline_id")
    def _freeze_my_sideline_id(self, key: str, value: str | None) -> str | None:
        current = self.my_sideline_id
        if current is not None and value != current:
            raise ValueError(f"my_sideline_id is immutable once set (carnival {self.id})")
        return value

    @property
    def is_from_my_sideline(self) -> bool:
        return self.my_sideline_id is not None

    @property
    def is_claimed(self) -> bool:
        # Manually-entered records carrying a MySideline id were adopted by a user
        return self.claimed_at is not None or (self.is_manually_entered and self.is_from_my_sideline)


class SyncLog(db.Model):
    """One row per orchestrated sync run; column names follow the shared sync_logs schema."""

    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_type_status", "syncType", "status"),
        Index(
            "uq_sync_logs_one_running",
            "syncType",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_type: Mapped[str] = mapped_column("syncType", String(50), nullable=False)
    status: Mapped[SyncStatus] = mapped_column(
        SqlEnum(
            SyncStatus,
            name="sync_status",
            native_enum=False,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SyncStatus.RUNNING,
    )
    started_at: Mapped[datetime] = mapped_column("startedAt", DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column("completedAt", DateTime(timezone=True))
    events_processed: Mapped[int] = mapped_column("eventsProcessed", Integer, nullable=False, default=0)
    events_created: Mapped[int] = mapped_column("eventsCreated", Integer, nullable=False, default=0)
    events_updated: Mapped[int] = mapped_column("eventsUpdated", Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column("errorMessage", Text)
    meta: Mapped[dict | None] = mapped_column("metadata", JSONType, default=dict)

    @property
    def is_running(self) -> bool:
        return self.status == SyncStatus.RUNNING

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'syncType': self.sync_type,
            'status': self.status.value,
            'startedAt': self.started_at.isoformat() if self.started_at else None,
            'completedAt': self.completed_at.isoformat() if self.completed_at else None,
            'eventsProcessed': self.events_processed,
            'eventsCreated': self.events_created,
            'eventsUpdated': self.events_updated,
            'errorMessage': self.error_message,
            'metadata': self.meta or {},
        }


class AuditLog(TimestampedBase):
    __tablename__ = "audit_log"

    user_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("user.id", ondelete="SET NULL"),
        index=True,
    )
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(36))
    meta: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    user: Mapped[User | None] = relationship(back_populates="audit_logs")


Index("ix_sync_logs_type_started", SyncLog.sync_type, SyncLog.started_at.desc())
