from .models import (
    AUSTRALIAN_STATES,
    SYSTEM_USER_EMAIL,
    AuditLog,
    Carnival,
    Club,
    ClubAlternateName,
    JSONType,
    SyncLog,
    SyncStatus,
    TimestampedBase,
    User,
    utcnow,
)

__all__ = [
    "AUSTRALIAN_STATES",
    "SYSTEM_USER_EMAIL",
    "AuditLog",
    "Carnival",
    "Club",
    "ClubAlternateName",
    "JSONType",
    "SyncLog",
    "SyncStatus",
    "TimestampedBase",
    "User",
    "utcnow",
]
