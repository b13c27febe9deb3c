"""
audit/models.py -- Domain dataclasses for the audit trail.

Pattern: Data class (pure data containers). AuditTrail in audit/store.py owns
all persistence and query logic.

AuditLogEntry is frozen: once built it cannot be changed, and the store offers
no update or delete. The only invariant enforced here is the success /
error_message pairing, because an entry that violates it must never reach the
database.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# Categories written by idcore services. Free-form strings in the database;
# list_categories() reports whatever has actually been observed.
CATEGORY_CLIENT = "Client"
CATEGORY_API_KEY = "ApiKey"
CATEGORY_PROVIDER = "ExternalAuthProvider"
CATEGORY_CONFIGURATION = "Configuration"


@dataclass(frozen=True)
class Actor:
    """Who performed an action, and from where.

    user_name is a snapshot at the time of the action, not a live reference:
    renaming or deleting the account later does not rewrite history.
    All fields are optional -- system actions have no user.
    """

    user_id: Optional[str] = None
    user_name: Optional[str] = None
    email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM_ACTOR = Actor(user_name="system")


@dataclass(frozen=True)
class AuditLogEntry:
    """One immutable record of a security-relevant action.

    error_message is present iff success is False. created_at is stamped by the
    store on insert; entries built by callers leave it empty.
    """

    action: str
    category: str
    success: bool
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = ""  # ISO 8601 UTC, set by store on insert

    def __post_init__(self) -> None:
        if self.success and self.error_message is not None:
            raise ValueError("A successful audit entry cannot carry an error_message.")
        if not self.success and not self.error_message:
            raise ValueError("A failed audit entry requires an error_message.")

    @classmethod
    def for_actor(
        cls,
        actor: Optional[Actor],
        category: str,
        action: str,
        *,
        success: bool = True,
        details: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> "AuditLogEntry":
        actor = actor or SYSTEM_ACTOR
        return cls(
            action=action,
            category=category,
            success=success,
            user_id=actor.user_id,
            user_name=actor.user_name,
            details=details,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            error_message=error_message,
        )


@dataclass
class AuditQuery:
    """Filter + paging for AuditTrail.query() and AuditTrail.export().

    start / end are inclusive bounds; naive datetimes are treated as UTC.
    keyword matches user name, action, details and error message.
    export() ignores skip and take.
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    category: Optional[str] = None
    user_id: Optional[str] = None
    success: Optional[bool] = None
    keyword: Optional[str] = None
    skip: int = 0
    take: int = 50


@dataclass(frozen=True)
class AuditExportRow:
    """Flat row for CSV export. Column order matches audit/formatter.to_csv()."""

    id: str
    created_at: str
    category: str
    action: str
    user_name: Optional[str]
    success: bool
    ip_address: Optional[str]
    details: Optional[str]
    error_message: Optional[str]
    user_agent: Optional[str]

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditExportRow":
        return cls(
            id=entry.id,
            created_at=entry.created_at,
            category=entry.category,
            action=entry.action,
            user_name=entry.user_name,
            success=entry.success,
            ip_address=entry.ip_address,
            details=entry.details,
            error_message=entry.error_message,
            user_agent=entry.user_agent,
        )
