"""
audit/store.py -- Append-only audit trail backed by SQLAlchemy Core.

Pattern: Repository + Data Mapper (same as auth/store.py and
registry/store.py). AuditTrail is the repository; _row_to_entry is the mapper.

Write access:
  record()   -- insert one entry, inside the caller's transaction when a
                Connection is passed.
  mutation() -- unit-of-work context manager used by every mutating service.
                The state change and its success entry commit together. If the
                body raises an AdminError the transaction rolls back (zero
                state change) and exactly one success=False entry is written in
                a fresh transaction before the error propagates.

There is deliberately no update or delete method. Entries are immutable once
written.

Security: all queries use bound parameters; keyword search uses LIKE with
autoescape so % and _ in user input match literally.

Layer rule: no imports from api/, auth/, or registry/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Index, Integer, String, Table, Text, func, or_, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from audit.models import Actor, AuditExportRow, AuditLogEntry, AuditQuery
from core.db import metadata, to_iso, utcnow
from core.errors import AdminError

logger = logging.getLogger("idcore.audit")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_audit_log = Table(
    "audit_log",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(64)),
    Column("user_name", String(255)),  # snapshot, not a foreign key
    Column("action", String(100), nullable=False),
    Column("category", String(100), nullable=False),
    Column("details", Text),
    Column("ip_address", String(45)),
    Column("user_agent", String(512)),
    Column("success", Integer, nullable=False),  # boolean stored as 0/1
    Column("error_message", Text),
    Column("created_at", String(32), nullable=False),
    Index("ix_audit_log_created_category", "created_at", "category"),
)


@dataclass
class MutationScope:
    """Handle yielded by AuditTrail.mutation().

    conn    -- the open transaction; pass it to every store write.
    details -- audit details; the body may overwrite it once it knows more
               (e.g. the id of the row it just created).
    """

    conn: Optional[Connection] = None
    details: Optional[str] = None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditTrail:
    """Repository for AuditLogEntry records.

    Usage:
        audit = AuditTrail(engine)
        with audit.mutation("Client", "Create", actor) as scope:
            store.insert_client(scope.conn, client)
        entries, total = audit.query(AuditQuery(category="Client"))
    """

    def __init__(
        self,
        engine: Engine,
        clock: Callable[[], datetime] = utcnow,
        max_take: int = 500,
        max_export_rows: int = 10_000,
    ) -> None:
        self.engine = engine
        self._clock = clock
        self._max_take = max_take
        self._max_export_rows = max_export_rows
        metadata.create_all(engine, tables=[_audit_log])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(self, entry: AuditLogEntry, conn: Optional[Connection] = None) -> AuditLogEntry:
        """Insert one entry and return it with created_at stamped.

        With conn, the insert joins the caller's transaction and commits or
        rolls back with it. Without conn, the entry commits on its own.
        """
        stored = replace(entry, created_at=to_iso(self._clock()))
        stmt = _audit_log.insert().values(
            id=stored.id,
            user_id=stored.user_id,
            user_name=stored.user_name,
            action=stored.action,
            category=stored.category,
            details=stored.details,
            ip_address=stored.ip_address,
            user_agent=stored.user_agent,
            success=1 if stored.success else 0,
            error_message=stored.error_message,
            created_at=stored.created_at,
        )
        if conn is not None:
            conn.execute(stmt)
        else:
            with self.engine.begin() as own:
                own.execute(stmt)
        return stored

    def record_failure(
        self,
        actor: Optional[Actor],
        category: str,
        action: str,
        error_message: str,
        details: Optional[str] = None,
    ) -> None:
        """Write a success=False entry in its own transaction.

        Called after the failed operation has already rolled back. If the
        database is unavailable the entry is lost; that is logged with full
        context and the caller's original error still propagates.
        """
        entry = AuditLogEntry.for_actor(
            actor, category, action, success=False, details=details, error_message=error_message
        )
        try:
            self.record(entry)
        except SQLAlchemyError:
            logger.exception("Failed to write audit failure entry for %s/%s", category, action)

    @contextmanager
    def mutation(
        self,
        category: str,
        action: str,
        actor: Optional[Actor],
        details: Optional[str] = None,
    ) -> Iterator[MutationScope]:
        """Run one audited mutation as a single transaction.

        Success: the body's writes and one success entry commit together.
        AdminError: rollback, one failure entry, re-raise.
        Any other exception (storage failure): rollback and propagate; the API
        layer logs it as an internal error.
        """
        scope = MutationScope(details=details)
        try:
            with self.engine.begin() as conn:
                scope.conn = conn
                yield scope
                entry = AuditLogEntry.for_actor(actor, category, action, details=scope.details)
                self.record(entry, conn=conn)
        except AdminError as exc:
            logger.warning("%s/%s rejected: %s", category, action, exc.audit_message())
            self.record_failure(actor, category, action, exc.audit_message(), details=scope.details)
            raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, q: AuditQuery) -> tuple[list[AuditLogEntry], int]:
        """Return (page of entries newest first, total matching count).

        skip is floored at 0; take is clamped to 1..max_take.
        """
        skip = max(0, q.skip)
        take = min(max(q.take, 1), self._max_take)
        conditions = _filters(q)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_audit_log).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _audit_log.select()
                .where(*conditions)
                .order_by(_audit_log.c.created_at.desc(), _audit_log.c.id.desc())
                .offset(skip)
                .limit(take)
            ).fetchall()
        return [_row_to_entry(r) for r in rows], total

    def list_categories(self) -> list[str]:
        """Return every distinct category observed, sorted."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_audit_log.c.category).distinct().order_by(_audit_log.c.category)
            ).fetchall()
        return [r[0] for r in rows if r[0]]

    def export(self, q: AuditQuery) -> list[AuditExportRow]:
        """Same filters and order as query(), without paging.

        Bounded by max_export_rows so a broad filter cannot load the whole
        table into memory.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_log.select()
                .where(*_filters(q))
                .order_by(_audit_log.c.created_at.desc(), _audit_log.c.id.desc())
                .limit(self._max_export_rows)
            ).fetchall()
        return [AuditExportRow.from_entry(_row_to_entry(r)) for r in rows]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _filters(q: AuditQuery) -> list:
    c = _audit_log.c
    conditions: list = []
    if q.start is not None:
        conditions.append(c.created_at >= to_iso(q.start))
    if q.end is not None:
        conditions.append(c.created_at <= to_iso(q.end))
    if q.category:
        conditions.append(c.category == q.category)
    if q.user_id:
        conditions.append(c.user_id == q.user_id)
    if q.success is not None:
        conditions.append(c.success == (1 if q.success else 0))
    if q.keyword and q.keyword.strip():
        keyword = q.keyword.strip()
        conditions.append(
            or_(
                c.user_name.contains(keyword, autoescape=True),
                c.action.contains(keyword, autoescape=True),
                c.details.contains(keyword, autoescape=True),
                c.error_message.contains(keyword, autoescape=True),
            )
        )
    return conditions


def _row_to_entry(row) -> AuditLogEntry:
    m = row._mapping
    return AuditLogEntry(
        id=m["id"],
        user_id=m["user_id"],
        user_name=m["user_name"],
        action=m["action"],
        category=m["category"],
        details=m["details"],
        ip_address=m["ip_address"],
        user_agent=m["user_agent"],
        success=bool(m["success"]),
        error_message=m["error_message"],
        created_at=m["created_at"],
    )
