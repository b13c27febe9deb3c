"""
core/db.py -- Shared SQLAlchemy engine and schema metadata.

Every store (auth/store.py, audit/store.py, registry/store.py) declares its
tables on the one `metadata` object below and receives the same Engine. Sharing
the engine is what lets a registry mutation and its audit_log row commit in a
single transaction: the service opens `engine.begin()` once and hands the
connection to both stores.

Uses SQLAlchemy Core (not ORM) so the dataclasses in each package's models.py
remain the authoritative domain representation. Swapping SQLite for PostgreSQL
is a connection string change.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, registry/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Connection, Engine

metadata = MetaData()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets API key verification (the hot read path) proceed while a
    mutation holds the write lock. Set per-connection because SQLite PRAGMAs
    are not inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Build the process-wide Engine for db_url.

    check_same_thread=False is required because FastAPI runs sync route
    handlers on a worker thread pool.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Timestamps
#
# Stored as fixed-width ISO 8601 UTC strings (microsecond precision, +00:00
# offset) so lexicographic comparison in SQL equals chronological order.
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Normalize a datetime to the stored string form. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextmanager
def reading(engine: Engine, conn: Optional[Connection] = None) -> Iterator[Connection]:
    """Yield conn when the caller is inside a transaction, else a fresh connection.

    Store read methods take an optional Connection so a service can re-read a
    row inside the same transaction that is about to modify it.
    """
    if conn is not None:
        yield conn
    else:
        with engine.connect() as own:
            yield own
