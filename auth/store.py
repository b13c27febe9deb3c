"""
auth/store.py -- SQLAlchemy Core persistence layer for API keys.

Pattern: Repository + Data Mapper (same as registry/store.py).
ApiKeyStore is the repository; _row_to_api_key is the mapper.
Service and dependency code never touches SQL directly.

Connection handling:
  Writes that belong to an audited mutation (insert, mark_revoked) take the
  caller's Connection from AuditTrail.mutation() so the key row and its audit
  entry commit together. Reads accept an optional Connection for the same
  reason and otherwise open their own. touch_last_used() is bookkeeping on the
  verification hot path and commits on its own.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Revocation is a conditional UPDATE (... WHERE revoked_at IS NULL) so two
  concurrent revokes cannot both succeed.

Layer rule: no imports from api/, audit/, or registry/.
"""

from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import Column, String, Table, Text
from sqlalchemy.engine import Connection, Engine

from auth.models import ApiKey
from core.db import from_iso, metadata, reading, to_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_api_keys = Table(
    "api_keys",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("owner_id", String(64), nullable=False, index=True),
    Column("owner_name", String(255), nullable=False),  # snapshot at issue time
    Column("owner_email", String(255)),
    Column("name", String(100), nullable=False),
    Column("key_prefix", String(12), nullable=False, index=True),  # first 12 chars, clear text
    Column("salt", String(32), nullable=False),
    Column("secret_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("scopes", Text),  # JSON array; NULL = unrestricted
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
    Column("expires_at", String(32)),
    Column("revoked_at", String(32)),
    Column("revoked_reason", Text),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ApiKeyStore:
    """Repository for ApiKey entities.

    Usage:
        store = ApiKeyStore(engine)
        with engine.begin() as conn:
            store.insert(conn, key)
        candidates = store.find_by_prefix(key.key_prefix)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine, tables=[_api_keys])

    def insert(self, conn: Connection, key: ApiKey) -> None:
        conn.execute(
            _api_keys.insert().values(
                id=key.id,
                owner_id=key.owner_id,
                owner_name=key.owner_name,
                owner_email=key.owner_email,
                name=key.name,
                key_prefix=key.key_prefix,
                salt=key.salt,
                secret_hash=key.secret_hash,
                scopes=json.dumps(key.scopes) if key.scopes is not None else None,
                created_at=to_iso(key.created_at),
                expires_at=to_iso(key.expires_at) if key.expires_at else None,
            )
        )

    def get(self, key_id: str, conn: Connection | None = None) -> ApiKey | None:
        with reading(self.engine, conn) as c:
            row = c.execute(_api_keys.select().where(_api_keys.c.id == key_id)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def find_by_prefix(self, key_prefix: str) -> list[ApiKey]:
        """Every key sharing this display prefix, revoked or not.

        Prefixes carry ~50 bits of randomness so this is almost always zero or
        one row, but nothing guarantees uniqueness and the caller must check
        each candidate's hash.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(_api_keys.select().where(_api_keys.c.key_prefix == key_prefix)).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def list(self, owner_id: str | None = None) -> list[ApiKey]:
        """Keys newest first, optionally restricted to one owner."""
        stmt = _api_keys.select()
        if owner_id is not None:
            stmt = stmt.where(_api_keys.c.owner_id == owner_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_api_keys.c.created_at.desc())).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def mark_revoked(
        self,
        conn: Connection,
        key_id: str,
        revoked_at: datetime,
        reason: str | None,
        owner_id: str | None = None,
    ) -> bool:
        """Revoke a key that is not already revoked.

        owner_id, when given, is part of the WHERE clause so a caller cannot
        revoke another owner's key by guessing its id (IDOR).

        Returns True if this call revoked the key, False if the key does not
        exist, belongs to someone else, or was already revoked.
        """
        cond = (_api_keys.c.id == key_id) & (_api_keys.c.revoked_at.is_(None))
        if owner_id is not None:
            cond = cond & (_api_keys.c.owner_id == owner_id)
        result = conn.execute(
            _api_keys.update().where(cond).values(revoked_at=to_iso(revoked_at), revoked_reason=reason)
        )
        return result.rowcount > 0

    def touch_last_used(self, key_id: str, when: datetime) -> None:
        """Stamp last_used_at after a successful verification."""
        with self.engine.begin() as conn:
            conn.execute(_api_keys.update().where(_api_keys.c.id == key_id).values(last_used_at=to_iso(when)))


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        owner_id=row.owner_id,
        owner_name=row.owner_name,
        owner_email=row.owner_email,
        name=row.name,
        key_prefix=row.key_prefix,
        salt=row.salt,
        secret_hash=row.secret_hash,
        scopes=json.loads(row.scopes) if row.scopes is not None else None,
        created_at=from_iso(row.created_at),
        last_used_at=from_iso(row.last_used_at),
        expires_at=from_iso(row.expires_at),
        revoked_at=from_iso(row.revoked_at),
        revoked_reason=row.revoked_reason,
    )
