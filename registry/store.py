"""
registry/store.py -- SQLAlchemy Core persistence for clients, providers and
the redirect URI policy row.

Pattern: Repository + Data Mapper (same as auth/store.py).
RegistryStore is the repository; the _row_to_* functions are the mappers.

Connection handling:
  Every write takes the caller's Connection (from AuditTrail.mutation()) so
  the row and its audit entry commit together. Reads accept an optional
  Connection so a service can re-read inside the transaction it is about to
  modify; without one they open their own.

Uniqueness:
  clients.client_id is the primary key and external_auth_providers.name has a
  UNIQUE index. Services pre-check for a friendly error, but the constraint is
  the authoritative guard against two concurrent creates; the resulting
  IntegrityError propagates to the service, which maps it to ConflictError.

client_validation_settings is a single-row table (id = 1 enforced by a CHECK
constraint).

Layer rule: no imports from api/, auth/, or audit/.
"""

from __future__ import annotations

import json
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String, Table, Text
from sqlalchemy.engine import Connection, Engine

from core.db import metadata, reading
from core.validation import ValidationPolicySettings
from registry.models import ClientRegistration, ExternalAuthProvider

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_clients = Table(
    "clients",
    metadata,
    Column("client_id", String(100), primary_key=True),
    Column("display_name", String(200), nullable=False),
    Column("client_type", String(20), nullable=False),
    Column("redirect_uris", Text, nullable=False),  # JSON array
    Column("post_logout_redirect_uris", Text, nullable=False),  # JSON array
    Column("scopes", Text, nullable=False),  # JSON array
    Column("client_secret_hash", Text),  # bcrypt; NULL for public clients
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_providers = Table(
    "external_auth_providers",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("provider_type", String(50), nullable=False),
    Column("name", String(100), nullable=False, unique=True),
    Column("display_name", String(200), nullable=False),
    Column("enabled", Boolean, nullable=False, default=False),
    Column("client_id", String(500), nullable=False),
    Column("client_secret", Text, nullable=False),  # Fernet ciphertext
    Column("callback_path", String(200), nullable=False),
    Column("scopes", Text),  # JSON array
    Column("additional_config", Text),  # JSON object; NULL when empty
    Column("display_order", Integer, nullable=False, default=0),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_validation_settings = Table(
    "client_validation_settings",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("allowed_schemes", Text, nullable=False),  # comma-separated
    Column("allow_http_on_loopback", Boolean, nullable=False),
    Column("allowed_hosts", Text, nullable=False),  # comma-separated, "" = any
    Column("updated_at", String(32), nullable=False),
    CheckConstraint("id = 1", name="ck_client_validation_settings_single_row"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RegistryStore:
    """Repository for ClientRegistration, ExternalAuthProvider and the URI policy row.

    Usage:
        store = RegistryStore(engine)
        with engine.begin() as conn:
            store.insert_client(conn, client)
        clients = store.list_clients()
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine, tables=[_clients, _providers, _validation_settings])

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def get_client(self, client_id: str, conn: Optional[Connection] = None) -> Optional[ClientRegistration]:
        with reading(self.engine, conn) as c:
            row = c.execute(_clients.select().where(_clients.c.client_id == client_id)).fetchone()
        return _row_to_client(row) if row is not None else None

    def list_clients(self) -> list[ClientRegistration]:
        with self.engine.connect() as conn:
            rows = conn.execute(_clients.select().order_by(_clients.c.client_id)).fetchall()
        return [_row_to_client(r) for r in rows]

    def insert_client(self, conn: Connection, client: ClientRegistration) -> None:
        conn.execute(_clients.insert().values(**_client_values(client), client_id=client.client_id))

    def update_client(self, conn: Connection, client: ClientRegistration) -> bool:
        result = conn.execute(
            _clients.update().where(_clients.c.client_id == client.client_id).values(**_client_values(client))
        )
        return result.rowcount > 0

    def delete_client(self, conn: Connection, client_id: str) -> bool:
        result = conn.execute(_clients.delete().where(_clients.c.client_id == client_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # External auth providers
    # ------------------------------------------------------------------

    def get_provider(self, provider_id: str, conn: Optional[Connection] = None) -> Optional[ExternalAuthProvider]:
        with reading(self.engine, conn) as c:
            row = c.execute(_providers.select().where(_providers.c.id == provider_id)).fetchone()
        return _row_to_provider(row) if row is not None else None

    def get_provider_by_name(self, name: str, conn: Optional[Connection] = None) -> Optional[ExternalAuthProvider]:
        with reading(self.engine, conn) as c:
            row = c.execute(_providers.select().where(_providers.c.name == name)).fetchone()
        return _row_to_provider(row) if row is not None else None

    def list_providers(self, enabled_only: bool = False) -> list[ExternalAuthProvider]:
        """Providers ordered by display_order, then name."""
        stmt = _providers.select()
        if enabled_only:
            stmt = stmt.where(_providers.c.enabled.is_(True))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_providers.c.display_order, _providers.c.name)).fetchall()
        return [_row_to_provider(r) for r in rows]

    def insert_provider(self, conn: Connection, provider: ExternalAuthProvider) -> None:
        conn.execute(
            _providers.insert().values(
                **_provider_values(provider),
                id=provider.id,
                provider_type=provider.provider_type,
                name=provider.name,
                created_at=provider.created_at,
            )
        )

    def update_provider(self, conn: Connection, provider: ExternalAuthProvider) -> bool:
        result = conn.execute(
            _providers.update().where(_providers.c.id == provider.id).values(**_provider_values(provider))
        )
        return result.rowcount > 0

    def delete_provider(self, conn: Connection, provider_id: str) -> bool:
        result = conn.execute(_providers.delete().where(_providers.c.id == provider_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Redirect URI policy
    # ------------------------------------------------------------------

    def get_validation_settings(
        self, conn: Optional[Connection] = None
    ) -> Optional[tuple[ValidationPolicySettings, str]]:
        """Return (settings, updated_at) or None when the row was never written."""
        with reading(self.engine, conn) as c:
            row = c.execute(_validation_settings.select().where(_validation_settings.c.id == 1)).fetchone()
        if row is None:
            return None
        settings = ValidationPolicySettings(
            allowed_schemes=tuple(_split_csv(row.allowed_schemes)),
            allow_http_on_loopback=bool(row.allow_http_on_loopback),
            allowed_hosts=tuple(_split_csv(row.allowed_hosts)),
        )
        return settings, row.updated_at

    def save_validation_settings(self, conn: Connection, settings: ValidationPolicySettings, updated_at: str) -> None:
        values = {
            "allowed_schemes": ",".join(settings.allowed_schemes),
            "allow_http_on_loopback": settings.allow_http_on_loopback,
            "allowed_hosts": ",".join(settings.allowed_hosts),
            "updated_at": updated_at,
        }
        result = conn.execute(_validation_settings.update().where(_validation_settings.c.id == 1).values(**values))
        if result.rowcount == 0:
            conn.execute(_validation_settings.insert().values(id=1, **values))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _split_csv(value: Optional[str]) -> list[str]:
    return [v for v in (value or "").split(",") if v]


def _client_values(client: ClientRegistration) -> dict:
    return {
        "display_name": client.display_name,
        "client_type": client.client_type,
        "redirect_uris": json.dumps(client.redirect_uris),
        "post_logout_redirect_uris": json.dumps(client.post_logout_redirect_uris),
        "scopes": json.dumps(client.scopes),
        "client_secret_hash": client.client_secret_hash,
        "created_at": client.created_at,
        "updated_at": client.updated_at,
    }


def _row_to_client(row) -> ClientRegistration:
    return ClientRegistration(
        client_id=row.client_id,
        display_name=row.display_name,
        client_type=row.client_type,
        redirect_uris=json.loads(row.redirect_uris),
        post_logout_redirect_uris=json.loads(row.post_logout_redirect_uris),
        scopes=json.loads(row.scopes),
        client_secret_hash=row.client_secret_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _provider_values(provider: ExternalAuthProvider) -> dict:
    return {
        "display_name": provider.display_name,
        "enabled": provider.enabled,
        "client_id": provider.client_id,
        "client_secret": provider.client_secret_encrypted,
        "callback_path": provider.callback_path,
        "scopes": json.dumps(provider.scopes),
        "additional_config": json.dumps(provider.additional_config) if provider.additional_config else None,
        "display_order": provider.display_order,
        "updated_at": provider.updated_at,
    }


def _row_to_provider(row) -> ExternalAuthProvider:
    return ExternalAuthProvider(
        id=row.id,
        provider_type=row.provider_type,
        name=row.name,
        display_name=row.display_name,
        enabled=bool(row.enabled),
        client_id=row.client_id,
        client_secret_encrypted=row.client_secret,
        callback_path=row.callback_path,
        scopes=json.loads(row.scopes) if row.scopes else [],
        additional_config=json.loads(row.additional_config) if row.additional_config else {},
        display_order=row.display_order,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
