"""
registry/providers.py -- CRUD over external (federated) auth provider configs.

A provider's client secret is Fernet-encrypted before it reaches the store and
is write-only from the outside: no read method returns it. The one exception
is oauth_client_configs(), which decrypts for the in-process OAuth client
registry and never leaves the process.

New providers start disabled. Listeners registered with add_listener() run
after every committed mutation; the API uses this to rebuild its OAuth client
registry.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from cryptography.fernet import InvalidToken
from sqlalchemy.exc import IntegrityError

from audit.models import CATEGORY_PROVIDER, Actor
from audit.store import AuditTrail
from auth.tokens import decrypt_secret, encrypt_secret
from core.db import to_iso, utcnow
from core.errors import ConflictError, NotFoundError, ValidationFailedError
from registry.models import (
    PROVIDER_TYPES,
    CreateExternalAuthProviderRequest,
    ExternalAuthProvider,
    ExternalAuthProviderSummary,
    OAuthClientConfig,
    UpdateExternalAuthProviderRequest,
    default_callback_path,
)
from registry.store import RegistryStore

logger = logging.getLogger("idcore.registry")


def _validate_callback_path(path: str) -> str:
    path = path.strip()
    if not path.startswith("/") or any(ch.isspace() for ch in path):
        raise ValidationFailedError(
            "Callback path must be an absolute path without whitespace.",
            fields={"callback_path": ["Must start with '/' and contain no whitespace."]},
        )
    return path


class ExternalProviderRegistry:
    """Create, update, toggle, delete and read external auth providers."""

    def __init__(
        self,
        store: RegistryStore,
        audit: AuditTrail,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock
        self._listeners: list[Callable[[], None]] = []

    def add_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _changed(self) -> None:
        for callback in self._listeners:
            callback()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, request: CreateExternalAuthProviderRequest, actor: Actor) -> ExternalAuthProviderSummary:
        """Register a provider (disabled).

        Raises:
            ValidationFailedError: unknown provider_type, bad callback path.
            ConflictError(code="duplicate_provider_name").
        """
        name = request.name.strip()
        with self._audit.mutation(CATEGORY_PROVIDER, "Create", actor, details=f"name={name}") as scope:
            provider_type = request.provider_type.strip().lower()
            if provider_type not in PROVIDER_TYPES:
                raise ValidationFailedError(
                    f"Unknown provider type {request.provider_type!r}.",
                    code="invalid_provider_type",
                    fields={"provider_type": [f"Must be one of: {', '.join(PROVIDER_TYPES)}."]},
                )
            if self._store.get_provider_by_name(name, conn=scope.conn) is not None:
                raise ConflictError(f"Provider with name '{name}' already exists.", code="duplicate_provider_name")

            now = to_iso(self._clock())
            provider = ExternalAuthProvider(
                id=uuid.uuid4().hex,
                provider_type=provider_type,
                name=name,
                display_name=request.display_name.strip(),
                client_id=request.client_id,
                client_secret_encrypted=encrypt_secret(request.client_secret),
                callback_path=_validate_callback_path(request.callback_path)
                if request.callback_path
                else default_callback_path(provider_type, name),
                enabled=False,
                scopes=list(request.scopes or []),
                additional_config=dict(request.additional_config or {}),
                display_order=request.display_order,
                created_at=now,
                updated_at=now,
            )
            try:
                self._store.insert_provider(scope.conn, provider)
            except IntegrityError as exc:
                raise ConflictError(
                    f"Provider with name '{name}' already exists.", code="duplicate_provider_name"
                ) from exc
            scope.details = f"External auth provider '{name}' ({provider_type}) created, id={provider.id}"

        logger.info("Created external auth provider: %s", name)
        self._changed()
        return ExternalAuthProviderSummary.from_provider(provider)

    def update(
        self, provider_id: str, request: UpdateExternalAuthProviderRequest, actor: Actor
    ) -> ExternalAuthProviderSummary:
        """Apply the non-None fields of request.

        Raises:
            NotFoundError, ValidationFailedError (bad callback path).
        """
        with self._audit.mutation(CATEGORY_PROVIDER, "Update", actor, details=f"id={provider_id}") as scope:
            provider = self._store.get_provider(provider_id, conn=scope.conn)
            if provider is None:
                raise NotFoundError(f"Provider with ID {provider_id} not found.")

            changed: list[str] = []
            if request.display_name is not None and request.display_name != provider.display_name:
                provider.display_name = request.display_name
                changed.append("display_name")
            if request.client_id is not None and request.client_id != provider.client_id:
                provider.client_id = request.client_id
                changed.append("client_id")
            if request.client_secret is not None:
                provider.client_secret_encrypted = encrypt_secret(request.client_secret)
                changed.append("client_secret")
            if request.callback_path is not None:
                path = _validate_callback_path(request.callback_path)
                if path != provider.callback_path:
                    provider.callback_path = path
                    changed.append("callback_path")
            if request.enabled is not None and request.enabled != provider.enabled:
                provider.enabled = request.enabled
                changed.append("enabled")
            if request.scopes is not None and list(request.scopes) != provider.scopes:
                provider.scopes = list(request.scopes)
                changed.append("scopes")
            if request.additional_config is not None and dict(request.additional_config) != provider.additional_config:
                provider.additional_config = dict(request.additional_config)
                changed.append("additional_config")
            if request.display_order is not None and request.display_order != provider.display_order:
                provider.display_order = request.display_order
                changed.append("display_order")

            if changed:
                provider.updated_at = to_iso(self._clock())
                if not self._store.update_provider(scope.conn, provider):
                    raise NotFoundError(f"Provider with ID {provider_id} not found.")
            scope.details = f"External auth provider '{provider.name}' updated: {', '.join(changed) or 'no changes'}"

        if changed:
            logger.info("Updated external auth provider: %s (%s)", provider.name, ", ".join(changed))
            self._changed()
        return ExternalAuthProviderSummary.from_provider(provider)

    def toggle_enabled(self, provider_id: str, enabled: bool, actor: Actor) -> ExternalAuthProviderSummary:
        action = "Enable" if enabled else "Disable"
        with self._audit.mutation(CATEGORY_PROVIDER, action, actor, details=f"id={provider_id}") as scope:
            provider = self._store.get_provider(provider_id, conn=scope.conn)
            if provider is None:
                raise NotFoundError(f"Provider with ID {provider_id} not found.")
            provider.enabled = enabled
            provider.updated_at = to_iso(self._clock())
            if not self._store.update_provider(scope.conn, provider):
                raise NotFoundError(f"Provider with ID {provider_id} not found.")
            scope.details = f"External auth provider '{provider.name}' {'enabled' if enabled else 'disabled'}"

        logger.info("External auth provider %s: %s", "enabled" if enabled else "disabled", provider.name)
        self._changed()
        return ExternalAuthProviderSummary.from_provider(provider)

    def delete(self, provider_id: str, actor: Actor) -> None:
        with self._audit.mutation(CATEGORY_PROVIDER, "Delete", actor, details=f"id={provider_id}") as scope:
            provider = self._store.get_provider(provider_id, conn=scope.conn)
            if provider is None or not self._store.delete_provider(scope.conn, provider_id):
                raise NotFoundError(f"Provider with ID {provider_id} not found.")
            scope.details = f"External auth provider '{provider.name}' ({provider.provider_type}) deleted"

        logger.info("Deleted external auth provider: %s", provider.name)
        self._changed()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self) -> list[ExternalAuthProviderSummary]:
        return [ExternalAuthProviderSummary.from_provider(p) for p in self._store.list_providers()]

    def get_enabled(self) -> list[ExternalAuthProviderSummary]:
        """Enabled providers ordered by display_order, then name."""
        return [ExternalAuthProviderSummary.from_provider(p) for p in self._store.list_providers(enabled_only=True)]

    def get_by_id(self, provider_id: str, enabled_only: bool = False) -> Optional[ExternalAuthProviderSummary]:
        provider = self._store.get_provider(provider_id)
        if provider is None or (enabled_only and not provider.enabled):
            return None
        return ExternalAuthProviderSummary.from_provider(provider)

    def get_by_name(self, name: str) -> Optional[ExternalAuthProviderSummary]:
        provider = self._store.get_provider_by_name(name)
        return ExternalAuthProviderSummary.from_provider(provider) if provider is not None else None

    def oauth_client_configs(self) -> list[OAuthClientConfig]:
        """Decrypted configs for every enabled provider.

        A secret that no longer decrypts (SECRET_KEY rotated) excludes that
        provider and is logged as an error; the others still load.
        """
        configs: list[OAuthClientConfig] = []
        for p in self._store.list_providers(enabled_only=True):
            try:
                secret = decrypt_secret(p.client_secret_encrypted)
            except InvalidToken:
                logger.error(
                    "Cannot decrypt client secret for provider %s; re-enter it (was SECRET_KEY rotated?)", p.name
                )
                continue
            configs.append(
                OAuthClientConfig(
                    name=p.name,
                    provider_type=p.provider_type,
                    client_id=p.client_id,
                    client_secret=secret,
                    scopes=tuple(p.scopes),
                    additional_config=dict(p.additional_config),
                )
            )
        return configs
