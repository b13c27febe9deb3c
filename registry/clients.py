"""
registry/clients.py -- CRUD over registered OAuth/OIDC clients.

Every mutation runs inside AuditTrail.mutation(): the client row and its
audit entry commit together, and a rejected mutation leaves no state change
plus exactly one failure entry.

Validation happens in the registry, not the transport: URI policy (against
the current ValidationSettingsProvider snapshot), secret presence by client
type, non-empty scopes, and client_id uniqueness. The caller is assumed to
have done shape validation (required fields, lengths).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.exc import IntegrityError

from audit.models import CATEGORY_CLIENT, Actor
from audit.store import AuditTrail
from auth.tokens import (
    CLIENT_SECRET_MAX_BYTES,
    client_secret_fits,
    equalize_client_secret_timing,
    hash_client_secret,
    verify_client_secret,
)
from core.db import to_iso, utcnow
from core.errors import ConflictError, NotFoundError, ValidationFailedError
from core.validation import ValidationPolicySettings, check_uris
from registry.models import (
    CLIENT_TYPE_CONFIDENTIAL,
    CLIENT_TYPE_PUBLIC,
    CLIENT_TYPES,
    ClientRegistration,
    ClientSummary,
    CreateClientRequest,
    UpdateClientRequest,
)
from registry.store import RegistryStore

logger = logging.getLogger("idcore.registry")


class PolicySource(Protocol):
    def get(self) -> ValidationPolicySettings: ...


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v.strip() for v in values if v and v.strip()))


def normalize_scopes(scopes: Iterable[str]) -> list[str]:
    """De-duplicate case-insensitively, keeping the first spelling.

    Raises:
        ValidationFailedError(code="empty_scopes") if nothing remains.
    """
    seen: dict[str, str] = {}
    for scope in scopes:
        cleaned = (scope or "").strip()
        if cleaned and cleaned.lower() not in seen:
            seen[cleaned.lower()] = cleaned
    if not seen:
        raise ValidationFailedError(
            "At least one scope is required.",
            code="empty_scopes",
            fields={"scopes": ["At least one scope is required."]},
        )
    return list(seen.values())


def _missing_secret() -> ValidationFailedError:
    return ValidationFailedError(
        "Confidential clients require a client secret.",
        code="missing_secret",
        fields={"client_secret": ["A client secret is required for confidential clients."]},
    )


def _unexpected_secret() -> ValidationFailedError:
    return ValidationFailedError(
        "Public clients cannot have a client secret.",
        code="unexpected_secret",
        fields={"client_secret": ["Public clients must not have a client secret."]},
    )


def _check_secret_length(secret: str) -> None:
    if not client_secret_fits(secret):
        message = f"Client secret must be at most {CLIENT_SECRET_MAX_BYTES} bytes when UTF-8 encoded."
        raise ValidationFailedError(message, code="invalid_secret", fields={"client_secret": [message]})


class ClientRegistry:
    """Create, update, delete and read client registrations."""

    def __init__(
        self,
        store: RegistryStore,
        audit: AuditTrail,
        policy: PolicySource,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._policy = policy
        self._clock = clock

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, request: CreateClientRequest, actor: Actor) -> ClientSummary:
        """Register a new client.

        Raises:
            ValidationFailedError: invalid_client_type, empty_scopes,
                missing_secret, unexpected_secret, invalid_secret, invalid_redirect_uri.
            ConflictError(code="duplicate_client_id").
        """
        client_id = (request.client_id or "").strip()
        policy = self._policy.get()
        with self._audit.mutation(CATEGORY_CLIENT, "Create", actor, details=f"client_id={client_id}") as scope:
            if not client_id:
                raise ValidationFailedError(
                    "client_id is required.", fields={"client_id": ["client_id is required."]}
                )
            if request.client_type not in CLIENT_TYPES:
                raise ValidationFailedError(
                    f"Unknown client type {request.client_type!r}.",
                    code="invalid_client_type",
                    fields={"client_type": [f"Must be one of: {', '.join(CLIENT_TYPES)}."]},
                )
            scopes = normalize_scopes(request.scopes)
            secret = request.client_secret or None
            if request.client_type == CLIENT_TYPE_CONFIDENTIAL and (secret is None or not secret.strip()):
                raise _missing_secret()
            if request.client_type == CLIENT_TYPE_PUBLIC and secret is not None:
                raise _unexpected_secret()
            if secret is not None:
                _check_secret_length(secret)

            redirect_uris, post_logout_uris = self._checked_uris(
                request.redirect_uris, request.post_logout_redirect_uris, policy
            )

            if self._store.get_client(client_id, conn=scope.conn) is not None:
                raise ConflictError(f"Client '{client_id}' already exists.", code="duplicate_client_id")

            now = to_iso(self._clock())
            client = ClientRegistration(
                client_id=client_id,
                display_name=request.display_name.strip(),
                client_type=request.client_type,
                redirect_uris=redirect_uris,
                post_logout_redirect_uris=post_logout_uris,
                scopes=scopes,
                client_secret_hash=hash_client_secret(secret) if secret is not None else None,
                created_at=now,
                updated_at=now,
            )
            try:
                self._store.insert_client(scope.conn, client)
            except IntegrityError as exc:
                raise ConflictError(f"Client '{client_id}' already exists.", code="duplicate_client_id") from exc
            scope.details = f"Client '{client_id}' ({client.display_name}) created as {client.client_type}"

        logger.info("Client created: %s", client_id)
        return ClientSummary.from_registration(client)

    def update(self, client_id: str, request: UpdateClientRequest, actor: Actor) -> ClientSummary:
        """Replace display name and URIs; optionally scopes and secret.

        Raises:
            NotFoundError.
            ValidationFailedError: empty_scopes, missing_secret,
                unexpected_secret, invalid_secret, invalid_redirect_uri.
        """
        policy = self._policy.get()
        with self._audit.mutation(CATEGORY_CLIENT, "Update", actor, details=f"client_id={client_id}") as scope:
            existing = self._store.get_client(client_id, conn=scope.conn)
            if existing is None:
                raise NotFoundError(f"Client '{client_id}' was not found.")

            scopes = normalize_scopes(request.scopes) if request.scopes is not None else existing.scopes
            secret_hash = existing.client_secret_hash
            rotated = False
            if request.client_secret is not None:
                if existing.client_type == CLIENT_TYPE_CONFIDENTIAL:
                    if not request.client_secret.strip():
                        raise _missing_secret()
                    _check_secret_length(request.client_secret)
                    secret_hash = hash_client_secret(request.client_secret)
                    rotated = True
                elif request.client_secret:
                    raise _unexpected_secret()

            redirect_uris, post_logout_uris = self._checked_uris(
                request.redirect_uris, request.post_logout_redirect_uris, policy
            )

            updated = replace(
                existing,
                display_name=request.display_name.strip(),
                redirect_uris=redirect_uris,
                post_logout_redirect_uris=post_logout_uris,
                scopes=scopes,
                client_secret_hash=secret_hash,
                updated_at=to_iso(self._clock()),
            )
            if not self._store.update_client(scope.conn, updated):
                raise NotFoundError(f"Client '{client_id}' was not found.")
            scope.details = f"Client '{client_id}' ({updated.display_name}) updated" + (
                "; secret rotated" if rotated else ""
            )

        logger.info("Client updated: %s", client_id)
        return ClientSummary.from_registration(updated)

    def update_scopes(self, client_id: str, scopes: Iterable[str], actor: Actor) -> ClientSummary:
        """Replace the client's scope set wholesale.

        Raises:
            NotFoundError, ValidationFailedError(code="empty_scopes").
        """
        with self._audit.mutation(CATEGORY_CLIENT, "UpdateScopes", actor, details=f"client_id={client_id}") as scope:
            existing = self._store.get_client(client_id, conn=scope.conn)
            if existing is None:
                raise NotFoundError(f"Client '{client_id}' was not found.")
            normalized = normalize_scopes(scopes)
            updated = replace(existing, scopes=normalized, updated_at=to_iso(self._clock()))
            if not self._store.update_client(scope.conn, updated):
                raise NotFoundError(f"Client '{client_id}' was not found.")
            scope.details = f"Client '{client_id}' scopes set to {', '.join(normalized)}"
        return ClientSummary.from_registration(updated)

    def delete(self, client_id: str, actor: Actor) -> None:
        """Hard delete. A second delete of the same id raises NotFoundError."""
        with self._audit.mutation(CATEGORY_CLIENT, "Delete", actor, details=f"client_id={client_id}") as scope:
            existing = self._store.get_client(client_id, conn=scope.conn)
            if existing is None or not self._store.delete_client(scope.conn, client_id):
                raise NotFoundError(f"Client '{client_id}' was not found.")
            scope.details = f"Client '{client_id}' ({existing.display_name}) deleted"
        logger.info("Client deleted: %s", client_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self) -> list[ClientSummary]:
        return [ClientSummary.from_registration(c) for c in self._store.list_clients()]

    def get(self, client_id: str) -> Optional[ClientSummary]:
        client = self._store.get_client(client_id)
        return ClientSummary.from_registration(client) if client is not None else None

    def verify_secret(self, client_id: str, secret: str) -> bool:
        """Check a confidential client's secret. Runs bcrypt even for unknown ids."""
        client = self._store.get_client(client_id)
        if client is None or client.client_secret_hash is None:
            equalize_client_secret_timing(secret or "")
            return False
        return verify_client_secret(secret or "", client.client_secret_hash)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _checked_uris(
        self,
        redirect_uris: Iterable[str],
        post_logout_uris: Iterable[str],
        policy: ValidationPolicySettings,
    ) -> tuple[list[str], list[str]]:
        redirect = _dedupe(redirect_uris or [])
        post_logout = _dedupe(post_logout_uris or [])
        if not redirect:
            raise ValidationFailedError(
                "At least one redirect URI is required.",
                code="invalid_redirect_uri",
                fields={"redirect_uris": ["At least one redirect URI is required."]},
            )
        check_uris(
            {"redirect_uris": redirect, "post_logout_redirect_uris": post_logout},
            policy,
        )
        return redirect, post_logout
