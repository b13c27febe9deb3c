"""
auth/credentials.py -- API key lifecycle: issue, verify, revoke, list.

Two-phase secret handling:
  issue()  -- generates the raw key, persists ONLY salt + HMAC, returns the raw
              key exactly once in IssuedApiKey.secret.
  verify() -- never re-derives or stores the raw key. It narrows candidates by
              the clear-text prefix, then compares digests in constant time.

Verification never distinguishes failure kinds to the caller: every failure
raises AuthenticationFailedError with the same public message. The precise
reason (malformed / not_found / revoked / expired) goes to the log and to the
audit trail. Revoked wins over expired when both apply, so an operator reading
the trail sees the deliberate action rather than the incidental one.

Verification takes no locks and writes only last_used_at, so concurrent
requests using the same key never block each other.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import NoReturn

from audit.models import CATEGORY_API_KEY, Actor
from audit.store import AuditTrail
from auth.models import ApiKey, ApiKeyView, Identity, IssuedApiKey
from auth.store import ApiKeyStore
from auth.tokens import (
    api_key_matches,
    equalize_api_key_timing,
    generate_api_key,
    hash_api_key,
    is_well_formed_api_key,
    key_prefix_of,
    new_salt,
)
from core.db import utcnow
from core.errors import AuthenticationFailedError, ConflictError, NotFoundError, ValidationFailedError

logger = logging.getLogger("idcore.auth")


def _normalize_scopes(scopes: Iterable[str] | None) -> list[str] | None:
    if scopes is None:
        return None
    cleaned = list(dict.fromkeys(s.strip() for s in scopes if s and s.strip()))
    if not cleaned:
        raise ValidationFailedError(
            "A scope restriction must name at least one scope; omit scopes for an unrestricted key.",
            code="empty_scopes",
            fields={"scopes": ["At least one scope is required when scopes are given."]},
        )
    return cleaned


class ApiKeyCredential:
    """Issues and checks API keys.

    clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        store: ApiKeyStore,
        audit: AuditTrail,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(
        self,
        actor: Actor,
        name: str,
        expires_at: datetime | None = None,
        scopes: Iterable[str] | None = None,
    ) -> IssuedApiKey:
        """Create a key owned by actor and return the raw secret once."""
        with self._audit.mutation(CATEGORY_API_KEY, "Issue", actor, details=f"API key '{name}'") as scope:
            if not actor.user_id or not actor.user_name:
                raise ValidationFailedError(
                    "An API key must be issued to an identified owner.", code="missing_owner"
                )
            if not name or not name.strip():
                raise ValidationFailedError(
                    "API key name must not be empty.",
                    code="validation_failed",
                    fields={"name": ["Name is required."]},
                )
            now = self._clock()
            if expires_at is not None:
                if expires_at.tzinfo is None:
                    expires_at = expires_at.replace(tzinfo=timezone.utc)
                if expires_at <= now:
                    raise ValidationFailedError(
                        "Expiry must be in the future.",
                        code="invalid_expiry",
                        fields={"expires_at": ["Expiry must be in the future."]},
                    )
            restricted = _normalize_scopes(scopes)

            raw_key = generate_api_key()
            salt = new_salt()
            key = ApiKey(
                id=uuid.uuid4().hex,
                owner_id=actor.user_id,
                owner_name=actor.user_name,
                owner_email=actor.email,
                name=name.strip(),
                key_prefix=key_prefix_of(raw_key),
                salt=salt,
                secret_hash=hash_api_key(raw_key, salt),
                scopes=restricted,
                created_at=now,
                expires_at=expires_at,
            )
            self._store.insert(scope.conn, key)
            scope.details = f"API key '{key.name}' issued (id={key.id}, prefix={key.key_prefix})"

        logger.info("API key issued id=%s prefix=%s owner=%s", key.id, key.key_prefix, key.owner_id)
        return IssuedApiKey(
            id=key.id,
            name=key.name,
            key_prefix=key.key_prefix,
            secret=raw_key,
            created_at=now,
            expires_at=expires_at,
            scopes=tuple(restricted) if restricted is not None else None,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(
        self,
        presented: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Identity:
        """Resolve a presented key to the Identity that owns it.

        Raises:
            AuthenticationFailedError with reason malformed, not_found,
            revoked or expired.
        """
        if not is_well_formed_api_key(presented or ""):
            self._reject("malformed", None, None, ip_address, user_agent)

        prefix = key_prefix_of(presented)
        candidates = self._store.find_by_prefix(prefix)
        if not candidates:
            equalize_api_key_timing(presented)

        match: ApiKey | None = None
        for candidate in candidates:
            # Check every candidate so timing does not depend on bucket position.
            if api_key_matches(presented, candidate.salt, candidate.secret_hash) and match is None:
                match = candidate

        if match is None:
            self._reject("not_found", prefix, None, ip_address, user_agent)

        now = self._clock()
        if match.is_revoked:
            self._reject("revoked", prefix, match, ip_address, user_agent)
        if match.is_expired(now):
            self._reject("expired", prefix, match, ip_address, user_agent)

        self._store.touch_last_used(match.id, now)
        return Identity(
            subject_id=match.owner_id,
            username=match.owner_name,
            email=match.owner_email,
            key_id=match.id,
            scopes=tuple(match.scopes) if match.scopes is not None else None,
        )

    def _reject(
        self,
        reason: str,
        prefix: str | None,
        key: ApiKey | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> NoReturn:
        # The raw value of a malformed credential is never logged; it may be
        # a password pasted into the wrong header.
        logger.warning(
            "API key authentication failed: reason=%s prefix=%s ip=%s",
            reason,
            prefix or "-",
            ip_address or "unknown",
        )
        actor = Actor(
            user_id=key.owner_id if key else None,
            user_name=key.owner_name if key else None,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        details = f"API key '{key.name}' (id={key.id})" if key else (f"prefix={prefix}" if prefix else None)
        self._audit.record_failure(actor, CATEGORY_API_KEY, "Authenticate", reason, details=details)
        raise AuthenticationFailedError(reason)

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def revoke(
        self,
        key_id: str,
        actor: Actor,
        reason: str | None = None,
        owner_id: str | None = None,
    ) -> None:
        """Revoke a key. Terminal: a revoked key never becomes valid again.

        owner_id restricts the revoke to that owner's keys; another owner's key
        is reported as not found rather than forbidden.

        Raises:
            NotFoundError if the key does not exist (or is not owner_id's).
            ConflictError(code="already_revoked") on a second revoke.
        """
        with self._audit.mutation(CATEGORY_API_KEY, "Revoke", actor, details=f"API key id={key_id}") as scope:
            now = self._clock()
            if self._store.mark_revoked(scope.conn, key_id, now, reason, owner_id=owner_id):
                key = self._store.get(key_id, conn=scope.conn)
                scope.details = f"API key '{key.name}' (id={key_id}) revoked. Reason: {reason or 'none given'}"
            else:
                existing = self._store.get(key_id, conn=scope.conn)
                if existing is None or (owner_id is not None and existing.owner_id != owner_id):
                    raise NotFoundError(f"API key '{key_id}' was not found.")
                raise ConflictError("API key is already revoked.", code="already_revoked")
        logger.info("API key revoked id=%s by=%s", key_id, actor.user_name or "system")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list(self, owner_id: str | None = None) -> list[ApiKeyView]:
        """Keys newest first with derived flags. Never exposes hashes."""
        now = self._clock()
        return [ApiKeyView.from_key(k, now) for k in self._store.list(owner_id=owner_id)]
