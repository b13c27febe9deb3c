"""
auth/models.py -- Domain dataclasses for API keys and authenticated identities.

Pattern: Data class. Mirrors audit/models.py and registry/models.py --
dataclasses own domain shape; stores and services do the work. The only
behavior here is the derived lifecycle flags on ApiKey, which depend on an
injected "now" so expiry is testable without sleeping.

Layer rule: no imports from api/, registry/, or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Scope that grants access to the admin surface. A key with scopes=None is
# unrestricted and therefore also satisfies it.
ADMIN_SCOPE = "admin"


@dataclass
class ApiKey:
    """A long-lived credential for non-interactive callers (CI/CD, scripts).

    Security design:
    - secret_hash is HMAC-SHA256(SECRET_KEY, salt + raw_key). The per-key salt
      means two keys never share a hash even if the generator repeated, and the
      SECRET_KEY pepper means a leaked database alone cannot confirm a guess.
    - key_prefix (first 12 chars of the raw key) is stored in the clear for
      display and for narrowing the candidate set during verification.
    - The raw key is never persisted. It is returned ONCE by issue() and then
      unrecoverable. Callers must rotate if lost.
    - owner_name / owner_email are snapshots taken at issue time so the key
      still resolves to a readable identity if the owner account is renamed.
    - revoked_at is terminal. There is no un-revoke.
    """

    owner_id: str
    owner_name: str
    name: str
    key_prefix: str
    salt: str
    secret_hash: str
    id: str = ""
    owner_email: str | None = None
    scopes: list[str] | None = None  # None = unrestricted
    created_at: datetime | None = None
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        # Still valid at exactly expires_at.
        return self.expires_at is not None and now > self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)


@dataclass(frozen=True)
class ApiKeyView:
    """What listing returns. Never carries the secret or its hash."""

    id: str
    name: str
    key_prefix: str
    owner_id: str
    owner_name: str
    scopes: tuple[str, ...] | None
    created_at: datetime | None
    last_used_at: datetime | None
    expires_at: datetime | None
    revoked_at: datetime | None
    revoked_reason: str | None
    is_revoked: bool
    is_expired: bool
    is_active: bool

    @classmethod
    def from_key(cls, key: ApiKey, now: datetime) -> "ApiKeyView":
        return cls(
            id=key.id,
            name=key.name,
            key_prefix=key.key_prefix,
            owner_id=key.owner_id,
            owner_name=key.owner_name,
            scopes=tuple(key.scopes) if key.scopes is not None else None,
            created_at=key.created_at,
            last_used_at=key.last_used_at,
            expires_at=key.expires_at,
            revoked_at=key.revoked_at,
            revoked_reason=key.revoked_reason,
            is_revoked=key.is_revoked,
            is_expired=key.is_expired(now),
            is_active=key.is_active(now),
        )


@dataclass(frozen=True)
class IssuedApiKey:
    """Result of ApiKeyCredential.issue(). secret is the only copy of the raw key."""

    id: str
    name: str
    key_prefix: str
    secret: str
    created_at: datetime
    expires_at: datetime | None
    scopes: tuple[str, ...] | None


@dataclass(frozen=True)
class Identity:
    """The caller established by a successful API key verification."""

    subject_id: str
    username: str
    key_id: str
    email: str | None = None
    auth_method: str = "ApiKey"
    scopes: tuple[str, ...] | None = None

    def has_scope(self, scope: str) -> bool:
        return self.scopes is None or scope in self.scopes
