"""
registry/models.py -- Domain dataclasses for OAuth clients and external providers.

Pattern: Data class. Stored entities (ClientRegistration, ExternalAuthProvider)
carry secrets in their at-rest form; summaries are what leaves the registry
and never carry a secret, a hash or ciphertext.

Request dataclasses are the already shape-validated input the services
accept. The API layer converts its Pydantic bodies into these with
to_domain(); tests and the CLI build them directly.

Layer rule: no imports outside core/ and the standard library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

CLIENT_TYPE_PUBLIC = "public"
CLIENT_TYPE_CONFIDENTIAL = "confidential"
CLIENT_TYPES = (CLIENT_TYPE_PUBLIC, CLIENT_TYPE_CONFIDENTIAL)

DEFAULT_CLIENT_SCOPES = ("openid", "profile")

# Provider types with built-in endpoint definitions (auth/oauth.py); "custom"
# reads its endpoints from additional_config.
PROVIDER_TYPES = ("github", "google", "gitee", "microsoft", "wechat", "custom")


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


@dataclass
class ClientRegistration:
    """A registered OAuth/OIDC relying party.

    client_secret_hash is a bcrypt hash, present iff client_type is
    "confidential". client_id and client_type never change after creation.
    """

    client_id: str
    display_name: str
    client_type: str
    redirect_uris: list[str]
    post_logout_redirect_uris: list[str]
    scopes: list[str]
    client_secret_hash: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class ClientSummary:
    client_id: str
    display_name: str
    client_type: str
    redirect_uris: tuple[str, ...]
    post_logout_redirect_uris: tuple[str, ...]
    scopes: tuple[str, ...]
    has_secret: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_registration(cls, client: ClientRegistration) -> "ClientSummary":
        return cls(
            client_id=client.client_id,
            display_name=client.display_name,
            client_type=client.client_type,
            redirect_uris=tuple(client.redirect_uris),
            post_logout_redirect_uris=tuple(client.post_logout_redirect_uris),
            scopes=tuple(client.scopes),
            has_secret=client.client_secret_hash is not None,
            created_at=client.created_at,
            updated_at=client.updated_at,
        )


@dataclass
class CreateClientRequest:
    client_id: str
    display_name: str
    redirect_uris: list[str]
    client_type: str = CLIENT_TYPE_PUBLIC
    post_logout_redirect_uris: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_CLIENT_SCOPES))
    client_secret: Optional[str] = None


@dataclass
class UpdateClientRequest:
    """Full replacement of the mutable client fields.

    scopes=None keeps the current scopes. client_secret=None keeps the current
    secret; a value rotates it (confidential clients only).
    """

    display_name: str
    redirect_uris: list[str]
    post_logout_redirect_uris: list[str] = field(default_factory=list)
    scopes: Optional[list[str]] = None
    client_secret: Optional[str] = None


# ---------------------------------------------------------------------------
# External auth providers
# ---------------------------------------------------------------------------


@dataclass
class ExternalAuthProvider:
    """A federated identity source. client_secret_encrypted is Fernet ciphertext."""

    id: str
    provider_type: str
    name: str
    display_name: str
    client_id: str
    client_secret_encrypted: str
    callback_path: str
    enabled: bool = False
    scopes: list[str] = field(default_factory=list)
    additional_config: dict[str, str] = field(default_factory=dict)
    display_order: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class ExternalAuthProviderSummary:
    id: str
    provider_type: str
    name: str
    display_name: str
    enabled: bool
    client_id: str
    callback_path: str
    scopes: tuple[str, ...]
    additional_config: dict[str, str]
    display_order: int
    created_at: str
    updated_at: str

    @classmethod
    def from_provider(cls, p: ExternalAuthProvider) -> "ExternalAuthProviderSummary":
        return cls(
            id=p.id,
            provider_type=p.provider_type,
            name=p.name,
            display_name=p.display_name,
            enabled=p.enabled,
            client_id=p.client_id,
            callback_path=p.callback_path,
            scopes=tuple(p.scopes),
            additional_config=dict(p.additional_config),
            display_order=p.display_order,
            created_at=p.created_at,
            updated_at=p.updated_at,
        )


@dataclass
class CreateExternalAuthProviderRequest:
    provider_type: str
    name: str
    display_name: str
    client_id: str
    client_secret: str
    callback_path: Optional[str] = None
    scopes: Optional[list[str]] = None
    additional_config: Optional[dict[str, str]] = None
    display_order: int = 0


@dataclass
class UpdateExternalAuthProviderRequest:
    """Partial update. Every None field is left unchanged; enabled is tri-state."""

    display_name: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    callback_path: Optional[str] = None
    enabled: Optional[bool] = None
    scopes: Optional[list[str]] = None
    additional_config: Optional[dict[str, str]] = None
    display_order: Optional[int] = None


@dataclass(frozen=True)
class OAuthClientConfig:
    """Decrypted configuration handed to the in-process OAuth client registry.

    Never serialized, never logged.
    """

    name: str
    provider_type: str
    client_id: str
    client_secret: str = field(repr=False)
    scopes: tuple[str, ...] = ()
    additional_config: dict[str, str] = field(default_factory=dict)


def default_callback_path(provider_type: str, name: str) -> str:
    """/signin-<slug>, where the slug is prefixed with the type unless the name already is.

    >>> default_callback_path("github", "Enterprise")
    '/signin-github-enterprise'
    >>> default_callback_path("github", "GitHub-Personal")
    '/signin-github-personal'
    """
    slug = name.strip().lower()
    kind = provider_type.strip().lower()
    if not slug.startswith(kind):
        slug = f"{kind}-{slug}"
    return "/signin-" + "-".join(slug.split())
