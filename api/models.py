"""
API request and response models for the idcore admin REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in registry/models.py,
auth/models.py and audit/models.py, which own the internal domain
representation. Request models convert with to_domain(); response models build
themselves with from_*() factory methods.

Shape validation (required fields, lengths, enum membership) happens here.
Semantic validation (URI policy, uniqueness, secret rules) happens in the
services, so the same rules hold for the CLI and for direct service calls.

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from audit.models import AuditLogEntry
from auth.models import ApiKeyView, IssuedApiKey
from registry.models import (
    ClientSummary,
    CreateClientRequest,
    CreateExternalAuthProviderRequest,
    ExternalAuthProviderSummary,
    UpdateClientRequest,
    UpdateExternalAuthProviderRequest,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CLIENT_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._:\-]*$"

_Uri = Annotated[str, Field(min_length=1, max_length=2000)]
_Scope = Annotated[str, Field(min_length=1, max_length=200)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ClientTypeEnum(str, Enum):
    public = "public"
    confidential = "confidential"


class ProviderTypeEnum(str, Enum):
    github = "github"
    google = "google"
    gitee = "gitee"
    microsoft = "microsoft"
    wechat = "wechat"
    custom = "custom"


def _fold_single_uri(data: Any, single: str, plural: str) -> Any:
    """Accept `redirect_uri: "..."` as shorthand for `redirect_uris: ["..."]`."""
    if isinstance(data, dict) and single in data and plural not in data:
        data = dict(data)
        value = data.pop(single)
        data[plural] = [value] if value else []
    return data


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ClientCreate(BaseModel):
    """Request body for POST /api/v1/clients.

    client_secret is capped at 72 characters here as a cheap first bound.
    bcrypt's real limit is 72 bytes, which ClientRegistry enforces
    (invalid_secret) because non-ASCII text encodes to more bytes than chars.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    client_id: str = Field(min_length=1, max_length=100, pattern=CLIENT_ID_PATTERN)
    display_name: str = Field(min_length=1, max_length=200)
    client_type: ClientTypeEnum = ClientTypeEnum.public
    redirect_uris: list[_Uri] = Field(min_length=1, max_length=20)
    post_logout_redirect_uris: list[_Uri] = Field(default_factory=list, max_length=20)
    scopes: list[_Scope] = Field(default_factory=lambda: ["openid", "profile"], max_length=50)
    client_secret: Optional[str] = Field(default=None, max_length=72)

    @model_validator(mode="before")
    @classmethod
    def fold_single_uris(cls, data: Any) -> Any:
        data = _fold_single_uri(data, "redirect_uri", "redirect_uris")
        return _fold_single_uri(data, "post_logout_redirect_uri", "post_logout_redirect_uris")

    def to_domain(self) -> CreateClientRequest:
        return CreateClientRequest(
            client_id=self.client_id,
            display_name=self.display_name,
            client_type=self.client_type.value,
            redirect_uris=list(self.redirect_uris),
            post_logout_redirect_uris=list(self.post_logout_redirect_uris),
            scopes=list(self.scopes),
            client_secret=self.client_secret,
        )


class ClientUpdate(BaseModel):
    """Request body for PUT /api/v1/clients/{client_id}.

    Omitting scopes keeps them; omitting client_secret keeps the current secret.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: str = Field(min_length=1, max_length=200)
    redirect_uris: list[_Uri] = Field(min_length=1, max_length=20)
    post_logout_redirect_uris: list[_Uri] = Field(default_factory=list, max_length=20)
    scopes: Optional[list[_Scope]] = Field(default=None, max_length=50)
    client_secret: Optional[str] = Field(default=None, max_length=72)

    @model_validator(mode="before")
    @classmethod
    def fold_single_uris(cls, data: Any) -> Any:
        data = _fold_single_uri(data, "redirect_uri", "redirect_uris")
        return _fold_single_uri(data, "post_logout_redirect_uri", "post_logout_redirect_uris")

    def to_domain(self) -> UpdateClientRequest:
        return UpdateClientRequest(
            display_name=self.display_name,
            redirect_uris=list(self.redirect_uris),
            post_logout_redirect_uris=list(self.post_logout_redirect_uris),
            scopes=list(self.scopes) if self.scopes is not None else None,
            client_secret=self.client_secret,
        )


class ClientScopesUpdate(BaseModel):
    """Request body for PUT /api/v1/clients/{client_id}/scopes."""

    scopes: list[_Scope] = Field(min_length=1, max_length=50)


class ClientResponse(BaseModel):
    """A registered client. Never carries the secret or its hash."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    display_name: str
    client_type: str
    redirect_uris: list[str]
    post_logout_redirect_uris: list[str]
    scopes: list[str]
    has_secret: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_summary(cls, s: ClientSummary) -> "ClientResponse":
        return cls(
            client_id=s.client_id,
            display_name=s.display_name,
            client_type=s.client_type,
            redirect_uris=list(s.redirect_uris),
            post_logout_redirect_uris=list(s.post_logout_redirect_uris),
            scopes=list(s.scopes),
            has_secret=s.has_secret,
            created_at=s.created_at,
            updated_at=s.updated_at,
        )


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class ApiKeyCreate(BaseModel):
    """Request body for POST /api/v1/api-keys."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100, description="Human-readable label, e.g. 'ci-bot'.")
    expires_at: Optional[datetime] = None
    scopes: Optional[list[_Scope]] = Field(default=None, max_length=50)


class ApiKeyRevoke(BaseModel):
    """Optional JSON body for DELETE /api/v1/api-keys/{key_id}."""

    reason: Optional[str] = Field(default=None, max_length=500)


class ApiKeyCreatedResponse(BaseModel):
    """Returned once at creation. `key` is the only time the raw value is shown."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    key_prefix: str
    key: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    scopes: Optional[list[str]] = None

    @classmethod
    def from_issued(cls, issued: IssuedApiKey) -> "ApiKeyCreatedResponse":
        return cls(
            id=issued.id,
            name=issued.name,
            key_prefix=issued.key_prefix,
            key=issued.secret,
            created_at=issued.created_at,
            expires_at=issued.expires_at,
            scopes=list(issued.scopes) if issued.scopes is not None else None,
        )


class ApiKeyResponse(BaseModel):
    """An API key as listed. Prefix and lifecycle flags only."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    key_prefix: str
    owner_id: str
    owner_name: str
    scopes: Optional[list[str]] = None
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None
    is_revoked: bool
    is_expired: bool
    is_active: bool

    @classmethod
    def from_view(cls, v: ApiKeyView) -> "ApiKeyResponse":
        return cls(
            id=v.id,
            name=v.name,
            key_prefix=v.key_prefix,
            owner_id=v.owner_id,
            owner_name=v.owner_name,
            scopes=list(v.scopes) if v.scopes is not None else None,
            created_at=v.created_at,
            last_used_at=v.last_used_at,
            expires_at=v.expires_at,
            revoked_at=v.revoked_at,
            revoked_reason=v.revoked_reason,
            is_revoked=v.is_revoked,
            is_expired=v.is_expired,
            is_active=v.is_active,
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    subject_id: str
    username: str
    email: Optional[str] = None
    auth_method: str
    key_id: str
    scopes: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# External auth providers
# ---------------------------------------------------------------------------


class ProviderCreate(BaseModel):
    """Request body for POST /api/v1/external-auth-providers."""

    model_config = ConfigDict(str_strip_whitespace=True)

    provider_type: ProviderTypeEnum
    name: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=200)
    client_id: str = Field(min_length=1, max_length=500)
    client_secret: str = Field(min_length=1, max_length=1000)
    callback_path: Optional[str] = Field(default=None, max_length=200)
    scopes: Optional[list[_Scope]] = None
    additional_config: Optional[dict[str, str]] = None
    display_order: int = 0

    def to_domain(self) -> CreateExternalAuthProviderRequest:
        return CreateExternalAuthProviderRequest(
            provider_type=self.provider_type.value,
            name=self.name,
            display_name=self.display_name,
            client_id=self.client_id,
            client_secret=self.client_secret,
            callback_path=self.callback_path,
            scopes=list(self.scopes) if self.scopes is not None else None,
            additional_config=dict(self.additional_config) if self.additional_config is not None else None,
            display_order=self.display_order,
        )


class ProviderUpdate(BaseModel):
    """Request body for PUT /api/v1/external-auth-providers/{id}. Omitted fields are unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    client_id: Optional[str] = Field(default=None, min_length=1, max_length=500)
    client_secret: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    callback_path: Optional[str] = Field(default=None, max_length=200)
    enabled: Optional[bool] = None
    scopes: Optional[list[_Scope]] = None
    additional_config: Optional[dict[str, str]] = None
    display_order: Optional[int] = None

    def to_domain(self) -> UpdateExternalAuthProviderRequest:
        return UpdateExternalAuthProviderRequest(
            display_name=self.display_name,
            client_id=self.client_id,
            client_secret=self.client_secret,
            callback_path=self.callback_path,
            enabled=self.enabled,
            scopes=list(self.scopes) if self.scopes is not None else None,
            additional_config=dict(self.additional_config) if self.additional_config is not None else None,
            display_order=self.display_order,
        )


class ProviderToggle(BaseModel):
    enabled: bool


class ProviderResponse(BaseModel):
    """An external auth provider. client_secret is write-only and never returned."""

    model_config = ConfigDict(frozen=True)

    id: str
    provider_type: str
    name: str
    display_name: str
    enabled: bool
    client_id: str
    callback_path: str
    scopes: list[str]
    additional_config: dict[str, str]
    display_order: int
    created_at: str
    updated_at: str

    @classmethod
    def from_summary(cls, s: ExternalAuthProviderSummary) -> "ProviderResponse":
        return cls(
            id=s.id,
            provider_type=s.provider_type,
            name=s.name,
            display_name=s.display_name,
            enabled=s.enabled,
            client_id=s.client_id,
            callback_path=s.callback_path,
            scopes=list(s.scopes),
            additional_config=dict(s.additional_config),
            display_order=s.display_order,
            created_at=s.created_at,
            updated_at=s.updated_at,
        )


class PublicProviderInfo(BaseModel):
    """One entry of GET /api/v1/auth/providers (public login page list)."""

    name: str
    display_name: str
    provider_type: str
    callback_path: str


# ---------------------------------------------------------------------------
# Audit logs
# ---------------------------------------------------------------------------


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: str
    category: str
    action: str
    success: bool
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_entry(cls, e: AuditLogEntry) -> "AuditLogResponse":
        return cls(
            id=e.id,
            created_at=e.created_at,
            category=e.category,
            action=e.action,
            success=e.success,
            user_id=e.user_id,
            user_name=e.user_name,
            details=e.details,
            ip_address=e.ip_address,
            user_agent=e.user_agent,
            error_message=e.error_message,
        )


class AuditLogPage(BaseModel):
    """Response for GET /api/v1/audit-logs."""

    logs: list[AuditLogResponse]
    total: int
    page: int
    page_size: int


# ---------------------------------------------------------------------------
# Client validation settings
# ---------------------------------------------------------------------------


class ValidationSettingsBody(BaseModel):
    """Request and response body for /api/v1/client-settings/validation."""

    allowed_schemes: list[str] = Field(max_length=20)
    allow_http_on_loopback: bool
    allowed_hosts: list[str] = Field(default_factory=list, max_length=200)


class ValidationSettingsResponse(ValidationSettingsBody):
    updated_at: datetime


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, list[str]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", else "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
