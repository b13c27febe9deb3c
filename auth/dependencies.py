"""
auth/dependencies.py -- Authentication gate and FastAPI Depends() helpers.

AuthenticationGate is transport-neutral: it takes the raw Authorization header
value and returns a GateResult with one of three outcomes:
  no_credential -- no "Authorization: Bearer ak_..." header. Another scheme
                   (a JWT bearer from the token service, Basic, ...) is not
                   ours to judge and is also treated as no credential.
  failed        -- an API key was presented and rejected.
  authenticated -- identity is set.

The FastAPI helpers wrap the gate:
  try_get_identity()     -- soft variant, returns None when unauthenticated.
  get_current_identity() -- raises HTTP 401 with WWW-Authenticate: Bearer.
  require_admin()        -- raises HTTP 403 if the key's scope restriction
                            does not include "admin".

Layer rule: no imports from api/ or registry/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi import HTTPException, Request

from audit.models import Actor
from auth.credentials import ApiKeyCredential
from auth.models import ADMIN_SCOPE, Identity
from auth.tokens import API_KEY_PREFIX
from core.errors import AuthenticationFailedError


class GateOutcome(str, Enum):
    NO_CREDENTIAL = "no_credential"
    FAILED = "failed"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class GateResult:
    outcome: GateOutcome
    identity: Identity | None = None
    reason: str | None = None  # server-side only; never sent to the client


def extract_api_key(authorization: str | None) -> str | None:
    """Return the API key from an Authorization header value, if it carries one."""
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = value.strip()
    if not token.startswith(API_KEY_PREFIX):
        return None
    return token


class AuthenticationGate:
    """Classifies a request's credential and resolves it to an Identity."""

    def __init__(self, credentials: ApiKeyCredential) -> None:
        self._credentials = credentials

    def authenticate(
        self,
        authorization: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> GateResult:
        token = extract_api_key(authorization)
        if token is None:
            return GateResult(GateOutcome.NO_CREDENTIAL)
        try:
            identity = self._credentials.verify(token, ip_address=ip_address, user_agent=user_agent)
        except AuthenticationFailedError as exc:
            return GateResult(GateOutcome.FAILED, reason=exc.reason)
        return GateResult(GateOutcome.AUTHENTICATED, identity=identity)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def try_get_identity(request: Request) -> Identity | None:
    """Authenticate the request via its Bearer API key.

    Returns the Identity on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_identity().
    The GateResult is kept on request.state for logging.
    """
    gate: AuthenticationGate = request.app.state.gate
    result = gate.authenticate(
        request.headers.get("Authorization"),
        ip_address=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    request.state.auth_result = result
    return result.identity


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": AuthenticationFailedError.PUBLIC_MESSAGE},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_admin(request: Request) -> Identity:
    """Require the admin scope. HTTP 401 if unauthenticated, HTTP 403 if not admin.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        def route(identity: Identity = Depends(require_admin)): ...
    """
    identity = get_current_identity(request)
    if not identity.has_scope(ADMIN_SCOPE):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return identity


def request_actor(request: Request, identity: Identity | None) -> Actor:
    """Build the audit Actor for this request: who, plus where from."""
    return Actor(
        user_id=identity.subject_id if identity else None,
        user_name=identity.username if identity else None,
        email=identity.email if identity else None,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
