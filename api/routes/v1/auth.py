"""
api/routes/v1/auth.py -- Caller identity and the public provider list.

Routes:
  GET /api/v1/auth/providers  -- enabled external providers for a login page (public)
  GET /api/v1/auth/me         -- identity behind the presented API key (requires auth)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import MeResponse, PublicProviderInfo
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.oauth import public_provider_list

# Auth policy:
# - GET /api/v1/auth/providers:  public -- the login page calls this to render provider buttons
# - GET /api/v1/auth/me:         requires auth (get_current_identity)
router = APIRouter()


@router.get("/auth/providers", response_model=list[PublicProviderInfo])
def list_public_providers(request: Request) -> list[PublicProviderInfo]:
    """Return enabled providers in display order.

    Public endpoint: carries no client IDs, secrets or provider endpoints.
    Returns an empty list when nothing is enabled.
    """
    providers = request.app.state.providers.get_enabled()
    return [PublicProviderInfo(**p) for p in public_provider_list(providers)]


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return identity information for the authenticated API key."""
    return MeResponse(
        subject_id=identity.subject_id,
        username=identity.username,
        email=identity.email,
        auth_method=identity.auth_method,
        key_id=identity.key_id,
        scopes=list(identity.scopes) if identity.scopes is not None else None,
    )
