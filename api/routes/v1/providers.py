"""
api/routes/v1/providers.py -- External (federated) auth provider configuration.

Routes:
  GET    /api/v1/external-auth-providers                 -- list all providers
  POST   /api/v1/external-auth-providers                 -- create (starts disabled)
  GET    /api/v1/external-auth-providers/enabled         -- enabled, in display order
  GET    /api/v1/external-auth-providers/by-name/{name}  -- lookup by unique name
  GET    /api/v1/external-auth-providers/{provider_id}   -- one provider (?enabled_only=true)
  PUT    /api/v1/external-auth-providers/{provider_id}   -- partial update
  POST   /api/v1/external-auth-providers/{provider_id}/toggle -- enable / disable
  DELETE /api/v1/external-auth-providers/{provider_id}   -- delete

Auth policy: every route requires the admin scope (require_admin). The public
login-page list lives at GET /api/v1/auth/providers.

client_secret is write-only: accepted on create / update, never returned.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import ProviderCreate, ProviderResponse, ProviderToggle, ProviderUpdate
from auth.dependencies import request_actor, require_admin
from auth.models import Identity
from registry.providers import ExternalProviderRegistry

router = APIRouter(prefix="/external-auth-providers")


def _providers(request: Request) -> ExternalProviderRegistry:
    return request.app.state.providers


def _not_found(what: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": f"Provider {what} was not found."},
    )


@router.get("", response_model=list[ProviderResponse])
def list_providers(request: Request, identity: Identity = Depends(require_admin)) -> list[ProviderResponse]:
    return [ProviderResponse.from_summary(p) for p in _providers(request).list()]


@router.post("", response_model=ProviderResponse, status_code=201)
def create_provider(
    request: Request,
    body: ProviderCreate,
    identity: Identity = Depends(require_admin),
) -> ProviderResponse:
    """Register a provider. It is created disabled; enable it with /toggle once configured."""
    summary = _providers(request).create(body.to_domain(), request_actor(request, identity))
    return ProviderResponse.from_summary(summary)


@router.get("/enabled", response_model=list[ProviderResponse])
def list_enabled_providers(request: Request, identity: Identity = Depends(require_admin)) -> list[ProviderResponse]:
    return [ProviderResponse.from_summary(p) for p in _providers(request).get_enabled()]


@router.get("/by-name/{name}", response_model=ProviderResponse)
def get_provider_by_name(request: Request, name: str, identity: Identity = Depends(require_admin)) -> ProviderResponse:
    summary = _providers(request).get_by_name(name)
    if summary is None:
        raise _not_found(f"'{name}'")
    return ProviderResponse.from_summary(summary)


@router.get("/{provider_id}", response_model=ProviderResponse)
def get_provider(
    request: Request,
    provider_id: str,
    enabled_only: bool = False,
    identity: Identity = Depends(require_admin),
) -> ProviderResponse:
    """One provider. With enabled_only=true a disabled provider is reported as 404."""
    summary = _providers(request).get_by_id(provider_id, enabled_only=enabled_only)
    if summary is None:
        raise _not_found(f"with ID {provider_id}")
    return ProviderResponse.from_summary(summary)


@router.put("/{provider_id}", response_model=ProviderResponse)
def update_provider(
    request: Request,
    provider_id: str,
    body: ProviderUpdate,
    identity: Identity = Depends(require_admin),
) -> ProviderResponse:
    summary = _providers(request).update(provider_id, body.to_domain(), request_actor(request, identity))
    return ProviderResponse.from_summary(summary)


@router.post("/{provider_id}/toggle", response_model=ProviderResponse)
def toggle_provider(
    request: Request,
    provider_id: str,
    body: ProviderToggle,
    identity: Identity = Depends(require_admin),
) -> ProviderResponse:
    summary = _providers(request).toggle_enabled(provider_id, body.enabled, request_actor(request, identity))
    return ProviderResponse.from_summary(summary)


@router.delete("/{provider_id}", status_code=204)
def delete_provider(request: Request, provider_id: str, identity: Identity = Depends(require_admin)) -> Response:
    _providers(request).delete(provider_id, request_actor(request, identity))
    return Response(status_code=204)
