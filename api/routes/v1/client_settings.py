"""
api/routes/v1/client_settings.py -- Runtime redirect URI policy.

Routes:
  GET /api/v1/client-settings/validation  -- current policy
  PUT /api/v1/client-settings/validation  -- replace the policy (audited)

Auth policy: both routes require the admin scope (require_admin).

A new policy applies to subsequent client creates / updates only; clients
already registered are not re-validated.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ValidationSettingsBody, ValidationSettingsResponse
from auth.dependencies import request_actor, require_admin
from auth.models import Identity
from registry.settings import PolicySnapshot, ValidationSettingsProvider

router = APIRouter()


def _provider(request: Request) -> ValidationSettingsProvider:
    return request.app.state.validation_settings


def _to_response(snapshot: PolicySnapshot) -> ValidationSettingsResponse:
    s = snapshot.settings
    return ValidationSettingsResponse(
        allowed_schemes=list(s.allowed_schemes),
        allow_http_on_loopback=s.allow_http_on_loopback,
        allowed_hosts=list(s.allowed_hosts),
        updated_at=snapshot.updated_at,
    )


@router.get("/client-settings/validation", response_model=ValidationSettingsResponse)
def get_validation_settings(
    request: Request, identity: Identity = Depends(require_admin)
) -> ValidationSettingsResponse:
    return _to_response(_provider(request).snapshot())


@router.put("/client-settings/validation", response_model=ValidationSettingsResponse)
def update_validation_settings(
    request: Request,
    body: ValidationSettingsBody,
    identity: Identity = Depends(require_admin),
) -> ValidationSettingsResponse:
    """Replace the policy. An empty scheme list is rejected with 400 invalid_settings."""
    snapshot = _provider(request).set(
        body.allowed_schemes,
        body.allow_http_on_loopback,
        body.allowed_hosts,
        request_actor(request, identity),
    )
    return _to_response(snapshot)
