"""
api/routes/v1/api_keys.py -- API key management endpoints.

Routes:
  POST   /api/v1/api-keys            -- issue a key to the caller (admin only)
  GET    /api/v1/api-keys            -- list the caller's keys; ?all=true lists every key (admin only)
  DELETE /api/v1/api-keys/{key_id}   -- revoke (optional JSON body {"reason": ...})

Security:
  Issuing is admin-only. A scope-restricted key could otherwise mint an
  unrestricted one and escalate.
  IDOR guard: a non-admin caller revokes with owner_id set, so another owner's
  key is reported as 404, exactly like a key that does not exist.
  The raw key appears in the POST response only. Cache-Control: no-store
  keeps it out of intermediary caches.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.models import ApiKeyCreate, ApiKeyCreatedResponse, ApiKeyResponse, ApiKeyRevoke
from auth.credentials import ApiKeyCredential
from auth.dependencies import get_current_identity, request_actor, require_admin
from auth.models import ADMIN_SCOPE, Identity

router = APIRouter()


def _credentials(request: Request) -> ApiKeyCredential:
    return request.app.state.api_keys


@router.post("/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def issue_api_key(
    request: Request,
    body: ApiKeyCreate,
    identity: Identity = Depends(require_admin),
) -> JSONResponse:
    """Generate a new API key owned by the caller. The raw key is shown ONCE and never stored."""
    issued = _credentials(request).issue(
        request_actor(request, identity),
        body.name,
        expires_at=body.expires_at,
        scopes=body.scopes,
    )
    resp = JSONResponse(
        status_code=201,
        content=ApiKeyCreatedResponse.from_issued(issued).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(
    request: Request,
    all: bool = False,
    identity: Identity = Depends(get_current_identity),
) -> list[ApiKeyResponse]:
    """List API keys newest first. Raw key values and hashes are never returned."""
    if all and not identity.has_scope(ADMIN_SCOPE):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required to list all keys."},
        )
    owner_id = None if all else identity.subject_id
    return [ApiKeyResponse.from_view(v) for v in _credentials(request).list(owner_id=owner_id)]


@router.delete("/api-keys/{key_id}", status_code=204)
def revoke_api_key(
    request: Request,
    key_id: str,
    body: Optional[ApiKeyRevoke] = Body(default=None),
    identity: Identity = Depends(get_current_identity),
) -> Response:
    """Revoke an API key. Revocation is permanent."""
    owner_id = None if identity.has_scope(ADMIN_SCOPE) else identity.subject_id
    _credentials(request).revoke(
        key_id,
        request_actor(request, identity),
        reason=body.reason if body else None,
        owner_id=owner_id,
    )
    return Response(status_code=204)
