"""
api/routes/v1/clients.py -- OAuth/OIDC client registration endpoints.

Routes:
  GET    /api/v1/clients                      -- list clients (sorted by client_id)
  POST   /api/v1/clients                      -- register a client
  GET    /api/v1/clients/{client_id}          -- one client
  PUT    /api/v1/clients/{client_id}          -- replace mutable fields
  PUT    /api/v1/clients/{client_id}/scopes   -- replace the scope set
  DELETE /api/v1/clients/{client_id}          -- hard delete

Auth policy: every route requires the admin scope (require_admin).

Handlers stay thin: build the audit Actor, call the ClientRegistry, map the
result. Domain errors (AdminError subclasses) propagate to the handler in
api/main.py, which owns the status code mapping.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import ClientCreate, ClientResponse, ClientScopesUpdate, ClientUpdate
from auth.dependencies import request_actor, require_admin
from auth.models import Identity
from registry.clients import ClientRegistry

router = APIRouter()


def _registry(request: Request) -> ClientRegistry:
    return request.app.state.clients


@router.get("/clients", response_model=list[ClientResponse])
def list_clients(request: Request, identity: Identity = Depends(require_admin)) -> list[ClientResponse]:
    return [ClientResponse.from_summary(c) for c in _registry(request).list()]


@router.post("/clients", response_model=ClientResponse, status_code=201)
def create_client(
    request: Request,
    body: ClientCreate,
    identity: Identity = Depends(require_admin),
) -> ClientResponse:
    """Register a client. Redirect URIs are checked against the current policy."""
    summary = _registry(request).create(body.to_domain(), request_actor(request, identity))
    return ClientResponse.from_summary(summary)


@router.get("/clients/{client_id}", response_model=ClientResponse)
def get_client(request: Request, client_id: str, identity: Identity = Depends(require_admin)) -> ClientResponse:
    summary = _registry(request).get(client_id)
    if summary is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Client '{client_id}' was not found."},
        )
    return ClientResponse.from_summary(summary)


@router.put("/clients/{client_id}", response_model=ClientResponse)
def update_client(
    request: Request,
    client_id: str,
    body: ClientUpdate,
    identity: Identity = Depends(require_admin),
) -> ClientResponse:
    """Replace display name and URIs. Omitted scopes / secret are kept."""
    summary = _registry(request).update(client_id, body.to_domain(), request_actor(request, identity))
    return ClientResponse.from_summary(summary)


@router.put("/clients/{client_id}/scopes", response_model=ClientResponse)
def update_client_scopes(
    request: Request,
    client_id: str,
    body: ClientScopesUpdate,
    identity: Identity = Depends(require_admin),
) -> ClientResponse:
    summary = _registry(request).update_scopes(client_id, body.scopes, request_actor(request, identity))
    return ClientResponse.from_summary(summary)


@router.delete("/clients/{client_id}", status_code=204)
def delete_client(request: Request, client_id: str, identity: Identity = Depends(require_admin)) -> Response:
    _registry(request).delete(client_id, request_actor(request, identity))
    return Response(status_code=204)
