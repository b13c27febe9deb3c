"""
api/routes/v1/audit_logs.py -- Read-only access to the audit trail.

Routes:
  GET /api/v1/audit-logs             -- filtered, paged query (newest first)
  GET /api/v1/audit-logs/categories  -- distinct categories observed
  GET /api/v1/audit-logs/export      -- same filters, CSV download

Route registration order: /categories and /export are literal paths, so they
are declared before any future /audit-logs/{id} route could capture them.

Auth policy: every route requires the admin scope (require_admin). The trail
is append-only; there is no write or delete route.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import AuditLogPage, AuditLogResponse
from audit.formatter import to_csv
from audit.models import AuditQuery
from audit.store import AuditTrail
from auth.dependencies import require_admin
from auth.models import Identity
from core.db import utcnow

router = APIRouter()


def _audit(request: Request) -> AuditTrail:
    return request.app.state.audit


def _filters(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    category: Annotated[Optional[str], Query(max_length=100)] = None,
    user_id: Annotated[Optional[str], Query(max_length=200)] = None,
    success: Optional[bool] = None,
    keyword: Annotated[Optional[str], Query(max_length=200)] = None,
) -> AuditQuery:
    """Shared query parameters; paging is filled in by the caller."""
    return AuditQuery(
        start=start,
        end=end,
        category=category or None,
        user_id=user_id or None,
        success=success,
        keyword=keyword or None,
    )


@router.get("/audit-logs/categories", response_model=list[str])
def list_audit_categories(request: Request, identity: Identity = Depends(require_admin)) -> list[str]:
    return _audit(request).list_categories()


@router.get("/audit-logs/export")
def export_audit_logs(
    request: Request,
    q: AuditQuery = Depends(_filters),
    identity: Identity = Depends(require_admin),
) -> Response:
    """Download matching entries as CSV (formula-injection safe, row-capped)."""
    body = to_csv(_audit(request).export(q))
    filename = f"audit-logs-{utcnow().strftime('%Y%m%d-%H%M%S')}.csv"
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )


@router.get("/audit-logs", response_model=AuditLogPage)
def query_audit_logs(
    request: Request,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=500)] = 50,
    q: AuditQuery = Depends(_filters),
    identity: Identity = Depends(require_admin),
) -> AuditLogPage:
    """Filtered page of audit entries.

    Query params:
        page, page_size -- 1-based paging (page_size is also capped server-side)
        start, end      -- inclusive ISO 8601 bounds
        category, user_id, success, keyword -- optional filters, ANDed
    """
    q.skip = (page - 1) * page_size
    q.take = page_size
    entries, total = _audit(request).query(q)
    return AuditLogPage(
        logs=[AuditLogResponse.from_entry(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
    )
