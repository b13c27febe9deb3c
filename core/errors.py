"""
core/errors.py -- Error taxonomy shared by every service in idcore.

Services raise these; they never build HTTP responses. The API layer maps each
class to a status code in one exception handler (api/main.py), so the mapping
lives in exactly one place:

  NotFoundError             -> 404
  ValidationFailedError     -> 400
  ConflictError             -> 409
  AuthenticationFailedError -> 401 (always the same generic body)
  AdminError (base)         -> 500

`code` is the machine-readable error kind ("duplicate_client_id",
"missing_secret", ...). `fields` carries per-field messages for validation
failures so the caller can correct the request.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, registry/.
"""

from __future__ import annotations

from typing import Optional


class AdminError(Exception):
    """Base class for expected, typed failures of an admin operation."""

    status_code = 500
    default_code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        fields: Optional[dict[str, list[str]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.fields = fields or {}

    def audit_message(self) -> str:
        """Operator-facing summary written to the audit trail on failure."""
        return f"{self.code}: {self.message}"


class NotFoundError(AdminError):
    status_code = 404
    default_code = "not_found"


class ConflictError(AdminError):
    """Uniqueness violation or a terminal state that cannot be entered twice."""

    status_code = 409
    default_code = "conflict"


class ValidationFailedError(AdminError):
    status_code = 400
    default_code = "validation_failed"

    def audit_message(self) -> str:
        if not self.fields:
            return super().audit_message()
        parts = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in self.fields.items())
        return f"{self.code}: {parts}"


class AuthenticationFailedError(AdminError):
    """Credential absent, malformed, unknown, expired or revoked.

    `reason` is for logs and the audit trail only. The requester always sees
    PUBLIC_MESSAGE so the response never tells an attacker whether a prefix
    exists or which check failed.
    """

    status_code = 401
    default_code = "unauthorized"
    PUBLIC_MESSAGE = "Authentication required."

    def __init__(self, reason: str) -> None:
        super().__init__(self.PUBLIC_MESSAGE)
        self.reason = reason

    def audit_message(self) -> str:
        return self.reason
