"""
core/validation.py -- Redirect / post-logout URI policy.

validate_uri() is a pure function: the same (uri, settings) pair always yields
the same list of problems, it touches no global state, and the settings object
is an immutable snapshot. That makes it safe to call from any number of worker
threads without locking, and testable without environment setup.

Rules, applied in order (an empty list means the URI is acceptable):
  1. blank input is rejected;
  2. the URI must be absolute -- an RFC 3986 scheme, a non-empty remainder and,
     for http(s), a host and a valid port;
  3. the scheme (compared case-insensitively) must be in allowed_schemes;
  4. http is accepted only when allow_http_on_loopback is set AND the host is
     localhost, 127.0.0.1 or ::1;
  5. when allowed_hosts is non-empty the host must match one entry exactly
     (case-insensitive). An EMPTY allowed_hosts means "any host", not "no
     hosts";
  6. fragments are rejected -- the provider appends its own response
     parameters and a fragment would swallow them.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, registry/.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit

from core.errors import ValidationFailedError

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*$")


def _normalize(values: Iterable[str]) -> tuple[str, ...]:
    # Lowercased, stripped, de-duplicated, first occurrence wins.
    return tuple(dict.fromkeys(v.strip().lower() for v in values if v and v.strip()))


@dataclass(frozen=True)
class ValidationPolicySettings:
    """Immutable snapshot of the redirect URI policy.

    Lists passed in are normalized to lowercase tuples. allowed_schemes may
    never be empty; constructing one that is raises ValueError.
    """

    allowed_schemes: tuple[str, ...] = ("https", "http")
    allow_http_on_loopback: bool = True
    allowed_hosts: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        schemes = _normalize(self.allowed_schemes)
        if not schemes:
            raise ValueError("allowed_schemes must contain at least one scheme.")
        object.__setattr__(self, "allowed_schemes", schemes)
        object.__setattr__(self, "allowed_hosts", _normalize(self.allowed_hosts))


def validate_uri(uri: str, settings: ValidationPolicySettings) -> list[str]:
    """Return every policy violation for uri. An empty list means valid."""
    if uri is None or not uri.strip():
        return ["Redirect URI must not be empty."]

    malformed = [f"Redirect URI {uri!r} must be a well-formed absolute URI."]
    if any(ch.isspace() for ch in uri):
        return malformed
    try:
        parts = urlsplit(uri)
        parts.port  # raises ValueError for a non-numeric or out-of-range port
    except ValueError:
        return malformed

    scheme = parts.scheme.lower()
    if not scheme or not _SCHEME_RE.match(scheme) or not (parts.netloc or parts.path):
        return malformed

    host = (parts.hostname or "").lower()
    if scheme in ("http", "https") and not host:
        return malformed

    problems: list[str] = []

    if scheme not in settings.allowed_schemes:
        problems.append(
            f"Scheme {scheme!r} is not allowed. Allowed schemes: {', '.join(settings.allowed_schemes)}."
        )

    if scheme == "http" and not (settings.allow_http_on_loopback and host in LOOPBACK_HOSTS):
        problems.append("The http scheme is only allowed for localhost, 127.0.0.1 and ::1.")

    if settings.allowed_hosts and host not in settings.allowed_hosts:
        problems.append(f"Host {host!r} is not in the allowed host list.")

    if parts.fragment or uri.endswith("#"):
        problems.append("Redirect URI must not contain a fragment (#).")

    return problems


def check_uris(fields: Mapping[str, Iterable[str]], settings: ValidationPolicySettings) -> None:
    """Validate every URI of every field; raise once with all problems grouped by field.

    Raises:
        ValidationFailedError(code="invalid_redirect_uri") if any URI fails.
    """
    errors: dict[str, list[str]] = {}
    for field, uris in fields.items():
        for uri in uris:
            for problem in validate_uri(uri, settings):
                messages = errors.setdefault(field, [])
                if problem not in messages:
                    messages.append(problem)
    if errors:
        raise ValidationFailedError(
            "One or more redirect URIs violate the validation policy.",
            code="invalid_redirect_uri",
            fields=errors,
        )
