"""
registry/settings.py -- Runtime-editable redirect URI policy.

The policy lives in the single-row client_validation_settings table so an
operator can tighten it without a restart. The first get() seeds that row from
the CLIENT_VALIDATION_* environment settings.

Readers get an immutable ValidationPolicySettings snapshot from an in-process
cache, so validation never hits the database. set() persists the new policy
and its audit entry in one transaction and only then swaps the cached snapshot,
under a lock, so a reader sees either the old policy or the new one and never
a mixture. A failed set() leaves the cache untouched.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from audit.models import CATEGORY_CONFIGURATION, Actor
from audit.store import AuditTrail
from core.config import Settings
from core.db import from_iso, to_iso, utcnow
from core.errors import ValidationFailedError
from core.validation import ValidationPolicySettings
from registry.store import RegistryStore

logger = logging.getLogger("idcore.registry")


@dataclass(frozen=True)
class PolicySnapshot:
    settings: ValidationPolicySettings
    updated_at: datetime


def policy_from_settings(cfg: Settings) -> ValidationPolicySettings:
    """Environment defaults used to seed the policy row on first use."""
    return ValidationPolicySettings(
        allowed_schemes=tuple(cfg.allowed_schemes_list),
        allow_http_on_loopback=cfg.client_validation_allow_http_loopback,
        allowed_hosts=tuple(cfg.allowed_hosts_list),
    )


class ValidationSettingsProvider:
    """Cached, persisted, audited access to the redirect URI policy."""

    def __init__(
        self,
        store: RegistryStore,
        audit: AuditTrail,
        defaults: ValidationPolicySettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._defaults = defaults
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: PolicySnapshot | None = None

    def get(self) -> ValidationPolicySettings:
        """Current policy snapshot. Safe to call from any thread."""
        return self.snapshot().settings

    def snapshot(self) -> PolicySnapshot:
        cached = self._cached
        if cached is not None:
            return cached
        with self._lock:
            if self._cached is None:
                self._cached = self._load_or_seed()
            return self._cached

    def set(
        self,
        allowed_schemes: Iterable[str],
        allow_http_on_loopback: bool,
        allowed_hosts: Iterable[str],
        actor: Actor,
    ) -> PolicySnapshot:
        """Replace the policy.

        Raises:
            ValidationFailedError(code="invalid_settings") if no scheme remains
            after normalization.
        """
        schemes = list(allowed_schemes)
        hosts = list(allowed_hosts)
        with self._lock:
            with self._audit.mutation(CATEGORY_CONFIGURATION, "UpdateValidationPolicy", actor) as scope:
                try:
                    settings = ValidationPolicySettings(
                        allowed_schemes=tuple(schemes),
                        allow_http_on_loopback=allow_http_on_loopback,
                        allowed_hosts=tuple(hosts),
                    )
                except ValueError as exc:
                    raise ValidationFailedError(
                        str(exc), code="invalid_settings", fields={"allowed_schemes": [str(exc)]}
                    ) from exc
                now = self._clock()
                self._store.save_validation_settings(scope.conn, settings, to_iso(now))
                scope.details = _describe(settings)
            self._cached = PolicySnapshot(settings, now)
        logger.info("Client validation settings updated: %s", _describe(settings))
        return self._cached

    def _load_or_seed(self) -> PolicySnapshot:
        loaded = self._store.get_validation_settings()
        if loaded is not None:
            settings, updated_at = loaded
            return PolicySnapshot(settings, from_iso(updated_at))
        now = self._clock()
        with self._store.engine.begin() as conn:
            self._store.save_validation_settings(conn, self._defaults, to_iso(now))
        logger.info("Client validation settings initialized from environment: %s", _describe(self._defaults))
        return PolicySnapshot(self._defaults, now)


def _describe(settings: ValidationPolicySettings) -> str:
    return (
        f"schemes={','.join(settings.allowed_schemes)}; "
        f"allow_http_on_loopback={settings.allow_http_on_loopback}; "
        f"hosts={','.join(settings.allowed_hosts) or '*'}"
    )
