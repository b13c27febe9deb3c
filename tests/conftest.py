"""
tests/conftest.py -- Shared test fixtures for idcore unit and integration tests.

This module provides:
  - FakeClock: mutable clock injected into services so expiry is testable
    without sleeping
  - services / clock: a full service graph over a private :memory: database
  - admin_actor: the audit Actor used by service-level tests
  - _make_test_services(): service graph over a named shared-memory DB
  - _patch_lifespan(): wires that graph into app.state, bypassing real startup
  - api_client: TestClient plus an admin API key for HTTP integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the HTTP tests because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
Service-level tests run on one thread, so plain :memory: is enough there.

DEBUG and TRUSTED_HOSTS must be set before any idcore import: get_settings()
is cached on first call, DEBUG lets it auto-generate SECRET_KEY, and
TestClient sends Host: testserver.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set env before any core/auth import so get_settings() sees it.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("TRUSTED_HOSTS", "localhost,127.0.0.1,testserver")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.services import Services, build_services, install_services
from audit.models import Actor
from audit.store import AuditTrail
from auth.credentials import ApiKeyCredential
from auth.dependencies import AuthenticationGate
from auth.store import ApiKeyStore
from core.config import get_settings
from core.db import create_db_engine
from registry.clients import ClientRegistry
from registry.providers import ExternalProviderRegistry
from registry.settings import ValidationSettingsProvider, policy_from_settings
from registry.store import RegistryStore

ADMIN_ACTOR = Actor(
    user_id="u-admin",
    user_name="testadmin",
    email="admin@example.com",
    ip_address="127.0.0.1",
    user_agent="pytest",
)


class FakeClock:
    """Callable clock. Tests move time with advance() instead of sleeping."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Service-level fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def admin_actor() -> Actor:
    return ADMIN_ACTOR


@pytest.fixture
def services(clock: FakeClock) -> Generator[Services, None, None]:
    """Full service graph on a private :memory: DB, every component on the fake clock.

    Built by hand rather than via build_services() so the clock can be
    injected everywhere.
    """
    cfg = get_settings()
    engine = create_db_engine("sqlite:///:memory:")
    audit = AuditTrail(engine, clock=clock, max_take=cfg.audit_query_max_take)
    registry_store = RegistryStore(engine)
    api_keys = ApiKeyCredential(ApiKeyStore(engine), audit, clock=clock)
    validation_settings = ValidationSettingsProvider(registry_store, audit, policy_from_settings(cfg), clock=clock)
    svc = Services(
        engine=engine,
        audit=audit,
        api_keys=api_keys,
        gate=AuthenticationGate(api_keys),
        clients=ClientRegistry(registry_store, audit, validation_settings, clock=clock),
        providers=ExternalProviderRegistry(registry_store, audit, clock=clock),
        validation_settings=validation_settings,
    )
    yield svc
    svc.close()


# ---------------------------------------------------------------------------
# HTTP integration helpers
# ---------------------------------------------------------------------------


def _make_test_services(db_suffix: str) -> Services:
    """Build the service graph on an isolated named shared-memory SQLite DB.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    url = f"sqlite:///file:test_idcore_{db_suffix}?mode=memory&cache=shared&uri=true"
    return build_services(url, get_settings())


def _patch_lifespan(services: Services):
    """Return an async context manager that replaces the real lifespan.

    Installs the pre-built test services into app.state, exactly as the real
    lifespan does, so routes see the isolated test DB.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, services)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[tuple[TestClient, str, Services], None, None]:
    """Yield (client, admin_key, services) for API integration tests.

    The admin key is unrestricted (scopes=None) and is issued directly through
    the service before the client starts, the same way the CLI bootstraps the
    first key of a real deployment.
    """
    services = _make_test_services(request.module.__name__.rsplit(".", 1)[-1])
    issued = services.api_keys.issue(ADMIN_ACTOR, "test-admin")

    app.router.lifespan_context = _patch_lifespan(services)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, issued.secret, services

    services.close()
