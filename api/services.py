"""
api/services.py -- Builds the service graph shared by the API and the CLI.

One Engine, one AuditTrail, and every service wired to both. Sharing the
engine is what makes "mutation + audit entry in one transaction" possible.

build_services() has no FastAPI dependency so main.py (the CLI) can reuse it;
install_services() attaches the graph to app.state and keeps the OAuth client
registry in sync with provider mutations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from audit.store import AuditTrail
from auth.credentials import ApiKeyCredential
from auth.dependencies import AuthenticationGate
from auth.oauth import build_oauth_registry
from auth.store import ApiKeyStore
from core.config import Settings, get_settings
from core.db import create_db_engine
from registry.clients import ClientRegistry
from registry.providers import ExternalProviderRegistry
from registry.settings import ValidationSettingsProvider, policy_from_settings
from registry.store import RegistryStore

logger = logging.getLogger("idcore.api")


@dataclass
class Services:
    engine: Engine
    audit: AuditTrail
    api_keys: ApiKeyCredential
    gate: AuthenticationGate
    clients: ClientRegistry
    providers: ExternalProviderRegistry
    validation_settings: ValidationSettingsProvider

    def close(self) -> None:
        self.engine.dispose()


def build_services(db_url: str | None = None, settings: Settings | None = None) -> Services:
    """Create the engine, tables and services for db_url (default: DATABASE_URL)."""
    cfg = settings or get_settings()
    engine = create_db_engine(db_url or cfg.database_url)
    audit = AuditTrail(engine, max_take=cfg.audit_query_max_take, max_export_rows=cfg.audit_export_max_rows)
    registry_store = RegistryStore(engine)
    api_keys = ApiKeyCredential(ApiKeyStore(engine), audit)
    validation_settings = ValidationSettingsProvider(registry_store, audit, policy_from_settings(cfg))
    return Services(
        engine=engine,
        audit=audit,
        api_keys=api_keys,
        gate=AuthenticationGate(api_keys),
        clients=ClientRegistry(registry_store, audit, validation_settings),
        providers=ExternalProviderRegistry(registry_store, audit),
        validation_settings=validation_settings,
    )


def install_services(app: FastAPI, services: Services) -> None:
    """Attach services to app.state and build the initial OAuth client registry."""
    app.state.services = services
    app.state.engine = services.engine
    app.state.audit = services.audit
    app.state.api_keys = services.api_keys
    app.state.gate = services.gate
    app.state.clients = services.clients
    app.state.providers = services.providers
    app.state.validation_settings = services.validation_settings

    # Seed / load the URI policy now so the first request does not pay for it.
    services.validation_settings.snapshot()

    def refresh_oauth() -> None:
        app.state.oauth = build_oauth_registry(services.providers.oauth_client_configs())

    refresh_oauth()
    services.providers.add_listener(refresh_oauth)
    logger.info("Services initialized")
