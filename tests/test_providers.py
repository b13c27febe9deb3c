"""
tests/test_providers.py -- Unit tests for ExternalProviderRegistry (registry/providers.py).

Coverage:
  - create: starts disabled, default callback path, custom path validated
  - client secret encrypted at rest and never on a summary
  - duplicate name (sequential and insert-time race) is duplicate_provider_name
  - unknown provider type rejected
  - partial update changes only the given fields; secret never in the audit text
  - toggle / get_enabled ordering by display_order then name
  - get_by_id with enabled_only, get_by_name
  - delete, then delete again is not_found
  - listeners fire after committed mutations only
  - oauth_client_configs decrypts secrets and skips undecryptable ones
"""

from __future__ import annotations

import pytest

from audit.models import AuditQuery
from core.errors import ConflictError, NotFoundError, ValidationFailedError
from registry.models import (
    CreateExternalAuthProviderRequest,
    UpdateExternalAuthProviderRequest,
    default_callback_path,
)

SECRET = "gh-oauth-secret-1234"


def _github(name: str = "GitHub", **overrides) -> CreateExternalAuthProviderRequest:
    fields = dict(
        provider_type="github",
        name=name,
        display_name=f"{name} Login",
        client_id="Iv1.abcdef",
        client_secret=SECRET,
    )
    fields.update(overrides)
    return CreateExternalAuthProviderRequest(**fields)


class TestCallbackPath:
    @pytest.mark.parametrize(
        ("provider_type", "name", "expected"),
        [
            ("github", "GitHub", "/signin-github"),
            ("github", "Enterprise", "/signin-github-enterprise"),
            ("google", "Google Workspace", "/signin-google-workspace"),
            ("custom", "Corp SSO", "/signin-custom-corp-sso"),
        ],
    )
    def test_default_callback_path(self, provider_type: str, name: str, expected: str) -> None:
        assert default_callback_path(provider_type, name) == expected


class TestCreate:
    def test_created_disabled_with_default_callback(self, services, admin_actor) -> None:
        summary = services.providers.create(_github(), admin_actor)
        assert summary.enabled is False
        assert summary.callback_path == "/signin-github"
        assert summary.provider_type == "github"

    def test_secret_encrypted_at_rest_and_hidden(self, services, admin_actor) -> None:
        summary = services.providers.create(_github(), admin_actor)
        assert not hasattr(summary, "client_secret")
        assert SECRET not in repr(summary)

        stored = services.providers._store.get_provider(summary.id)
        assert stored.client_secret_encrypted != SECRET
        assert SECRET not in stored.client_secret_encrypted

    def test_custom_callback_path(self, services, admin_actor) -> None:
        summary = services.providers.create(_github(callback_path="/auth/gh"), admin_actor)
        assert summary.callback_path == "/auth/gh"

    def test_relative_callback_path_rejected(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError):
            services.providers.create(_github(callback_path="auth/gh"), admin_actor)

    def test_unknown_type_rejected(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            services.providers.create(_github(provider_type="myspace"), admin_actor)
        assert exc_info.value.code == "invalid_provider_type"

    def test_duplicate_name_conflicts(self, services, admin_actor) -> None:
        services.providers.create(_github(), admin_actor)
        with pytest.raises(ConflictError) as exc_info:
            services.providers.create(_github(), admin_actor)
        assert exc_info.value.code == "duplicate_provider_name"

    def test_insert_race_maps_to_conflict(self, services, admin_actor, monkeypatch) -> None:
        """The UNIQUE index on name decides when the existence check is passed by both racers."""
        services.providers.create(_github(), admin_actor)
        monkeypatch.setattr(services.providers._store, "get_provider_by_name", lambda *args, **kwargs: None)
        with pytest.raises(ConflictError) as exc_info:
            services.providers.create(_github(), admin_actor)
        assert exc_info.value.code == "duplicate_provider_name"
        monkeypatch.undo()
        assert len(services.providers.list()) == 1


class TestUpdate:
    def test_partial_update(self, services, admin_actor) -> None:
        created = services.providers.create(_github(scopes=["read:user"]), admin_actor)
        updated = services.providers.update(
            created.id, UpdateExternalAuthProviderRequest(display_name="Sign in with GitHub"), admin_actor
        )
        assert updated.display_name == "Sign in with GitHub"
        assert updated.client_id == created.client_id
        assert updated.scopes == ("read:user",)
        assert updated.enabled is False

    def test_secret_rotation_not_in_audit_details(self, services, admin_actor) -> None:
        created = services.providers.create(_github(), admin_actor)
        services.providers.update(
            created.id, UpdateExternalAuthProviderRequest(client_secret="brand-new-secret"), admin_actor
        )
        entries, _ = services.audit.query(AuditQuery(category="ExternalAuthProvider", take=100))
        update = next(e for e in entries if e.action == "Update")
        assert "client_secret" in update.details
        assert "brand-new-secret" not in update.details

        (config,) = _enable_and_configs(services, created.id, admin_actor)
        assert config.client_secret == "brand-new-secret"

    def test_update_missing_provider(self, services, admin_actor) -> None:
        with pytest.raises(NotFoundError):
            services.providers.update("nope", UpdateExternalAuthProviderRequest(display_name="x"), admin_actor)


def _enable_and_configs(services, provider_id, actor):
    services.providers.toggle_enabled(provider_id, True, actor)
    return services.providers.oauth_client_configs()


class TestToggleAndReads:
    def test_enabled_list_ordering(self, services, admin_actor) -> None:
        b = services.providers.create(_github("Beta", display_order=1), admin_actor)
        a = services.providers.create(_github("Alpha", display_order=1), admin_actor)
        z = services.providers.create(_github("Zed", display_order=0), admin_actor)
        services.providers.create(_github("Off", display_order=0), admin_actor)
        for p in (b, a, z):
            services.providers.toggle_enabled(p.id, True, admin_actor)

        assert [p.name for p in services.providers.get_enabled()] == ["Zed", "Alpha", "Beta"]

    def test_toggle_audit_action(self, services, admin_actor) -> None:
        p = services.providers.create(_github(), admin_actor)
        services.providers.toggle_enabled(p.id, True, admin_actor)
        services.providers.toggle_enabled(p.id, False, admin_actor)
        entries, _ = services.audit.query(AuditQuery(category="ExternalAuthProvider", take=100))
        assert sorted(e.action for e in entries) == ["Create", "Disable", "Enable"]

    def test_get_by_id_enabled_only(self, services, admin_actor) -> None:
        p = services.providers.create(_github(), admin_actor)
        assert services.providers.get_by_id(p.id) is not None
        assert services.providers.get_by_id(p.id, enabled_only=True) is None
        services.providers.toggle_enabled(p.id, True, admin_actor)
        assert services.providers.get_by_id(p.id, enabled_only=True) is not None

    def test_get_by_name(self, services, admin_actor) -> None:
        services.providers.create(_github("Corp"), admin_actor)
        assert services.providers.get_by_name("Corp").display_name == "Corp Login"
        assert services.providers.get_by_name("corp-missing") is None

    def test_delete_twice(self, services, admin_actor) -> None:
        p = services.providers.create(_github(), admin_actor)
        services.providers.delete(p.id, admin_actor)
        assert services.providers.get_by_id(p.id) is None
        with pytest.raises(NotFoundError):
            services.providers.delete(p.id, admin_actor)


class TestListeners:
    def test_listener_runs_after_successful_mutations_only(self, services, admin_actor) -> None:
        calls: list[int] = []
        services.providers.add_listener(lambda: calls.append(1))

        p = services.providers.create(_github(), admin_actor)
        services.providers.toggle_enabled(p.id, True, admin_actor)
        with pytest.raises(ConflictError):
            services.providers.create(_github(), admin_actor)
        services.providers.delete(p.id, admin_actor)

        assert len(calls) == 3


class TestOAuthConfigs:
    def test_only_enabled_providers_decrypted(self, services, admin_actor) -> None:
        on = services.providers.create(_github("On"), admin_actor)
        services.providers.create(_github("Off"), admin_actor)
        services.providers.toggle_enabled(on.id, True, admin_actor)

        (config,) = services.providers.oauth_client_configs()
        assert config.name == "On"
        assert config.client_secret == SECRET
        assert SECRET not in repr(config)

    def test_undecryptable_secret_skipped(self, services, admin_actor, monkeypatch) -> None:
        good = services.providers.create(_github("Good"), admin_actor)
        bad = services.providers.create(_github("Bad"), admin_actor)
        services.providers.toggle_enabled(good.id, True, admin_actor)
        services.providers.toggle_enabled(bad.id, True, admin_actor)

        store = services.providers._store
        broken = store.get_provider(bad.id)
        broken.client_secret_encrypted = "gAAAAA-not-a-fernet-token"
        with services.engine.begin() as conn:
            store.update_provider(conn, broken)

        assert [c.name for c in services.providers.oauth_client_configs()] == ["Good"]
