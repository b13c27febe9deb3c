"""
tests/test_clients.py -- Unit tests for ClientRegistry (registry/clients.py).

Runs the real registry, store and audit trail against a private :memory:
database (services fixture in conftest.py).

Coverage:
  - spa.portal scenario: public client with default policy echoes id and scopes
  - ftp redirect URI rejected with invalid_redirect_uri
  - secret rules: confidential needs one, public must not have one, and the
    secret must fit bcrypt's 72-byte input limit
  - scopes: empty rejected, duplicates folded case-insensitively
  - duplicate client_id: sequential conflict, and the insert-time race where
    the existence check misses and the UNIQUE index decides
  - update keeps omitted scopes / secret, rotates a confidential secret
  - update_scopes, delete, second delete is not_found
  - verify_secret for confidential, public and unknown clients
  - audit: one success entry per mutation, one failure entry per rejection
  - a policy change applies to the next create
"""

from __future__ import annotations

import pytest

from audit.models import AuditQuery
from core.errors import ConflictError, NotFoundError, ValidationFailedError
from registry.models import CreateClientRequest, UpdateClientRequest


def _spa(client_id: str = "spa.portal", **overrides) -> CreateClientRequest:
    fields = dict(
        client_id=client_id,
        display_name="Portal SPA",
        redirect_uris=["https://app.example.com/callback"],
        client_type="public",
        scopes=["openid", "profile"],
    )
    fields.update(overrides)
    return CreateClientRequest(**fields)


def _client_audit(services, **filters):
    entries, _total = services.audit.query(AuditQuery(category="Client", take=100, **filters))
    return entries


class TestCreate:
    def test_spa_portal_scenario(self, services, admin_actor) -> None:
        """Public client under the default policy succeeds and echoes id and scopes exactly."""
        summary = services.clients.create(_spa(), admin_actor)
        assert summary.client_id == "spa.portal"
        assert summary.scopes == ("openid", "profile")
        assert summary.redirect_uris == ("https://app.example.com/callback",)
        assert summary.has_secret is False

    def test_ftp_redirect_rejected(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.create(_spa(redirect_uris=["ftp://files.example.com"]), admin_actor)
        assert exc_info.value.code == "invalid_redirect_uri"
        assert "redirect_uris" in exc_info.value.fields
        assert services.clients.get("spa.portal") is None

    def test_confidential_without_secret_rejected(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.create(_spa("svc", client_type="confidential"), admin_actor)
        assert exc_info.value.code == "missing_secret"

    def test_public_with_secret_rejected(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.create(_spa(client_secret="s3cret-value"), admin_actor)
        assert exc_info.value.code == "unexpected_secret"

    def test_unknown_client_type_rejected(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.create(_spa(client_type="device"), admin_actor)
        assert exc_info.value.code == "invalid_client_type"

    def test_empty_scopes_rejected(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.create(_spa(scopes=["  ", ""]), admin_actor)
        assert exc_info.value.code == "empty_scopes"

    def test_scopes_deduplicated_case_insensitively(self, services, admin_actor) -> None:
        summary = services.clients.create(_spa(scopes=["openid", "Profile", "OPENID", "profile"]), admin_actor)
        assert summary.scopes == ("openid", "Profile")

    def test_redirect_uris_deduplicated(self, services, admin_actor) -> None:
        uri = "https://app.example.com/callback"
        summary = services.clients.create(_spa(redirect_uris=[uri, uri]), admin_actor)
        assert summary.redirect_uris == (uri,)

    def test_confidential_secret_is_hashed(self, services, admin_actor) -> None:
        summary = services.clients.create(
            _spa("svc", client_type="confidential", client_secret="correct-horse-battery"), admin_actor
        )
        assert summary.has_secret is True
        assert services.clients.verify_secret("svc", "correct-horse-battery") is True
        assert services.clients.verify_secret("svc", "wrong") is False


class TestDuplicateClientId:
    def test_second_create_conflicts(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        with pytest.raises(ConflictError) as exc_info:
            services.clients.create(_spa(display_name="Other"), admin_actor)
        assert exc_info.value.code == "duplicate_client_id"
        assert services.clients.get("spa.portal").display_name == "Portal SPA"

    def test_insert_race_maps_to_conflict(self, services, admin_actor, monkeypatch) -> None:
        """Two creates that both pass the existence check: the UNIQUE index lets exactly one win.

        The check is patched to miss, which is what the loser of a concurrent
        race observes. Its insert then hits the index and must surface as a
        conflict rather than a storage error.
        """
        services.clients.create(_spa(), admin_actor)
        monkeypatch.setattr(services.clients._store, "get_client", lambda *args, **kwargs: None)

        with pytest.raises(ConflictError) as exc_info:
            services.clients.create(_spa(display_name="Racer"), admin_actor)
        assert exc_info.value.code == "duplicate_client_id"

        monkeypatch.undo()
        assert len(services.clients.list()) == 1
        assert services.clients.get("spa.portal").display_name == "Portal SPA"


class TestUpdate:
    def test_update_keeps_omitted_scopes(self, services, admin_actor) -> None:
        services.clients.create(_spa(scopes=["openid", "email"]), admin_actor)
        summary = services.clients.update(
            "spa.portal",
            UpdateClientRequest(display_name="Renamed", redirect_uris=["https://app.example.com/cb2"]),
            admin_actor,
        )
        assert summary.display_name == "Renamed"
        assert summary.redirect_uris == ("https://app.example.com/cb2",)
        assert summary.scopes == ("openid", "email")

    def test_update_validates_uris(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.update(
                "spa.portal",
                UpdateClientRequest(display_name="x", redirect_uris=["http://app.example.com/cb"]),
                admin_actor,
            )
        assert exc_info.value.code == "invalid_redirect_uri"
        assert services.clients.get("spa.portal").redirect_uris == ("https://app.example.com/callback",)

    def test_update_rotates_confidential_secret(self, services, admin_actor) -> None:
        services.clients.create(_spa("svc", client_type="confidential", client_secret="old-secret"), admin_actor)
        services.clients.update(
            "svc",
            UpdateClientRequest(
                display_name="svc",
                redirect_uris=["https://app.example.com/callback"],
                client_secret="new-secret",
            ),
            admin_actor,
        )
        assert services.clients.verify_secret("svc", "new-secret") is True
        assert services.clients.verify_secret("svc", "old-secret") is False
        latest = _client_audit(services, success=True, keyword="secret rotated")
        assert len(latest) == 1

    def test_update_public_with_secret_rejected(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.update(
                "spa.portal",
                UpdateClientRequest(
                    display_name="x", redirect_uris=["https://app.example.com/callback"], client_secret="nope"
                ),
                admin_actor,
            )
        assert exc_info.value.code == "unexpected_secret"

    def test_update_missing_client(self, services, admin_actor) -> None:
        with pytest.raises(NotFoundError):
            services.clients.update(
                "ghost", UpdateClientRequest(display_name="x", redirect_uris=["https://a.example.com/cb"]), admin_actor
            )

    def test_update_scopes_replaces_set(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        summary = services.clients.update_scopes("spa.portal", ["openid", "api.read"], admin_actor)
        assert summary.scopes == ("openid", "api.read")

    def test_update_scopes_rejects_empty(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.update_scopes("spa.portal", [], admin_actor)
        assert exc_info.value.code == "empty_scopes"
        assert services.clients.get("spa.portal").scopes == ("openid", "profile")


class TestDelete:
    def test_delete_then_delete_again(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        services.clients.delete("spa.portal", admin_actor)
        assert services.clients.get("spa.portal") is None
        with pytest.raises(NotFoundError):
            services.clients.delete("spa.portal", admin_actor)

    def test_list_sorted_by_client_id(self, services, admin_actor) -> None:
        for cid in ("zeta", "alpha", "mid"):
            services.clients.create(_spa(cid), admin_actor)
        assert [c.client_id for c in services.clients.list()] == ["alpha", "mid", "zeta"]


class TestVerifySecret:
    def test_unknown_client_is_false(self, services) -> None:
        assert services.clients.verify_secret("ghost", "anything") is False

    def test_public_client_is_false(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        assert services.clients.verify_secret("spa.portal", "anything") is False


class TestClientAudit:
    def test_each_mutation_writes_one_success_entry(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        services.clients.update_scopes("spa.portal", ["openid"], admin_actor)
        services.clients.delete("spa.portal", admin_actor)

        entries = _client_audit(services)
        assert sorted(e.action for e in entries) == ["Create", "Delete", "UpdateScopes"]
        assert all(e.success for e in entries)
        assert all(e.user_id == admin_actor.user_id for e in entries)
        assert all(e.ip_address == "127.0.0.1" for e in entries)

    def test_rejection_writes_one_failure_entry(self, services, admin_actor) -> None:
        with pytest.raises(ValidationFailedError):
            services.clients.create(_spa(client_type="confidential"), admin_actor)

        entries = _client_audit(services)
        assert len(entries) == 1, f"Expected exactly one entry, got {entries}"
        assert entries[0].success is False
        assert entries[0].action == "Create"
        assert "missing_secret" in entries[0].error_message

    def test_multibyte_secret_over_bcrypt_limit_on_create(self, services, admin_actor) -> None:
        """72 characters of 'é' is 144 bytes: rejected as invalid_secret, never a crash."""
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.create(_spa("svc.wide", client_type="confidential", client_secret="é" * 72), admin_actor)
        assert exc_info.value.code == "invalid_secret"
        assert "client_secret" in exc_info.value.fields
        assert services.clients.get("svc.wide") is None

        entries = _client_audit(services)
        assert len(entries) == 1, f"Expected exactly one failure entry, got {entries}"
        assert entries[0].success is False
        assert "invalid_secret" in entries[0].error_message

    def test_multibyte_secret_over_bcrypt_limit_on_update(self, services, admin_actor) -> None:
        services.clients.create(_spa("svc", client_type="confidential", client_secret="old-secret"), admin_actor)
        with pytest.raises(ValidationFailedError) as exc_info:
            services.clients.update(
                "svc",
                UpdateClientRequest(
                    display_name="svc",
                    redirect_uris=["https://app.example.com/callback"],
                    client_secret="é" * 72,
                ),
                admin_actor,
            )
        assert exc_info.value.code == "invalid_secret"
        assert services.clients.verify_secret("svc", "old-secret") is True

        failures = _client_audit(services, success=False)
        assert len(failures) == 1
        assert failures[0].action == "Update"

    def test_secret_of_exactly_72_bytes_accepted(self, services, admin_actor) -> None:
        secret = "é" * 36  # 72 bytes
        services.clients.create(_spa("svc.edge", client_type="confidential", client_secret=secret), admin_actor)
        assert services.clients.verify_secret("svc.edge", secret) is True

    def test_delete_details_name_the_client(self, services, admin_actor) -> None:
        services.clients.create(_spa(), admin_actor)
        services.clients.delete("spa.portal", admin_actor)
        (entry,) = _client_audit(services, keyword="deleted")
        assert "spa.portal" in entry.details
        assert "Portal SPA" in entry.details


class TestPolicyChange:
    def test_new_policy_applies_to_next_create(self, services, admin_actor) -> None:
        services.clients.create(_spa("before"), admin_actor)
        services.validation_settings.set(["https"], False, ["login.example.com"], admin_actor)

        with pytest.raises(ValidationFailedError):
            services.clients.create(_spa("after"), admin_actor)
        summary = services.clients.create(
            _spa("after", redirect_uris=["https://login.example.com/cb"]), admin_actor
        )
        assert summary.client_id == "after"
        assert services.clients.get("before") is not None, "existing clients are not re-validated"
