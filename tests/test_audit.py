"""
tests/test_audit.py -- Unit tests for AuditTrail (audit/store.py) and AuditLogEntry.

Coverage:
  - mutation(): body writes and the success entry commit together
  - mutation(): an AdminError rolls back the body and writes exactly one
    failure entry; any other exception rolls back and writes nothing
  - entry invariant: success XOR error_message
  - query(): every filter, newest-first order, paging, take clamped to max_take
  - list_categories(): distinct and sorted
  - export(): same rows as an unpaged query, capped at max_export_rows
"""

from __future__ import annotations

import pytest

from audit.models import Actor, AuditLogEntry, AuditQuery
from audit.store import AuditTrail
from core.db import create_db_engine
from core.errors import ValidationFailedError
from registry.models import ClientRegistration
from registry.store import RegistryStore


def _client(client_id: str = "tx.client") -> ClientRegistration:
    return ClientRegistration(
        client_id=client_id,
        display_name="Tx",
        client_type="public",
        redirect_uris=["https://a.example.com/cb"],
        post_logout_redirect_uris=[],
        scopes=["openid"],
        created_at="2026-01-15T12:00:00.000000+00:00",
        updated_at="2026-01-15T12:00:00.000000+00:00",
    )


def _seed(audit: AuditTrail, clock, actor: Actor) -> None:
    """Five entries one minute apart across three categories."""
    rows = [
        ("Client", "Create", True, "client spa.portal", None),
        ("Client", "Delete", False, "client old.app", "not_found: gone"),
        ("ApiKey", "Issue", True, "key ci-bot", None),
        ("ApiKey", "Authenticate", False, "prefix=ak_abc", "expired"),
        ("Configuration", "UpdateValidationPolicy", True, "schemes=https", None),
    ]
    for category, action, success, details, error in rows:
        audit.record(
            AuditLogEntry.for_actor(actor, category, action, success=success, details=details, error_message=error)
        )
        clock.advance(minutes=1)


class TestMutationAtomicity:
    def test_success_commits_row_and_entry(self, services, admin_actor) -> None:
        store = services.clients._store
        with services.audit.mutation("Client", "Create", admin_actor, details="tx") as scope:
            store.insert_client(scope.conn, _client())

        assert store.get_client("tx.client") is not None
        entries, total = services.audit.query(AuditQuery())
        assert total == 1
        assert entries[0].success is True
        assert entries[0].details == "tx"

    def test_admin_error_rolls_back_and_records_failure(self, services, admin_actor) -> None:
        store = services.clients._store
        with pytest.raises(ValidationFailedError):
            with services.audit.mutation("Client", "Create", admin_actor, details="tx") as scope:
                store.insert_client(scope.conn, _client())
                raise ValidationFailedError("nope", code="invalid_redirect_uri")

        assert store.get_client("tx.client") is None, "body write must roll back"
        entries, total = services.audit.query(AuditQuery())
        assert total == 1, f"Expected exactly one failure entry, got {entries}"
        assert entries[0].success is False
        assert entries[0].error_message == "invalid_redirect_uri: nope"

    def test_unexpected_error_rolls_back_without_entry(self, services, admin_actor) -> None:
        store = services.clients._store
        with pytest.raises(RuntimeError):
            with services.audit.mutation("Client", "Create", admin_actor) as scope:
                store.insert_client(scope.conn, _client())
                raise RuntimeError("disk on fire")

        assert store.get_client("tx.client") is None
        assert services.audit.query(AuditQuery())[1] == 0


class TestEntryInvariant:
    def test_success_with_error_message_rejected(self) -> None:
        with pytest.raises(ValueError):
            AuditLogEntry(action="Create", category="Client", success=True, error_message="boom")

    def test_failure_without_error_message_rejected(self) -> None:
        with pytest.raises(ValueError):
            AuditLogEntry(action="Create", category="Client", success=False)

    def test_missing_actor_becomes_system(self) -> None:
        entry = AuditLogEntry.for_actor(None, "Configuration", "Seed")
        assert entry.user_name == "system"
        assert entry.user_id is None


class TestQuery:
    def test_newest_first_and_total(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        entries, total = services.audit.query(AuditQuery())
        assert total == 5
        assert entries[0].action == "UpdateValidationPolicy"
        assert entries[-1].action == "Create"
        stamps = [e.created_at for e in entries]
        assert stamps == sorted(stamps, reverse=True)

    def test_category_filter(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        entries, total = services.audit.query(AuditQuery(category="ApiKey"))
        assert total == 2
        assert {e.action for e in entries} == {"Issue", "Authenticate"}

    def test_success_filter(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        entries, total = services.audit.query(AuditQuery(success=False))
        assert total == 2
        assert all(not e.success for e in entries)

    def test_user_filter(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        services.audit.record(AuditLogEntry.for_actor(Actor(user_id="u-9", user_name="zoe"), "Client", "Create"))
        entries, total = services.audit.query(AuditQuery(user_id="u-9"))
        assert total == 1
        assert entries[0].user_name == "zoe"

    def test_keyword_matches_details_and_error(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        assert services.audit.query(AuditQuery(keyword="ci-bot"))[1] == 1
        assert services.audit.query(AuditQuery(keyword="expired"))[1] == 1

    def test_keyword_wildcards_are_literal(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        assert services.audit.query(AuditQuery(keyword="%"))[1] == 0
        # "prefix=ak_abc" and "not_found: gone" are the only values with an underscore.
        assert services.audit.query(AuditQuery(keyword="_"))[1] == 2

    def test_time_window_is_inclusive(self, services, clock, admin_actor) -> None:
        start = clock.now
        _seed(services.audit, clock, admin_actor)
        entries, total = services.audit.query(
            AuditQuery(start=start.replace(minute=1), end=start.replace(minute=3))
        )
        assert total == 3
        assert {e.action for e in entries} == {"Delete", "Issue", "Authenticate"}

    def test_paging(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        first, total = services.audit.query(AuditQuery(skip=0, take=2))
        second, _ = services.audit.query(AuditQuery(skip=2, take=2))
        third, _ = services.audit.query(AuditQuery(skip=4, take=2))
        assert total == 5
        assert [len(first), len(second), len(third)] == [2, 2, 1]
        ids = [e.id for e in first + second + third]
        assert len(set(ids)) == 5

    def test_take_clamped(self, services, clock, admin_actor) -> None:
        engine = create_db_engine("sqlite:///:memory:")
        audit = AuditTrail(engine, clock=clock, max_take=3)
        _seed(audit, clock, admin_actor)
        entries, total = audit.query(AuditQuery(take=1000))
        assert total == 5
        assert len(entries) == 3
        entries, _ = audit.query(AuditQuery(take=0, skip=-5))
        assert len(entries) == 1
        engine.dispose()


class TestCategoriesAndExport:
    def test_categories_distinct_sorted(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        assert services.audit.list_categories() == ["ApiKey", "Client", "Configuration"]

    def test_export_matches_unpaged_query(self, services, clock, admin_actor) -> None:
        _seed(services.audit, clock, admin_actor)
        q = AuditQuery(category="Client", take=500)
        entries, _ = services.audit.query(q)
        rows = services.audit.export(q)
        assert [r.id for r in rows] == [e.id for e in entries]

    def test_export_row_cap(self, clock, admin_actor) -> None:
        engine = create_db_engine("sqlite:///:memory:")
        audit = AuditTrail(engine, clock=clock, max_export_rows=2)
        _seed(audit, clock, admin_actor)
        assert len(audit.export(AuditQuery())) == 2
        engine.dispose()

    def test_registry_store_shares_engine(self, services) -> None:
        # The audit table and registry tables live in one database so a
        # mutation and its entry can share a transaction.
        assert isinstance(services.clients._store, RegistryStore)
        assert services.clients._store.engine is services.audit.engine
