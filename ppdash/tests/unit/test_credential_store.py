from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
import json

import pytest

from ppdash.core.errors import CredentialStoreError
from ppdash.domain.models import ONBOARDING_ACTIVE, ONBOARDING_PENDING, TenantCredential
from ppdash.persistence import credential_store as store_module
from ppdash.persistence.credential_store import CredentialStore, get_credential_store


def _credential(tenant_id: str = "tenant-a", **overrides) -> TenantCredential:
    values = {
        "tenant_id": tenant_id,
        "display_name": "Contoso",
        "client_id": "client-123",
        "client_secret": "secret-xyz",
    }
    values.update(overrides)
    return TenantCredential(**values)


def test_missing_file_is_initialized_empty(tmp_path) -> None:
    # A fresh deployment starts with an empty registry on disk.
    path = tmp_path / "nested" / "customers.json"
    store = CredentialStore(path)
    assert store.list_all() == []
    assert json.loads(path.read_text(encoding="utf-8")) == []


def test_add_assigns_fresh_id_and_timestamp(tmp_path) -> None:
    # Caller supplied ids and timestamps are ignored on insert.
    store = CredentialStore(tmp_path / "customers.json")
    before = datetime.now(timezone.utc)
    first = store.add(_credential(customer_id="caller-id", onboarded_at=datetime(2000, 1, 1, tzinfo=timezone.utc)))
    second = store.add(_credential("tenant-b"))
    assert first.customer_id and first.customer_id != "caller-id"
    assert first.customer_id != second.customer_id
    assert first.onboarded_at is not None and first.onboarded_at >= before
    assert first.onboarded_at.tzinfo is not None


def test_lookup_by_id_and_tenant(tmp_path) -> None:
    store = CredentialStore(tmp_path / "customers.json")
    first = store.add(_credential("tenant-a", display_name="First"))
    store.add(_credential("tenant-a", display_name="Second"))
    assert store.get_by_id(first.customer_id).display_name == "First"
    # Duplicate tenant ids resolve to the earliest inserted record.
    assert store.get_by_tenant_id("tenant-a").customer_id == first.customer_id
    assert store.get_by_id("missing") is None
    assert store.get_by_tenant_id("missing") is None


def test_returned_records_are_copies(tmp_path) -> None:
    # Mutating a returned record must not change stored state.
    store = CredentialStore(tmp_path / "customers.json")
    added = store.add(_credential())
    added.display_name = "Changed"
    fetched = store.get_by_id(added.customer_id)
    fetched.onboarding_status = ONBOARDING_ACTIVE
    stored = store.get_by_id(added.customer_id)
    assert stored.display_name == "Contoso"
    assert stored.onboarding_status == ONBOARDING_PENDING


def test_update_changes_mutable_fields_only(tmp_path) -> None:
    store = CredentialStore(tmp_path / "customers.json")
    added = store.add(_credential())
    changed = replace(
        added,
        display_name="Renamed",
        onboarding_status=ONBOARDING_ACTIVE,
        onboarded_at=datetime(2001, 1, 1, tzinfo=timezone.utc),
    )
    updated = store.update(changed)
    assert updated.display_name == "Renamed"
    assert updated.onboarding_status == ONBOARDING_ACTIVE
    # The onboarding timestamp is set once, on insert.
    assert updated.onboarded_at == added.onboarded_at


def test_update_unknown_record_is_noop(tmp_path) -> None:
    store = CredentialStore(tmp_path / "customers.json")
    store.add(_credential())
    snapshot = (tmp_path / "customers.json").read_text(encoding="utf-8")
    assert store.update(_credential(customer_id="missing")) is None
    assert store.update(_credential()) is None
    assert (tmp_path / "customers.json").read_text(encoding="utf-8") == snapshot


def test_update_tenant_id_moves_index(tmp_path) -> None:
    store = CredentialStore(tmp_path / "customers.json")
    added = store.add(_credential("tenant-a"))
    store.update(replace(added, tenant_id="tenant-b"))
    assert store.get_by_tenant_id("tenant-a") is None
    assert store.get_by_tenant_id("tenant-b").customer_id == added.customer_id


def test_delete_removes_record_and_unknown_is_noop(tmp_path) -> None:
    store = CredentialStore(tmp_path / "customers.json")
    added = store.add(_credential())
    assert store.delete("missing") is False
    assert store.delete(added.customer_id) is True
    assert store.get_by_id(added.customer_id) is None
    assert store.get_by_tenant_id("tenant-a") is None
    assert store.delete(added.customer_id) is False


def test_mutations_persist_across_instances(tmp_path) -> None:
    # Each mutation is durable before the call returns.
    path = tmp_path / "customers.json"
    store = CredentialStore(path)
    kept = store.add(_credential("tenant-a"))
    dropped = store.add(_credential("tenant-b"))
    store.update(replace(kept, onboarding_status=ONBOARDING_ACTIVE))
    store.delete(dropped.customer_id)

    reloaded = CredentialStore(path)
    records = reloaded.list_all()
    assert [record.customer_id for record in records] == [kept.customer_id]
    assert records[0].onboarding_status == ONBOARDING_ACTIVE
    assert records[0].client_secret == "secret-xyz"
    assert records[0].onboarded_at == kept.onboarded_at


def test_persisted_file_uses_camel_case_keys(tmp_path) -> None:
    path = tmp_path / "customers.json"
    store = CredentialStore(path)
    added = store.add(_credential())
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload == [
        {
            "customerId": added.customer_id,
            "tenantId": "tenant-a",
            "displayName": "Contoso",
            "clientId": "client-123",
            "clientSecret": "secret-xyz",
            "onboardedAt": added.onboarded_at.isoformat(),
            "onboardingStatus": ONBOARDING_PENDING,
        }
    ]


def test_empty_file_loads_as_empty_registry(tmp_path) -> None:
    path = tmp_path / "customers.json"
    path.write_text("", encoding="utf-8")
    assert CredentialStore(path).list_all() == []


@pytest.mark.parametrize("content", ["{not json", '{"customerId": "x"}', '[{"tenantId": "t"}]'])
def test_malformed_file_raises(tmp_path, content: str) -> None:
    # Corrupt registries fail loudly instead of being overwritten.
    path = tmp_path / "customers.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(CredentialStoreError):
        CredentialStore(path)
    assert path.read_text(encoding="utf-8") == content


def test_concurrent_adds_are_serialized(tmp_path) -> None:
    # Parallel writers must neither lose records nor reuse ids.
    path = tmp_path / "customers.json"
    store = CredentialStore(path)
    with ThreadPoolExecutor(max_workers=8) as pool:
        added = list(pool.map(lambda idx: store.add(_credential(f"tenant-{idx}")), range(40)))
    ids = {record.customer_id for record in added}
    assert len(ids) == 40
    assert {record.customer_id for record in CredentialStore(path).list_all()} == ids


def test_secret_is_hidden_from_repr() -> None:
    assert "secret-xyz" not in repr(_credential())


def test_process_store_uses_configured_path(tmp_path) -> None:
    # The conftest points the shared store at a per-test file.
    store = get_credential_store()
    assert store is get_credential_store()
    assert store.path == tmp_path / "customers.json"


def test_duplicate_customer_ids_in_file_raise(tmp_path) -> None:
    path = tmp_path / "customers.json"
    record = _credential(customer_id="dup-1").to_dict()
    path.write_text(json.dumps([record, {**record, "tenantId": "tenant-b"}]), encoding="utf-8")
    with pytest.raises(CredentialStoreError):
        CredentialStore(path)


def test_failed_write_leaves_store_unchanged(tmp_path, monkeypatch) -> None:
    # A mutation that cannot reach disk must not be served from memory either.
    path = tmp_path / "customers.json"
    store = CredentialStore(path)
    kept = store.add(_credential("tenant-a"))
    snapshot = path.read_text(encoding="utf-8")

    def _disk_full(*_args, **_kwargs) -> None:
        raise OSError("disk full")

    real_replace = store_module.os.replace
    monkeypatch.setattr(store_module.os, "replace", _disk_full)
    with pytest.raises(OSError):
        store.add(_credential("tenant-b"))
    with pytest.raises(OSError):
        store.update(replace(kept, display_name="Renamed"))
    with pytest.raises(OSError):
        store.delete(kept.customer_id)
    with pytest.raises(OSError):
        store.activate_or_add("tenant-a", lambda: _credential("tenant-a"))

    assert [record.customer_id for record in store.list_all()] == [kept.customer_id]
    assert store.get_by_id(kept.customer_id).display_name == "Contoso"
    assert store.get_by_id(kept.customer_id).onboarding_status == ONBOARDING_PENDING
    assert store.get_by_tenant_id("tenant-b") is None
    assert path.read_text(encoding="utf-8") == snapshot
    assert sorted(p.name for p in tmp_path.iterdir()) == ["customers.json"]

    # The next successful write must not carry the failed changes along.
    monkeypatch.setattr(store_module.os, "replace", real_replace)
    store.add(_credential("tenant-c"))
    reloaded = CredentialStore(path)
    assert [record.tenant_id for record in reloaded.list_all()] == ["tenant-a", "tenant-c"]


def test_activate_or_add_creates_then_activates(tmp_path) -> None:
    store = CredentialStore(tmp_path / "customers.json")
    created, was_created = store.activate_or_add(
        "tenant-a", lambda: _credential("tenant-a", onboarding_status=ONBOARDING_ACTIVE)
    )
    again, was_created_again = store.activate_or_add("tenant-a", lambda: pytest.fail("factory must not run"))
    assert was_created is True
    assert was_created_again is False
    assert again.customer_id == created.customer_id
    assert len(store.list_all()) == 1

    pending = store.add(_credential("tenant-b"))
    activated, _ = store.activate_or_add("tenant-b", lambda: pytest.fail("factory must not run"))
    assert activated.customer_id == pending.customer_id
    assert CredentialStore(tmp_path / "customers.json").get_by_id(pending.customer_id).onboarding_status == (
        ONBOARDING_ACTIVE
    )
