from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import tempfile
import threading
from typing import Callable
from uuid import uuid4

from ppdash.core.config import get_settings
from ppdash.core.errors import CredentialStoreError
from ppdash.domain.models import ONBOARDING_ACTIVE, TenantCredential


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """File-backed registry of tenant credentials.

    Every operation, reads included, runs under one lock. Each mutation
    rewrites the whole file before returning, and in-memory state only
    changes after that write succeeds. Records handed out are copies,
    so callers must go through ``update`` to change stored state.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._records: dict[str, TenantCredential] = {}
        # tenant id -> customer ids in insertion order; tenant ids are not unique.
        self._by_tenant: dict[str, list[str]] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        with self._lock:
            if not self._path.exists():
                logger.info("credential_store_initialized path=%s", self._path)
                self._save_locked({})
                return
            raw = self._path.read_text(encoding="utf-8")
            try:
                payload = json.loads(raw) if raw.strip() else []
                if not isinstance(payload, list):
                    raise ValueError("expected a JSON array of credential records")
                records = [TenantCredential.from_dict(item) for item in payload]
            except (ValueError, TypeError, AttributeError) as exc:
                raise CredentialStoreError(f"Credential store {self._path} is malformed: {exc}") from exc
            loaded: dict[str, TenantCredential] = {}
            for record in records:
                if not record.customer_id:
                    raise CredentialStoreError(f"Credential store {self._path} has a record without customerId")
                if record.customer_id in loaded:
                    raise CredentialStoreError(
                        f"Credential store {self._path} has duplicate customerId {record.customer_id}"
                    )
                loaded[record.customer_id] = record
            self._commit_locked(loaded)
            logger.info("credential_store_loaded path=%s records=%s", self._path, len(self._records))

    def _save_locked(self, records: dict[str, TenantCredential]) -> None:
        # Rewrite the full file through a temp file so readers never see a partial write.
        payload = json.dumps([record.to_dict() for record in records.values()], indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _commit_locked(self, records: dict[str, TenantCredential]) -> None:
        # Swap in state that is already on disk; the tenant index follows insertion order.
        by_tenant: dict[str, list[str]] = {}
        for customer_id, record in records.items():
            by_tenant.setdefault(record.tenant_id, []).append(customer_id)
        self._records = records
        self._by_tenant = by_tenant

    def _persist_locked(self, records: dict[str, TenantCredential]) -> None:
        # Memory only changes once the file write succeeded.
        self._save_locked(records)
        self._commit_locked(records)

    def _first_for_tenant_locked(self, tenant_id: str) -> TenantCredential | None:
        ids = self._by_tenant.get(tenant_id)
        return self._records[ids[0]] if ids else None

    def _new_record_locked(self, record: TenantCredential) -> TenantCredential:
        stored = replace(record, customer_id=str(uuid4()), onboarded_at=_utc_now())
        # uuid4 collisions are practically impossible, but ids must never be reused.
        while stored.customer_id in self._records:
            stored = replace(stored, customer_id=str(uuid4()))
        return stored

    def list_all(self) -> list[TenantCredential]:
        with self._lock:
            return [replace(record) for record in self._records.values()]

    def get_by_id(self, customer_id: str) -> TenantCredential | None:
        with self._lock:
            record = self._records.get(customer_id)
            return replace(record) if record else None

    def get_by_tenant_id(self, tenant_id: str) -> TenantCredential | None:
        # Earliest inserted record wins when a tenant id appears more than once.
        with self._lock:
            record = self._first_for_tenant_locked(tenant_id)
            return replace(record) if record else None

    def add(self, record: TenantCredential) -> TenantCredential:
        with self._lock:
            stored = self._new_record_locked(record)
            self._persist_locked({**self._records, stored.customer_id: stored})
            logger.info(
                "credential_added customer_id=%s tenant_id=%s status=%s",
                stored.customer_id,
                stored.tenant_id,
                stored.onboarding_status,
            )
            return replace(stored)

    def update(self, record: TenantCredential) -> TenantCredential | None:
        with self._lock:
            existing = self._records.get(record.customer_id) if record.customer_id else None
            if existing is None:
                return None
            updated = replace(
                existing,
                display_name=record.display_name,
                tenant_id=record.tenant_id,
                client_id=record.client_id,
                client_secret=record.client_secret,
                onboarding_status=record.onboarding_status,
            )
            self._persist_locked({**self._records, updated.customer_id: updated})
            logger.info(
                "credential_updated customer_id=%s tenant_id=%s status=%s",
                updated.customer_id,
                updated.tenant_id,
                updated.onboarding_status,
            )
            return replace(updated)

    def activate_or_add(
        self,
        tenant_id: str,
        factory: Callable[[], TenantCredential],
    ) -> tuple[TenantCredential, bool]:
        """Activate the tenant's record, or create one from ``factory`` if none exists.

        Lookup and write happen under one hold of the lock, so concurrent
        callbacks for the same tenant end up with a single record. Returns the
        stored record and whether it was created.
        """
        with self._lock:
            existing = self._first_for_tenant_locked(tenant_id)
            if existing is not None:
                if existing.onboarding_status != ONBOARDING_ACTIVE:
                    existing = replace(existing, onboarding_status=ONBOARDING_ACTIVE)
                    self._persist_locked({**self._records, existing.customer_id: existing})
                    logger.info("credential_activated customer_id=%s tenant_id=%s", existing.customer_id, tenant_id)
                return replace(existing), False
            stored = self._new_record_locked(replace(factory(), tenant_id=tenant_id))
            self._persist_locked({**self._records, stored.customer_id: stored})
            logger.info(
                "credential_added customer_id=%s tenant_id=%s status=%s",
                stored.customer_id,
                stored.tenant_id,
                stored.onboarding_status,
            )
            return replace(stored), True

    def delete(self, customer_id: str) -> bool:
        with self._lock:
            existing = self._records.get(customer_id)
            if existing is None:
                return False
            self._persist_locked({key: value for key, value in self._records.items() if key != customer_id})
            logger.info("credential_deleted customer_id=%s tenant_id=%s", customer_id, existing.tenant_id)
            return True


_store: CredentialStore | None = None
_store_lock = threading.Lock()


def get_credential_store() -> CredentialStore:
    # Share one store per process so the lock actually serializes access.
    global _store
    with _store_lock:
        if _store is None:
            _store = CredentialStore(get_settings().credentials_store_path)
        return _store


def reset_credential_store() -> None:
    # Allow tests to point the store at a fresh path after tweaking settings.
    global _store
    with _store_lock:
        _store = None
