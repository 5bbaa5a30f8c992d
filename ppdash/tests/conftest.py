from __future__ import annotations

import pytest

from ppdash.core.config import get_settings
from ppdash.persistence.credential_store import reset_credential_store
from ppdash.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def isolate_process_state(tmp_path, monkeypatch) -> None:
    # Point the shared store at a per-test file and start from empty telemetry.
    monkeypatch.setenv("CREDENTIALS_STORE_PATH", str(tmp_path / "customers.json"))
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    get_settings.cache_clear()
    reset_credential_store()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_credential_store()
