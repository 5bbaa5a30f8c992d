from __future__ import annotations

import logging

from ppdash.core.logging import SecretRedactionFilter, redact_secrets
from ppdash.services.audit import record_event, sanitize_metadata


def test_redact_secrets_masks_credential_pairs() -> None:
    message = "token_request client_id=abc client_secret=s3cr3t scope=x access_token=eyJ.x.y"
    redacted = redact_secrets(message)
    assert "s3cr3t" not in redacted
    assert "eyJ.x.y" not in redacted
    assert "client_id=abc" in redacted
    assert "client_secret=[REDACTED]" in redacted


def test_filter_rewrites_formatted_record() -> None:
    record = logging.LogRecord(
        name="ppdash",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="posting client_secret=%s tenant_id=%s",
        args=("hunter2", "tenant-a"),
        exc_info=None,
    )
    assert SecretRedactionFilter().filter(record) is True
    assert record.getMessage() == "posting client_secret=[REDACTED] tenant_id=tenant-a"


def test_sanitize_metadata_scrubs_nested_keys() -> None:
    payload = {
        "clientSecret": "abc",
        "nested": {"Authorization": "Bearer x", "items": [{"api_key": "k", "name": "ok"}]},
        "status": "Active",
    }
    assert sanitize_metadata(payload) == {
        "clientSecret": "[REDACTED]",
        "nested": {"Authorization": "[REDACTED]", "items": [{"api_key": "[REDACTED]", "name": "ok"}]},
        "status": "Active",
    }


def test_audit_event_never_logs_secret_metadata(caplog) -> None:
    caplog.set_level(logging.INFO, logger="ppdash.audit")
    record_event(
        event_type="customer.updated",
        outcome="success",
        tenant_id="tenant-a",
        metadata={"client_secret": "hunter2", "fields": ["display_name"]},
    )
    assert "hunter2" not in caplog.text
    assert "customer.updated" in caplog.text
