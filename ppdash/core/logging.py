from __future__ import annotations

import logging
import re

from ppdash.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
# Catch key=value pairs whose key looks like a credential.
_SECRET_PAIR = re.compile(
    r"(?P<key>\b[\w.-]*(?:secret|token|password|authorization)[\w.-]*)=(?P<value>[^\s,&]+)",
    re.IGNORECASE,
)


def redact_secrets(message: str) -> str:
    # Mask secret-looking key=value pairs before they reach a handler.
    return _SECRET_PAIR.sub(lambda match: f"{match.group('key')}=[REDACTED]", message)


class SecretRedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Render args eagerly so redaction sees the final message.
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str | None = None) -> None:
    # Configure root logging once per process from settings.
    settings = get_settings()
    resolved = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    for handler in root.handlers:
        if not any(isinstance(f, SecretRedactionFilter) for f in handler.filters):
            handler.addFilter(SecretRedactionFilter())
    root.setLevel(resolved)
    # httpx logs full request URLs at INFO; keep them at WARNING.
    logging.getLogger("httpx").setLevel(logging.WARNING)
