from __future__ import annotations


class PpdashError(Exception):
    """Base error for ppdash."""


class ConsentDeclinedError(PpdashError):
    """Tenant administrator did not grant admin consent."""

    code = "consent_declined"

    def __init__(self, description: str = "Admin consent was not granted") -> None:
        super().__init__(description)
        self.description = description


class ConsentError(PpdashError):
    """Identity platform reported an error during the consent flow."""

    def __init__(self, code: str, description: str | None = None) -> None:
        super().__init__(f"{code}: {description}" if description else code)
        self.code = code
        self.description = description


class TokenAcquisitionError(PpdashError):
    """Client-credentials token could not be acquired for a tenant scope."""

    def __init__(self, message: str, *, scope: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.scope = scope
        self.status_code = status_code


class SubFetchError(PpdashError):
    """One remote endpoint call failed; the affected dashboard section degrades to empty."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class CredentialStoreError(PpdashError):
    """Persisted credential registry is unreadable or malformed."""
