from __future__ import annotations


class PortalError(Exception):
    """Base class for every error the portal core raises."""


class ValidationError(PortalError):
    """Illegal transition for the current stage, or a missing selection."""


class PermissionDeniedError(ValidationError):
    """The acting role may not perform this transition."""


class ConflictError(PortalError):
    """The caller acted on a stale version of the submission."""

    def __init__(self, base: str, expected_time: int | None, current_time: int | None) -> None:
        super().__init__(
            f"Submission '{base}' changed since it was read "
            f"(expected version {expected_time}, current {current_time})."
        )
        self.base = base
        self.expected_time = expected_time
        self.current_time = current_time


class NotFoundError(PortalError):
    """Unknown base identity."""


class StorageError(PortalError):
    """Persisting the ledger failed; nothing was written."""


class CorruptLedgerError(StorageError):
    """The stored ledger cannot be parsed. The store refuses to start."""


class ExternalServiceError(PortalError):
    """The repository publisher or auth directory could not be reached."""


class AuthenticationError(PortalError):
    """Credentials were rejected by the auth provider."""
