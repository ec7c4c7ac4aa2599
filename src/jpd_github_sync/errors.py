"""Exception hierarchy for the sync engine.

Errors are grouped by how far they are allowed to travel:

- ``FatalSyncError`` aborts a whole pass before any mutation
  (rejected credentials, unusable configuration).
- ``RecordError`` aborts the reconciliation of one record; the engine
  logs it with the record key and carries on with the rest of the pass.
- ``RateLimitExhaustedError`` is raised by the retry wrapper once its
  retry budget is spent on a rate-limited call.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by jpd_github_sync."""


class FatalSyncError(SyncError):
    """An error that must stop the pass before anything is written."""


class CredentialError(FatalSyncError):
    """Credentials were rejected by one of the two trackers.

    Attributes:
        service: ``"jpd"`` or ``"github"``.
    """

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"{service}: {message}")


class ConfigError(FatalSyncError):
    """Configuration could not be loaded or did not validate."""


class RecordError(SyncError):
    """Reconciliation of a single record failed.

    Attributes:
        record_key: Upstream key of the record, when known.
    """

    def __init__(self, message: str, record_key: str | None = None) -> None:
        self.record_key = record_key
        super().__init__(message)


class MissingFieldError(RecordError):
    """A field required to build the downstream issue resolved to nothing."""


class TemplateError(RecordError):
    """A ``{{ }}`` template could not be rendered."""


class CustomFunctionError(RecordError):
    """A user transform function could not be loaded or raised.

    Attributes:
        path: The function reference from the mapping config.
    """

    def __init__(
        self, path: str, message: str, record_key: str | None = None
    ) -> None:
        self.path = path
        super().__init__(
            f"Custom transform '{path}' failed: {message}", record_key
        )


class RateLimitExhaustedError(SyncError):
    """Retries were exhausted while the remote kept rate-limiting us.

    Attributes:
        original: The last error raised by the wrapped operation.
        attempts: Total number of attempts made (first call included).
    """

    def __init__(self, original: BaseException, attempts: int) -> None:
        self.original = original
        self.attempts = attempts
        super().__init__(
            f"Rate limit still in effect after {attempts} attempts: {original}"
        )
