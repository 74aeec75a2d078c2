"""Exception hierarchy for the clinical file attachment pipeline.

Local validation errors (``QuotaExceeded``, ``InvalidCategory``) are raised
before any network call.  Backend errors derive from :class:`RegistrarError`
so callers can tell a rejected subject apart from a rejected category or a
confirmation for an object that never reached storage.
"""

from __future__ import annotations


class QuotaExceeded(Exception):
    """Raised by ``StagingQueue.add()`` when the queue is already full."""

    def __init__(self, max_pending: int) -> None:
        super().__init__(
            f"Only {max_pending} files may be staged at once; "
            "remove a queued file first"
        )
        self.max_pending = max_pending


class InvalidCategory(ValueError):
    """Raised when a category is not one of the five known tags."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Unknown file category: {value!r}")
        self.value = value


# ---------------------------------------------------------------------------
# Backend errors
# ---------------------------------------------------------------------------


class RegistrarError(Exception):
    """Base class for errors returned by the metadata backend."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientError(RegistrarError):
    """Transport failure or 5xx response that may succeed on retry."""


class RateLimitError(RegistrarError):
    """Raised when the backend returns 429."""


class PermanentError(RegistrarError):
    """Raised on 4xx responses that should not be retried."""


class SubjectNotFound(PermanentError):
    """The patient/subject id was rejected by the backend."""


class CategoryRejected(PermanentError):
    """The backend refused the file category."""


class StorageObjectMissing(PermanentError):
    """Confirmation refused because no object exists under the storage key."""
