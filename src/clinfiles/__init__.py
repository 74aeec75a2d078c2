"""Clinical file attachments: staged, pre-signed, confirmed uploads."""

__version__ = "0.1.0"

from clinfiles.exceptions import InvalidCategory, QuotaExceeded
from clinfiles.models import (
    MAX_PENDING,
    FileCategory,
    FileDescriptor,
    OutcomeStatus,
    UploadConfig,
    UploadOutcome,
    UploadPhase,
    UploadState,
)

__all__ = [
    "MAX_PENDING",
    "FileCategory",
    "FileDescriptor",
    "InvalidCategory",
    "OutcomeStatus",
    "QuotaExceeded",
    "UploadConfig",
    "UploadOutcome",
    "UploadPhase",
    "UploadState",
    "__version__",
]
