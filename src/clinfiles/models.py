"""Data models and enums for the clinical file attachment pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from clinfiles.exceptions import InvalidCategory

if TYPE_CHECKING:
    from clinfiles.upload.payload import FilePayload
    from clinfiles.upload.schemas import ClinicalFileRecord


MAX_PENDING = 10


class FileCategory(str, Enum):
    """Closed set of clinical file categories.

    Member values are the tags the backend stores.
    """

    XRAY = "XRAY"
    LAB = "LAB"
    PHOTO = "PHOTO"
    MODEL_3D = "3D"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> FileCategory:
        """Resolve *value* to a member or raise :class:`InvalidCategory`.

        Accepts a member, a wire value (``"3D"``), a member name
        (``"MODEL_3D"``) or a display label (``"X-RAY"``, ``"3D-MODEL"``).
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidCategory(value)

        key = value.strip().upper()
        if key in _CATEGORY_ALIASES:
            return _CATEGORY_ALIASES[key]
        raise InvalidCategory(value)


_CATEGORY_ALIASES: dict[str, FileCategory] = {
    **{member.value: member for member in FileCategory},
    **{member.name: member for member in FileCategory},
    "X-RAY": FileCategory.XRAY,
    "3D-MODEL": FileCategory.MODEL_3D,
}


class UploadPhase(str, Enum):
    """The three phases of a single file upload, in execution order."""

    REQUEST_SLOT = "request_slot"
    TRANSFER = "transfer"
    CONFIRM_REGISTRATION = "confirm_registration"


class UploadState(str, Enum):
    """Lifecycle states of one upload attempt (see ``upload.fsm``)."""

    QUEUED = "queued"
    REQUESTING_SLOT = "requesting_slot"
    TRANSFERRING = "transferring"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OutcomeStatus(str, Enum):
    """Terminal status reported for a staged file."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FileDescriptor:
    """A user-selected file waiting in the staging queue.

    ``temp_id`` addresses the file in the queue and UI only; it is never
    sent to the backend.
    """

    payload: FilePayload
    category: FileCategory
    temp_id: str

    @property
    def filename(self) -> str:
        return self.payload.filename

    @property
    def content_type(self) -> str:
        return self.payload.content_type

    @property
    def size_bytes(self) -> int:
        return self.payload.size_bytes


@dataclass(frozen=True)
class UploadOutcome:
    """Terminal result of processing one :class:`FileDescriptor`.

    Exactly one of the shapes below is used:

    * ``SUCCEEDED`` -- ``record`` holds the durable record.
    * ``FAILED`` -- ``phase`` and ``reason`` say where and why.
    * ``CANCELLED`` -- user abort, no record was created.

    ``storage_key`` is set when bytes may already be in storage without a
    record (confirmation failed, or cancel arrived after the transfer).
    """

    status: OutcomeStatus
    temp_id: str
    filename: str
    record: ClinicalFileRecord | None = None
    phase: UploadPhase | None = None
    reason: str | None = None
    storage_key: str | None = None

    @classmethod
    def succeeded(
        cls, descriptor: FileDescriptor, record: ClinicalFileRecord
    ) -> UploadOutcome:
        return cls(
            status=OutcomeStatus.SUCCEEDED,
            temp_id=descriptor.temp_id,
            filename=descriptor.filename,
            record=record,
        )

    @classmethod
    def failed(
        cls,
        descriptor: FileDescriptor,
        phase: UploadPhase,
        reason: str,
        storage_key: str | None = None,
    ) -> UploadOutcome:
        return cls(
            status=OutcomeStatus.FAILED,
            temp_id=descriptor.temp_id,
            filename=descriptor.filename,
            phase=phase,
            reason=reason,
            storage_key=storage_key,
        )

    @classmethod
    def cancelled(
        cls, descriptor: FileDescriptor, storage_key: str | None = None
    ) -> UploadOutcome:
        return cls(
            status=OutcomeStatus.CANCELLED,
            temp_id=descriptor.temp_id,
            filename=descriptor.filename,
            storage_key=storage_key,
        )

    @property
    def is_success(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    @property
    def needs_new_transfer(self) -> bool:
        """True when a retry must request a new slot and re-send the bytes.

        Confirmation failures can instead be retried with the existing
        ``storage_key``.
        """
        if self.status != OutcomeStatus.FAILED:
            return False
        return self.phase != UploadPhase.CONFIRM_REGISTRATION


@dataclass
class UploadConfig:
    """Configuration for the attachment upload pipeline.

    Controls the backend endpoint, staging quota, concurrency, HTTP
    timeouts, retry count and the pause between consecutive files.
    """

    api_base_url: str = "http://localhost:8000/api"
    api_token: str | None = None
    max_pending_files: int = MAX_PENDING
    max_concurrent_uploads: int = 3
    request_timeout_seconds: float = 30.0
    transfer_timeout_seconds: float = 300.0
    max_retries: int = 3
    success_delay_seconds: float = 0.5
    failure_delay_seconds: float = 1.0
