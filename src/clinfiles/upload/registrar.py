"""Metadata backend client: transfer slots, confirmations, listing, deletion.

Implements the backend half of the three-phase upload:

  1. ``POST /clinical-files/init-upload/`` -- issue a pre-signed PUT URL
     and the storage key the object will live under.
  2. (bytes go straight to storage, see :mod:`clinfiles.upload.storage`)
  3. ``POST /clinical-files/confirm-upload/`` -- create the durable record.
     The backend verifies the object exists before creating anything.

Idempotent calls (slot request, list, delete) are retried on transport
errors and 5xx responses.  Confirmation is never retried automatically:
it is the only call that creates a record.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from clinfiles.exceptions import (
    CategoryRejected,
    PermanentError,
    RateLimitError,
    RegistrarError,
    StorageObjectMissing,
    SubjectNotFound,
    TransientError,
)
from clinfiles.models import FileCategory
from clinfiles.upload.schemas import (
    ClinicalFileRecord,
    TransferSlot,
    unwrap_envelope,
    unwrap_list,
)

logger = logging.getLogger(__name__)

INIT_UPLOAD_PATH = "/clinical-files/init-upload/"
CONFIRM_UPLOAD_PATH = "/clinical-files/confirm-upload/"
BY_PATIENT_PATH = "/clinical-files/by-patient/{subject_id}/"
FILE_PATH = "/clinical-files/{file_id}/"

# Operations whose 404 means "no such subject"
_SUBJECT_SCOPED = {"request_slot", "list"}


class MetadataRegistrar(Protocol):
    """Contract for the backend calls that bracket a storage transfer."""

    async def request_transfer_slot(
        self,
        subject_id: str,
        filename: str,
        content_type: str,
        category: Any,
        encounter_ref: str | None = None,
    ) -> TransferSlot: ...

    async def confirm_transfer(
        self,
        subject_id: str,
        storage_key: str,
        filename: str,
        content_type: str,
        size_bytes: int,
        category: Any,
        encounter_ref: str | None = None,
    ) -> ClinicalFileRecord: ...

    async def list_files(
        self, subject_id: str, encounter_ref: str | None = None
    ) -> list[ClinicalFileRecord]: ...

    async def delete_file(self, file_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _error_fields(body: Any) -> set[str]:
    """Collect field names a DRF-style error body complains about."""
    if not isinstance(body, dict):
        return set()
    fields = set(body)
    for nested in ("errors", "detail", "data"):
        value = body.get(nested)
        if isinstance(value, dict):
            fields.update(value)
    return fields


def error_for_response(response: httpx.Response, operation: str) -> RegistrarError:
    """Translate a non-2xx backend response into a :class:`RegistrarError`."""
    status = response.status_code
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    message = f"{operation} failed with HTTP {status}: {str(body)[:200]}"

    if status == 429:
        return RateLimitError(message, status)
    if status >= 500:
        return TransientError(message, status)

    fields = _error_fields(body)
    if "paciente_id" in fields:
        return SubjectNotFound(message, status)
    if "category" in fields:
        return CategoryRejected(message, status)
    if operation == "confirm" and (
        "s3_key" in fields or status in (404, 409)
    ):
        return StorageObjectMissing(message, status)
    if status == 404 and operation in _SUBJECT_SCOPED:
        return SubjectNotFound(message, status)
    return PermanentError(message, status)


def _require(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{name} must not be empty")
    return str(value)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HttpMetadataRegistrar:
    """httpx client for the clinical-files backend.

    Usage::

        async with HttpMetadataRegistrar("http://localhost:8000/api", token) as api:
            slot = await api.request_transfer_slot("42", "pano.png", "image/png", "XRAY")

    Args:
        base_url: API root, e.g. ``http://localhost:8000/api``.
        api_token: Optional bearer token.
        timeout: Per-request timeout in seconds.
        max_retries: Extra attempts for idempotent calls on transient errors.
        backoff_seconds: Exponential backoff multiplier between retries.
        client: Pre-built client (tests); closed by the caller, not here.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_retries = max(0, max_retries)
        self._backoff_seconds = backoff_seconds
        self._owns_client = client is None
        if client is None:
            headers = {"Accept": "application/json"}
            if api_token:
                headers["Authorization"] = f"Bearer {api_token}"
            client = httpx.AsyncClient(
                base_url=base_url, headers=headers, timeout=timeout
            )
        self._client = client

    # ------------------------------------------------------------------
    # Phase 1: transfer slot
    # ------------------------------------------------------------------

    async def request_transfer_slot(
        self,
        subject_id: str,
        filename: str,
        content_type: str,
        category: Any,
        encounter_ref: str | None = None,
    ) -> TransferSlot:
        """Ask the backend for a pre-signed URL and storage key.

        Category and subject are validated locally first; nothing is sent
        when either is invalid.

        Raises:
            InvalidCategory: Unknown category (no request made).
            ValueError: Empty subject id or filename (no request made).
            SubjectNotFound, CategoryRejected: Backend validation errors.
            TransientError, RateLimitError: After retries are exhausted.
        """
        resolved = FileCategory.parse(category)
        payload: dict[str, Any] = {
            "paciente_id": _require(subject_id, "subject_id"),
            "filename": _require(filename, "filename"),
            "content_type": content_type,
            "category": resolved.value,
        }
        if encounter_ref is not None:
            payload["snapshot_id"] = encounter_ref

        response = await self._send(
            "POST", INIT_UPLOAD_PATH, "request_slot", retry=True, json=payload
        )
        slot = self._parse(response, "request_slot", TransferSlot)
        logger.debug(
            "Slot %s issued for %s (key=%s)", slot.transfer_id, filename, slot.storage_key
        )
        return slot

    # ------------------------------------------------------------------
    # Phase 3: confirmation
    # ------------------------------------------------------------------

    async def confirm_transfer(
        self,
        subject_id: str,
        storage_key: str,
        filename: str,
        content_type: str,
        size_bytes: int,
        category: Any,
        encounter_ref: str | None = None,
    ) -> ClinicalFileRecord:
        """Register a stored object as a durable clinical file record.

        *storage_key* must be the exact key returned with the slot.

        Raises:
            StorageObjectMissing: Backend found no object under the key.
            RegistrarError: Any other backend or transport failure.
        """
        resolved = FileCategory.parse(category)
        payload: dict[str, Any] = {
            "paciente_id": _require(subject_id, "subject_id"),
            "s3_key": _require(storage_key, "storage_key"),
            "filename": filename,
            "content_type": content_type,
            "size": size_bytes,
            "category": resolved.value,
        }
        if encounter_ref is not None:
            payload["snapshot_id"] = encounter_ref

        response = await self._send(
            "POST", CONFIRM_UPLOAD_PATH, "confirm", retry=False, json=payload
        )
        record = self._parse(response, "confirm", ClinicalFileRecord)
        logger.info("Registered %s as file %s", filename, record.id)
        return record

    # ------------------------------------------------------------------
    # Listing and deletion
    # ------------------------------------------------------------------

    async def list_files(
        self, subject_id: str, encounter_ref: str | None = None
    ) -> list[ClinicalFileRecord]:
        """Return the subject's records, optionally for one encounter only."""
        params = {"snapshot_id": encounter_ref} if encounter_ref else None
        path = BY_PATIENT_PATH.format(subject_id=_require(subject_id, "subject_id"))
        response = await self._send("GET", path, "list", retry=True, params=params)
        try:
            items = unwrap_list(response.json())
            return [ClinicalFileRecord.model_validate(item) for item in items]
        except (ValueError, ValidationError) as exc:
            raise PermanentError(f"list returned a malformed body: {exc}") from exc

    async def delete_file(self, file_id: str) -> None:
        path = FILE_PATH.format(file_id=_require(file_id, "file_id"))
        await self._send("DELETE", path, "delete", retry=True)
        logger.info("Deleted clinical file %s", file_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpMetadataRegistrar:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        retry: bool,
        **kwargs: Any,
    ) -> httpx.Response:
        if not retry or self._max_retries == 0:
            return await self._send_once(method, path, operation, **kwargs)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=10),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self._send_once(method, path, operation, **kwargs)

        raise RuntimeError(f"{operation}: retry loop ended without a response")

    async def _send_once(
        self, method: str, path: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientError(
                f"{operation} transport error: {type(exc).__name__}: {exc}"
            ) from exc

        if response.is_success:
            return response

        error = error_for_response(response, operation)
        if isinstance(error, RateLimitError):
            logger.warning("Rate limited on %s: %s", operation, error)
        raise error

    @staticmethod
    def _parse(response: httpx.Response, operation: str, model: type) -> Any:
        try:
            return model.model_validate(unwrap_envelope(response.json()))
        except (ValueError, ValidationError) as exc:
            raise PermanentError(
                f"{operation} returned a malformed body: {exc}"
            ) from exc
