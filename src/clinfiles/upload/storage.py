"""Direct transfer of file bytes to object storage via pre-signed URLs.

The storage endpoint (S3, MinIO, ...) is addressed only through the URL the
metadata backend issued.  One PUT of the full body per slot; there is no
chunking and no resume.  Outcomes are returned rather than raised so the
coordinator can attribute every failure to the transfer phase.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from clinfiles.upload.payload import FilePayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    """Result of a single PUT to a pre-signed URL.

    Attributes:
        ok: True only for a 2xx response.
        status_code: HTTP status, or ``None`` on transport failure.
        error: Human-readable reason when ``ok`` is False.
    """

    ok: bool
    status_code: int | None = None
    error: str | None = None

    @property
    def reason(self) -> str:
        if self.ok:
            return ""
        if self.error:
            return self.error
        return f"storage returned HTTP {self.status_code}"


class StorageGateway(Protocol):
    """Contract for writing one object to a pre-signed URL."""

    async def put_object(
        self, upload_url: str, payload: FilePayload, content_type: str
    ) -> TransferResult: ...


class HttpStorageGateway:
    """httpx-based :class:`StorageGateway`.

    Uses its own client with no default headers: the pre-signed URL is the
    only credential and API tokens must not leak to the storage host.

    Usage::

        async with HttpStorageGateway(timeout=300) as storage:
            result = await storage.put_object(slot.upload_url, payload, "image/png")
    """

    def __init__(
        self,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def put_object(
        self, upload_url: str, payload: FilePayload, content_type: str
    ) -> TransferResult:
        """PUT the whole payload to *upload_url* with *content_type*."""
        try:
            body = await payload.read()
        except OSError as exc:
            logger.error("Could not read %s: %s", payload.filename, exc)
            return TransferResult(ok=False, error=f"could not read file: {exc}")

        try:
            response = await self._client.put(
                upload_url,
                content=body,
                headers={"Content-Type": content_type},
            )
        except httpx.HTTPError as exc:
            logger.error("Transfer of %s failed: %s", payload.filename, exc)
            return TransferResult(
                ok=False, error=f"transport error: {type(exc).__name__}: {exc}"
            )

        if response.is_success:
            logger.debug(
                "Stored %s (%d bytes, HTTP %d)",
                payload.filename,
                len(body),
                response.status_code,
            )
            return TransferResult(ok=True, status_code=response.status_code)

        logger.error(
            "Storage rejected %s with HTTP %d", payload.filename, response.status_code
        )
        return TransferResult(
            ok=False,
            status_code=response.status_code,
            error=f"storage returned HTTP {response.status_code}",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpStorageGateway:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
