"""Three-phase upload protocol for a single staged file.

    RequestSlot -> Transfer -> ConfirmRegistration

Phases run strictly in order and each is an awaited backend call.  The
confirmation call, which is the only thing that creates a durable record,
is reached only after storage answered the PUT with a 2xx status, so a
record can never point at a missing object.  A failure after the transfer
may leave an object without a record; such outcomes carry the storage key
so confirmation can be retried by hand.

Nothing here retries across phases and nothing raises for a phase failure:
every failure becomes an :class:`UploadOutcome` scoped to one file.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from clinfiles.models import FileDescriptor, UploadOutcome, UploadPhase, UploadState
from clinfiles.upload.fsm import UploadAttemptSM, create_fsm
from clinfiles.upload.registrar import MetadataRegistrar
from clinfiles.upload.storage import StorageGateway

logger = logging.getLogger(__name__)

# Phase to blame for an unexpected error, by the state the attempt was in
_ACTIVE_PHASES: dict[UploadState, UploadPhase] = {
    UploadState.REQUESTING_SLOT: UploadPhase.REQUEST_SLOT,
    UploadState.TRANSFERRING: UploadPhase.TRANSFER,
    UploadState.CONFIRMING: UploadPhase.CONFIRM_REGISTRATION,
}


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__


class UploadCoordinator:
    """Runs the slot -> PUT -> confirm sequence for one file at a time.

    Usage::

        coordinator = UploadCoordinator(registrar, storage)
        outcome = await coordinator.run(descriptor, subject_id="42", encounter_ref="snap-7")

    Args:
        registrar: Backend issuing slots and creating records.
        storage: Gateway performing the PUT to the pre-signed URL.
        progress: Optional tracker receiving per-file phase events.
    """

    def __init__(
        self,
        registrar: MetadataRegistrar,
        storage: StorageGateway,
        progress: Any | None = None,
    ) -> None:
        self._registrar = registrar
        self._storage = storage
        self._progress = progress

    @property
    def progress(self) -> Any | None:
        return self._progress

    @progress.setter
    def progress(self, tracker: Any | None) -> None:
        self._progress = tracker

    # ------------------------------------------------------------------
    # Full sequence
    # ------------------------------------------------------------------

    async def run(
        self,
        descriptor: FileDescriptor,
        subject_id: str,
        encounter_ref: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> UploadOutcome:
        """Execute all three phases for *descriptor*.

        Cancellation is cooperative: *cancel_event* is checked before each
        phase starts.  A PUT already in flight is allowed to finish.

        Returns:
            ``Succeeded``, ``Failed(phase, reason)`` or ``Cancelled``.
        """
        fsm = create_fsm()
        stored_key: str | None = None
        self._notify("file_started", descriptor.temp_id, descriptor.filename)

        try:
            if _is_set(cancel_event):
                return self._cancel(fsm, descriptor)

            # Phase 1: request a transfer slot (no side effects on failure)
            self._enter(fsm.request_slot, descriptor, UploadPhase.REQUEST_SLOT)
            try:
                slot = await self._registrar.request_transfer_slot(
                    subject_id,
                    descriptor.filename,
                    descriptor.content_type,
                    descriptor.category,
                    encounter_ref,
                )
            except Exception as exc:
                return self._fail(fsm, descriptor, UploadPhase.REQUEST_SLOT, _describe(exc))

            if _is_set(cancel_event):
                return self._cancel(fsm, descriptor)

            # Phase 2: PUT the bytes; anything but 2xx stops here
            self._enter(fsm.start_transfer, descriptor, UploadPhase.TRANSFER)
            try:
                result = await self._storage.put_object(
                    slot.upload_url, descriptor.payload, descriptor.content_type
                )
            except Exception as exc:
                return self._fail(fsm, descriptor, UploadPhase.TRANSFER, _describe(exc))
            if not result.ok:
                return self._fail(fsm, descriptor, UploadPhase.TRANSFER, result.reason)
            stored_key = slot.storage_key

            if _is_set(cancel_event):
                logger.warning(
                    "Cancelled %s after transfer; object %s is stored without a record",
                    descriptor.filename,
                    stored_key,
                )
                return self._cancel(fsm, descriptor, storage_key=stored_key)

            # Phase 3: register the stored object
            return await self._confirm(
                fsm, descriptor, stored_key, subject_id, encounter_ref
            )
        except Exception as exc:
            phase = _ACTIVE_PHASES.get(fsm.upload_state)
            if phase is None:
                raise
            logger.exception("Unexpected error uploading %s", descriptor.filename)
            return self._fail(
                fsm, descriptor, phase, _describe(exc), storage_key=stored_key
            )

    # ------------------------------------------------------------------
    # Manual retry of phase 3
    # ------------------------------------------------------------------

    async def retry_confirmation(
        self,
        descriptor: FileDescriptor,
        storage_key: str,
        subject_id: str,
        encounter_ref: str | None = None,
    ) -> UploadOutcome:
        """Re-run only the confirmation for an already transferred object.

        Use after a ``Failed(ConfirmRegistration)`` outcome, passing its
        ``storage_key``.  The backend still refuses keys with no object.
        """
        fsm = create_fsm("transferring")
        self._notify("file_started", descriptor.temp_id, descriptor.filename)
        logger.info(
            "Retrying confirmation of %s (key=%s)", descriptor.filename, storage_key
        )
        return await self._confirm(
            fsm, descriptor, storage_key, subject_id, encounter_ref
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _confirm(
        self,
        fsm: UploadAttemptSM,
        descriptor: FileDescriptor,
        storage_key: str,
        subject_id: str,
        encounter_ref: str | None,
    ) -> UploadOutcome:
        self._enter(fsm.start_confirmation, descriptor, UploadPhase.CONFIRM_REGISTRATION)
        try:
            record = await self._registrar.confirm_transfer(
                subject_id,
                storage_key,
                descriptor.filename,
                descriptor.content_type,
                descriptor.size_bytes,
                descriptor.category,
                encounter_ref,
            )
        except Exception as exc:
            logger.warning(
                "Object %s for %s is stored but unregistered",
                storage_key,
                descriptor.filename,
            )
            return self._fail(
                fsm,
                descriptor,
                UploadPhase.CONFIRM_REGISTRATION,
                _describe(exc),
                storage_key=storage_key,
            )

        fsm.complete()
        logger.info("Uploaded %s as record %s", descriptor.filename, record.id)
        self._notify("file_succeeded", descriptor.temp_id, descriptor.filename)
        return UploadOutcome.succeeded(descriptor, record)

    def _enter(
        self, transition: Any, descriptor: FileDescriptor, phase: UploadPhase
    ) -> None:
        transition()
        logger.debug("%s -> %s", descriptor.filename, phase.value)
        self._notify("phase_changed", descriptor.temp_id, descriptor.filename, phase)

    def _fail(
        self,
        fsm: UploadAttemptSM,
        descriptor: FileDescriptor,
        phase: UploadPhase,
        reason: str,
        storage_key: str | None = None,
    ) -> UploadOutcome:
        fsm.fail()
        logger.error("Upload of %s failed at %s: %s", descriptor.filename, phase.value, reason)
        self._notify("file_failed", descriptor.temp_id, descriptor.filename, phase, reason)
        return UploadOutcome.failed(descriptor, phase, reason, storage_key=storage_key)

    def _cancel(
        self,
        fsm: UploadAttemptSM,
        descriptor: FileDescriptor,
        storage_key: str | None = None,
    ) -> UploadOutcome:
        fsm.abort()
        logger.warning("Upload of %s cancelled", descriptor.filename)
        self._notify("file_cancelled", descriptor.temp_id, descriptor.filename)
        return UploadOutcome.cancelled(descriptor, storage_key=storage_key)

    def _notify(self, event: str, *args: Any) -> None:
        """Forward an event to the tracker; a broken tracker never fails an upload."""
        if self._progress is None:
            return
        try:
            getattr(self._progress, event)(*args)
        except Exception:
            logger.exception("Progress callback %s failed for %s", event, args[1])


def _is_set(event: asyncio.Event | None) -> bool:
    return event is not None and event.is_set()
