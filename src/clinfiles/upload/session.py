"""Batch commit of every staged file for one patient encounter.

Composes the staging queue, the per-file coordinator and the pacer:

* Takes a snapshot of the queue so later edits do not affect the batch
* Runs up to ``max_concurrent_uploads`` three-phase sequences at once
  (``asyncio.Semaphore``), each file independent of the others
* Pauses between consecutive files on the same worker
* Removes only succeeded files from the queue; failed and cancelled ones
  stay so the user can retry or discard them
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from clinfiles.models import (
    FileDescriptor,
    OutcomeStatus,
    UploadConfig,
    UploadOutcome,
    UploadPhase,
)
from clinfiles.upload.coordinator import UploadCoordinator
from clinfiles.upload.pacing import PacingConfig, UploadPacer
from clinfiles.upload.queue import StagingQueue
from clinfiles.upload.schemas import ClinicalFileRecord

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcomes of one commit, in queue snapshot order."""

    outcomes: list[UploadOutcome] = field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return self._count(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return self._count(OutcomeStatus.CANCELLED)

    @property
    def all_succeeded(self) -> bool:
        return self.succeeded == self.total

    @property
    def records(self) -> list[ClinicalFileRecord]:
        return [o.record for o in self.outcomes if o.record is not None]

    @property
    def failures(self) -> list[UploadOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def summary(self) -> dict[str, int]:
        """Return counts for display."""
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


class BatchUploadSession:
    """Uploads a queue snapshot for one subject/encounter.

    Usage::

        session = BatchUploadSession(queue, UploadCoordinator(registrar, storage), config)
        result = await session.commit("patient-42", encounter_ref="snap-7")
        print(result.summary)

    Args:
        queue: The staging queue owned by this session.
        coordinator: Runs the three phases for each file.
        config: Supplies concurrency and pacing; defaults when omitted.
        pacer: Overrides the pacer built from *config*.
    """

    def __init__(
        self,
        queue: StagingQueue,
        coordinator: UploadCoordinator,
        config: UploadConfig | None = None,
        pacer: UploadPacer | None = None,
    ) -> None:
        config = config or UploadConfig()
        if config.max_concurrent_uploads < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")

        self._queue = queue
        self._coordinator = coordinator
        self._max_concurrent = config.max_concurrent_uploads
        self._pacer = pacer or UploadPacer(PacingConfig.from_upload_config(config))

        self._busy = False
        self._not_started = 0
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._last_outcomes: dict[str, UploadOutcome] = {}

    @property
    def queue(self) -> StagingQueue:
        return self._queue

    @property
    def is_committing(self) -> bool:
        """True while a commit or a confirmation retry is running."""
        return self._busy

    def last_outcome(self, temp_id: str) -> UploadOutcome | None:
        """Most recent outcome for *temp_id* while it is still staged."""
        return self._last_outcomes.get(temp_id)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def commit(
        self, subject_id: str, encounter_ref: str | None = None
    ) -> BatchResult:
        """Upload every file currently staged.

        Returns exactly one outcome per file in the snapshot, in snapshot
        order.  Each succeeded file leaves the queue as soon as its record
        exists, so a commit interrupted half way never re-sends those files.

        Raises:
            ValueError: If *subject_id* is empty (nothing is sent).
            RuntimeError: If a commit or confirmation retry is still running.
        """
        if not subject_id or not str(subject_id).strip():
            raise ValueError("subject_id must not be empty")
        if self._busy:
            raise RuntimeError("An upload is already in progress for this session")

        self._prune_outcomes()
        snapshot = self._queue.snapshot()
        if not snapshot:
            logger.info("No staged files to upload")
            return BatchResult()

        self._busy = True
        self._not_started = len(snapshot)
        self._cancel_events = {d.temp_id: asyncio.Event() for d in snapshot}
        semaphore = asyncio.Semaphore(self._max_concurrent)

        logger.info(
            "Uploading %d files for subject %s (encounter=%s, concurrency=%d)",
            len(snapshot),
            subject_id,
            encounter_ref,
            self._max_concurrent,
        )

        try:
            tasks = [
                self._process(descriptor, subject_id, encounter_ref, semaphore)
                for descriptor in snapshot
            ]
            outcomes = list(await asyncio.gather(*tasks))
        finally:
            self._busy = False
            self._cancel_events = {}

        result = BatchResult(outcomes=outcomes)
        logger.info(
            "Batch complete: %d succeeded, %d failed, %d cancelled of %d total",
            result.succeeded,
            result.failed,
            result.cancelled,
            result.total,
        )
        return result

    async def _process(
        self,
        descriptor: FileDescriptor,
        subject_id: str,
        encounter_ref: str | None,
        semaphore: asyncio.Semaphore,
    ) -> UploadOutcome:
        async with semaphore:
            self._not_started -= 1
            try:
                outcome = await self._coordinator.run(
                    descriptor,
                    subject_id,
                    encounter_ref,
                    cancel_event=self._cancel_events.get(descriptor.temp_id),
                )
            except Exception as exc:
                # The coordinator reports every failure inside a phase, so an
                # error here was raised before the first phase started.
                logger.exception("Upload of %s aborted before sending", descriptor.filename)
                outcome = UploadOutcome.failed(
                    descriptor, UploadPhase.REQUEST_SLOT, f"unexpected error: {exc!r}"
                )
            self._record(outcome)
            if self._not_started > 0:
                await self._pacer.wait_after(outcome)
        return outcome

    def _record(self, outcome: UploadOutcome) -> None:
        if outcome.is_success:
            self._queue.remove(outcome.temp_id)
            self._last_outcomes.pop(outcome.temp_id, None)
        else:
            self._last_outcomes[outcome.temp_id] = outcome

    def _prune_outcomes(self) -> None:
        self._last_outcomes = {
            temp_id: outcome
            for temp_id, outcome in self._last_outcomes.items()
            if temp_id in self._queue
        }

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, temp_id: str | None = None) -> bool:
        """Request cancellation of one in-flight file, or all of them.

        Files that have not reached a phase boundary yet stop at the next
        one.  Staged files outside a running commit are removed with
        ``queue.remove()`` instead.

        Returns:
            True if at least one running upload was signalled.
        """
        if temp_id is None:
            events = list(self._cancel_events.values())
        else:
            event = self._cancel_events.get(temp_id)
            events = [event] if event is not None else []

        for event in events:
            event.set()
        if events:
            logger.warning(
                "Cancellation requested for %s",
                temp_id if temp_id is not None else f"{len(events)} files",
            )
        return bool(events)

    # ------------------------------------------------------------------
    # Manual confirmation retry
    # ------------------------------------------------------------------

    async def retry_confirmation(
        self, temp_id: str, subject_id: str, encounter_ref: str | None = None
    ) -> UploadOutcome:
        """Retry phase 3 for a file whose confirmation failed.

        The file stays in the queue after a confirmation failure, so it is
        looked up there; on success it is removed.  No commit can start
        while the retry is running.

        Raises:
            KeyError: If *temp_id* is not staged.
            ValueError: If the last outcome was not a confirmation failure.
            RuntimeError: If a commit or another retry is running.
        """
        if self._busy:
            raise RuntimeError("Cannot retry confirmation while an upload is running")

        descriptor = self._queue.get(temp_id)
        if descriptor is None:
            raise KeyError(temp_id)

        last = self._last_outcomes.get(temp_id)
        if (
            last is None
            or last.status != OutcomeStatus.FAILED
            or last.phase != UploadPhase.CONFIRM_REGISTRATION
            or not last.storage_key
        ):
            raise ValueError(f"{temp_id} has no failed confirmation to retry")

        self._busy = True
        try:
            outcome = await self._coordinator.retry_confirmation(
                descriptor, last.storage_key, subject_id, encounter_ref
            )
        finally:
            self._busy = False
        self._record(outcome)
        return outcome


def build_session(
    registrar: Any,
    storage: Any,
    config: UploadConfig | None = None,
    progress: Any | None = None,
) -> BatchUploadSession:
    """Wire a queue, coordinator and session from *config*."""
    config = config or UploadConfig()
    queue = StagingQueue(max_pending=config.max_pending_files)
    coordinator = UploadCoordinator(registrar, storage, progress=progress)
    return BatchUploadSession(queue, coordinator, config)
