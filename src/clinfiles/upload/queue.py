"""In-memory staging queue for files awaiting upload.

The queue is owned by a single user session.  It enforces the pending-file
quota at ``add()`` time and hands out immutable snapshots so that a batch in
flight is not affected by later additions or removals.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Iterator
from typing import Any

from clinfiles.exceptions import QuotaExceeded
from clinfiles.models import MAX_PENDING, FileCategory, FileDescriptor
from clinfiles.upload.payload import FilePayload

logger = logging.getLogger(__name__)


def new_temp_id() -> str:
    """Generate a queue-local identifier for a staged file."""
    return f"temp_{uuid.uuid4().hex}"


class StagingQueue:
    """Ordered collection of :class:`FileDescriptor` objects not yet sent.

    Usage::

        queue = StagingQueue()
        temp_id = queue.add(LocalFilePayload.from_path("xray.png"), "XRAY")
        batch = queue.snapshot()
        queue.remove(temp_id)
    """

    def __init__(self, max_pending: int = MAX_PENDING) -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self._max_pending = max_pending
        self._items: dict[str, FileDescriptor] = {}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, payload: FilePayload, category: Any = FileCategory.OTHER) -> str:
        """Stage *payload* under *category* and return its temp id.

        Category is validated before the quota so that a bad category never
        masks a full queue, and neither check mutates the queue.

        Raises:
            InvalidCategory: If *category* is not one of the five tags.
            QuotaExceeded: If the queue already holds ``max_pending`` files.
        """
        resolved = FileCategory.parse(category)
        if len(self._items) >= self._max_pending:
            logger.warning(
                "Staging quota reached (%d files), rejecting %s",
                self._max_pending,
                payload.filename,
            )
            raise QuotaExceeded(self._max_pending)

        temp_id = new_temp_id()
        self._items[temp_id] = FileDescriptor(
            payload=payload, category=resolved, temp_id=temp_id
        )
        logger.debug(
            "Staged %s as %s (%s, %d bytes)",
            payload.filename,
            temp_id,
            resolved.value,
            payload.size_bytes,
        )
        return temp_id

    def remove(self, temp_id: str) -> None:
        """Remove a staged file; unknown ids are ignored."""
        if self._items.pop(temp_id, None) is not None:
            logger.debug("Removed %s from staging queue", temp_id)

    def remove_many(self, temp_ids: Iterable[str]) -> None:
        for temp_id in temp_ids:
            self.remove(temp_id)

    def clear(self) -> None:
        """Drop every staged file."""
        self._items.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[FileDescriptor, ...]:
        """Return the staged files in insertion order as an immutable tuple."""
        return tuple(self._items.values())

    def get(self, temp_id: str) -> FileDescriptor | None:
        return self._items.get(temp_id)

    def size(self) -> int:
        return len(self._items)

    def can_add_more(self) -> bool:
        return len(self._items) < self._max_pending

    @property
    def max_pending(self) -> int:
        return self._max_pending

    @property
    def remaining_slots(self) -> int:
        return self._max_pending - len(self._items)

    @property
    def has_pending(self) -> bool:
        return bool(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[FileDescriptor]:
        return iter(self.snapshot())

    def __contains__(self, temp_id: object) -> bool:
        return temp_id in self._items
