"""Shared pytest fixtures for the clinical file upload tests.

Provides in-memory fakes for the metadata backend and object storage that
share a single call log, so tests can assert on the exact order of
slot requests, PUTs and confirmations across files.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timezone

import pytest

from clinfiles.exceptions import StorageObjectMissing, SubjectNotFound
from clinfiles.models import FileCategory, UploadConfig
from clinfiles.upload.coordinator import UploadCoordinator
from clinfiles.upload.payload import InMemoryPayload
from clinfiles.upload.queue import StagingQueue
from clinfiles.upload.schemas import ClinicalFileRecord, TransferSlot
from clinfiles.upload.session import BatchUploadSession
from clinfiles.upload.storage import TransferResult


class FakeStorage:
    """Object store reachable only through issued upload URLs."""

    def __init__(self, calls: list[tuple]) -> None:
        self.calls = calls
        self.objects: dict[str, bytes] = {}
        self.fail_status: dict[str, int] = {}  # filename -> HTTP status
        self.raise_for: dict[str, Exception] = {}  # filename -> exception
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_put = None  # optional callback(filename)

    async def put_object(self, upload_url, payload, content_type):
        self.calls.append(("put", payload.filename, upload_url))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.on_put is not None:
                self.on_put(payload.filename)
            if payload.filename in self.raise_for:
                raise self.raise_for[payload.filename]
            status = self.fail_status.get(payload.filename)
            if status is not None:
                return TransferResult(
                    ok=False, status_code=status, error=f"storage returned HTTP {status}"
                )
            self.objects[upload_url] = await payload.read()
            return TransferResult(ok=True, status_code=200)
        finally:
            self.in_flight -= 1


class FakeRegistrar:
    """Metadata backend that only registers objects actually stored."""

    def __init__(self, calls: list[tuple], storage: FakeStorage) -> None:
        self.calls = calls
        self.storage = storage
        self.slots: dict[str, TransferSlot] = {}
        self.records: list[ClinicalFileRecord] = []
        self.slot_errors: dict[str, Exception] = {}  # filename -> exception
        self.confirm_errors: dict[str, Exception] = {}  # filename -> exception
        self.known_subjects: set[str] | None = None
        self.confirm_delay = 0.0
        self._ids = itertools.count(1)

    async def request_transfer_slot(
        self, subject_id, filename, content_type, category, encounter_ref=None
    ):
        self.calls.append(("request_slot", filename))
        FileCategory.parse(category)
        if self.known_subjects is not None and subject_id not in self.known_subjects:
            raise SubjectNotFound(f"unknown subject {subject_id}", 404)
        if filename in self.slot_errors:
            raise self.slot_errors[filename]
        n = next(self._ids)
        slot = TransferSlot(
            upload_url=f"https://storage.test/bucket/obj-{n}?sig=abc",
            storage_key=f"clinical/{subject_id}/obj-{n}",
            transfer_id=f"xfer-{n}",
        )
        self.slots[slot.storage_key] = slot
        return slot

    async def confirm_transfer(
        self,
        subject_id,
        storage_key,
        filename,
        content_type,
        size_bytes,
        category,
        encounter_ref=None,
    ):
        self.calls.append(("confirm", filename, storage_key))
        if self.confirm_delay:
            await asyncio.sleep(self.confirm_delay)
        if filename in self.confirm_errors:
            raise self.confirm_errors[filename]
        slot = self.slots.get(storage_key)
        if slot is None or slot.upload_url not in self.storage.objects:
            raise StorageObjectMissing(f"no object for {storage_key}", 409)
        record = ClinicalFileRecord(
            id=f"file-{len(self.records) + 1}",
            subject_id=subject_id,
            encounter_ref=encounter_ref,
            original_filename=filename,
            mime_type=content_type,
            size_bytes=size_bytes,
            category=FileCategory.parse(category),
            created_at=datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc),
            view_url=f"https://api.test/files/{storage_key}",
            download_url=f"https://api.test/files/{storage_key}?download=1",
        )
        self.records.append(record)
        return record

    async def list_files(self, subject_id, encounter_ref=None):
        return [
            r
            for r in self.records
            if r.subject_id == subject_id
            and (encounter_ref is None or r.encounter_ref == encounter_ref)
        ]

    async def delete_file(self, file_id):
        self.records = [r for r in self.records if r.id != file_id]


def _payload(name: str, data: bytes = b"\x89PNG fake image bytes") -> InMemoryPayload:
    return InMemoryPayload(name, data)


@pytest.fixture
def make_payload():
    """Factory for small in-memory payloads: ``make_payload("pano.png")``."""
    return _payload


@pytest.fixture
def call_log() -> list[tuple]:
    return []


@pytest.fixture
def storage(call_log: list[tuple]) -> FakeStorage:
    return FakeStorage(call_log)


@pytest.fixture
def registrar(call_log: list[tuple], storage: FakeStorage) -> FakeRegistrar:
    return FakeRegistrar(call_log, storage)


@pytest.fixture
def coordinator(registrar: FakeRegistrar, storage: FakeStorage) -> UploadCoordinator:
    return UploadCoordinator(registrar, storage)


@pytest.fixture
def queue() -> StagingQueue:
    return StagingQueue()


@pytest.fixture
def fast_config() -> UploadConfig:
    """Config with pacing disabled so tests do not sleep."""
    return UploadConfig(
        max_concurrent_uploads=3,
        success_delay_seconds=0.0,
        failure_delay_seconds=0.0,
    )


@pytest.fixture
def session(
    queue: StagingQueue, coordinator: UploadCoordinator, fast_config: UploadConfig
) -> BatchUploadSession:
    return BatchUploadSession(queue, coordinator, fast_config)
