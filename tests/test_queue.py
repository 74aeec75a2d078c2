"""Tests for the staging queue: quota, category validation, snapshots."""

from __future__ import annotations

import pytest

from clinfiles.exceptions import InvalidCategory, QuotaExceeded
from clinfiles.models import MAX_PENDING, FileCategory
from clinfiles.upload.queue import StagingQueue


class TestQuota:
    """Quota is enforced at add() time and never mutates on rejection."""

    def test_default_quota_is_ten(self):
        queue = StagingQueue()
        assert queue.max_pending == MAX_PENDING == 10

    def test_tenth_file_fills_queue(self, make_payload):
        queue = StagingQueue()
        for i in range(9):
            queue.add(make_payload(f"f{i}.png"))
        assert queue.can_add_more()

        queue.add(make_payload("f9.png"))
        assert queue.size() == 10
        assert not queue.can_add_more()
        assert queue.remaining_slots == 0

    def test_eleventh_file_raises_quota_exceeded(self, make_payload):
        queue = StagingQueue()
        for i in range(10):
            queue.add(make_payload(f"f{i}.png"))
        before = queue.snapshot()

        with pytest.raises(QuotaExceeded) as exc_info:
            queue.add(make_payload("extra.png"))

        assert exc_info.value.max_pending == 10
        assert queue.snapshot() == before

    def test_remove_frees_a_slot(self, make_payload):
        queue = StagingQueue(max_pending=2)
        first = queue.add(make_payload("a.png"))
        queue.add(make_payload("b.png"))

        queue.remove(first)
        queue.add(make_payload("c.png"))

        assert [d.filename for d in queue] == ["b.png", "c.png"]

    def test_invalid_quota_rejected(self):
        with pytest.raises(ValueError):
            StagingQueue(max_pending=0)


class TestCategoryValidation:
    """Unknown categories are refused before anything is staged."""

    def test_unknown_category_raises(self, make_payload):
        queue = StagingQueue()
        with pytest.raises(InvalidCategory):
            queue.add(make_payload("scan.png"), "MRI")
        assert queue.size() == 0

    def test_category_checked_before_quota(self, make_payload):
        queue = StagingQueue(max_pending=1)
        queue.add(make_payload("a.png"))
        with pytest.raises(InvalidCategory):
            queue.add(make_payload("b.png"), "bogus")

    def test_category_string_is_resolved(self, make_payload):
        queue = StagingQueue()
        temp_id = queue.add(make_payload("model.stl"), "3d")
        assert queue.get(temp_id).category is FileCategory.MODEL_3D

    def test_default_category_is_other(self, make_payload):
        queue = StagingQueue()
        temp_id = queue.add(make_payload("note.pdf"))
        assert queue.get(temp_id).category is FileCategory.OTHER


class TestMutationAndQueries:
    """Temp ids, idempotent removal and snapshot isolation."""

    def test_temp_ids_are_unique(self, make_payload):
        queue = StagingQueue()
        ids = {queue.add(make_payload(f"f{i}.png")) for i in range(5)}
        assert len(ids) == 5
        assert all(i.startswith("temp_") for i in ids)

    def test_remove_unknown_id_is_noop(self, make_payload):
        queue = StagingQueue()
        queue.add(make_payload("a.png"))
        queue.remove("temp_missing")
        queue.remove("temp_missing")
        assert queue.size() == 1

    def test_snapshot_is_unaffected_by_later_changes(self, make_payload):
        queue = StagingQueue()
        first = queue.add(make_payload("a.png"))
        snap = queue.snapshot()

        queue.remove(first)
        queue.add(make_payload("b.png"))

        assert [d.filename for d in snap] == ["a.png"]
        assert [d.filename for d in queue.snapshot()] == ["b.png"]

    def test_snapshot_preserves_insertion_order(self, make_payload):
        queue = StagingQueue()
        for name in ("c.png", "a.png", "b.png"):
            queue.add(make_payload(name))
        assert [d.filename for d in queue.snapshot()] == ["c.png", "a.png", "b.png"]

    def test_descriptor_captures_payload_attributes(self, make_payload):
        queue = StagingQueue()
        temp_id = queue.add(make_payload("pano.png", b"12345"), FileCategory.XRAY)
        descriptor = queue.get(temp_id)
        assert descriptor.filename == "pano.png"
        assert descriptor.content_type == "image/png"
        assert descriptor.size_bytes == 5
        assert temp_id in queue

    def test_clear_and_remove_many(self, make_payload):
        queue = StagingQueue()
        ids = [queue.add(make_payload(f"f{i}.png")) for i in range(4)]
        queue.remove_many(ids[:2])
        assert len(queue) == 2
        queue.clear()
        assert not queue.has_pending
