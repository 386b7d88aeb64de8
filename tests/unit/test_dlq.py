"""
Unit tests for the file-based dead letter queue.
"""

import pytest

from mediaflow.queue.dlq import DeadLetterQueue


@pytest.fixture
def dlq(tmp_path):
    return DeadLetterQueue(str(tmp_path / "dlq"))


class TestDeadLetterQueue:

    def test_add_and_get(self, dlq):
        path = dlq.add(queue="uploads", message_id="m-1", body={"assetId": "a"},
                       error="ValueError: bad", receive_count=5,
                       original_timestamp="2024-01-01T00:00:00")

        assert path.exists()
        assert path.name.startswith("uploads_m-1_")
        entry = dlq.get("m-1")
        assert entry["body"] == {"assetId": "a"}
        assert entry["receive_count"] == 5
        assert entry["original_timestamp"] == "2024-01-01T00:00:00"
        assert entry["dlq_file"] == path.name

    def test_list_and_count_per_queue(self, dlq):
        dlq.add("uploads", "m-1", {}, "err", 1)
        dlq.add("results", "m-2", {}, "err", 1)

        assert dlq.count() == 2
        assert dlq.count("results") == 1
        assert [e["message_id"] for e in dlq.list("uploads")] == ["m-1"]

    def test_remove(self, dlq):
        dlq.add("uploads", "m-1", {}, "err", 1)

        assert dlq.remove("m-1") is True
        assert dlq.get("m-1") is None
        assert dlq.remove("m-1") is False

    def test_unreadable_entries_are_skipped(self, dlq):
        dlq.add("uploads", "m-1", {}, "err", 1)
        (dlq.storage_path / "uploads_broken_1.json").write_text("{not json")

        assert [e["message_id"] for e in dlq.list()] == ["m-1"]
