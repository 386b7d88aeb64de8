"""
Unit tests for the job ledger backends.
"""

import json
from unittest.mock import MagicMock

import pytest
from redis.exceptions import RedisError

from mediaflow.ledger.interface import ExternalJobRecord, JobKind, JobStatus, LedgerError
from mediaflow.ledger.memory import InMemoryJobLedger
from mediaflow.ledger.redis import RedisJobLedger


def make_record(job_id="job-1", asset_id="asset-1", kind=JobKind.VIDEO_TRANSCODE,
                status=JobStatus.PENDING):
    return ExternalJobRecord(job_id=job_id, asset_id=asset_id, kind=kind,
                             source_key="video/a.mp4", status=status)


class TestExternalJobRecord:

    def test_dict_conversion(self):
        record = make_record()
        record.result = {"state": "complete"}

        restored = ExternalJobRecord.from_dict(json.loads(json.dumps(record.to_dict())))

        assert restored == record


class TestInMemoryJobLedger:

    @pytest.fixture
    def ledger(self):
        return InMemoryJobLedger()

    def test_create_keeps_first_record(self, ledger):
        ledger.create(make_record(asset_id="asset-1"))

        stored = ledger.create(make_record(asset_id="asset-2"))

        assert stored.asset_id == "asset-1"

    def test_transition_to_terminal_is_final(self, ledger):
        ledger.create(make_record())

        record, changed = ledger.transition("job-1", JobStatus.SUCCEEDED, result={"ok": True})
        assert changed is True
        assert record.result == {"ok": True}

        record, changed = ledger.transition("job-1", JobStatus.FAILED, error="late")
        assert changed is False
        assert record.status == JobStatus.SUCCEEDED
        assert record.error is None

    def test_same_status_is_not_a_change(self, ledger):
        ledger.create(make_record())

        _, changed = ledger.transition("job-1", JobStatus.PENDING)

        assert changed is False

    def test_progress_never_moves_backwards(self, ledger):
        ledger.create(make_record())
        ledger.transition("job-1", JobStatus.IN_PROGRESS)

        record, changed = ledger.transition("job-1", JobStatus.PENDING)

        assert changed is False
        assert record.status == JobStatus.IN_PROGRESS
        assert ledger.get("job-1").status == JobStatus.IN_PROGRESS

    @pytest.mark.parametrize("current,new,expected", [
        (JobStatus.PENDING, JobStatus.IN_PROGRESS, True),
        (JobStatus.PENDING, JobStatus.FAILED, True),
        (JobStatus.IN_PROGRESS, JobStatus.SUCCEEDED, True),
        (JobStatus.IN_PROGRESS, JobStatus.PENDING, False),
        (JobStatus.SUCCEEDED, JobStatus.FAILED, False),
    ])
    def test_status_order(self, current, new, expected):
        assert current.can_move_to(new) is expected

    def test_unknown_job(self, ledger):
        assert ledger.transition("nope", JobStatus.SUCCEEDED) == (None, False)
        assert ledger.get("nope") is None

    def test_list_open_and_find_by_asset(self, ledger):
        ledger.create(make_record("job-1", kind=JobKind.VIDEO_MODERATION))
        ledger.create(make_record("job-2"))
        ledger.create(make_record("job-3", asset_id="asset-2"))
        ledger.transition("job-3", JobStatus.FAILED)

        assert {r.job_id for r in ledger.list_open()} == {"job-1", "job-2"}
        assert [r.job_id for r in ledger.list_open(JobKind.VIDEO_MODERATION)] == ["job-1"]
        assert {r.job_id for r in ledger.find_by_asset("asset-1")} == {"job-1", "job-2"}

    def test_returned_records_are_copies(self, ledger):
        ledger.create(make_record())

        ledger.get("job-1").status = JobStatus.FAILED

        assert ledger.get("job-1").status == JobStatus.PENDING

    def test_delete(self, ledger):
        ledger.create(make_record())
        ledger.delete("job-1")

        assert ledger.get("job-1") is None


class TestRedisJobLedger:

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def ledger(self, client):
        return RedisJobLedger(terminal_ttl_seconds=3600, client=client)

    def test_create_indexes_open_job(self, ledger, client):
        client.set.return_value = True
        record = make_record()

        assert ledger.create(record) is record
        client.set.assert_called_once_with(
            "ledger:job:job-1", json.dumps(record.to_dict()), nx=True)
        pipe = client.pipeline.return_value
        pipe.sadd.assert_any_call("ledger:asset:asset-1", "job-1")
        pipe.sadd.assert_any_call("ledger:open", "job-1")
        pipe.execute.assert_called_once()

    def test_create_returns_existing_record(self, ledger, client):
        existing = make_record(asset_id="asset-1")
        client.set.return_value = False
        client.get.return_value = json.dumps(existing.to_dict())

        stored = ledger.create(make_record(asset_id="asset-2"))

        assert stored.asset_id == "asset-1"
        client.pipeline.assert_not_called()

    def test_get_missing(self, ledger, client):
        client.get.return_value = None

        assert ledger.get("job-1") is None

    def test_redis_errors_become_ledger_errors(self, ledger, client):
        client.get.side_effect = RedisError("READONLY")

        with pytest.raises(LedgerError):
            ledger.get("job-1")

    def test_terminal_transition_sets_ttl(self, ledger, client):
        pipe = MagicMock()
        client.pipeline.return_value.__enter__.return_value = pipe
        pipe.get.return_value = json.dumps(make_record().to_dict())
        pipe.smembers.return_value = {"job-1"}

        record, changed = ledger.transition("job-1", JobStatus.SUCCEEDED, result={"ok": True})

        assert changed is True
        assert record.status == JobStatus.SUCCEEDED
        pipe.watch.assert_called_once_with("ledger:job:job-1")
        pipe.multi.assert_called_once()
        assert pipe.set.call_args.kwargs == {"ex": 3600}
        pipe.srem.assert_called_once_with("ledger:open", "job-1")
        pipe.expire.assert_called_once_with("ledger:asset:asset-1", 3600)
        pipe.execute.assert_called_once()

    def test_asset_index_outlives_first_settled_job(self, ledger, client):
        """The moderation job settles while the transcode is still running."""
        pipe = MagicMock()
        client.pipeline.return_value.__enter__.return_value = pipe
        records = {
            "ledger:job:job-1": make_record("job-1", kind=JobKind.VIDEO_MODERATION),
            "ledger:job:job-2": make_record("job-2", status=JobStatus.IN_PROGRESS),
        }
        pipe.get.side_effect = lambda key: json.dumps(records[key].to_dict())
        pipe.smembers.return_value = {"job-1", "job-2"}

        _, changed = ledger.transition("job-1", JobStatus.SUCCEEDED, result={"flagged": False})

        assert changed is True
        pipe.watch.assert_any_call("ledger:job:job-2")
        pipe.srem.assert_called_once_with("ledger:open", "job-1")
        pipe.expire.assert_not_called()

    def test_last_settled_job_expires_asset_index(self, ledger, client):
        pipe = MagicMock()
        client.pipeline.return_value.__enter__.return_value = pipe
        records = {
            "ledger:job:job-1": make_record("job-1", kind=JobKind.VIDEO_MODERATION,
                                            status=JobStatus.SUCCEEDED),
            "ledger:job:job-2": make_record("job-2", status=JobStatus.IN_PROGRESS),
        }
        pipe.get.side_effect = lambda key: json.dumps(records[key].to_dict())
        pipe.smembers.return_value = {"job-1", "job-2"}

        ledger.transition("job-2", JobStatus.SUCCEEDED, result={"manifest_url": "m"})

        pipe.expire.assert_called_once_with("ledger:asset:asset-1", 3600)

    def test_terminal_record_is_not_rewritten(self, ledger, client):
        pipe = MagicMock()
        client.pipeline.return_value.__enter__.return_value = pipe
        pipe.get.return_value = json.dumps(make_record(status=JobStatus.FAILED).to_dict())

        record, changed = ledger.transition("job-1", JobStatus.SUCCEEDED)

        assert changed is False
        assert record.status == JobStatus.FAILED
        pipe.multi.assert_not_called()
