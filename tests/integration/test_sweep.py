"""
Integration tests for the periodic transcode status sweep.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from mediaflow.catalog.models import AssetState, MediaAsset, MediaKind
from mediaflow.ledger.interface import JobKind, JobStatus
from mediaflow.pipeline.orchestrator import IngestRequest, JobOutcome
from mediaflow.pipeline.sweep import TranscodeSweep


@pytest.fixture
def video_asset(orchestrator, session_factory, store, ledger):
    asset_id = uuid4()
    key = f"video/{asset_id}.mp4"
    with session_factory() as db:
        db.add(MediaAsset(id=asset_id, storage_key=key, url=store.public_url(key),
                          kind=MediaKind.VIDEO, owner_id="user-1", tags=[]))
        db.commit()
    store.put_object(key, b"video-bytes", "video/mp4")
    orchestrator.begin_ingest(IngestRequest(asset_id=asset_id, storage_key=key))
    jobs = {r.kind: r.job_id for r in ledger.find_by_asset(str(asset_id))}
    return asset_id, jobs[JobKind.VIDEO_MODERATION], jobs[JobKind.VIDEO_TRANSCODE]


@pytest.fixture
def sweep(orchestrator, transcoder, ledger, session_factory):
    return TranscodeSweep(orchestrator, transcoder, ledger, interval_seconds=60,
                          session_factory=session_factory)


def state_of(session_factory, asset_id):
    with session_factory() as db:
        return db.get(MediaAsset, asset_id).state


class TestTranscodeSweep:

    def test_unchanged_jobs_are_left_alone(self, sweep, video_asset, ledger):
        _, _, transcode_job = video_asset

        report = sweep.run_once()

        assert report.polled == 1
        assert report.reconciled == 0
        assert ledger.get(transcode_job).status == JobStatus.PENDING

    def test_polled_completion_settles_asset(
            self, sweep, video_asset, orchestrator, transcoder, session_factory):
        asset_id, moderation_job, transcode_job = video_asset
        orchestrator.reconcile_external_job(
            moderation_job, JobOutcome(status=JobStatus.SUCCEEDED, labels=[]))
        transcoder.finish(transcode_job)

        report = sweep.run_once()

        assert report.reconciled == 1
        assert state_of(session_factory, asset_id) == AssetState.COMPLETE

    def test_poll_errors_are_reported_not_raised(self, sweep, video_asset, transcoder):
        _, _, transcode_job = video_asset
        del transcoder.statuses[transcode_job]

        report = sweep.run_once()

        assert report.errors and transcode_job in report.errors[0]

    def test_stalled_assets_are_resumed(
            self, sweep, video_asset, ledger, session_factory):
        asset_id, moderation_job, transcode_job = video_asset
        ledger.transition(moderation_job, JobStatus.SUCCEEDED,
                          result={"flagged": False, "labels": []})
        ledger.transition(transcode_job, JobStatus.FAILED, result={"error": "bad input"})
        with session_factory() as db:
            db.get(MediaAsset, asset_id).updated_at = datetime.utcnow() - timedelta(minutes=10)
            db.commit()

        report = sweep.run_once()

        assert report.resumed == 1
        assert state_of(session_factory, asset_id) == AssetState.FAILED

    def test_start_and_stop(self, sweep):
        sweep.start()
        assert sweep.running
        sweep.stop(timeout=2)
        assert not sweep.running
