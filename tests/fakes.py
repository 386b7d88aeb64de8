"""
In-memory stand-ins for the external capabilities.

Each fake records its calls and can be told to fail, so tests drive the
orchestrator through the same interfaces production uses.
"""

import itertools
from typing import Any, Dict, List, Optional, Set

from mediaflow.analysis.interface import (
    ContentAnalyzer, ModerationError, ModerationVerdict, match_taxonomy
)
from mediaflow.ledger.interface import JobStatus
from mediaflow.media.video_probe import VideoProbe, VideoProbeError
from mediaflow.pipeline.profile import ProfileNotifier, ProfilePropagationError
from mediaflow.transcoding.interface import (
    TranscodeStatus, Transcoder, TranscoderError, output_stem
)


def moderation_label(name: str, parent: str = "", confidence: float = 95.0) -> Dict[str, Any]:
    return {"Name": name, "ParentName": parent, "Confidence": confidence}


class FakeAnalyzer(ContentAnalyzer):

    def __init__(self, taxonomy=("Explicit Nudity", "Violence")):
        self.taxonomy = list(taxonomy)
        self.detected: Set[str] = set()
        # key -> moderation labels returned for that image
        self.image_labels: Dict[str, List[Dict[str, Any]]] = {}
        self.moderation_error: Optional[Exception] = None
        self.video_labels: Dict[str, List[Dict[str, Any]]] = {}
        self.submit_error: Optional[Exception] = None
        self.moderated: List[str] = []
        self.submitted: List[str] = []
        self._ids = itertools.count(1)

    def detect_objects(self, key: str) -> Set[str]:
        return set(self.detected)

    def moderate_image(self, key: str) -> ModerationVerdict:
        self.moderated.append(key)
        if self.moderation_error is not None:
            raise self.moderation_error
        labels = self.image_labels.get(key, [])
        matched = self.flagged_labels(labels)
        return ModerationVerdict(flagged=bool(matched), labels=labels, matched=matched)

    def submit_video_moderation(self, asset_id, key: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        job_id = f"moderation-job-{next(self._ids)}"
        self.submitted.append(job_id)
        return job_id

    def get_video_moderation_labels(self, job_id: str) -> List[Dict[str, Any]]:
        if job_id not in self.video_labels:
            raise ModerationError(f"No labels for {job_id}")
        return self.video_labels[job_id]

    def flagged_labels(self, labels) -> List[str]:
        return match_taxonomy(labels, self.taxonomy)


class FakeTranscoder(Transcoder):

    def __init__(self):
        self.submit_error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.statuses: Dict[str, TranscodeStatus] = {}
        self.submitted: List[str] = []
        self.cancelled: List[str] = []
        self._ids = itertools.count(1)

    def submit_transcode(self, asset_id, key: str, attempt: Optional[str] = None) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        job_id = f"transcode-job-{next(self._ids)}"
        self.submitted.append(job_id)
        self.statuses[job_id] = TranscodeStatus(job_id, JobStatus.PENDING)
        return job_id

    def poll_status(self, job_id: str) -> TranscodeStatus:
        if job_id not in self.statuses:
            raise TranscoderError(f"Unknown job {job_id}")
        return self.statuses[job_id]

    def finish(self, job_id: str, status: JobStatus = JobStatus.SUCCEEDED,
               error: Optional[str] = None) -> None:
        self.statuses[job_id] = TranscodeStatus(job_id, status, error)

    def cancel(self, job_id: str) -> None:
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(job_id)

    def manifest_url(self, key: str) -> str:
        stem = output_stem(key)
        return f"https://stream.test/video/transcoded/{stem}/{stem}.m3u8"


class FakeProfileNotifier(ProfileNotifier):

    def __init__(self):
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None

    def notify_profile_picture(self, user_id: str, picture_url: str) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append((user_id, picture_url))

    def fail_with(self, message: str = "identity service unavailable") -> None:
        self.error = ProfilePropagationError(message)


class FakeVideoProbe(VideoProbe):

    def __init__(self, result: Optional[Dict[str, Any]] = None):
        self.result = result or {
            "duration": 12.5,
            "codec": "h264",
            "width": 1920,
            "height": 1080,
            "source": "ffprobe",
        }
        self.error: Optional[Exception] = None

    def probe_bytes(self, data: bytes, suffix: str = ".mp4") -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return dict(self.result)

    def fail_with(self, message: str = "moov atom not found") -> None:
        self.error = VideoProbeError(message)
