"""
Transcoding Adapter interface.

One canonical output profile: HLS at a fixed segment length.
"""

import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from mediaflow.common.errors import RetryableError
from mediaflow.ledger.interface import JobStatus


class TranscoderError(RetryableError):
    """Status polling or cancellation failed."""
    pass


@dataclass
class TranscodeStatus:
    job_id: str
    status: JobStatus
    error: Optional[str] = None


def output_stem(key: str) -> str:
    """``video/abc.mp4`` -> ``abc``"""
    return posixpath.splitext(posixpath.basename(key))[0]


class Transcoder(ABC):

    @abstractmethod
    def submit_transcode(self, asset_id: UUID, key: str, attempt: Optional[str] = None) -> str:
        """
        Submit a transcode of ``key``.

        ``attempt`` identifies one submission: repeating a call with the same
        value must not start a second job, while a new value always does.

        Returns:
            Provider job id; the caller records it in the ledger

        Raises:
            ConfigurationError: missing role or endpoint configuration
            SubmissionRejected: the provider refused the job
            SubmissionError: transient failure
        """
        pass

    @abstractmethod
    def poll_status(self, job_id: str) -> TranscodeStatus:
        pass

    @abstractmethod
    def cancel(self, job_id: str) -> None:
        """Cancel a submitted job. Used for compensation only."""
        pass

    @abstractmethod
    def manifest_url(self, key: str) -> str:
        """Public URL of the HLS master playlist produced for ``key``."""
        pass
