"""
Detection & Moderation Adapter interface.

Outcomes are typed: ``detect_objects`` returns an empty set when nothing
could be detected, ``moderate_image`` raises ModerationError instead of
guessing a verdict.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set
from uuid import UUID

from mediaflow.common.errors import RetryableError


class ModerationError(RetryableError):
    """Moderation could not produce a verdict. Never treat as clean."""
    pass


class DetectionError(Exception):
    """Object detection failed. Swallowed by adapters into an empty tag set."""
    pass


@dataclass
class ModerationVerdict:
    flagged: bool
    labels: List[Dict[str, Any]] = field(default_factory=list)
    matched: List[str] = field(default_factory=list)


def match_taxonomy(labels: Iterable[Dict[str, Any]], taxonomy: Iterable[str]) -> List[str]:
    """
    Names of labels that fall under the taxonomy.

    A label matches when its own name or its parent category equals a
    taxonomy entry (case-insensitive). Video moderation payloads nest the
    label under ``ModerationLabel``.
    """
    wanted = {t.strip().lower() for t in taxonomy if t and t.strip()}
    matched = []
    for label in labels:
        if "ModerationLabel" in label:
            label = label["ModerationLabel"] or {}
        name = str(label.get("Name") or "").strip()
        parent = str(label.get("ParentName") or "").strip()
        if name.lower() in wanted or parent.lower() in wanted:
            matched.append(name or parent)
    return sorted(set(matched))


class ContentAnalyzer(ABC):
    """Image analysis plus asynchronous video moderation."""

    @abstractmethod
    def detect_objects(self, key: str) -> Set[str]:
        """
        Best-effort object labels, lower-cased.

        Returns an empty set on any downstream failure.
        """
        pass

    @abstractmethod
    def moderate_image(self, key: str) -> ModerationVerdict:
        """
        Classify an image against the moderation taxonomy.

        Raises:
            ModerationError: the provider failed or timed out
        """
        pass

    @abstractmethod
    def submit_video_moderation(self, asset_id: UUID, key: str) -> str:
        """
        Start an asynchronous moderation job tagged with the asset id.

        Returns:
            Provider job id

        Raises:
            ConfigurationError: no completion channel configured
            SubmissionError: transient submission failure
        """
        pass

    @abstractmethod
    def get_video_moderation_labels(self, job_id: str) -> List[Dict[str, Any]]:
        """Fetch the labels of a finished video moderation job."""
        pass

    @abstractmethod
    def flagged_labels(self, labels: Iterable[Dict[str, Any]]) -> List[str]:
        """Labels that fall under the moderation taxonomy; empty means clean."""
        pass
