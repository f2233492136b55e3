"""
Cheap candidate filters applied before any paid call.

Ordering is cheapest-first: the duplicate check runs before the detail
lookup, and the duration check runs before the AI evaluation.
"""

import logging
from typing import Optional, Set

from .models import VideoDetails
from .knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)


class DeduplicationFilter:
    """
    Checks candidate IDs against the knowledge base.

    IDs already examined earlier in the same run are also treated as known, so
    a video returned by two different queries is only ever evaluated once.
    """

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base
        self._seen: Set[str] = set()

    def is_known(self, external_id: str) -> bool:
        """True if the candidate is persisted or was already examined this run."""
        if external_id in self._seen:
            logger.debug(f"Video {external_id} already examined in this run")
            return True
        return self.knowledge_base.is_known(external_id)

    def remember(self, external_id: str) -> None:
        """Record that the candidate has been examined in this run."""
        self._seen.add(external_id)

    @property
    def seen_count(self) -> int:
        return len(self._seen)


class DurationFilter:
    """Rejects videos that are too short to be instructional, or too long."""

    def __init__(self, min_seconds: int, max_seconds: Optional[int] = None):
        if max_seconds is not None and max_seconds <= min_seconds:
            raise ValueError("Maximum duration must be greater than minimum duration")
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds

    def rejection_reason(self, details: VideoDetails) -> Optional[str]:
        """Return why the video fails the duration check, or None when it passes."""
        if details.duration_seconds < self.min_seconds:
            return f"too short ({details.format_duration()} < {self.min_seconds}s)"
        if self.max_seconds is not None and details.duration_seconds > self.max_seconds:
            return f"too long ({details.format_duration()} > {self.max_seconds}s)"
        return None

    def accepts(self, details: VideoDetails) -> bool:
        return self.rejection_reason(details) is None
