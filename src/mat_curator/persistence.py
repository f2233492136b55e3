"""
Persistence writer for approved videos.

Each approved video is inserted exactly once, keyed by external ID. A
uniqueness conflict (another run got there first) is a no-op. After a
successful insert a pending post-processing marker is created; a failure
there is logged and never undoes the insert.
"""

import logging
from typing import Optional

from .models import (
    CandidateVideo, VideoDetails, EvaluationResult, TaxonomyLabels,
    CurationTarget, PersistedVideo,
)
from .knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

DEFAULT_TECHNIQUE_NAME = "General Instruction"
SOURCE_TYPE = "unified_curation"


class PersistenceWriter:
    """Commits approved videos and enqueues downstream post-processing."""

    def __init__(self, knowledge_base: KnowledgeBase, source_type: str = SOURCE_TYPE):
        self.knowledge_base = knowledge_base
        self.source_type = source_type

    def build_record(self, candidate: CandidateVideo, details: VideoDetails,
                     evaluation: EvaluationResult, taxonomy: TaxonomyLabels,
                     target: CurationTarget) -> PersistedVideo:
        """Assemble the knowledge-base entry for an approved candidate."""
        return PersistedVideo(
            external_id=candidate.external_id,
            video_url=candidate.video_url,
            title=candidate.title,
            technique_name=evaluation.technique or DEFAULT_TECHNIQUE_NAME,
            instructor_name=target.name,
            channel_name=candidate.channel or None,
            duration_seconds=details.duration_seconds,
            view_count=details.view_count,
            like_count=details.like_count,
            thumbnail_url=candidate.thumbnail_url,
            published_at=candidate.published_at,
            technique_type=taxonomy.technique_type,
            position_category=taxonomy.position_category,
            gi_or_nogi=taxonomy.gi_or_nogi,
            tags=taxonomy.tags,
            quality_score=round(evaluation.score, 2),
            source_type=self.source_type,
        )

    def persist(self, video: PersistedVideo) -> Optional[int]:
        """
        Insert a video and create its post-processing marker.

        Args:
            video: Approved knowledge-base entry

        Returns:
            The new row ID, or None if the external ID was already present

        Raises:
            KnowledgeBaseError: If the store is unreachable
        """
        video_id = self.knowledge_base.insert_video(video)
        if video_id is None:
            logger.info(f"Video {video.external_id} already persisted by another run - skipping")
            return None

        try:
            self.knowledge_base.enqueue_post_processing(video_id)
        except Exception as e:
            logger.warning(f"Could not enqueue post-processing for {video.external_id}: {e}")

        logger.info(f"Added {video.external_id}: '{video.title[:50]}' (Q:{video.quality_score:.1f})")
        return video_id
