"""
Tests for the SQLite knowledge base.
"""

import pytest
from datetime import timedelta

from mat_curator.knowledge_base import KnowledgeBase
from mat_curator.models import PersistedVideo, RotationRecord, utc_now
from mat_curator.error_handling import KnowledgeBaseError


def create_test_video(external_id: str = "abc123", instructor: str = "John Danaher", **kwargs) -> PersistedVideo:
    """Create a test PersistedVideo."""
    data = {
        'external_id': external_id,
        'video_url': f"https://www.youtube.com/watch?v={external_id}",
        'title': f"Armbar details {external_id}",
        'instructor_name': instructor,
        'channel_name': "Test Channel",
        'duration_seconds': 600,
        'technique_type': 'attack',
        'position_category': 'closed_guard',
        'gi_or_nogi': 'both',
        'tags': ['armbar', 'guard'],
        'quality_score': 75.0,
    }
    data.update(kwargs)
    return PersistedVideo(**data)


@pytest.fixture
def knowledge_base(tmp_path):
    kb = KnowledgeBase(tmp_path / "kb.db")
    kb.initialize()
    return kb


class TestVideos:
    """Video insert and lookup."""

    def test_insert_and_lookup(self, knowledge_base):
        video_id = knowledge_base.insert_video(create_test_video())

        assert video_id is not None
        assert knowledge_base.is_known("abc123")
        assert not knowledge_base.is_known("other")

        stored = knowledge_base.get_video("abc123")
        assert stored['title'] == "Armbar details abc123"
        assert stored['tags'] == ['armbar', 'guard']
        assert stored['status'] == 'active'
        assert stored['source_type'] == 'unified_curation'
        assert stored['technique_name'] == 'General Instruction'

    def test_same_external_id_twice_yields_one_row(self, knowledge_base):
        first = knowledge_base.insert_video(create_test_video())
        second = knowledge_base.insert_video(create_test_video(title="Different title"))

        assert first is not None
        assert second is None
        assert knowledge_base.count_videos() == 1
        assert knowledge_base.get_video("abc123")['title'] == "Armbar details abc123"

    def test_count_videos_for_instructor(self, knowledge_base):
        knowledge_base.insert_video(create_test_video("a1"))
        knowledge_base.insert_video(create_test_video("a2"))
        knowledge_base.insert_video(create_test_video("b1", instructor="Gordon Ryan"))

        assert knowledge_base.count_videos_for("John Danaher") == 2
        assert knowledge_base.count_videos_for("Gordon Ryan") == 1
        assert knowledge_base.count_videos_for("Nobody") == 0

    def test_video_counts_exclude_placeholder_names(self, knowledge_base):
        knowledge_base.insert_video(create_test_video("a1"))
        knowledge_base.insert_video(create_test_video("u1", instructor="Unknown Instructor"))
        knowledge_base.insert_video(create_test_video("u2", instructor="Not Identified"))
        knowledge_base.insert_video(create_test_video("u3", instructor=""))

        assert knowledge_base.video_counts_by_instructor() == {"John Danaher": 1}


class TestPostProcessingQueue:
    """Post-processing marker rows."""

    def test_enqueue_is_idempotent(self, knowledge_base):
        video_id = knowledge_base.insert_video(create_test_video())

        assert knowledge_base.enqueue_post_processing(video_id)
        assert not knowledge_base.enqueue_post_processing(video_id)
        assert knowledge_base.pending_post_processing() == [video_id]


class TestRotationRegistry:
    """Rotation record upserts and cycle queries."""

    def test_empty_registry(self, knowledge_base):
        assert knowledge_base.get_rotation_records() == {}
        assert knowledge_base.max_rotation_cycle() is None

    def test_upsert_replaces_record(self, knowledge_base):
        now = utc_now()
        knowledge_base.upsert_rotation(RotationRecord(
            target_name="John Danaher", last_curated_at=now - timedelta(days=2),
            videos_before=1, videos_after=3, videos_added=2, rotation_cycle=1,
        ))
        knowledge_base.upsert_rotation(RotationRecord(
            target_name="John Danaher", last_curated_at=now,
            videos_before=3, videos_after=4, videos_added=1, rotation_cycle=2,
        ))

        records = knowledge_base.get_rotation_records()
        assert len(records) == 1
        record = records["John Danaher"]
        assert (record.videos_before, record.videos_after, record.videos_added) == (3, 4, 1)
        assert record.rotation_cycle == 2
        assert record.last_curated_at == now
        assert knowledge_base.max_rotation_cycle() == 2

    def test_cycle_never_decreases(self, knowledge_base):
        now = utc_now()
        knowledge_base.upsert_rotation(RotationRecord(target_name="A", last_curated_at=now, rotation_cycle=3))
        knowledge_base.upsert_rotation(RotationRecord(target_name="A", last_curated_at=now, rotation_cycle=2))

        assert knowledge_base.get_rotation_records()["A"].rotation_cycle == 3


class TestCredibilityRegistry:
    """Instructor credibility registry."""

    def test_register_and_update(self, knowledge_base):
        knowledge_base.register_instructor("John Danaher", 95)
        knowledge_base.register_instructor(" Gordon Ryan ", 90)
        knowledge_base.register_instructor("John Danaher", 97)

        assert knowledge_base.credibility_registry() == {"Gordon Ryan": 90.0, "John Danaher": 97.0}


class TestStatus:
    """Status summary."""

    def test_curation_status(self, knowledge_base):
        video_id = knowledge_base.insert_video(create_test_video("a1"))
        knowledge_base.insert_video(create_test_video(
            "old", created_at=utc_now() - timedelta(days=3)
        ))
        knowledge_base.enqueue_post_processing(video_id)
        knowledge_base.upsert_rotation(RotationRecord(target_name="John Danaher", last_curated_at=utc_now()))

        status = knowledge_base.curation_status()

        assert status['total_videos'] == 2
        assert status['instructors_with_videos'] == 1
        assert status['recently_added'] == 1
        assert status['pending_post_processing'] == 1
        assert status['last_curation'] is not None

    def test_unreachable_store(self, tmp_path):
        blocker = tmp_path / "not_a_directory"
        blocker.write_text("file")
        kb = KnowledgeBase(blocker / "kb.db")

        with pytest.raises(KnowledgeBaseError):
            kb.count_videos()
