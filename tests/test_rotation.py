"""
Tests for rotation scheduling, tracking and cycle math.
"""

import pytest
from datetime import timedelta

from mat_curator.knowledge_base import KnowledgeBase
from mat_curator.models import PersistedVideo, RotationRecord, TargetCurationStats, utc_now
from mat_curator.rotation import (
    RotationScheduler, RotationTracker, next_rotation_cycle, is_cycle_complete,
)


def add_videos(kb: KnowledgeBase, instructor: str, count: int, prefix: str = None):
    prefix = prefix or instructor.replace(" ", "")[:6]
    for i in range(count):
        kb.insert_video(PersistedVideo(
            external_id=f"{prefix}{i}",
            video_url=f"https://www.youtube.com/watch?v={prefix}{i}",
            title=f"Video {i}",
            instructor_name=instructor,
            quality_score=70,
        ))


def record(kb: KnowledgeBase, name: str, cycle: int, days_ago: int = 0):
    kb.upsert_rotation(RotationRecord(
        target_name=name,
        last_curated_at=utc_now() - timedelta(days=days_ago),
        rotation_cycle=cycle,
    ))


@pytest.fixture
def knowledge_base(tmp_path):
    kb = KnowledgeBase(tmp_path / "kb.db")
    kb.initialize()
    return kb


class TestCycleMath:
    """Pure cycle functions."""

    def test_incomplete_cycle_keeps_number(self):
        assert next_rotation_cycle(3, 4, 5) == 3

    def test_complete_cycle_advances(self):
        assert next_rotation_cycle(3, 5, 5) == 4

    def test_over_complete_cycle_advances(self):
        assert next_rotation_cycle(1, 7, 5) == 2

    def test_empty_universe_never_completes(self):
        assert not is_cycle_complete(0, 0)
        assert next_rotation_cycle(1, 0, 0) == 1


class TestRotationScheduler:
    """Target selection and ordering."""

    def test_registry_defines_universe(self, knowledge_base):
        knowledge_base.register_instructor("John Danaher", 95)
        knowledge_base.register_instructor("Lachlan Giles", 90)
        add_videos(knowledge_base, "John Danaher", 2)
        add_videos(knowledge_base, "Someone Else", 1)

        targets = {t.name: t for t in RotationScheduler(knowledge_base).load_targets()}

        assert set(targets) == {"John Danaher", "Lachlan Giles"}
        assert targets["John Danaher"].video_count == 2
        assert targets["Lachlan Giles"].video_count == 0
        assert targets["John Danaher"].credibility_score == 95

    def test_cold_start_derives_targets_from_knowledge_base(self, knowledge_base):
        add_videos(knowledge_base, "Gordon Ryan", 2)
        add_videos(knowledge_base, "Unknown Instructor", 3, prefix="unk")

        targets = RotationScheduler(knowledge_base).load_targets()

        assert [t.name for t in targets] == ["Gordon Ryan"]
        assert targets[0].credibility_score is None

    def test_cold_start_names_with_stray_whitespace(self, knowledge_base):
        add_videos(knowledge_base, "Gordon Ryan ", 1, prefix="gr")
        add_videos(knowledge_base, "Gordon Ryan", 1, prefix="gr2")
        scheduler = RotationScheduler(knowledge_base)

        targets = scheduler.load_targets()

        assert [(t.name, t.video_count) for t in targets] == [("Gordon Ryan", 2)]
        assert knowledge_base.count_videos_for("Gordon Ryan") == 2

        record(knowledge_base, "Gordon Ryan", cycle=1)

        assert scheduler.current_cycle() == 2
        assert scheduler.load_targets()[0].last_curated_cycle == 1

    def test_uncurated_targets_selected_before_curated_ones(self, knowledge_base):
        add_videos(knowledge_base, "Many Videos", 8, prefix="many")
        add_videos(knowledge_base, "Few Videos", 1, prefix="few")
        add_videos(knowledge_base, "Some Videos", 4, prefix="some")
        record(knowledge_base, "Few Videos", cycle=1)

        cycle, batch = RotationScheduler(knowledge_base).select_batch(3)

        assert cycle == 1
        assert [t.name for t in batch] == ["Some Videos", "Many Videos", "Few Videos"]

    def test_absent_target_has_top_priority(self, knowledge_base):
        knowledge_base.register_instructor("Covered", 80)
        knowledge_base.register_instructor("Brand New", 80)
        add_videos(knowledge_base, "Covered", 3)

        _, batch = RotationScheduler(knowledge_base).select_batch(1)

        assert batch[0].name == "Brand New"
        assert batch[0].video_count == 0

    def test_ties_broken_by_least_recent_curation(self, knowledge_base):
        for name in ("A", "B", "C"):
            knowledge_base.register_instructor(name, 50)
        record(knowledge_base, "A", cycle=1, days_ago=1)
        record(knowledge_base, "B", cycle=1, days_ago=5)
        record(knowledge_base, "C", cycle=1, days_ago=3)

        cycle, batch = RotationScheduler(knowledge_base).select_batch(3)

        # All three carry cycle 1, so cycle 2 is active and none is curated in it
        assert cycle == 2
        assert [t.name for t in batch] == ["B", "C", "A"]

    def test_batch_size_limits_selection(self, knowledge_base):
        for i in range(5):
            knowledge_base.register_instructor(f"Instructor {i}", 50)

        _, batch = RotationScheduler(knowledge_base).select_batch(2)

        assert len(batch) == 2

    def test_no_targets(self, knowledge_base):
        cycle, batch = RotationScheduler(knowledge_base).select_batch(5)

        assert cycle == 1
        assert batch == []


class TestRotationTracker:
    """Rotation records and cycle completion."""

    def setup_method(self):
        self.stats = TargetCurationStats(target="John Danaher", before_count=3, after_count=5, videos_added=2)

    def test_record_writes_counts_and_cycle(self, knowledge_base):
        tracker = RotationTracker(knowledge_base, RotationScheduler(knowledge_base))

        tracker.record(self.stats, cycle=4)

        stored = knowledge_base.get_rotation_records()["John Danaher"]
        assert (stored.videos_before, stored.videos_after, stored.videos_added) == (3, 5, 2)
        assert stored.rotation_cycle == 4

    def test_cycle_advances_after_universe_covered(self, knowledge_base):
        knowledge_base.register_instructor("A", 50)
        knowledge_base.register_instructor("B", 50)
        scheduler = RotationScheduler(knowledge_base)
        tracker = RotationTracker(knowledge_base, scheduler)

        tracker.record(TargetCurationStats(target="A"), cycle=1)
        assert tracker.finalize() == 1

        tracker.record(TargetCurationStats(target="B"), cycle=1)
        assert tracker.finalize() == 2

        # The next comparison uses cycle 2: both targets are due again
        cycle, batch = scheduler.select_batch(2)
        assert cycle == 2
        assert all(not t.is_curated_in_cycle(cycle) for t in batch)

    def test_cycle_does_not_advance_again_until_new_cycle_covered(self, knowledge_base):
        knowledge_base.register_instructor("A", 50)
        knowledge_base.register_instructor("B", 50)
        scheduler = RotationScheduler(knowledge_base)
        tracker = RotationTracker(knowledge_base, scheduler)
        record(knowledge_base, "A", cycle=1)
        record(knowledge_base, "B", cycle=1)

        tracker.record(TargetCurationStats(target="A"), cycle=2)

        assert tracker.finalize() == 2
        _, batch = scheduler.select_batch(1)
        assert batch[0].name == "B"
