"""
Rotation scheduling and tracking.

The scheduler selects the next batch of targets so that, within one rotation
cycle, every known target is curated once before any repeats. The tracker
records per-target outcomes and re-evaluates cycle completion after a batch.

The current cycle is never stored as a counter. It is derived from the
rotation records: the highest recorded cycle, advanced by one when at least
as many targets carry that cycle as the target universe contains.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .models import CurationTarget, RotationRecord, TargetCurationStats, TargetKind, utc_now
from .knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def is_cycle_complete(curated_in_cycle: int, universe_size: int) -> bool:
    """True once every target in a non-empty universe carries the cycle."""
    return universe_size > 0 and curated_in_cycle >= universe_size


def next_rotation_cycle(current_cycle: int, curated_in_cycle: int, universe_size: int) -> int:
    """
    Cycle to use for the next scheduling comparison.

    Args:
        current_cycle: Highest cycle recorded so far (1 when nothing is recorded)
        curated_in_cycle: Distinct targets carrying ``current_cycle``
        universe_size: Number of known targets

    Returns:
        ``current_cycle + 1`` if the cycle is complete, else ``current_cycle``
    """
    if is_cycle_complete(curated_in_cycle, universe_size):
        return current_cycle + 1
    return current_cycle


def _priority_key(target: CurationTarget, cycle: int) -> Tuple:
    return (
        target.is_curated_in_cycle(cycle),
        target.video_count,
        target.last_curated_at is not None,
        target.last_curated_at or _NEVER,
        target.name.lower(),
    )


class RotationScheduler:
    """Builds the target universe and orders it for the next batch."""

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    def load_targets(self) -> List[CurationTarget]:
        """
        Materialize every known target with its derived attributes.

        The credibility registry defines the universe when it has entries;
        otherwise the distinct real instructor names in the knowledge base do.
        """
        registry = self.knowledge_base.credibility_registry()
        counts = self.knowledge_base.video_counts_by_instructor()
        records = self.knowledge_base.get_rotation_records()

        if registry:
            names = list(registry)
        else:
            names = sorted(counts)
            if names:
                logger.info(f"Credibility registry empty - deriving {len(names)} targets from the knowledge base")

        targets = []
        for name in names:
            record = records.get(name)
            targets.append(CurationTarget(
                name=name,
                kind=TargetKind.INSTRUCTOR,
                video_count=counts.get(name, 0),
                last_curated_at=record.last_curated_at if record else None,
                last_curated_cycle=record.rotation_cycle if record else None,
                credibility_score=registry.get(name),
            ))
        return targets

    def current_cycle(self, targets: Optional[List[CurationTarget]] = None) -> int:
        """Derive the cycle active for scheduling from the rotation records."""
        if targets is None:
            targets = self.load_targets()
        recorded = self.knowledge_base.max_rotation_cycle() or 1
        curated = sum(1 for t in targets if t.is_curated_in_cycle(recorded))
        cycle = next_rotation_cycle(recorded, curated, len(targets))
        if cycle != recorded:
            logger.info(f"Rotation cycle {recorded} complete ({curated}/{len(targets)}) - now cycle {cycle}")
        return cycle

    def coverage(self) -> Dict[str, int]:
        """Targets curated in the active cycle versus the universe size."""
        targets = self.load_targets()
        cycle = self.current_cycle(targets)
        return {
            'rotation_cycle': cycle,
            'curated_in_cycle': sum(1 for t in targets if t.is_curated_in_cycle(cycle)),
            'total_targets': len(targets),
        }

    def select_batch(self, batch_size: int) -> Tuple[int, List[CurationTarget]]:
        """
        Select up to ``batch_size`` targets for the next run.

        Ordering: not yet curated in the current cycle first, then ascending
        video count, then least recently curated.

        Returns:
            Tuple of (active cycle, ordered targets)
        """
        targets = self.load_targets()
        cycle = self.current_cycle(targets)
        ordered = sorted(targets, key=lambda t: _priority_key(t, cycle))
        batch = ordered[:batch_size]
        logger.info(
            f"Selected {len(batch)}/{len(targets)} targets for cycle {cycle}: "
            f"{', '.join(t.name for t in batch)}"
        )
        return cycle, batch


class RotationTracker:
    """Writes rotation records and advances the cycle by comparison."""

    def __init__(self, knowledge_base: KnowledgeBase, scheduler: RotationScheduler):
        self.knowledge_base = knowledge_base
        self.scheduler = scheduler

    def record(self, stats: TargetCurationStats, cycle: int,
               curated_at: Optional[datetime] = None) -> RotationRecord:
        """Upsert the rotation record for one completed target."""
        record = RotationRecord(
            target_name=stats.target,
            last_curated_at=curated_at or utc_now(),
            videos_before=stats.before_count,
            videos_after=stats.after_count,
            videos_added=stats.videos_added,
            rotation_cycle=cycle,
        )
        self.knowledge_base.upsert_rotation(record)
        logger.info(
            f"Rotation record for {stats.target}: {stats.before_count} -> "
            f"{stats.after_count} (+{stats.videos_added}), cycle {cycle}"
        )
        return record

    def finalize(self) -> int:
        """Re-evaluate cycle completion after a batch and return the active cycle."""
        return self.scheduler.current_cycle()
