"""
LangGraph workflow orchestration for the mat-curator system.

One run is a small state graph:

    select_targets -> curate_target (repeats while targets remain) -> finalize_rotation -> END

Work inside a run is strictly sequential: targets in scheduler order, queries
in generated order, candidates in provider-returned order. Quota exhaustion
stops the loop at once; targets completed before that keep their rotation
records, the interrupted target gets none.
"""

import logging
from typing import Dict, Any, Optional

from langgraph.graph import StateGraph, END

from .config import Configuration, get_config
from .models import (
    CandidateVideo, CurationRunResult, CurationState, CurationTarget,
    EvaluationMode, TargetCurationStats, utc_now,
)
from .quota import QuotaState
from .knowledge_base import KnowledgeBase
from .youtube_client import YouTubeClient
from .query_generator import generate_queries
from .filters import DeduplicationFilter, DurationFilter
from .evaluator import (
    QualityEvaluator, REJECT_NON_INSTRUCTIONAL, REJECT_TARGET_MISMATCH, REJECT_ANALYSIS_FAILED,
)
from .taxonomy import TaxonomyClassifier
from .persistence import PersistenceWriter
from .rotation import RotationScheduler, RotationTracker
from .error_handling import (
    QuotaExhaustedError, CatalogAPIError, handle_node_error, log_processing_metrics,
)

logger = logging.getLogger(__name__)

_NON_INSTRUCTIONAL_REASONS = (REJECT_NON_INSTRUCTIONAL, REJECT_TARGET_MISMATCH, REJECT_ANALYSIS_FAILED)


class CurationPipeline:
    """
    Wires the curation services together and runs them as a LangGraph workflow.

    Services are held on the pipeline, not in the graph state, so the state
    stays a plain serializable record of progress.
    """

    def __init__(self, config: Configuration,
                 knowledge_base: Optional[KnowledgeBase] = None,
                 youtube_client: Optional[YouTubeClient] = None,
                 evaluator: Optional[QualityEvaluator] = None,
                 quota: Optional[QuotaState] = None,
                 dry_run: bool = False):
        self.config = config
        self.dry_run = dry_run
        self.quota = quota or QuotaState(daily_limit=config.daily_quota_limit)
        self.knowledge_base = knowledge_base or KnowledgeBase(config.database_path)
        self.youtube_client = youtube_client or YouTubeClient(config, self.quota)
        self.evaluator = evaluator or QualityEvaluator(config)

        self.scheduler = RotationScheduler(self.knowledge_base)
        self.tracker = RotationTracker(self.knowledge_base, self.scheduler)
        self.dedup = DeduplicationFilter(self.knowledge_base)
        self.duration_filter = DurationFilter(config.min_duration_seconds, config.max_duration_seconds)
        self.taxonomy = TaxonomyClassifier()
        self.writer = PersistenceWriter(self.knowledge_base)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    @handle_node_error("select_targets")
    def select_targets(self, state: CurationState) -> Dict[str, Any]:
        """Pick the batch for this run and the cycle active at run start."""
        cycle, targets = self.scheduler.select_batch(state.batch_size)
        if not targets:
            logger.warning("No curation targets known - nothing to do")
        return {"rotation_cycle": cycle, "targets": targets, "next_index": 0}

    @handle_node_error("curate_target")
    def curate_target(self, state: CurationState) -> Dict[str, Any]:
        """Curate the next target in the batch and record its rotation outcome."""
        log_processing_metrics(state, "curate_target")
        target = state.targets[state.next_index]
        stats = TargetCurationStats(target=target.name)
        logger.info(f"Curating target {state.next_index + 1}/{len(state.targets)}: {target.name}")

        try:
            self.curate_one(target, stats)
        except QuotaExhaustedError as e:
            logger.warning(f"Quota exhausted while curating {target.name}: {e}. Halting run.")
            return {
                "target_stats": list(state.target_stats) + [stats],
                "next_index": state.next_index + 1,
                "quota_exhausted": True,
                "errors": list(state.errors) + [f"{target.name}: {e}"],
            }

        if not self.dry_run:
            self.tracker.record(stats, state.rotation_cycle)

        return {
            "target_stats": list(state.target_stats) + [stats],
            "next_index": state.next_index + 1,
            "targets_completed": state.targets_completed + 1,
        }

    @handle_node_error("finalize_rotation")
    def finalize_rotation(self, state: CurationState) -> Dict[str, Any]:
        """Re-evaluate cycle completion once the batch is over."""
        cycle = self.tracker.finalize()
        log_processing_metrics(state, "finalize_rotation")
        return {"rotation_cycle": cycle}

    @staticmethod
    def route_after_step(state: CurationState) -> str:
        return "curate_target" if state.has_pending_targets() else "finalize_rotation"

    # ------------------------------------------------------------------
    # Per-target work
    # ------------------------------------------------------------------

    def curate_one(self, target: CurationTarget, stats: TargetCurationStats) -> TargetCurationStats:
        """
        Run every query for one target, filling ``stats`` as it goes.

        Raises:
            QuotaExhaustedError: Propagated unchanged to halt the run
        """
        stats.before_count = self.knowledge_base.count_videos_for(target.name)

        try:
            for query in generate_queries(target):
                try:
                    candidates = self.youtube_client.search(query)
                except CatalogAPIError as e:
                    logger.error(f"Search failed for '{query}': {e}")
                    continue

                stats.searches_run += 1
                stats.videos_found += len(candidates)
                for candidate in candidates:
                    self._process_candidate(candidate, target, stats)
        finally:
            # Also runs when quota exhaustion interrupts the target
            if self.dry_run:
                stats.after_count = stats.before_count + stats.videos_added
            else:
                stats.after_count = self.knowledge_base.count_videos_for(target.name)

        logger.info(
            f"{target.name}: found {stats.videos_found}, analyzed {stats.videos_analyzed}, "
            f"added {stats.videos_added} (dup {stats.skipped_duplicate}, short {stats.skipped_short}, "
            f"non-instructional {stats.skipped_non_instructional}, low quality {stats.skipped_low_quality})"
        )
        return stats

    def _process_candidate(self, candidate: CandidateVideo, target: CurationTarget,
                           stats: TargetCurationStats) -> None:
        """Duplicate check, detail lookup, duration check, evaluation, persistence."""
        external_id = candidate.external_id

        if self.dedup.is_known(external_id):
            stats.skipped_duplicate += 1
            return
        self.dedup.remember(external_id)

        try:
            details = self.youtube_client.get_details(external_id)
        except CatalogAPIError as e:
            logger.warning(f"Detail lookup failed for {external_id}: {e}")
            return
        if details is None:
            return

        reason = self.duration_filter.rejection_reason(details)
        if reason:
            logger.debug(f"Skipping {external_id}: {reason}")
            stats.skipped_short += 1
            return

        stats.videos_analyzed += 1
        evaluation = self.evaluator.evaluate(candidate, details, target)
        if not evaluation.passed:
            if evaluation.reject_reason in _NON_INSTRUCTIONAL_REASONS:
                stats.skipped_non_instructional += 1
            else:
                stats.skipped_low_quality += 1
            return

        labels = self.taxonomy.classify(candidate.title, evaluation.technique, evaluation.taxonomy)
        video = self.writer.build_record(candidate, details, evaluation, labels, target)

        if self.dry_run:
            logger.info(f"[dry run] Would add {external_id}: '{candidate.title[:50]}' (Q:{video.quality_score:.1f})")
            stats.videos_added += 1
            return

        if self.writer.persist(video) is not None:
            stats.videos_added += 1
        else:
            stats.skipped_duplicate += 1

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def build_graph(self):
        """
        Create the compiled LangGraph workflow.

        Returns:
            Compiled LangGraph workflow
        """
        workflow = StateGraph(CurationState)

        workflow.add_node("select_targets", self.select_targets)
        workflow.add_node("curate_target", self.curate_target)
        workflow.add_node("finalize_rotation", self.finalize_rotation)

        workflow.set_entry_point("select_targets")

        routes = {"curate_target": "curate_target", "finalize_rotation": "finalize_rotation"}
        workflow.add_conditional_edges("select_targets", self.route_after_step, routes)
        workflow.add_conditional_edges("curate_target", self.route_after_step, routes)
        workflow.add_edge("finalize_rotation", END)

        return workflow.compile()

    def run(self, batch_size: Optional[int] = None) -> CurationRunResult:
        """
        Execute one curation run.

        Args:
            batch_size: Targets to curate (defaults to config.target_batch_size)

        Returns:
            CurationRunResult summarizing the run

        Raises:
            KnowledgeBaseError: If the knowledge base cannot be opened
        """
        batch_size = batch_size or self.config.target_batch_size
        start_time = utc_now()
        logger.info(
            f"Starting curation run: batch={batch_size}, mode={self.evaluator.mode.value}, "
            f"threshold={self.config.quality_threshold}, min_duration={self.config.min_duration_seconds}s"
            + (" (dry run)" if self.dry_run else "")
        )

        self.knowledge_base.initialize()

        initial_state = CurationState(batch_size=batch_size, started_at=start_time)
        graph = self.build_graph()
        raw_state = graph.invoke(initial_state, config={"recursion_limit": batch_size + 10})
        final_state = raw_state if isinstance(raw_state, CurationState) else CurationState(**raw_state)

        end_time = utc_now()
        result = CurationRunResult(
            success=final_state.fatal_error is None,
            targets_curated=final_state.targets_completed,
            total_videos_added=sum(s.videos_added for s in final_state.target_stats),
            per_target_stats=final_state.target_stats,
            rotation_cycle=final_state.rotation_cycle,
            quota_exhausted=final_state.quota_exhausted,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=round((end_time - start_time).total_seconds() / 60),
            error=final_state.fatal_error,
        )

        snapshot = self.quota.snapshot()
        logger.info(
            f"Curation run finished: {result.targets_curated} targets, {result.total_videos_added} videos added, "
            f"cycle {result.rotation_cycle}, quota {snapshot.units_used}/{snapshot.daily_limit}"
            + (" - QUOTA EXHAUSTED" if result.quota_exhausted else "")
        )
        return result


def run_curation(
    config: Optional[Configuration] = None,
    target_batch_size: Optional[int] = None,
    quality_threshold: Optional[float] = None,
    min_duration_seconds: Optional[int] = None,
    evaluation_mode: Optional[EvaluationMode] = None,
    dry_run: bool = False,
    pipeline: Optional[CurationPipeline] = None,
) -> CurationRunResult:
    """
    Run entrypoint used by the CLI and any scheduler trigger.

    Never raises: invalid configuration or an unreachable store produce
    ``success=False`` with ``error`` populated. Quota exhaustion is a normal
    outcome reported as ``success=True, quota_exhausted=True``.

    Args:
        config: Configuration (defaults to the global configuration)
        target_batch_size: Override for the number of targets
        quality_threshold: Override for the approval threshold (0-100)
        min_duration_seconds: Override for the shortest acceptable video
        evaluation_mode: Override for simple or strict evaluation
        dry_run: Evaluate but do not write to the knowledge base
        pipeline: Pre-built pipeline (tests)

    Returns:
        CurationRunResult
    """
    start_time = utc_now()
    try:
        if pipeline is None:
            config = (config or get_config()).model_copy()
            overrides = {
                'target_batch_size': target_batch_size,
                'quality_threshold': quality_threshold,
                'min_duration_seconds': min_duration_seconds,
                'evaluation_mode': evaluation_mode,
            }
            for field_name, value in overrides.items():
                if value is not None:
                    setattr(config, field_name, value)
            pipeline = CurationPipeline(config, dry_run=dry_run)

        return pipeline.run(target_batch_size)

    except Exception as e:
        error_msg = f"Curation run failed: {e}"
        logger.error(error_msg, exc_info=True)
        end_time = utc_now()
        return CurationRunResult(
            success=False,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=round((end_time - start_time).total_seconds() / 60),
            error=error_msg,
        )
