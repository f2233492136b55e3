"""
Data models for the mat-curator system.

This module defines the core data structures used throughout a curation run:
curation targets and their rotation records, ephemeral candidate videos and
their details, evaluation results, persisted knowledge-base entries, and the
state object that flows through the LangGraph nodes.
"""

from typing import List, Dict, Optional
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, field_validator
import re


_EXTERNAL_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class EvaluationMode(str, Enum):
    """Available evaluation strategies."""
    SIMPLE = "simple"    # One overall score against a single threshold
    STRICT = "strict"    # Dimension scores with a combined score and a per-dimension floor


class TargetKind(str, Enum):
    """What a curation target anchors on."""
    INSTRUCTOR = "instructor"
    TOPIC = "topic"


class CurationTarget(BaseModel):
    """
    An instructor name or topic anchoring one curation iteration.

    Derived attributes come from the knowledge base and the rotation registry;
    a target absent from the catalog has a video count of 0.
    """
    name: str = Field(..., description="Instructor name or topic")
    kind: TargetKind = Field(default=TargetKind.INSTRUCTOR, description="Target kind")
    video_count: int = Field(default=0, ge=0, description="Current catalog video count")
    last_curated_at: Optional[datetime] = Field(None, description="When the target was last curated")
    last_curated_cycle: Optional[int] = Field(None, ge=1, description="Rotation cycle of the last curation")
    credibility_score: Optional[float] = Field(None, ge=0, le=100, description="Registry credibility score")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Ensure the target name is not empty."""
        if not v or not v.strip():
            raise ValueError('Target name cannot be empty')
        return v.strip()

    def is_curated_in_cycle(self, cycle: int) -> bool:
        """True when this target already carries a record for ``cycle`` or later."""
        return self.last_curated_cycle is not None and self.last_curated_cycle >= cycle


class RotationRecord(BaseModel):
    """One row per target describing its most recent curation."""
    target_name: str
    last_curated_at: datetime
    videos_before: int = Field(default=0, ge=0)
    videos_after: int = Field(default=0, ge=0)
    videos_added: int = Field(default=0, ge=0)
    rotation_cycle: int = Field(default=1, ge=1)


class CandidateVideo(BaseModel):
    """Unvetted search-result metadata. Never persisted unless approved."""
    external_id: str = Field(..., description="Catalog video ID")
    title: str = Field(..., description="Video title")
    channel: str = Field(default="", description="Channel name")
    channel_id: Optional[str] = Field(None, description="Channel ID")
    description: str = Field(default="", description="Video description")
    published_at: Optional[str] = Field(None, description="Publish date in ISO format")
    thumbnail_url: Optional[str] = Field(None, description="Best available thumbnail URL")

    @field_validator('external_id')
    @classmethod
    def validate_external_id(cls, v):
        """Validate catalog video ID format."""
        if not v or not _EXTERNAL_ID_PATTERN.match(v):
            raise ValueError('External ID is empty or contains invalid characters')
        return v

    @property
    def video_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.external_id}"


class VideoDetails(BaseModel):
    """Duration and engagement counters fetched per candidate, used only for filtering."""
    external_id: str
    duration_seconds: int = Field(default=0, ge=0)
    view_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)

    def format_duration(self) -> str:
        """Render the duration as M:SS."""
        minutes, seconds = divmod(self.duration_seconds, 60)
        return f"{minutes}:{seconds:02d}"


class TaxonomyLabels(BaseModel):
    """Technique-type / position / gi-or-nogi classification."""
    technique_type: Optional[str] = Field(None, description="attack, defense or concept")
    position_category: Optional[str] = Field(None, description="Position category, e.g. closed_guard")
    gi_or_nogi: Optional[str] = Field(None, description="gi, nogi or both")
    tags: List[str] = Field(default_factory=list, description="Free-form matched keywords")

    def is_complete(self) -> bool:
        """True when all three labels are present."""
        return bool(self.technique_type and self.position_category and self.gi_or_nogi)


class EvaluationResult(BaseModel):
    """
    Outcome of evaluating one candidate.

    Simple mode fills ``quality_score``; strict mode fills ``dimension_scores``
    and ``final_score``. All scores are on a 0-100 scale.
    """
    mode: EvaluationMode
    is_instructional: bool = False
    is_target_match: bool = False
    technique: Optional[str] = None
    taxonomy: Optional[TaxonomyLabels] = None
    quality_score: Optional[float] = Field(None, ge=0, le=100)
    dimension_scores: Dict[str, float] = Field(default_factory=dict)
    final_score: Optional[float] = Field(None, ge=0, le=100)
    passed: bool = False
    reasoning: str = ""
    reject_reason: Optional[str] = None

    @property
    def score(self) -> float:
        """The score that decided the outcome, regardless of mode."""
        if self.mode == EvaluationMode.STRICT:
            return self.final_score or 0.0
        return self.quality_score or 0.0

    @property
    def stages_ok(self) -> bool:
        return self.is_instructional and self.is_target_match

    def lowest_dimension(self) -> Optional[tuple]:
        """Return ``(name, score)`` of the weakest dimension, if any."""
        if not self.dimension_scores:
            return None
        name = min(self.dimension_scores, key=self.dimension_scores.get)
        return name, self.dimension_scores[name]


class PersistedVideo(BaseModel):
    """Durable knowledge-base entry. Write-once from this subsystem's perspective."""
    external_id: str
    video_url: str
    title: str
    technique_name: str = "General Instruction"
    instructor_name: str
    channel_name: Optional[str] = None
    duration_seconds: int = 0
    view_count: int = 0
    like_count: int = 0
    thumbnail_url: Optional[str] = None
    published_at: Optional[str] = None
    technique_type: Optional[str] = None
    position_category: Optional[str] = None
    gi_or_nogi: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    quality_score: float = Field(..., ge=0, le=100)
    status: str = "active"
    source_type: str = "unified_curation"
    created_at: datetime = Field(default_factory=utc_now)


class TargetCurationStats(BaseModel):
    """Per-target counters collected during one run."""
    target: str
    searches_run: int = 0
    videos_found: int = 0
    videos_analyzed: int = 0
    videos_added: int = 0
    skipped_duplicate: int = 0
    skipped_short: int = 0
    skipped_non_instructional: int = 0
    skipped_low_quality: int = 0
    before_count: int = 0
    after_count: int = 0


class CurationRunResult(BaseModel):
    """Summary of one curation run delivered to the operator or scheduler trigger."""
    success: bool = True
    targets_curated: int = 0
    total_videos_added: int = 0
    per_target_stats: List[TargetCurationStats] = Field(default_factory=list)
    rotation_cycle: int = 1
    quota_exhausted: bool = False
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    duration_minutes: int = 0
    error: Optional[str] = None


class CurationState(BaseModel):
    """
    State object that flows through the LangGraph workflow.

    Nodes return partial updates; every field uses last-value semantics.
    """
    batch_size: int = Field(default=12, ge=1)
    rotation_cycle: int = Field(default=1, ge=1)
    targets: List[CurationTarget] = Field(default_factory=list)
    next_index: int = Field(default=0, ge=0)
    targets_completed: int = Field(default=0, ge=0)
    target_stats: List[TargetCurationStats] = Field(default_factory=list)
    quota_exhausted: bool = False
    errors: List[str] = Field(default_factory=list)
    fatal_error: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)

    def has_pending_targets(self) -> bool:
        """True while targets remain and nothing has halted the run."""
        return (
            self.next_index < len(self.targets)
            and not self.quota_exhausted
            and self.fatal_error is None
        )
