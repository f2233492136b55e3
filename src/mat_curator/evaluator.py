"""
Multi-stage AI quality evaluation for candidate videos.

One OpenAI chat completion per candidate classifies the video (instructional
vs. competition footage, interviews, podcasts, vlogs), verifies attribution to
the target and scores it. Two decision modes are available:

- simple: one overall quality score against a single threshold
- strict: named dimension scores combined into a weighted final score, with a
  per-dimension floor that vetoes an otherwise high final score

Model output is parsed into a tagged EvaluationOutcome. A malformed or missing
response becomes a fallback reject; evaluation never raises into the batch.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from openai import OpenAI, APIConnectionError, APITimeoutError, RateLimitError

from .config import Configuration
from .models import (
    CandidateVideo, VideoDetails, CurationTarget, TargetKind,
    EvaluationMode, EvaluationResult, TaxonomyLabels,
)
from .error_handling import RetryConfig, ErrorContext, retry_with_backoff

logger = logging.getLogger(__name__)

# Dimension weights for strict mode; instructor_credibility comes from the registry
STRICT_DIMENSION_WEIGHTS: Dict[str, float] = {
    'instructor_credibility': 0.30,
    'instructional_clarity': 0.20,
    'technique_depth': 0.20,
    'educational_value': 0.20,
    'production_quality': 0.10,
}
MODEL_DIMENSIONS = [name for name in STRICT_DIMENSION_WEIGHTS if name != 'instructor_credibility']

DEFAULT_CREDIBILITY = 40.0

TECHNIQUE_TYPES = ('attack', 'defense', 'concept')
GI_LABELS = {'gi': 'gi', 'nogi': 'nogi', 'no-gi': 'nogi', 'no gi': 'nogi', 'both': 'both'}

REJECT_NON_INSTRUCTIONAL = 'non_instructional'
REJECT_TARGET_MISMATCH = 'target_mismatch'
REJECT_LOW_QUALITY = 'low_quality'
REJECT_LOW_DIMENSION = 'low_dimension'
REJECT_ANALYSIS_FAILED = 'analysis_failed'

_JSON_OBJECT = re.compile(r'\{[\s\S]*\}')


@dataclass(frozen=True)
class EvaluationOutcome:
    """Tagged parse result: ``ok`` carries parsed data, ``fallback`` a default reject."""
    kind: str
    result: EvaluationResult

    @property
    def is_ok(self) -> bool:
        return self.kind == 'ok'

    @classmethod
    def ok(cls, result: EvaluationResult) -> 'EvaluationOutcome':
        return cls('ok', result)

    @classmethod
    def fallback(cls, mode: EvaluationMode, reason: str) -> 'EvaluationOutcome':
        return cls('fallback', default_reject(mode, reason))


def default_reject(mode: EvaluationMode, reason: str) -> EvaluationResult:
    """The result used whenever analysis could not be completed."""
    return EvaluationResult(
        mode=mode,
        is_instructional=False,
        is_target_match=False,
        quality_score=0.0 if mode == EvaluationMode.SIMPLE else None,
        final_score=0.0 if mode == EvaluationMode.STRICT else None,
        passed=False,
        reasoning=reason,
        reject_reason=REJECT_ANALYSIS_FAILED,
    )


def _coerce_score(value: Any) -> Optional[float]:
    """Convert a model-supplied score to a float clamped to 0-100."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:  # NaN
        return None
    return max(0.0, min(100.0, score))


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1')
    return bool(value)


def _normalize_taxonomy(data: Dict[str, Any]) -> TaxonomyLabels:
    technique_type = str(data.get('techniqueType') or '').strip().lower() or None
    if technique_type not in TECHNIQUE_TYPES:
        technique_type = None

    position = str(data.get('positionCategory') or '').strip().lower()
    position = re.sub(r'[\s-]+', '_', position) or None

    gi_or_nogi = GI_LABELS.get(str(data.get('giOrNogi') or '').strip().lower())

    tags = data.get('tags') or []
    if not isinstance(tags, list):
        tags = []

    return TaxonomyLabels(
        technique_type=technique_type,
        position_category=position,
        gi_or_nogi=gi_or_nogi,
        tags=[str(tag).strip().lower() for tag in tags if str(tag).strip()],
    )


def parse_evaluation_response(content: Optional[str], mode: EvaluationMode) -> EvaluationOutcome:
    """
    Parse raw model output into a tagged outcome. Never raises.

    Args:
        content: Raw message text returned by the model
        mode: Evaluation mode the prompt was built for

    Returns:
        EvaluationOutcome; ``fallback`` when the response is empty, not JSON,
        or missing the scores the mode requires
    """
    if not content or not content.strip():
        return EvaluationOutcome.fallback(mode, "Analysis failed: empty response")

    match = _JSON_OBJECT.search(content)
    if not match:
        return EvaluationOutcome.fallback(mode, "Analysis failed: no JSON object in response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return EvaluationOutcome.fallback(mode, f"Analysis failed: invalid JSON ({e.msg})")

    if not isinstance(data, dict):
        return EvaluationOutcome.fallback(mode, "Analysis failed: response is not an object")

    common = {
        'mode': mode,
        'is_instructional': _coerce_bool(data.get('isInstructional')),
        'is_target_match': _coerce_bool(data.get('isTargetMatch', data.get('isTargetInstructor'))),
        'technique': (str(data['technique']).strip() or None) if data.get('technique') else None,
        'reasoning': str(data.get('reasoning') or 'Parsed successfully'),
    }

    if mode == EvaluationMode.SIMPLE:
        quality = _coerce_score(data.get('qualityScore'))
        if quality is None:
            return EvaluationOutcome.fallback(mode, "Analysis failed: missing qualityScore")
        return EvaluationOutcome.ok(EvaluationResult(quality_score=quality, **common))

    raw_dimensions = data.get('dimensionScores')
    if not isinstance(raw_dimensions, dict):
        return EvaluationOutcome.fallback(mode, "Analysis failed: missing dimensionScores")

    dimensions = {}
    for name in MODEL_DIMENSIONS:
        score = _coerce_score(raw_dimensions.get(name))
        # A dimension the model did not score counts as zero
        dimensions[name] = score if score is not None else 0.0

    if not any(name in raw_dimensions for name in MODEL_DIMENSIONS):
        return EvaluationOutcome.fallback(mode, "Analysis failed: no recognised dimension scores")

    return EvaluationOutcome.ok(EvaluationResult(
        dimension_scores=dimensions,
        taxonomy=_normalize_taxonomy(data),
        **common,
    ))


def combine_dimensions(dimension_scores: Dict[str, float],
                       weights: Dict[str, float] = STRICT_DIMENSION_WEIGHTS) -> float:
    """Weighted mean of the dimensions present in ``weights``."""
    total_weight = sum(weights[name] for name in dimension_scores if name in weights)
    if total_weight == 0:
        return 0.0
    weighted = sum(score * weights[name] for name, score in dimension_scores.items() if name in weights)
    return round(weighted / total_weight, 2)


def _stage_reject_reason(result: EvaluationResult) -> Optional[str]:
    """Reject reason for a failed instructional or target-match stage."""
    if result.stages_ok:
        return None
    if not result.is_instructional:
        return REJECT_NON_INSTRUCTIONAL
    return REJECT_TARGET_MISMATCH


def apply_simple_decision(result: EvaluationResult, quality_threshold: float) -> EvaluationResult:
    """Pass when both stages hold and ``quality_score >= quality_threshold``."""
    reject_reason = result.reject_reason or _stage_reject_reason(result)
    if reject_reason is None and (result.quality_score or 0.0) < quality_threshold:
        reject_reason = REJECT_LOW_QUALITY

    return result.model_copy(update={'passed': reject_reason is None, 'reject_reason': reject_reason})


def apply_strict_decision(result: EvaluationResult, quality_threshold: float,
                          dimension_floor: float) -> EvaluationResult:
    """
    Pass when both stages hold, ``final_score >= quality_threshold`` and no
    dimension falls below ``dimension_floor``.

    A final score already present on the result is kept; otherwise it is
    computed from the dimension scores.
    """
    final_score = result.final_score
    if final_score is None:
        final_score = combine_dimensions(result.dimension_scores)

    reject_reason = result.reject_reason or _stage_reject_reason(result)
    if reject_reason is None:
        lowest = result.lowest_dimension()
        if final_score < quality_threshold:
            reject_reason = REJECT_LOW_QUALITY
        elif lowest is not None and lowest[1] < dimension_floor:
            reject_reason = REJECT_LOW_DIMENSION

    return result.model_copy(update={
        'final_score': final_score,
        'passed': reject_reason is None,
        'reject_reason': reject_reason,
    })


class QualityEvaluator:
    """
    OpenAI-backed candidate evaluator.

    Makes exactly one successful model call per candidate. Connection errors,
    timeouts and rate limits are retried briefly; any remaining failure is
    converted into a default reject.
    """

    def __init__(self, config: Configuration, client: Optional[OpenAI] = None,
                 mode: Optional[EvaluationMode] = None, max_attempts: int = 2,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the evaluator.

        Args:
            config: Configuration with OpenAI settings and thresholds
            client: Optional pre-built OpenAI client
            mode: Evaluation mode (defaults to config.evaluation_mode)
            max_attempts: Attempts for transient API failures
            sleep: Sleep function used between retries
        """
        self.config = config
        self.model = config.openai_model
        self.mode = mode or config.evaluation_mode
        self.quality_threshold = config.quality_threshold
        self.dimension_floor = config.dimension_floor
        self.client = client or OpenAI(api_key=config.openai_api_key)
        self.calls_made = 0

        self._complete = retry_with_backoff(
            RetryConfig(max_attempts=max_attempts, base_delay=2.0),
            exceptions=(APIConnectionError, APITimeoutError, RateLimitError),
            context=ErrorContext("evaluator", "chat_completion"),
            sleep=sleep,
        )(self._request_completion)

        logger.info(f"Initialized quality evaluator: model={self.model}, mode={self.mode.value}")

    def _request_completion(self, prompt: str) -> Optional[str]:
        self.calls_made += 1
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self._get_system_prompt()},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0.2,
            max_tokens=800,
        )
        if not response.choices:
            return None
        return response.choices[0].message.content

    def _get_system_prompt(self) -> str:
        return (
            "You are an expert Brazilian Jiu-Jitsu coach curating instructional videos "
            "for a training app. You judge whether a video actually teaches technique and "
            "score its instructional quality. Always respond with a single JSON object."
        )

    def _create_prompt(self, candidate: CandidateVideo, details: Optional[VideoDetails],
                       target: CurationTarget) -> str:
        duration = details.format_duration() if details else "unknown"
        if target.kind == TargetKind.INSTRUCTOR:
            attribution = f"Is {target.name} the instructor teaching (not just mentioned)?"
        else:
            attribution = f"Is the video actually teaching {target.name}?"

        header = f"""Analyze this BJJ video for instructional quality. Target: {target.name}

VIDEO INFO:
Title: {candidate.title}
Channel: {candidate.channel}
Description: {candidate.description[:500]}
Duration: {duration}

ANALYZE:
1. Is this an INSTRUCTIONAL video teaching technique?
   - REJECT: competition footage, podcasts, interviews, vlogs, highlight reels, reactions
   - ACCEPT: technique breakdowns, tutorials, drilling demonstrations
2. {attribution}
3. What specific technique is being taught?
"""

        if self.mode == EvaluationMode.SIMPLE:
            return header + """4. Quality score 0-100 based on: clear instruction, technique depth, production quality, educational value

RESPOND IN JSON:
{
  "isInstructional": boolean,
  "isTargetMatch": boolean,
  "technique": "specific technique name" or null,
  "qualityScore": 0-100,
  "reasoning": "brief explanation"
}"""

        return header + """4. Technique type: attack, defense or concept
5. Position category (closed_guard, open_guard, half_guard, mount, side_control, back, turtle,
   leg_entanglement, north_south, knee_on_belly, standing, universal)
6. Gi, No-Gi, or Both?
7. Score each dimension 0-100: instructional_clarity, technique_depth, educational_value, production_quality

RESPOND IN JSON:
{
  "isInstructional": boolean,
  "isTargetMatch": boolean,
  "technique": "specific technique name" or null,
  "techniqueType": "attack" | "defense" | "concept" or null,
  "positionCategory": "position" or null,
  "giOrNogi": "gi" | "nogi" | "both" or null,
  "tags": ["keyword", ...],
  "dimensionScores": {
    "instructional_clarity": 0-100,
    "technique_depth": 0-100,
    "educational_value": 0-100,
    "production_quality": 0-100
  },
  "reasoning": "brief explanation"
}"""

    def analyze(self, candidate: CandidateVideo, details: Optional[VideoDetails],
                target: CurationTarget) -> EvaluationOutcome:
        """Call the model and parse its answer without applying a decision rule."""
        prompt = self._create_prompt(candidate, details, target)
        try:
            content = self._complete(prompt)
        except Exception as e:
            logger.warning(f"Evaluation call failed for {candidate.external_id}: {e}")
            return EvaluationOutcome.fallback(self.mode, f"Analysis failed: {e}")
        return parse_evaluation_response(content, self.mode)

    def evaluate(self, candidate: CandidateVideo, details: Optional[VideoDetails],
                 target: CurationTarget) -> EvaluationResult:
        """
        Evaluate one candidate for one target.

        Args:
            candidate: Search-result metadata
            details: Duration and engagement counters
            target: Target the candidate was found for

        Returns:
            EvaluationResult with ``passed`` decided by the active mode
        """
        outcome = self.analyze(candidate, details, target)
        if not outcome.is_ok:
            logger.info(f"Rejecting {candidate.external_id}: {outcome.result.reasoning}")
            return outcome.result

        result = outcome.result
        if self.mode == EvaluationMode.SIMPLE:
            decided = apply_simple_decision(result, self.quality_threshold)
        else:
            credibility = target.credibility_score
            if credibility is None:
                credibility = DEFAULT_CREDIBILITY
            dimensions = dict(result.dimension_scores)
            dimensions['instructor_credibility'] = credibility
            decided = apply_strict_decision(
                result.model_copy(update={'dimension_scores': dimensions}),
                self.quality_threshold,
                self.dimension_floor,
            )

        logger.debug(
            f"Evaluated {candidate.external_id}: passed={decided.passed}, "
            f"score={decided.score:.1f}, reason={decided.reject_reason}"
        )
        return decided
