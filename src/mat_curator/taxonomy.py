"""
Taxonomy classification for approved videos.

The evaluator's own labels are used when it supplied a complete set. Otherwise
a deterministic keyword classifier derives the technique type, the position
category and the gi/no-gi label from the title and extracted technique name.
"""

import logging
import re
from typing import List, Optional, Tuple

from .models import TaxonomyLabels

logger = logging.getLogger(__name__)

DEFENSE_INDICATORS = [
    'escape', 'defense', 'defend', 'counter', 'recover', 'retention',
    'prevention', 'survival', 'protect',
]

ATTACK_INDICATORS = [
    'sweep', 'submission', 'choke', 'armbar', 'triangle', 'kimura', 'omoplata',
    'guillotine', 'finish', 'attack', 'leg lock', 'heel hook', 'pass', 'takedown', 'throw',
]

# Ordered: first match wins
POSITION_TABLE: List[Tuple[str, str]] = [
    ('closed guard', 'closed_guard'),
    ('full guard', 'closed_guard'),
    ('open guard', 'open_guard'),
    ('spider', 'open_guard'),
    ('de la riva', 'open_guard'),
    ('butterfly', 'open_guard'),
    ('half guard', 'half_guard'),
    ('deep half', 'half_guard'),
    ('z guard', 'half_guard'),
    ('mount', 'mount'),
    ('mounted', 'mount'),
    ('side control', 'side_control'),
    ('back', 'back'),
    ('back control', 'back'),
    ('turtle', 'turtle'),
    ('leg lock', 'leg_entanglement'),
    ('ashi', 'leg_entanglement'),
    ('50/50', 'leg_entanglement'),
    ('heel hook', 'leg_entanglement'),
    ('north south', 'north_south'),
    ('knee on belly', 'knee_on_belly'),
    ('standing', 'standing'),
    ('takedown', 'standing'),
    ('wrestling', 'standing'),
    ('judo', 'standing'),
]

TAG_PATTERNS = [
    'armbar', 'triangle', 'kimura', 'omoplata', 'guillotine', 'choke', 'sweep',
    'escape', 'pass', 'takedown', 'guard', 'mount', 'back', 'turtle',
    'leg lock', 'heel hook', 'defense', 'attack', 'fundamental', 'beginner',
]

MAX_TAGS = 10
DEFAULT_POSITION = 'universal'
DEFAULT_TECHNIQUE_TYPE = 'concept'

_NOGI_MARKERS = re.compile(r'\bno[\s-]?gi\b')
_GI_MARKERS = re.compile(r'\bgi\b|\blapel|\bcollar')


def _contains(text: str, keyword: str) -> bool:
    """Keyword match anchored at a word start, so 'mount' does not match 'amount'."""
    return re.search(r'\b' + re.escape(keyword), text) is not None


def determine_technique_type(text: str) -> str:
    """Defense indicators win over attack indicators; anything else is a concept."""
    if any(_contains(text, word) for word in DEFENSE_INDICATORS):
        return 'defense'
    if any(_contains(text, word) for word in ATTACK_INDICATORS):
        return 'attack'
    return DEFAULT_TECHNIQUE_TYPE


def determine_position(text: str) -> str:
    for keyword, category in POSITION_TABLE:
        if _contains(text, keyword):
            return category
    return DEFAULT_POSITION


def determine_gi_or_nogi(title: str) -> str:
    """Only explicit markers in the title move the label away from 'both'."""
    lowered = title.lower()
    if _NOGI_MARKERS.search(lowered):
        return 'nogi'
    if _GI_MARKERS.search(lowered):
        return 'gi'
    return 'both'


def extract_tags(text: str) -> List[str]:
    tags = []
    for pattern in TAG_PATTERNS:
        if pattern not in tags and _contains(text, pattern):
            tags.append(pattern)
    return tags[:MAX_TAGS]


def classify_fallback(title: str, technique_name: Optional[str] = None) -> TaxonomyLabels:
    """
    Deterministic keyword classification.

    Args:
        title: Video title
        technique_name: Technique label extracted by the evaluator, if any

    Returns:
        Complete TaxonomyLabels
    """
    text = f"{title} {technique_name or ''}".lower()
    return TaxonomyLabels(
        technique_type=determine_technique_type(text),
        position_category=determine_position(text),
        gi_or_nogi=determine_gi_or_nogi(title),
        tags=extract_tags(text),
    )


class TaxonomyClassifier:
    """Chooses between evaluator-supplied labels and the keyword fallback."""

    def classify(self, title: str, technique_name: Optional[str] = None,
                 evaluator_labels: Optional[TaxonomyLabels] = None) -> TaxonomyLabels:
        fallback = classify_fallback(title, technique_name)

        if evaluator_labels is not None and evaluator_labels.is_complete():
            logger.debug(f"Using evaluator taxonomy for '{title}'")
            return TaxonomyLabels(
                technique_type=evaluator_labels.technique_type,
                position_category=evaluator_labels.position_category,
                gi_or_nogi=evaluator_labels.gi_or_nogi,
                tags=(evaluator_labels.tags or fallback.tags)[:MAX_TAGS],
            )

        logger.debug(
            f"Fallback taxonomy for '{title}': {fallback.technique_type}/"
            f"{fallback.position_category}/{fallback.gi_or_nogi}"
        )
        return fallback
