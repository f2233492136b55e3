"""Expansion of one curation target into catalog search queries."""

from typing import List

from .models import CurationTarget

# Each template covers a distinct angle so niche content is not starved by one generic query
QUERY_TEMPLATES = [
    "{name} BJJ technique",
    "{name} jiu jitsu instructional",
    "{name} submission tutorial",
    "{name} guard technique",
    "{name} grappling drill",
]


def generate_queries(target: CurationTarget) -> List[str]:
    """
    Deterministically expand a target into its search queries.

    Args:
        target: Instructor or topic target

    Returns:
        Queries in a fixed order
    """
    return [template.format(name=target.name) for template in QUERY_TEMPLATES]
