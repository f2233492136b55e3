"""
Tests for query expansion.
"""

from mat_curator.query_generator import generate_queries, QUERY_TEMPLATES
from mat_curator.models import CurationTarget


class TestQueryGenerator:
    """Query expansion."""

    def test_five_queries_in_fixed_order(self):
        queries = generate_queries(CurationTarget(name="Lachlan Giles"))

        assert queries == [
            "Lachlan Giles BJJ technique",
            "Lachlan Giles jiu jitsu instructional",
            "Lachlan Giles submission tutorial",
            "Lachlan Giles guard technique",
            "Lachlan Giles grappling drill",
        ]

    def test_deterministic(self):
        target = CurationTarget(name="Craig Jones")
        assert generate_queries(target) == generate_queries(target)
        assert len(generate_queries(target)) == len(QUERY_TEMPLATES)
