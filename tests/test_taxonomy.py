"""
Tests for taxonomy classification.
"""

import pytest

from mat_curator.taxonomy import (
    TaxonomyClassifier, classify_fallback, determine_technique_type,
    determine_position, determine_gi_or_nogi, extract_tags, MAX_TAGS,
)
from mat_curator.models import TaxonomyLabels


class TestFallbackClassifier:
    """Deterministic keyword classification."""

    def test_armbar_closed_guard_nogi(self):
        labels = classify_fallback("Armbar from Closed Guard No-Gi Tutorial")

        assert labels.technique_type == "attack"
        assert labels.position_category == "closed_guard"
        assert labels.gi_or_nogi == "nogi"

    def test_defense_wins_over_attack(self):
        assert determine_technique_type("escape the armbar from mount") == "defense"

    def test_concept_default(self):
        assert determine_technique_type("principles of weight distribution") == "concept"

    def test_technique_name_contributes(self):
        labels = classify_fallback("Day 3 drilling session", technique_name="Kimura from half guard")

        assert labels.technique_type == "attack"
        assert labels.position_category == "half_guard"

    def test_position_table_first_match_wins(self):
        # 'closed guard' precedes 'mount' in the table
        assert determine_position("closed guard to mount transition") == "closed_guard"

    def test_position_default_universal(self):
        assert determine_position("grip fighting fundamentals") == "universal"

    def test_word_start_matching(self):
        assert determine_position("the amount of pressure") == "universal"

    @pytest.mark.parametrize("title,expected", [
        ("Heel Hook Entries NoGi", "nogi"),
        ("Leg locks no gi", "nogi"),
        ("Collar choke from closed guard", "gi"),
        ("Lapel guard basics", "gi"),
        ("Spider guard (Gi) sweeps", "gi"),
        ("Triangle setups", "both"),
    ])
    def test_gi_detection(self, title, expected):
        assert determine_gi_or_nogi(title) == expected

    def test_gi_only_from_title(self):
        labels = classify_fallback("Triangle setups", technique_name="no-gi triangle")
        assert labels.gi_or_nogi == "both"

    def test_tags_are_capped(self):
        title = ("armbar triangle kimura omoplata guillotine choke sweep escape pass "
                 "takedown guard mount back turtle fundamental beginner")
        tags = extract_tags(title)

        assert len(tags) == MAX_TAGS
        assert tags[:3] == ["armbar", "triangle", "kimura"]

    def test_tags_have_no_duplicates(self):
        assert extract_tags("armbar armbar armbar") == ["armbar"]


class TestTaxonomyClassifier:
    """Preference between evaluator labels and the fallback."""

    def setup_method(self):
        self.classifier = TaxonomyClassifier()

    def test_complete_evaluator_labels_preferred(self):
        supplied = TaxonomyLabels(technique_type="defense", position_category="mount", gi_or_nogi="gi", tags=["escape"])

        labels = self.classifier.classify("Armbar from Closed Guard No-Gi Tutorial", evaluator_labels=supplied)

        assert (labels.technique_type, labels.position_category, labels.gi_or_nogi) == ("defense", "mount", "gi")
        assert labels.tags == ["escape"]

    def test_evaluator_labels_without_tags_borrow_fallback_tags(self):
        supplied = TaxonomyLabels(technique_type="attack", position_category="closed_guard", gi_or_nogi="nogi")

        labels = self.classifier.classify("Armbar from Closed Guard", evaluator_labels=supplied)

        assert "armbar" in labels.tags

    def test_incomplete_evaluator_labels_use_fallback(self):
        supplied = TaxonomyLabels(technique_type="attack", position_category=None, gi_or_nogi="gi")

        labels = self.classifier.classify("Armbar from Closed Guard No-Gi Tutorial", evaluator_labels=supplied)

        assert labels.position_category == "closed_guard"
        assert labels.gi_or_nogi == "nogi"

    def test_no_evaluator_labels(self):
        labels = self.classifier.classify("Side control escape")

        assert labels.technique_type == "defense"
        assert labels.position_category == "side_control"
