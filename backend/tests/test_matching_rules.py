"""
Unit Tests for Description Matching Rules

Tests:
- Scorers (containment, token overlap, sequence ratio)
- Ranking, thresholds and tie-breaking
- MatchResult serialisation

Run with: pytest tests/test_matching_rules.py -v
"""

from types import SimpleNamespace

import pytest

from classification.matching_rules.description_rules import (
    DescriptionMatchingRules,
    containment_score,
    token_overlap_score,
    sequence_ratio_score,
    normalize_text,
    DEFAULT_THRESHOLDS,
)


def entry(entry_id, pattern, category):
    return SimpleNamespace(id=entry_id, pattern=pattern, category=category)


class TestScorers:
    """Test the individual scoring functions."""

    def test_normalize_text(self):
        assert normalize_text("  Zelle   PAYMENT\tTo ") == "zelle payment to"
        assert normalize_text(None) == ""

    def test_containment_is_case_insensitive(self):
        assert containment_score("ZELLE PAYMENT TO JOHN", "zelle") > 0

    def test_containment_is_not_reversed(self):
        """The pattern must sit inside the description, not the other way round."""
        assert containment_score("ZELLE", "ZELLE PAYMENT TO JOHN") == 0.0

    def test_containment_prefers_longer_patterns(self):
        description = "ZELLE PAYMENT TO JOHN"
        assert containment_score(description, "ZELLE PAYMENT") > containment_score(description, "ZELLE")

    def test_containment_is_literal(self):
        assert containment_score("AMAZON.COM PURCHASE", "amazon.com") > 0
        assert containment_score("AMAZONXCOM PURCHASE", "amazon.com") == 0.0

    def test_token_overlap(self):
        assert token_overlap_score("coffee shop purchase", "coffee shop") == pytest.approx(2 / 3)
        assert token_overlap_score("coffee shop", "") == 0.0

    def test_sequence_ratio(self):
        assert sequence_ratio_score("netflix subscription", "netflix subscription") == 1.0
        assert sequence_ratio_score("netflix", "") == 0.0


class TestDescriptionMatchingRules:
    """Test ranked matching."""

    @pytest.fixture
    def entries(self):
        return [
            entry(1, "ZELLE", "Transfers"),
            entry(2, "PAYROLL", "Wages"),
            entry(3, "ZELLE PAYMENT", "Owner Draw"),
        ]

    def test_zelle_matches_transfers_family(self, entries):
        result = DescriptionMatchingRules().find_matches("ZELLE TO JOHN", entries)

        assert result.matched
        assert result.best_match.category == "Transfers"
        assert result.best_match.entry_id == 1

    def test_more_specific_pattern_wins(self, entries):
        result = DescriptionMatchingRules().find_matches("ZELLE PAYMENT TO JOHN", entries)

        assert result.best_match.category == "Owner Draw"
        assert [c.entry_id for c in result.candidates] == [3, 1]

    def test_no_match_is_not_an_error(self, entries):
        result = DescriptionMatchingRules().find_matches("COFFEE SHOP PURCHASE", entries)

        assert not result.matched
        assert result.candidates == []

    def test_ties_keep_first_entry(self):
        entries = [entry(7, "ACH", "First"), entry(8, "ach", "Second")]

        result = DescriptionMatchingRules().find_matches("ACH DEBIT", entries)

        assert result.best_match.category == "First"

    def test_score_must_exceed_threshold(self):
        entries = [entry(1, "coffee shop", "Meals")]

        strict = DescriptionMatchingRules("token_overlap", threshold=2 / 3)
        loose = DescriptionMatchingRules("token_overlap", threshold=0.5)

        assert not strict.find_matches("coffee shop purchase", entries).matched
        assert loose.find_matches("coffee shop purchase", entries).matched

    def test_default_thresholds(self):
        assert DescriptionMatchingRules("sequence_ratio").threshold == DEFAULT_THRESHOLDS["sequence_ratio"]
        assert DescriptionMatchingRules().threshold == 0.0

    def test_entries_without_category_are_skipped(self):
        entries = [entry(1, "ZELLE", ""), entry(2, "ZELLE", "Transfers")]

        result = DescriptionMatchingRules().find_matches("ZELLE", entries)

        assert result.best_match.entry_id == 2

    def test_unknown_scorer_rejected(self):
        with pytest.raises(ValueError):
            DescriptionMatchingRules("regex")

    def test_from_settings(self, settings):
        settings.CLASSIFICATION_SCORER = "sequence_ratio"
        settings.CLASSIFICATION_THRESHOLD = 0.8

        rules = DescriptionMatchingRules.from_settings(settings)

        assert rules.scorer_name == "sequence_ratio"
        assert rules.threshold == 0.8

    def test_to_dict(self, entries):
        data = DescriptionMatchingRules().find_matches("ZELLE PAYMENT TO JOHN", entries).to_dict()

        assert data["candidates_count"] == 2
        assert data["best_match"]["category"] == "Owner Draw"
        assert data["best_match"]["entry_id"] == 3
