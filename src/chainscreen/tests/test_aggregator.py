"""
Tests for composite risk aggregation.
"""

import pytest

from chainscreen.errors import ValidationError
from chainscreen.scoring.aggregator import CompositeRiskAggregator, ScoringWeights
from chainscreen.scoring.factors import Severity, round_half_up, severity_for


class TestScoringWeights:
    """Tests for weight validation."""

    def test_defaults_sum_to_one(self):
        """Default weights are 0.4 / 0.4 / 0.2."""
        weights = ScoringWeights()

        assert weights.to_dict() == {"entity": 0.4, "jurisdiction": 0.4, "transaction": 0.2}

    def test_bad_sum_rejected(self):
        """Weights that do not sum to 1 are rejected."""
        with pytest.raises(ValidationError):
            ScoringWeights(entity=0.5, jurisdiction=0.5, transaction=0.5)

    def test_negative_weight_rejected(self):
        """Negative weights are rejected even when the sum is 1."""
        with pytest.raises(ValidationError):
            ScoringWeights(entity=1.2, jurisdiction=-0.2, transaction=0.0)


class TestCompositeRiskAggregator:
    """Tests for CompositeRiskAggregator."""

    def test_weighted_sum(self):
        """80/60/20 with 0.5/0.3/0.2 weights is 62, medium."""
        aggregator = CompositeRiskAggregator(
            ScoringWeights(entity=0.5, jurisdiction=0.3, transaction=0.2)
        )

        overall, level = aggregator.aggregate(80, 60, 20)

        assert overall == 62
        assert level == Severity.MEDIUM

    def test_half_rounds_up(self):
        """A raw score of 12.5 rounds to 13."""
        aggregator = CompositeRiskAggregator(
            ScoringWeights(entity=0.5, jurisdiction=0.5, transaction=0.0)
        )

        overall, _ = aggregator.aggregate(25, 0, 0)

        assert overall == 13

    def test_per_call_weights_override(self):
        """Weights passed to aggregate win over the constructor weights."""
        aggregator = CompositeRiskAggregator()

        overall, level = aggregator.aggregate(
            100, 0, 0, weights=ScoringWeights(entity=1.0, jurisdiction=0.0, transaction=0.0)
        )

        assert overall == 100
        assert level == Severity.HIGH

    def test_all_zero(self):
        """Zero inputs give zero, low."""
        assert CompositeRiskAggregator().aggregate(0, 0, 0) == (0, Severity.LOW)


class TestSeverityBands:
    """Tests for the shared severity banding."""

    @pytest.mark.parametrize("score,expected", [
        (0, Severity.LOW),
        (39.9, Severity.LOW),
        (40, Severity.MEDIUM),
        (69, Severity.MEDIUM),
        (70, Severity.HIGH),
        (100, Severity.HIGH),
    ])
    def test_bands(self, score, expected):
        """Bands are >=70 high, >=40 medium, else low."""
        assert severity_for(score) == expected

    def test_round_half_up(self):
        """Half values round away from zero, unlike round()."""
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4) == 2
