"""
Composite risk aggregation.
"""

from dataclasses import dataclass
from typing import Any, Optional

from chainscreen.errors import ValidationError
from chainscreen.scoring.factors import Severity, round_half_up, severity_for

WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the three risk dimensions; validated on construction."""

    entity: float = 0.4
    jurisdiction: float = 0.4
    transaction: float = 0.2

    def __post_init__(self) -> None:
        for name in ("entity", "jurisdiction", "transaction"):
            value = getattr(self, name)
            if value < 0:
                raise ValidationError(f"Weight {name} must be non-negative, got {value}")
        total = self.entity + self.jurisdiction + self.transaction
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValidationError(f"Scoring weights must sum to 1.0, got {total}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "jurisdiction": self.jurisdiction,
            "transaction": self.transaction,
        }


DEFAULT_WEIGHTS = ScoringWeights()


class CompositeRiskAggregator:
    """Weighted sum of the dimension scores."""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or DEFAULT_WEIGHTS

    def aggregate(
        self,
        entity_score: float,
        jurisdiction_score: float,
        transaction_score: float,
        weights: Optional[ScoringWeights] = None,
    ) -> tuple[int, Severity]:
        """
        Combine dimension scores.

        Returns:
            (overall_risk, risk_level) with overall_risk an int in [0, 100]
        """
        w = weights or self.weights
        raw = (
            entity_score * w.entity
            + jurisdiction_score * w.jurisdiction
            + transaction_score * w.transaction
        )
        overall = max(0, min(100, round_half_up(raw)))
        return overall, severity_for(overall)
