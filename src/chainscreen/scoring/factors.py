"""
Risk factor types.

Scores are on a 0-100 scale throughout. Every calculator returns a
FactorCollection: the ordered factors that explain the score plus the
aggregate the composite aggregator consumes.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union


class Severity(str, Enum):
    """Severity band of a risk score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


HIGH_THRESHOLD = 70
MEDIUM_THRESHOLD = 40


def severity_for(score: float) -> Severity:
    """Band a 0-100 score: >=70 high, >=40 medium, else low."""
    if score >= HIGH_THRESHOLD:
        return Severity.HIGH
    if score >= MEDIUM_THRESHOLD:
        return Severity.MEDIUM
    return Severity.LOW


def clamp_score(score: float) -> float:
    return max(0.0, min(100.0, score))


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (round() is banker's)."""
    return int(math.floor(value + 0.5))


class TransactionRiskKind(str, Enum):
    """Kinds of transaction graph risk."""

    AMOUNT = "amount"
    SENDER = "sender"
    RECEIVER = "receiver"
    PATTERN = "pattern"
    TIMING = "timing"


class AnalysisType(str, Enum):
    """What a scoring result describes."""

    ADDRESS = "address"
    TRANSACTION = "transaction"


@dataclass(frozen=True)
class NumericImpact:
    """Modifier that shifts the score by a fixed amount."""

    value: float

    def to_json(self) -> float:
        return self.value


@dataclass(frozen=True)
class MaximumImpact:
    """Modifier that forces the score to the maximum."""

    def to_json(self) -> str:
        return "Maximum"


Impact = Union[NumericImpact, MaximumImpact]


@dataclass(frozen=True)
class Modifier:
    """Named adjustment applied on top of the entity type base score."""

    type: str
    impact: Impact

    @property
    def is_maximum(self) -> bool:
        return isinstance(self.impact, MaximumImpact)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "impact": self.impact.to_json()}


@dataclass
class RiskFactor:
    """Individual risk factor contributing to a collection score."""

    id: str
    score: float
    severity: Severity
    description: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "score": self.score,
            "severity": self.severity.value,
            "description": self.description,
            "details": self.details,
        }


@dataclass
class EntityRiskFactor(RiskFactor):
    """Risk derived from who the entity is."""

    entity_type: str = "unknown"
    tags: list[str] = field(default_factory=list)
    modifiers: list[Modifier] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "entity_type": self.entity_type,
            "tags": list(self.tags),
            "modifiers": [m.to_dict() for m in self.modifiers],
        })
        return data


@dataclass
class JurisdictionRiskFactor(RiskFactor):
    """Risk derived from the countries an entity is tied to."""

    countries: list[str] = field(default_factory=list)
    individual_scores: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "countries": list(self.countries),
            "individual_scores": list(self.individual_scores),
        })
        return data


@dataclass(frozen=True)
class HopContribution:
    """One counterparty or transaction contribution found during traversal."""

    tx_hash: str
    risk_score: float
    hop_level: int
    weight: float
    address: Optional[str] = None

    @property
    def weighted_score(self) -> float:
        return self.risk_score * self.weight

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "risk_score": self.risk_score,
            "hop_level": self.hop_level,
            "weight": self.weight,
            "address": self.address,
        }


@dataclass
class TransactionRiskFactor(RiskFactor):
    """Risk derived from the transaction graph around the subject."""

    kind: TransactionRiskKind = TransactionRiskKind.PATTERN
    hops: list[HopContribution] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "type": self.kind.value,
            "hops": [h.to_dict() for h in self.hops],
        })
        return data


F = TypeVar("F", bound=RiskFactor)


@dataclass
class FactorCollection(Generic[F]):
    """Ordered factors plus the score they aggregate to."""

    factors: list[F] = field(default_factory=list)
    aggregate_score: float = 0.0

    def get(self, factor_id: str) -> Optional[F]:
        for factor in self.factors:
            if factor.id == factor_id:
                return factor
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "factors": [f.to_dict() for f in self.factors],
            "aggregate_score": self.aggregate_score,
        }


@dataclass
class RiskScoringResult:
    """Complete scoring result for an address or transaction."""

    entity_risk: FactorCollection[EntityRiskFactor]
    jurisdiction_risk: FactorCollection[JurisdictionRiskFactor]
    transaction_risk: FactorCollection[TransactionRiskFactor]
    overall_risk: int
    risk_level: Severity
    analysis_type: AnalysisType
    subject: str
    attribution: dict[str, Any] = field(default_factory=dict)
    partial: bool = False
    computed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_risk": self.entity_risk.to_dict(),
            "jurisdiction_risk": self.jurisdiction_risk.to_dict(),
            "transaction_risk": self.transaction_risk.to_dict(),
            "overall_risk": self.overall_risk,
            "risk_level": self.risk_level.value,
            "analysis_type": self.analysis_type.value,
            "subject": self.subject,
            "attribution": self.attribution,
            "partial": self.partial,
            "computed_at": self.computed_at.isoformat(),
        }
