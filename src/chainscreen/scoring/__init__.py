"""
Risk scoring module.

Provides:
- Entity risk from the entity type catalog and modifiers
- Jurisdiction risk per associated country
- Transaction graph risk with hop-weighted decay
- Composite aggregation and the scoring service facade
"""

from chainscreen.scoring.aggregator import CompositeRiskAggregator, ScoringWeights
from chainscreen.scoring.entity import DEFAULT_TAG_MODIFIERS, EntityRiskCalculator
from chainscreen.scoring.factors import (
    AnalysisType,
    EntityRiskFactor,
    FactorCollection,
    HopContribution,
    JurisdictionRiskFactor,
    MaximumImpact,
    Modifier,
    NumericImpact,
    RiskFactor,
    RiskScoringResult,
    Severity,
    TransactionRiskFactor,
    TransactionRiskKind,
)
from chainscreen.scoring.jurisdiction import JurisdictionRiskCalculator
from chainscreen.scoring.propagation import (
    AddressSeed,
    TransactionGraphPropagator,
    TransactionSeed,
    TraversalConfig,
    TraversalResult,
)
from chainscreen.scoring.service import RiskScoringService

__all__ = [
    "AddressSeed",
    "AnalysisType",
    "CompositeRiskAggregator",
    "DEFAULT_TAG_MODIFIERS",
    "EntityRiskCalculator",
    "EntityRiskFactor",
    "FactorCollection",
    "HopContribution",
    "JurisdictionRiskCalculator",
    "JurisdictionRiskFactor",
    "MaximumImpact",
    "Modifier",
    "NumericImpact",
    "RiskFactor",
    "RiskScoringResult",
    "RiskScoringService",
    "ScoringWeights",
    "Severity",
    "TransactionGraphPropagator",
    "TransactionRiskFactor",
    "TransactionRiskKind",
    "TransactionSeed",
    "TraversalConfig",
    "TraversalResult",
]
