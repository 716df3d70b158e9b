"""
Jurisdiction risk calculation.

One factor per distinct country; the collection score is the riskiest
country. FATF black/grey list membership raises a country's score.
"""

import logging
from typing import Iterable

from chainscreen.reference.catalog import ReferenceSnapshot
from chainscreen.scoring.factors import (
    FactorCollection,
    JurisdictionRiskFactor,
    clamp_score,
    severity_for,
)

logger = logging.getLogger(__name__)


class JurisdictionRiskCalculator:
    """Scores the countries associated with an entity."""

    def calculate(
        self,
        countries: Iterable[str],
        snapshot: ReferenceSnapshot,
    ) -> FactorCollection[JurisdictionRiskFactor]:
        distinct: list[str] = []
        for country in countries:
            code = (country or "").strip().upper()
            if code and code not in distinct:
                distinct.append(code)

        if not distinct:
            return FactorCollection(factors=[], aggregate_score=0.0)

        factors = []
        for code in distinct:
            entry = snapshot.jurisdiction(code)
            if entry is None:
                logger.warning(f"No jurisdiction risk data for {code}, scoring as 0")
                score = 0.0
                description = f"No risk data for jurisdiction {code}"
                details = {"missing_data": True}
            else:
                score = clamp_score(entry.effective_score)
                description = f"Jurisdiction risk for {code}"
                details = {
                    "base_score": entry.risk_score,
                    "fatf_black": entry.fatf_black,
                    "fatf_grey": entry.fatf_grey,
                }
            factors.append(JurisdictionRiskFactor(
                id=f"jurisdiction-{code.lower()}",
                score=score,
                severity=severity_for(score),
                description=description,
                details=details,
                countries=[code],
                individual_scores=[score],
            ))

        return FactorCollection(
            factors=factors,
            aggregate_score=max(f.score for f in factors),
        )
