"""
Entity risk calculation.

Base score comes from the entity type catalog; behavioural tags and explicit
modifiers adjust it. Unknown or missing entity types never fail scoring, they
score 0 and say so in the factor description.
"""

import logging
import re
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from chainscreen.attribution.records import EntityProfile
from chainscreen.reference.catalog import ReferenceSnapshot
from chainscreen.scoring.factors import (
    EntityRiskFactor,
    FactorCollection,
    Impact,
    MaximumImpact,
    Modifier,
    NumericImpact,
    Severity,
    clamp_score,
    severity_for,
)

logger = logging.getLogger(__name__)


DEFAULT_TAG_MODIFIERS: Mapping[str, Impact] = MappingProxyType({
    "ofac sanctioned": MaximumImpact(),
    "sanctioned": MaximumImpact(),
    "no kyc": NumericImpact(10),
    "mixer": NumericImpact(20),
    "darknet market": NumericImpact(25),
    "ransomware": NumericImpact(30),
})

NO_KYC_MODIFIER = Modifier(type="No KYC", impact=NumericImpact(10))


def _normalize_tags(tags: Iterable[str]) -> list[str]:
    seen = []
    for tag in tags:
        norm = " ".join(tag.lower().split())
        if norm and norm not in seen:
            seen.append(norm)
    return seen


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


class EntityRiskCalculator:
    """
    Entity risk from catalog base score plus modifiers.

    Modifier semantics:
    - NumericImpact adds its value to the running score (clamped to 0-100)
    - MaximumImpact forces 100 / high for this computation, whatever else applies
    """

    def __init__(self, tag_modifiers: Optional[Mapping[str, Impact]] = None):
        self._tag_modifiers = {
            " ".join(k.lower().split()): v
            for k, v in (tag_modifiers if tag_modifiers is not None else DEFAULT_TAG_MODIFIERS).items()
        }

    def calculate(
        self,
        entity_type: Optional[str],
        tags: Iterable[str],
        snapshot: ReferenceSnapshot,
        modifiers: Iterable[Modifier] = (),
    ) -> FactorCollection[EntityRiskFactor]:
        """
        Score an entity.

        Args:
            entity_type: Resolved entity type, None when unattributed
            tags: Behavioural tags of the entity
            snapshot: Reference data snapshot to read the catalog from
            modifiers: Extra modifiers supplied by the caller

        Returns:
            FactorCollection whose aggregate_score is the final entity score
        """
        if entity_type is None:
            return FactorCollection(
                factors=[EntityRiskFactor(
                    id="entity-type",
                    score=0.0,
                    severity=Severity.LOW,
                    description="Address is not attributed to any entity",
                    entity_type="unattributed",
                )],
                aggregate_score=0.0,
            )

        tag_list = _normalize_tags(tags)
        applied = list(modifiers) + self._modifiers_for_tags(tag_list)

        entry = snapshot.entity_type(entity_type)
        if entry is None:
            logger.warning(f"Unknown entity type '{entity_type}', scoring as 0")
            base = 0.0
            description = f"Unknown entity type '{entity_type}' (not in catalog)"
            details = {"unknown_type": True}
        else:
            base = float(entry.risk_score_type)
            description = f"Risk based on entity type {entry.entity_type}"
            details = {"category": entry.category, "risk_flag": entry.risk_flag}

        factors: list[EntityRiskFactor] = [EntityRiskFactor(
            id="entity-type",
            score=base,
            severity=severity_for(base),
            description=description,
            details=details,
            entity_type=entity_type,
            tags=tag_list,
            modifiers=applied,
        )]

        score = base
        forced_maximum = False
        for modifier in applied:
            if modifier.is_maximum:
                forced_maximum = True
                factor_score = 100.0
                severity = Severity.HIGH
            else:
                score = clamp_score(score + modifier.impact.value)
                factor_score = clamp_score(abs(modifier.impact.value))
                severity = severity_for(factor_score)
            factors.append(EntityRiskFactor(
                id=f"modifier-{_slug(modifier.type)}",
                score=factor_score,
                severity=severity,
                description=f"Modifier applied: {modifier.type}",
                entity_type=entity_type,
                tags=tag_list,
                modifiers=[modifier],
            ))

        if forced_maximum:
            score = 100.0

        return FactorCollection(factors=factors, aggregate_score=clamp_score(score))

    def calculate_for_profile(
        self,
        profile: Optional[EntityProfile],
        snapshot: ReferenceSnapshot,
        modifiers: Iterable[Modifier] = (),
    ) -> FactorCollection[EntityRiskFactor]:
        """Score an entity profile; None means unattributed."""
        if profile is None:
            return self.calculate(None, (), snapshot)
        extra = list(modifiers)
        if profile.no_kyc_required:
            extra.append(NO_KYC_MODIFIER)
        return self.calculate(
            profile.entity_type or "unknown",
            profile.tags,
            snapshot,
            modifiers=extra,
        )

    def _modifiers_for_tags(self, tags: list[str]) -> list[Modifier]:
        found = []
        for tag in tags:
            impact = self._tag_modifiers.get(tag)
            if impact is not None:
                found.append(Modifier(type=tag, impact=impact))
        return found
