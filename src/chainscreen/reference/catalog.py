"""
Reference data used by the risk calculators.

Entity type risk catalog and jurisdiction risk table. Both are read-only
snapshots: the sync job builds a new ReferenceSnapshot and publishes it, it
never edits one in place.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from chainscreen.errors import DuplicateError, ValidationError

logger = logging.getLogger(__name__)


def _check_score(name: str, value: float) -> None:
    if value < 0 or value > 100:
        raise ValidationError(f"{name} must be within [0, 100], got {value}")


@dataclass(frozen=True)
class EntityTypeEntry:
    """One row of the entity type master list."""

    entity_type: str
    category: str = ""
    risk_score_type: float = 0.0
    risk_flag: bool = False
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.entity_type:
            raise ValidationError("entity_type is required")
        _check_score("risk_score_type", self.risk_score_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "category": self.category,
            "risk_score_type": self.risk_score_type,
            "risk_flag": self.risk_flag,
            "display_name": self.display_name,
        }


@dataclass(frozen=True)
class JurisdictionEntry:
    """Risk data for one country (ISO 3166-1 alpha-2)."""

    country: str
    risk_score: float
    fatf_black: bool = False
    fatf_grey: bool = False

    def __post_init__(self) -> None:
        if not self.country:
            raise ValidationError("country is required")
        _check_score("risk_score", self.risk_score)

    @property
    def effective_score(self) -> float:
        """Base score with FATF list modifiers applied."""
        score = self.risk_score
        if self.fatf_black:
            score += 30
        if self.fatf_grey:
            score += 15
        return min(score, 100.0)


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Committed, immutable view of the reference tables."""

    entity_types: Mapping[str, EntityTypeEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )
    jurisdictions: Mapping[str, JurisdictionEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )
    loaded_at: datetime = field(default_factory=datetime.utcnow)
    version: int = 0

    @classmethod
    def build(
        cls,
        entity_types: Iterable[EntityTypeEntry] = (),
        jurisdictions: Iterable[JurisdictionEntry] = (),
        version: int = 0,
    ) -> "ReferenceSnapshot":
        """
        Build a snapshot, enforcing unique keys.

        Raises:
            DuplicateError: if an entity type or country appears twice
        """
        types: dict[str, EntityTypeEntry] = {}
        for entry in entity_types:
            key = normalize_entity_type(entry.entity_type)
            if key in types:
                raise DuplicateError(f"Duplicate entity type in catalog: {entry.entity_type}")
            types[key] = entry

        countries: dict[str, JurisdictionEntry] = {}
        for entry in jurisdictions:
            key = entry.country.strip().upper()
            if key in countries:
                raise DuplicateError(f"Duplicate country in jurisdiction table: {entry.country}")
            countries[key] = entry

        logger.debug(
            f"Built reference snapshot v{version}: "
            f"{len(types)} entity types, {len(countries)} jurisdictions"
        )
        return cls(
            entity_types=MappingProxyType(types),
            jurisdictions=MappingProxyType(countries),
            version=version,
        )

    def entity_type(self, entity_type: Optional[str]) -> Optional[EntityTypeEntry]:
        if not entity_type:
            return None
        return self.entity_types.get(normalize_entity_type(entity_type))

    def jurisdiction(self, country: Optional[str]) -> Optional[JurisdictionEntry]:
        if not country:
            return None
        return self.jurisdictions.get(country.strip().upper())


def normalize_entity_type(entity_type: str) -> str:
    """Catalog keys are case- and whitespace-insensitive."""
    return " ".join(entity_type.lower().split())
