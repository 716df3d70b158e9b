"""
Attribution data types.

An attribution maps an address to an entity together with beneficial owner
and custodian metadata. Several sources may attribute the same address; each
source row carries its own ranking fields.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional


@dataclass(frozen=True)
class AttributionRecord:
    """One ranked attribution row from a single source."""

    address: str
    entity_id: str
    priority_rank: int
    observed_date: date
    priority: int = 0
    beneficial_owner: Optional[str] = None
    custodian: Optional[str] = None
    rule_type: str = ""
    rule_address: str = ""
    source: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "entity_id": self.entity_id,
            "beneficial_owner": self.beneficial_owner,
            "custodian": self.custodian,
            "rule_type": self.rule_type,
            "rule_address": self.rule_address,
            "priority": self.priority,
            "source": self.source,
            "observed_date": self.observed_date.isoformat(),
            "priority_rank": self.priority_rank,
        }


@dataclass(frozen=True)
class EntityProfile:
    """Source-of-truth metadata for an attributed entity."""

    entity_id: str
    name: str = ""
    entity_type: Optional[str] = None
    tags: tuple[str, ...] = ()
    associated_countries: tuple[str, ...] = ()
    no_kyc_required: bool = False
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "name": self.name,
            "entity_type": self.entity_type,
            "tags": list(self.tags),
            "associated_countries": list(self.associated_countries),
            "no_kyc_required": self.no_kyc_required,
        }
