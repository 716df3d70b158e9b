"""
Attribution resolution.

Picks the single winning attribution for an address out of every source
record for it. Resolution is a pure function of the record set: the input
order never matters because candidates are sorted by an explicit total-order
key.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from chainscreen.attribution.records import AttributionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAttribution:
    """The winning attribution for an address."""

    address: str
    entity_id: str
    beneficial_owner: Optional[str]
    custodian: Optional[str]
    record: AttributionRecord
    candidate_count: int = 1

    @property
    def is_attributed(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "entity": self.entity_id,
            "beneficial_owner": self.beneficial_owner,
            "custodian": self.custodian,
            "source": self.record.source,
            "priority_rank": self.record.priority_rank,
            "candidate_count": self.candidate_count,
        }


@dataclass(frozen=True)
class Unattributed:
    """Marker for an address no source attributes."""

    address: str = ""

    @property
    def is_attributed(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "entity": None}


UNATTRIBUTED = Unattributed()

Resolution = Union[ResolvedAttribution, Unattributed]


def attribution_sort_key(record: AttributionRecord) -> tuple:
    """
    Total order over attribution records; the smallest key wins.

    priority_rank ascending, observed_date descending, priority ascending.
    The trailing fields only break exact ties between distinct records.
    """
    return (
        record.priority_rank,
        -record.observed_date.toordinal(),
        record.priority,
        record.source,
        record.entity_id,
        record.rule_type,
        record.rule_address,
        record.beneficial_owner or "",
        record.custodian or "",
    )


class AttributionResolver:
    """Resolves addresses to entities from ranked attribution records."""

    def resolve(
        self,
        address: str,
        records: Iterable[AttributionRecord],
    ) -> Resolution:
        """
        Resolve one address.

        Args:
            address: Address being resolved
            records: Every attribution record known for the address

        Returns:
            ResolvedAttribution for the winning record, or an Unattributed
            marker when there is no usable record
        """
        candidates = []
        for record in records:
            if record.address != address:
                logger.warning(
                    f"Ignoring attribution for {record.address} while resolving {address}"
                )
                continue
            if not record.entity_id:
                continue
            candidates.append(record)

        if not candidates:
            return Unattributed(address=address)

        winner = min(candidates, key=attribution_sort_key)
        return ResolvedAttribution(
            address=address,
            entity_id=winner.entity_id,
            beneficial_owner=winner.beneficial_owner or None,
            custodian=winner.custodian or None,
            record=winner,
            candidate_count=len(candidates),
        )

    def rank(self, records: Iterable[AttributionRecord]) -> list[AttributionRecord]:
        """All records in winning order (for display and debugging)."""
        return sorted(records, key=attribution_sort_key)

    @staticmethod
    def subject_entity(resolution: Resolution) -> Optional[str]:
        """
        Entity whose profile drives scoring.

        A beneficial owner that differs from the attributed entity takes
        precedence, so custodial or nominee attributions are scored as the
        real owner.
        """
        if not isinstance(resolution, ResolvedAttribution):
            return None
        owner = resolution.beneficial_owner
        if owner and owner != resolution.entity_id:
            return owner
        return resolution.entity_id
