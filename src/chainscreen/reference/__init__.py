"""
Reference data (entity type catalog, jurisdiction table) for risk scoring.
"""

from chainscreen.reference.cache import ReferenceDataCache
from chainscreen.reference.catalog import (
    EntityTypeEntry,
    JurisdictionEntry,
    ReferenceSnapshot,
    normalize_entity_type,
)

__all__ = [
    "EntityTypeEntry",
    "JurisdictionEntry",
    "ReferenceDataCache",
    "ReferenceSnapshot",
    "normalize_entity_type",
]
