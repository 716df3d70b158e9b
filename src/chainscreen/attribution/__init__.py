"""
Address attribution: ranked source records and their resolution.
"""

from chainscreen.attribution.records import AttributionRecord, EntityProfile
from chainscreen.attribution.resolver import (
    UNATTRIBUTED,
    AttributionResolver,
    Resolution,
    ResolvedAttribution,
    Unattributed,
    attribution_sort_key,
)

__all__ = [
    "AttributionRecord",
    "AttributionResolver",
    "EntityProfile",
    "Resolution",
    "ResolvedAttribution",
    "UNATTRIBUTED",
    "Unattributed",
    "attribution_sort_key",
]
