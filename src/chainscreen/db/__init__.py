"""
Database module for chainscreen.
"""

from chainscreen.db.orm import (
    AttributionRecordRow,
    AuditLog,
    Base,
    ComplianceTransactionRow,
    EntityProfileRow,
    EntityTypeRow,
    JurisdictionRow,
    MonitoredAddressChangeRow,
    MonitoredAddressRow,
    OrganizationMemberRow,
    OrganizationRow,
    SchedulerLock,
    StatusHistoryRow,
)

__all__ = [
    "AttributionRecordRow",
    "AuditLog",
    "Base",
    "ComplianceTransactionRow",
    "EntityProfileRow",
    "EntityTypeRow",
    "JurisdictionRow",
    "MonitoredAddressChangeRow",
    "MonitoredAddressRow",
    "OrganizationMemberRow",
    "OrganizationRow",
    "SchedulerLock",
    "StatusHistoryRow",
]
