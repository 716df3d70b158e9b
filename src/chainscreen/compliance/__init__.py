"""
Compliance workflow module.

Provides:
- Monitored address registry with change history
- Compliance cases and the review state machine
- Screening pipeline and its scheduler

The registry, pipeline and scheduler are imported from their own modules.
"""

from chainscreen.compliance.models import (
    AuditEntry,
    Blockchain,
    BulkItemResult,
    ChangeType,
    ComplianceTransaction,
    MemberRole,
    MemberStatus,
    MonitoredAddress,
    MonitoredAddressChange,
    Organization,
    OrganizationMember,
    OrganizationSettings,
    StatusHistoryEntry,
)
from chainscreen.compliance.state_machine import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    TransactionStatus,
    allowed_transitions,
    check_transition,
)

__all__ = [
    "AuditEntry",
    "Blockchain",
    "BulkItemResult",
    "ChangeType",
    "ComplianceTransaction",
    "MemberRole",
    "MemberStatus",
    "MonitoredAddress",
    "MonitoredAddressChange",
    "Organization",
    "OrganizationMember",
    "OrganizationSettings",
    "StatusHistoryEntry",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "TransactionStatus",
    "allowed_transitions",
    "check_transition",
]
