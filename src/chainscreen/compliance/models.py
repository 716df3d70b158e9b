"""
Compliance domain models.

Monitored addresses and their change log, compliance cases with their
status history, organizations, and the audit trail entry type.
"""

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from chainscreen.compliance.state_machine import (
    INITIAL_STATUSES,
    TransactionStatus,
    check_transition,
    is_terminal,
)
from chainscreen.errors import StateTransitionError, ValidationError

GENESIS_HASH = "GENESIS"


class Blockchain(str, Enum):
    """Supported blockchains."""

    BITCOIN = "bitcoin"
    ETHEREUM = "ethereum"


class ChangeType(str, Enum):
    """Kinds of monitored address change records."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    REVERTED = "reverted"


class MemberRole(str, Enum):
    """Role of a user within an organization."""

    ADMIN = "admin"
    MANAGER = "manager"
    ANALYST = "analyst"
    VIEWER = "viewer"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    INVITED = "invited"
    DISABLED = "disabled"


MANAGER_ROLES = frozenset({MemberRole.ADMIN, MemberRole.MANAGER})


@dataclass
class OrganizationMember:
    user_id: str
    role: MemberRole = MemberRole.ANALYST
    status: MemberStatus = MemberStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE


@dataclass
class OrganizationSettings:
    """Per-organization screening thresholds; None disables a threshold."""

    risk_score_threshold: Optional[float] = None
    transaction_threshold: Optional[float] = None


@dataclass
class Organization:
    """An organization that monitors addresses and reviews cases."""

    id: str
    name: str
    owner_id: str
    members: list[OrganizationMember] = field(default_factory=list)
    settings: OrganizationSettings = field(default_factory=OrganizationSettings)

    def member(self, user_id: str) -> Optional[OrganizationMember]:
        for m in self.members:
            if m.user_id == user_id:
                return m
        return None

    def is_member(self, user_id: str) -> bool:
        """Owner or active member."""
        if user_id == self.owner_id:
            return True
        m = self.member(user_id)
        return m is not None and m.is_active

    def can_manage(self, user_id: str) -> bool:
        """Owner or active admin/manager."""
        if user_id == self.owner_id:
            return True
        m = self.member(user_id)
        return m is not None and m.is_active and m.role in MANAGER_ROLES

    def active_members(self) -> list[OrganizationMember]:
        return [m for m in self.members if m.is_active]


@dataclass
class MonitoredAddress:
    """An address an organization screens incoming transactions for."""

    address: str
    blockchain: str
    organization_id: str
    client_id: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "address": self.address,
            "blockchain": self.blockchain,
            "organization_id": self.organization_id,
            "client_id": self.client_id,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
        }


@dataclass(frozen=True)
class MonitoredAddressChange:
    """Write-once record of one change to a monitored address."""

    monitored_address_id: UUID
    change_type: ChangeType
    organization_id: str
    changed_by_id: str
    field_name: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=datetime.utcnow)
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "monitored_address_id": str(self.monitored_address_id),
            "change_type": self.change_type.value,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by_id": self.changed_by_id,
            "organization_id": self.organization_id,
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
        }


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: TransactionStatus
    timestamp: datetime
    reviewer: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "reviewer": self.reviewer,
        }


@dataclass
class ComplianceTransaction:
    """
    A compliance case for one observed transaction.

    The case status is the last entry of status_history; it is never stored
    separately, so the history always ends with the current status. All
    status changes go through apply_transition.
    """

    tx_id: str
    organization_id: str
    monitored_address_id: UUID
    status_history: list[StatusHistoryEntry]
    blockchain: str = "bitcoin"
    client_id: Optional[str] = None
    amount: float = 0.0
    timestamp: Optional[datetime] = None
    counterparty_entities: list[dict[str, Any]] = field(default_factory=list)
    risk_scores: list[dict[str, Any]] = field(default_factory=list)
    notes: Optional[str] = None
    sar_submitted: bool = False
    sar_report_ref: Optional[str] = None
    reviewer_id: Optional[str] = None
    review_timestamp: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    version: int = 1

    def __post_init__(self) -> None:
        if not self.status_history:
            raise ValidationError("A case needs at least its initial status entry")

    @classmethod
    def open(
        cls,
        tx_id: str,
        organization_id: str,
        monitored_address_id: UUID,
        initial_status: TransactionStatus = TransactionStatus.UNASSIGNED,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
        **fields: Any,
    ) -> "ComplianceTransaction":
        """Create a case with its initial status history entry."""
        if initial_status not in INITIAL_STATUSES:
            raise ValidationError(f"Cases cannot be created as {initial_status.value}")
        if initial_status == TransactionStatus.CLOSED_WITH_NOTE and not fields.get("notes"):
            raise ValidationError("A case created closed needs a note")
        now = now or datetime.utcnow()
        return cls(
            tx_id=tx_id,
            organization_id=organization_id,
            monitored_address_id=monitored_address_id,
            status_history=[StatusHistoryEntry(initial_status, now, actor)],
            created_at=now,
            updated_at=now,
            **fields,
        )

    @property
    def status(self) -> TransactionStatus:
        return self.status_history[-1].status

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def max_risk_score(self) -> int:
        return max((s.get("overall_risk", 0) for s in self.risk_scores), default=0)

    def apply_transition(
        self,
        target: TransactionStatus,
        reviewer_id: Optional[str],
        notes: Optional[str] = None,
        sar_report_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StatusHistoryEntry:
        """
        Move the case to a new status.

        Preconditions are checked before anything changes, so a rejected
        transition leaves the case untouched.

        Raises:
            StateTransitionError: illegal edge or missing precondition
        """
        effective_notes = notes if notes is not None else self.notes
        check_transition(self.status, target, effective_notes, sar_report_ref)

        now = now or datetime.utcnow()
        if notes is not None:
            self.notes = notes
        if target == TransactionStatus.CLOSED_WITH_SAR:
            self.sar_submitted = True
            self.sar_report_ref = sar_report_ref
        if target == TransactionStatus.APPROVED:
            self.approved_by = reviewer_id
            self.approved_at = now

        entry = StatusHistoryEntry(target, now, reviewer_id)
        self.status_history.append(entry)
        self.review_timestamp = now
        self.updated_at = now
        return entry

    def assign(self, assignee_id: str, now: Optional[datetime] = None) -> Optional[StatusHistoryEntry]:
        """
        Set the reviewer.

        Assignment does not change status, except that an UNASSIGNED case
        moves to UNREVIEWED in the same step.

        Returns:
            The new history entry when the status moved, else None
        """
        if self.is_terminal:
            raise StateTransitionError(
                self.status.value, self.status.value,
                reason="closed cases cannot be reassigned",
            )
        now = now or datetime.utcnow()
        entry = None
        if self.status == TransactionStatus.UNASSIGNED:
            entry = self.apply_transition(TransactionStatus.UNREVIEWED, assignee_id, now=now)
        self.reviewer_id = assignee_id
        self.review_timestamp = now
        self.updated_at = now
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "tx_id": self.tx_id,
            "organization_id": self.organization_id,
            "monitored_address_id": str(self.monitored_address_id),
            "client_id": self.client_id,
            "blockchain": self.blockchain,
            "amount": self.amount,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "counterparty_entities": self.counterparty_entities,
            "risk_scores": self.risk_scores,
            "notes": self.notes,
            "sar_submitted": self.sar_submitted,
            "sar_report_ref": self.sar_report_ref,
            "reviewer_id": self.reviewer_id,
            "review_timestamp": self.review_timestamp.isoformat() if self.review_timestamp else None,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "status": self.status.value,
            "status_history": [e.to_dict() for e in self.status_history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
        }


@dataclass(frozen=True)
class AuditEntry:
    """
    Hash-chained audit record.

    entry_hash is an HMAC over the previous hash and the entry fields, so
    editing or dropping any entry breaks verification of every later one.
    """

    organization_id: str
    actor_id: str
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, Any] = field(default_factory=dict, compare=False)
    id: UUID = field(default_factory=uuid4)
    sequence: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)
    previous_hash: str = GENESIS_HASH
    entry_hash: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "sequence": self.sequence,
            "organization_id": self.organization_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
        }


def compute_entry_hash(
    previous_hash: str,
    organization_id: str,
    actor_id: str,
    action: str,
    resource_type: str,
    resource_id: str,
    details: dict[str, Any],
    timestamp: datetime,
    audit_key: bytes,
) -> str:
    """Hex HMAC-SHA256 of an audit entry linked to its predecessor."""
    data = json.dumps({
        "previous_hash": previous_hash,
        "organization_id": organization_id,
        "actor_id": actor_id,
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "details": details,
        "timestamp": timestamp.isoformat(),
    }, sort_keys=True, default=str)

    return hmac.new(audit_key, data.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_chain(entries: list[AuditEntry], audit_key: bytes) -> tuple[bool, Optional[int]]:
    """
    Verify a chain of audit entries in sequence order.

    Returns:
        (True, None) when intact, else (False, sequence of first bad entry)
    """
    if not entries:
        return True, None

    if entries[0].previous_hash != GENESIS_HASH:
        return False, entries[0].sequence

    for i, entry in enumerate(entries):
        expected = compute_entry_hash(
            previous_hash=entry.previous_hash,
            organization_id=entry.organization_id,
            actor_id=entry.actor_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            details=entry.details,
            timestamp=entry.timestamp,
            audit_key=audit_key,
        )
        if not hmac.compare_digest(expected, entry.entry_hash):
            return False, entry.sequence
        if i > 0 and entry.previous_hash != entries[i - 1].entry_hash:
            return False, entry.sequence

    return True, None


@dataclass
class BulkItemResult:
    """Outcome of one item of a bulk operation."""

    index: int
    key: str
    success: bool
    value: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, index: int, key: str, value: Any = None) -> "BulkItemResult":
        return cls(index=index, key=key, success=True, value=value)

    @classmethod
    def failed(cls, index: int, key: str, error: Exception) -> "BulkItemResult":
        return cls(
            index=index,
            key=key,
            success=False,
            error=str(error),
            error_type=type(error).__name__,
        )

    def to_dict(self) -> dict[str, Any]:
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {
            "index": self.index,
            "key": self.key,
            "success": self.success,
            "value": value,
            "error": self.error,
            "error_type": self.error_type,
        }
