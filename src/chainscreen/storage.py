"""
Persistence collaborators.

Abstract stores consumed by the scoring service, the registry and the
pipeline, plus in-memory implementations for development and testing.
The SQLAlchemy implementations live in chainscreen.db.repositories.

In-memory stores hand out copies: a caller mutating a returned record does
not change stored state until it calls save().
"""

import copy
import logging
import secrets
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from chainscreen.attribution.records import AttributionRecord, EntityProfile
from chainscreen.compliance.models import (
    GENESIS_HASH,
    AuditEntry,
    ComplianceTransaction,
    MonitoredAddress,
    MonitoredAddressChange,
    Organization,
    compute_entry_hash,
)
from chainscreen.compliance.state_machine import TransactionStatus
from chainscreen.config import settings
from chainscreen.errors import ConcurrencyError, DuplicateError, NotFoundError
from chainscreen.reference.catalog import ReferenceSnapshot

logger = logging.getLogger(__name__)


# =============================================================================
# Abstract stores
# =============================================================================


class AttributionStore(ABC):
    @abstractmethod
    async def records_for(self, address: str) -> list[AttributionRecord]:
        """All attribution records for an address or cluster id, in no particular order."""
        pass

    @abstractmethod
    async def cluster_for(self, address: str) -> Optional[str]:
        """Cospend cluster id of an address, None when it is not clustered."""
        pass


class EntityProfileStore(ABC):
    @abstractmethod
    async def get(self, entity_id: str) -> Optional[EntityProfile]:
        pass


class ReferenceDataLoader(ABC):
    @abstractmethod
    async def load(self) -> ReferenceSnapshot:
        """Load a complete, committed reference snapshot."""
        pass


class OrganizationStore(ABC):
    @abstractmethod
    async def get(self, organization_id: str) -> Optional[Organization]:
        pass

    @abstractmethod
    async def list_ids(self) -> list[str]:
        pass


class MonitoredAddressStore(ABC):
    @abstractmethod
    async def get(self, monitored_address_id: UUID) -> Optional[MonitoredAddress]:
        pass

    @abstractmethod
    async def find(self, address: str, organization_id: str) -> Optional[MonitoredAddress]:
        pass

    @abstractmethod
    async def list_for_organization(
        self, organization_id: str, active_only: bool = True
    ) -> list[MonitoredAddress]:
        pass

    @abstractmethod
    async def organizations_with_active_addresses(self) -> list[str]:
        pass

    @abstractmethod
    async def create(self, record: MonitoredAddress) -> MonitoredAddress:
        """
        Insert a new record.

        Raises:
            DuplicateError: if (address, organization_id) already exists
        """
        pass

    @abstractmethod
    async def save(self, record: MonitoredAddress, expected_version: int) -> MonitoredAddress:
        """
        Persist changes if the stored version still matches.

        Raises:
            ConcurrencyError: if the record changed since it was read
            DuplicateError: if the new address collides with another record
        """
        pass


class ChangeLogStore(ABC):
    @abstractmethod
    async def append(self, change: MonitoredAddressChange) -> MonitoredAddressChange:
        """Append a change record; returns it with its sequence number set."""
        pass

    @abstractmethod
    async def list_for_address(self, monitored_address_id: UUID) -> list[MonitoredAddressChange]:
        pass


class ComplianceTransactionStore(ABC):
    @abstractmethod
    async def get(self, case_id: UUID) -> Optional[ComplianceTransaction]:
        pass

    @abstractmethod
    async def find_by_tx(
        self, organization_id: str, monitored_address_id: UUID, tx_id: str
    ) -> Optional[ComplianceTransaction]:
        pass

    @abstractmethod
    async def known_case_keys(self, organization_id: str) -> set[tuple[UUID, str]]:
        """(monitored_address_id, tx_id) of every case of the organization."""
        pass

    @abstractmethod
    async def create(self, case: ComplianceTransaction) -> ComplianceTransaction:
        """
        Insert a new case.

        Raises:
            DuplicateError: if the organization already has a case for the tx
                on the same monitored address
        """
        pass

    @abstractmethod
    async def save(self, case: ComplianceTransaction, expected_version: int) -> ComplianceTransaction:
        """
        Persist case changes; status history is only ever extended.

        Raises:
            ConcurrencyError: if the case changed since it was read
        """
        pass

    @abstractmethod
    async def list_for_organization(
        self,
        organization_id: str,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> list[ComplianceTransaction]:
        pass


class AuditTrail(ABC):
    @abstractmethod
    async def append(
        self,
        organization_id: str,
        actor_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        pass

    @abstractmethod
    async def list_for(self, resource_type: str, resource_id: str) -> list[AuditEntry]:
        pass

    @abstractmethod
    async def list_all(self) -> list[AuditEntry]:
        """Every entry in chain order."""
        pass


class LeaseLock(ABC):
    """Cross-process mutual exclusion with expiry."""

    @abstractmethod
    async def acquire(self, key: str, ttl_seconds: float) -> Optional[str]:
        """Returns a token when acquired, None when someone else holds it."""
        pass

    @abstractmethod
    async def release(self, key: str, token: str) -> bool:
        pass

    @abstractmethod
    async def renew(self, key: str, token: str, ttl_seconds: float) -> bool:
        """Extend a held lease; False when the token no longer holds it."""
        pass


# =============================================================================
# In-memory implementations
# =============================================================================


class InMemoryAttributionStore(AttributionStore):
    def __init__(
        self,
        records: Iterable[AttributionRecord] = (),
        clusters: Optional[dict[str, str]] = None,
    ):
        self._records: dict[str, list[AttributionRecord]] = {}
        self._clusters: dict[str, str] = dict(clusters or {})
        for record in records:
            self.add(record)

    def add(self, record: AttributionRecord) -> None:
        self._records.setdefault(record.address, []).append(record)

    def add_to_cluster(self, address: str, cluster_id: str) -> None:
        self._clusters[address] = cluster_id

    async def records_for(self, address: str) -> list[AttributionRecord]:
        return list(self._records.get(address, []))

    async def cluster_for(self, address: str) -> Optional[str]:
        return self._clusters.get(address)


class InMemoryEntityProfileStore(EntityProfileStore):
    def __init__(self, profiles: Iterable[EntityProfile] = ()):
        self._profiles = {p.entity_id: p for p in profiles}

    def add(self, profile: EntityProfile) -> None:
        self._profiles[profile.entity_id] = profile

    async def get(self, entity_id: str) -> Optional[EntityProfile]:
        return self._profiles.get(entity_id)


class StaticReferenceDataLoader(ReferenceDataLoader):
    """Serves whatever snapshot it was last given."""

    def __init__(self, snapshot: Optional[ReferenceSnapshot] = None):
        self.snapshot = snapshot or ReferenceSnapshot()
        self.load_count = 0

    async def load(self) -> ReferenceSnapshot:
        self.load_count += 1
        return self.snapshot


class InMemoryOrganizationStore(OrganizationStore):
    def __init__(self, organizations: Iterable[Organization] = ()):
        self._orgs = {o.id: copy.deepcopy(o) for o in organizations}

    def add(self, organization: Organization) -> None:
        self._orgs[organization.id] = copy.deepcopy(organization)

    async def get(self, organization_id: str) -> Optional[Organization]:
        org = self._orgs.get(organization_id)
        return copy.deepcopy(org) if org else None

    async def list_ids(self) -> list[str]:
        return sorted(self._orgs)


class InMemoryMonitoredAddressStore(MonitoredAddressStore):
    def __init__(self):
        self._records: dict[UUID, MonitoredAddress] = {}

    def _key_taken(self, address: str, organization_id: str, exclude: Optional[UUID] = None) -> bool:
        return any(
            r.address == address and r.organization_id == organization_id and r.id != exclude
            for r in self._records.values()
        )

    async def get(self, monitored_address_id: UUID) -> Optional[MonitoredAddress]:
        record = self._records.get(monitored_address_id)
        return copy.deepcopy(record) if record else None

    async def find(self, address: str, organization_id: str) -> Optional[MonitoredAddress]:
        for record in self._records.values():
            if record.address == address and record.organization_id == organization_id:
                return copy.deepcopy(record)
        return None

    async def list_for_organization(
        self, organization_id: str, active_only: bool = True
    ) -> list[MonitoredAddress]:
        found = [
            copy.deepcopy(r) for r in self._records.values()
            if r.organization_id == organization_id and (r.is_active or not active_only)
        ]
        found.sort(key=lambda r: r.created_at)
        return found

    async def organizations_with_active_addresses(self) -> list[str]:
        return sorted({r.organization_id for r in self._records.values() if r.is_active})

    async def create(self, record: MonitoredAddress) -> MonitoredAddress:
        if self._key_taken(record.address, record.organization_id):
            raise DuplicateError(
                f"Address {record.address} is already monitored by organization {record.organization_id}"
            )
        self._records[record.id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def save(self, record: MonitoredAddress, expected_version: int) -> MonitoredAddress:
        stored = self._records.get(record.id)
        if stored is None:
            raise NotFoundError("monitored address", record.id)
        if stored.version != expected_version:
            raise ConcurrencyError(
                f"Monitored address {record.id} changed (version {stored.version}, expected {expected_version})"
            )
        if self._key_taken(record.address, record.organization_id, exclude=record.id):
            raise DuplicateError(
                f"Address {record.address} is already monitored by organization {record.organization_id}"
            )
        record.version = expected_version + 1
        self._records[record.id] = copy.deepcopy(record)
        return copy.deepcopy(record)


class InMemoryChangeLogStore(ChangeLogStore):
    def __init__(self):
        self._changes: list[MonitoredAddressChange] = []

    async def append(self, change: MonitoredAddressChange) -> MonitoredAddressChange:
        stored = MonitoredAddressChange(
            monitored_address_id=change.monitored_address_id,
            change_type=change.change_type,
            organization_id=change.organization_id,
            changed_by_id=change.changed_by_id,
            field_name=change.field_name,
            old_value=copy.deepcopy(change.old_value),
            new_value=copy.deepcopy(change.new_value),
            id=change.id,
            timestamp=change.timestamp,
            sequence=len(self._changes) + 1,
        )
        self._changes.append(stored)
        return stored

    async def list_for_address(self, monitored_address_id: UUID) -> list[MonitoredAddressChange]:
        return [c for c in self._changes if c.monitored_address_id == monitored_address_id]


class InMemoryComplianceTransactionStore(ComplianceTransactionStore):
    def __init__(self):
        self._cases: dict[UUID, ComplianceTransaction] = {}

    async def get(self, case_id: UUID) -> Optional[ComplianceTransaction]:
        case = self._cases.get(case_id)
        return copy.deepcopy(case) if case else None

    async def find_by_tx(
        self, organization_id: str, monitored_address_id: UUID, tx_id: str
    ) -> Optional[ComplianceTransaction]:
        for case in self._cases.values():
            if (
                case.organization_id == organization_id
                and case.monitored_address_id == monitored_address_id
                and case.tx_id == tx_id
            ):
                return copy.deepcopy(case)
        return None

    async def known_case_keys(self, organization_id: str) -> set[tuple[UUID, str]]:
        return {
            (c.monitored_address_id, c.tx_id)
            for c in self._cases.values()
            if c.organization_id == organization_id
        }

    async def create(self, case: ComplianceTransaction) -> ComplianceTransaction:
        if (case.monitored_address_id, case.tx_id) in await self.known_case_keys(case.organization_id):
            raise DuplicateError(
                f"Organization {case.organization_id} already has a case for {case.tx_id} "
                f"on monitored address {case.monitored_address_id}"
            )
        self._cases[case.id] = copy.deepcopy(case)
        return copy.deepcopy(case)

    async def save(self, case: ComplianceTransaction, expected_version: int) -> ComplianceTransaction:
        stored = self._cases.get(case.id)
        if stored is None:
            raise NotFoundError("case", case.id)
        if stored.version != expected_version:
            raise ConcurrencyError(
                f"Case {case.id} changed (version {stored.version}, expected {expected_version})"
            )
        if case.status_history[: len(stored.status_history)] != stored.status_history:
            raise ConcurrencyError(f"Status history of case {case.id} may only be appended to")
        case.version = expected_version + 1
        self._cases[case.id] = copy.deepcopy(case)
        return copy.deepcopy(case)

    async def list_for_organization(
        self,
        organization_id: str,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> list[ComplianceTransaction]:
        wanted = set(statuses) if statuses is not None else None
        found = [
            copy.deepcopy(c) for c in self._cases.values()
            if c.organization_id == organization_id and (wanted is None or c.status in wanted)
        ]
        found.sort(key=lambda c: c.created_at, reverse=True)
        return found


class InMemoryAuditTrail(AuditTrail):
    """Append-only, hash-chained audit trail."""

    def __init__(self, audit_key: Optional[bytes] = None):
        self.audit_key = audit_key or settings.audit_hmac_key.encode("utf-8")
        self._entries: list[AuditEntry] = []

    async def append(
        self,
        organization_id: str,
        actor_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        details = copy.deepcopy(details or {})
        previous_hash = self._entries[-1].entry_hash if self._entries else GENESIS_HASH
        timestamp = datetime.utcnow()
        entry = AuditEntry(
            organization_id=organization_id,
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            sequence=len(self._entries) + 1,
            timestamp=timestamp,
            previous_hash=previous_hash,
            entry_hash=compute_entry_hash(
                previous_hash, organization_id, actor_id, action,
                resource_type, resource_id, details, timestamp, self.audit_key,
            ),
        )
        self._entries.append(entry)
        return entry

    async def list_for(self, resource_type: str, resource_id: str) -> list[AuditEntry]:
        return [
            e for e in self._entries
            if e.resource_type == resource_type and e.resource_id == resource_id
        ]

    async def list_all(self) -> list[AuditEntry]:
        return list(self._entries)


class InMemoryLeaseLock(LeaseLock):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._leases: dict[str, tuple[str, float]] = {}

    async def acquire(self, key: str, ttl_seconds: float) -> Optional[str]:
        now = self._clock()
        held = self._leases.get(key)
        if held is not None and held[1] > now:
            return None
        token = secrets.token_hex(16)
        self._leases[key] = (token, now + ttl_seconds)
        return token

    async def release(self, key: str, token: str) -> bool:
        held = self._leases.get(key)
        if held is None or held[0] != token:
            return False
        del self._leases[key]
        return True

    async def renew(self, key: str, token: str, ttl_seconds: float) -> bool:
        held = self._leases.get(key)
        if held is None or held[0] != token:
            return False
        self._leases[key] = (token, self._clock() + ttl_seconds)
        return True
