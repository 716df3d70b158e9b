"""
Database repositories for the persistence collaborators.

SQLAlchemy async implementations of the stores in chainscreen.storage. Each
store is built from a session factory and runs every operation in its own
transaction, so a failed write leaves nothing behind.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chainscreen.attribution.records import AttributionRecord, EntityProfile
from chainscreen.compliance.models import (
    GENESIS_HASH,
    AuditEntry,
    ComplianceTransaction,
    MonitoredAddress,
    MonitoredAddressChange,
    Organization,
    OrganizationMember,
    OrganizationSettings,
    StatusHistoryEntry,
    compute_entry_hash,
)
from chainscreen.compliance.state_machine import TransactionStatus
from chainscreen.config import settings
from chainscreen.db.orm import (
    AttributionRecordRow,
    AuditChainHead,
    AuditLog,
    ComplianceTransactionRow,
    CospendClusterRow,
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
from chainscreen.errors import ConcurrencyError, DuplicateError, NotFoundError
from chainscreen.reference.catalog import EntityTypeEntry, JurisdictionEntry, ReferenceSnapshot
from chainscreen.storage import (
    AttributionStore,
    AuditTrail,
    ChangeLogStore,
    ComplianceTransactionStore,
    EntityProfileStore,
    LeaseLock,
    MonitoredAddressStore,
    OrganizationStore,
    ReferenceDataLoader,
)

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]

CHAIN_HEAD_ID = 1
APPEND_ATTEMPTS = 3


class SQLAttributionStore(AttributionStore):
    """Attribution records."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker

    async def add(self, record: AttributionRecord) -> None:
        async with self._sessionmaker() as session, session.begin():
            session.add(AttributionRecordRow(
                address=record.address,
                entity_id=record.entity_id,
                beneficial_owner=record.beneficial_owner,
                custodian=record.custodian,
                rule_type=record.rule_type,
                rule_address=record.rule_address,
                priority=record.priority,
                source=record.source,
                observed_date=record.observed_date,
                priority_rank=record.priority_rank,
            ))

    async def records_for(self, address: str) -> list[AttributionRecord]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(AttributionRecordRow).where(AttributionRecordRow.address == address)
            )
            return [
                AttributionRecord(
                    address=row.address,
                    entity_id=row.entity_id,
                    priority_rank=row.priority_rank,
                    observed_date=row.observed_date,
                    priority=row.priority,
                    beneficial_owner=row.beneficial_owner,
                    custodian=row.custodian,
                    rule_type=row.rule_type,
                    rule_address=row.rule_address,
                    source=row.source,
                )
                for row in result.scalars().all()
            ]

    async def add_to_cluster(self, address: str, cluster_id: str) -> None:
        async with self._sessionmaker() as session, session.begin():
            await session.merge(CospendClusterRow(address=address, cluster_id=cluster_id))

    async def cluster_for(self, address: str) -> Optional[str]:
        async with self._sessionmaker() as session:
            row = await session.get(CospendClusterRow, address)
            return row.cluster_id if row else None


class SQLEntityProfileStore(EntityProfileStore):
    """Entity profiles."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker

    async def add(self, profile: EntityProfile) -> None:
        async with self._sessionmaker() as session, session.begin():
            await session.merge(EntityProfileRow(
                entity_id=profile.entity_id,
                name=profile.name,
                entity_type=profile.entity_type,
                tags=list(profile.tags),
                associated_countries=list(profile.associated_countries),
                no_kyc_required=profile.no_kyc_required,
                extra=dict(profile.extra),
            ))

    async def get(self, entity_id: str) -> Optional[EntityProfile]:
        async with self._sessionmaker() as session:
            row = await session.get(EntityProfileRow, entity_id)
            if row is None:
                return None
            return EntityProfile(
                entity_id=row.entity_id,
                name=row.name or "",
                entity_type=row.entity_type,
                tags=tuple(row.tags or ()),
                associated_countries=tuple(row.associated_countries or ()),
                no_kyc_required=bool(row.no_kyc_required),
                extra=dict(row.extra or {}),
            )


class SQLReferenceDataLoader(ReferenceDataLoader):
    """Loads the entity type catalog and jurisdiction table into a snapshot."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker
        self._loads = 0

    async def replace(
        self,
        entity_types: Iterable[EntityTypeEntry],
        jurisdictions: Iterable[JurisdictionEntry],
    ) -> None:
        """Swap in new reference tables in one transaction."""
        entity_types = list(entity_types)
        jurisdictions = list(jurisdictions)
        # Fails on duplicates before anything is written
        ReferenceSnapshot.build(entity_types, jurisdictions)

        async with self._sessionmaker() as session, session.begin():
            await session.execute(delete(EntityTypeRow))
            await session.execute(delete(JurisdictionRow))
            session.add_all([
                EntityTypeRow(
                    entity_type=e.entity_type,
                    category=e.category,
                    risk_score_type=e.risk_score_type,
                    risk_flag=e.risk_flag,
                    display_name=e.display_name,
                )
                for e in entity_types
            ])
            session.add_all([
                JurisdictionRow(
                    country=j.country.strip().upper(),
                    risk_score=j.risk_score,
                    fatf_black=j.fatf_black,
                    fatf_grey=j.fatf_grey,
                )
                for j in jurisdictions
            ])
        logger.info(
            f"Replaced reference data: {len(entity_types)} entity types, "
            f"{len(jurisdictions)} jurisdictions"
        )

    async def load(self) -> ReferenceSnapshot:
        async with self._sessionmaker() as session:
            types = (await session.execute(select(EntityTypeRow))).scalars().all()
            countries = (await session.execute(select(JurisdictionRow))).scalars().all()

        self._loads += 1
        return ReferenceSnapshot.build(
            entity_types=[
                EntityTypeEntry(
                    entity_type=row.entity_type,
                    category=row.category or "",
                    risk_score_type=row.risk_score_type,
                    risk_flag=bool(row.risk_flag),
                    display_name=row.display_name or "",
                )
                for row in types
            ],
            jurisdictions=[
                JurisdictionEntry(
                    country=row.country,
                    risk_score=row.risk_score,
                    fatf_black=bool(row.fatf_black),
                    fatf_grey=bool(row.fatf_grey),
                )
                for row in countries
            ],
            version=self._loads,
        )


def _organization_from_row(row: OrganizationRow) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        owner_id=row.owner_id,
        members=[
            OrganizationMember(user_id=m.user_id, role=m.role, status=m.status)
            for m in row.members
        ],
        settings=OrganizationSettings(
            risk_score_threshold=row.risk_score_threshold,
            transaction_threshold=row.transaction_threshold,
        ),
    )


class SQLOrganizationStore(OrganizationStore):
    """Organizations with members."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker

    async def add(self, organization: Organization) -> None:
        async with self._sessionmaker() as session, session.begin():
            row = OrganizationRow(
                id=organization.id,
                name=organization.name,
                owner_id=organization.owner_id,
                risk_score_threshold=organization.settings.risk_score_threshold,
                transaction_threshold=organization.settings.transaction_threshold,
            )
            row.members = [
                OrganizationMemberRow(user_id=m.user_id, role=m.role, status=m.status)
                for m in organization.members
            ]
            session.add(row)

    async def get(self, organization_id: str) -> Optional[Organization]:
        async with self._sessionmaker() as session:
            row = await session.get(OrganizationRow, organization_id)
            return _organization_from_row(row) if row else None

    async def list_ids(self) -> list[str]:
        async with self._sessionmaker() as session:
            result = await session.execute(select(OrganizationRow.id).order_by(OrganizationRow.id))
            return list(result.scalars().all())


def _address_from_row(row: MonitoredAddressRow) -> MonitoredAddress:
    return MonitoredAddress(
        id=row.id,
        address=row.address,
        blockchain=row.blockchain,
        organization_id=row.organization_id,
        client_id=row.client_id,
        notes=row.notes,
        is_active=row.is_active,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


class SQLMonitoredAddressStore(MonitoredAddressStore):
    """Monitored addresses with optimistic versioning."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker

    async def get(self, monitored_address_id: UUID) -> Optional[MonitoredAddress]:
        async with self._sessionmaker() as session:
            row = await session.get(MonitoredAddressRow, monitored_address_id)
            return _address_from_row(row) if row else None

    async def find(self, address: str, organization_id: str) -> Optional[MonitoredAddress]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(MonitoredAddressRow).where(
                    MonitoredAddressRow.address == address,
                    MonitoredAddressRow.organization_id == organization_id,
                )
            )
            row = result.scalar_one_or_none()
            return _address_from_row(row) if row else None

    async def list_for_organization(
        self, organization_id: str, active_only: bool = True
    ) -> list[MonitoredAddress]:
        stmt = select(MonitoredAddressRow).where(
            MonitoredAddressRow.organization_id == organization_id
        )
        if active_only:
            stmt = stmt.where(MonitoredAddressRow.is_active.is_(True))
        stmt = stmt.order_by(MonitoredAddressRow.created_at)

        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            return [_address_from_row(row) for row in result.scalars().all()]

    async def organizations_with_active_addresses(self) -> list[str]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(MonitoredAddressRow.organization_id)
                .where(MonitoredAddressRow.is_active.is_(True))
                .distinct()
                .order_by(MonitoredAddressRow.organization_id)
            )
            return list(result.scalars().all())

    async def create(self, record: MonitoredAddress) -> MonitoredAddress:
        try:
            async with self._sessionmaker() as session, session.begin():
                session.add(MonitoredAddressRow(
                    id=record.id,
                    address=record.address,
                    blockchain=record.blockchain,
                    organization_id=record.organization_id,
                    client_id=record.client_id,
                    notes=record.notes,
                    is_active=record.is_active,
                    created_by=record.created_by,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                    version=record.version,
                ))
        except IntegrityError as e:
            raise DuplicateError(
                f"Address {record.address} is already monitored by organization {record.organization_id}"
            ) from e
        return record

    async def save(self, record: MonitoredAddress, expected_version: int) -> MonitoredAddress:
        try:
            async with self._sessionmaker() as session, session.begin():
                result = await session.execute(
                    update(MonitoredAddressRow)
                    .where(
                        MonitoredAddressRow.id == record.id,
                        MonitoredAddressRow.version == expected_version,
                    )
                    .values(
                        address=record.address,
                        blockchain=record.blockchain,
                        client_id=record.client_id,
                        notes=record.notes,
                        is_active=record.is_active,
                        updated_at=record.updated_at,
                        version=expected_version + 1,
                    )
                )
                if result.rowcount == 0:
                    if await session.get(MonitoredAddressRow, record.id) is None:
                        raise NotFoundError("monitored address", record.id)
                    raise ConcurrencyError(
                        f"Monitored address {record.id} changed since version {expected_version}"
                    )
        except IntegrityError as e:
            raise DuplicateError(
                f"Address {record.address} is already monitored by organization {record.organization_id}"
            ) from e
        record.version = expected_version + 1
        return record


class SQLChangeLogStore(ChangeLogStore):
    """Insert-only monitored address change log."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker

    async def append(self, change: MonitoredAddressChange) -> MonitoredAddressChange:
        async with self._sessionmaker() as session, session.begin():
            row = MonitoredAddressChangeRow(
                id=change.id,
                monitored_address_id=change.monitored_address_id,
                change_type=change.change_type,
                field_name=change.field_name,
                old_value=change.old_value,
                new_value=change.new_value,
                changed_by_id=change.changed_by_id,
                organization_id=change.organization_id,
                timestamp=change.timestamp,
            )
            session.add(row)
            await session.flush()
            sequence = row.sequence

        return MonitoredAddressChange(
            monitored_address_id=change.monitored_address_id,
            change_type=change.change_type,
            organization_id=change.organization_id,
            changed_by_id=change.changed_by_id,
            field_name=change.field_name,
            old_value=change.old_value,
            new_value=change.new_value,
            id=change.id,
            timestamp=change.timestamp,
            sequence=sequence,
        )

    async def list_for_address(self, monitored_address_id: UUID) -> list[MonitoredAddressChange]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(MonitoredAddressChangeRow)
                .where(MonitoredAddressChangeRow.monitored_address_id == monitored_address_id)
                .order_by(MonitoredAddressChangeRow.sequence)
            )
            return [
                MonitoredAddressChange(
                    monitored_address_id=row.monitored_address_id,
                    change_type=row.change_type,
                    organization_id=row.organization_id,
                    changed_by_id=row.changed_by_id,
                    field_name=row.field_name,
                    old_value=row.old_value,
                    new_value=row.new_value,
                    id=row.id,
                    timestamp=row.timestamp,
                    sequence=row.sequence,
                )
                for row in result.scalars().all()
            ]


def _case_from_row(row: ComplianceTransactionRow) -> ComplianceTransaction:
    return ComplianceTransaction(
        id=row.id,
        tx_id=row.tx_id,
        organization_id=row.organization_id,
        monitored_address_id=row.monitored_address_id,
        status_history=[
            StatusHistoryEntry(status=h.status, timestamp=h.timestamp, reviewer=h.reviewer)
            for h in row.history
        ],
        blockchain=row.blockchain,
        client_id=row.client_id,
        amount=row.amount,
        timestamp=row.timestamp,
        counterparty_entities=list(row.counterparty_entities or []),
        risk_scores=list(row.risk_scores or []),
        notes=row.notes,
        sar_submitted=row.sar_submitted,
        sar_report_ref=row.sar_report_ref,
        reviewer_id=row.reviewer_id,
        review_timestamp=row.review_timestamp,
        approved_by=row.approved_by,
        approved_at=row.approved_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _case_values(case: ComplianceTransaction) -> dict[str, Any]:
    return {
        "client_id": case.client_id,
        "blockchain": case.blockchain,
        "amount": case.amount,
        "timestamp": case.timestamp,
        "counterparty_entities": case.counterparty_entities,
        "risk_scores": case.risk_scores,
        "notes": case.notes,
        "sar_submitted": case.sar_submitted,
        "sar_report_ref": case.sar_report_ref,
        "reviewer_id": case.reviewer_id,
        "review_timestamp": case.review_timestamp,
        "approved_by": case.approved_by,
        "approved_at": case.approved_at,
        "status": case.status,
        "updated_at": case.updated_at,
    }


class SQLComplianceTransactionStore(ComplianceTransactionStore):
    """Compliance cases with insert-only status history."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker

    async def get(self, case_id: UUID) -> Optional[ComplianceTransaction]:
        async with self._sessionmaker() as session:
            row = await session.get(ComplianceTransactionRow, case_id)
            return _case_from_row(row) if row else None

    async def find_by_tx(
        self, organization_id: str, monitored_address_id: UUID, tx_id: str
    ) -> Optional[ComplianceTransaction]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(ComplianceTransactionRow).where(
                    ComplianceTransactionRow.organization_id == organization_id,
                    ComplianceTransactionRow.monitored_address_id == monitored_address_id,
                    ComplianceTransactionRow.tx_id == tx_id,
                )
            )
            row = result.scalar_one_or_none()
            return _case_from_row(row) if row else None

    async def known_case_keys(self, organization_id: str) -> set[tuple[UUID, str]]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(
                    ComplianceTransactionRow.monitored_address_id,
                    ComplianceTransactionRow.tx_id,
                ).where(ComplianceTransactionRow.organization_id == organization_id)
            )
            return {(row.monitored_address_id, row.tx_id) for row in result}

    async def create(self, case: ComplianceTransaction) -> ComplianceTransaction:
        try:
            async with self._sessionmaker() as session, session.begin():
                session.add(ComplianceTransactionRow(
                    id=case.id,
                    tx_id=case.tx_id,
                    organization_id=case.organization_id,
                    monitored_address_id=case.monitored_address_id,
                    created_at=case.created_at,
                    version=case.version,
                    **_case_values(case),
                ))
                # Parent row must exist before its history rows
                await session.flush()
                session.add_all([
                    StatusHistoryRow(
                        case_id=case.id,
                        position=i,
                        status=entry.status,
                        timestamp=entry.timestamp,
                        reviewer=entry.reviewer,
                    )
                    for i, entry in enumerate(case.status_history)
                ])
        except IntegrityError as e:
            raise DuplicateError(
                f"Organization {case.organization_id} already has a case for {case.tx_id} "
                f"on monitored address {case.monitored_address_id}"
            ) from e
        return case

    async def save(self, case: ComplianceTransaction, expected_version: int) -> ComplianceTransaction:
        async with self._sessionmaker() as session, session.begin():
            result = await session.execute(
                update(ComplianceTransactionRow)
                .where(
                    ComplianceTransactionRow.id == case.id,
                    ComplianceTransactionRow.version == expected_version,
                )
                .values(version=expected_version + 1, **_case_values(case))
            )
            if result.rowcount == 0:
                if await session.get(ComplianceTransactionRow, case.id) is None:
                    raise NotFoundError("case", case.id)
                raise ConcurrencyError(f"Case {case.id} changed since version {expected_version}")

            stored = await session.scalar(
                select(func.count()).select_from(StatusHistoryRow).where(
                    StatusHistoryRow.case_id == case.id
                )
            )
            if stored > len(case.status_history):
                raise ConcurrencyError(f"Status history of case {case.id} may only be appended to")
            session.add_all([
                StatusHistoryRow(
                    case_id=case.id,
                    position=i,
                    status=entry.status,
                    timestamp=entry.timestamp,
                    reviewer=entry.reviewer,
                )
                for i, entry in enumerate(case.status_history)
                if i >= stored
            ])

        case.version = expected_version + 1
        return case

    async def list_for_organization(
        self,
        organization_id: str,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> list[ComplianceTransaction]:
        stmt = select(ComplianceTransactionRow).where(
            ComplianceTransactionRow.organization_id == organization_id
        )
        if statuses is not None:
            stmt = stmt.where(ComplianceTransactionRow.status.in_(list(statuses)))
        stmt = stmt.order_by(ComplianceTransactionRow.created_at.desc())

        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            return [_case_from_row(row) for row in result.scalars().all()]


def _audit_entry_from_row(row: AuditLog) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        sequence=row.sequence_id,
        organization_id=row.organization_id,
        actor_id=row.actor_id,
        action=row.action,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        details=dict(row.details or {}),
        timestamp=row.timestamp,
        previous_hash=row.previous_hash,
        entry_hash=row.entry_hash,
    )


class SQLAuditTrail(AuditTrail):
    """Hash-chained audit log table."""

    def __init__(self, sessionmaker: SessionFactory, audit_key: Optional[bytes] = None):
        self._sessionmaker = sessionmaker
        self.audit_key = audit_key or settings.audit_hmac_key.encode("utf-8")

    async def append(
        self,
        organization_id: str,
        actor_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        details = details or {}
        for attempt in range(1, APPEND_ATTEMPTS + 1):
            try:
                return await self._append_once(
                    organization_id, actor_id, action, resource_type, resource_id, details
                )
            except IntegrityError as e:
                # Lost the race to create the chain head or to extend the same entry
                if attempt == APPEND_ATTEMPTS:
                    raise ConcurrencyError("Audit chain is contended, append failed") from e
                logger.warning(f"Audit append collided with a concurrent writer (attempt {attempt})")

    async def _append_once(
        self,
        organization_id: str,
        actor_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: dict[str, Any],
    ) -> AuditEntry:
        async with self._sessionmaker() as session, session.begin():
            head = await session.scalar(
                select(AuditChainHead).where(AuditChainHead.id == CHAIN_HEAD_ID).with_for_update()
            )
            if head is None:
                # First append, or a log written before the head row existed
                last = await session.scalar(
                    select(AuditLog).order_by(AuditLog.sequence_id.desc()).limit(1)
                )
                head = AuditChainHead(
                    id=CHAIN_HEAD_ID,
                    entry_hash=last.entry_hash if last else GENESIS_HASH,
                    sequence_id=last.sequence_id if last else 0,
                )
                session.add(head)
            previous_hash = head.entry_hash
            timestamp = datetime.utcnow()
            row = AuditLog(
                previous_hash=previous_hash,
                entry_hash=compute_entry_hash(
                    previous_hash, organization_id, actor_id, action,
                    resource_type, resource_id, details, timestamp, self.audit_key,
                ),
                organization_id=organization_id,
                actor_id=actor_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
                timestamp=timestamp,
            )
            session.add(row)
            await session.flush()
            head.entry_hash = row.entry_hash
            head.sequence_id = row.sequence_id
            entry = _audit_entry_from_row(row)
        return entry

    async def list_for(self, resource_type: str, resource_id: str) -> list[AuditEntry]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(AuditLog)
                .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
                .order_by(AuditLog.sequence_id)
            )
            return [_audit_entry_from_row(row) for row in result.scalars().all()]

    async def list_all(self) -> list[AuditEntry]:
        async with self._sessionmaker() as session:
            result = await session.execute(select(AuditLog).order_by(AuditLog.sequence_id))
            return [_audit_entry_from_row(row) for row in result.scalars().all()]


class SQLLeaseLock(LeaseLock):
    """Lease rows in scheduler_locks; an expired lease can be taken over."""

    def __init__(self, sessionmaker: SessionFactory):
        self._sessionmaker = sessionmaker

    async def acquire(self, key: str, ttl_seconds: float) -> Optional[str]:
        token = secrets.token_hex(16)
        now = datetime.utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)

        async with self._sessionmaker() as session, session.begin():
            result = await session.execute(
                update(SchedulerLock)
                .where(SchedulerLock.key == key, SchedulerLock.expires_at <= now)
                .values(token=token, expires_at=expires_at)
            )
            if result.rowcount == 1:
                return token
            if await session.get(SchedulerLock, key) is not None:
                return None

        try:
            async with self._sessionmaker() as session, session.begin():
                session.add(SchedulerLock(key=key, token=token, expires_at=expires_at))
        except IntegrityError:
            logger.debug(f"Lease {key} taken by another worker")
            return None
        return token

    async def release(self, key: str, token: str) -> bool:
        async with self._sessionmaker() as session, session.begin():
            result = await session.execute(
                delete(SchedulerLock).where(SchedulerLock.key == key, SchedulerLock.token == token)
            )
            return result.rowcount == 1

    async def renew(self, key: str, token: str, ttl_seconds: float) -> bool:
        expires_at = datetime.utcnow() + timedelta(seconds=ttl_seconds)
        async with self._sessionmaker() as session, session.begin():
            result = await session.execute(
                update(SchedulerLock)
                .where(SchedulerLock.key == key, SchedulerLock.token == token)
                .values(expires_at=expires_at)
            )
            return result.rowcount == 1
