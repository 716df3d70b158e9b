"""
SQLAlchemy database models for chainscreen.

Tables for:
- Attribution records, cospend clusters and entity profiles
- Reference data (entity type catalog, jurisdictions)
- Organizations and their members
- Monitored addresses and their change log
- Compliance cases and their status history
- Immutable audit log with hash chain integrity and its chain head
- Scheduler lease locks

Column types are the generic SQLAlchemy ones so the same models run on
PostgreSQL (asyncpg) and SQLite (aiosqlite, tests).
"""

import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from chainscreen.compliance.models import (
    GENESIS_HASH,
    ChangeType,
    MemberRole,
    MemberStatus,
)
from chainscreen.compliance.state_machine import TransactionStatus


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class AttributionRecordRow(Base):
    """One ranked attribution of an address to an entity by one source."""

    __tablename__ = "attribution_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    beneficial_owner: Mapped[Optional[str]] = mapped_column(String(255))
    custodian: Mapped[Optional[str]] = mapped_column(String(255))
    rule_type: Mapped[str] = mapped_column(String(50), default="")
    rule_address: Mapped[str] = mapped_column(String(128), default="")
    priority: Mapped[int] = mapped_column(Integer, default=0)
    source: Mapped[str] = mapped_column(String(100), default="")
    observed_date: Mapped[date] = mapped_column(Date, nullable=False)
    priority_rank: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_attribution_address", "address"),
    )


class CospendClusterRow(Base):
    """Membership of an address in a cospend cluster."""

    __tablename__ = "cospend_clusters"

    address: Mapped[str] = mapped_column(String(128), primary_key=True)
    cluster_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)


class EntityProfileRow(Base):
    """Source-of-truth metadata for an entity."""

    __tablename__ = "entity_profiles"

    entity_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), default="")
    entity_type: Mapped[Optional[str]] = mapped_column(String(100))
    tags: Mapped[list] = mapped_column(JSON, default=list)
    associated_countries: Mapped[list] = mapped_column(JSON, default=list)
    no_kyc_required: Mapped[bool] = mapped_column(Boolean, default=False)
    extra: Mapped[dict] = mapped_column(JSON, default=dict)


class EntityTypeRow(Base):
    """Entity type risk catalog row."""

    __tablename__ = "entity_type_catalog"

    entity_type: Mapped[str] = mapped_column(String(100), primary_key=True)
    category: Mapped[str] = mapped_column(String(100), default="")
    risk_score_type: Mapped[float] = mapped_column(Float, nullable=False)
    risk_flag: Mapped[bool] = mapped_column(Boolean, default=False)
    display_name: Mapped[str] = mapped_column(String(255), default="")


class JurisdictionRow(Base):
    """Country risk row."""

    __tablename__ = "jurisdictions"

    country: Mapped[str] = mapped_column(String(8), primary_key=True)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False)
    fatf_black: Mapped[bool] = mapped_column(Boolean, default=False)
    fatf_grey: Mapped[bool] = mapped_column(Boolean, default=False)


class OrganizationRow(Base):
    """Organization with its screening thresholds."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    risk_score_threshold: Mapped[Optional[float]] = mapped_column(Float)
    transaction_threshold: Mapped[Optional[float]] = mapped_column(Float)

    members: Mapped[list["OrganizationMemberRow"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrganizationMemberRow.id",
    )


class OrganizationMemberRow(Base):
    __tablename__ = "organization_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("organizations.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[MemberRole] = mapped_column(SQLEnum(MemberRole), nullable=False)
    status: Mapped[MemberStatus] = mapped_column(SQLEnum(MemberStatus), nullable=False)

    organization: Mapped[OrganizationRow] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_member_org_user"),
    )


class MonitoredAddressRow(Base):
    """Address screened on behalf of an organization."""

    __tablename__ = "monitored_addresses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    blockchain: Mapped[str] = mapped_column(String(32), nullable=False)
    organization_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("organizations.id"), nullable=False
    )
    client_id: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        UniqueConstraint("address", "organization_id", name="uq_monitored_address_org"),
        Index("idx_monitored_org_active", "organization_id", "is_active"),
    )


class MonitoredAddressChangeRow(Base):
    """
    Insert-only change log of monitored addresses.

    Rows are never updated or deleted.
    """

    __tablename__ = "monitored_address_changes"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, default=uuid.uuid4)
    monitored_address_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    change_type: Mapped[ChangeType] = mapped_column(SQLEnum(ChangeType), nullable=False)
    field_name: Mapped[Optional[str]] = mapped_column(String(50))
    old_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    changed_by_id: Mapped[str] = mapped_column(String(100), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_change_address", "monitored_address_id"),
    )


class ComplianceTransactionRow(Base):
    """
    Compliance case for an observed transaction.

    status duplicates the last history row so cases can be filtered by
    status; both are written in the same transaction.
    """

    __tablename__ = "compliance_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tx_id: Mapped[str] = mapped_column(String(128), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    monitored_address_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("monitored_addresses.id"), nullable=False
    )
    client_id: Mapped[Optional[str]] = mapped_column(String(255))
    blockchain: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime)
    counterparty_entities: Mapped[list] = mapped_column(JSON, default=list)
    risk_scores: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    sar_submitted: Mapped[bool] = mapped_column(Boolean, default=False)
    sar_report_ref: Mapped[Optional[str]] = mapped_column(String(255))
    reviewer_id: Mapped[Optional[str]] = mapped_column(String(100))
    review_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approved_by: Mapped[Optional[str]] = mapped_column(String(100))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[TransactionStatus] = mapped_column(SQLEnum(TransactionStatus), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    history: Mapped[list["StatusHistoryRow"]] = relationship(
        lazy="selectin",
        order_by="StatusHistoryRow.position",
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "monitored_address_id", "tx_id", name="uq_case_org_address_tx"
        ),
        Index("idx_case_org_status", "organization_id", "status"),
    )


class StatusHistoryRow(Base):
    """Insert-only status history of a case."""

    __tablename__ = "compliance_status_history"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("compliance_transactions.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(SQLEnum(TransactionStatus), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reviewer: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        UniqueConstraint("case_id", "position", name="uq_history_case_position"),
    )


class AuditLog(Base):
    """
    Immutable audit log of case events.

    Security: Uses hash chain for tamper detection.
    Each entry includes HMAC of previous entry, creating an append-only chain.
    If any entry is modified or deleted, the chain verification will fail.
    """

    __tablename__ = "audit_log"

    # Sequential ID for ordering (in addition to UUID)
    sequence_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, default=uuid.uuid4)

    # Hash chain integrity; a unique previous_hash keeps the chain from forking
    previous_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, default=GENESIS_HASH
    )
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_resource", "resource_type", "resource_id"),
        Index("idx_audit_org", "organization_id"),
    )


class AuditChainHead(Base):
    """
    Single row holding the hash of the newest audit entry.

    Appenders lock this row before reading it, so entries are chained one
    at a time across processes.
    """

    __tablename__ = "audit_chain_head"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False, default=GENESIS_HASH)
    sequence_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SchedulerLock(Base):
    """Lease held by the worker running a scheduled job."""

    __tablename__ = "scheduler_locks"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
