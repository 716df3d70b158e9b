"""
Monitored address registry.

Organizations register the addresses they screen. Every mutation is written
to the change log before the address record itself is saved, so the log is
never missing a change that is visible in the registry. Entries for a write
the store then rejects are voided by a trailing REVERTED entry.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from chainscreen.compliance.locks import KeyedLock
from chainscreen.compliance.models import (
    BulkItemResult,
    ChangeType,
    MonitoredAddress,
    MonitoredAddressChange,
    Organization,
)
from chainscreen.compliance.validation import (
    UPDATABLE_FIELDS,
    parse_address_input,
    validate_changes,
)
from chainscreen.errors import (
    ChainscreenError,
    ConcurrencyError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from chainscreen.storage import ChangeLogStore, MonitoredAddressStore, OrganizationStore

logger = logging.getLogger(__name__)


class MonitoredAddressRegistry:
    """
    Registry of monitored addresses per organization.

    Writes to one address are serialized through a KeyedLock and guarded
    across processes by the record version.
    """

    def __init__(
        self,
        addresses: MonitoredAddressStore,
        changes: ChangeLogStore,
        organizations: OrganizationStore,
        locks: Optional[KeyedLock] = None,
    ):
        self.addresses = addresses
        self.changes = changes
        self.organizations = organizations
        self._locks = locks or KeyedLock()

    async def register(
        self,
        organization_id: str,
        actor_id: str,
        address: str,
        blockchain: str = "bitcoin",
        client_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MonitoredAddress:
        """
        Start monitoring an address.

        Raises:
            ValidationError: bad address, unknown organization or non-member actor
            DuplicateError: the organization already monitors the address
        """
        org = await self._organization(organization_id)
        self._require_member(org, actor_id)
        data = parse_address_input({
            "address": address,
            "blockchain": blockchain,
            "client_id": client_id,
            "notes": notes,
        })

        async with self._locks.hold(("address", organization_id, data.address)):
            if await self.addresses.find(data.address, organization_id) is not None:
                raise DuplicateError(
                    f"Address {data.address} is already monitored by organization {organization_id}"
                )

            now = datetime.utcnow()
            record = MonitoredAddress(
                address=data.address,
                blockchain=data.blockchain,
                organization_id=organization_id,
                client_id=data.client_id,
                notes=data.notes,
                created_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            written = [await self.changes.append(MonitoredAddressChange(
                monitored_address_id=record.id,
                change_type=ChangeType.CREATE,
                organization_id=organization_id,
                changed_by_id=actor_id,
                new_value=self._snapshot(record),
                timestamp=now,
            ))]
            created = await self._persist(record, written)

        logger.info(f"Registered monitored address {created.address} for organization {organization_id}")
        return created

    async def update(
        self,
        monitored_address_id: UUID,
        organization_id: str,
        actor_id: str,
        changes: dict[str, Any],
    ) -> MonitoredAddress:
        """
        Update user-editable fields, logging one change per changed field.

        Raises:
            ValidationError: forbidden field, bad values or non-member actor
            NotFoundError: unknown address in this organization
            DuplicateError: new address already monitored by the organization
            ConcurrencyError: the record changed concurrently in another process
        """
        validate_changes(changes)
        org = await self._organization(organization_id)
        self._require_member(org, actor_id)

        async with self._locks.hold(monitored_address_id):
            record = await self._load(monitored_address_id, organization_id)
            current = {f: getattr(record, f) for f in UPDATABLE_FIELDS}
            data = parse_address_input({**current, **changes})

            diff = [
                (f, current[f], getattr(data, f))
                for f in sorted(UPDATABLE_FIELDS)
                if current[f] != getattr(data, f)
            ]
            if not diff:
                return record

            if data.address != record.address:
                clash = await self.addresses.find(data.address, organization_id)
                if clash is not None and clash.id != record.id:
                    raise DuplicateError(
                        f"Address {data.address} is already monitored by organization {organization_id}"
                    )

            now = datetime.utcnow()
            expected_version = record.version
            written = []
            for field_name, old, new in diff:
                written.append(await self.changes.append(MonitoredAddressChange(
                    monitored_address_id=record.id,
                    change_type=ChangeType.UPDATE,
                    organization_id=organization_id,
                    changed_by_id=actor_id,
                    field_name=field_name,
                    old_value=old,
                    new_value=new,
                    timestamp=now,
                )))
                setattr(record, field_name, new)

            record.updated_at = now
            saved = await self._persist(record, written, expected_version)

        logger.info(
            f"Updated monitored address {monitored_address_id}: {', '.join(f for f, _, _ in diff)}"
        )
        return saved

    async def bulk_upload(
        self,
        organization_id: str,
        actor_id: str,
        rows: Iterable[dict[str, Any]],
    ) -> list[BulkItemResult]:
        """
        Register many addresses; every row succeeds or fails on its own.

        Raises:
            ValidationError: unknown organization, or actor is not a manager
        """
        org = await self._organization(organization_id)
        if not org.can_manage(actor_id):
            raise ValidationError(f"User {actor_id} cannot bulk upload for organization {organization_id}")

        results = []
        for index, row in enumerate(rows):
            key = str(row.get("address", ""))
            try:
                record = await self.register(
                    organization_id,
                    actor_id,
                    address=row.get("address", ""),
                    blockchain=row.get("blockchain", "bitcoin"),
                    client_id=row.get("client_id"),
                    notes=row.get("notes"),
                )
                results.append(BulkItemResult.ok(index, key, record))
            except ChainscreenError as e:
                logger.warning(f"Bulk upload row {index} ({key}) rejected: {e}")
                results.append(BulkItemResult.failed(index, key, e))
            except Exception as e:
                logger.exception(f"Bulk upload row {index} ({key}) failed unexpectedly")
                results.append(BulkItemResult.failed(index, key, e))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Bulk upload for {organization_id}: {succeeded}/{len(results)} rows registered")
        return results

    async def deactivate(
        self,
        monitored_address_id: UUID,
        organization_id: str,
        actor_id: str,
    ) -> MonitoredAddress:
        """Soft-delete: the record stays, with is_active=False."""
        org = await self._organization(organization_id)
        self._require_member(org, actor_id)

        async with self._locks.hold(monitored_address_id):
            record = await self._load(monitored_address_id, organization_id)
            if not record.is_active:
                return record

            now = datetime.utcnow()
            expected_version = record.version
            written = [await self.changes.append(MonitoredAddressChange(
                monitored_address_id=record.id,
                change_type=ChangeType.DELETE,
                organization_id=organization_id,
                changed_by_id=actor_id,
                field_name="is_active",
                old_value=self._snapshot(record),
                new_value={"is_active": False},
                timestamp=now,
            ))]
            record.is_active = False
            record.updated_at = now
            saved = await self._persist(record, written, expected_version)

        logger.info(f"Deactivated monitored address {monitored_address_id}")
        return saved

    async def reactivate(
        self,
        monitored_address_id: UUID,
        organization_id: str,
        actor_id: str,
    ) -> MonitoredAddress:
        org = await self._organization(organization_id)
        self._require_member(org, actor_id)

        async with self._locks.hold(monitored_address_id):
            record = await self._load(monitored_address_id, organization_id)
            if record.is_active:
                return record

            now = datetime.utcnow()
            expected_version = record.version
            written = [await self.changes.append(MonitoredAddressChange(
                monitored_address_id=record.id,
                change_type=ChangeType.STATUS_CHANGE,
                organization_id=organization_id,
                changed_by_id=actor_id,
                field_name="is_active",
                old_value=False,
                new_value=True,
                timestamp=now,
            ))]
            record.is_active = True
            record.updated_at = now
            saved = await self._persist(record, written, expected_version)

        logger.info(f"Reactivated monitored address {monitored_address_id}")
        return saved

    async def get_history(
        self,
        monitored_address_id: UUID,
        organization_id: str,
    ) -> list[MonitoredAddressChange]:
        """Change records, newest first."""
        await self._load(monitored_address_id, organization_id)
        history = await self.changes.list_for_address(monitored_address_id)
        return sorted(history, key=lambda c: (c.timestamp, c.sequence), reverse=True)

    async def get_address(self, monitored_address_id: UUID, organization_id: str) -> MonitoredAddress:
        return await self._load(monitored_address_id, organization_id)

    async def list_addresses(
        self,
        organization_id: str,
        active_only: bool = True,
    ) -> list[MonitoredAddress]:
        await self._organization(organization_id)
        return await self.addresses.list_for_organization(organization_id, active_only=active_only)

    async def _organization(self, organization_id: str) -> Organization:
        org = await self.organizations.get(organization_id)
        if org is None:
            raise ValidationError(f"Unknown organization: {organization_id}")
        return org

    @staticmethod
    def _require_member(org: Organization, user_id: str) -> None:
        if not org.is_member(user_id):
            raise ValidationError(f"User {user_id} is not a member of organization {org.id}")

    async def _load(self, monitored_address_id: UUID, organization_id: str) -> MonitoredAddress:
        record = await self.addresses.get(monitored_address_id)
        # Records of other organizations are reported as missing
        if record is None or record.organization_id != organization_id:
            raise NotFoundError("monitored address", monitored_address_id)
        return record

    async def _persist(
        self,
        record: MonitoredAddress,
        written: list[MonitoredAddressChange],
        expected_version: Optional[int] = None,
    ) -> MonitoredAddress:
        """
        Create or save a record whose change entries are already logged.

        When the store rejects the write, a REVERTED entry voiding those
        entries is appended before the error propagates.
        """
        try:
            if expected_version is None:
                return await self.addresses.create(record)
            return await self.addresses.save(record, expected_version)
        except (ConcurrencyError, DuplicateError) as e:
            await self.changes.append(MonitoredAddressChange(
                monitored_address_id=record.id,
                change_type=ChangeType.REVERTED,
                organization_id=record.organization_id,
                changed_by_id=written[0].changed_by_id,
                old_value={"voided_sequences": [c.sequence for c in written]},
                new_value={"reason": str(e)},
                timestamp=datetime.utcnow(),
            ))
            logger.warning(f"Write to monitored address {record.id} rejected, change log entries voided: {e}")
            raise

    @staticmethod
    def _snapshot(record: MonitoredAddress) -> dict[str, Any]:
        return {
            "address": record.address,
            "blockchain": record.blockchain,
            "client_id": record.client_id,
            "notes": record.notes,
            "is_active": record.is_active,
        }
