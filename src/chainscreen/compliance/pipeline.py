"""
Compliance transaction pipeline.

Turns incoming transactions on monitored addresses into compliance cases and
drives cases through review. Every case event is appended to the audit trail
before the case is saved: if the audit write fails the change never becomes
visible.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Union
from uuid import UUID

from chainscreen.chain.models import ChainTransaction, Direction
from chainscreen.chain.source import BlockchainSource
from chainscreen.compliance.locks import KeyedLock
from chainscreen.compliance.models import (
    BulkItemResult,
    ComplianceTransaction,
    MonitoredAddress,
    Organization,
)
from chainscreen.compliance.state_machine import TransactionStatus
from chainscreen.errors import (
    ChainscreenError,
    DuplicateError,
    NotFoundError,
    UpstreamDataError,
    ValidationError,
)
from chainscreen.scoring.factors import RiskScoringResult
from chainscreen.scoring.service import RiskScoringService
from chainscreen.storage import (
    AuditTrail,
    ComplianceTransactionStore,
    MonitoredAddressStore,
    OrganizationStore,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
CASE_RESOURCE = "compliance_transaction"

RISK_BELOW_THRESHOLD_NOTE = "Risk score below threshold"
AMOUNT_BELOW_THRESHOLD_NOTE = "Amount below threshold"


@dataclass
class ScreeningReport:
    """Outcome of one screening run over an organization."""

    organization_id: str
    addresses_scanned: int = 0
    transactions_seen: int = 0
    skipped_known: int = 0
    cases_created: int = 0
    cases_auto_closed: int = 0
    case_ids: list[UUID] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "addresses_scanned": self.addresses_scanned,
            "transactions_seen": self.transactions_seen,
            "skipped_known": self.skipped_known,
            "cases_created": self.cases_created,
            "cases_auto_closed": self.cases_auto_closed,
            "case_ids": [str(c) for c in self.case_ids],
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def _parse_status(value: Union[str, TransactionStatus]) -> TransactionStatus:
    try:
        return TransactionStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown transaction status: {value!r}")


def _parse_case_id(value: Union[str, UUID]) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid case id: {value!r}")


class CompliancePipeline:
    """
    Case creation and review workflow.

    Usage:
        pipeline = CompliancePipeline(scoring, chain, addresses, cases, orgs, audit)
        report = await pipeline.process_organization_transactions("org-1")
        await pipeline.assign(report.case_ids[0], "org-1", "analyst-1", "manager-1")
    """

    def __init__(
        self,
        scoring: RiskScoringService,
        chain_source: BlockchainSource,
        addresses: MonitoredAddressStore,
        cases: ComplianceTransactionStore,
        organizations: OrganizationStore,
        audit: AuditTrail,
        tx_limit: int = 20,
        locks: Optional[KeyedLock] = None,
    ):
        self.scoring = scoring
        self.chain_source = chain_source
        self.addresses = addresses
        self.cases = cases
        self.organizations = organizations
        self.audit = audit
        self.tx_limit = tx_limit
        self._locks = locks or KeyedLock()

    # ------------------------------------------------------------------
    # Screening
    # ------------------------------------------------------------------

    async def process_organization_transactions(self, organization_id: str) -> ScreeningReport:
        """
        Screen recent incoming transactions of every active monitored address.

        A case is keyed by (monitored address, tx): a transaction paying two
        monitored addresses of the organization opens one case per address.
        Transactions that already have a case for the address are skipped.
        Failures on one address or transaction are recorded in the report and
        do not stop the run.
        """
        org = await self._organization(organization_id)
        report = ScreeningReport(organization_id=organization_id)

        monitored = await self.addresses.list_for_organization(organization_id, active_only=True)
        known = await self.cases.known_case_keys(organization_id)

        for address in monitored:
            report.addresses_scanned += 1
            try:
                txs = await self.chain_source.get_address_transactions(
                    address.address, limit=self.tx_limit, direction=Direction.INCOMING
                )
            except UpstreamDataError as e:
                logger.warning(f"Could not fetch transactions for {address.address}: {e}")
                report.errors.append(f"{address.address}: {e}")
                continue

            for tx in txs:
                report.transactions_seen += 1
                key = (address.id, tx.txid)
                if key in known:
                    report.skipped_known += 1
                    continue
                try:
                    case = await self._open_case(org, address, tx)
                except DuplicateError:
                    # Another worker created it since the known keys were read
                    report.skipped_known += 1
                    known.add(key)
                    continue
                except ChainscreenError as e:
                    logger.error(f"Failed to open case for {tx.txid}: {e}")
                    report.errors.append(f"{tx.txid}: {e}")
                    continue
                except Exception as e:
                    logger.exception(f"Unexpected error opening case for {tx.txid}")
                    report.errors.append(f"{tx.txid}: {e}")
                    continue

                known.add(key)
                report.cases_created += 1
                report.case_ids.append(case.id)
                if case.status == TransactionStatus.CLOSED_WITH_NOTE:
                    report.cases_auto_closed += 1

        report.completed_at = datetime.utcnow()
        logger.info(
            f"Screened organization {organization_id}: {report.addresses_scanned} addresses, "
            f"{report.cases_created} new cases ({report.cases_auto_closed} auto-closed), "
            f"{len(report.errors)} errors"
        )
        return report

    async def process_all_organizations(self) -> list[ScreeningReport]:
        """Screen every organization that has active monitored addresses."""
        reports = []
        for organization_id in await self.addresses.organizations_with_active_addresses():
            try:
                reports.append(await self.process_organization_transactions(organization_id))
            except ChainscreenError as e:
                logger.error(f"Screening failed for organization {organization_id}: {e}")
            except Exception:
                logger.exception(f"Unexpected error screening organization {organization_id}")
        return reports

    async def _open_case(
        self,
        org: Organization,
        address: MonitoredAddress,
        tx: ChainTransaction,
    ) -> ComplianceTransaction:
        async with self._locks.hold(("case", org.id, address.id, tx.txid)):
            # The known keys read at the start of the run may be stale
            if await self.cases.find_by_tx(org.id, address.id, tx.txid) is not None:
                raise DuplicateError(f"Case for {tx.txid} on {address.address} already exists")
            case, max_score = await self._build_case(org, address, tx)

            await self.audit.append(
                org.id, SYSTEM_ACTOR, "case_created", CASE_RESOURCE, str(case.id),
                {
                    "tx_id": tx.txid,
                    "monitored_address_id": str(address.id),
                    "status": case.status.value,
                    "max_risk_score": max_score,
                },
            )

            active = org.active_members()
            if case.status == TransactionStatus.UNASSIGNED and len(active) == 1:
                assignee = active[0].user_id
                case.assign(assignee)
                await self.audit.append(
                    org.id, SYSTEM_ACTOR, "case_assigned", CASE_RESOURCE, str(case.id),
                    {"assignee": assignee, "automatic": True, "status": case.status.value},
                )

            try:
                created = await self.cases.create(case)
            except DuplicateError as e:
                # Another process won the insert; void the entries written above
                await self.audit.append(
                    org.id, SYSTEM_ACTOR, "case_creation_aborted", CASE_RESOURCE, str(case.id),
                    {"tx_id": tx.txid, "monitored_address_id": str(address.id), "reason": str(e)},
                )
                raise

        logger.info(
            f"Opened case {created.id} for {tx.txid} on {address.address} "
            f"(status {created.status.value}, max risk {max_score})"
        )
        return created

    async def _build_case(
        self,
        org: Organization,
        address: MonitoredAddress,
        tx: ChainTransaction,
    ) -> tuple[ComplianceTransaction, int]:
        counterparties = [a for a in tx.input_addresses if a != address.address]
        results: list[RiskScoringResult] = list(await asyncio.gather(
            *(self.scoring.score_address(c) for c in counterparties)
        ))

        amount = tx.amount_to(address.address)
        max_score = max((r.overall_risk for r in results), default=0)
        note = self._threshold_note(org, max_score, amount)

        case = ComplianceTransaction.open(
            tx_id=tx.txid,
            organization_id=org.id,
            monitored_address_id=address.id,
            initial_status=TransactionStatus.CLOSED_WITH_NOTE if note else TransactionStatus.UNASSIGNED,
            actor=SYSTEM_ACTOR,
            blockchain=address.blockchain,
            client_id=address.client_id,
            amount=amount,
            timestamp=tx.timestamp,
            counterparty_entities=[self._counterparty(c, r) for c, r in zip(counterparties, results)],
            risk_scores=[self._score_summary(c, r) for c, r in zip(counterparties, results)],
            notes=note,
        )
        return case, max_score

    @staticmethod
    def _threshold_note(org: Organization, max_score: int, amount: float) -> Optional[str]:
        thresholds = org.settings
        if thresholds.risk_score_threshold is not None and max_score < thresholds.risk_score_threshold:
            return RISK_BELOW_THRESHOLD_NOTE
        if thresholds.transaction_threshold is not None and amount < thresholds.transaction_threshold:
            return AMOUNT_BELOW_THRESHOLD_NOTE
        return None

    @staticmethod
    def _counterparty(address: str, result: RiskScoringResult) -> dict[str, Any]:
        return {
            "address": address,
            "entity": result.attribution.get("entity"),
            "entity_type": result.attribution.get("entity_type"),
            "beneficial_owner": result.attribution.get("beneficial_owner"),
        }

    @staticmethod
    def _score_summary(address: str, result: RiskScoringResult) -> dict[str, Any]:
        return {
            "address": address,
            "overall_risk": result.overall_risk,
            "risk_level": result.risk_level.value,
            "entity_risk": result.entity_risk.aggregate_score,
            "jurisdiction_risk": result.jurisdiction_risk.aggregate_score,
            "transaction_risk": result.transaction_risk.aggregate_score,
            "partial": result.partial,
        }

    # ------------------------------------------------------------------
    # Review workflow
    # ------------------------------------------------------------------

    async def update_transaction_status(
        self,
        case_id: Union[str, UUID],
        organization_id: str,
        new_status: Union[str, TransactionStatus],
        reviewer_id: str,
        notes: Optional[str] = None,
        sar_report_ref: Optional[str] = None,
    ) -> ComplianceTransaction:
        """
        Move a case to a new status.

        Raises:
            ValidationError: unknown status or reviewer outside the organization
            NotFoundError: no such case in the organization
            StateTransitionError: illegal transition or missing SAR ref / note
            ConcurrencyError: the case changed concurrently in another process
        """
        target = _parse_status(new_status)
        case_uuid = _parse_case_id(case_id)
        org = await self._organization(organization_id)
        self._require_member(org, reviewer_id)

        async with self._locks.hold(case_uuid):
            case = await self._load_case(case_uuid, organization_id)
            expected_version = case.version
            previous = case.status

            case.apply_transition(target, reviewer_id, notes=notes, sar_report_ref=sar_report_ref)

            await self.audit.append(
                organization_id, reviewer_id, "status_change", CASE_RESOURCE, str(case.id),
                {
                    "from": previous.value,
                    "to": target.value,
                    "notes": notes,
                    "sar_report_ref": sar_report_ref,
                },
            )
            saved = await self.cases.save(case, expected_version)

        logger.info(f"Case {case_uuid}: {previous.value} -> {target.value} by {reviewer_id}")
        return saved

    async def assign(
        self,
        case_id: Union[str, UUID],
        organization_id: str,
        assignee_id: str,
        actor_id: str,
    ) -> ComplianceTransaction:
        """
        Set the reviewer of a case.

        An UNASSIGNED case moves to UNREVIEWED in the same write.

        Raises:
            ValidationError: actor or assignee is not an active member
            NotFoundError: no such case in the organization
            StateTransitionError: the case is closed
        """
        case_uuid = _parse_case_id(case_id)
        org = await self._organization(organization_id)
        self._require_member(org, actor_id)
        if not org.is_member(assignee_id):
            raise ValidationError(f"Assignee {assignee_id} is not an active member of {organization_id}")

        async with self._locks.hold(case_uuid):
            case = await self._load_case(case_uuid, organization_id)
            expected_version = case.version
            previous_status = case.status
            previous_reviewer = case.reviewer_id

            case.assign(assignee_id)

            await self.audit.append(
                organization_id, actor_id, "case_assigned", CASE_RESOURCE, str(case.id),
                {
                    "assignee": assignee_id,
                    "previous_reviewer": previous_reviewer,
                    "from": previous_status.value,
                    "to": case.status.value,
                },
            )
            saved = await self.cases.save(case, expected_version)

        logger.info(f"Case {case_uuid} assigned to {assignee_id} by {actor_id}")
        return saved

    async def bulk_update_assignee(
        self,
        organization_id: str,
        actor_id: str,
        assignments: Iterable[tuple[Union[str, UUID], str]],
    ) -> list[BulkItemResult]:
        """
        Assign many cases; each (case_id, assignee_id) pair stands alone.

        Raises:
            ValidationError: unknown organization or actor outside it
        """
        org = await self._organization(organization_id)
        self._require_member(org, actor_id)

        results = []
        for index, (case_id, assignee_id) in enumerate(assignments):
            key = str(case_id)
            try:
                case = await self.assign(case_id, organization_id, assignee_id, actor_id)
                results.append(BulkItemResult.ok(index, key, case))
            except ChainscreenError as e:
                logger.warning(f"Bulk assignment of case {key} rejected: {e}")
                results.append(BulkItemResult.failed(index, key, e))
            except Exception as e:
                logger.exception(f"Bulk assignment of case {key} failed unexpectedly")
                results.append(BulkItemResult.failed(index, key, e))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Bulk assignment for {organization_id}: {succeeded}/{len(results)} cases updated")
        return results

    async def get_case(self, case_id: Union[str, UUID], organization_id: str) -> ComplianceTransaction:
        return await self._load_case(_parse_case_id(case_id), organization_id)

    async def list_cases(
        self,
        organization_id: str,
        statuses: Optional[Iterable[Union[str, TransactionStatus]]] = None,
    ) -> list[ComplianceTransaction]:
        wanted = [_parse_status(s) for s in statuses] if statuses is not None else None
        return await self.cases.list_for_organization(organization_id, wanted)

    async def _organization(self, organization_id: str) -> Organization:
        org = await self.organizations.get(organization_id)
        if org is None:
            raise ValidationError(f"Unknown organization: {organization_id}")
        return org

    @staticmethod
    def _require_member(org: Organization, user_id: str) -> None:
        if not org.is_member(user_id):
            raise ValidationError(f"User {user_id} is not a member of organization {org.id}")

    async def _load_case(self, case_id: UUID, organization_id: str) -> ComplianceTransaction:
        case = await self.cases.get(case_id)
        if case is None or case.organization_id != organization_id:
            raise NotFoundError("case", case_id)
        return case
