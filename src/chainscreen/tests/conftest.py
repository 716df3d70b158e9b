"""
Pytest configuration and shared fixtures for chainscreen tests.
"""

from datetime import date, datetime

import pytest

from chainscreen.attribution.records import AttributionRecord, EntityProfile
from chainscreen.chain.models import ChainTransaction, TxInput, TxOutput
from chainscreen.chain.source import InMemoryChainSource
from chainscreen.compliance.locks import KeyedLock
from chainscreen.compliance.models import (
    MemberRole,
    MemberStatus,
    Organization,
    OrganizationMember,
)
from chainscreen.compliance.pipeline import CompliancePipeline
from chainscreen.compliance.registry import MonitoredAddressRegistry
from chainscreen.reference.cache import ReferenceDataCache
from chainscreen.reference.catalog import EntityTypeEntry, JurisdictionEntry, ReferenceSnapshot
from chainscreen.scoring.aggregator import ScoringWeights
from chainscreen.scoring.propagation import TraversalConfig
from chainscreen.scoring.service import RiskScoringService
from chainscreen.storage import (
    InMemoryAttributionStore,
    InMemoryAuditTrail,
    InMemoryChangeLogStore,
    InMemoryComplianceTransactionStore,
    InMemoryEntityProfileStore,
    InMemoryMonitoredAddressStore,
    InMemoryOrganizationStore,
    StaticReferenceDataLoader,
)

AUDIT_KEY = b"test-audit-key-0123456789"

# Syntactically valid addresses for registry tests
BTC_LEGACY = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
BTC_P2SH = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"
BTC_BECH32 = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
ETH_ADDRESS = "0x52908400098527886E0F7030069857D2E4169EE7"

ORG_ID = "org-1"
OWNER = "owner-1"
MANAGER = "manager-1"
ANALYST = "analyst-1"
ANALYST_2 = "analyst-2"
FORMER = "former-1"


def make_tx(txid, inputs, outputs, timestamp=None, is_coinjoin=False):
    """Build a transaction from (address, amount) pairs."""
    return ChainTransaction(
        txid=txid,
        timestamp=timestamp or datetime(2024, 1, 1, 12, 0, 0),
        inputs=tuple(TxInput(a, amt) for a, amt in inputs),
        outputs=tuple(TxOutput(a, amt) for a, amt in outputs),
        is_coinjoin=is_coinjoin,
    )


def make_record(address, entity_id, priority_rank=1, observed=date(2024, 1, 1), **kwargs):
    return AttributionRecord(
        address=address,
        entity_id=entity_id,
        priority_rank=priority_rank,
        observed_date=observed,
        **kwargs,
    )


@pytest.fixture
def reference_snapshot() -> ReferenceSnapshot:
    """Small catalog with low, medium and high risk types."""
    return ReferenceSnapshot.build(
        entity_types=[
            EntityTypeEntry("exchange", category="service", risk_score_type=20),
            EntityTypeEntry("gambling", category="service", risk_score_type=50),
            EntityTypeEntry("mixer", category="privacy", risk_score_type=80, risk_flag=True),
            EntityTypeEntry("darknet market", category="illicit", risk_score_type=90, risk_flag=True),
        ],
        jurisdictions=[
            JurisdictionEntry("US", 10),
            JurisdictionEntry("CH", 20),
            JurisdictionEntry("PA", 45, fatf_grey=True),
            JurisdictionEntry("KP", 80, fatf_black=True),
        ],
        version=1,
    )


@pytest.fixture
def reference_cache(reference_snapshot) -> ReferenceDataCache:
    return ReferenceDataCache(StaticReferenceDataLoader(reference_snapshot))


@pytest.fixture
def attribution_store() -> InMemoryAttributionStore:
    return InMemoryAttributionStore([
        make_record("addr-exchange", "exchange-1", source="chain-analytics"),
        make_record("addr-mixer", "mixer-1", source="chain-analytics"),
        make_record("addr-sanctioned", "sanctioned-1", source="ofac"),
        make_record("addr-gambling", "gambling-1", source="chain-analytics"),
    ])


@pytest.fixture
def profile_store() -> InMemoryEntityProfileStore:
    return InMemoryEntityProfileStore([
        EntityProfile("exchange-1", name="Big Exchange", entity_type="exchange",
                      associated_countries=("US",)),
        EntityProfile("mixer-1", name="Tumbler", entity_type="mixer",
                      associated_countries=("PA",)),
        EntityProfile("sanctioned-1", name="Sanctioned Desk", entity_type="exchange",
                      tags=("OFAC Sanctioned",), associated_countries=("KP",)),
        EntityProfile("gambling-1", name="Dice", entity_type="gambling",
                      associated_countries=("CH",)),
    ])


@pytest.fixture
def chain_source() -> InMemoryChainSource:
    return InMemoryChainSource()


@pytest.fixture
def traversal_config() -> TraversalConfig:
    return TraversalConfig(max_hops=2, hop_weight_decay=0.5)


@pytest.fixture
def scoring_service(
    attribution_store, profile_store, reference_cache, chain_source, traversal_config
) -> RiskScoringService:
    return RiskScoringService(
        attribution_store=attribution_store,
        profile_store=profile_store,
        reference=reference_cache,
        chain_source=chain_source,
        weights=ScoringWeights(entity=0.4, jurisdiction=0.4, transaction=0.2),
        traversal_config=traversal_config,
    )


@pytest.fixture
def organization() -> Organization:
    return Organization(
        id=ORG_ID,
        name="Acme Custody",
        owner_id=OWNER,
        members=[
            OrganizationMember(MANAGER, MemberRole.MANAGER),
            OrganizationMember(ANALYST, MemberRole.ANALYST),
            OrganizationMember(ANALYST_2, MemberRole.ANALYST),
            OrganizationMember(FORMER, MemberRole.ANALYST, MemberStatus.DISABLED),
        ],
    )


@pytest.fixture
def organization_store(organization) -> InMemoryOrganizationStore:
    return InMemoryOrganizationStore([organization])


@pytest.fixture
def address_store() -> InMemoryMonitoredAddressStore:
    return InMemoryMonitoredAddressStore()


@pytest.fixture
def change_log() -> InMemoryChangeLogStore:
    return InMemoryChangeLogStore()


@pytest.fixture
def case_store() -> InMemoryComplianceTransactionStore:
    return InMemoryComplianceTransactionStore()


@pytest.fixture
def audit_trail() -> InMemoryAuditTrail:
    return InMemoryAuditTrail(audit_key=AUDIT_KEY)


@pytest.fixture
def registry(address_store, change_log, organization_store) -> MonitoredAddressRegistry:
    return MonitoredAddressRegistry(address_store, change_log, organization_store, KeyedLock())


@pytest.fixture
def pipeline(
    scoring_service, chain_source, address_store, case_store, organization_store, audit_trail
) -> CompliancePipeline:
    return CompliancePipeline(
        scoring=scoring_service,
        chain_source=chain_source,
        addresses=address_store,
        cases=case_store,
        organizations=organization_store,
        audit=audit_trail,
        tx_limit=20,
    )
