"""
Tests for the risk scoring service facade.
"""

from datetime import datetime

import pytest

from chainscreen.cache import TTLCache
from chainscreen.errors import NotFoundError
from chainscreen.scoring.factors import AnalysisType, Severity
from chainscreen.scoring.service import RiskScoringService

from conftest import make_record, make_tx


@pytest.fixture
def cached_service(attribution_store, profile_store, reference_cache, chain_source):
    return RiskScoringService(
        attribution_store=attribution_store,
        profile_store=profile_store,
        reference=reference_cache,
        chain_source=chain_source,
        result_cache=TTLCache(ttl_seconds=60),
    )


class TestScoreAddress:
    """Tests for address scoring."""

    @pytest.mark.asyncio
    async def test_attributed_address(self, scoring_service):
        """Entity and jurisdiction risk come from the attributed profile."""
        result = await scoring_service.score_address("addr-mixer")

        assert result.entity_risk.aggregate_score == 80
        assert result.jurisdiction_risk.aggregate_score == 60
        assert result.transaction_risk.aggregate_score == 0
        # 80 * 0.4 + 60 * 0.4
        assert result.overall_risk == 56
        assert result.risk_level == Severity.MEDIUM
        assert result.analysis_type == AnalysisType.ADDRESS
        assert result.attribution["entity"] == "mixer-1"
        assert result.attribution["entity_type"] == "mixer"

    @pytest.mark.asyncio
    async def test_sanctioned_entity(self, scoring_service):
        """A sanctioned entity in a black listed country is high risk."""
        result = await scoring_service.score_address("addr-sanctioned")

        assert result.entity_risk.aggregate_score == 100
        assert result.jurisdiction_risk.aggregate_score == 100
        assert result.overall_risk == 80
        assert result.risk_level == Severity.HIGH

    @pytest.mark.asyncio
    async def test_unattributed_address(self, scoring_service):
        """Unknown addresses score zero without failing."""
        result = await scoring_service.score_address("addr-unknown")

        assert result.overall_risk == 0
        assert result.risk_level == Severity.LOW
        assert result.attribution == {"address": "addr-unknown", "entity": None}
        assert result.jurisdiction_risk.factors == []

    @pytest.mark.asyncio
    async def test_beneficial_owner_profile_is_scored(self, scoring_service, attribution_store):
        """A custodial attribution is scored as its beneficial owner."""
        attribution_store.add(make_record("addr-custody", "exchange-1", beneficial_owner="mixer-1"))

        result = await scoring_service.score_address("addr-custody")

        assert result.entity_risk.aggregate_score == 80
        assert result.attribution["entity"] == "exchange-1"
        assert result.attribution["beneficial_owner"] == "mixer-1"
        assert result.attribution["scored_entity"] == "mixer-1"

    @pytest.mark.asyncio
    async def test_missing_owner_profile_falls_back(self, scoring_service, attribution_store):
        """Without an owner profile the attributed entity is scored."""
        attribution_store.add(make_record("addr-custody", "exchange-1", beneficial_owner="ghost"))

        result = await scoring_service.score_address("addr-custody")

        assert result.entity_risk.aggregate_score == 20
        assert result.attribution["scored_entity"] == "exchange-1"

    @pytest.mark.asyncio
    async def test_graph_risk_from_counterparty(self, scoring_service, chain_source):
        """A risky sender raises transaction risk by its direct score times decay."""
        chain_source.add_transaction(make_tx(
            "t1", [("addr-mixer", 1.0)], [("addr-exchange", 1.0)], timestamp=datetime(2024, 1, 1)
        ))

        result = await scoring_service.score_address("addr-exchange")

        sender = result.transaction_risk.get("tx-sender")
        # max(entity 80, jurisdiction 60) * 0.5
        assert sender.score == 40
        # 20 * 0.4 + 10 * 0.4 + 40 * 0.2
        assert result.overall_risk == 20

    @pytest.mark.asyncio
    async def test_direct_risk(self, scoring_service):
        """Direct risk is the larger of entity and jurisdiction risk."""
        assert await scoring_service.direct_risk("addr-gambling") == 50
        assert await scoring_service.direct_risk("addr-unknown") == 0

    @pytest.mark.asyncio
    async def test_result_serialises(self, scoring_service):
        """to_dict exposes the three dimensions and the overall score."""
        result = await scoring_service.score_address("addr-exchange")

        data = result.to_dict()

        assert data["overall_risk"] == result.overall_risk
        assert data["risk_level"] == "low"
        assert len(data["transaction_risk"]["factors"]) == 5


class TestCospendClusters:
    """Tests for attribution through cospend clusters."""

    @pytest.mark.asyncio
    async def test_clustered_address_scored_as_cluster(self, scoring_service, attribution_store):
        """An address without records of its own inherits its cluster's attribution."""
        attribution_store.add(make_record("cluster-7", "mixer-1"))
        attribution_store.add_to_cluster("addr-fresh", "cluster-7")

        result = await scoring_service.score_address("addr-fresh")

        assert result.overall_risk == 56
        assert result.attribution["entity"] == "mixer-1"
        assert result.attribution["address"] == "addr-fresh"
        assert result.attribution["cospend_id"] == "cluster-7"

    @pytest.mark.asyncio
    async def test_cluster_record_wins_over_address_record(self, scoring_service, attribution_store):
        """When the cluster is attributed, its records are resolved first."""
        attribution_store.add(make_record("cluster-7", "mixer-1"))
        attribution_store.add_to_cluster("addr-exchange", "cluster-7")

        result = await scoring_service.score_address("addr-exchange")

        assert result.attribution["entity"] == "mixer-1"

    @pytest.mark.asyncio
    async def test_unattributed_cluster_falls_back_to_address(self, scoring_service, attribution_store):
        """A cluster without records leaves the address's own attribution in place."""
        attribution_store.add_to_cluster("addr-exchange", "cluster-empty")

        result = await scoring_service.score_address("addr-exchange")

        assert result.attribution["entity"] == "exchange-1"
        assert "cospend_id" not in result.attribution

    @pytest.mark.asyncio
    async def test_counterparty_risk_uses_cluster(self, scoring_service, attribution_store):
        """Direct counterparty risk resolves through the cluster too."""
        attribution_store.add(make_record("cluster-7", "gambling-1"))
        attribution_store.add_to_cluster("addr-fresh", "cluster-7")

        assert await scoring_service.direct_risk("addr-fresh") == 50


class TestScoreTransaction:
    """Tests for transaction scoring."""

    @pytest.mark.asyncio
    async def test_primary_sender_drives_direct_risk(self, scoring_service, chain_source):
        """Entity and jurisdiction risk come from the first input address."""
        chain_source.add_transaction(make_tx(
            "t1", [("addr-sanctioned", 2.0)], [("addr-exchange", 2.0)]
        ))

        result = await scoring_service.score_transaction("t1")

        assert result.analysis_type == AnalysisType.TRANSACTION
        assert result.subject == "t1"
        assert result.entity_risk.aggregate_score == 100
        assert result.transaction_risk.get("tx-sender").score == 50
        assert result.transaction_risk.get("tx-receiver").score == 10
        # 100 * 0.4 + 100 * 0.4 + 60 * 0.2
        assert result.overall_risk == 92

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, scoring_service):
        """Scoring a missing transaction is NotFound."""
        with pytest.raises(NotFoundError):
            await scoring_service.score_transaction("missing")


class TestResultCache:
    """Tests for result caching."""

    @pytest.mark.asyncio
    async def test_repeated_score_is_cached(self, cached_service):
        """The same request within the TTL returns the cached result."""
        first = await cached_service.score_address("addr-mixer")
        second = await cached_service.score_address("addr-mixer")

        assert second is first

    @pytest.mark.asyncio
    async def test_parameters_are_part_of_the_key(self, cached_service):
        """Different traversal parameters are scored separately."""
        first = await cached_service.score_address("addr-mixer")
        second = await cached_service.score_address("addr-mixer", max_hops=1)

        assert second is not first

    @pytest.mark.asyncio
    async def test_partial_results_not_cached(self, cached_service, chain_source):
        """Partial results are recomputed on the next request."""
        chain_source.set_unavailable("addr-mixer")

        first = await cached_service.score_address("addr-mixer")
        second = await cached_service.score_address("addr-mixer")

        assert first.partial is True
        assert second is not first
