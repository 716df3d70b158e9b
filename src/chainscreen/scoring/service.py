"""
Risk scoring service.

Facade over attribution, the three risk dimensions and the aggregator.
Everything stateful (stores, reference data, chain source, result cache) is
injected; the calculators themselves are pure.
"""

import asyncio
import logging
from typing import Any, Optional

from chainscreen.attribution.records import AttributionRecord, EntityProfile
from chainscreen.attribution.resolver import AttributionResolver, Resolution
from chainscreen.cache import TTLCache
from chainscreen.chain.source import BlockchainSource
from chainscreen.reference.cache import ReferenceDataCache
from chainscreen.reference.catalog import ReferenceSnapshot
from chainscreen.scoring.aggregator import CompositeRiskAggregator, ScoringWeights
from chainscreen.scoring.entity import EntityRiskCalculator
from chainscreen.scoring.factors import (
    AnalysisType,
    EntityRiskFactor,
    FactorCollection,
    JurisdictionRiskFactor,
    RiskScoringResult,
)
from chainscreen.scoring.jurisdiction import JurisdictionRiskCalculator
from chainscreen.scoring.propagation import (
    AddressSeed,
    Seed,
    TransactionGraphPropagator,
    TransactionSeed,
    TraversalConfig,
)
from chainscreen.storage import AttributionStore, EntityProfileStore

logger = logging.getLogger(__name__)


class RiskScoringService:
    """
    Scores addresses and transactions.

    Usage:
        service = RiskScoringService(attributions, profiles, reference, chain)
        result = await service.score_address("bc1q...")
        print(result.overall_risk, result.risk_level)
    """

    def __init__(
        self,
        attribution_store: AttributionStore,
        profile_store: EntityProfileStore,
        reference: ReferenceDataCache,
        chain_source: BlockchainSource,
        weights: Optional[ScoringWeights] = None,
        traversal_config: Optional[TraversalConfig] = None,
        result_cache: Optional[TTLCache[RiskScoringResult]] = None,
    ):
        self.attribution_store = attribution_store
        self.profile_store = profile_store
        self.reference = reference
        self.chain_source = chain_source
        self.result_cache = result_cache

        self.resolver = AttributionResolver()
        self.entity_calculator = EntityRiskCalculator()
        self.jurisdiction_calculator = JurisdictionRiskCalculator()
        self.aggregator = CompositeRiskAggregator(weights)
        self.propagator = TransactionGraphPropagator(
            chain_source,
            self.direct_risk,
            traversal_config,
        )

    async def score_address(
        self,
        address: str,
        max_hops: Optional[int] = None,
        hop_weight_decay: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RiskScoringResult:
        """Score a single address with its surrounding transaction graph."""
        return await self._score(
            AnalysisType.ADDRESS, address, address, AddressSeed(address),
            max_hops, hop_weight_decay, cancel_event,
        )

    async def score_transaction(
        self,
        tx_id: str,
        max_hops: Optional[int] = None,
        hop_weight_decay: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RiskScoringResult:
        """
        Score a transaction.

        Entity and jurisdiction risk come from the primary sender (first
        input address); transaction risk from the graph around the
        transaction itself.

        Raises:
            NotFoundError: if the transaction does not exist
            UpstreamDataError: if the transaction itself cannot be fetched
        """
        tx = await self.chain_source.get_transaction(tx_id)
        return await self._score(
            AnalysisType.TRANSACTION, tx_id, tx.primary_sender, TransactionSeed(tx_id),
            max_hops, hop_weight_decay, cancel_event,
        )

    async def direct_risk(self, address: str) -> float:
        """Entity/jurisdiction risk of an address, without graph traversal."""
        snapshot = await self.reference.current()
        _, _, entity, jurisdiction = await self._direct(address, snapshot)
        return max(entity.aggregate_score, jurisdiction.aggregate_score)

    async def _score(
        self,
        analysis_type: AnalysisType,
        subject: str,
        direct_address: Optional[str],
        seed: Seed,
        max_hops: Optional[int],
        hop_weight_decay: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> RiskScoringResult:
        cache_key = (analysis_type.value, subject, max_hops, hop_weight_decay)
        if self.result_cache is not None:
            cached = self.result_cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Score cache hit for {analysis_type.value} {subject}")
                return cached

        snapshot = await self.reference.current()
        if direct_address:
            resolution, profile, entity, jurisdiction = await self._direct(direct_address, snapshot)
        else:
            resolution, profile = None, None
            entity = self.entity_calculator.calculate(None, (), snapshot)
            jurisdiction = self.jurisdiction_calculator.calculate((), snapshot)

        traversal = await self.propagator.propagate(
            seed,
            max_hops=max_hops,
            hop_weight_decay=hop_weight_decay,
            cancel_event=cancel_event,
        )

        overall, level = self.aggregator.aggregate(
            entity.aggregate_score,
            jurisdiction.aggregate_score,
            traversal.aggregate_score,
        )

        result = RiskScoringResult(
            entity_risk=entity,
            jurisdiction_risk=jurisdiction,
            transaction_risk=traversal.risk,
            overall_risk=overall,
            risk_level=level,
            analysis_type=analysis_type,
            subject=subject,
            attribution=self._attribution_details(direct_address, resolution, profile),
            partial=traversal.partial,
        )

        logger.info(
            f"Scored {analysis_type.value} {subject}: {overall} ({level.value})"
            + (" [partial]" if traversal.partial else "")
        )

        if self.result_cache is not None and not result.partial:
            self.result_cache.set(cache_key, result)
        return result

    async def _direct(
        self,
        address: str,
        snapshot: ReferenceSnapshot,
    ) -> tuple[
        Resolution,
        Optional[EntityProfile],
        FactorCollection[EntityRiskFactor],
        FactorCollection[JurisdictionRiskFactor],
    ]:
        key, records = await self._attribution_records(address)
        resolution = self.resolver.resolve(key, records)
        profile = await self._load_profile(resolution)

        entity = self.entity_calculator.calculate_for_profile(profile, snapshot)
        countries = profile.associated_countries if profile else ()
        jurisdiction = self.jurisdiction_calculator.calculate(countries, snapshot)
        return resolution, profile, entity, jurisdiction

    async def _attribution_records(self, address: str) -> tuple[str, list[AttributionRecord]]:
        """
        Records to resolve the address from.

        Addresses in a cospend cluster are attributed through the cluster id;
        the address's own records are used when the cluster has none.
        """
        cluster_id = await self.attribution_store.cluster_for(address)
        if cluster_id and cluster_id != address:
            records = await self.attribution_store.records_for(cluster_id)
            if records:
                return cluster_id, records
        return address, await self.attribution_store.records_for(address)

    async def _load_profile(self, resolution: Resolution) -> Optional[EntityProfile]:
        subject = self.resolver.subject_entity(resolution)
        if subject is None:
            return None

        profile = await self.profile_store.get(subject)
        if profile is None and subject != resolution.entity_id:
            logger.debug(f"No profile for beneficial owner {subject}, using {resolution.entity_id}")
            profile = await self.profile_store.get(resolution.entity_id)
        if profile is None:
            logger.warning(f"No entity profile for {subject}")
            profile = EntityProfile(entity_id=subject)
        return profile

    def _attribution_details(
        self,
        address: Optional[str],
        resolution: Optional[Resolution],
        profile: Optional[EntityProfile],
    ) -> dict[str, Any]:
        if resolution is None:
            return {"address": address, "entity": None}
        details = resolution.to_dict()
        if address is not None and resolution.address != address:
            details["address"] = address
            details["cospend_id"] = resolution.address
        if profile is not None:
            details["scored_entity"] = profile.entity_id
            details["entity_type"] = profile.entity_type
        return details
