"""
Transaction graph risk propagation.

Breadth-first walk over the transaction graph around an address or a
transaction, hop level by hop level. A counterparty reached at hop h adds its
own direct risk scaled by decay ** h; it is never traversed again for
scoring. Transactions met on the way can add amount, pattern and timing risk
with the same decay.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import networkx as nx

from chainscreen.chain.models import ChainTransaction
from chainscreen.chain.source import BlockchainSource
from chainscreen.errors import (
    TraversalCancelledError,
    UpstreamDataError,
    ValidationError,
)
from chainscreen.scoring.factors import (
    FactorCollection,
    HopContribution,
    TransactionRiskFactor,
    TransactionRiskKind,
    clamp_score,
    severity_for,
)

logger = logging.getLogger(__name__)

CounterpartyScorer = Callable[[str], Awaitable[float]]

FACTOR_ORDER = (
    TransactionRiskKind.SENDER,
    TransactionRiskKind.RECEIVER,
    TransactionRiskKind.AMOUNT,
    TransactionRiskKind.PATTERN,
    TransactionRiskKind.TIMING,
)

FACTOR_DESCRIPTIONS = {
    TransactionRiskKind.SENDER: "Risk from counterparties that sent funds",
    TransactionRiskKind.RECEIVER: "Risk from counterparties that received funds",
    TransactionRiskKind.AMOUNT: "Large transfers in the surrounding graph",
    TransactionRiskKind.PATTERN: "CoinJoin-like transactions in the surrounding graph",
    TransactionRiskKind.TIMING: "Rapid onward movement of funds",
}


def validate_traversal_bounds(max_hops: int, hop_weight_decay: float) -> None:
    if max_hops < 0:
        raise ValidationError(f"max_hops must not be negative, got {max_hops}")
    if not (0 < hop_weight_decay <= 1):
        raise ValidationError(f"hop_weight_decay must be within (0, 1], got {hop_weight_decay}")


@dataclass(frozen=True)
class TraversalConfig:
    """Bounds and heuristic scores for graph traversal."""

    max_hops: int = 3
    hop_weight_decay: float = 0.5
    tx_limit: int = 10
    large_amount_threshold: float = 10.0
    amount_risk_score: float = 30.0
    coinjoin_risk_score: float = 60.0
    rapid_movement_seconds: int = 3600
    timing_risk_score: float = 25.0

    def __post_init__(self) -> None:
        validate_traversal_bounds(self.max_hops, self.hop_weight_decay)
        if self.tx_limit < 1:
            raise ValidationError(f"tx_limit must be at least 1, got {self.tx_limit}")


@dataclass(frozen=True)
class AddressSeed:
    address: str


@dataclass(frozen=True)
class TransactionSeed:
    tx_id: str


Seed = Union[AddressSeed, TransactionSeed]


@dataclass
class TraversalResult:
    """Transaction risk factors plus the subgraph they were computed from."""

    risk: FactorCollection[TransactionRiskFactor]
    graph: nx.DiGraph
    visited_addresses: set[str] = field(default_factory=set)
    visited_transactions: set[str] = field(default_factory=set)
    partial: bool = False
    unreachable: list[str] = field(default_factory=list)

    @property
    def aggregate_score(self) -> float:
        return self.risk.aggregate_score

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk": self.risk.to_dict(),
            "visited_addresses": sorted(self.visited_addresses),
            "visited_transactions": sorted(self.visited_transactions),
            "partial": self.partial,
            "unreachable": list(self.unreachable),
        }


@dataclass
class _Walk:
    """Mutable state of one traversal."""

    graph: nx.DiGraph = field(default_factory=nx.DiGraph)
    visited_addresses: set[str] = field(default_factory=set)
    visited_transactions: set[str] = field(default_factory=set)
    contributions: dict[TransactionRiskKind, list[HopContribution]] = field(
        default_factory=lambda: {kind: [] for kind in FACTOR_ORDER}
    )
    unreachable: list[str] = field(default_factory=list)

    def mark_unreachable(self, key: str) -> None:
        if key not in self.unreachable:
            self.unreachable.append(key)


class TransactionGraphPropagator:
    """
    Bounded-depth risk propagation over a BlockchainSource.

    The counterparty scorer returns an address's direct risk (entity and
    jurisdiction only) so propagation never recurses into itself.
    """

    def __init__(
        self,
        source: BlockchainSource,
        counterparty_scorer: CounterpartyScorer,
        config: Optional[TraversalConfig] = None,
    ):
        self.source = source
        self.counterparty_scorer = counterparty_scorer
        self.config = config or TraversalConfig()

    async def propagate(
        self,
        seed: Seed,
        max_hops: Optional[int] = None,
        hop_weight_decay: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TraversalResult:
        """
        Walk the graph around a seed and score it.

        Args:
            seed: Address or transaction to start from
            max_hops: Traversal depth, defaults to the configured depth
            hop_weight_decay: Weight multiplier per hop, defaults to config
            cancel_event: Checked before every hop level

        Returns:
            TraversalResult with exactly one factor per TransactionRiskKind

        Raises:
            ValidationError: on invalid bounds, before anything is fetched
            TraversalCancelledError: when cancel_event is set
            NotFoundError: when a transaction seed does not exist
        """
        hops = self.config.max_hops if max_hops is None else max_hops
        decay = self.config.hop_weight_decay if hop_weight_decay is None else hop_weight_decay
        validate_traversal_bounds(hops, decay)

        walk = _Walk()
        # (frontier address, transaction that led to it)
        frontier: list[tuple[str, Optional[ChainTransaction]]] = []

        if isinstance(seed, AddressSeed):
            walk.visited_addresses.add(seed.address)
            walk.graph.add_node(seed.address, kind="address", hop=0, seed=True)
            frontier = [(seed.address, None)]
        else:
            walk.graph.add_node(seed.tx_id, kind="tx", hop=0, seed=True)

        for hop in range(1, hops + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise TraversalCancelledError(hop)

            weight = decay ** hop
            pending: list[tuple[str, TransactionRiskKind, ChainTransaction]] = []
            next_frontier: list[tuple[str, Optional[ChainTransaction]]] = []

            if hop == 1 and isinstance(seed, TransactionSeed):
                tx = await self._fetch_seed(seed, walk)
                if tx is not None:
                    self._visit_transaction(tx, None, None, hop, weight, walk, pending)
            else:
                for address, parent_tx in frontier:
                    try:
                        txs = await self.source.get_address_transactions(
                            address, limit=self.config.tx_limit
                        )
                    except UpstreamDataError as e:
                        logger.warning(f"Skipping hop {hop} for {address}: {e}")
                        walk.mark_unreachable(address)
                        continue
                    for tx in txs:
                        self._visit_transaction(tx, address, parent_tx, hop, weight, walk, pending)

            if not pending:
                break

            scores = await asyncio.gather(
                *(self._score_counterparty(address, walk) for address, _, _ in pending)
            )
            for (address, kind, tx), score in zip(pending, scores):
                walk.contributions[kind].append(HopContribution(
                    tx_hash=tx.txid,
                    risk_score=score,
                    hop_level=hop,
                    weight=weight,
                    address=address,
                ))
                next_frontier.append((address, tx))

            frontier = next_frontier

        return self._build_result(walk)

    async def _fetch_seed(self, seed: TransactionSeed, walk: _Walk) -> Optional[ChainTransaction]:
        try:
            return await self.source.get_transaction(seed.tx_id)
        except UpstreamDataError as e:
            logger.warning(f"Seed transaction {seed.tx_id} unavailable: {e}")
            walk.mark_unreachable(seed.tx_id)
            return None

    def _visit_transaction(
        self,
        tx: ChainTransaction,
        frontier_address: Optional[str],
        parent_tx: Optional[ChainTransaction],
        hop: int,
        weight: float,
        walk: _Walk,
        pending: list,
    ) -> None:
        if tx.txid in walk.visited_transactions:
            return
        walk.visited_transactions.add(tx.txid)

        walk.graph.add_node(tx.txid, kind="tx", hop=hop)
        for address in tx.input_addresses:
            walk.graph.add_edge(address, tx.txid)
        for address in tx.output_addresses:
            walk.graph.add_edge(tx.txid, address)

        cfg = self.config
        if tx.total_output >= cfg.large_amount_threshold:
            walk.contributions[TransactionRiskKind.AMOUNT].append(HopContribution(
                tx_hash=tx.txid, risk_score=cfg.amount_risk_score, hop_level=hop, weight=weight,
            ))
        if tx.is_coinjoin:
            walk.contributions[TransactionRiskKind.PATTERN].append(HopContribution(
                tx_hash=tx.txid, risk_score=cfg.coinjoin_risk_score, hop_level=hop, weight=weight,
            ))
        if hop >= 2 and parent_tx is not None and _within(parent_tx, tx, cfg.rapid_movement_seconds):
            walk.contributions[TransactionRiskKind.TIMING].append(HopContribution(
                tx_hash=tx.txid,
                risk_score=cfg.timing_risk_score,
                hop_level=hop,
                weight=weight,
                address=frontier_address,
            ))

        sides = (
            (tx.input_addresses, TransactionRiskKind.SENDER),
            (tx.output_addresses, TransactionRiskKind.RECEIVER),
        )
        for addresses, kind in sides:
            for address in addresses:
                if address == frontier_address or address in walk.visited_addresses:
                    continue
                walk.visited_addresses.add(address)
                walk.graph.nodes[address].update(kind="address", hop=hop)
                pending.append((address, kind, tx))

    async def _score_counterparty(self, address: str, walk: _Walk) -> float:
        try:
            return clamp_score(await self.counterparty_scorer(address))
        except UpstreamDataError as e:
            logger.warning(f"Could not score counterparty {address}: {e}")
            walk.mark_unreachable(address)
            return 0.0

    def _build_result(self, walk: _Walk) -> TraversalResult:
        factors = []
        for kind in FACTOR_ORDER:
            hops = walk.contributions[kind]
            score = clamp_score(sum(h.weighted_score for h in hops))
            factors.append(TransactionRiskFactor(
                id=f"tx-{kind.value}",
                score=score,
                severity=severity_for(score),
                description=FACTOR_DESCRIPTIONS[kind],
                details={"contributions": len(hops)},
                kind=kind,
                hops=hops,
            ))

        aggregate = clamp_score(sum(f.score for f in factors))
        return TraversalResult(
            risk=FactorCollection(factors=factors, aggregate_score=aggregate),
            graph=walk.graph,
            visited_addresses=walk.visited_addresses,
            visited_transactions=walk.visited_transactions,
            partial=bool(walk.unreachable),
            unreachable=walk.unreachable,
        )


def _within(earlier: ChainTransaction, later: ChainTransaction, seconds: int) -> bool:
    if earlier.timestamp is None or later.timestamp is None:
        return False
    return abs((later.timestamp - earlier.timestamp).total_seconds()) <= seconds
