"""
Tests for transaction graph risk propagation.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from chainscreen.chain.source import InMemoryChainSource
from chainscreen.errors import (
    NotFoundError,
    TraversalCancelledError,
    UpstreamDataError,
    ValidationError,
)
from chainscreen.scoring.factors import TransactionRiskKind
from chainscreen.scoring.propagation import (
    AddressSeed,
    TransactionGraphPropagator,
    TransactionSeed,
    TraversalConfig,
)

from conftest import make_tx

T0 = datetime(2024, 3, 1, 12, 0, 0)


def scorer_from(scores, failing=()):
    """Counterparty scorer backed by a dict; listed addresses raise."""

    async def score(address):
        if address in failing:
            raise UpstreamDataError(f"no data for {address}")
        return scores.get(address, 0.0)

    return score


def factor(result, kind):
    return result.risk.get(f"tx-{kind.value}")


@pytest.fixture
def two_hop_chain():
    """worse -> bad (30 min before) -> seed."""
    return InMemoryChainSource([
        make_tx("tx1", [("bad", 1.0)], [("seed", 1.0)], timestamp=T0),
        make_tx("tx0", [("worse", 1.0)], [("bad", 1.0)], timestamp=T0 - timedelta(minutes=30)),
    ])


class TestTraversalBounds:
    """Tests for traversal parameter validation."""

    @pytest.mark.parametrize("max_hops,decay", [(-1, 0.5), (2, 0.0), (2, 1.5), (2, -0.1)])
    def test_invalid_config_rejected(self, max_hops, decay):
        """Negative depth and decay outside (0, 1] are rejected."""
        with pytest.raises(ValidationError):
            TraversalConfig(max_hops=max_hops, hop_weight_decay=decay)

    @pytest.mark.asyncio
    async def test_invalid_call_bounds_rejected(self, two_hop_chain):
        """Per-call overrides are validated before any fetch."""
        two_hop_chain.set_unavailable("seed")
        propagator = TransactionGraphPropagator(two_hop_chain, scorer_from({}))

        with pytest.raises(ValidationError):
            await propagator.propagate(AddressSeed("seed"), hop_weight_decay=0)

    @pytest.mark.asyncio
    async def test_zero_hops_scores_zero(self, two_hop_chain):
        """max_hops=0 yields zero transaction risk and fetches nothing."""
        two_hop_chain.set_unavailable("seed")
        propagator = TransactionGraphPropagator(two_hop_chain, scorer_from({"bad": 90}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=0)

        assert result.aggregate_score == 0
        assert result.partial is False
        assert len(result.risk.factors) == 5


class TestPropagation:
    """Tests for hop-weighted risk propagation."""

    @pytest.mark.asyncio
    async def test_always_five_factors_in_order(self, two_hop_chain):
        """Every result has sender, receiver, amount, pattern, timing."""
        propagator = TransactionGraphPropagator(two_hop_chain, scorer_from({}))

        result = await propagator.propagate(AddressSeed("nobody"))

        assert [f.id for f in result.risk.factors] == [
            "tx-sender", "tx-receiver", "tx-amount", "tx-pattern", "tx-timing",
        ]
        assert result.aggregate_score == 0

    @pytest.mark.asyncio
    async def test_single_hop_sender(self, two_hop_chain):
        """A direct sender contributes its score times decay."""
        propagator = TransactionGraphPropagator(two_hop_chain, scorer_from({"bad": 80}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=1, hop_weight_decay=0.5)

        sender = factor(result, TransactionRiskKind.SENDER)
        assert sender.score == 40
        assert [(h.address, h.hop_level, h.weight) for h in sender.hops] == [("bad", 1, 0.5)]
        assert factor(result, TransactionRiskKind.RECEIVER).score == 0
        assert result.aggregate_score == 40

    @pytest.mark.asyncio
    async def test_second_hop_decays_further(self, two_hop_chain):
        """Hop 2 contributions use decay squared and rapid movement adds timing risk."""
        propagator = TransactionGraphPropagator(
            two_hop_chain, scorer_from({"bad": 80, "worse": 100})
        )

        result = await propagator.propagate(AddressSeed("seed"), max_hops=2, hop_weight_decay=0.5)

        sender = factor(result, TransactionRiskKind.SENDER)
        # 80 * 0.5 + 100 * 0.25
        assert sender.score == 65
        assert [h.hop_level for h in sender.hops] == [1, 2]
        timing = factor(result, TransactionRiskKind.TIMING)
        # 25 * 0.25
        assert timing.score == 6.25
        assert result.aggregate_score == 71.25
        assert result.visited_transactions == {"tx0", "tx1"}

    @pytest.mark.asyncio
    async def test_slow_movement_has_no_timing_risk(self):
        """Transfers further apart than the window add no timing risk."""
        source = InMemoryChainSource([
            make_tx("tx1", [("bad", 1.0)], [("seed", 1.0)], timestamp=T0),
            make_tx("tx0", [("worse", 1.0)], [("bad", 1.0)], timestamp=T0 - timedelta(days=2)),
        ])
        propagator = TransactionGraphPropagator(source, scorer_from({}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=2)

        assert factor(result, TransactionRiskKind.TIMING).score == 0

    @pytest.mark.asyncio
    async def test_depth_limit(self, two_hop_chain):
        """Addresses beyond max_hops are never reached."""
        propagator = TransactionGraphPropagator(
            two_hop_chain, scorer_from({"bad": 0, "worse": 100})
        )

        result = await propagator.propagate(AddressSeed("seed"), max_hops=1)

        assert "worse" not in result.visited_addresses
        assert result.aggregate_score == 0

    @pytest.mark.asyncio
    async def test_counterparty_counted_once(self):
        """An address seen in several transactions contributes once."""
        source = InMemoryChainSource([
            make_tx("a", [("bad", 1.0)], [("seed", 1.0)], timestamp=T0),
            make_tx("b", [("bad", 2.0)], [("seed", 2.0)], timestamp=T0 + timedelta(hours=5)),
        ])
        propagator = TransactionGraphPropagator(source, scorer_from({"bad": 60}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=1, hop_weight_decay=0.5)

        sender = factor(result, TransactionRiskKind.SENDER)
        assert len(sender.hops) == 1
        assert sender.score == 30

    @pytest.mark.asyncio
    async def test_cycle_visits_each_address_once(self):
        """Funds going A -> B -> A are walked once per address and the walk ends."""
        source = InMemoryChainSource([
            make_tx("b-to-a", [("B", 1.0)], [("A", 1.0)], timestamp=T0),
            make_tx("a-to-b", [("A", 1.0)], [("B", 0.9)], timestamp=T0 + timedelta(hours=1)),
        ])
        scored = []

        async def score(address):
            scored.append(address)
            return 60.0

        propagator = TransactionGraphPropagator(source, score)

        result = await propagator.propagate(AddressSeed("A"), max_hops=3, hop_weight_decay=0.5)

        assert scored == ["B"]
        assert result.visited_addresses == {"A", "B"}
        assert result.visited_transactions == {"b-to-a", "a-to-b"}
        hops = [h for f in result.risk.factors for h in f.hops]
        assert [(h.address, h.hop_level) for h in hops] == [("B", 1)]
        assert result.aggregate_score == 30

    @pytest.mark.asyncio
    async def test_receivers_scored(self):
        """Addresses paid by the subject are receiver risk."""
        source = InMemoryChainSource([
            make_tx("out", [("seed", 1.0)], [("shop", 0.4), ("seed", 0.6)], timestamp=T0),
        ])
        propagator = TransactionGraphPropagator(source, scorer_from({"shop": 50}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=1, hop_weight_decay=1.0)

        assert factor(result, TransactionRiskKind.RECEIVER).score == 50
        assert factor(result, TransactionRiskKind.SENDER).score == 0

    @pytest.mark.asyncio
    async def test_amount_and_coinjoin_heuristics(self):
        """Large and CoinJoin-like transactions add amount and pattern risk."""
        source = InMemoryChainSource([
            make_tx("big", [("x", 15.0)], [("seed", 15.0)], timestamp=T0, is_coinjoin=True),
        ])
        propagator = TransactionGraphPropagator(source, scorer_from({}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=1, hop_weight_decay=0.5)

        assert factor(result, TransactionRiskKind.AMOUNT).score == 15
        assert factor(result, TransactionRiskKind.PATTERN).score == 30

    @pytest.mark.asyncio
    async def test_aggregate_is_clamped(self):
        """Summed factor scores never exceed 100."""
        source = InMemoryChainSource([
            make_tx("big", [("x", 50.0), ("y", 50.0)], [("seed", 100.0)], timestamp=T0,
                    is_coinjoin=True),
        ])
        propagator = TransactionGraphPropagator(source, scorer_from({"x": 100, "y": 100}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=1, hop_weight_decay=1.0)

        assert factor(result, TransactionRiskKind.SENDER).score == 100
        assert result.aggregate_score == 100

    @pytest.mark.asyncio
    async def test_graph_records_visited_subgraph(self, two_hop_chain):
        """The returned graph holds the walked addresses and transactions."""
        propagator = TransactionGraphPropagator(two_hop_chain, scorer_from({}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=2)

        assert result.graph.has_edge("bad", "tx1")
        assert result.graph.has_edge("tx1", "seed")
        assert result.graph.nodes["worse"]["hop"] == 2


class TestTransactionSeed:
    """Tests for traversal seeded by a transaction."""

    @pytest.mark.asyncio
    async def test_seed_transaction_parties_are_hop_one(self):
        """Inputs and outputs of the seed transaction are hop-1 counterparties."""
        source = InMemoryChainSource([
            make_tx("seed-tx", [("payer", 1.0)], [("payee", 1.0)], timestamp=T0),
        ])
        propagator = TransactionGraphPropagator(source, scorer_from({"payer": 40, "payee": 20}))

        result = await propagator.propagate(
            TransactionSeed("seed-tx"), max_hops=1, hop_weight_decay=0.5
        )

        assert factor(result, TransactionRiskKind.SENDER).score == 20
        assert factor(result, TransactionRiskKind.RECEIVER).score == 10

    @pytest.mark.asyncio
    async def test_unknown_seed_transaction(self):
        """A transaction seed that does not exist is NotFound."""
        propagator = TransactionGraphPropagator(InMemoryChainSource(), scorer_from({}))

        with pytest.raises(NotFoundError):
            await propagator.propagate(TransactionSeed("missing"))


class TestPartialResults:
    """Tests for cancellation and upstream failures."""

    @pytest.mark.asyncio
    async def test_cancel_before_first_hop(self, two_hop_chain):
        """A set cancel event stops the walk with the hop level."""
        propagator = TransactionGraphPropagator(two_hop_chain, scorer_from({}))
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(TraversalCancelledError) as exc_info:
            await propagator.propagate(AddressSeed("seed"), cancel_event=cancel)

        assert exc_info.value.hop_level == 1

    @pytest.mark.asyncio
    async def test_cancel_between_hop_levels(self, two_hop_chain):
        """Cancelling while hop 1 is scored stops the walk before hop 2."""
        cancel = asyncio.Event()
        scored = []

        async def score(address):
            scored.append(address)
            cancel.set()
            return 80.0

        propagator = TransactionGraphPropagator(two_hop_chain, score)

        with pytest.raises(TraversalCancelledError) as exc_info:
            await propagator.propagate(AddressSeed("seed"), max_hops=2, cancel_event=cancel)

        assert exc_info.value.hop_level == 2
        assert scored == ["bad"]

    @pytest.mark.asyncio
    async def test_unreachable_address_marks_partial(self, two_hop_chain):
        """An address that cannot be fetched makes the result partial."""
        two_hop_chain.set_unavailable("bad")
        propagator = TransactionGraphPropagator(two_hop_chain, scorer_from({"bad": 80}))

        result = await propagator.propagate(AddressSeed("seed"), max_hops=2, hop_weight_decay=0.5)

        assert result.partial is True
        assert result.unreachable == ["bad"]
        # hop 1 still counts
        assert factor(result, TransactionRiskKind.SENDER).score == 40

    @pytest.mark.asyncio
    async def test_scorer_failure_counts_as_zero(self, two_hop_chain):
        """A counterparty that cannot be scored adds 0 and marks the result partial."""
        propagator = TransactionGraphPropagator(
            two_hop_chain, scorer_from({}, failing={"bad"})
        )

        result = await propagator.propagate(AddressSeed("seed"), max_hops=1)

        assert result.partial is True
        assert factor(result, TransactionRiskKind.SENDER).hops[0].risk_score == 0
