"""
Blockchain data sources.

BlockchainSource is the oracle the propagator and the screening pipeline
read transactions from. InMemoryChainSource keeps a transaction graph in
NetworkX for development and testing.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import networkx as nx

from chainscreen.chain.models import ChainTransaction, Direction
from chainscreen.errors import NotFoundError, UpstreamDataError

logger = logging.getLogger(__name__)


class BlockchainSource(ABC):
    """Abstract read access to blockchain transactions."""

    @abstractmethod
    async def get_transaction(self, txid: str) -> ChainTransaction:
        """
        Fetch one transaction.

        Raises:
            NotFoundError: if the transaction does not exist
            UpstreamDataError: if the source cannot be reached
        """
        pass

    @abstractmethod
    async def get_address_transactions(
        self,
        address: str,
        limit: int = 20,
        direction: Direction = Direction.ANY,
    ) -> list[ChainTransaction]:
        """
        Most recent transactions touching an address, newest first.

        Raises:
            UpstreamDataError: if the source cannot be reached
        """
        pass

    async def close(self) -> None:
        pass


def _newest_first(tx: ChainTransaction) -> tuple:
    ts = tx.timestamp or datetime.min
    return (ts, tx.txid)


class InMemoryChainSource(BlockchainSource):
    """
    In-memory transaction graph.

    Address nodes link to the transactions they fund (address -> tx) and
    transactions link to the addresses they pay (tx -> address).
    """

    def __init__(self, transactions: Optional[list[ChainTransaction]] = None):
        self.graph = nx.MultiDiGraph()
        self._transactions: dict[str, ChainTransaction] = {}
        self._unavailable: set[str] = set()
        for tx in transactions or []:
            self.add_transaction(tx)

    def add_transaction(self, tx: ChainTransaction) -> None:
        self._transactions[tx.txid] = tx
        self.graph.add_node(tx.txid, kind="tx")
        for tx_input in tx.inputs:
            self.graph.add_node(tx_input.address, kind="address")
            self.graph.add_edge(tx_input.address, tx.txid, amount=tx_input.amount)
        for tx_output in tx.outputs:
            self.graph.add_node(tx_output.address, kind="address")
            self.graph.add_edge(tx.txid, tx_output.address, amount=tx_output.amount)

    def set_unavailable(self, key: str, unavailable: bool = True) -> None:
        """Simulate an upstream outage for an address or transaction id."""
        if unavailable:
            self._unavailable.add(key)
        else:
            self._unavailable.discard(key)

    async def get_transaction(self, txid: str) -> ChainTransaction:
        if txid in self._unavailable:
            raise UpstreamDataError(f"Transaction source unavailable for {txid}")
        tx = self._transactions.get(txid)
        if tx is None:
            raise NotFoundError("transaction", txid)
        return tx

    async def get_address_transactions(
        self,
        address: str,
        limit: int = 20,
        direction: Direction = Direction.ANY,
    ) -> list[ChainTransaction]:
        if address in self._unavailable:
            raise UpstreamDataError(f"Address source unavailable for {address}")
        if address not in self.graph:
            return []

        txids: set[str] = set()
        if direction in (Direction.INCOMING, Direction.ANY):
            txids.update(self.graph.predecessors(address))
        if direction in (Direction.OUTGOING, Direction.ANY):
            txids.update(self.graph.successors(address))

        txs = [self._transactions[t] for t in txids]
        if direction == Direction.INCOMING:
            txs = [tx for tx in txs if tx.is_incoming_for(address)]
        txs.sort(key=_newest_first, reverse=True)
        return txs[:limit]
