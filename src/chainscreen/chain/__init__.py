"""
Blockchain data access.
"""

from chainscreen.chain.esplora import EsploraChainSource, parse_esplora_transaction
from chainscreen.chain.models import (
    ChainTransaction,
    Direction,
    TxInput,
    TxOutput,
    looks_like_coinjoin,
)
from chainscreen.chain.source import BlockchainSource, InMemoryChainSource

__all__ = [
    "BlockchainSource",
    "ChainTransaction",
    "Direction",
    "EsploraChainSource",
    "InMemoryChainSource",
    "TxInput",
    "TxOutput",
    "looks_like_coinjoin",
    "parse_esplora_transaction",
]
