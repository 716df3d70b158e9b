"""
Blockchain transaction model.

Only the fields risk scoring needs: who paid in, who was paid, how much
and when. Amounts are in whole coins (BTC), not satoshi.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Direction(str, Enum):
    """Transaction direction relative to an address."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"
    ANY = "any"


@dataclass(frozen=True)
class TxInput:
    address: str
    amount: float


@dataclass(frozen=True)
class TxOutput:
    address: str
    amount: float


@dataclass(frozen=True)
class ChainTransaction:
    """A confirmed (or mempool) transaction."""

    txid: str
    timestamp: Optional[datetime] = None
    block_height: Optional[int] = None
    inputs: tuple[TxInput, ...] = ()
    outputs: tuple[TxOutput, ...] = ()
    is_coinjoin: bool = False
    fee: float = 0.0
    blockchain: str = "bitcoin"

    @property
    def input_addresses(self) -> list[str]:
        return _distinct(i.address for i in self.inputs)

    @property
    def output_addresses(self) -> list[str]:
        return _distinct(o.address for o in self.outputs)

    @property
    def primary_sender(self) -> Optional[str]:
        addresses = self.input_addresses
        return addresses[0] if addresses else None

    @property
    def total_output(self) -> float:
        return sum(o.amount for o in self.outputs)

    def amount_to(self, address: str) -> float:
        """Total paid to an address by this transaction."""
        return sum(o.amount for o in self.outputs if o.address == address)

    def is_incoming_for(self, address: str) -> bool:
        """Pays the address without being funded by it."""
        return address in self.output_addresses and address not in self.input_addresses

    def to_dict(self) -> dict[str, Any]:
        return {
            "txid": self.txid,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "block_height": self.block_height,
            "inputs": [{"address": i.address, "amount": i.amount} for i in self.inputs],
            "outputs": [{"address": o.address, "amount": o.amount} for o in self.outputs],
            "is_coinjoin": self.is_coinjoin,
            "fee": self.fee,
            "blockchain": self.blockchain,
        }


def _distinct(addresses) -> list[str]:
    seen: list[str] = []
    for address in addresses:
        if address and address not in seen:
            seen.append(address)
    return seen


def looks_like_coinjoin(
    inputs: tuple[TxInput, ...],
    outputs: tuple[TxOutput, ...],
    min_participants: int = 5,
) -> bool:
    """
    Equal-output CoinJoin heuristic.

    Many inputs plus many outputs sharing one denomination.
    """
    if len(inputs) < min_participants:
        return False
    counts: dict[float, int] = {}
    for output in outputs:
        counts[output.amount] = counts.get(output.amount, 0) + 1
    return max(counts.values(), default=0) >= min_participants
