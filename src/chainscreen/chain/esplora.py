"""
Esplora REST API client.

Works against Blockstream's public API or a self-hosted electrs/esplora
instance. Only transaction and address-history endpoints are used.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from chainscreen.chain.models import (
    ChainTransaction,
    Direction,
    TxInput,
    TxOutput,
    looks_like_coinjoin,
)
from chainscreen.chain.source import BlockchainSource
from chainscreen.errors import NotFoundError, UpstreamDataError

logger = logging.getLogger(__name__)

SATOSHI_PER_BTC = 100_000_000


def parse_esplora_transaction(data: dict[str, Any]) -> ChainTransaction:
    """Convert an Esplora /tx JSON document to a ChainTransaction."""
    inputs = []
    for vin in data.get("vin", []):
        prevout = vin.get("prevout") or {}
        address = prevout.get("scriptpubkey_address")
        if not address:
            # coinbase or non-standard script
            continue
        inputs.append(TxInput(address=address, amount=prevout.get("value", 0) / SATOSHI_PER_BTC))

    outputs = []
    for vout in data.get("vout", []):
        address = vout.get("scriptpubkey_address")
        if not address:
            continue
        outputs.append(TxOutput(address=address, amount=vout.get("value", 0) / SATOSHI_PER_BTC))

    status = data.get("status") or {}
    timestamp = None
    if status.get("block_time"):
        timestamp = datetime.fromtimestamp(status["block_time"], tz=timezone.utc).replace(tzinfo=None)

    inputs_t = tuple(inputs)
    outputs_t = tuple(outputs)
    return ChainTransaction(
        txid=data["txid"],
        timestamp=timestamp,
        block_height=status.get("block_height"),
        inputs=inputs_t,
        outputs=outputs_t,
        is_coinjoin=looks_like_coinjoin(inputs_t, outputs_t),
        fee=data.get("fee", 0) / SATOSHI_PER_BTC,
    )


class EsploraChainSource(BlockchainSource):
    """Blockchain source backed by an Esplora HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    async def _get_json(self, path: str, resource: str, key: str) -> Any:
        try:
            response = await self._client.get(f"{self.base_url}{path}")
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFoundError(resource, key) from e
            logger.error(f"Esplora API error for {resource} {key}: {e}")
            raise UpstreamDataError(f"Esplora returned {e.response.status_code} for {key}") from e
        except httpx.RequestError as e:
            logger.error(f"Esplora request failed for {resource} {key}: {e}")
            raise UpstreamDataError(f"Esplora request failed for {key}: {e}") from e
        except ValueError as e:
            logger.error(f"Esplora returned malformed JSON for {resource} {key}: {e}")
            raise UpstreamDataError(f"Esplora returned malformed JSON for {key}") from e

    async def get_transaction(self, txid: str) -> ChainTransaction:
        data = await self._get_json(f"/tx/{txid}", "transaction", txid)
        return self._parse(data, txid)

    async def get_address_transactions(
        self,
        address: str,
        limit: int = 20,
        direction: Direction = Direction.ANY,
    ) -> list[ChainTransaction]:
        try:
            data = await self._get_json(f"/address/{address}/txs", "address", address)
        except NotFoundError:
            return []

        if not isinstance(data, list):
            raise UpstreamDataError(f"Esplora returned an unexpected body for {address}")
        txs = [self._parse(item, address) for item in data]
        if direction == Direction.INCOMING:
            txs = [tx for tx in txs if tx.is_incoming_for(address)]
        elif direction == Direction.OUTGOING:
            txs = [tx for tx in txs if address in tx.input_addresses]
        return txs[:limit]

    @staticmethod
    def _parse(data: Any, key: str) -> ChainTransaction:
        try:
            return parse_esplora_transaction(data)
        except (KeyError, TypeError, AttributeError) as e:
            logger.error(f"Malformed Esplora transaction for {key}: {e!r}")
            raise UpstreamDataError(f"Malformed Esplora transaction for {key}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
