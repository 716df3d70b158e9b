"""
Input validation for monitored addresses.

Checks run before any store is touched. Pydantic errors are translated into
chainscreen ValidationError so callers only deal with one error family.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from chainscreen.compliance.models import Blockchain
from chainscreen.errors import ValidationError

BITCOIN_BASE58 = re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$")
BITCOIN_BECH32 = re.compile(r"^(bc1|tb1)[02-9ac-hj-np-z]{11,71}$")
ETHEREUM_HEX = re.compile(r"^0x[0-9a-fA-F]{40}$")

BLOCKCHAIN_ALIASES = {
    "bitcoin": Blockchain.BITCOIN,
    "btc": Blockchain.BITCOIN,
    "ethereum": Blockchain.ETHEREUM,
    "eth": Blockchain.ETHEREUM,
}

UPDATABLE_FIELDS = frozenset({"address", "blockchain", "client_id", "notes"})


def normalize_blockchain(blockchain: str) -> Blockchain:
    chain = BLOCKCHAIN_ALIASES.get((blockchain or "").strip().lower())
    if chain is None:
        raise ValidationError(f"Unsupported blockchain: {blockchain!r}")
    return chain


def validate_address(address: str, blockchain: str) -> str:
    """
    Check an address against its chain's format and normalize it.

    Bech32 and Ethereum addresses are case-insensitive and stored lower-case.

    Raises:
        ValidationError: if the chain is unsupported or the address is malformed
    """
    chain = normalize_blockchain(blockchain)
    candidate = (address or "").strip()

    if chain == Blockchain.BITCOIN:
        if BITCOIN_BASE58.match(candidate):
            return candidate
        if BITCOIN_BECH32.match(candidate.lower()):
            return candidate.lower()
    elif chain == Blockchain.ETHEREUM:
        if ETHEREUM_HEX.match(candidate):
            return candidate.lower()

    raise ValidationError(f"Invalid {chain.value} address: {address!r}")


class MonitoredAddressInput(BaseModel):
    """One monitored address row as submitted by a user."""

    address: str = Field(..., min_length=1)
    blockchain: str = Field(default=Blockchain.BITCOIN.value)
    client_id: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("blockchain")
    @classmethod
    def validate_blockchain(cls, v: str) -> str:
        try:
            return normalize_blockchain(v).value
        except ValidationError as e:
            raise ValueError(str(e)) from e

    @field_validator("client_id", "notes")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_address_format(self) -> "MonitoredAddressInput":
        try:
            self.address = validate_address(self.address, self.blockchain)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        return self


def parse_address_input(data: dict[str, Any]) -> MonitoredAddressInput:
    """Validate a raw row, raising chainscreen ValidationError on failure."""
    try:
        return MonitoredAddressInput.model_validate(data)
    except PydanticValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(messages) from e


def validate_changes(changes: dict[str, Any]) -> None:
    """Reject updates touching anything but the user-editable fields."""
    if not changes:
        raise ValidationError("No changes given")
    forbidden = sorted(set(changes) - UPDATABLE_FIELDS)
    if forbidden:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(forbidden)} "
            f"(allowed: {', '.join(sorted(UPDATABLE_FIELDS))})"
        )
