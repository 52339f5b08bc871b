"""
BlockRecord: the projection of a block that is persisted.

Design principles:
- One row per block: number, hash, timestamp
- Decoded from raw eth_getBlockByNumber results
"""

import re
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

HASH_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")


def parse_quantity(value: Union[str, int]) -> int:
    """Decode a JSON-RPC quantity ("0x10" or a plain int) into an int."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value[:2].lower() == "0x":
        return int(value, 16)
    raise ValueError(f"Invalid quantity: {value!r}")


class BlockRecord(BaseModel):
    """
    Minimal block data stored by the collector.

    hash is always normalised to lowercase hex with a 0x prefix
    (66 characters for a 32-byte hash).
    """
    model_config = ConfigDict(frozen=True)

    number: int = Field(ge=0, description="Block height")
    hash: str = Field(description="Block hash, 0x-prefixed lowercase hex")
    timestamp: int = Field(ge=0, description="Block timestamp, seconds since epoch")

    @field_validator("hash", mode="before")
    @classmethod
    def _normalise_hash(cls, value: Any) -> str:
        if isinstance(value, (bytes, bytearray)):
            value = "0x" + bytes(value).hex()
        if not isinstance(value, str):
            raise ValueError("hash must be a hex string or bytes")
        value = value.lower()
        if not value.startswith("0x"):
            value = "0x" + value
        if not HASH_PATTERN.match(value):
            raise ValueError(f"hash must be 32 bytes of hex, got {value!r}")
        return value

    @classmethod
    def from_rpc(cls, block: dict) -> "BlockRecord":
        """Build a record from a raw eth_getBlockByNumber result."""
        return cls(
            number=parse_quantity(block["number"]),
            hash=block["hash"],
            timestamp=parse_quantity(block["timestamp"]),
        )

    def to_row(self) -> tuple[int, str, int]:
        """Row values in table column order."""
        return (self.number, self.hash, self.timestamp)


@dataclass
class CollectResult:
    """Outcome of one collect() run. Per-block failures are only counted here."""
    requested: int = 0
    produced: int = 0
    stored: int = 0
    fetch_failed: int = 0
    store_failed: int = 0
    cancelled: int = 0

    @property
    def failed(self) -> int:
        return self.fetch_failed + self.store_failed + self.cancelled

    @property
    def skipped(self) -> int:
        """Blocks in the range that were never handed to a worker."""
        return self.requested - self.produced

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    def as_dict(self) -> dict:
        return {
            "requested": self.requested,
            "produced": self.produced,
            "stored": self.stored,
            "fetch_failed": self.fetch_failed,
            "store_failed": self.store_failed,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
        }
