"""
Data models for the ingestion layer.

RawLog is the normalized form of an ``eth_getLogs`` entry. LaunchEvent is
what the decoder produces for a coin creation and what the rest of the
pipeline consumes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Tuple


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity (``"0x1a"``) or a plain int."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Not a quantity: {value!r}")


@dataclass(frozen=True)
class RawLog:
    """A raw log record from the factory contract."""

    address: str
    topics: Tuple[str, ...]
    data: str
    block_number: int
    tx_hash: str
    log_index: int

    @property
    def key(self) -> Tuple[str, int]:
        """Identity of this log within the chain: (tx_hash, log_index)."""
        return (self.tx_hash.lower(), self.log_index)

    @property
    def selector(self) -> Optional[str]:
        """First topic (event selector), lowercased."""
        if not self.topics:
            return None
        return self.topics[0].lower()

    @classmethod
    def from_rpc(cls, entry: dict[str, Any]) -> "RawLog":
        """
        Build a RawLog from an ``eth_getLogs`` result entry.

        Raises:
            KeyError / ValueError: If required fields are missing or malformed
        """
        return cls(
            address=str(entry["address"]).lower(),
            topics=tuple(str(t).lower() for t in entry.get("topics") or ()),
            data=str(entry.get("data") or "0x"),
            block_number=parse_quantity(entry["blockNumber"]),
            tx_hash=str(entry["transactionHash"]).lower(),
            log_index=parse_quantity(entry["logIndex"]),
        )


@dataclass(frozen=True)
class LaunchEvent:
    """A normalized coin launch decoded from a factory log."""

    creator: str
    token_address: str
    symbol: str
    name: str
    block_number: int
    tx_hash: str
    log_index: int
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Extra fields recovered from the full event shape
    event_name: str = ""
    payout_recipient: Optional[str] = None
    platform_referrer: Optional[str] = None
    currency: Optional[str] = None
    uri: str = ""
    version: str = ""

    @property
    def sort_key(self) -> Tuple[int, int]:
        """Processing order within a poll batch."""
        return (self.block_number, self.log_index)

    @property
    def key(self) -> Tuple[str, int]:
        return (self.tx_hash.lower(), self.log_index)
