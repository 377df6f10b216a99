"""
Test fixtures for ingestion layer.

IMPORTANT: All chain access must be mocked.
Never hit a real RPC endpoint in tests.
"""

from types import SimpleNamespace
from typing import List, Optional

import pytest
from eth_abi import encode as abi_encode

from creator_sniper.ingestion.decoder import (
    COIN_CREATED,
    COIN_CREATED_V4,
    CREATOR_COIN_CREATED,
    EventShape,
)
from creator_sniper.ingestion.models import RawLog

FACTORY = "0x777777751622c0d3258f214f9df38e35bf45baf3"
CREATOR = "0x1111111111111111111111111111111111111111"
PAYOUT = "0x2222222222222222222222222222222222222222"
REFERRER = "0x3333333333333333333333333333333333333333"
CURRENCY = "0x4200000000000000000000000000000000000006"
COIN = "0xc0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0"
HOOKS = "0x5555555555555555555555555555555555555555"
ZERO = "0x" + "00" * 20


def address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte topic."""
    return "0x" + "0" * 24 + address[2:].lower()


def encode_payload(
    shape: EventShape,
    coin: str = COIN,
    name: str = "Alice Coin",
    symbol: str = "ALICE",
    currency: str = CURRENCY,
    uri: str = "ipfs://bafy-alice",
    version: str = "4",
) -> bytes:
    """ABI-encode the non-indexed part of a factory event."""
    if shape is COIN_CREATED:
        values = [currency, uri, name, symbol, coin, HOOKS, version]
    else:
        pool_key = (currency, coin, 30000, 200, HOOKS)
        values = [currency, uri, name, symbol, coin, pool_key, b"\xab" * 32, version]
    return abi_encode(list(shape.data_types), values)


def build_log(
    shape: EventShape = COIN_CREATED_V4,
    block_number: int = 100,
    log_index: int = 0,
    tx_hash: Optional[str] = None,
    address: str = FACTORY,
    creator: str = CREATOR,
    topics: Optional[List[str]] = None,
    data: Optional[str] = None,
    **payload_kwargs,
) -> RawLog:
    """Build a factory RawLog for one of the known shapes."""
    if topics is None:
        topics = [
            shape.selector,
            address_topic(creator),
            address_topic(PAYOUT),
            address_topic(REFERRER),
        ]
    if data is None:
        data = "0x" + encode_payload(shape, **payload_kwargs).hex()
    if tx_hash is None:
        tx_hash = "0x" + f"{block_number:032x}{log_index:032x}"
    return RawLog(
        address=address,
        topics=tuple(topics),
        data=data,
        block_number=block_number,
        tx_hash=tx_hash,
        log_index=log_index,
    )


class FakeLogSource:
    """In-memory log source recording every getLogs call."""

    def __init__(self, head: int = 0, logs: Optional[List[RawLog]] = None):
        self.head = head
        self.logs: List[RawLog] = list(logs or [])
        self.calls: List[tuple] = []
        self.fail_next = False

    async def get_block_number(self) -> int:
        return self.head

    async def get_logs(self, address: str, from_block: int, to_block: int) -> List[RawLog]:
        self.calls.append((address, from_block, to_block))
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("node unavailable")
        return [
            log for log in self.logs
            if from_block <= log.block_number <= to_block
        ]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_log():
    """Factory for factory-contract RawLogs."""
    return build_log


@pytest.fixture
def v4_log():
    return build_log(COIN_CREATED_V4)


@pytest.fixture
def creator_coin_log():
    return build_log(CREATOR_COIN_CREATED, symbol="BOB", name="Bob", version="creator-1")


@pytest.fixture
def legacy_log():
    return build_log(COIN_CREATED, version="v3")


@pytest.fixture
def log_source():
    return FakeLogSource()


@pytest.fixture
def addresses():
    """Addresses baked into logs built by ``make_log``."""
    return SimpleNamespace(
        factory=FACTORY,
        creator=CREATOR,
        payout=PAYOUT,
        referrer=REFERRER,
        currency=CURRENCY,
        coin=COIN,
        zero=ZERO,
    )


@pytest.fixture
def topic():
    """Address-to-topic helper."""
    return address_topic
