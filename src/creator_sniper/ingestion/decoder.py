"""
Event decoder for coin factory logs.

Turns a RawLog into a LaunchEvent for the small, explicit set of event
shapes the factory has emitted over time. Decoding is strict and fails
closed: anything that does not parse cleanly against a known shape is
dropped (None), never guessed at.

Known shapes (all share three indexed addresses in topics[1..3]):
    CoinCreated         legacy, non-indexed tail ends in (address pool, string version)
    CoinCreatedV4       pool key struct + pool key hash + version
    CreatorCoinCreated  same layout as CoinCreatedV4, emitted for creator coins
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from eth_abi import decode as abi_decode

from .models import LaunchEvent, RawLog

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20

POOL_KEY_TYPE = "(address,address,uint24,int24,address)"


@dataclass(frozen=True)
class EventShape:
    """ABI layout of one known factory event."""

    name: str
    selector: str
    data_types: Tuple[str, ...]
    version_index: int

    # Positions of the common non-indexed fields
    currency_index: int = 0
    uri_index: int = 1
    name_index: int = 2
    symbol_index: int = 3
    coin_index: int = 4


COIN_CREATED = EventShape(
    name="CoinCreated",
    selector="0x3d1462491f7fa8396808c230d95c3fa60fd09ef59506d0b9bd1cf072d2a03f56",
    data_types=("address", "string", "string", "string", "address", "address", "string"),
    version_index=6,
)

COIN_CREATED_V4 = EventShape(
    name="CoinCreatedV4",
    selector="0x2de436107c2096e039c98bbcc3c5a2560583738ce15c234557eecb4d3221aa81",
    data_types=("address", "string", "string", "string", "address", POOL_KEY_TYPE, "bytes32", "string"),
    version_index=7,
)

CREATOR_COIN_CREATED = EventShape(
    name="CreatorCoinCreated",
    selector="0x74b670d628e152daa36ca95dda7cb0002d6ea7a37b55afe4593db7abd1515781",
    data_types=("address", "string", "string", "string", "address", POOL_KEY_TYPE, "bytes32", "string"),
    version_index=7,
)

KNOWN_SHAPES: Dict[str, EventShape] = {
    shape.selector: shape
    for shape in (COIN_CREATED, COIN_CREATED_V4, CREATOR_COIN_CREATED)
}


def topic_to_address(topic: str) -> Optional[str]:
    """
    Recover an indexed address from a 32-byte topic.

    The address is the low 20 bytes. The high 12 bytes must be zero
    padding, otherwise the topic is not an address and None is returned.
    """
    if not isinstance(topic, str) or not topic.startswith("0x"):
        return None
    body = topic[2:].lower()
    if len(body) != 64:
        return None
    try:
        int(body, 16)
    except ValueError:
        return None
    if body[:24] != "0" * 24:
        return None
    return "0x" + body[24:]


def _hex_to_bytes(data: str) -> Optional[bytes]:
    if not isinstance(data, str) or not data.startswith("0x"):
        return None
    try:
        return bytes.fromhex(data[2:])
    except ValueError:
        return None


class EventDecoder:
    """
    Classifies factory logs and decodes launch events.

    ``decode`` is a pure function of the raw log: no network calls, and it
    never raises. Malformed input yields None.

    Usage:
        decoder = EventDecoder(factory_address="0x7777...")
        event = decoder.decode(raw_log)
        if event is not None:
            ...
    """

    def __init__(
        self,
        factory_address: Optional[str] = None,
        shapes: Optional[Dict[str, EventShape]] = None,
    ) -> None:
        """
        Initialize the decoder.

        Args:
            factory_address: If set, logs emitted by any other address are dropped
            shapes: Allow-list of event shapes keyed by selector
        """
        self._factory_address = factory_address.lower() if factory_address else None
        self._shapes = dict(shapes) if shapes is not None else dict(KNOWN_SHAPES)

    @property
    def selectors(self) -> Tuple[str, ...]:
        """Allow-listed event selectors."""
        return tuple(self._shapes)

    def is_candidate(self, raw_log: RawLog) -> bool:
        """Whether the log's selector is in the allow-list."""
        selector = raw_log.selector
        return selector is not None and selector in self._shapes

    def decode(self, raw_log: RawLog) -> Optional[LaunchEvent]:
        """
        Decode a raw log into a LaunchEvent.

        Args:
            raw_log: Log record from the factory

        Returns:
            LaunchEvent, or None if the log is not a known launch shape or
            does not decode cleanly
        """
        try:
            return self._decode(raw_log)
        except Exception as e:
            logger.debug(f"Dropping undecodable log {getattr(raw_log, 'key', '?')}: {e}")
            return None

    def _decode(self, raw_log: RawLog) -> Optional[LaunchEvent]:
        if self._factory_address and raw_log.address.lower() != self._factory_address:
            return None

        shape = self._shapes.get(raw_log.selector or "")
        if shape is None:
            return None

        if len(raw_log.topics) != 4:
            logger.debug(
                f"{shape.name} log {raw_log.key} has {len(raw_log.topics)} topics, expected 4"
            )
            return None

        creator = topic_to_address(raw_log.topics[1])
        payout_recipient = topic_to_address(raw_log.topics[2])
        platform_referrer = topic_to_address(raw_log.topics[3])
        if creator is None or payout_recipient is None or platform_referrer is None:
            return None
        if creator == ZERO_ADDRESS:
            return None

        payload = _hex_to_bytes(raw_log.data)
        if not payload:
            return None

        # Strict ABI decoding validates offsets, lengths and address padding
        values = abi_decode(list(shape.data_types), payload, strict=True)

        coin = str(values[shape.coin_index]).lower()
        if coin == ZERO_ADDRESS:
            return None

        currency = str(values[shape.currency_index]).lower()

        return LaunchEvent(
            creator=creator,
            token_address=coin,
            symbol=values[shape.symbol_index],
            name=values[shape.name_index],
            block_number=raw_log.block_number,
            tx_hash=raw_log.tx_hash,
            log_index=raw_log.log_index,
            event_name=shape.name,
            payout_recipient=payout_recipient,
            platform_referrer=platform_referrer,
            currency=None if currency == ZERO_ADDRESS else currency,
            uri=values[shape.uri_index],
            version=values[shape.version_index],
        )
