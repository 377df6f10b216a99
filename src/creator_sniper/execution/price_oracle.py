"""
Price oracle for open positions.

Quotes come from the execution gateway's own quoting path, cached per
token for a short window. When quoting fails the oracle either falls back
to the last known price (simulated mode) or reports the price as
unavailable so the caller skips that position's tick.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Deque, Dict, Optional, Tuple

from .gateway import ExecutionGateway, GatewayError

logger = logging.getLogger(__name__)


class PriceUnavailableError(Exception):
    """Raised when no usable price exists for a token."""

    def __init__(self, token_address: str, cause: str):
        super().__init__(f"No price for {token_address}: {cause}")
        self.token_address = token_address
        self.cause = cause


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class PriceSource(str, Enum):
    GATEWAY = "GATEWAY"
    CACHE = "CACHE"
    SIMULATED = "SIMULATED"


@dataclass(frozen=True)
class PriceQuote:
    """A price observation in ETH per token."""

    token_address: str
    price: Decimal
    confidence: Confidence
    as_of: datetime
    source: PriceSource


class PriceOracle:
    """
    Cached price lookups with bounded history.

    Usage:
        oracle = PriceOracle(gateway, cache_seconds=30)
        quote = await oracle.quote(token, position.remaining_size)
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        cache_seconds: float = 30.0,
        history_size: int = 100,
        simulated_fallback: bool = False,
        call_timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the oracle.

        Args:
            gateway: Gateway whose quoting path backs the oracle
            cache_seconds: How long a fresh quote is reused
            history_size: Samples kept per token
            simulated_fallback: Serve the last known price when quoting fails
            call_timeout: Timeout for a single gateway quote
            clock: Time source (UTC)
        """
        self._gateway = gateway
        self._cache_ttl = timedelta(seconds=cache_seconds)
        self._history_size = history_size
        self._simulated_fallback = simulated_fallback
        self._call_timeout = call_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._cache: Dict[str, PriceQuote] = {}
        self._history: Dict[str, Deque[Tuple[datetime, Decimal]]] = {}

    async def quote(self, token_address: str, reference_size: Decimal) -> PriceQuote:
        """
        Current price for a token.

        Raises:
            PriceUnavailableError: If quoting fails and no fallback applies
        """
        token = token_address.lower()
        now = self._clock()

        cached = self._cache.get(token)
        if cached is not None and cached.source == PriceSource.GATEWAY and now - cached.as_of < self._cache_ttl:
            return PriceQuote(token, cached.price, cached.confidence, cached.as_of, PriceSource.CACHE)

        try:
            call = self._gateway.quote_price(token, reference_size)
            if self._call_timeout is not None:
                price = await asyncio.wait_for(call, timeout=self._call_timeout)
            else:
                price = await call
        except (GatewayError, asyncio.TimeoutError) as e:
            return self._fallback(token, now, f"{type(e).__name__}: {e}")

        if price is None or price <= 0:
            return self._fallback(token, now, f"non-positive quote {price}")

        quote = PriceQuote(token, Decimal(price), Confidence.HIGH, now, PriceSource.GATEWAY)
        self._cache[token] = quote
        self._record(token, now, quote.price)
        return quote

    def _fallback(self, token: str, now: datetime, cause: str) -> PriceQuote:
        last = self.last_price(token)
        if self._simulated_fallback and last is not None:
            logger.warning(f"Quote failed for {token} ({cause}), using last known price {last}")
            return PriceQuote(token, last, Confidence.LOW, now, PriceSource.SIMULATED)

        logger.warning(f"Quote failed for {token}: {cause}")
        raise PriceUnavailableError(token, cause)

    def _record(self, token: str, as_of: datetime, price: Decimal) -> None:
        samples = self._history.get(token)
        if samples is None:
            samples = deque(maxlen=self._history_size)
            self._history[token] = samples
        samples.append((as_of, price))

    def last_price(self, token_address: str) -> Optional[Decimal]:
        samples = self._history.get(token_address.lower())
        return samples[-1][1] if samples else None

    def change_percent(self, token_address: str) -> Optional[Decimal]:
        """Price change from the oldest to the newest recorded sample."""
        samples = self._history.get(token_address.lower())
        if not samples or len(samples) < 2:
            return None
        first, last = samples[0][1], samples[-1][1]
        return (last - first) / first * Decimal("100")

    def forget(self, token_address: str) -> None:
        """Drop cache and history for a token (position closed)."""
        token = token_address.lower()
        self._cache.pop(token, None)
        self._history.pop(token, None)
