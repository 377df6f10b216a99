"""
Execution gateway interface and the dry-run adapter.

Everything above this boundary talks to a venue only through
``buy``/``sell``/``quote_price``. The dry-run adapter fabricates fills
and never submits anything. On its own it needs no network at all, so
the full pipeline can run offline; given a quote-only market it fills
and prices against live quotes instead.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Raised when a venue cannot quote or execute."""

    def __init__(self, message: str, token_address: Optional[str] = None):
        super().__init__(message)
        self.token_address = token_address


@dataclass(frozen=True)
class TradeResult:
    """
    Outcome of a buy or sell.

    ``amount_out`` is tokens received for a buy and ETH received for a sell.
    """

    success: bool
    amount_out: Optional[Decimal] = None
    tx_ref: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def filled(cls, amount_out: Decimal, tx_ref: Optional[str] = None) -> "TradeResult":
        return cls(success=True, amount_out=amount_out, tx_ref=tx_ref)

    @classmethod
    def failed(cls, error: str) -> "TradeResult":
        return cls(success=False, error=error)


class ExecutionGateway(Protocol):
    """One venue adapter."""

    @property
    def name(self) -> str: ...

    async def buy(self, token_address: str, eth_amount_in: Decimal) -> TradeResult: ...

    async def sell(self, token_address: str, token_amount_in: Decimal) -> TradeResult: ...

    async def quote_price(self, token_address: str, reference_size: Decimal) -> Decimal:
        """ETH per token for selling ``reference_size`` tokens. Raises GatewayError."""
        ...

    async def close(self) -> None: ...


class MarketQuotes(Protocol):
    """Read-only market prices a dry run can fill against."""

    async def quote_buy(self, token_address: str, eth_amount_in: Decimal) -> Decimal: ...

    async def quote_sell(self, token_address: str, token_amount_in: Decimal) -> Decimal: ...

    async def quote_price(self, token_address: str, reference_size: Decimal) -> Decimal: ...

    async def close(self) -> None: ...


@dataclass
class DryRunTrade:
    side: str
    token_address: str
    amount_in: Decimal
    amount_out: Decimal
    price: Decimal
    tx_ref: str


class DryRunGateway:
    """
    Simulated venue: fills are fabricated, nothing is ever sent.

    Without a market each token gets a reference price derived from its
    address, so the same token always opens at the same price, and prices
    move only through ``set_price``. With a market (a quote-only client)
    buys, sells and quotes follow real quotes, so a dry run tracks the
    live market without risking funds. A market quote failure fails the
    trade the same way a live one would.

    Usage:
        gateway = DryRunGateway()
        result = await gateway.buy(token, Decimal("0.01"))
        gateway.set_price(token, gateway.price_of(token) * 3)
    """

    MIN_REFERENCE_PRICE = Decimal("0.000001")

    def __init__(self, fee_percent: Decimal = Decimal("0"), market: Optional[MarketQuotes] = None) -> None:
        """
        Initialize the dry-run gateway.

        Args:
            fee_percent: Haircut applied to every fill, in percent
            market: Optional live quote source to fill and price against
        """
        self._fee = fee_percent / Decimal("100")
        self._market = market
        self._prices: Dict[str, Decimal] = {}
        self._sequence = 0
        self.trades: List[DryRunTrade] = []

        # Failure injection
        self.fail_buys = False
        self.fail_sells = False
        self.fail_quotes = False

    @property
    def name(self) -> str:
        return "dry-run" if self._market is None else "dry-run (market quotes)"

    @property
    def market(self) -> Optional[MarketQuotes]:
        return self._market

    @classmethod
    def reference_price(cls, token_address: str) -> Decimal:
        """Deterministic starting price (ETH per token) for a token."""
        digest = hashlib.sha256(token_address.lower().encode()).digest()
        bucket = int.from_bytes(digest[:4], "big") % 1000
        return cls.MIN_REFERENCE_PRICE * (1 + bucket)

    def price_of(self, token_address: str) -> Decimal:
        token = token_address.lower()
        if token not in self._prices:
            self._prices[token] = self.reference_price(token)
        return self._prices[token]

    def set_price(self, token_address: str, price: Decimal) -> None:
        if price <= 0:
            raise ValueError("price must be positive")
        self._prices[token_address.lower()] = price

    def _tx_ref(self, side: str, token_address: str, amount: Decimal) -> str:
        self._sequence += 1
        seed = f"{side}:{token_address.lower()}:{amount}:{self._sequence}"
        return "0x" + hashlib.sha256(seed.encode()).hexdigest()

    async def buy(self, token_address: str, eth_amount_in: Decimal) -> TradeResult:
        if self.fail_buys:
            return TradeResult.failed("simulated buy failure")
        if eth_amount_in <= 0:
            return TradeResult.failed(f"invalid buy amount {eth_amount_in}")

        if self._market is None:
            price = self.price_of(token_address)
            tokens_quoted = eth_amount_in / price
        else:
            try:
                tokens_quoted = await self._market.quote_buy(token_address, eth_amount_in)
            except GatewayError as e:
                logger.error(f"[DRY RUN] BUY quote failed for {token_address}: {e}")
                return TradeResult.failed(str(e))
            if tokens_quoted <= 0:
                return TradeResult.failed(f"empty buy quote for {token_address}")
            price = eth_amount_in / tokens_quoted
            self.set_price(token_address, price)

        tokens_out = tokens_quoted * (Decimal("1") - self._fee)
        tx_ref = self._tx_ref("buy", token_address, eth_amount_in)
        self.trades.append(DryRunTrade("BUY", token_address.lower(), eth_amount_in, tokens_out, price, tx_ref))

        logger.info(f"[DRY RUN] BUY {tokens_out:.4f} {token_address} for {eth_amount_in} ETH @ {price}")
        return TradeResult.filled(tokens_out, tx_ref)

    async def sell(self, token_address: str, token_amount_in: Decimal) -> TradeResult:
        if self.fail_sells:
            return TradeResult.failed("simulated sell failure")
        if token_amount_in <= 0:
            return TradeResult.failed(f"invalid sell amount {token_amount_in}")

        if self._market is None:
            price = self.price_of(token_address)
            eth_quoted = token_amount_in * price
        else:
            try:
                eth_quoted = await self._market.quote_sell(token_address, token_amount_in)
            except GatewayError as e:
                logger.error(f"[DRY RUN] SELL quote failed for {token_address}: {e}")
                return TradeResult.failed(str(e))
            if eth_quoted <= 0:
                return TradeResult.failed(f"empty sell quote for {token_address}")
            price = eth_quoted / token_amount_in
            self.set_price(token_address, price)

        eth_out = eth_quoted * (Decimal("1") - self._fee)
        tx_ref = self._tx_ref("sell", token_address, token_amount_in)
        self.trades.append(DryRunTrade("SELL", token_address.lower(), token_amount_in, eth_out, price, tx_ref))

        logger.info(f"[DRY RUN] SELL {token_amount_in:.4f} {token_address} for {eth_out:.8f} ETH @ {price}")
        return TradeResult.filled(eth_out, tx_ref)

    async def quote_price(self, token_address: str, reference_size: Decimal) -> Decimal:
        if self.fail_quotes:
            raise GatewayError("simulated quote failure", token_address)
        if self._market is None:
            return self.price_of(token_address)

        price = await self._market.quote_price(token_address, reference_size)
        if price <= 0:
            raise GatewayError(f"empty price quote {price}", token_address)
        self.set_price(token_address, price)
        return price

    async def close(self) -> None:
        if self._market is not None:
            await self._market.close()
