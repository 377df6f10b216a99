"""
Position model for laddered exits.

A position is opened by one buy and then drained by any number of
partial sells until it closes. All amounts are Decimals: ETH for costs
and proceeds, raw token units for sizes.

Invariants maintained by the mutators below:
    - remaining_size == original_size - total_sold
    - levels_hit only grows
    - a CLOSED position is never mutated again
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, Enum):
    """Why a position was closed."""

    FULL_EXIT = "FULL_EXIT"
    STOP_LOSS = "STOP_LOSS"
    TIME_LIMIT = "TIME_LIMIT"
    MANUAL = "MANUAL"


class PositionClosedError(RuntimeError):
    """Raised when trying to mutate a closed position."""


@dataclass(frozen=True)
class ExitFill:
    """One executed sell against a position."""

    amount: Decimal
    proceeds: Decimal
    price: Decimal
    cost_basis: Decimal
    reason: str
    timestamp: datetime
    level_index: Optional[int] = None
    tx_ref: Optional[str] = None

    @property
    def pnl(self) -> Decimal:
        return self.proceeds - self.cost_basis


@dataclass
class Position:
    """
    A laddered position in one token.

    ``entry_cost`` is the total ETH invested and is the cost basis every
    return figure is measured against. ``entry_price`` is the per-token
    fill price of the buy (entry_cost / original_size).
    """

    token_address: str
    entry_price: Decimal
    entry_cost: Decimal
    original_size: Decimal
    remaining_size: Decimal
    entry_time: datetime
    stop_loss_price: Decimal
    max_hold_deadline: datetime

    position_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    symbol: str = ""
    creator: Optional[str] = None
    entry_tx: Optional[str] = None

    levels_hit: List[int] = field(default_factory=list)
    total_sold: Decimal = Decimal("0")
    total_proceeds: Decimal = Decimal("0")
    realized_pnl: Decimal = Decimal("0")
    fills: List[ExitFill] = field(default_factory=list)

    status: PositionStatus = PositionStatus.OPEN
    close_reason: Optional[CloseReason] = None
    exit_price: Optional[Decimal] = None
    exit_time: Optional[datetime] = None

    @classmethod
    def from_fill(
        cls,
        token_address: str,
        eth_spent: Decimal,
        tokens_received: Decimal,
        stop_loss_percent: Decimal,
        max_hold_minutes: int,
        entry_time: Optional[datetime] = None,
        **kwargs,
    ) -> "Position":
        """Build an OPEN position from a successful buy."""
        if eth_spent <= 0 or tokens_received <= 0:
            raise ValueError("A position needs a positive cost and size")

        entry_time = entry_time or datetime.now(timezone.utc)
        entry_price = eth_spent / tokens_received
        return cls(
            token_address=token_address.lower(),
            entry_price=entry_price,
            entry_cost=eth_spent,
            original_size=tokens_received,
            remaining_size=tokens_received,
            entry_time=entry_time,
            stop_loss_price=entry_price * (Decimal("1") - stop_loss_percent / Decimal("100")),
            max_hold_deadline=entry_time + timedelta(minutes=max_hold_minutes),
            **kwargs,
        )

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def remaining_fraction(self) -> Decimal:
        """Share of the original size still held."""
        return self.remaining_size / self.original_size

    def cost_basis_of(self, amount: Decimal) -> Decimal:
        """ETH cost of ``amount`` tokens at the entry price."""
        return self.entry_cost * amount / self.original_size

    def market_value(self, price: Decimal) -> Decimal:
        return self.remaining_size * price

    def total_return_percent(self, price: Decimal) -> Decimal:
        """
        Return on the whole investment, in percent.

        Counts what is still held at ``price`` plus everything already
        realized, against the total ETH invested. Partial sells therefore
        do not move the figure by themselves.
        """
        value = self.market_value(price) + self.total_proceeds
        return (value - self.entry_cost) / self.entry_cost * Decimal("100")

    def unrealized_pnl(self, price: Decimal) -> Decimal:
        return self.market_value(price) - self.cost_basis_of(self.remaining_size)

    def hold_duration(self, now: Optional[datetime] = None) -> timedelta:
        return (now or datetime.now(timezone.utc)) - self.entry_time

    def record_sale(
        self,
        amount: Decimal,
        proceeds: Decimal,
        reason: str,
        level_index: Optional[int] = None,
        tx_ref: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> ExitFill:
        """
        Apply an executed sell.

        Raises:
            PositionClosedError: If the position is already closed
            ValueError: If the amount is not in (0, remaining_size]
        """
        self._ensure_open()
        if amount <= 0 or amount > self.remaining_size:
            raise ValueError(f"Cannot sell {amount} of {self.remaining_size} remaining")
        if level_index is not None and level_index in self.levels_hit:
            raise ValueError(f"Ladder level {level_index} already hit")

        cost_basis = self.cost_basis_of(amount)
        fill = ExitFill(
            amount=amount,
            proceeds=proceeds,
            price=proceeds / amount,
            cost_basis=cost_basis,
            reason=reason,
            timestamp=timestamp or datetime.now(timezone.utc),
            level_index=level_index,
            tx_ref=tx_ref,
        )

        self.total_sold += amount
        self.remaining_size = self.original_size - self.total_sold
        self.total_proceeds += proceeds
        self.realized_pnl += fill.pnl
        if level_index is not None:
            self.levels_hit.append(level_index)
        self.fills.append(fill)
        return fill

    def close(self, reason: CloseReason, exit_price: Decimal, exit_time: Optional[datetime] = None) -> None:
        """Mark the position CLOSED. Terminal."""
        self._ensure_open()
        self.status = PositionStatus.CLOSED
        self.close_reason = reason
        self.exit_price = exit_price
        self.exit_time = exit_time or datetime.now(timezone.utc)

    def _ensure_open(self) -> None:
        if self.status != PositionStatus.OPEN:
            raise PositionClosedError(f"Position {self.position_id} ({self.token_address}) is closed")


@dataclass(frozen=True)
class LadderStats:
    """Portfolio-level ladder statistics."""

    total_positions: int
    active_positions: int
    closed_positions: int
    total_realized_pnl: Decimal
    average_levels_hit: float
    moon_bags: int
