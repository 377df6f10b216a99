"""
Position Manager - opens positions and owns the open set and history.

Opening is all-or-nothing: the slot is reserved before the buy is sent
and released if the buy fails, so a failed buy never leaves partial
state and concurrent opens cannot overshoot the position cap. A buy that
is still unconfirmed at the call timeout keeps its slot and is adopted
as a position once it settles.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from creator_sniper.ingestion.models import LaunchEvent
from creator_sniper.strategies.strategy import SizingPolicy, TradingStrategy, fixed_notional

from .gateway import ExecutionGateway, GatewayError, TradeResult
from .position import LadderStats, Position

logger = logging.getLogger(__name__)

# Positions still holding more than this share of their size count as moon bags
MOON_BAG_THRESHOLD = Decimal("0.8")


class RejectReason(str, Enum):
    MAX_POSITIONS = "max_positions"
    DUPLICATE = "duplicate"
    INVALID_SIZE = "invalid_size"
    BUY_FAILED = "buy_failed"
    BUY_PENDING = "buy_pending"


class PositionManager:
    """
    Tracks open positions and the closed-position history.

    Usage:
        manager = PositionManager(gateway, strategy)

        position = await manager.open(event)
        if position is None:
            print(manager.last_rejection)

        async with manager.lock_for(token):
            ...  # read-modify-write one position

        manager.archive(position)  # once CLOSED
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        strategy: TradingStrategy,
        sizing_policy: SizingPolicy = fixed_notional,
        call_timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            gateway: Venue used for the entry buy
            strategy: Active strategy (cap, stop loss, hold limit)
            sizing_policy: Default strategy -> ETH amount function
            call_timeout: Timeout for the buy call
            clock: Time source (UTC)
        """
        self._gateway = gateway
        self._strategy = strategy
        self._sizing_policy = sizing_policy
        self._call_timeout = call_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._open: Dict[str, Position] = {}
        self._pending: Set[str] = set()
        self._history: List[Position] = []
        self._locks: Dict[str, asyncio.Lock] = {}

        self.last_rejection: Optional[Tuple[str, RejectReason]] = None
        self.rejections: Dict[RejectReason, int] = {reason: 0 for reason in RejectReason}
        self.late_fills = 0

    @property
    def strategy(self) -> TradingStrategy:
        return self._strategy

    @property
    def max_positions(self) -> int:
        return self._strategy.max_positions

    @property
    def open_count(self) -> int:
        return len(self._open)

    def get(self, token_address: str) -> Optional[Position]:
        return self._open.get(token_address.lower())

    def open_positions(self) -> List[Position]:
        return list(self._open.values())

    def history(self) -> Tuple[Position, ...]:
        """Closed positions, oldest first."""
        return tuple(self._history)

    def lock_for(self, token_address: str) -> asyncio.Lock:
        """Per-position lock for read-modify-write cycles."""
        token = token_address.lower()
        lock = self._locks.get(token)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[token] = lock
        return lock

    async def open(
        self,
        event: LaunchEvent,
        sizing_policy: Optional[SizingPolicy] = None,
    ) -> Optional[Position]:
        """
        Buy into a launch and start tracking the position.

        A buy that outlives the call timeout is not cancelled: the slot
        stays reserved and the position is created when the buy settles.

        Returns:
            The new OPEN position, or None if rejected or still in flight
            (see ``last_rejection``)
        """
        token = event.token_address.lower()
        label = event.symbol or token

        # Check and reserve without yielding to the loop
        if token in self._open or token in self._pending:
            return self._reject(token, RejectReason.DUPLICATE, f"already holding {label}")
        if len(self._open) + len(self._pending) >= self.max_positions:
            return self._reject(
                token, RejectReason.MAX_POSITIONS,
                f"{len(self._open)} open (+{len(self._pending)} pending) of max {self.max_positions}",
            )

        policy = sizing_policy or self._sizing_policy
        amount = policy(self._strategy)
        if amount is None or amount <= 0:
            return self._reject(token, RejectReason.INVALID_SIZE, f"sizing returned {amount}")

        self._pending.add(token)
        logger.info(f"Opening {label} ({token}): buying {amount} ETH")
        buy = asyncio.ensure_future(self._gateway.buy(token, amount))
        try:
            # asyncio.wait never cancels the buy, even when the wait is cut short
            done, _ = await asyncio.wait({buy}, timeout=self._call_timeout)
        except asyncio.CancelledError:
            buy.add_done_callback(lambda finished: self._settle_late_buy(finished, event, amount))
            raise

        if buy not in done:
            buy.add_done_callback(lambda finished: self._settle_late_buy(finished, event, amount))
            return self._reject(
                token, RejectReason.BUY_PENDING,
                f"BUY {label} ({token}) for {amount} ETH unconfirmed after {self._call_timeout}s, "
                f"slot held until it settles",
                error=True,
            )

        return self._settle_buy(buy, event, amount)

    def _settle_buy(self, buy: "asyncio.Future[TradeResult]", event: LaunchEvent, amount: Decimal) -> Optional[Position]:
        """Turn a finished buy into a position (or a rejection) and free the reservation."""
        token = event.token_address.lower()
        label = event.symbol or token
        try:
            try:
                result = buy.result()
            except GatewayError as e:
                return self._reject(
                    token, RejectReason.BUY_FAILED,
                    f"BUY {label} ({token}) for {amount} ETH raised {type(e).__name__}: {e}",
                    error=True,
                )

            if not result.success or result.amount_out is None or result.amount_out <= 0:
                return self._reject(
                    token, RejectReason.BUY_FAILED,
                    f"BUY {label} ({token}) for {amount} ETH failed: {result.error or 'empty fill'}",
                    error=True,
                )

            position = Position.from_fill(
                token_address=token,
                eth_spent=amount,
                tokens_received=result.amount_out,
                stop_loss_percent=self._strategy.stop_loss_percent,
                max_hold_minutes=self._strategy.max_hold_minutes,
                entry_time=self._clock(),
                symbol=event.symbol,
                creator=event.creator,
                entry_tx=result.tx_ref,
            )
            self._open[token] = position
        finally:
            self._pending.discard(token)

        logger.info(
            f"Opened {label}: {position.original_size} tokens for {amount} ETH "
            f"@ {position.entry_price} (stop {position.stop_loss_price}, "
            f"deadline {position.max_hold_deadline.isoformat()}, tx {position.entry_tx})"
        )
        return position

    def _settle_late_buy(self, buy: "asyncio.Future[TradeResult]", event: LaunchEvent, amount: Decimal) -> None:
        if buy.cancelled():
            self._pending.discard(event.token_address.lower())
            logger.error(f"BUY {event.token_address} for {amount} ETH was cancelled before it settled")
            return
        position = self._settle_buy(buy, event, amount)
        if position is not None:
            self.late_fills += 1
            logger.warning(f"Late BUY fill adopted for {position.symbol or position.token_address}")

    def archive(self, position: Position) -> None:
        """
        Move a CLOSED position from the open set into history.

        Raises:
            ValueError: If the position is still open
        """
        if position.is_open:
            raise ValueError(f"Cannot archive open position {position.token_address}")
        if self._open.get(position.token_address) is position:
            del self._open[position.token_address]
            self._history.append(position)
            self._locks.pop(position.token_address, None)

    def stats(self) -> LadderStats:
        """Aggregate statistics across open and closed positions."""
        everything = list(self._open.values()) + self._history
        total = len(everything)
        realized = sum((p.realized_pnl for p in everything), Decimal("0"))
        avg_levels = (sum(len(p.levels_hit) for p in everything) / total) if total else 0.0
        moon_bags = sum(1 for p in self._open.values() if p.remaining_fraction > MOON_BAG_THRESHOLD)

        return LadderStats(
            total_positions=total,
            active_positions=len(self._open),
            closed_positions=len(self._history),
            total_realized_pnl=realized,
            average_levels_hit=avg_levels,
            moon_bags=moon_bags,
        )

    def _reject(self, token: str, reason: RejectReason, detail: str, error: bool = False) -> None:
        self.last_rejection = (token, reason)
        self.rejections[reason] += 1
        if error:
            logger.error(f"Position rejected ({reason.value}): {detail}")
        else:
            logger.info(f"Position rejected ({reason.value}): {detail}")
        return None
