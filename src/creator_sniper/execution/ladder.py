"""
Ladder execution state machine.

On every tick, for every OPEN position:
    1. Fetch the current price (skip the tick if unavailable)
    2. Compute the total return against the ETH cost basis
    3. Fire every not-yet-hit ladder level whose trigger is reached,
       in ascending order, selling a fraction of what remains
    4. Dust: close FULL_EXIT once less than a sliver of the size remains
    5. No moon bag: once every level fired, sell the rest and close FULL_EXIT
    6. Stop-loss (only while no level has fired): sell all, close STOP_LOSS
    7. Deadline passed: sell all, close TIME_LIMIT

A failed sell leaves the position untouched so the same condition is
retried on the next tick. A sell still unconfirmed at the call timeout is
not abandoned: the position is frozen until it settles and the fill is
applied on the first tick after that.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from creator_sniper.strategies.strategy import TradingStrategy

from .gateway import ExecutionGateway, GatewayError, TradeResult
from .position import CloseReason, Position
from .position_manager import PositionManager
from .price_oracle import PriceOracle, PriceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_DUST_FRACTION = Decimal("0.001")


@dataclass
class TickResult:
    """What one evaluation tick did to one position."""

    token_address: str
    price: Optional[Decimal] = None
    total_return_percent: Optional[Decimal] = None
    levels_fired: List[int] = field(default_factory=list)
    close_reason: Optional[CloseReason] = None
    skipped: Optional[str] = None
    sell_failed: bool = False


@dataclass
class LadderEngineStats:
    ticks: int = 0
    skipped_ticks: int = 0
    partial_exits: int = 0
    full_exits: int = 0
    stop_losses: int = 0
    time_limits: int = 0
    manual_exits: int = 0
    sell_failures: int = 0
    delayed_sells: int = 0


@dataclass
class PendingSell:
    """A sell that outlived the call timeout and has not been applied yet."""

    task: "asyncio.Future[TradeResult]"
    amount: Decimal
    reason: str
    level_index: Optional[int] = None
    close_reason: Optional[CloseReason] = None


class LadderEngine:
    """
    Evaluates open positions against the strategy's ladder and safety nets.

    Exclusion is per position: each tick holds only that position's lock,
    so a slow sell on one token never delays the others.

    Usage:
        ladder = LadderEngine(manager, gateway, oracle, strategy)
        results = await ladder.evaluate_all()
        await ladder.manual_exit(token)
    """

    def __init__(
        self,
        manager: PositionManager,
        gateway: ExecutionGateway,
        oracle: PriceOracle,
        strategy: TradingStrategy,
        call_timeout: Optional[float] = None,
        dust_fraction: Decimal = DEFAULT_DUST_FRACTION,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the ladder engine.

        Args:
            manager: Owner of the open set and history
            gateway: Venue used for sells
            oracle: Price source
            strategy: Ladder levels, moon bag and risk settings
            call_timeout: Timeout for each sell call
            dust_fraction: Remaining share below which a position is closed
            clock: Time source (UTC)
        """
        self._manager = manager
        self._gateway = gateway
        self._oracle = oracle
        self._strategy = strategy
        self._levels = tuple(strategy.ladder_levels)
        self._call_timeout = call_timeout
        self._dust_fraction = dust_fraction
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.stats = LadderEngineStats()
        self._inflight: Dict[str, PendingSell] = {}

    @property
    def oracle(self) -> PriceOracle:
        return self._oracle

    async def evaluate_all(self) -> List[TickResult]:
        """Evaluate every open position concurrently."""
        positions = self._manager.open_positions()
        if not positions:
            return []

        outcomes = await asyncio.gather(
            *(self.evaluate(position) for position in positions),
            return_exceptions=True,
        )

        results: List[TickResult] = []
        for position, outcome in zip(positions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Evaluation of {position.symbol or position.token_address} failed: {outcome!r}",
                    exc_info=outcome,
                )
                continue
            results.append(outcome)
        return results

    async def evaluate(self, position: Position) -> TickResult:
        """Run one tick for one position."""
        result = TickResult(token_address=position.token_address)

        async with self._manager.lock_for(position.token_address):
            if not position.is_open:
                result.skipped = "closed"
                return result

            if not await self._settle_inflight(position, result):
                return result

            self.stats.ticks += 1
            label = position.symbol or position.token_address

            try:
                quote = await self._oracle.quote(position.token_address, position.remaining_size)
            except PriceUnavailableError as e:
                self.stats.skipped_ticks += 1
                result.skipped = f"price unavailable: {e.cause}"
                logger.warning(f"Skipping tick for {label}: {e.cause}")
                return result

            price = quote.price
            now = self._clock()
            total_return = position.total_return_percent(price)
            result.price = price
            result.total_return_percent = total_return

            logger.debug(
                f"{label}: price {price} return {total_return:.2f}% "
                f"remaining {position.remaining_fraction:.2%} levels {position.levels_hit}"
            )

            # Ladder levels, ascending. The return figure is fixed for the tick.
            for index, level in enumerate(self._levels):
                if index in position.levels_hit:
                    continue
                if total_return < level.trigger_percent:
                    break

                amount = position.remaining_size * level.sell_fraction
                sold = await self._sell(position, amount, f"LADDER_{index}", result, level_index=index, now=now)
                if not sold:
                    return result
                result.levels_fired.append(index)
                self.stats.partial_exits += 1
                logger.info(
                    f"Ladder level {index} hit for {label} at {total_return:.1f}% "
                    f"({level.description or level.trigger_percent}): sold {amount}, "
                    f"{position.remaining_fraction:.2%} remaining"
                )

            if position.remaining_size < position.original_size * self._dust_fraction:
                await self._close(position, CloseReason.FULL_EXIT, price, now, result)
                return result

            all_levels_hit = len(position.levels_hit) == len(self._levels)
            if all_levels_hit and not self._strategy.enable_moon_bag:
                await self._exit_all(position, CloseReason.FULL_EXIT, price, now, result)
                return result

            if not position.levels_hit and price <= position.stop_loss_price:
                logger.warning(f"Stop loss hit for {label}: {price} <= {position.stop_loss_price}")
                await self._exit_all(position, CloseReason.STOP_LOSS, price, now, result)
                return result

            if now >= position.max_hold_deadline:
                logger.warning(f"Max hold time reached for {label}, exiting {position.remaining_fraction:.2%}")
                await self._exit_all(position, CloseReason.TIME_LIMIT, price, now, result)
                return result

        return result

    async def manual_exit(self, token_address: str) -> Optional[Position]:
        """
        Sell everything left and close with reason MANUAL.

        Returns:
            The closed position, or None if there is no open position or the
            sell failed (the position then stays open)
        """
        position = self._manager.get(token_address)
        if position is None:
            logger.warning(f"Manual exit requested for unknown position {token_address}")
            return None

        result = TickResult(token_address=position.token_address)
        async with self._manager.lock_for(position.token_address):
            if not position.is_open:
                return None
            if not await self._settle_inflight(position, result) or not position.is_open:
                return None
            price = self._oracle.last_price(position.token_address) or position.entry_price
            await self._exit_all(position, CloseReason.MANUAL, price, self._clock(), result)

        return position if result.close_reason == CloseReason.MANUAL else None

    async def _exit_all(
        self,
        position: Position,
        reason: CloseReason,
        price: Decimal,
        now: datetime,
        result: TickResult,
    ) -> None:
        amount = position.remaining_size
        if amount > 0:
            if not await self._sell(position, amount, reason.value, result, now=now, close_reason=reason):
                return
            price = position.fills[-1].price
        await self._close(position, reason, price, now, result)

    async def _close(
        self,
        position: Position,
        reason: CloseReason,
        price: Decimal,
        now: datetime,
        result: TickResult,
    ) -> None:
        position.close(reason, exit_price=price, exit_time=now)
        self._manager.archive(position)
        self._oracle.forget(position.token_address)
        result.close_reason = reason

        if reason == CloseReason.FULL_EXIT:
            self.stats.full_exits += 1
        elif reason == CloseReason.STOP_LOSS:
            self.stats.stop_losses += 1
        elif reason == CloseReason.TIME_LIMIT:
            self.stats.time_limits += 1
        elif reason == CloseReason.MANUAL:
            self.stats.manual_exits += 1

        logger.info(
            f"Closed {position.symbol or position.token_address} ({reason.value}): "
            f"realized {position.realized_pnl:+.6f} ETH on {position.entry_cost} ETH, "
            f"levels hit {position.levels_hit}"
        )

    async def _settle_inflight(self, position: Position, result: TickResult) -> bool:
        """
        Apply a delayed sell once it has settled.

        Returns:
            True if the tick may go on evaluating the position
        """
        pending = self._inflight.get(position.token_address)
        if pending is None:
            return True

        label = position.symbol or position.token_address
        if not pending.task.done():
            self.stats.skipped_ticks += 1
            result.skipped = "sell in flight"
            logger.info(f"Holding {label}: {pending.reason} sell of {pending.amount} still unconfirmed")
            return False

        del self._inflight[position.token_address]
        now = self._clock()
        if not self._apply_sale(position, pending, result, now):
            return True

        logger.warning(f"Delayed {pending.reason} sell for {label} settled, fill applied")
        if pending.level_index is not None:
            result.levels_fired.append(pending.level_index)
            self.stats.partial_exits += 1
        if pending.close_reason is not None:
            await self._close(position, pending.close_reason, position.fills[-1].price, now, result)
            return False
        return True

    async def _sell(
        self,
        position: Position,
        amount: Decimal,
        reason: str,
        result: TickResult,
        level_index: Optional[int] = None,
        now: Optional[datetime] = None,
        close_reason: Optional[CloseReason] = None,
    ) -> bool:
        """
        Sell and apply the fill. On failure nothing is changed.

        The sell is never cancelled. If it outlives the call timeout it is
        parked as in flight and applied by a later tick.
        """
        pending = PendingSell(
            task=asyncio.ensure_future(self._gateway.sell(position.token_address, amount)),
            amount=amount,
            reason=reason,
            level_index=level_index,
            close_reason=close_reason,
        )
        try:
            done, _ = await asyncio.wait({pending.task}, timeout=self._call_timeout)
        except asyncio.CancelledError:
            self._inflight[position.token_address] = pending
            raise

        if pending.task not in done:
            self._inflight[position.token_address] = pending
            self.stats.delayed_sells += 1
            result.skipped = "sell in flight"
            logger.warning(
                f"SELL for {position.symbol or position.token_address} amount {amount} [{reason}] "
                f"unconfirmed after {self._call_timeout}s. Position frozen until it settles"
            )
            return False

        return self._apply_sale(position, pending, result, now)

    def _apply_sale(
        self,
        position: Position,
        pending: PendingSell,
        result: TickResult,
        now: Optional[datetime],
    ) -> bool:
        label = position.symbol or position.token_address
        if pending.task.cancelled():
            trade = TradeResult.failed("sell cancelled before it settled")
        else:
            try:
                trade = pending.task.result()
            except GatewayError as e:
                trade = TradeResult.failed(f"{type(e).__name__}: {e}")

        if not trade.success or trade.amount_out is None:
            self.stats.sell_failures += 1
            result.sell_failed = True
            logger.error(
                f"SELL FAILED for {label} ({position.token_address}) amount {pending.amount} "
                f"[{pending.reason}]: {trade.error}. Position NOT updated, will retry next tick"
            )
            return False

        position.record_sale(
            amount=pending.amount,
            proceeds=trade.amount_out,
            reason=pending.reason,
            level_index=pending.level_index,
            tx_ref=trade.tx_ref,
            timestamp=now,
        )
        return True
