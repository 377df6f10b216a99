"""
Sniper Engine - Main orchestrator for launch detection and entries.

The engine coordinates all components:
1. Polls the factory for new launch logs (decoded, deduplicated)
2. Applies the freshness filter against the startup reference
3. Runs the credibility gate on the creator
4. Opens a position through the position manager
5. Drives ladder evaluation of open positions

Within one poll iteration events are handled strictly in ascending
(block_number, log_index) order, so when two launches compete for the last
position slot the earlier one wins.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Protocol, TypeVar

from creator_sniper.execution.position import CloseReason, Position
from creator_sniper.ingestion.client import RpcError
from creator_sniper.ingestion.freshness import FreshnessFilter
from creator_sniper.ingestion.models import LaunchEvent
from creator_sniper.ingestion.poller import PollResult

if TYPE_CHECKING:
    from creator_sniper.execution.ladder import LadderEngine, TickResult
    from creator_sniper.execution.position_manager import PositionManager
    from creator_sniper.gating.gate import CredibilityGate
    from creator_sniper.ingestion.poller import LogPoller

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlockSource(Protocol):
    """Chain head and block timestamps (normally ChainRpcClient)."""

    async def get_block_number(self) -> int: ...

    async def get_block_timestamp(self, block_number: int) -> int: ...


@dataclass
class EngineConfig:
    """Configuration for the sniper engine."""

    # Freshness
    max_block_age: int = 10

    # Per external call (poll, block timestamp)
    call_timeout_seconds: Optional[float] = 30.0

    # Mode
    dry_run: bool = True


@dataclass
class EngineStats:
    """Runtime statistics for the engine."""

    polls: int = 0
    poll_failures: int = 0
    logs_fetched: int = 0
    events_decoded: int = 0
    decode_failures: int = 0
    duplicates_skipped: int = 0
    freshness_rejections: int = 0
    gate_rejections: int = 0
    gate_passes: int = 0
    positions_opened: int = 0
    positions_rejected: int = 0
    exits: int = 0
    errors: int = 0


class SniperEngine:
    """
    Main sniper orchestrator.

    Coordinates the flow: logs -> launch events -> freshness -> gate -> position

    Usage:
        engine = SniperEngine(
            config=EngineConfig(dry_run=True),
            chain=rpc,
            poller=poller,
            gate=gate,
            manager=manager,
            ladder=ladder,
        )

        await engine.start()

        opened = await engine.poll_once()
        results = await engine.evaluate_positions()

        await engine.stop()
    """

    def __init__(
        self,
        config: EngineConfig,
        chain: BlockSource,
        poller: "LogPoller",
        gate: "CredibilityGate",
        manager: "PositionManager",
        ladder: "LadderEngine",
        wall_clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the sniper engine.

        Args:
            config: Engine configuration
            chain: Head block and block timestamp source
            poller: Factory log poller
            gate: Creator credibility gate
            manager: Owner of open positions
            ladder: Exit state machine for open positions
            wall_clock: Unix time source used for the startup reference
        """
        self.config = config
        self._chain = chain
        self._poller = poller
        self._gate = gate
        self._manager = manager
        self._ladder = ladder
        self._wall_clock = wall_clock or time.time

        self._freshness: Optional[FreshnessFilter] = None
        self._is_running = False
        self._stats = EngineStats()

    @property
    def is_running(self) -> bool:
        """Whether the engine is currently running."""
        return self._is_running

    @property
    def stats(self) -> EngineStats:
        """Current engine statistics."""
        return self._stats

    @property
    def freshness(self) -> Optional[FreshnessFilter]:
        """Startup reference filter (set by ``start``)."""
        return self._freshness

    @property
    def manager(self) -> "PositionManager":
        return self._manager

    async def start(self) -> None:
        """
        Capture the startup reference and position the poller at the head.

        Nothing at or before the startup block is ever acted on.

        Raises:
            RpcError: If the chain head cannot be read
        """
        if self._is_running:
            logger.warning("Engine already running")
            return

        startup_block = await self._bounded(self._chain.get_block_number())
        startup_timestamp = int(self._wall_clock())

        self._freshness = FreshnessFilter(
            startup_block=startup_block,
            startup_timestamp=startup_timestamp,
            max_block_age=self.config.max_block_age,
        )
        self._poller.start_from(startup_block)
        self._is_running = True

        strategy = self._manager.strategy
        logger.info(f"Starting sniper engine with strategy: {strategy.name}")
        logger.info(f"Mode: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(
            f"Startup block {startup_block}, timestamp {startup_timestamp}; "
            f"max block age {self.config.max_block_age}"
        )

    async def stop(self) -> None:
        """Stop the engine. Open positions are left as they are."""
        if not self._is_running:
            return

        logger.info("Stopping sniper engine...")
        self._is_running = False

        open_positions = self._manager.open_positions()
        if open_positions:
            logger.warning(
                f"{len(open_positions)} position(s) still open at shutdown: "
                f"{', '.join(p.symbol or p.token_address for p in open_positions)}"
            )
        logger.info("Sniper engine stopped")

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    async def poll_once(self) -> List[Position]:
        """
        Run one poll iteration and act on every new launch.

        A failed or timed-out poll is abandoned; the poller cursor does not
        move, so the next iteration covers the same blocks.

        Returns:
            Positions opened during this iteration
        """
        if not self._is_running:
            raise RuntimeError("SniperEngine.start() must be called before poll_once()")

        self._stats.polls += 1
        try:
            result: PollResult = await self._bounded(self._poller.poll())
        except (RpcError, asyncio.TimeoutError) as e:
            self._stats.poll_failures += 1
            logger.warning(f"Poll failed, retrying next iteration: {e!r}")
            return []

        self._record_poll(result)

        opened: List[Position] = []
        current_block = result.head_block if result.head_block is not None else 0
        for event in result.events:
            position = await self.process_event(event, current_block)
            if position is not None:
                opened.append(position)
        return opened

    async def process_event(self, event: LaunchEvent, current_block: int) -> Optional[Position]:
        """
        Take one launch event through freshness, gate and entry.

        Args:
            event: Decoded launch
            current_block: Chain head observed by the poll that found it

        Returns:
            The opened position, or None if the launch was skipped
        """
        if self._freshness is None:
            raise RuntimeError("SniperEngine.start() must be called before process_event()")

        label = event.symbol or event.token_address
        logger.info(
            f"Launch detected: {label} ({event.token_address}) by {event.creator} "
            f"at block {event.block_number} [{event.event_name or 'unknown'}]"
        )

        # Stale or pre-startup blocks are dropped without a timestamp lookup
        if not self._freshness.accept_block(event, current_block):
            self._stats.freshness_rejections += 1
            return None

        try:
            block_timestamp = await self._bounded(self._chain.get_block_timestamp(event.block_number))
        except (RpcError, asyncio.TimeoutError) as e:
            self._stats.errors += 1
            logger.warning(f"Skipping {label}: no timestamp for block {event.block_number}: {e!r}")
            return None

        if not self._freshness.accept(event, current_block, block_timestamp):
            self._stats.freshness_rejections += 1
            return None

        decision = await self._gate.evaluate(event)
        if not decision.passed:
            self._stats.gate_rejections += 1
            return None
        self._stats.gate_passes += 1

        position = await self._manager.open(event)
        if position is None:
            self._stats.positions_rejected += 1
            return None

        self._stats.positions_opened += 1
        return position

    def _record_poll(self, result: PollResult) -> None:
        self._stats.logs_fetched += result.logs_fetched
        self._stats.events_decoded += len(result.events)
        self._stats.decode_failures += result.decode_failures
        self._stats.duplicates_skipped += result.duplicates

    # -------------------------------------------------------------------------
    # Exits
    # -------------------------------------------------------------------------

    async def evaluate_positions(self) -> List["TickResult"]:
        """Run one ladder tick over every open position."""
        results = await self._ladder.evaluate_all()
        self._stats.exits += sum(1 for r in results if r.close_reason is not None)
        return results

    async def manual_exit(self, token_address: str) -> Optional[Position]:
        """Sell everything left of one position and close it (MANUAL)."""
        position = await self._ladder.manual_exit(token_address)
        if position is not None and position.close_reason == CloseReason.MANUAL:
            self._stats.exits += 1
        return position

    def summary(self) -> str:
        """One-line status for periodic logging."""
        ladder = self._manager.stats()
        counters = ", ".join(f"{k}={v}" for k, v in asdict(self._stats).items() if v)

        # Price move of each open position since its first tracked quote
        moves = []
        for position in self._manager.open_positions():
            change = self._ladder.oracle.change_percent(position.token_address)
            if change is not None:
                moves.append(f"{position.symbol or position.token_address} {change:+.1f}%")

        return (
            f"open={ladder.active_positions}/{self._manager.max_positions} "
            f"closed={ladder.closed_positions} realized={ladder.total_realized_pnl:+.6f} ETH"
            + (f" | {counters}" if counters else "")
            + (f" | moves: {', '.join(moves)}" if moves else "")
        )

    async def _bounded(self, call: Awaitable[T]) -> T:
        timeout = self.config.call_timeout_seconds
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=timeout)
