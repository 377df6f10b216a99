"""
BackgroundTasksManager - Manages async background tasks.

Handles the two periodic loops of the sniper:
- Launch polling (detection -> gate -> entry)
- Position evaluation (ladder, stop-loss, time limit)

The loops are independent tasks, so a slow RPC call in one never stalls
the other.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

if TYPE_CHECKING:
    from creator_sniper.core.engine import SniperEngine

logger = logging.getLogger(__name__)


@dataclass
class BackgroundTaskConfig:
    """Configuration for background tasks."""

    # Launch polling
    poll_interval_seconds: float = 10
    poll_enabled: bool = True

    # Position evaluation
    eval_interval_seconds: float = 30
    eval_enabled: bool = True

    # Status line
    status_interval_seconds: float = 300
    status_enabled: bool = True

    # Pause after an unexpected loop error
    error_backoff_seconds: float = 5


class BackgroundTasksManager:
    """
    Manages background async tasks for the sniper.

    Loops never die on an exception: errors are logged and the loop
    continues after a short pause. ``start`` and ``stop`` are idempotent.

    Usage:
        manager = BackgroundTasksManager(
            engine=sniper_engine,
            config=BackgroundTaskConfig(),
        )
        await manager.start()
        # ... bot runs ...
        await manager.stop()
    """

    def __init__(
        self,
        engine: "SniperEngine",
        config: Optional[BackgroundTaskConfig] = None,
    ) -> None:
        """
        Initialize the background tasks manager.

        Args:
            engine: SniperEngine driven by the loops
            config: Task configuration
        """
        self._engine = engine
        self._config = config or BackgroundTaskConfig()

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        """Whether the manager is running."""
        return self._running

    @property
    def task_names(self) -> List[str]:
        return [task.get_name() for task in self._tasks]

    async def start(self) -> None:
        """Start all background tasks."""
        if self._running:
            logger.warning("BackgroundTasksManager already running")
            return

        logger.info("Starting background tasks...")
        self._running = True
        self._stop_event.clear()

        if self._config.poll_enabled:
            self._spawn(
                "launch_poll",
                self._config.poll_interval_seconds,
                self._poll_iteration,
            )

        if self._config.eval_enabled:
            self._spawn(
                "position_eval",
                self._config.eval_interval_seconds,
                self._eval_iteration,
            )

        if self._config.status_enabled:
            self._spawn(
                "status",
                self._config.status_interval_seconds,
                self._status_iteration,
            )

        logger.info(f"Background tasks started: {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Stop all background tasks gracefully."""
        if not self._running:
            return

        logger.info("Stopping background tasks...")
        self._running = False
        self._stop_event.set()

        # Cancel all tasks
        for task in self._tasks:
            if not task.done():
                task.cancel()

        # Wait for cancellation
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        logger.info("Background tasks stopped")

    def _spawn(self, name: str, interval: float, iteration: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.create_task(self._periodic(name, interval, iteration), name=name)
        self._tasks.append(task)
        logger.info(f"Started {name} task (interval={interval}s)")

    async def _periodic(self, name: str, interval: float, iteration: Callable[[], Awaitable[None]]) -> None:
        """Run ``iteration`` every ``interval`` seconds until stopped."""
        while self._running:
            try:
                await iteration()

                # Wait for interval or stop
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=interval,
                    )
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {name}: {e!r}", exc_info=True)
                await asyncio.sleep(self._config.error_backoff_seconds)

    async def _poll_iteration(self) -> None:
        logger.debug("Polling for launches...")
        opened = await self._engine.poll_once()
        if opened:
            logger.info(f"Launch poll: opened {len(opened)} position(s)")

    async def _eval_iteration(self) -> None:
        logger.debug("Evaluating open positions...")
        results = await self._engine.evaluate_positions()

        closed = [r for r in results if r.close_reason is not None]
        partials = sum(len(r.levels_fired) for r in results)
        if closed or partials:
            logger.info(
                f"Position evaluation: {partials} ladder exit(s), {len(closed)} position(s) closed"
            )

    async def _status_iteration(self) -> None:
        logger.info(f"Status: {self._engine.summary()}")
