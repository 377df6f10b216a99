"""
Creator Coin Sniper - Main Entry Point

Watches the coin factory on Base for new launches, gates each launch on
its creator's credibility and manages accepted positions through a
laddered partial-exit strategy with stop-loss and time-limit exits.

Usage:
    creator-sniper                          # Default strategy, dry run
    creator-sniper --strategy aggressive    # Pick a preset
    creator-sniper --live                   # Real trades (needs PRIVATE_KEY)
    creator-sniper --list-strategies        # Show presets and exit
    creator-sniper -s degen --min-score 900 --trade-amount 0.002

Configuration:
    The bot reads configuration from:
    1. Environment variables (a .env file in the working directory is loaded)
    2. Command line arguments (override the environment)
    Unset strategy overrides fall back to the chosen preset.

Environment Variables:
    BASE_RPC_URL              Chain JSON-RPC endpoint (default: https://mainnet.base.org)
    FACTORY_ADDRESS           Coin factory contract
    PRIVATE_KEY               Trading wallet key, 0x-prefixed (live mode only)
    DRY_RUN                   "true" for simulated fills (default: true)
    DRY_RUN_MARKET_QUOTES     Price dry-run fills from live Zora quotes (default: true)
    STRATEGY_NAME             Preset from the registry (default: balanced)
    MIN_CREDIBILITY_SCORE     Override the preset's score threshold
    TRADE_AMOUNT_ETH          Override the preset's entry size
    MAX_POSITIONS             Override the preset's concurrent position cap
    STOP_LOSS_PERCENT         Override the preset's stop loss
    MAX_HOLD_MINUTES          Override the preset's hold limit
    POLL_INTERVAL_SECONDS     Launch poll interval (default: 10)
    EVAL_INTERVAL_SECONDS     Position evaluation interval (default: preset)
    MAX_BLOCK_RANGE           Max blocks per eth_getLogs call (default: 500)
    MAX_BLOCK_AGE             Freshness bound in blocks (default: 10)
    CALL_TIMEOUT_SECONDS      Timeout for each external call (default: 30)
    ETHOS_API_URL             Reputation score API
    ZORA_API_URL              Profile and trade API
    ZORA_API_KEY              Optional Zora API key
    LOG_LEVEL                 Logging level (DEBUG/INFO/WARNING/ERROR)

Live Mode Requirements:
    When DRY_RUN=false (or --live), the bot requires a 0x-prefixed
    PRIVATE_KEY and will fail fast without one.
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Generator, Mapping, Optional

from creator_sniper.core import BackgroundTaskConfig, BackgroundTasksManager, EngineConfig, SniperEngine
from creator_sniper.execution import LadderEngine, PositionManager, PriceOracle, create_gateway
from creator_sniper.gating import ETHOS_API_URL, ZORA_API_URL, CredibilityGate, EthosClient, ZoraProfileClient
from creator_sniper.ingestion import ChainRpcClient, LogPoller
from creator_sniper.strategies import (
    DEFAULT_STRATEGY_NAME,
    StrategyNotFoundError,
    StrategyValidationError,
    TradingStrategy,
    ensure_valid,
    get_strategy,
    list_strategies,
)

# Configure logging once for the whole process
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Default PID file location
DEFAULT_PID_FILE = "/tmp/creator-sniper.pid"

DEFAULT_RPC_URL = "https://mainnet.base.org"
DEFAULT_FACTORY_ADDRESS = "0x777777751622c0d3258f214F9DF38E35BF45baF3"

MAX_CREDIBILITY_SCORE = 3000


class SingletonBotError(Exception):
    """Raised when another bot instance is already running."""
    pass


class ConfigError(ValueError):
    """Raised for missing or invalid configuration."""
    pass


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Context manager that ensures only one bot instance runs at a time.

    Uses file locking (fcntl.LOCK_EX | fcntl.LOCK_NB) to prevent multiple instances.
    The lock is automatically released when the process exits.

    Args:
        pid_file: Path to the PID file (default: /tmp/creator-sniper.pid)

    Raises:
        SingletonBotError: If another instance is already running
    """
    pid_path = Path(pid_file)

    # Read existing PID before opening (which would truncate)
    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    # Open/create the PID file (use "a" to avoid truncating before we have the lock)
    fp = open(pid_path, "a+")

    try:
        # Try to acquire exclusive lock (non-blocking)
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        # Another instance has the lock
        fp.close()
        if existing_pid:
            raise SingletonBotError(
                f"Another bot instance is already running (PID: {existing_pid}). "
                f"Kill it with: kill {existing_pid}"
            )
        raise SingletonBotError(
            "Another bot instance is already running. "
            "Check for existing processes: ps aux | grep creator-sniper"
        )

    # We have the lock - now truncate and write our PID
    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        if fp.closed:
            return
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to release singleton lock {pid_file}: {e}")

    atexit.register(cleanup)

    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _optional(environ: Mapping[str, str], key: str, cast):
    raw = environ.get(key, "").strip()
    if not raw:
        return None
    try:
        return cast(raw)
    except (ValueError, InvalidOperation) as e:
        raise ConfigError(f"{key}={raw!r} is not a valid value") from e


@dataclass
class BotConfig:
    """Complete bot configuration."""

    # Chain
    rpc_url: str = DEFAULT_RPC_URL
    factory_address: str = DEFAULT_FACTORY_ADDRESS

    # Trading
    private_key: Optional[str] = None
    dry_run: bool = True
    dry_run_market_quotes: bool = True
    strategy_name: str = DEFAULT_STRATEGY_NAME

    # Strategy overrides (None = use the preset's value)
    min_credibility_score: Optional[int] = None
    trade_amount_eth: Optional[Decimal] = None
    max_positions: Optional[int] = None
    stop_loss_percent: Optional[Decimal] = None
    max_hold_minutes: Optional[int] = None

    # Loops
    poll_interval_seconds: float = 10.0
    eval_interval_seconds: Optional[float] = None  # None = strategy's monitoring interval

    # Ingestion
    max_block_range: int = 500
    max_block_age: int = 10
    call_timeout_seconds: float = 30.0

    # External services
    ethos_api_url: str = ETHOS_API_URL
    zora_api_url: str = ZORA_API_URL
    zora_api_key: Optional[str] = None

    log_level: str = "INFO"
    pid_file: str = DEFAULT_PID_FILE

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BotConfig":
        """
        Load configuration from environment variables.

        Raises:
            ConfigError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        def number(key: str, cast, default):
            value = _optional(env, key, cast)
            return default if value is None else value

        return cls(
            rpc_url=env.get("BASE_RPC_URL", DEFAULT_RPC_URL).strip(),
            factory_address=env.get("FACTORY_ADDRESS", DEFAULT_FACTORY_ADDRESS).strip(),
            private_key=env.get("PRIVATE_KEY") or None,
            dry_run=_env_bool(env.get("DRY_RUN", "true")),
            dry_run_market_quotes=_env_bool(env.get("DRY_RUN_MARKET_QUOTES", "true")),
            strategy_name=env.get("STRATEGY_NAME", DEFAULT_STRATEGY_NAME).strip() or DEFAULT_STRATEGY_NAME,
            min_credibility_score=_optional(env, "MIN_CREDIBILITY_SCORE", int),
            trade_amount_eth=_optional(env, "TRADE_AMOUNT_ETH", Decimal),
            max_positions=_optional(env, "MAX_POSITIONS", int),
            stop_loss_percent=_optional(env, "STOP_LOSS_PERCENT", Decimal),
            max_hold_minutes=_optional(env, "MAX_HOLD_MINUTES", int),
            poll_interval_seconds=number("POLL_INTERVAL_SECONDS", float, 10.0),
            eval_interval_seconds=_optional(env, "EVAL_INTERVAL_SECONDS", float),
            max_block_range=number("MAX_BLOCK_RANGE", int, 500),
            max_block_age=number("MAX_BLOCK_AGE", int, 10),
            call_timeout_seconds=number("CALL_TIMEOUT_SECONDS", float, 30.0),
            ethos_api_url=env.get("ETHOS_API_URL", ETHOS_API_URL).strip() or ETHOS_API_URL,
            zora_api_url=env.get("ZORA_API_URL", ZORA_API_URL).strip() or ZORA_API_URL,
            zora_api_key=env.get("ZORA_API_KEY") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """
        Check the configuration before anything is started.

        Raises:
            ConfigError: On the first invalid value
        """
        if not self.rpc_url:
            raise ConfigError("BASE_RPC_URL is required")
        if not self.factory_address.startswith("0x") or len(self.factory_address) != 42:
            raise ConfigError(f"FACTORY_ADDRESS {self.factory_address!r} is not an address")

        if not self.dry_run and not self.private_key:
            raise ConfigError("PRIVATE_KEY is required when DRY_RUN=false")
        if self.private_key and not self.private_key.startswith("0x"):
            raise ConfigError("PRIVATE_KEY must start with 0x")

        if self.trade_amount_eth is not None and self.trade_amount_eth <= 0:
            raise ConfigError(f"TRADE_AMOUNT_ETH must be positive, got {self.trade_amount_eth}")
        if self.stop_loss_percent is not None and not (0 < self.stop_loss_percent < 100):
            raise ConfigError(f"STOP_LOSS_PERCENT must be between 0 and 100, got {self.stop_loss_percent}")
        if self.min_credibility_score is not None and not (
            0 <= self.min_credibility_score <= MAX_CREDIBILITY_SCORE
        ):
            raise ConfigError(
                f"MIN_CREDIBILITY_SCORE must be between 0 and {MAX_CREDIBILITY_SCORE}, "
                f"got {self.min_credibility_score}"
            )
        if self.max_positions is not None and self.max_positions < 1:
            raise ConfigError(f"MAX_POSITIONS must be at least 1, got {self.max_positions}")
        if self.max_hold_minutes is not None and self.max_hold_minutes < 1:
            raise ConfigError(f"MAX_HOLD_MINUTES must be at least 1, got {self.max_hold_minutes}")

        if self.poll_interval_seconds <= 0:
            raise ConfigError("POLL_INTERVAL_SECONDS must be positive")
        if self.eval_interval_seconds is not None and self.eval_interval_seconds <= 0:
            raise ConfigError("EVAL_INTERVAL_SECONDS must be positive")
        if self.max_block_range < 1:
            raise ConfigError("MAX_BLOCK_RANGE must be at least 1")
        if self.max_block_age < 0:
            raise ConfigError("MAX_BLOCK_AGE cannot be negative")
        if self.call_timeout_seconds <= 0:
            raise ConfigError("CALL_TIMEOUT_SECONDS must be positive")

    def apply_args(self, args: argparse.Namespace) -> None:
        """Apply command line overrides (CLI wins over environment)."""
        if args.strategy:
            self.strategy_name = args.strategy
        if args.live:
            self.dry_run = False
        if args.dry_run:
            self.dry_run = True
        if args.min_score is not None:
            self.min_credibility_score = args.min_score
        if args.trade_amount is not None:
            self.trade_amount_eth = args.trade_amount
        if args.max_positions is not None:
            self.max_positions = args.max_positions
        if args.stop_loss is not None:
            self.stop_loss_percent = args.stop_loss
        if args.verbose:
            self.log_level = "DEBUG"

    def resolve_strategy(self) -> TradingStrategy:
        """
        The configured preset with overrides applied.

        Raises:
            StrategyNotFoundError: Unknown strategy name
            StrategyValidationError: Overrides produce an invalid strategy
        """
        preset = get_strategy(self.strategy_name)
        strategy = preset.with_overrides(
            min_credibility_score=self.min_credibility_score,
            trade_amount_eth=self.trade_amount_eth,
            max_positions=self.max_positions,
            stop_loss_percent=self.stop_loss_percent,
            max_hold_minutes=self.max_hold_minutes,
        )
        return ensure_valid(strategy)


class SniperBot:
    """
    Main sniper orchestrator.

    Manages the lifecycle of all components:
    - Chain RPC client and log poller
    - Credibility services and gate
    - Execution gateway, positions and ladder
    - Engine and background loops
    """

    def __init__(self, config: BotConfig, strategy: TradingStrategy):
        self.config = config
        self.strategy = strategy
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._started_at: Optional[datetime] = None

        # Components (initialized on start)
        self._rpc: Optional[ChainRpcClient] = None
        self._profiles: Optional[ZoraProfileClient] = None
        self._ethos: Optional[EthosClient] = None
        self._gateway = None
        self._engine: Optional[SniperEngine] = None
        self._background_tasks: Optional[BackgroundTasksManager] = None

    @property
    def engine(self) -> Optional[SniperEngine]:
        return self._engine

    async def start(self) -> None:
        """Start the bot and run until shutdown is requested."""
        logger.info("=" * 60)
        logger.info("CREATOR COIN SNIPER")
        logger.info("=" * 60)
        logger.info(f"Trading: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(f"Strategy: {self.strategy.name} - {self.strategy.summary()}")
        logger.info("=" * 60)

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        # Setup signal handlers FIRST to catch early signals
        self._setup_signal_handlers()

        try:
            await self._init_engine()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            await self._init_background_tasks()

            logger.info("=" * 60)
            logger.info("Bot started successfully")
            logger.info("Press Ctrl+C to stop")
            logger.info("=" * 60)

            await self._shutdown_event.wait()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        if self._background_tasks:
            try:
                await self._background_tasks.stop()
            except Exception as e:
                logger.warning(f"Error stopping background tasks: {e}")

        if self._engine:
            try:
                await self._engine.stop()
                logger.info(f"Final status: {self._engine.summary()}")
            except Exception as e:
                logger.warning(f"Error stopping engine: {e}")

        for name, client in (
            ("execution gateway", self._gateway),
            ("reputation client", self._ethos),
            ("profile client", self._profiles),
            ("RPC client", self._rpc),
        ):
            if client is None:
                continue
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")

        logger.info("Shutdown complete")

    async def request_shutdown(self, reason: str = "manual") -> None:
        """Request a graceful shutdown."""
        if not self._running:
            return
        logger.warning(f"Shutdown requested: {reason}")
        self._shutdown_event.set()

    async def _init_engine(self) -> None:
        """Build clients, execution stack and engine, then capture the startup block."""
        config = self.config
        strategy = self.strategy
        timeout = config.call_timeout_seconds

        self._rpc = ChainRpcClient(config.rpc_url, timeout=timeout)
        await self._rpc.__aenter__()

        self._profiles = ZoraProfileClient(config.zora_api_url, api_key=config.zora_api_key)
        self._ethos = EthosClient(config.ethos_api_url)
        gate = CredibilityGate(
            self._profiles,
            self._ethos,
            min_score=strategy.min_credibility_score,
            call_timeout=timeout,
        )

        self._gateway = create_gateway(config, slippage_percent=strategy.max_slippage_percent)
        manager = PositionManager(self._gateway, strategy, call_timeout=timeout)
        oracle = PriceOracle(
            self._gateway,
            cache_seconds=strategy.price_cache_seconds,
            simulated_fallback=config.dry_run,
            call_timeout=timeout,
        )
        ladder = LadderEngine(manager, self._gateway, oracle, strategy, call_timeout=timeout)

        poller = LogPoller(self._rpc, config.factory_address, max_block_range=config.max_block_range)

        self._engine = SniperEngine(
            config=EngineConfig(
                max_block_age=config.max_block_age,
                call_timeout_seconds=timeout,
                dry_run=config.dry_run,
            ),
            chain=self._rpc,
            poller=poller,
            gate=gate,
            manager=manager,
            ladder=ladder,
        )
        await self._engine.start()

    async def _init_background_tasks(self) -> None:
        eval_interval = self.config.eval_interval_seconds or self.strategy.monitoring_interval_seconds
        self._background_tasks = BackgroundTasksManager(
            engine=self._engine,
            config=BackgroundTaskConfig(
                poll_interval_seconds=self.config.poll_interval_seconds,
                eval_interval_seconds=eval_interval,
            ),
        )
        await self._background_tasks.start()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig.name}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            logger.debug("Signal handlers not supported on this platform")


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Creator Coin Sniper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "-s", "--strategy",
        type=str,
        help=f"Strategy preset to use (default: STRATEGY_NAME or {DEFAULT_STRATEGY_NAME})",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-d", "--dry-run",
        action="store_true",
        help="Simulate fills, never touch real funds",
    )
    mode.add_argument(
        "--live",
        action="store_true",
        help="Trade with real funds (requires PRIVATE_KEY)",
    )
    parser.add_argument(
        "-l", "--list-strategies",
        action="store_true",
        help="List available strategies and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging",
    )
    parser.add_argument("--min-score", type=int, help="Override minimum credibility score")
    parser.add_argument("--trade-amount", type=Decimal, help="Override ETH spent per entry")
    parser.add_argument("--max-positions", type=int, help="Override concurrent position cap")
    parser.add_argument("--stop-loss", type=Decimal, help="Override stop loss percent")
    return parser.parse_args(argv)


def format_strategies() -> str:
    """Human-readable list of registered strategies."""
    lines = ["Available strategies:", ""]
    for strategy in list_strategies():
        marker = " (default)" if strategy.name == DEFAULT_STRATEGY_NAME else ""
        lines.append(f"  {strategy.name}{marker}")
        lines.append(f"    {strategy.summary()}")
        for index, level in enumerate(strategy.ladder_levels):
            lines.append(
                f"    level {index}: +{level.trigger_percent}% -> sell {level.sell_fraction:.0%}"
                + (f" ({level.description})" if level.description else "")
            )
        lines.append("")
    return "\n".join(lines)


def build_config(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> BotConfig:
    """
    Environment, then CLI overrides, then validation.

    Raises:
        ConfigError: Invalid configuration
    """
    config = BotConfig.from_env(environ)
    config.apply_args(args)
    config.validate()
    return config


async def main_async(args: argparse.Namespace, config: Optional[BotConfig] = None) -> int:
    """Async main function."""
    try:
        config = config or build_config(args)
        strategy = config.resolve_strategy()
    except (ConfigError, StrategyNotFoundError, StrategyValidationError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    bot = SniperBot(config, strategy)

    try:
        await bot.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    # Load .env file
    load_env_file()

    # Parse arguments
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.list_strategies:
        print(format_strategies())
        return 0

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))

    # Ensure only one bot instance runs at a time
    try:
        with singleton_lock(config.pid_file):
            try:
                return asyncio.run(main_async(args, config))
            except KeyboardInterrupt:
                return 0
    except SingletonBotError as e:
        logger.error(str(e))
        print(f"\n{e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
