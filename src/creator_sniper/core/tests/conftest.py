"""
Test fixtures for core layer.

The engine runs against a fake chain, a scripted poller, a mocked gate
and the real dry-run execution stack. No network access.
"""

from decimal import Decimal
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from creator_sniper.core.engine import EngineConfig, SniperEngine
from creator_sniper.execution.gateway import DryRunGateway
from creator_sniper.execution.ladder import LadderEngine
from creator_sniper.execution.position_manager import PositionManager
from creator_sniper.execution.price_oracle import PriceOracle
from creator_sniper.gating.models import GateDecision, GateStage
from creator_sniper.ingestion.client import RpcError
from creator_sniper.ingestion.models import LaunchEvent
from creator_sniper.ingestion.poller import PollResult
from creator_sniper.strategies.strategy import Aggressiveness, LadderLevel, TradingStrategy

STARTUP_BLOCK = 1000
STARTUP_TIMESTAMP = 1_700_000_000


class FakeChain:
    """Chain head plus 2-second block timestamps relative to startup."""

    def __init__(self, head: int = STARTUP_BLOCK):
        self.head = head
        self.timestamps: Dict[int, int] = {}
        self.fail_timestamps = False
        self.timestamp_calls: List[int] = []

    async def get_block_number(self) -> int:
        return self.head

    async def get_block_timestamp(self, block_number: int) -> int:
        self.timestamp_calls.append(block_number)
        if self.fail_timestamps:
            raise RpcError("block not found")
        return self.timestamps.get(
            block_number,
            STARTUP_TIMESTAMP + (block_number - STARTUP_BLOCK) * 2,
        )


class ScriptedPoller:
    """Hands out queued launch batches, one per poll."""

    def __init__(self, chain: FakeChain):
        self._chain = chain
        self.batches: List[List[LaunchEvent]] = []
        self.started_from: Optional[int] = None
        self.error: Optional[Exception] = None

    def start_from(self, block_number: int) -> None:
        self.started_from = block_number

    async def poll(self) -> PollResult:
        if self.error is not None:
            raise self.error
        events = self.batches.pop(0) if self.batches else []
        return PollResult(events=events, head_block=self._chain.head, logs_fetched=len(events))


def make_event(block_number: int = 1001, log_index: int = 0, token: Optional[str] = None, symbol: str = "ALICE") -> LaunchEvent:
    token = token or "0x" + f"{block_number:036x}{log_index:04x}"
    return LaunchEvent(
        creator="0x1111111111111111111111111111111111111111",
        token_address=token,
        symbol=symbol,
        name=f"{symbol} coin",
        block_number=block_number,
        tx_hash="0x" + f"{block_number:064x}",
        log_index=log_index,
        event_name="CoinCreatedV4",
    )


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def poller(chain):
    return ScriptedPoller(chain)


@pytest.fixture
def gate():
    gate = AsyncMock()
    gate.evaluate = AsyncMock(
        return_value=GateDecision(passed=True, stage=GateStage.PASSED, reason="score 900 >= 750", score=900)
    )
    return gate


@pytest.fixture
def strategy():
    return TradingStrategy(
        name="test",
        description="Test strategy",
        aggressiveness=Aggressiveness.BALANCED,
        min_credibility_score=750,
        trade_amount_eth=Decimal("0.01"),
        max_positions=2,
        stop_loss_percent=Decimal("50"),
        max_hold_minutes=60,
        ladder_levels=(
            LadderLevel(Decimal("100"), Decimal("0.30"), "2x"),
            LadderLevel(Decimal("200"), Decimal("0.25"), "3x"),
        ),
    )


@pytest.fixture
def gateway():
    return DryRunGateway()


@pytest.fixture
def manager(gateway, strategy):
    return PositionManager(gateway, strategy)


@pytest.fixture
def ladder(manager, gateway, strategy):
    oracle = PriceOracle(gateway, cache_seconds=0)
    return LadderEngine(manager, gateway, oracle, strategy)


@pytest.fixture
def engine_config():
    return EngineConfig(max_block_age=10, call_timeout_seconds=1.0, dry_run=True)


@pytest.fixture
def engine(engine_config, chain, poller, gate, manager, ladder):
    return SniperEngine(
        config=engine_config,
        chain=chain,
        poller=poller,
        gate=gate,
        manager=manager,
        ladder=ladder,
        wall_clock=lambda: STARTUP_TIMESTAMP,
    )


@pytest.fixture
def startup():
    """Startup block and timestamp the engine fixture captures."""
    return STARTUP_BLOCK, STARTUP_TIMESTAMP
