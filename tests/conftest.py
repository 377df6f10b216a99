"""
Shared fixtures for cross-layer tests.

Component fixtures live in src/creator_sniper/{layer}/tests/conftest.py.
Everything here wires the real layers together against an in-memory
chain and mocked HTTP services. No network access.
"""

from decimal import Decimal
from types import SimpleNamespace
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from eth_abi import encode as abi_encode

from creator_sniper.core.engine import EngineConfig, SniperEngine
from creator_sniper.execution.gateway import DryRunGateway
from creator_sniper.execution.ladder import LadderEngine
from creator_sniper.execution.position_manager import PositionManager
from creator_sniper.execution.price_oracle import PriceOracle
from creator_sniper.gating.ethos_client import EthosClient
from creator_sniper.gating.gate import CredibilityGate
from creator_sniper.gating.profile_client import ZoraProfileClient
from creator_sniper.ingestion.decoder import COIN_CREATED_V4, EventShape
from creator_sniper.ingestion.models import RawLog
from creator_sniper.ingestion.poller import LogPoller
from creator_sniper.strategies.strategy import Aggressiveness, LadderLevel, TradingStrategy

FACTORY = "0x777777751622c0d3258f214f9df38e35bf45baf3"
CURRENCY = "0x4200000000000000000000000000000000000006"
HOOKS = "0x5555555555555555555555555555555555555555"
PAYOUT = "0x2222222222222222222222222222222222222222"
REFERRER = "0x3333333333333333333333333333333333333333"

STARTUP_BLOCK = 5000
STARTUP_TIMESTAMP = 1_700_000_000

# Creators known to the mocked services
CREDIBLE = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
LOW_SCORE = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
NO_COIN = "0xcccccccccccccccccccccccccccccccccccccccc"
UNKNOWN = "0xdddddddddddddddddddddddddddddddddddddddd"


def _topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def coin_address(block_number: int, log_index: int) -> str:
    return "0x" + f"c01{block_number:033x}{log_index:04x}"


def build_launch_log(
    block_number: int,
    log_index: int = 0,
    creator: str = CREDIBLE,
    symbol: str = "ALICE",
    coin: Optional[str] = None,
    shape: EventShape = COIN_CREATED_V4,
    data: Optional[str] = None,
) -> RawLog:
    """ABI-encode a factory launch log the way the node returns it."""
    coin = coin or coin_address(block_number, log_index)
    if data is None:
        pool_key = (CURRENCY, coin, 30000, 200, HOOKS)
        values = [CURRENCY, f"ipfs://{symbol.lower()}", f"{symbol} Coin", symbol, coin, pool_key, b"\x01" * 32, "4"]
        data = "0x" + abi_encode(list(shape.data_types), values).hex()
    return RawLog(
        address=FACTORY,
        topics=(shape.selector, _topic(creator), _topic(PAYOUT), _topic(REFERRER)),
        data=data,
        block_number=block_number,
        tx_hash="0x" + f"{block_number:032x}{log_index:032x}",
        log_index=log_index,
    )


class InMemoryChain:
    """Head, factory logs and 2-second block times, served like a node."""

    def __init__(self, head: int = STARTUP_BLOCK):
        self.head = head
        self.logs: List[RawLog] = []
        self.get_logs_calls: List[tuple] = []

    def mine(self, *logs: RawLog, head: Optional[int] = None) -> None:
        self.logs.extend(logs)
        if head is not None:
            self.head = head

    async def get_block_number(self) -> int:
        return self.head

    async def get_logs(self, address: str, from_block: int, to_block: int) -> List[RawLog]:
        self.get_logs_calls.append((from_block, to_block))
        return [
            log for log in self.logs
            if log.address == address.lower() and from_block <= log.block_number <= to_block
        ]

    async def get_block_timestamp(self, block_number: int) -> int:
        return STARTUP_TIMESTAMP + (block_number - STARTUP_BLOCK) * 2


class CredibilityApi:
    """Zora profile and Ethos score endpoints behind one MockTransport."""

    def __init__(self):
        self.profiles: Dict[str, dict] = {
            CREDIBLE: _profile("alice", "alice_x", coin=True),
            LOW_SCORE: _profile("bob", "bob_x", coin=True),
            NO_COIN: _profile("carol", "carol_x", coin=False),
        }
        self.scores: Dict[str, int] = {"alice_x": 1400, "bob_x": 420, "carol_x": 1500}
        self.requests: List[httpx.Request] = []
        self.outage = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.outage:
            return httpx.Response(503)

        if request.url.path == "/profile":
            profile = self.profiles.get(request.url.params["identifier"].lower())
            if profile is None:
                return httpx.Response(404)
            return httpx.Response(200, json={"profile": profile})

        if request.url.path == "/api/v2/score/userkey":
            username = request.url.params["userkey"].rsplit(":", 1)[-1]
            if username not in self.scores:
                return httpx.Response(404)
            return httpx.Response(200, json={"score": self.scores[username], "level": "known"})

        return httpx.Response(404)

    def calls_to(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)


def _profile(handle: str, twitter: str, coin: bool) -> dict:
    profile = {
        "handle": handle,
        "displayName": handle.title(),
        "socialAccounts": {"twitter": {"username": twitter}},
    }
    if coin:
        profile["creatorCoin"] = {"address": "0x" + "ee" * 20}
    return profile


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def launch_log():
    """Factory for encoded factory launch logs."""
    return build_launch_log


@pytest.fixture
def pipeline_strategy():
    return TradingStrategy(
        name="pipeline",
        description="Two-level ladder with a moon bag",
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


@pytest_asyncio.fixture
async def pipeline(pipeline_strategy):
    """
    The full dry-run pipeline.

    Real poller, decoder, freshness filter, credibility gate, position
    manager, oracle and ladder; only the chain and the HTTP services are
    faked.
    """
    chain = InMemoryChain()
    api = CredibilityApi()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(api.handler))

    profiles = ZoraProfileClient(base_url="https://zora.test", client=http_client, max_retries=1, retry_delay=0)
    ethos = EthosClient(base_url="https://ethos.test", client=http_client, max_retries=1, retry_delay=0)
    gate = CredibilityGate(profiles, ethos, min_score=pipeline_strategy.min_credibility_score, call_timeout=1.0)

    gateway = DryRunGateway()
    manager = PositionManager(gateway, pipeline_strategy, call_timeout=1.0)
    oracle = PriceOracle(gateway, cache_seconds=0, simulated_fallback=True)
    ladder = LadderEngine(manager, gateway, oracle, pipeline_strategy, call_timeout=1.0)
    poller = LogPoller(chain, FACTORY, max_block_range=50, overlap_blocks=2)

    engine = SniperEngine(
        config=EngineConfig(max_block_age=10, call_timeout_seconds=1.0, dry_run=True),
        chain=chain,
        poller=poller,
        gate=gate,
        manager=manager,
        ladder=ladder,
        wall_clock=lambda: STARTUP_TIMESTAMP,
    )
    await engine.start()

    yield SimpleNamespace(
        engine=engine,
        chain=chain,
        api=api,
        gateway=gateway,
        manager=manager,
        ladder=ladder,
        poller=poller,
    )

    await engine.stop()
    await http_client.aclose()
