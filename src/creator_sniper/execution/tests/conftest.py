"""
Test fixtures for execution layer.

Venue access goes through DryRunGateway, or through ZoraTradeGateway over
an httpx MockTransport and a mocked Web3. No network in tests.
"""

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from creator_sniper.execution.gateway import DryRunGateway
from creator_sniper.execution.ladder import LadderEngine
from creator_sniper.execution.position_manager import PositionManager
from creator_sniper.execution.price_oracle import PriceOracle
from creator_sniper.execution.zora_gateway import ZoraTradeGateway
from creator_sniper.ingestion.models import LaunchEvent
from creator_sniper.strategies.strategy import Aggressiveness, LadderLevel, TradingStrategy

TOKEN = "0xc0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0"
ENTRY_PRICE = Decimal("0.0001")  # 0.01 ETH buys exactly 100 tokens

PRIVATE_KEY = "0x" + "11" * 32
ROUTER = "0x6ff5693b99212da76ad316178a184ab56d299b43"
API_URL = "https://api.example.test"


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_event(token: str = TOKEN, symbol: str = "ALICE", block_number: int = 1001, log_index: int = 0) -> LaunchEvent:
    return LaunchEvent(
        creator="0x1111111111111111111111111111111111111111",
        token_address=token,
        symbol=symbol,
        name=f"{symbol} coin",
        block_number=block_number,
        tx_hash="0x" + f"{block_number:064x}",
        log_index=log_index,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def token():
    return TOKEN


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def launch_event():
    return make_event()


@pytest.fixture
def strategy():
    """0.01 ETH entries, ladder +100%/30% and +200%/25%, 50% stop, 60 min hold."""
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
        enable_moon_bag=True,
        moon_bag_percent=Decimal("5"),
    )


@pytest.fixture
def gateway(token):
    gateway = DryRunGateway()
    gateway.set_price(token, ENTRY_PRICE)
    return gateway


@pytest.fixture
def oracle(gateway, clock):
    return PriceOracle(gateway, cache_seconds=0, clock=clock)


@pytest.fixture
def manager(gateway, strategy, clock):
    return PositionManager(gateway, strategy, clock=clock)


@pytest.fixture
def ladder(manager, gateway, oracle, strategy, clock):
    return LadderEngine(manager, gateway, oracle, strategy, clock=clock)


@pytest.fixture
def price_at():
    """Set a token's price as a multiple of the entry price."""

    def setter(gateway, token, multiple):
        gateway.set_price(token, ENTRY_PRICE * Decimal(str(multiple)))

    return setter


# =============================================================================
# ZoraTradeGateway
# =============================================================================


@pytest.fixture
def quote_api():
    """Recorded quote requests plus a settable response."""
    state = SimpleNamespace(
        requests=[],
        status=200,
        body={
            "success": True,
            "call": {"target": ROUTER, "data": "0xdeadbeef", "value": "0"},
            "quote": {"amountOut": str(10**20)},
        },
    )

    def handler(request):
        state.requests.append(request)
        return httpx.Response(state.status, json=state.body)

    state.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return state


@pytest.fixture
def web3():
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.estimate_gas.return_value = 100_000
    w3.eth.gas_price = 10**9
    w3.eth.send_raw_transaction.return_value = b"\x12" * 32
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    w3.eth.contract.return_value.functions.allowance.return_value.call.return_value = 10**30
    return w3


@pytest.fixture
def zora(quote_api, web3):
    return ZoraTradeGateway(
        rpc_url="http://127.0.0.1:8545",
        private_key=PRIVATE_KEY,
        api_url=API_URL,
        api_key="secret",
        http_client=quote_api.client,
        web3=web3,
    )
