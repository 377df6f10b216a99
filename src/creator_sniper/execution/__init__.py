"""
Execution Layer - Positions, ladder exits and venue access.

This module provides:
    - Position: One laddered position (OPEN -> CLOSED)
    - PositionManager: Opens positions, owns the open set and history
    - LadderEngine: Per-tick ladder / stop-loss / time-limit / dust logic
    - PriceOracle: Cached gateway-backed quotes with simulated fallback
    - ExecutionGateway: Venue interface (buy, sell, quote_price)
    - DryRunGateway: Simulated fills, offline or priced by market quotes
    - ZoraTradeGateway: Live swaps via the Zora trade API
    - ZoraQuoteClient: Keyless Zora quotes for dry-run pricing
    - create_gateway: Picks the adapter from configuration

Error Policy:
    - Buy failure: no position is created
    - Sell failure: position left untouched, retried next tick
    - Price failure: that position's tick is skipped
"""

from .factory import create_gateway
from .gateway import (
    DryRunGateway,
    DryRunTrade,
    ExecutionGateway,
    GatewayError,
    MarketQuotes,
    TradeResult,
)
from .ladder import (
    DEFAULT_DUST_FRACTION,
    LadderEngine,
    LadderEngineStats,
    PendingSell,
    TickResult,
)
from .position import (
    CloseReason,
    ExitFill,
    LadderStats,
    Position,
    PositionClosedError,
    PositionStatus,
)
from .position_manager import MOON_BAG_THRESHOLD, PositionManager, RejectReason
from .price_oracle import (
    Confidence,
    PriceOracle,
    PriceQuote,
    PriceSource,
    PriceUnavailableError,
)

__all__ = [
    # Position
    "Position",
    "PositionStatus",
    "CloseReason",
    "ExitFill",
    "LadderStats",
    "PositionClosedError",
    # Manager
    "PositionManager",
    "RejectReason",
    "MOON_BAG_THRESHOLD",
    # Ladder
    "LadderEngine",
    "LadderEngineStats",
    "TickResult",
    "DEFAULT_DUST_FRACTION",
    "PendingSell",
    # Pricing
    "PriceOracle",
    "PriceQuote",
    "PriceSource",
    "Confidence",
    "PriceUnavailableError",
    # Gateways
    "ExecutionGateway",
    "TradeResult",
    "GatewayError",
    "DryRunGateway",
    "DryRunTrade",
    "MarketQuotes",
    "create_gateway",
]
