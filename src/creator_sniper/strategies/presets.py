"""
Built-in strategy presets.

Ladders are expressed as (trigger %, sell % of remaining) pairs. Every
preset leaves a tail unsold after its last level; with the moon bag
enabled that tail rides until stop-loss, time limit or manual close.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, Sequence, Tuple

from .strategy import Aggressiveness, LadderLevel, TradingStrategy


def _ladder(*levels: Tuple[int, int, str]) -> Tuple[LadderLevel, ...]:
    return tuple(LadderLevel.from_percents(trigger, sell, label) for trigger, sell, label in levels)


CONSERVATIVE = TradingStrategy(
    name="conservative",
    description="Capital preservation with steady profit taking",
    aggressiveness=Aggressiveness.CONSERVATIVE,
    min_credibility_score=1226,
    trade_amount_eth=Decimal("0.005"),
    max_positions=3,
    stop_loss_percent=Decimal("30"),
    max_hold_minutes=720,
    ladder_levels=_ladder(
        (50, 40, "1.5x - early profit taking"),
        (100, 30, "2x - secure gains"),
        (150, 20, "2.5x - more profits"),
        (250, 15, "3.5x - conservative exit"),
        (400, 10, "5x - final exit"),
    ),
    enable_moon_bag=False,
    moon_bag_percent=Decimal("0"),
    max_slippage_percent=Decimal("3"),
    monitoring_interval_seconds=20.0,
    price_cache_seconds=20.0,
)

BALANCED = TradingStrategy(
    name="balanced",
    description="Balanced risk/reward with moderate moon bag",
    aggressiveness=Aggressiveness.BALANCED,
    min_credibility_score=1226,
    trade_amount_eth=Decimal("0.01"),
    max_positions=5,
    stop_loss_percent=Decimal("50"),
    max_hold_minutes=1440,
    ladder_levels=_ladder(
        (100, 25, "2x - secure 25%"),
        (200, 20, "3x - take more profits"),
        (400, 15, "5x - steady exit"),
        (900, 12, "10x - big gains exit"),
        (1900, 8, "20x - moon territory"),
        (4900, 5, "50x - keep moon bag"),
    ),
    enable_moon_bag=True,
    moon_bag_percent=Decimal("5"),
    max_slippage_percent=Decimal("5"),
    monitoring_interval_seconds=30.0,
    price_cache_seconds=30.0,
)

AGGRESSIVE = TradingStrategy(
    name="aggressive",
    description="Higher risk tolerance with significant moon bag",
    aggressiveness=Aggressiveness.AGGRESSIVE,
    min_credibility_score=1226,
    trade_amount_eth=Decimal("0.02"),
    max_positions=8,
    stop_loss_percent=Decimal("60"),
    max_hold_minutes=2880,
    ladder_levels=_ladder(
        (100, 20, "2x - light profit taking"),
        (300, 15, "4x - some profits"),
        (900, 12, "10x - let it run"),
        (1900, 8, "20x - small exit"),
        (4900, 5, "50x - tiny exit"),
        (9900, 3, "100x - keep riding"),
    ),
    enable_moon_bag=True,
    moon_bag_percent=Decimal("15"),
    max_slippage_percent=Decimal("8"),
    monitoring_interval_seconds=15.0,
    price_cache_seconds=15.0,
)

DEGEN = TradingStrategy(
    name="degen",
    description="Maximum moon bag strategy for 10000%+ potential",
    aggressiveness=Aggressiveness.DEGEN,
    min_credibility_score=1600,
    trade_amount_eth=Decimal("0.015"),
    max_positions=1,
    stop_loss_percent=Decimal("70"),
    max_hold_minutes=15,
    ladder_levels=_ladder(
        (50, 30, "1.5x - light profit taking"),
        (100, 25, "2x - light profit taking"),
        (200, 20, "3x - secure investment"),
        (900, 10, "10x - minimal profit taking"),
        (1900, 5, "20x - keep riding"),
        (4900, 3, "50x - still holding"),
        (9900, 2, "100x - diamond hands"),
        (24900, 5, "250x - true degen"),
    ),
    enable_moon_bag=True,
    moon_bag_percent=Decimal("5"),
    max_slippage_percent=Decimal("50"),
    monitoring_interval_seconds=10.0,
    price_cache_seconds=10.0,
)

HIGH_CONVICTION = TradingStrategy(
    name="high-conviction",
    description="Selective high-credibility creators with large positions",
    aggressiveness=Aggressiveness.AGGRESSIVE,
    min_credibility_score=1500,
    trade_amount_eth=Decimal("0.1"),
    max_positions=3,
    stop_loss_percent=Decimal("40"),
    max_hold_minutes=4320,
    ladder_levels=_ladder(
        (150, 20, "2.5x - minimal early exit"),
        (400, 15, "5x - some profits"),
        (900, 10, "10x - let conviction run"),
        (1900, 8, "20x - still believing"),
        (4900, 5, "50x - high conviction pays"),
        (9900, 3, "100x - moon mission"),
    ),
    enable_moon_bag=True,
    moon_bag_percent=Decimal("20"),
    max_slippage_percent=Decimal("6"),
    monitoring_interval_seconds=25.0,
    price_cache_seconds=25.0,
)

DEFAULT_STRATEGY_NAME = "balanced"

BUILTIN_STRATEGIES: Sequence[TradingStrategy] = (
    CONSERVATIVE,
    BALANCED,
    AGGRESSIVE,
    DEGEN,
    HIGH_CONVICTION,
)


def builtin_strategies() -> Dict[str, TradingStrategy]:
    """Presets keyed by name."""
    return {strategy.name: strategy for strategy in BUILTIN_STRATEGIES}
