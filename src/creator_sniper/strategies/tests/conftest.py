"""
Test fixtures for strategies layer.
"""

from decimal import Decimal

import pytest

from creator_sniper.strategies.strategy import Aggressiveness, LadderLevel, TradingStrategy


@pytest.fixture
def ladder():
    """Two-level ladder: +100% sells 30%, +200% sells 25%."""
    return (
        LadderLevel(Decimal("100"), Decimal("0.30"), "2x"),
        LadderLevel(Decimal("200"), Decimal("0.25"), "3x"),
    )


@pytest.fixture
def strategy(ladder):
    """A small valid strategy."""
    return TradingStrategy(
        name="test",
        description="Test strategy",
        aggressiveness=Aggressiveness.BALANCED,
        min_credibility_score=750,
        trade_amount_eth=Decimal("0.01"),
        max_positions=2,
        stop_loss_percent=Decimal("50"),
        max_hold_minutes=60,
        ladder_levels=ladder,
    )
