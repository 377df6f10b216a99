"""
Trading strategy definition.

A strategy is pure configuration: entry criteria, sizing, risk limits and
the ladder of partial exits. Nothing here touches the network, which keeps
strategies trivial to test and to swap at runtime.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Tuple


class StrategyValidationError(ValueError):
    """Raised when a strategy configuration is unusable."""

    def __init__(self, name: str, problems: List[str]):
        self.name = name
        self.problems = list(problems)
        super().__init__(f"Invalid strategy '{name}': " + "; ".join(self.problems))


class Aggressiveness(str, Enum):
    """Coarse risk profile of a strategy (display only)."""

    CONSERVATIVE = "CONSERVATIVE"
    BALANCED = "BALANCED"
    AGGRESSIVE = "AGGRESSIVE"
    DEGEN = "DEGEN"


@dataclass(frozen=True)
class LadderLevel:
    """
    One rung of the exit ladder.

    Attributes:
        trigger_percent: Total return (percent of cost basis) that arms the level
        sell_fraction: Fraction of the *remaining* size sold when it fires (0, 1]
        description: Human-readable label
    """

    trigger_percent: Decimal
    sell_fraction: Decimal
    description: str = ""

    @classmethod
    def from_percents(cls, trigger_percent, sell_percent, description: str = "") -> "LadderLevel":
        """Build a level from a trigger and a sell share, both in percent."""
        return cls(
            trigger_percent=Decimal(str(trigger_percent)),
            sell_fraction=Decimal(str(sell_percent)) / Decimal("100"),
            description=description,
        )


@dataclass(frozen=True)
class TradingStrategy:
    """
    Complete strategy configuration.

    Percent fields are plain percents (50 means 50%). ETH amounts are
    Decimals.
    """

    name: str
    description: str
    aggressiveness: Aggressiveness

    # Entry criteria
    min_credibility_score: int
    trade_amount_eth: Decimal
    max_positions: int

    # Risk management
    stop_loss_percent: Decimal
    max_hold_minutes: int

    # Exits
    ladder_levels: Tuple[LadderLevel, ...] = field(default_factory=tuple)
    enable_moon_bag: bool = True
    moon_bag_percent: Decimal = Decimal("0")

    # Execution and monitoring
    max_slippage_percent: Decimal = Decimal("5")
    monitoring_interval_seconds: float = 30.0
    price_cache_seconds: float = 30.0

    def with_overrides(self, **changes) -> "TradingStrategy":
        """Copy of this strategy with some fields replaced (None values ignored)."""
        updates = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **updates) if updates else self

    def summary(self) -> str:
        """One-line description used by ``--list-strategies``."""
        moon_bag = f"{self.moon_bag_percent}%" if self.enable_moon_bag else "No"
        return (
            f"{self.description} | {self.aggressiveness.value} | "
            f"min score {self.min_credibility_score} | {self.trade_amount_eth} ETH x{self.max_positions} | "
            f"SL {self.stop_loss_percent}% | hold {self.max_hold_minutes}m | "
            f"{len(self.ladder_levels)} levels | moon bag {moon_bag}"
        )


def validate_strategy(strategy: TradingStrategy) -> List[str]:
    """
    Check a strategy for configuration problems.

    Returns:
        List of problems (empty when the strategy is usable)
    """
    problems: List[str] = []

    if not 0 <= strategy.min_credibility_score <= 3000:
        problems.append("min_credibility_score must be between 0 and 3000")

    if not Decimal("0") < strategy.trade_amount_eth <= Decimal("10"):
        problems.append("trade_amount_eth must be between 0 and 10 ETH")

    if strategy.max_positions < 1:
        problems.append("max_positions must be at least 1")

    if not Decimal("0") < strategy.stop_loss_percent < Decimal("100"):
        problems.append("stop_loss_percent must be between 0 and 100")

    if strategy.max_hold_minutes <= 0:
        problems.append("max_hold_minutes must be positive")

    if not strategy.ladder_levels:
        problems.append("strategy must have at least one ladder level")

    for index, level in enumerate(strategy.ladder_levels):
        if level.trigger_percent <= 0:
            problems.append(f"ladder level {index}: trigger_percent must be positive")
        if not Decimal("0") < level.sell_fraction <= Decimal("1"):
            problems.append(f"ladder level {index}: sell_fraction must be in (0, 1]")

    for index in range(1, len(strategy.ladder_levels)):
        previous = strategy.ladder_levels[index - 1].trigger_percent
        if strategy.ladder_levels[index].trigger_percent <= previous:
            problems.append("ladder levels must be in strictly ascending order of trigger_percent")
            break

    if not Decimal("0") <= strategy.moon_bag_percent < Decimal("100"):
        problems.append("moon_bag_percent must be between 0 and 100")

    if not Decimal("0") < strategy.max_slippage_percent <= Decimal("100"):
        problems.append("max_slippage_percent must be between 0 and 100")

    return problems


def ensure_valid(strategy: TradingStrategy) -> TradingStrategy:
    """
    Return the strategy unchanged, or raise if it has problems.

    Raises:
        StrategyValidationError: If ``validate_strategy`` reports anything
    """
    problems = validate_strategy(strategy)
    if problems:
        raise StrategyValidationError(strategy.name, problems)
    return strategy


# Sizing policy: strategy -> ETH to spend on one entry
SizingPolicy = Callable[[TradingStrategy], Decimal]


def fixed_notional(strategy: TradingStrategy) -> Decimal:
    """Spend the same configured ETH amount on every entry."""
    return strategy.trade_amount_eth
