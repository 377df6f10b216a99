"""
Strategies Layer - Entry criteria, sizing and exit ladders.

This module provides:
    - TradingStrategy: Complete strategy configuration
    - LadderLevel: One (trigger %, sell fraction) rung of the exit ladder
    - validate_strategy / ensure_valid: Load-time configuration checks
    - fixed_notional: Reference sizing policy
    - StrategyRegistry: Named strategy lookup, preloaded with presets

Built-in presets:
    conservative, balanced (default), aggressive, degen, high-conviction

Design Principle:
    Strategies are PURE CONFIGURATION - no network access.
    The ladder engine interprets them; they never act on their own.
"""

from .presets import (
    AGGRESSIVE,
    BALANCED,
    BUILTIN_STRATEGIES,
    CONSERVATIVE,
    DEFAULT_STRATEGY_NAME,
    DEGEN,
    HIGH_CONVICTION,
    builtin_strategies,
)
from .registry import (
    DuplicateStrategyError,
    StrategyNotFoundError,
    StrategyRegistry,
    get_default_registry,
    get_strategy,
    list_strategies,
)
from .strategy import (
    Aggressiveness,
    LadderLevel,
    SizingPolicy,
    StrategyValidationError,
    TradingStrategy,
    ensure_valid,
    fixed_notional,
    validate_strategy,
)

__all__ = [
    # Strategy
    "TradingStrategy",
    "LadderLevel",
    "Aggressiveness",
    "StrategyValidationError",
    "validate_strategy",
    "ensure_valid",
    "SizingPolicy",
    "fixed_notional",
    # Presets
    "CONSERVATIVE",
    "BALANCED",
    "AGGRESSIVE",
    "DEGEN",
    "HIGH_CONVICTION",
    "BUILTIN_STRATEGIES",
    "DEFAULT_STRATEGY_NAME",
    "builtin_strategies",
    # Registry
    "StrategyRegistry",
    "StrategyNotFoundError",
    "DuplicateStrategyError",
    "get_default_registry",
    "get_strategy",
    "list_strategies",
]
