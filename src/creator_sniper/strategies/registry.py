"""
Strategy registry for named strategy lookup.

Strategies are validated when they are registered, so an unusable ladder
is rejected at load time rather than on the first evaluation tick.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from .presets import BUILTIN_STRATEGIES
from .strategy import TradingStrategy, ensure_valid


class StrategyNotFoundError(Exception):
    """Raised when a requested strategy is not found in the registry."""

    pass


class DuplicateStrategyError(Exception):
    """Raised when attempting to register a strategy with a name that already exists."""

    pass


class StrategyRegistry:
    """
    Registry for strategy lookup and management.

    Names are case-insensitive.

    Usage:
        registry = StrategyRegistry()
        registry.register(my_strategy)

        strategy = registry.get("my-strategy")
        names = registry.list_all()
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._strategies: Dict[str, TradingStrategy] = {}

    def register(self, strategy: TradingStrategy) -> None:
        """
        Register a strategy.

        Raises:
            StrategyValidationError: If the strategy fails validation
            DuplicateStrategyError: If a strategy with this name already exists
        """
        ensure_valid(strategy)

        name = strategy.name.lower()
        if name in self._strategies:
            raise DuplicateStrategyError(
                f"Strategy '{name}' is already registered. "
                f"Use a different name or unregister first."
            )
        self._strategies[name] = strategy

    def get(self, name: str) -> TradingStrategy:
        """
        Get a strategy by name.

        Raises:
            StrategyNotFoundError: If no strategy with this name exists
        """
        strategy = self._strategies.get(name.lower())
        if strategy is None:
            available = ", ".join(self.list_all()) or "(none)"
            raise StrategyNotFoundError(
                f"Strategy '{name}' not found. Available: {available}"
            )
        return strategy

    def get_optional(self, name: str) -> Optional[TradingStrategy]:
        return self._strategies.get(name.lower())

    def unregister(self, name: str) -> bool:
        """
        Remove a strategy from the registry.

        Returns:
            True if removed, False if not found
        """
        return self._strategies.pop(name.lower(), None) is not None

    def list_all(self) -> List[str]:
        """Sorted list of strategy names."""
        return sorted(self._strategies.keys())

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._strategies


# Global default registry, preloaded with the built-in presets
_default_registry: Optional[StrategyRegistry] = None


def get_default_registry() -> StrategyRegistry:
    """Get the default global strategy registry."""
    global _default_registry
    if _default_registry is None:
        registry = StrategyRegistry()
        for strategy in BUILTIN_STRATEGIES:
            registry.register(strategy)
        _default_registry = registry
    return _default_registry


def get_strategy(name: str) -> TradingStrategy:
    """Get a strategy from the default registry."""
    return get_default_registry().get(name)


def list_strategies() -> List[TradingStrategy]:
    """All strategies in the default registry, sorted by name."""
    registry = get_default_registry()
    return [registry.get(name) for name in registry.list_all()]
