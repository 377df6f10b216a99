"""
Freshness filter for launch events.

Only launches created strictly after engine startup, and still recent,
are acted on. Three independent checks are applied; block numbers and
timestamps can disagree slightly across data sources, so any single
failing check rejects the event.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import LaunchEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreshnessState:
    """Startup reference captured once when the engine starts."""

    startup_block: int
    startup_timestamp: int


class FreshnessFilter:
    """
    Rejects stale or pre-startup launch events.

    An event is rejected if any of:
        1. event.block_number <= startup_block
        2. current_block - event.block_number > max_block_age
        3. event_block_timestamp <= startup_timestamp

    The block checks come first and are available on their own
    (``accept_block``), so a stale event is dropped before its block
    timestamp is ever fetched.

    Usage:
        freshness = FreshnessFilter(startup_block=head, startup_timestamp=int(time.time()))
        if freshness.accept_block(event, current_block):
            if freshness.accept(event, current_block, block_timestamp):
                ...
    """

    def __init__(
        self,
        startup_block: int,
        startup_timestamp: int,
        max_block_age: int = 10,
    ) -> None:
        """
        Initialize the filter.

        Args:
            startup_block: Chain head when the engine started
            startup_timestamp: Unix time when the engine started
            max_block_age: Staleness bound in blocks
        """
        self._state = FreshnessState(startup_block=startup_block, startup_timestamp=startup_timestamp)
        self._max_block_age = max_block_age

    @property
    def state(self) -> FreshnessState:
        return self._state

    @property
    def max_block_age(self) -> int:
        return self._max_block_age

    def block_rejection_reason(self, event: LaunchEvent, current_block: int) -> Optional[str]:
        """The block-number checks alone; they need no extra chain call."""
        if event.block_number <= self._state.startup_block:
            return (
                f"block {event.block_number} at or before startup block "
                f"{self._state.startup_block}"
            )

        block_age = current_block - event.block_number
        if block_age > self._max_block_age:
            return f"{block_age} blocks old (max {self._max_block_age})"

        return None

    def rejection_reason(
        self,
        event: LaunchEvent,
        current_block: int,
        event_block_timestamp: int,
    ) -> Optional[str]:
        """
        Explain why an event is rejected.

        Returns:
            None if the event is fresh, otherwise a short reason
        """
        reason = self.block_rejection_reason(event, current_block)
        if reason is not None:
            return reason

        if event_block_timestamp <= self._state.startup_timestamp:
            return (
                f"block timestamp {event_block_timestamp} at or before startup "
                f"timestamp {self._state.startup_timestamp}"
            )

        return None

    def accept_block(self, event: LaunchEvent, current_block: int) -> bool:
        """Whether the event passes the block-number checks."""
        return self._log_rejection(event, self.block_rejection_reason(event, current_block))

    def accept(
        self,
        event: LaunchEvent,
        current_block: int,
        event_block_timestamp: int,
    ) -> bool:
        """Whether the event is fresh enough to act on."""
        return self._log_rejection(event, self.rejection_reason(event, current_block, event_block_timestamp))

    @staticmethod
    def _log_rejection(event: LaunchEvent, reason: Optional[str]) -> bool:
        if reason is not None:
            logger.debug(f"Filtered {event.symbol or event.token_address}: {reason}")
            return False
        return True
