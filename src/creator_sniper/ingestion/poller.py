"""
Chain log poller for the coin factory.

Periodically fetches raw logs for the factory address, decodes launch
events and guarantees each (tx_hash, log_index) is delivered at most once
per run, even when polling windows overlap.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from .decoder import EventDecoder
from .models import LaunchEvent, RawLog

logger = logging.getLogger(__name__)


class LogSource(Protocol):
    """Anything that can serve block numbers and address-filtered logs."""

    async def get_block_number(self) -> int: ...

    async def get_logs(self, address: str, from_block: int, to_block: int) -> List[RawLog]: ...


@dataclass
class PollResult:
    """Outcome of a single poll iteration."""

    events: List[LaunchEvent] = field(default_factory=list)
    head_block: Optional[int] = None
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    logs_fetched: int = 0
    candidates: int = 0
    decode_failures: int = 0
    duplicates: int = 0


class LogPoller:
    """
    Polls factory logs over bounded block ranges.

    Ranges are split into chunks of at most ``max_block_range`` blocks per
    ``eth_getLogs`` call. Each poll re-scans ``overlap_blocks`` blocks
    behind the cursor to pick up logs a lagging node served late; the
    seen-set makes that re-scan idempotent.

    Usage:
        poller = LogPoller(rpc, factory_address)
        poller.start_from(startup_block)

        result = await poller.poll()
        for event in result.events:  # ascending (block_number, log_index)
            ...
    """

    def __init__(
        self,
        source: LogSource,
        factory_address: str,
        decoder: Optional[EventDecoder] = None,
        max_block_range: int = 500,
        overlap_blocks: int = 2,
    ) -> None:
        """
        Initialize the poller.

        Args:
            source: Log source (normally ChainRpcClient)
            factory_address: Factory contract whose logs are fetched
            decoder: Event decoder (defaults to the known factory shapes)
            max_block_range: Provider limit on blocks per getLogs call
            overlap_blocks: Blocks behind the cursor to re-scan each poll
        """
        if max_block_range < 1:
            raise ValueError("max_block_range must be at least 1")

        self._source = source
        self._factory_address = factory_address.lower()
        self._decoder = decoder or EventDecoder(factory_address=self._factory_address)
        self._max_block_range = max_block_range
        self._overlap_blocks = max(0, overlap_blocks)

        self._last_processed_block: Optional[int] = None
        self._floor_block: Optional[int] = None

        # (tx_hash, log_index) -> block_number for everything delivered this run
        self._seen: Dict[Tuple[str, int], int] = {}

    @property
    def last_processed_block(self) -> Optional[int]:
        """Highest block fully scanned so far."""
        return self._last_processed_block

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def start_from(self, block_number: int) -> None:
        """
        Set the cursor so the next poll starts after ``block_number``.

        Overlap re-scans never reach at or below this block.
        """
        self._last_processed_block = block_number
        self._floor_block = block_number

    async def pull(self, from_block: int, to_block: int) -> List[RawLog]:
        """
        Fetch raw factory logs for an inclusive block range.

        The range is chunked to respect the provider's max range.

        Args:
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Raw logs in the order the source returned them, chunk by chunk
        """
        logs: List[RawLog] = []
        if to_block < from_block:
            return logs

        start = from_block
        while start <= to_block:
            end = min(start + self._max_block_range - 1, to_block)
            chunk = await self._source.get_logs(self._factory_address, start, end)
            logger.debug(f"Fetched {len(chunk)} logs from blocks {start}-{end}")
            logs.extend(chunk)
            start = end + 1

        return logs

    def decode_batch(self, logs: List[RawLog], result: Optional[PollResult] = None) -> List[LaunchEvent]:
        """
        Decode and deduplicate a batch of raw logs.

        Logs with a non allow-listed selector are ignored, logs that fail
        to decode are dropped individually, and logs already delivered in
        this run are skipped.

        Returns:
            New launch events sorted by (block_number, log_index)
        """
        result = result or PollResult()
        events: List[LaunchEvent] = []
        batch_keys = set()

        for raw_log in logs:
            if not self._decoder.is_candidate(raw_log):
                continue
            result.candidates += 1

            key = raw_log.key
            if key in self._seen or key in batch_keys:
                result.duplicates += 1
                continue

            event = self._decoder.decode(raw_log)
            if event is None:
                result.decode_failures += 1
                logger.debug(f"Dropped undecodable factory log {key} at block {raw_log.block_number}")
                continue

            batch_keys.add(key)
            events.append(event)

        events.sort(key=lambda e: e.sort_key)
        for event in events:
            self._seen[event.key] = event.block_number

        return events

    async def poll(self) -> PollResult:
        """
        Run one poll iteration from the cursor up to the chain head.

        The cursor only advances after every chunk was fetched, so a failed
        iteration is simply retried in full on the next call.

        Raises:
            RuntimeError: If the poller was not started
            RpcError: Propagated from the log source
        """
        if self._last_processed_block is None:
            raise RuntimeError("LogPoller.start_from() must be called before poll()")

        result = PollResult()
        head = await self._source.get_block_number()
        result.head_block = head

        if head <= self._last_processed_block:
            return result

        from_block = self._last_processed_block + 1 - self._overlap_blocks
        if self._floor_block is not None:
            from_block = max(from_block, self._floor_block + 1)

        result.from_block = from_block
        result.to_block = head

        logs = await self.pull(from_block, head)
        result.logs_fetched = len(logs)
        result.events = self.decode_batch(logs, result)

        self._last_processed_block = head
        self._prune_seen()

        if result.events:
            logger.info(
                f"Found {len(result.events)} new launch event(s) in blocks {from_block}-{head}"
            )
        return result

    def _prune_seen(self) -> None:
        """Forget keys that can no longer be re-scanned."""
        if self._last_processed_block is None:
            return
        horizon = self._last_processed_block - self._overlap_blocks - self._max_block_range
        stale = [key for key, block in self._seen.items() if block < horizon]
        for key in stale:
            del self._seen[key]
