"""
Ingestion Layer - Chain log polling, decoding and freshness filtering.

This module provides:
    - ChainRpcClient: Async JSON-RPC client (block number, logs, timestamps)
    - RpcError / RateLimitError: RPC failures
    - RawLog: Normalized eth_getLogs entry
    - LaunchEvent: Decoded coin launch
    - EventDecoder: Strict decoder for the known factory event shapes
    - LogPoller: Chunked, deduplicating factory log poller
    - PollResult: Outcome of one poll iteration
    - FreshnessFilter: Startup/staleness gate for launch events

Data Flow:
    1. LogPoller pulls factory logs in chunks (max range per call)
    2. EventDecoder turns allow-listed logs into LaunchEvents
    3. Already delivered (tx_hash, log_index) pairs are skipped
    4. FreshnessFilter rejects anything at/before startup or too old
"""

from .client import ChainRpcClient, RateLimitError, RpcError
from .decoder import (
    COIN_CREATED,
    COIN_CREATED_V4,
    CREATOR_COIN_CREATED,
    KNOWN_SHAPES,
    EventDecoder,
    EventShape,
    topic_to_address,
)
from .freshness import FreshnessFilter, FreshnessState
from .models import LaunchEvent, RawLog, parse_quantity
from .poller import LogPoller, LogSource, PollResult

__all__ = [
    # RPC
    "ChainRpcClient",
    "RpcError",
    "RateLimitError",
    # Models
    "RawLog",
    "LaunchEvent",
    "parse_quantity",
    # Decoding
    "EventDecoder",
    "EventShape",
    "KNOWN_SHAPES",
    "COIN_CREATED",
    "COIN_CREATED_V4",
    "CREATOR_COIN_CREATED",
    "topic_to_address",
    # Polling
    "LogPoller",
    "LogSource",
    "PollResult",
    # Freshness
    "FreshnessFilter",
    "FreshnessState",
]
