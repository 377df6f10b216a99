"""
JSON-RPC client for the chain node.

Provides async access to the handful of read calls the poller needs
(block number, logs, block timestamps) with rate limiting and retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from .models import RawLog, parse_quantity

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """Base exception for chain RPC errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(RpcError):
    """Rate limit exceeded."""
    pass


class ChainRpcClient:
    """
    Async JSON-RPC client for an EVM node.

    Features:
        - Rate limiting to avoid provider throttling
        - Automatic retries with exponential backoff (5xx, 429, connection errors)
        - Block timestamp cache (timestamps never change for a given block)

    Usage:
        async with ChainRpcClient("https://mainnet.base.org") as rpc:
            head = await rpc.get_block_number()
            logs = await rpc.get_logs(factory, head - 10, head)
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 10.0,  # requests per second
        timeout: float = 15.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        timestamp_cache_size: int = 1024,
    ):
        """
        Initialize the RPC client.

        Args:
            url: HTTP JSON-RPC endpoint
            session: Optional aiohttp session (created if not provided)
            rate_limit: Maximum requests per second
            timeout: Request timeout in seconds
            max_retries: Number of attempts for failed requests
            retry_delay: Base delay between retries (exponential backoff)
            timestamp_cache_size: Max number of cached block timestamps
        """
        self._url = url
        self._session = session
        self._owns_session = session is None
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._request_id = 0

        # Rate limiting
        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

        self._timestamp_cache: Dict[int, int] = {}
        self._timestamp_cache_size = timestamp_cache_size

    async def __aenter__(self) -> "ChainRpcClient":
        """Async context manager entry."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._rate_lock:
            now = time.time()

            self._request_times = [t for t in self._request_times if now - t < 1.0]

            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())

    async def call(self, method: str, params: List[Any]) -> Any:
        """
        Make a JSON-RPC call with rate limiting and retries.

        Args:
            method: RPC method name (e.g. "eth_getLogs")
            params: Positional params

        Returns:
            The ``result`` member of the response

        Raises:
            RpcError: On RPC or HTTP errors after retries are exhausted
            RateLimitError: When still rate limited after retries
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                await self._rate_limit_wait()

                async with self._session.post(self._url, json=payload) as response:
                    if response.status == 429:
                        raise RateLimitError("Rate limit exceeded", status_code=429)

                    # 4xx client errors (except 429) - don't retry
                    if 400 <= response.status < 500:
                        text = await response.text()
                        raise RpcError(
                            f"RPC HTTP error: {response.status} - {text}",
                            status_code=response.status,
                        )

                    if response.status >= 500:
                        text = await response.text()
                        raise RpcError(
                            f"RPC server error: {response.status} - {text}",
                            status_code=response.status,
                        )

                    body = await response.json(content_type=None)

                if not isinstance(body, dict):
                    raise RpcError(f"Malformed RPC response for {method}: {body!r}")

                if body.get("error"):
                    # JSON-RPC level errors (bad range, unknown block) are not retried
                    raise RpcError(f"RPC error for {method}: {body['error']}", status_code=400)

                return body.get("result")

            except RateLimitError:
                delay = self._retry_delay * (2 ** attempt) * 2
                logger.warning(f"RPC rate limited, waiting {delay}s before retry")
                await asyncio.sleep(delay)
                last_error = RateLimitError("Rate limit exceeded", status_code=429)

            except RpcError as e:
                if e.status_code is not None and e.status_code < 500:
                    raise
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(f"{method} failed ({e}), retrying in {delay}s")
                    await asyncio.sleep(delay)

            except asyncio.CancelledError:
                raise

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(f"{method} connection error ({e}), retrying in {delay}s")
                    await asyncio.sleep(delay)

        if isinstance(last_error, RpcError):
            raise last_error
        raise RpcError(f"{method} failed after {self._max_retries} attempts: {last_error}")

    async def get_block_number(self) -> int:
        """Latest block number."""
        result = await self.call("eth_blockNumber", [])
        return parse_quantity(result)

    async def get_logs(
        self,
        address: str,
        from_block: int,
        to_block: int,
        topics: Optional[List[Any]] = None,
    ) -> List[RawLog]:
        """
        Fetch logs for one address over an inclusive block range.

        Entries that cannot be normalized are dropped with a warning.
        """
        log_filter: Dict[str, Any] = {
            "address": address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        if topics:
            log_filter["topics"] = topics

        result = await self.call("eth_getLogs", [log_filter]) or []

        logs: List[RawLog] = []
        for entry in result:
            try:
                logs.append(RawLog.from_rpc(entry))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed log entry: {e}")
        return logs

    async def get_block_timestamp(self, block_number: int) -> int:
        """
        Unix timestamp of a block (cached).

        Raises:
            RpcError: If the block is unknown to the node
        """
        cached = self._timestamp_cache.get(block_number)
        if cached is not None:
            return cached

        block = await self.call("eth_getBlockByNumber", [hex(block_number), False])
        if not block or "timestamp" not in block:
            raise RpcError(f"Block {block_number} not found")

        timestamp = parse_quantity(block["timestamp"])

        if len(self._timestamp_cache) >= self._timestamp_cache_size:
            oldest = min(self._timestamp_cache)
            del self._timestamp_cache[oldest]
        self._timestamp_cache[block_number] = timestamp
        return timestamp
