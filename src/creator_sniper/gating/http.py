"""
Shared HTTP plumbing for the credibility services.

Both services are read-only JSON APIs that are assumed to be
intermittently unavailable, so transient failures are retried a few times
and anything else surfaces as CredibilityServiceError.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .models import CredibilityServiceError

logger = logging.getLogger(__name__)


class JsonServiceClient:
    """
    Minimal async JSON GET client with retries.

    Subclasses set their own base URL and headers. An ``httpx.AsyncClient``
    can be injected (tests pass one built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay

    async def __aenter__(self):
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """
        GET a JSON document.

        Returns:
            Decoded body, or None when the resource does not exist (404)

        Raises:
            CredibilityServiceError: On non-retryable errors or when retries are exhausted
        """
        client = self._ensure_client()
        url = f"{self._base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                resp = await client.get(url, params=params, headers=self._headers)

                if resp.status_code == 404:
                    return None

                if resp.status_code == 429 or resp.status_code >= 500:
                    raise CredibilityServiceError(
                        f"GET {path} returned {resp.status_code}",
                        status_code=resp.status_code,
                    )

                if resp.status_code >= 400:
                    # Client errors are not retried
                    raise CredibilityServiceError(
                        f"GET {path} returned {resp.status_code}: {resp.text[:200]}",
                        status_code=resp.status_code,
                    )

                try:
                    return resp.json()
                except ValueError as e:
                    raise CredibilityServiceError(f"GET {path} returned invalid JSON: {e}") from e

            except CredibilityServiceError as e:
                if e.status_code is None or (e.status_code < 500 and e.status_code != 429):
                    raise
                last_error = e

            except httpx.TransportError as e:
                last_error = e

            if attempt < self._max_retries - 1:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"GET {path} failed ({last_error}), retrying in {delay}s")
                await asyncio.sleep(delay)

        raise CredibilityServiceError(f"GET {path} failed after {self._max_retries} attempts: {last_error}")
