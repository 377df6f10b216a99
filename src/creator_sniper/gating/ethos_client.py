"""
Ethos reputation client.

Scores are looked up by X (Twitter) username through the userkey
endpoint.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from .http import JsonServiceClient
from .models import CredibilityServiceError, ScorePayload

logger = logging.getLogger(__name__)

ETHOS_API_URL = "https://api.ethos.network"
ETHOS_CLIENT_NAME = "creator-sniper"


def twitter_userkey(username: str) -> str:
    """Ethos userkey for an X account: ``service:x.com:username:<name>``."""
    return f"service:x.com:username:{username.lstrip('@').strip()}"


class EthosClient(JsonServiceClient):
    """
    Client for the Ethos score API.

    Usage:
        async with EthosClient() as ethos:
            score = await ethos.get_score_by_twitter("alice")
    """

    def __init__(
        self,
        base_url: str = ETHOS_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(
            base_url,
            client=client,
            headers={"Accept": "application/json", "X-Ethos-Client": ETHOS_CLIENT_NAME},
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )

    async def get_score_by_twitter(self, username: str) -> Optional[int]:
        """
        Reputation score for an X username.

        Returns:
            Score, or None when the account is unknown to Ethos

        Raises:
            CredibilityServiceError: If the service fails or returns garbage
        """
        if not username or not username.lstrip("@").strip():
            return None

        data = await self._get_json(
            "/api/v2/score/userkey",
            params={"userkey": twitter_userkey(username)},
        )
        if data is None:
            logger.debug(f"No Ethos score for @{username.lstrip('@')}")
            return None

        try:
            payload = ScorePayload.model_validate(data)
        except ValidationError as e:
            raise CredibilityServiceError(f"Malformed score for @{username}: {e}") from e

        return payload.score
