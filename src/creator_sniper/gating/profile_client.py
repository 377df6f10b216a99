"""
Zora profile client.

Resolves a creator wallet address to a public profile (handle, linked
social accounts, creator coin).
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from .http import JsonServiceClient
from .models import CreatorProfile, CredibilityServiceError, ProfilePayload

logger = logging.getLogger(__name__)

ZORA_API_URL = "https://api-sdk.zora.engineering"


class ZoraProfileClient(JsonServiceClient):
    """
    Client for the Zora SDK profile endpoint.

    Usage:
        async with ZoraProfileClient(api_key=key) as profiles:
            profile = await profiles.get_profile("0xabc...")
            if profile and profile.is_creator_coin:
                ...
    """

    def __init__(
        self,
        base_url: str = ZORA_API_URL,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["api-key"] = api_key
        super().__init__(
            base_url,
            client=client,
            headers=headers,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )

    async def get_profile(self, address: str) -> Optional[CreatorProfile]:
        """
        Look up the profile owning a wallet address.

        Returns:
            CreatorProfile, or None if the address has no profile

        Raises:
            CredibilityServiceError: If the service fails or returns garbage
        """
        data = await self._get_json("/profile", params={"identifier": address})
        if not data:
            return None

        raw_profile = data.get("profile") if isinstance(data, dict) else None
        if not raw_profile:
            logger.debug(f"No Zora profile for {address}")
            return None

        try:
            payload = ProfilePayload.model_validate(raw_profile)
        except ValidationError as e:
            raise CredibilityServiceError(f"Malformed profile for {address}: {e}") from e

        profile = CreatorProfile.from_payload(address, payload)
        logger.debug(
            f"Profile {profile.best_identifier} for {address}: "
            f"creator_coin={profile.creator_coin_address}"
        )
        return profile
