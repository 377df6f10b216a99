"""
Test fixtures for gating layer.

IMPORTANT: All external API calls must be mocked.
Never hit real profile or reputation APIs in tests.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from creator_sniper.gating.models import CreatorProfile
from creator_sniper.ingestion.models import LaunchEvent

CREATOR = "0x1111111111111111111111111111111111111111"


@pytest.fixture
def launch_event():
    return LaunchEvent(
        creator=CREATOR,
        token_address="0xc0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0",
        symbol="ALICE",
        name="Alice Coin",
        block_number=1001,
        tx_hash="0xabc",
        log_index=0,
        event_name="CoinCreatedV4",
    )


@pytest.fixture
def creator_profile():
    return CreatorProfile(
        address=CREATOR,
        handle="alice",
        display_name="Alice",
        twitter_username="alice_x",
        creator_coin_address="0xc0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0",
    )


@pytest.fixture
def profile_source(creator_profile):
    source = AsyncMock()
    source.get_profile = AsyncMock(return_value=creator_profile)
    return source


@pytest.fixture
def score_source():
    source = AsyncMock()
    source.get_score_by_twitter = AsyncMock(return_value=900)
    return source


@pytest.fixture
def mock_http():
    """
    Build an httpx.AsyncClient served by a handler.

    Usage:
        client, requests = mock_http(lambda request: httpx.Response(200, json={...}))
    """

    def factory(handler):
        requests = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
        return client, requests

    return factory
