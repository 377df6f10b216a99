"""
Gateway selection.

Exactly one adapter per venue; which one runs is decided by configuration.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from .gateway import DryRunGateway, ExecutionGateway

if TYPE_CHECKING:
    from creator_sniper.main import BotConfig

logger = logging.getLogger(__name__)


def create_gateway(config: "BotConfig", slippage_percent: Decimal = Decimal("5")) -> ExecutionGateway:
    """
    Build the execution gateway for a configuration.

    Dry-run configurations never sign or submit anything. Their fills are
    simulated, priced from keyless Zora API quotes so positions follow the
    real market, or fully offline when ``dry_run_market_quotes`` is off.
    Live configurations require a private key (enforced by
    ``BotConfig.validate``).
    """
    if config.dry_run:
        if not config.dry_run_market_quotes:
            logger.info("Execution gateway: dry-run (simulated fills and prices, offline)")
            return DryRunGateway()

        from .zora_gateway import ZoraQuoteClient

        logger.info(f"Execution gateway: dry-run (simulated fills, quotes from {config.zora_api_url})")
        market = ZoraQuoteClient(
            config.zora_api_url,
            api_key=config.zora_api_key,
            slippage_percent=slippage_percent,
        )
        return DryRunGateway(market=market)

    from .zora_gateway import ZoraTradeGateway

    logger.warning("Execution gateway: LIVE (real funds at risk)")
    return ZoraTradeGateway(
        rpc_url=config.rpc_url,
        private_key=config.private_key,
        api_url=config.zora_api_url,
        api_key=config.zora_api_key,
        slippage_percent=slippage_percent,
    )
