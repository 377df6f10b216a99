"""
Live execution gateway for Zora coins on Base.

Swaps are routed through the Zora trade API: the API returns a ready-made
call (target, calldata, value) for an exact-in swap, which is signed with
the configured key and submitted to the chain. A trade only counts as
successful once its receipt is mined with status 1.

Web3 is synchronous, so every chain call runs in the default executor to
keep the event loop free. ZoraQuoteClient is the keyless quoting half on
its own, which is what dry runs price against.
"""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from eth_account import Account
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from web3 import Web3

from .gateway import GatewayError, TradeResult

logger = logging.getLogger(__name__)

BASE_CHAIN_ID = 8453
WEI_PER_UNIT = Decimal(10) ** 18  # ETH and Zora coins both use 18 decimals
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ERC20_ABI = [
    {
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def erc20(token_address: str) -> Dict[str, str]:
    return {"type": "erc20", "address": Web3.to_checksum_address(token_address)}


def to_wei(amount: Decimal) -> int:
    return int(amount * WEI_PER_UNIT)


def from_wei(amount: int) -> Decimal:
    return Decimal(amount) / WEI_PER_UNIT


class SwapCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    target: str
    data: str
    value: str = "0"


class SwapQuote(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount_out: str = Field(alias="amountOut")


class QuoteResponse(BaseModel):
    """Response of the trade quote endpoint."""

    model_config = ConfigDict(extra="ignore")

    success: bool = True
    call: Optional[SwapCall] = None
    quote: SwapQuote


class ZoraQuoteClient:
    """
    Quote-only access to the Zora trade API.

    Needs no key: quotes are requested on behalf of ``sender``, which
    defaults to the zero address. Used directly for dry-run pricing and
    inside ZoraTradeGateway for live swaps.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        slippage_percent: Decimal = Decimal("5"),
        chain_id: int = BASE_CHAIN_ID,
        sender: str = ZERO_ADDRESS,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["api-key"] = api_key
        self._slippage = slippage_percent / Decimal("100")
        self._chain_id = chain_id
        self._sender = sender
        self._http = http_client
        self._owns_http = http_client is None

    @property
    def name(self) -> str:
        return "zora-quotes"

    async def close(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    async def quote_buy(self, token_address: str, eth_amount_in: Decimal) -> Decimal:
        """Tokens received for ``eth_amount_in`` ETH."""
        quote = await self.quote({"type": "eth"}, erc20(token_address), to_wei(eth_amount_in))
        return from_wei(int(quote.quote.amount_out))

    async def quote_sell(self, token_address: str, token_amount_in: Decimal) -> Decimal:
        """ETH received for ``token_amount_in`` tokens."""
        quote = await self.quote(erc20(token_address), {"type": "eth"}, to_wei(token_amount_in))
        return from_wei(int(quote.quote.amount_out))

    async def quote_price(self, token_address: str, reference_size: Decimal) -> Decimal:
        if reference_size <= 0:
            raise GatewayError(f"invalid reference size {reference_size}", token_address)
        return await self.quote_sell(token_address, reference_size) / reference_size

    async def quote(self, token_in: Dict[str, str], token_out: Dict[str, str], amount_in: int) -> QuoteResponse:
        """POST an exact-in quote. Raises GatewayError on transport, status or shape errors."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30.0)
            self._owns_http = True

        body: Dict[str, Any] = {
            "type": "exactIn",
            "tokenIn": token_in,
            "tokenOut": token_out,
            "amountIn": str(amount_in),
            "slippage": float(self._slippage),
            "sender": self._sender,
            "recipient": self._sender,
            "chainId": self._chain_id,
        }

        try:
            resp = await self._http.post(f"{self._api_url}/quote", json=body, headers=self._headers)
            resp.raise_for_status()
            quote = QuoteResponse.model_validate(resp.json())
        except httpx.HTTPError as e:
            raise GatewayError(f"quote request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise GatewayError(f"malformed quote response: {e}") from e

        if not quote.success:
            raise GatewayError("quote was not successful")
        return quote


class ZoraTradeGateway:
    """
    Zora trade API + on-chain submission.

    Usage:
        gateway = ZoraTradeGateway(rpc_url, private_key, api_url)
        result = await gateway.buy(token, Decimal("0.01"))
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        api_url: str,
        api_key: Optional[str] = None,
        slippage_percent: Decimal = Decimal("5"),
        chain_id: int = BASE_CHAIN_ID,
        receipt_timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
        web3: Optional[Web3] = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            rpc_url: Chain RPC used for submission and receipts
            private_key: Hex private key of the trading wallet
            api_url: Zora API base URL
            api_key: Optional Zora API key
            slippage_percent: Max slippage passed to the quote
            chain_id: Target chain (Base mainnet)
            receipt_timeout: Seconds to wait for a receipt
            http_client: Optional httpx client (created if not provided)
            web3: Optional Web3 instance (created if not provided)
        """
        self._account = Account.from_key(private_key)
        self._w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        self._quotes = ZoraQuoteClient(
            api_url,
            api_key=api_key,
            slippage_percent=slippage_percent,
            chain_id=chain_id,
            sender=self._account.address,
            http_client=http_client,
        )
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout

        # One transaction at a time from this wallet keeps nonces simple
        self._tx_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "zora"

    @property
    def address(self) -> str:
        return self._account.address

    async def close(self) -> None:
        await self._quotes.close()

    # -------------------------------------------------------------------------
    # Gateway interface
    # -------------------------------------------------------------------------

    async def buy(self, token_address: str, eth_amount_in: Decimal) -> TradeResult:
        try:
            quote = await self._quote({"type": "eth"}, erc20(token_address), to_wei(eth_amount_in))
            tx_ref = await self._submit_call(quote.call)
        except GatewayError as e:
            logger.error(f"BUY failed for {token_address} ({eth_amount_in} ETH): {e}")
            return TradeResult.failed(str(e))

        tokens_out = from_wei(int(quote.quote.amount_out))
        logger.info(f"BUY confirmed {token_address}: {eth_amount_in} ETH -> {tokens_out} tokens (tx {tx_ref})")
        return TradeResult.filled(tokens_out, tx_ref)

    async def sell(self, token_address: str, token_amount_in: Decimal) -> TradeResult:
        amount_wei = to_wei(token_amount_in)
        try:
            quote = await self._quote(erc20(token_address), {"type": "eth"}, amount_wei)
            await self._ensure_allowance(token_address, quote.call.target, amount_wei)
            tx_ref = await self._submit_call(quote.call)
        except GatewayError as e:
            logger.error(f"SELL failed for {token_address} ({token_amount_in} tokens): {e}")
            return TradeResult.failed(str(e))

        eth_out = from_wei(int(quote.quote.amount_out))
        logger.info(f"SELL confirmed {token_address}: {token_amount_in} tokens -> {eth_out} ETH (tx {tx_ref})")
        return TradeResult.filled(eth_out, tx_ref)

    async def quote_price(self, token_address: str, reference_size: Decimal) -> Decimal:
        return await self._quotes.quote_price(token_address, reference_size)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _quote(self, token_in: Dict[str, str], token_out: Dict[str, str], amount_in: int) -> QuoteResponse:
        quote = await self._quotes.quote(token_in, token_out, amount_in)
        if quote.call is None:
            raise GatewayError("quote returned no executable call")
        return quote

    async def _ensure_allowance(self, token_address: str, spender: str, amount: int) -> None:
        loop = asyncio.get_running_loop()
        token = self._w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        spender_cs = Web3.to_checksum_address(spender)

        try:
            allowance = await loop.run_in_executor(
                None, lambda: token.functions.allowance(self._account.address, spender_cs).call()
            )
        except Exception as e:
            raise GatewayError(f"allowance check failed: {e}", token_address) from e

        if allowance >= amount:
            return

        logger.info(f"Approving {spender_cs} to spend {token_address}")
        try:
            approve_tx = await loop.run_in_executor(
                None,
                lambda: token.functions.approve(spender_cs, amount).build_transaction(
                    {"from": self._account.address, "chainId": self._chain_id}
                ),
            )
        except Exception as e:
            raise GatewayError(f"approve build failed: {e}", token_address) from e
        await self._send(approve_tx)

    async def _submit_call(self, call: SwapCall) -> str:
        tx = {
            "from": self._account.address,
            "to": Web3.to_checksum_address(call.target),
            "data": call.data,
            "value": int(call.value),
            "chainId": self._chain_id,
        }
        return await self._send(tx)

    async def _send(self, tx: Dict[str, Any]) -> str:
        """Sign, submit and wait for a successful receipt. Returns the tx hash."""
        loop = asyncio.get_running_loop()
        w3 = self._w3

        async with self._tx_lock:
            try:
                tx = dict(tx)
                tx["nonce"] = await loop.run_in_executor(
                    None, lambda: w3.eth.get_transaction_count(self._account.address, "pending")
                )
                if "gas" not in tx:
                    estimate = await loop.run_in_executor(None, lambda: w3.eth.estimate_gas(tx))
                    tx["gas"] = int(estimate * 12 // 10)
                if "gasPrice" not in tx and "maxFeePerGas" not in tx:
                    tx["gasPrice"] = await loop.run_in_executor(None, lambda: w3.eth.gas_price)

                signed = self._account.sign_transaction(tx)
                tx_hash = await loop.run_in_executor(
                    None, lambda: w3.eth.send_raw_transaction(signed.raw_transaction)
                )
                receipt = await loop.run_in_executor(
                    None, lambda: w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
                )
            except Exception as e:
                raise GatewayError(f"transaction failed: {e}") from e

        tx_ref = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise GatewayError(f"transaction {tx_ref} reverted")
        return tx_ref
