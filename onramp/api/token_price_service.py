"""
Token prices by symbol or mint: Birdeye first, a Jupiter quote as fallback.
"""

import asyncio
from typing import Any, Dict, Optional

from loguru import logger

from onramp.api.api_client import ApiClient, ApiClientError
from onramp.api.jupiter_client import JupiterClient
from onramp.config import (
    BIRDEYE_API_URL,
    HTTP_TIMEOUT,
    JUPITER_TOKEN_LIST_URL,
    USDC_MINT,
)
from onramp.exceptions import UpstreamUnavailable
from onramp.solana.models import CamelModel

USDC_DECIMALS = 6

# Mint addresses are 32-44 base58 characters; symbols are far shorter
ADDRESS_MIN_LENGTH = 31


class TokenPrice(CamelModel):
    success: bool
    price: Optional[float] = None
    source: Optional[str] = None
    error: Optional[str] = None


class BirdeyeClient(ApiClient):
    """Birdeye public API: spot price for a mint."""

    def __init__(self, base_url: str = BIRDEYE_API_URL, api_key: Optional[str] = None, timeout: float = HTTP_TIMEOUT):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-KEY"] = api_key
        super().__init__(base_url, timeout=timeout, headers=headers)

    async def get_price(self, token_address: str) -> float:
        """
        Raises:
            ApiClientError: If the request fails or the payload has no price
        """
        data = await self._request_async("get", "/defi/price", params={"address": token_address})
        value = (data.get("data") or {}).get("value") if isinstance(data, dict) else None
        if not value:
            raise ApiClientError("Invalid response format from Birdeye API")
        return float(value)


class TokenPriceService:
    """
    Looks up token prices.

    The Jupiter token list is loaded on first use and indexed by lowercase
    symbol and by mint address.
    """

    def __init__(
        self,
        birdeye: BirdeyeClient,
        jupiter: JupiterClient,
        token_list_url: str = JUPITER_TOKEN_LIST_URL,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.birdeye = birdeye
        self.jupiter = jupiter
        self.token_list = ApiClient(token_list_url, timeout=timeout)
        self._tokens: Dict[str, Dict[str, Any]] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()

    async def load_token_map(self):
        async with self._load_lock:
            if self._loaded:
                return
            try:
                tokens = await self.token_list._request_async("get", "")
            except (ApiClientError, asyncio.TimeoutError) as e:
                logger.error(f"Error loading Jupiter token list: {str(e)}")
                return

            for token in tokens or []:
                if token.get("symbol"):
                    self._tokens[token["symbol"].lower()] = token
                if token.get("address"):
                    self._tokens[token["address"]] = token
            self._loaded = True
            logger.info(f"Token map initialized with {len(self._tokens)} entries")

    async def get_token(self, identifier: str) -> Optional[Dict[str, Any]]:
        await self.load_token_map()
        return self._tokens.get(identifier) or self._tokens.get(identifier.lower())

    async def get_token_price(self, identifier: str) -> TokenPrice:
        """
        Price in USD of one whole token.

        Args:
            identifier: Token symbol (case-insensitive) or mint address

        Returns:
            A `TokenPrice`; `success` is False with an `error` when neither
            source could price the token
        """
        identifier = identifier.strip()

        if len(identifier) >= ADDRESS_MIN_LENGTH:
            logger.info(f"Directly querying Birdeye for address: {identifier}")
            result = await self._price_from_birdeye(identifier)
            if result.success:
                return result

            token = await self.get_token(identifier)
            if not token:
                return TokenPrice(
                    success=False,
                    error=f"Birdeye failed and token not found in Jupiter list for fallback: {identifier}",
                )
            logger.info(f"Birdeye API failed, falling back to Jupiter for {identifier}")
            return await self._price_from_jupiter(token)

        token = await self.get_token(identifier)
        if not token:
            return TokenPrice(success=False, error=f"Token symbol {identifier} not found in token list")

        result = await self._price_from_birdeye(token["address"])
        if result.success:
            return result

        logger.info(f"Birdeye API failed, falling back to Jupiter for {token.get('symbol')}")
        return await self._price_from_jupiter(token)

    async def _price_from_birdeye(self, token_address: str) -> TokenPrice:
        try:
            price = await self.birdeye.get_price(token_address)
        except (ApiClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Birdeye API error for {token_address}: {str(e)}")
            return TokenPrice(success=False, source="birdeye", error=str(e))
        return TokenPrice(success=True, price=price, source="birdeye")

    async def _price_from_jupiter(self, token: Dict[str, Any]) -> TokenPrice:
        """Quote one whole token against USDC."""
        decimals = int(token.get("decimals") or 0)
        try:
            quote = await self.jupiter.get_quote(
                output_mint=USDC_MINT,
                amount=10 ** decimals,
                input_mint=token["address"],
            )
        except UpstreamUnavailable as e:
            logger.warning(f"Jupiter price fallback error for {token.get('symbol')}: {e.message}")
            return TokenPrice(success=False, source="jupiter", error=e.message)

        price = int(quote["outAmount"]) / 10 ** USDC_DECIMALS
        return TokenPrice(success=True, price=price, source="jupiter")

    def close(self):
        self.birdeye.close()
        self.token_list.close()
