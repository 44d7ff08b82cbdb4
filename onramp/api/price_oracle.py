"""
SOL/fiat exchange rates from the CoinGecko simple price API.
"""

import asyncio
from typing import Dict

from loguru import logger

from onramp.api.api_client import ApiClient, ApiClientError
from onramp.config import COINGECKO_API_URL, HTTP_TIMEOUT
from onramp.exceptions import UpstreamUnavailable

SUPPORTED_CURRENCIES = ("usd", "inr")


class PriceOracle(ApiClient):
    """Fetches the current SOL price in each supported fiat currency."""

    def __init__(self, base_url: str = COINGECKO_API_URL, timeout: float = HTTP_TIMEOUT):
        super().__init__(base_url, timeout=timeout)

    async def get_sol_prices(self) -> Dict[str, float]:
        """
        Gets the current SOL price.

        Returns:
            Mapping of currency code to price of one SOL

        Raises:
            UpstreamUnavailable: If the price feed cannot be reached or
                returns an unusable payload
        """
        try:
            data = await self._request_async(
                "get",
                "/simple/price",
                params={"ids": "solana", "vs_currencies": ",".join(SUPPORTED_CURRENCIES)},
            )
        except (ApiClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error fetching SOL price: {str(e)}")
            raise UpstreamUnavailable("Unable to fetch current SOL price")

        try:
            prices = {currency: float(data["solana"][currency]) for currency in SUPPORTED_CURRENCIES}
        except (KeyError, TypeError, ValueError):
            logger.error(f"Unexpected price feed payload: {data}")
            raise UpstreamUnavailable("Unable to fetch current SOL price")

        if any(price <= 0 for price in prices.values()):
            raise UpstreamUnavailable("Price feed returned a non-positive SOL price")

        logger.debug(f"Current SOL price: {prices}")
        return prices

    async def get_sol_price(self, currency: str) -> float:
        """Price of one SOL in the given currency."""
        prices = await self.get_sol_prices()
        if currency not in prices:
            raise UpstreamUnavailable(f"No SOL price available for {currency}")
        return prices[currency]
