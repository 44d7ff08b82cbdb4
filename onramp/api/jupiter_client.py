"""
Jupiter v6 aggregator client: swap quotes and swap transactions.
"""

import asyncio
from typing import Any, Dict, Optional

from loguru import logger

from onramp.api.api_client import ApiClient, ApiClientError
from onramp.config import (
    DEFAULT_OUTPUT_DECIMALS,
    DEFAULT_SLIPPAGE_BPS,
    HTTP_TIMEOUT,
    JUPITER_API_URL,
    SOL_MINT,
)
from onramp.exceptions import UpstreamUnavailable
from onramp.utils.retry_utils import RetryPolicy


def quote_output_decimals(quote: Dict[str, Any]) -> int:
    """Output token decimals from a quote, defaulting to 6."""
    decimals = quote.get("outputDecimals")
    if decimals is None:
        return DEFAULT_OUTPUT_DECIMALS
    return int(decimals)


def quote_output_amount(quote: Dict[str, Any]) -> float:
    """Quoted output in whole token units."""
    return int(quote["outAmount"]) / (10 ** quote_output_decimals(quote))


class JupiterClient(ApiClient):
    """Requests swap quotes and serialized swap transactions from Jupiter."""

    def __init__(
        self,
        base_url: str = JUPITER_API_URL,
        timeout: float = HTTP_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(base_url, timeout=timeout)
        self.retry_policy = retry_policy or RetryPolicy(timeout=timeout)

    async def get_quote(
        self,
        output_mint: str,
        amount: int,
        input_mint: str = SOL_MINT,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
    ) -> Dict[str, Any]:
        """
        Get a swap quote from Jupiter.

        Args:
            output_mint: Mint address of the token to receive
            amount: Input amount in the input token's smallest unit
            input_mint: Mint address of the token to spend (native SOL by default)
            slippage_bps: Slippage tolerance in basis points

        Returns:
            The raw Jupiter quote response

        Raises:
            UpstreamUnavailable: If no quote could be obtained after retries
        """
        logger.info(f"Requesting Jupiter quote: {amount} {input_mint} → {output_mint} (slippage: {slippage_bps}bps)")

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        try:
            quote = await self._request_with_retry_async("get", "/quote", policy=self.retry_policy, params=params)
        except (ApiClientError, asyncio.TimeoutError) as e:
            logger.error(f"Jupiter quote API error: {str(e)}")
            raise UpstreamUnavailable(
                "Jupiter API unavailable",
                details={"details": "Could not get a quote from Jupiter exchange after multiple attempts."}
            )

        if not isinstance(quote, dict) or "outAmount" not in quote:
            logger.error(f"Unexpected Jupiter quote response: {quote}")
            raise UpstreamUnavailable(
                "Jupiter API error",
                details={"details": (quote or {}).get("error") if isinstance(quote, dict) else str(quote)}
            )

        logger.info(
            f"Jupiter quote successful: {amount} {input_mint} → {quote['outAmount']} {output_mint} "
            f"(impact: {quote.get('priceImpactPct', 'n/a')}%)"
        )
        return quote

    async def get_swap_transaction(
        self,
        quote: Dict[str, Any],
        user_public_key: str,
        wrap_and_unwrap_sol: bool = True,
        compute_unit_price_micro_lamports: Optional[int] = None,
    ) -> str:
        """
        Get a serialized swap transaction built from a quote.

        Args:
            quote: Quote response from `get_quote`
            user_public_key: Account that executes and signs the swap
            wrap_and_unwrap_sol: Let Jupiter wrap/unwrap native SOL
            compute_unit_price_micro_lamports: Priority fee for the swap

        Returns:
            Base64-encoded versioned transaction

        Raises:
            UpstreamUnavailable: If no swap transaction could be obtained after retries
        """
        payload: Dict[str, Any] = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
        }
        if compute_unit_price_micro_lamports:
            payload["computeUnitPriceMicroLamports"] = compute_unit_price_micro_lamports

        try:
            response = await self._request_with_retry_async("post", "/swap", policy=self.retry_policy, json=payload)
        except (ApiClientError, asyncio.TimeoutError) as e:
            logger.error(f"Jupiter swap API error: {str(e)}")
            raise UpstreamUnavailable(
                "Jupiter API unavailable",
                details={"details": "Could not get a swap transaction from Jupiter exchange after multiple attempts."}
            )

        swap_transaction = response.get("swapTransaction") if isinstance(response, dict) else None
        if not swap_transaction:
            logger.error(f"Jupiter swap response missing transaction: {response}")
            raise UpstreamUnavailable("Jupiter API returned no swap transaction")

        return swap_transaction
