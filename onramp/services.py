"""
Service wiring: builds every collaborator from an explicit `Settings`.
"""

from dataclasses import dataclass

from loguru import logger
from solana.rpc.async_api import AsyncClient

from onramp.api.checkout_gateway import CheckoutGateway, StripeCheckoutGateway
from onramp.api.checkout_service import CheckoutSessionService
from onramp.api.jupiter_client import JupiterClient
from onramp.api.price_oracle import PriceOracle
from onramp.api.token_price_service import BirdeyeClient, TokenPriceService
from onramp.config import Settings
from onramp.solana.fee_oracle import PriorityFeeEstimator
from onramp.solana.lending import LendingDepositBuilder
from onramp.solana.rpc_client import SolanaRpcClient
from onramp.solana.tx_executor import SettlementExecutor
from onramp.solana.wallet_manager import load_funding_signer
from onramp.state.session_store import InMemorySessionStore, PaymentSessionStore


@dataclass
class Services:
    """Everything the HTTP handlers need, built once per application."""
    settings: Settings
    store: PaymentSessionStore
    gateway: CheckoutGateway
    checkout: CheckoutSessionService
    jupiter: JupiterClient
    executor: SettlementExecutor
    lending: LendingDepositBuilder
    token_prices: TokenPriceService

    async def close(self):
        await self.executor.close()
        self.jupiter.close()
        self.token_prices.close()


def build_services(settings: Settings) -> Services:
    """
    Build the production service graph.

    Args:
        settings: Runtime configuration

    Returns:
        The wired services

    Raises:
        ConfigurationError: If the funding secret is set but malformed
    """
    store = InMemorySessionStore()
    rpc_client = AsyncClient(settings.solana_rpc_url)
    signer = load_funding_signer(settings.funding_wallet_secret)

    jupiter = JupiterClient(settings.jupiter_api_url, timeout=settings.http_timeout)
    price_oracle = PriceOracle(settings.coingecko_api_url, timeout=settings.http_timeout)
    gateway = StripeCheckoutGateway(settings.stripe_secret_key, timeout=settings.http_timeout)
    fee_estimator = PriorityFeeEstimator(SolanaRpcClient(settings.solana_rpc_url, timeout=settings.http_timeout))

    executor = SettlementExecutor(
        client=rpc_client,
        signer=signer,
        fee_estimator=fee_estimator,
        jupiter=jupiter,
        store=store,
        confirmation_strategy=settings.confirmation_strategy,
    )

    token_prices = TokenPriceService(
        BirdeyeClient(settings.birdeye_api_url, api_key=settings.birdeye_api_key, timeout=settings.http_timeout),
        jupiter,
        token_list_url=settings.jupiter_token_list_url,
        timeout=settings.http_timeout,
    )

    logger.info(f"Services built for RPC {settings.solana_rpc_url}")

    return Services(
        settings=settings,
        store=store,
        gateway=gateway,
        checkout=CheckoutSessionService(settings, price_oracle, gateway, store),
        jupiter=jupiter,
        executor=executor,
        lending=LendingDepositBuilder(rpc_client, settings.solend_program_id),
        token_prices=token_prices,
    )
