"""
Configuration for the onramp backend.

Values are read from the environment (a local .env file is loaded first).
Module-level constants hold the defaults; `Settings.from_env()` builds the
explicit configuration object that is handed to the services.
"""

import os
from enum import Enum
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from .env file
load_dotenv()

# Network configuration
SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"
JUPITER_API_URL = "https://quote-api.jup.ag/v6"
JUPITER_TOKEN_LIST_URL = "https://token.jup.ag/all"
COINGECKO_API_URL = "https://api.coingecko.com/api/v3"
BIRDEYE_API_URL = "https://public-api.birdeye.so"
EXPLORER_TX_URL = "https://solscan.io/tx"
JUPITER_SWAP_URL = "https://jup.ag/swap"

# Well-known mints and programs
SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOLEND_PROGRAM_ID = "So1endDq2YkqhipRh3WViPa8hdiSpxWy6z3Z6tMCpAo"

# Pricing defaults (minor units: cents / paisa)
PRICE_USD = 100
PRICE_INR = 100
DEFAULT_CURRENCY = "usd"
REGIONAL_CURRENCY = "inr"
REGIONAL_COUNTRY_CODE = "IN"

# Settlement constants
DEFAULT_SOL_AMOUNT = 0.1
LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9
DEFAULT_OUTPUT_DECIMALS = 6
DEFAULT_SLIPPAGE_BPS = 50
MAX_TRANSFER_RETRIES = 3

# Priority fee bounds (micro-lamports per compute unit)
PRIORITY_FEE_MIN = 100_000
PRIORITY_FEE_MAX = 1_000_000
PRIORITY_FEE_DEFAULT = 200_000
PRIORITY_FEE_SAMPLE_SIZE = 5
PRIORITY_FEE_BUFFER = 1.2

# Upstream call policy
HTTP_TIMEOUT = 30
UPSTREAM_MAX_ATTEMPTS = 3
UPSTREAM_BASE_DELAY = 1.0
UPSTREAM_MAX_DELAY = 8.0


class ConfirmationStrategy(str, Enum):
    """How long a broadcast waits before reporting success."""
    OPTIMISTIC = "optimistic"
    FINALIZED = "finalized"


class Settings(BaseModel):
    """Explicit runtime configuration passed into service constructors."""

    funding_wallet_secret: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    birdeye_api_key: Optional[str] = None

    solana_rpc_url: str = SOLANA_RPC_URL
    jupiter_api_url: str = JUPITER_API_URL
    jupiter_token_list_url: str = JUPITER_TOKEN_LIST_URL
    coingecko_api_url: str = COINGECKO_API_URL
    birdeye_api_url: str = BIRDEYE_API_URL
    solend_program_id: str = SOLEND_PROGRAM_ID

    price_usd: int = PRICE_USD
    price_inr: int = PRICE_INR
    default_sol_amount: float = DEFAULT_SOL_AMOUNT

    backend_url: str = "http://localhost:4000"
    frontend_url: str = "http://localhost:3000"

    confirmation_strategy: ConfirmationStrategy = ConfirmationStrategy.OPTIMISTIC
    http_timeout: float = HTTP_TIMEOUT
    log_level: str = "INFO"
    port: int = 4000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            funding_wallet_secret=os.getenv("FUNDING_WALLET_SECRET") or None,
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            birdeye_api_key=os.getenv("BIRDEYE_API_KEY") or None,
            solana_rpc_url=os.getenv("SOLANA_RPC_URL", SOLANA_RPC_URL),
            jupiter_api_url=os.getenv("JUPITER_API_URL", JUPITER_API_URL),
            jupiter_token_list_url=os.getenv("JUPITER_TOKEN_LIST_URL", JUPITER_TOKEN_LIST_URL),
            coingecko_api_url=os.getenv("COINGECKO_API_URL", COINGECKO_API_URL),
            birdeye_api_url=os.getenv("BIRDEYE_API_URL", BIRDEYE_API_URL),
            solend_program_id=os.getenv("SOLEND_PROGRAM_ID", SOLEND_PROGRAM_ID),
            price_usd=int(os.getenv("PRICE_USD", str(PRICE_USD))),
            price_inr=int(os.getenv("PRICE_INR", str(PRICE_INR))),
            default_sol_amount=float(os.getenv("DEFAULT_SOL_AMOUNT", str(DEFAULT_SOL_AMOUNT))),
            backend_url=os.getenv("BACKEND_URL", "http://localhost:4000"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            confirmation_strategy=ConfirmationStrategy(
                os.getenv("CONFIRMATION_STRATEGY", ConfirmationStrategy.OPTIMISTIC.value)
            ),
            http_timeout=float(os.getenv("HTTP_TIMEOUT", str(HTTP_TIMEOUT))),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", "4000")),
        )

    def default_price_for(self, currency: str) -> int:
        """Default charge in minor units for a currency."""
        if currency == REGIONAL_CURRENCY:
            return self.price_inr
        return self.price_usd
