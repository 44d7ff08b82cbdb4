"""Request bodies for the HTTP endpoints."""
from typing import Any, Optional

from onramp.config import DEFAULT_SLIPPAGE_BPS, SOL_MINT
from onramp.solana.models import CamelModel


class TransferSolRequest(CamelModel):
    wallet_address: Optional[Any] = None
    amount: Optional[float] = None
    session_id: Optional[str] = None
    retry_count: int = 0


class SwapTokensRequest(CamelModel):
    wallet_address: Optional[Any] = None
    session_id: Optional[str] = None
    to_token: Optional[str] = None
    amount: Optional[float] = None


class SwapQuoteRequest(CamelModel):
    input_mint: str = SOL_MINT
    output_mint: Optional[str] = None
    amount: Optional[float] = None
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS


class LendRequest(CamelModel):
    pool: Optional[Any] = None
    amount: Optional[float] = None
    user_public_key: Optional[Any] = None


class SignupRequest(CamelModel):
    email: Optional[Any] = None
