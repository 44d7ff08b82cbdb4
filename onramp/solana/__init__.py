"""
Solana integration for the onramp backend.

This package contains modules for interacting with the Solana blockchain:
the funding account signer, settlement execution, priority fee estimation,
SPL token helpers and lending deposit transactions.

Broadcasts are optimistic by default (submit plus one status probe); set
CONFIRMATION_STRATEGY=finalized to wait for finality instead.
"""

from onramp.solana.models import PaymentSession, SessionStatus, SwapResult, TransferResult
from onramp.solana.wallet_manager import AccountSigner, load_funding_signer
from onramp.solana.fee_oracle import PriorityFeeEstimator, recommend_priority_fee
from onramp.solana.token_program import (
    resolve_token_account,
    create_token_account_instruction,
    create_token_transfer_instruction,
    build_delivery_instructions,
)

__all__ = [
    'PaymentSession',
    'SessionStatus',
    'SwapResult',
    'TransferResult',
    'AccountSigner',
    'load_funding_signer',
    'PriorityFeeEstimator',
    'recommend_priority_fee',
    'resolve_token_account',
    'create_token_account_instruction',
    'create_token_transfer_instruction',
    'build_delivery_instructions',
]
