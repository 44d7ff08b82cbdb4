"""
Models for payment sessions and settlement results.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Settlement status of a payment session."""
    CREATED = "created"
    PAYMENT_COMPLETED = "payment_completed"
    IN_PROGRESS = "in_progress"
    SOL_RECEIVED = "sol_received"
    SOL_TRANSFERRED = "sol_transferred"
    TOKEN_SWAP_COMPLETED = "token_swap_completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SessionStatus.SOL_TRANSFERRED,
    SessionStatus.TOKEN_SWAP_COMPLETED,
    SessionStatus.ERROR,
})

# Statuses a session can never return to once it has left them
INITIAL_STATUSES = frozenset({SessionStatus.CREATED, SessionStatus.PAYMENT_COMPLETED})


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys for the HTTP surface."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentSession(CamelModel):
    """A single checkout-to-settlement unit of work."""
    id: str
    wallet_address: str
    fiat_amount: float
    fiat_amount_minor: int
    fiat_currency: str
    sol_amount: float
    checkout_session_id: Optional[str] = None
    status: SessionStatus = SessionStatus.CREATED
    timestamp: datetime = Field(default_factory=utcnow)

    # Token swap descriptor, fixed at creation
    is_token_swap: bool = False
    token_symbol: Optional[str] = None
    token_address: Optional[str] = None
    token_amount: Optional[float] = None

    # Settlement results
    signature: Optional[str] = None
    explorer_link: Optional[str] = None
    sol_signature: Optional[str] = None
    sol_explorer_link: Optional[str] = None
    swap_tx_id: Optional[str] = None
    transfer_tx_id: Optional[str] = None
    transfer_explorer_link: Optional[str] = None
    transferred_sol_amount: Optional[float] = None
    delivered_token_amount: Optional[float] = None
    transfer_timestamp: Optional[datetime] = None
    error: Optional[str] = None

    # Status held before the current claim, restored on release
    claimed_from: Optional[SessionStatus] = Field(default=None, exclude=True)


class CheckoutRequest(CamelModel):
    """Caller input for a new checkout session."""
    wallet_address: Optional[Any] = None
    email: Optional[str] = None
    country: Optional[Any] = None
    dollar_amount: Optional[float] = None
    sol_amount: Optional[float] = None
    token_symbol: Optional[str] = None
    token_address: Optional[str] = None
    token_amount: Optional[float] = None


class CheckoutSessionResult(CamelModel):
    """What the caller needs to redirect to the hosted checkout."""
    url: str
    sol_amount: float
    fiat_amount: float
    fiat_currency: str
    session_id: str
    is_token_swap: bool
    token_symbol: Optional[str] = None
    token_amount: Optional[float] = None


class TransferResult(CamelModel):
    """Result of a broadcast SOL transfer."""
    signature: str
    explorer_link: str
    amount: float
    confirmation_status: Optional[str] = None


class SettlementTransaction(CamelModel):
    """One broadcast transaction within a settlement."""
    id: str
    type: str
    status: str = "SENT"
    description: str
    explorer_link: str
    token_account_created: Optional[bool] = None


class FinalToken(CamelModel):
    symbol: str
    mint: str
    amount: float
    associated_token_account: str


class SwapResult(CamelModel):
    """Result of a swap-and-deliver settlement."""
    transactions: List[SettlementTransaction]
    final_token: FinalToken
    message: str

    def transaction_dicts(self) -> List[Dict[str, Any]]:
        return [tx.model_dump(by_alias=True, exclude_none=True) for tx in self.transactions]


class PriorityFeeSample(BaseModel):
    """One recent prioritization-fee observation."""
    slot: int
    prioritization_fee: int
