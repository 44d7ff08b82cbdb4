"""
Shared fakes for the RPC node, Jupiter, Stripe and the price feed.
"""

import base64
from types import SimpleNamespace

from solders.hash import Hash
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from onramp.solana.models import PaymentSession, SessionStatus
from onramp.solana.wallet_manager import AccountSigner

RECIPIENT = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
TOKEN_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class FakeRpcClient:
    """Stands in for solana-py's AsyncClient."""

    def __init__(self, send_errors=None, existing_accounts=()):
        self.sent = []
        self.send_errors = list(send_errors or [])
        self.existing_accounts = {str(a) for a in existing_accounts}
        self.confirmed = []
        self.closed = False

    async def get_latest_blockhash(self, commitment=None):
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.new_unique(), last_valid_block_height=1000))

    async def send_raw_transaction(self, raw, opts=None):
        if self.send_errors:
            error = self.send_errors.pop(0)
            if error is not None:
                raise error
        self.sent.append(bytes(raw))
        return SimpleNamespace(value=Signature.new_unique())

    async def get_signature_statuses(self, signatures):
        return SimpleNamespace(value=[None for _ in signatures])

    async def confirm_transaction(self, signature, commitment=None, last_valid_block_height=None):
        self.confirmed.append(signature)
        return SimpleNamespace(value=[None])

    async def get_account_info(self, pubkey, commitment=None):
        exists = str(pubkey) in self.existing_accounts
        return SimpleNamespace(value=SimpleNamespace(lamports=2039280) if exists else None)

    async def close(self):
        self.closed = True


class FakeJupiter:
    """Stands in for JupiterClient with a canned quote and swap transaction."""

    def __init__(self, swap_transaction, out_amount="2500000", output_decimals=6, error=None):
        self.swap_transaction = swap_transaction
        self.out_amount = out_amount
        self.output_decimals = output_decimals
        self.error = error
        self.quote_calls = []
        self.swap_calls = []

    async def get_quote(self, output_mint, amount, input_mint=None, slippage_bps=50):
        self.quote_calls.append({"output_mint": output_mint, "amount": amount, "slippage_bps": slippage_bps})
        if self.error:
            raise self.error
        return {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "inAmount": str(amount),
            "outAmount": self.out_amount,
            "outputDecimals": self.output_decimals,
        }

    async def get_swap_transaction(self, quote, user_public_key, wrap_and_unwrap_sol=True,
                                   compute_unit_price_micro_lamports=None):
        self.swap_calls.append({
            "user_public_key": user_public_key,
            "compute_unit_price_micro_lamports": compute_unit_price_micro_lamports,
        })
        return self.swap_transaction

    def close(self):
        pass


class FakeGateway:
    """Stands in for the Stripe checkout gateway."""

    def __init__(self, sessions=None, error=None):
        self.created = []
        self.sessions = dict(sessions or {})
        self.error = error

    async def create_session(self, **params):
        if self.error:
            raise self.error
        self.created.append(params)
        checkout_id = f"cs_test_{len(self.created)}"
        return {
            "id": checkout_id,
            "url": f"https://checkout.stripe.com/c/pay/{checkout_id}",
            "amount_total": params["amount_minor"],
            "currency": params["currency"],
        }

    async def retrieve_session(self, checkout_session_id):
        return self.sessions.get(checkout_session_id)


class FakePriceOracle:
    def __init__(self, prices=None, error=None):
        self.prices = prices or {"usd": 150.0, "inr": 12500.0}
        self.error = error

    async def get_sol_price(self, currency):
        if self.error:
            raise self.error
        return self.prices[currency]


class FakeFeeSource:
    def __init__(self, fees=None, error=None):
        self.fees = fees or []
        self.error = error

    async def get_recent_prioritization_fees(self):
        if self.error:
            raise self.error
        return self.fees


def build_swap_transaction(signer: AccountSigner) -> str:
    """A versioned transaction paid by the funding account, as Jupiter returns it."""
    instruction = transfer(TransferParams(from_pubkey=signer.pubkey, to_pubkey=Pubkey.new_unique(), lamports=1))
    message = MessageV0.try_compile(signer.pubkey, [instruction], [], Hash.new_unique())
    transaction = VersionedTransaction(message, [signer.keypair])
    return base64.b64encode(bytes(transaction)).decode("utf-8")


def add_session(store, session_id="session_1_abc", status=SessionStatus.PAYMENT_COMPLETED, **fields):
    record = PaymentSession(
        id=session_id,
        wallet_address=fields.pop("wallet_address", RECIPIENT),
        fiat_amount=fields.pop("fiat_amount", 15.0),
        fiat_amount_minor=fields.pop("fiat_amount_minor", 1500),
        fiat_currency=fields.pop("fiat_currency", "usd"),
        sol_amount=fields.pop("sol_amount", 0.1),
        status=status,
        **fields,
    )
    return store.create(session_id, record)


