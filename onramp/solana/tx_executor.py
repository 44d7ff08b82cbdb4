"""
Settlement execution for Solana.

Turns a paid session into on-chain value: either a direct SOL transfer from
the funding account, or a SOL→token swap through Jupiter followed by a token
transfer to the user.
"""

import base64
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Finalized, Processed
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from onramp.api.jupiter_client import JupiterClient, quote_output_amount
from onramp.config import (
    DEFAULT_SOL_AMOUNT,
    EXPLORER_TX_URL,
    LAMPORTS_PER_SOL,
    MAX_TRANSFER_RETRIES,
    ConfirmationStrategy,
)
from onramp.exceptions import (
    ConfigurationError,
    OnChainSubmissionError,
    PartialSettlementError,
    SessionNotFound,
    UpstreamUnavailable,
    ValidationError,
)
from onramp.solana.fee_oracle import PriorityFeeEstimator
from onramp.solana.models import (
    FinalToken,
    PaymentSession,
    SessionStatus,
    SettlementTransaction,
    SwapResult,
    TransferResult,
    utcnow,
)
from onramp.solana.token_program import build_delivery_instructions
from onramp.solana.wallet_manager import AccountSigner
from onramp.state.session_store import PaymentSessionStore
from onramp.utils.retry_utils import is_transient_error
from onramp.utils.validation_utils import parse_public_key, validate_positive_amount

# Statuses from which a settlement may claim a session
TRANSFER_CLAIMABLE = (SessionStatus.CREATED, SessionStatus.PAYMENT_COMPLETED)
SWAP_CLAIMABLE = (SessionStatus.CREATED, SessionStatus.PAYMENT_COMPLETED, SessionStatus.SOL_RECEIVED)


def explorer_link(signature: str) -> str:
    return f"{EXPLORER_TX_URL}/{signature}"


def sol_to_lamports(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))


class SettlementExecutor:
    """
    Executes settlements for payment sessions.

    Each call claims its session before anything is broadcast, so a duplicate
    completion callback cannot trigger a second transfer. Broadcasts return
    after submission plus one status probe unless the finalized confirmation
    strategy is configured.
    """

    MAX_TRANSFER_RETRIES = MAX_TRANSFER_RETRIES

    def __init__(
        self,
        client: AsyncClient,
        signer: Optional[AccountSigner],
        fee_estimator: PriorityFeeEstimator,
        jupiter: JupiterClient,
        store: PaymentSessionStore,
        confirmation_strategy: ConfirmationStrategy = ConfirmationStrategy.OPTIMISTIC,
    ):
        """
        Initialize the settlement executor.

        Args:
            client: Async Solana RPC client
            signer: Funding account signer, None when not configured
            fee_estimator: Priority fee estimator
            jupiter: Jupiter aggregator client
            store: Payment session store
            confirmation_strategy: Optimistic (one probe) or wait for finality
        """
        self.client = client
        self.signer = signer
        self.fee_estimator = fee_estimator
        self.jupiter = jupiter
        self.store = store
        self.confirmation_strategy = confirmation_strategy

        logger.info(f"SettlementExecutor initialized ({confirmation_strategy.value} confirmation)")

    async def transfer_sol(
        self,
        wallet_address: str,
        amount: float = DEFAULT_SOL_AMOUNT,
        session_id: Optional[str] = None,
        retry_count: int = 0,
    ) -> TransferResult:
        """
        Send SOL from the funding account to a wallet.

        Args:
            wallet_address: Destination wallet
            amount: Amount in SOL
            session_id: Session to settle, if any
            retry_count: How many times the caller has already retried

        Returns:
            Signature, explorer link and amount of the broadcast transfer

        Raises:
            ConfigurationError: If no funding account is configured
            ValidationError: If the address or amount is malformed, or the address
                differs from the session's
            SessionConflict: If the session is already being settled
            OnChainSubmissionError: If signing or broadcasting fails; transient
                failures below the retry cap carry `retry_scheduled=True`
        """
        signer = self._require_signer()
        recipient = parse_public_key(wallet_address)
        amount = validate_positive_amount(amount)
        lamports = sol_to_lamports(amount)

        session = self._claim(session_id, TRANSFER_CLAIMABLE)
        self._check_destination(session, recipient)

        logger.info(f"Sending {amount} SOL to {wallet_address}", extra={"session_id": session_id})

        try:
            instructions = [
                transfer(TransferParams(from_pubkey=signer.pubkey, to_pubkey=recipient, lamports=lamports))
            ]
            signature, confirmation = await self._sign_and_send(instructions)
        except Exception as e:
            logger.error(f"Error sending transaction: {str(e)}")
            transient = is_transient_error(e)

            if transient and retry_count < self.MAX_TRANSFER_RETRIES:
                logger.info(f"Will retry transfer, attempt {retry_count + 1}")
                self._release(session)
                raise OnChainSubmissionError(
                    "Transaction failed but will be retried automatically",
                    transient=True,
                    retry_scheduled=True,
                    retry_count=retry_count + 1,
                )

            message = f"Transaction failed: {str(e)}"
            self._mark_error(session, message)
            raise OnChainSubmissionError(message, transient=transient, details={"details": str(e)})

        link = explorer_link(signature)
        logger.info(f"SOL transfer initiated! Transaction: {signature}")

        if session:
            patch: Dict[str, Any] = {
                "transfer_timestamp": utcnow(),
                "transferred_sol_amount": amount,
            }
            if session.is_token_swap:
                patch.update(status=SessionStatus.SOL_RECEIVED, sol_signature=signature, sol_explorer_link=link)
            else:
                patch.update(status=SessionStatus.SOL_TRANSFERRED, signature=signature, explorer_link=link)
            self.store.update(session.id, patch)

        return TransferResult(signature=signature, explorer_link=link, amount=amount, confirmation_status=confirmation)

    async def swap_and_deliver(
        self,
        wallet_address: str,
        output_token_address: str,
        sol_amount: float,
        session_id: Optional[str] = None,
    ) -> SwapResult:
        """
        Swap the funding account's SOL into a token and deliver it to a wallet.

        Args:
            wallet_address: Wallet receiving the tokens
            output_token_address: Mint of the token to buy
            sol_amount: Amount of SOL to swap
            session_id: Session to settle, if any

        Returns:
            Both transactions, the delivered token and a summary message

        Raises:
            ConfigurationError: If no funding account is configured
            ValidationError: If an address or the amount is malformed, or the
                destination differs from the session's
            SessionConflict: If the session is already being settled
            UpstreamUnavailable: If Jupiter could not provide a quote or swap
            OnChainSubmissionError: If the swap broadcast fails
            PartialSettlementError: If the swap went out but delivery failed
        """
        signer = self._require_signer()
        recipient = parse_public_key(wallet_address)
        mint = parse_public_key(output_token_address, "destination token address")
        sol_amount = validate_positive_amount(sol_amount)

        session = self._claim(session_id, SWAP_CLAIMABLE)
        self._check_destination(session, recipient, mint)
        token_symbol = (session.token_symbol if session else None) or "Token"

        try:
            quote = await self.jupiter.get_quote(output_mint=str(mint), amount=sol_to_lamports(sol_amount))
            priority_fee = await self.fee_estimator.estimate()
            swap_transaction = await self.jupiter.get_swap_transaction(
                quote,
                user_public_key=str(signer.pubkey),
                wrap_and_unwrap_sol=True,
                compute_unit_price_micro_lamports=priority_fee,
            )
        except UpstreamUnavailable:
            self._release(session)
            raise

        quoted_raw_amount = int(quote["outAmount"])
        output_amount = quote_output_amount(quote)
        logger.info(f"Quote received: {sol_amount} SOL ≈ {output_amount} {token_symbol}")

        try:
            swap_tx_id = await self._send_swap(swap_transaction)
        except Exception as e:
            logger.error(f"Error sending swap transaction: {str(e)}")
            message = f"Failed to execute swap: {str(e)}"
            self._mark_error(session, message)
            raise OnChainSubmissionError(message, transient=is_transient_error(e), details={"details": str(e)})

        swap_tx = SettlementTransaction(
            id=swap_tx_id,
            type="swap",
            description=f"Swapped {sol_amount} SOL to {output_amount} {token_symbol}",
            explorer_link=explorer_link(swap_tx_id),
        )

        logger.info(f"Swap sent, transferring tokens to user wallet: {wallet_address}")

        try:
            transfer_tx_id, recipient_account, account_created = await self._deliver_tokens(
                signer.pubkey, recipient, mint, quoted_raw_amount
            )
        except Exception as e:
            logger.error(f"Error sending token transfer: {str(e)}")
            message = f"Swap {swap_tx_id} succeeded but token delivery failed: {str(e)}"
            self._mark_error(session, message, swap_tx_id=swap_tx_id, explorer_link=swap_tx.explorer_link)
            raise PartialSettlementError(message, transactions=[swap_tx.model_dump(by_alias=True)])

        transfer_tx = SettlementTransaction(
            id=transfer_tx_id,
            type="transfer",
            description=f"Transferred {output_amount} {token_symbol} to your wallet",
            explorer_link=explorer_link(transfer_tx_id),
            token_account_created=account_created,
        )

        if session:
            self.store.update(session.id, {
                "status": SessionStatus.TOKEN_SWAP_COMPLETED,
                "swap_tx_id": swap_tx_id,
                "transfer_tx_id": transfer_tx_id,
                "delivered_token_amount": output_amount,
                "explorer_link": swap_tx.explorer_link,
                "transfer_explorer_link": transfer_tx.explorer_link,
                "transfer_timestamp": utcnow(),
            })

        return SwapResult(
            transactions=[swap_tx, transfer_tx],
            final_token=FinalToken(
                symbol=token_symbol,
                mint=str(mint),
                amount=output_amount,
                associated_token_account=str(recipient_account),
            ),
            message=f"Successfully processed SOL to {token_symbol} swap and transfer to your wallet.",
        )

    async def close(self):
        await self.client.close()

    async def _sign_and_send(self, instructions: List[Instruction]) -> Tuple[str, str]:
        """
        Build a legacy transaction paid and signed by the funding account,
        with a priority fee instruction prepended, and broadcast it.
        """
        signer = self._require_signer()
        blockhash, last_valid_block_height = await self._latest_blockhash()

        priority_fee = await self.fee_estimator.estimate()
        logger.info(f"Using priority fee: {priority_fee} micro-lamports per compute unit")

        message = Message([set_compute_unit_price(priority_fee), *instructions], signer.pubkey)
        transaction = Transaction([signer.keypair], message, blockhash)
        return await self._broadcast(bytes(transaction), last_valid_block_height)

    async def _send_swap(self, swap_transaction: str) -> str:
        signer = self._require_signer()
        raw = VersionedTransaction.from_bytes(base64.b64decode(swap_transaction))
        signed = VersionedTransaction(raw.message, [signer.keypair])

        _, last_valid_block_height = await self._latest_blockhash()
        signature, _ = await self._broadcast(bytes(signed), last_valid_block_height)
        logger.info(f"Swap transaction sent: {signature}")
        return signature

    async def _deliver_tokens(
        self,
        payer: Pubkey,
        recipient: Pubkey,
        mint: Pubkey,
        amount: int,
    ) -> Tuple[str, Pubkey, bool]:
        instructions, recipient_account, account_created = await build_delivery_instructions(
            self.client, payer, recipient, mint, amount
        )
        signature, _ = await self._sign_and_send(instructions)
        logger.info(f"Token transfer sent: {signature}")
        return signature, recipient_account, account_created

    async def _latest_blockhash(self) -> Tuple[Hash, int]:
        response = await self.client.get_latest_blockhash(commitment=Confirmed)
        return response.value.blockhash, response.value.last_valid_block_height

    async def _broadcast(self, raw_transaction: bytes, last_valid_block_height: int) -> Tuple[str, str]:
        """
        Submit a signed transaction and check on it once.

        Returns:
            Tuple of (signature, confirmation status seen by the probe)
        """
        response = await self.client.send_raw_transaction(
            raw_transaction,
            opts=TxOpts(skip_preflight=True, preflight_commitment=Processed, max_retries=1),
        )
        signature = response.value

        if self.confirmation_strategy == ConfirmationStrategy.FINALIZED:
            await self.client.confirm_transaction(
                signature,
                commitment=Finalized,
                last_valid_block_height=last_valid_block_height,
            )
            return str(signature), "finalized"

        return str(signature), await self._probe_status(signature)

    async def _probe_status(self, signature) -> str:
        """Best-effort, non-blocking status check right after broadcast."""
        try:
            response = await self.client.get_signature_statuses([signature])
            status = response.value[0]
        except Exception as e:
            logger.warning(f"Status probe failed for {signature}: {str(e)}")
            return "unknown"

        if status is None or status.confirmation_status is None:
            confirmation = "pending"
        else:
            confirmation = str(status.confirmation_status).rsplit(".", 1)[-1].lower()
        logger.info(f"Initial transaction status for {signature}: {confirmation}")
        return confirmation

    def _require_signer(self) -> AccountSigner:
        if self.signer is None:
            raise ConfigurationError(
                "Funding wallet not initialized. Check FUNDING_WALLET_SECRET environment variable."
            )
        return self.signer

    def _claim(self, session_id: Optional[str], allowed) -> Optional[PaymentSession]:
        if not session_id:
            return None
        try:
            return self.store.claim(session_id, allowed)
        except SessionNotFound:
            logger.warning(f"Session {session_id} not found; settling without session tracking")
            return None

    def _check_destination(self, session: Optional[PaymentSession], recipient: Pubkey, mint: Optional[Pubkey] = None):
        """Release the claim and reject a destination that differs from the session's."""
        if not session:
            return
        mismatch = None
        if session.wallet_address.strip() != str(recipient):
            mismatch = "Wallet address does not match the payment session"
        elif mint is not None and session.token_address and session.token_address.strip() != str(mint):
            mismatch = "Destination token does not match the payment session"
        if mismatch:
            self._release(session)
            raise ValidationError(mismatch)

    def _release(self, session: Optional[PaymentSession]):
        if session:
            self.store.release(session.id)

    def _mark_error(self, session: Optional[PaymentSession], message: str, **fields):
        if session:
            self.store.update(session.id, dict(fields, status=SessionStatus.ERROR, error=message))
