"""
Unsigned deposit transactions for the Solend lending program.

The caller signs and submits the transaction; nothing here touches the
funding account.
"""

import base64
import struct
from enum import IntEnum
from typing import List, Optional

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams as SystemTransferParams
from solders.system_program import transfer as system_transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import SyncNativeParams, sync_native

from onramp.config import SOL_MINT, SOLEND_PROGRAM_ID
from onramp.exceptions import ValidationError
from onramp.solana.models import CamelModel
from onramp.solana.token_program import create_token_account_instruction, resolve_token_account
from onramp.utils.validation_utils import parse_public_key, validate_positive_amount


class LendingInstruction(IntEnum):
    """Instruction tags of the token-lending program used here."""
    REFRESH_RESERVE = 3
    DEPOSIT_RESERVE_LIQUIDITY = 4


class ReserveLiquidity(CamelModel):
    mint_pubkey: str
    mint_decimals: int
    supply_pubkey: str
    pyth_oracle: str
    switchboard_oracle: str


class ReserveCollateral(CamelModel):
    mint_pubkey: str
    supply_pubkey: str


class ReserveConfig(CamelModel):
    fee_receiver: Optional[str] = None
    extra_oracle: Optional[str] = None


class Reserve(CamelModel):
    address: str
    lending_market: str
    liquidity: ReserveLiquidity
    collateral: ReserveCollateral
    config: ReserveConfig = ReserveConfig()


class LendingPool(CamelModel):
    """Pool descriptor as published by the lending protocol's API."""
    reserve: Reserve


def refresh_reserve_instruction(
    program_id: Pubkey,
    reserve: Pubkey,
    pyth_oracle: Pubkey,
    switchboard_oracle: Pubkey,
    extra_oracle: Optional[Pubkey] = None,
) -> Instruction:
    accounts = [
        AccountMeta(reserve, is_signer=False, is_writable=True),
        AccountMeta(pyth_oracle, is_signer=False, is_writable=False),
        AccountMeta(switchboard_oracle, is_signer=False, is_writable=False),
    ]
    if extra_oracle is not None:
        accounts.append(AccountMeta(extra_oracle, is_signer=False, is_writable=False))
    return Instruction(program_id, bytes([LendingInstruction.REFRESH_RESERVE]), accounts)


def deposit_reserve_liquidity_instruction(
    program_id: Pubkey,
    liquidity_amount: int,
    source_liquidity: Pubkey,
    destination_collateral: Pubkey,
    reserve: Pubkey,
    reserve_liquidity_supply: Pubkey,
    reserve_collateral_mint: Pubkey,
    lending_market: Pubkey,
    user_transfer_authority: Pubkey,
) -> Instruction:
    """
    Deposit liquidity into a reserve in exchange for collateral tokens.

    Args:
        program_id: Lending program
        liquidity_amount: Amount in the liquidity mint's smallest unit
        source_liquidity: User token account holding the liquidity
        destination_collateral: User token account receiving collateral
        reserve: Reserve account
        reserve_liquidity_supply: Reserve's liquidity supply account
        reserve_collateral_mint: Reserve's collateral (cToken) mint
        lending_market: Lending market the reserve belongs to
        user_transfer_authority: Owner of the source account (signer)
    """
    market_authority, _ = Pubkey.find_program_address([bytes(lending_market)], program_id)
    data = struct.pack("<BQ", LendingInstruction.DEPOSIT_RESERVE_LIQUIDITY, liquidity_amount)
    accounts = [
        AccountMeta(source_liquidity, is_signer=False, is_writable=True),
        AccountMeta(destination_collateral, is_signer=False, is_writable=True),
        AccountMeta(reserve, is_signer=False, is_writable=True),
        AccountMeta(reserve_liquidity_supply, is_signer=False, is_writable=True),
        AccountMeta(reserve_collateral_mint, is_signer=False, is_writable=True),
        AccountMeta(lending_market, is_signer=False, is_writable=False),
        AccountMeta(market_authority, is_signer=False, is_writable=False),
        AccountMeta(user_transfer_authority, is_signer=True, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, accounts)


class LendingDepositBuilder:
    """Builds unsigned deposit transactions against a lending reserve."""

    def __init__(self, client: AsyncClient, program_id: str = SOLEND_PROGRAM_ID):
        self.client = client
        self.program_id = Pubkey.from_string(program_id)

    async def build_deposit(self, pool: dict, amount: float, user_public_key: str) -> str:
        """
        Build a deposit of `amount` (whole tokens) into the pool's reserve.

        Args:
            pool: Pool descriptor (`{"reserve": {...}}`)
            amount: Amount to deposit in whole tokens
            user_public_key: Depositing wallet, fee payer and sole signer

        Returns:
            Base64-encoded unsigned transaction

        Raises:
            ValidationError: If the pool, amount or key is malformed
        """
        if not pool or not isinstance(pool, dict):
            raise ValidationError("Missing or invalid pool")
        amount = validate_positive_amount(amount)
        user = parse_public_key(user_public_key, "userPublicKey")

        try:
            descriptor = LendingPool.model_validate(pool)
        except ValueError as e:
            raise ValidationError("Missing or invalid pool", details={"details": str(e)})

        reserve = descriptor.reserve
        try:
            reserve_address = Pubkey.from_string(reserve.address)
            lending_market = Pubkey.from_string(reserve.lending_market)
            liquidity_mint = Pubkey.from_string(reserve.liquidity.mint_pubkey)
            liquidity_supply = Pubkey.from_string(reserve.liquidity.supply_pubkey)
            pyth_oracle = Pubkey.from_string(reserve.liquidity.pyth_oracle)
            switchboard_oracle = Pubkey.from_string(reserve.liquidity.switchboard_oracle)
            collateral_mint = Pubkey.from_string(reserve.collateral.mint_pubkey)
            extra_oracle = Pubkey.from_string(reserve.config.extra_oracle) if reserve.config.extra_oracle else None
        except ValueError as e:
            raise ValidationError("Missing or invalid pool", details={"details": str(e)})

        liquidity_amount = int(round(amount * 10 ** reserve.liquidity.mint_decimals))
        logger.info(
            f"Building lending deposit of {amount} ({liquidity_amount} raw) into reserve {reserve.address}",
            extra={"user": str(user), "lending_market": reserve.lending_market}
        )

        instructions: List[Instruction] = []

        source_liquidity, source_exists = await resolve_token_account(self.client, user, liquidity_mint)
        if str(liquidity_mint) == SOL_MINT:
            instructions.extend(self._wrap_sol_instructions(user, source_liquidity, source_exists, liquidity_amount))
        elif not source_exists:
            raise ValidationError(f"No token account for {liquidity_mint} found for {user}")

        destination_collateral, collateral_exists = await resolve_token_account(self.client, user, collateral_mint)
        if not collateral_exists:
            instructions.append(create_token_account_instruction(user, user, collateral_mint))

        instructions.append(
            refresh_reserve_instruction(
                self.program_id, reserve_address, pyth_oracle, switchboard_oracle, extra_oracle
            )
        )
        instructions.append(
            deposit_reserve_liquidity_instruction(
                self.program_id,
                liquidity_amount,
                source_liquidity,
                destination_collateral,
                reserve_address,
                liquidity_supply,
                collateral_mint,
                lending_market,
                user,
            )
        )

        response = await self.client.get_latest_blockhash(commitment=Confirmed)
        message = Message.new_with_blockhash(instructions, user, response.value.blockhash)
        transaction = Transaction.new_unsigned(message)

        return base64.b64encode(bytes(transaction)).decode("utf-8")

    @staticmethod
    def _wrap_sol_instructions(
        owner: Pubkey,
        wrapped_account: Pubkey,
        account_exists: bool,
        lamports: int,
    ) -> List[Instruction]:
        """Move native lamports into the owner's wrapped SOL account."""
        instructions: List[Instruction] = []
        if not account_exists:
            instructions.append(create_token_account_instruction(owner, owner, Pubkey.from_string(SOL_MINT)))
        instructions.append(
            system_transfer(SystemTransferParams(from_pubkey=owner, to_pubkey=wrapped_account, lamports=lamports))
        )
        instructions.append(sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=wrapped_account)))
        return instructions
