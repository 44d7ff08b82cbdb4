"""
SPL Token program utilities for Solana.

Thin typed wrappers around the `spl.token` instruction builders, so the
settlement code never encodes instruction bytes itself.
"""

from typing import List, Tuple

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer,
)


async def resolve_token_account(
    client: AsyncClient,
    owner: Pubkey,
    mint: Pubkey,
) -> Tuple[Pubkey, bool]:
    """
    Find the associated token account for an owner and mint.

    Args:
        client: Async Solana RPC client
        owner: Wallet that owns the token account
        mint: Token mint

    Returns:
        Tuple of (associated token account address, whether it exists on chain)
    """
    token_account = get_associated_token_address(owner, mint)
    try:
        response = await client.get_account_info(token_account, commitment=Confirmed)
        exists = response.value is not None
    except Exception as e:
        logger.warning(
            f"Error checking token account {token_account}: {str(e)}",
            extra={"owner": str(owner), "mint": str(mint)}
        )
        exists = False

    return token_account, exists


def create_token_account_instruction(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    """Instruction creating the associated token account of `owner` for `mint`."""
    return create_associated_token_account(payer=payer, owner=owner, mint=mint)


def create_token_transfer_instruction(
    source: Pubkey,
    dest: Pubkey,
    owner: Pubkey,
    amount: int,
) -> Instruction:
    """
    Create an SPL token transfer instruction.

    Args:
        source: Sending token account
        dest: Receiving token account
        owner: Owner of the sending token account (signer)
        amount: Amount in the token's smallest unit
    """
    return transfer(
        TransferParams(
            program_id=TOKEN_PROGRAM_ID,
            source=source,
            dest=dest,
            owner=owner,
            amount=amount,
        )
    )


async def build_delivery_instructions(
    client: AsyncClient,
    payer: Pubkey,
    recipient: Pubkey,
    mint: Pubkey,
    amount: int,
) -> Tuple[List[Instruction], Pubkey, bool]:
    """
    Instructions moving `amount` of `mint` from the payer's token account to
    the recipient's, creating either account when it is absent.

    Returns:
        Tuple of (instructions, recipient token account, whether it is created)
    """
    instructions: List[Instruction] = []

    source_account, source_exists = await resolve_token_account(client, payer, mint)
    if not source_exists:
        logger.info(f"Funding token account {source_account} not found yet, creating it")
        instructions.append(create_token_account_instruction(payer, payer, mint))

    dest_account, dest_exists = await resolve_token_account(client, recipient, mint)
    if not dest_exists:
        logger.info(f"User token account {dest_account} does not exist, creating it")
        instructions.append(create_token_account_instruction(payer, recipient, mint))

    instructions.append(create_token_transfer_instruction(source_account, dest_account, payer, amount))
    return instructions, dest_account, not dest_exists
