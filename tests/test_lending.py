import asyncio
import base64

import pytest
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.instructions import get_associated_token_address

from onramp.config import SOL_MINT, SOLEND_PROGRAM_ID
from onramp.exceptions import ValidationError
from onramp.solana.lending import LendingDepositBuilder
from tests.fakes import RECIPIENT, TOKEN_MINT, FakeRpcClient

USER = Pubkey.from_string(RECIPIENT)
SYSTEM_PROGRAM = "11111111111111111111111111111111"
TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"


def make_pool(mint=TOKEN_MINT, decimals=6):
    return {
        "reserve": {
            "address": str(Pubkey.new_unique()),
            "lendingMarket": str(Pubkey.new_unique()),
            "liquidity": {
                "mintPubkey": mint,
                "mintDecimals": decimals,
                "supplyPubkey": str(Pubkey.new_unique()),
                "pythOracle": str(Pubkey.new_unique()),
                "switchboardOracle": str(Pubkey.new_unique()),
            },
            "collateral": {
                "mintPubkey": str(Pubkey.new_unique()),
                "supplyPubkey": str(Pubkey.new_unique()),
            },
            "config": {"feeReceiver": str(Pubkey.new_unique())},
        }
    }


def decode(encoded):
    transaction = Transaction.from_bytes(base64.b64decode(encoded))
    message = transaction.message
    programs = [str(message.account_keys[ix.program_id_index]) for ix in message.instructions]
    return transaction, message, programs


def test_token_deposit_builds_unsigned_transaction():
    pool = make_pool()
    source = get_associated_token_address(USER, Pubkey.from_string(TOKEN_MINT))
    builder = LendingDepositBuilder(FakeRpcClient(existing_accounts=[source]))

    encoded = asyncio.run(builder.build_deposit(pool, 1.5, RECIPIENT))
    transaction, message, programs = decode(encoded)

    assert message.account_keys[0] == USER
    assert message.header.num_required_signatures == 1
    assert all(sig == Signature.default() for sig in transaction.signatures)

    # collateral account is created, then refresh and deposit
    assert programs == [ASSOCIATED_TOKEN_PROGRAM, SOLEND_PROGRAM_ID, SOLEND_PROGRAM_ID]

    refresh, deposit = message.instructions[1], message.instructions[2]
    assert bytes(refresh.data) == bytes([3])
    assert deposit.data[0] == 4
    assert int.from_bytes(bytes(deposit.data[1:9]), "little") == 1_500_000
    assert len(deposit.accounts) == 9

    account_keys = [str(message.account_keys[i]) for i in deposit.accounts]
    assert account_keys[0] == str(source)
    assert account_keys[2] == pool["reserve"]["address"]
    assert account_keys[5] == pool["reserve"]["lendingMarket"]
    assert account_keys[7] == RECIPIENT
    assert account_keys[8] == TOKEN_PROGRAM


def test_lending_market_authority_is_derived():
    pool = make_pool()
    source = get_associated_token_address(USER, Pubkey.from_string(TOKEN_MINT))
    builder = LendingDepositBuilder(FakeRpcClient(existing_accounts=[source]))

    _, message, _ = decode(asyncio.run(builder.build_deposit(pool, 1, RECIPIENT)))

    market = Pubkey.from_string(pool["reserve"]["lendingMarket"])
    authority, _ = Pubkey.find_program_address([bytes(market)], Pubkey.from_string(SOLEND_PROGRAM_ID))
    deposit = message.instructions[-1]
    assert message.account_keys[deposit.accounts[6]] == authority


def test_native_sol_deposit_wraps_lamports():
    pool = make_pool(mint=SOL_MINT, decimals=9)
    builder = LendingDepositBuilder(FakeRpcClient())

    _, message, programs = decode(asyncio.run(builder.build_deposit(pool, 0.5, RECIPIENT)))

    assert programs == [
        ASSOCIATED_TOKEN_PROGRAM,  # wrapped SOL account
        SYSTEM_PROGRAM,
        TOKEN_PROGRAM,  # sync native
        ASSOCIATED_TOKEN_PROGRAM,  # collateral account
        SOLEND_PROGRAM_ID,
        SOLEND_PROGRAM_ID,
    ]
    deposit = message.instructions[-1]
    assert int.from_bytes(bytes(deposit.data[1:9]), "little") == 500_000_000


def test_missing_source_token_account_is_rejected():
    builder = LendingDepositBuilder(FakeRpcClient())
    with pytest.raises(ValidationError):
        asyncio.run(builder.build_deposit(make_pool(), 1, RECIPIENT))


@pytest.mark.parametrize("pool", [None, {}, {"reserve": {"address": "x"}}])
def test_malformed_pool_is_rejected(pool):
    with pytest.raises(ValidationError, match="Missing or invalid pool"):
        asyncio.run(LendingDepositBuilder(FakeRpcClient()).build_deposit(pool, 1, RECIPIENT))


def test_malformed_pool_address_is_rejected():
    pool = make_pool()
    pool["reserve"]["address"] = "not-a-key"
    with pytest.raises(ValidationError):
        asyncio.run(LendingDepositBuilder(FakeRpcClient()).build_deposit(pool, 1, RECIPIENT))


def test_malformed_user_key_is_rejected():
    with pytest.raises(ValidationError):
        asyncio.run(LendingDepositBuilder(FakeRpcClient()).build_deposit(make_pool(), 1, "nope"))
