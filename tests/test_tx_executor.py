import asyncio

import pytest
from solders.signature import Signature
from solders.transaction import Transaction

from onramp.config import ConfirmationStrategy
from onramp.exceptions import ConfigurationError, OnChainSubmissionError, SessionConflict, ValidationError
from onramp.solana.models import SessionStatus
from tests.fakes import RECIPIENT, FakeFeeSource, FakeRpcClient, add_session

COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"
SYSTEM_PROGRAM = "11111111111111111111111111111111"


def program_ids(raw):
    message = Transaction.from_bytes(raw).message
    return [str(message.account_keys[ix.program_id_index]) for ix in message.instructions]


def test_transfer_sol_success(make_executor, store, signer):
    rpc = FakeRpcClient()
    add_session(store)
    executor = make_executor(rpc=rpc)

    result = asyncio.run(executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"))

    Signature.from_string(result.signature)
    assert result.explorer_link == f"https://solscan.io/tx/{result.signature}"
    assert result.amount == 0.1
    assert result.confirmation_status == "pending"

    assert len(rpc.sent) == 1
    transaction = Transaction.from_bytes(rpc.sent[0])
    assert transaction.message.account_keys[0] == signer.pubkey
    assert program_ids(rpc.sent[0]) == [COMPUTE_BUDGET_PROGRAM, SYSTEM_PROGRAM]

    session = store.get("session_1_abc")
    assert session.status == SessionStatus.SOL_TRANSFERRED
    assert session.signature == result.signature
    assert session.explorer_link == result.explorer_link
    assert session.transferred_sol_amount == 0.1
    assert session.transfer_timestamp is not None


def test_token_swap_session_records_sol_received(make_executor, store):
    add_session(store, is_token_swap=True, token_symbol="BONK")
    executor = make_executor()

    result = asyncio.run(executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"))

    session = store.get("session_1_abc")
    assert session.status == SessionStatus.SOL_RECEIVED
    assert session.sol_signature == result.signature
    assert session.sol_explorer_link == result.explorer_link
    assert session.signature is None


def test_transfer_without_session_touches_nothing(make_executor, store):
    rpc = FakeRpcClient()
    result = asyncio.run(make_executor(rpc=rpc).transfer_sol(RECIPIENT, 0.25, session_id="unknown"))

    assert result.amount == 0.25
    assert len(rpc.sent) == 1
    assert len(store) == 0


def test_malformed_address_never_broadcasts(make_executor, store):
    rpc = FakeRpcClient()
    add_session(store)

    with pytest.raises(ValidationError):
        asyncio.run(make_executor(rpc=rpc).transfer_sol("not-an-address", 0.1, session_id="session_1_abc"))

    assert rpc.sent == []
    assert store.get("session_1_abc").status == SessionStatus.PAYMENT_COMPLETED


@pytest.mark.parametrize("amount", [0, -0.1, float("nan")])
def test_invalid_amount_never_broadcasts(make_executor, amount):
    rpc = FakeRpcClient()
    with pytest.raises(ValidationError):
        asyncio.run(make_executor(rpc=rpc).transfer_sol(RECIPIENT, amount))
    assert rpc.sent == []


def test_missing_signer_is_a_configuration_error(make_executor):
    with pytest.raises(ConfigurationError, match="FUNDING_WALLET_SECRET"):
        asyncio.run(make_executor(with_signer=False).transfer_sol(RECIPIENT, 0.1))


def test_transient_failure_schedules_retry_and_releases_claim(make_executor, store):
    rpc = FakeRpcClient(send_errors=[Exception("TransactionExpiredBlockheightExceededError: block height exceeded")])
    add_session(store)

    with pytest.raises(OnChainSubmissionError) as excinfo:
        asyncio.run(make_executor(rpc=rpc).transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc", retry_count=1))

    error = excinfo.value
    assert error.retry_scheduled is True
    assert error.retry_count == 2
    assert error.to_dict() == {
        "status": "error",
        "error": "Transaction failed but will be retried automatically",
        "retryScheduled": True,
        "retryCount": 2,
    }
    assert store.get("session_1_abc").status == SessionStatus.PAYMENT_COMPLETED


def test_retry_after_transient_failure_succeeds(make_executor, store):
    rpc = FakeRpcClient(send_errors=[Exception("Blockhash not found")])
    add_session(store)
    executor = make_executor(rpc=rpc)

    with pytest.raises(OnChainSubmissionError):
        asyncio.run(executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"))
    result = asyncio.run(executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc", retry_count=1))

    assert store.get("session_1_abc").signature == result.signature


def test_transient_failure_after_retry_cap_is_fatal(make_executor, store):
    rpc = FakeRpcClient(send_errors=[Exception("block height exceeded")])
    add_session(store)

    with pytest.raises(OnChainSubmissionError) as excinfo:
        asyncio.run(make_executor(rpc=rpc).transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc", retry_count=3))

    assert excinfo.value.retry_scheduled is False
    session = store.get("session_1_abc")
    assert session.status == SessionStatus.ERROR
    assert session.error == "Transaction failed: block height exceeded"


def test_fatal_failure_marks_session_error(make_executor, store):
    rpc = FakeRpcClient(send_errors=[Exception("insufficient lamports")])
    add_session(store)

    with pytest.raises(OnChainSubmissionError) as excinfo:
        asyncio.run(make_executor(rpc=rpc).transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"))

    assert excinfo.value.transient is False
    assert excinfo.value.to_dict()["details"] == "insufficient lamports"
    assert store.get("session_1_abc").status == SessionStatus.ERROR


def test_settled_session_cannot_be_settled_again(make_executor, store):
    rpc = FakeRpcClient()
    add_session(store)
    executor = make_executor(rpc=rpc)
    asyncio.run(executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"))

    with pytest.raises(SessionConflict):
        asyncio.run(executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"))

    assert len(rpc.sent) == 1
    assert store.get("session_1_abc").status == SessionStatus.SOL_TRANSFERRED


def test_concurrent_settlement_broadcasts_once(make_executor, store):
    rpc = FakeRpcClient()
    add_session(store)
    executor = make_executor(rpc=rpc)

    async def settle_twice():
        return await asyncio.gather(
            executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"),
            executor.transfer_sol(RECIPIENT, 0.1, session_id="session_1_abc"),
            return_exceptions=True,
        )

    results = asyncio.run(settle_twice())

    conflicts = [r for r in results if isinstance(r, SessionConflict)]
    assert len(conflicts) == 1
    assert len(rpc.sent) == 1


def test_priority_fee_comes_from_estimator(make_executor):
    rpc = FakeRpcClient()
    fees = [{"slot": i, "prioritizationFee": 500000} for i in range(5)]
    asyncio.run(make_executor(rpc=rpc, fee_source=FakeFeeSource(fees)).transfer_sol(RECIPIENT, 0.1))

    message = Transaction.from_bytes(rpc.sent[0]).message
    compute_ix = message.instructions[0]
    # SetComputeUnitPrice: tag 3 followed by the u64 price
    assert compute_ix.data[0] == 3
    assert int.from_bytes(bytes(compute_ix.data[1:9]), "little") == 600000


def test_finalized_strategy_waits_for_confirmation(make_executor):
    rpc = FakeRpcClient()
    result = asyncio.run(
        make_executor(rpc=rpc, strategy=ConfirmationStrategy.FINALIZED).transfer_sol(RECIPIENT, 0.1)
    )
    assert result.confirmation_status == "finalized"
    assert len(rpc.confirmed) == 1


def test_wallet_differing_from_session_is_rejected(make_executor, store):
    rpc = FakeRpcClient()
    add_session(store)
    other_wallet = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"

    with pytest.raises(ValidationError, match="Wallet address does not match"):
        asyncio.run(make_executor(rpc=rpc).transfer_sol(other_wallet, 0.1, session_id="session_1_abc"))

    assert rpc.sent == []
    assert store.get("session_1_abc").status == SessionStatus.PAYMENT_COMPLETED
