import pytest
from solders.keypair import Keypair

from onramp.config import ConfirmationStrategy
from onramp.solana.fee_oracle import PriorityFeeEstimator
from onramp.solana.tx_executor import SettlementExecutor
from onramp.solana.wallet_manager import AccountSigner
from onramp.state.session_store import InMemorySessionStore
from tests.fakes import FakeJupiter, FakeRpcClient, build_swap_transaction


@pytest.fixture
def signer():
    return AccountSigner(Keypair())


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def rpc():
    return FakeRpcClient()


@pytest.fixture
def make_executor(signer, store):
    def _make(rpc=None, jupiter=None, fee_source=None, strategy=ConfirmationStrategy.OPTIMISTIC, with_signer=True):
        return SettlementExecutor(
            client=rpc or FakeRpcClient(),
            signer=signer if with_signer else None,
            fee_estimator=PriorityFeeEstimator(fee_source),
            jupiter=jupiter or FakeJupiter(build_swap_transaction(signer)),
            store=store,
            confirmation_strategy=strategy,
        )
    return _make
