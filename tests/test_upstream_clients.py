import asyncio

import pytest
import stripe

from onramp.api.api_client import ApiBadResponseError, ApiClientError, ApiTimeoutError, is_retryable_client_error
from onramp.api.checkout_gateway import StripeCheckoutGateway
from onramp.api.jupiter_client import JupiterClient
from onramp.api.price_oracle import PriceOracle
from onramp.exceptions import ConfigurationError, UpstreamUnavailable
from onramp.utils.retry_utils import RetryPolicy
from tests.fakes import RECIPIENT, TOKEN_MINT


def stub_requests(client, *responses):
    """Replace the blocking request with canned responses; exceptions are raised."""
    calls = []
    queue = list(responses)

    def fake_request(method, endpoint, **kwargs):
        calls.append(endpoint)
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    client._make_request = fake_request
    return calls


@pytest.mark.parametrize("error, retryable", [
    (ApiBadResponseError("bad request", status_code=400), False),
    (ApiBadResponseError("not found", status_code=404), False),
    (ApiBadResponseError("rate limited", status_code=429), True),
    (ApiBadResponseError("bad gateway", status_code=502), True),
    (ApiTimeoutError("timed out"), True),
    (ApiClientError("connection reset"), True),
])
def test_client_error_classification(error, retryable):
    assert is_retryable_client_error(error) is retryable


def test_rejected_quote_request_is_not_retried():
    jupiter = JupiterClient(retry_policy=RetryPolicy(base_delay=0))
    calls = stub_requests(jupiter, ApiBadResponseError("API returned 400: invalid mint", status_code=400))

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(jupiter.get_quote(output_mint=TOKEN_MINT, amount=100_000_000))

    assert calls == ["/quote"]


def test_server_errors_are_retried_until_a_quote_arrives():
    jupiter = JupiterClient(retry_policy=RetryPolicy(base_delay=0))
    calls = stub_requests(
        jupiter,
        ApiBadResponseError("API returned 503", status_code=503),
        {"outAmount": "2500000"},
    )

    quote = asyncio.run(jupiter.get_quote(output_mint=TOKEN_MINT, amount=100_000_000))

    assert quote["outAmount"] == "2500000"
    assert calls == ["/quote", "/quote"]


def test_price_oracle_reads_each_currency():
    oracle = PriceOracle()
    stub_requests(oracle, {"solana": {"usd": 150.5, "inr": 12500}})

    assert asyncio.run(oracle.get_sol_prices()) == {"usd": 150.5, "inr": 12500.0}
    assert asyncio.run(oracle.get_sol_price("inr")) == 12500.0


@pytest.mark.parametrize("response", [
    {"solana": {"usd": 150.5}},
    {"error": "rate limited"},
    {"solana": {"usd": "n/a", "inr": 12500}},
    [],
])
def test_price_oracle_rejects_unusable_payloads(response):
    oracle = PriceOracle()
    stub_requests(oracle, response)

    with pytest.raises(UpstreamUnavailable, match="Unable to fetch current SOL price"):
        asyncio.run(oracle.get_sol_price("usd"))


@pytest.mark.parametrize("price", [0, -1])
def test_price_oracle_rejects_non_positive_price(price):
    oracle = PriceOracle()
    stub_requests(oracle, {"solana": {"usd": price, "inr": 12500}})

    with pytest.raises(UpstreamUnavailable, match="non-positive"):
        asyncio.run(oracle.get_sol_price("usd"))


@pytest.mark.parametrize("error", [
    ApiTimeoutError("Request timed out"),
    ApiBadResponseError("API returned 500", status_code=500),
    ApiClientError("Request failed: connection refused"),
])
def test_price_oracle_transport_errors_are_upstream_unavailable(error):
    oracle = PriceOracle()
    stub_requests(oracle, error)

    with pytest.raises(UpstreamUnavailable) as excinfo:
        asyncio.run(oracle.get_sol_price("usd"))

    assert excinfo.value.status_code == 503


def test_stripe_session_is_summarised(monkeypatch):
    def fake_retrieve(checkout_session_id):
        return {
            "id": checkout_session_id,
            "status": "complete",
            "amount_total": 1500,
            "currency": "usd",
            "metadata": {"walletAddress": RECIPIENT},
        }

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    gateway = StripeCheckoutGateway("sk_test_123")

    session = asyncio.run(gateway.retrieve_session("cs_test_abc"))

    assert session == {
        "id": "cs_test_abc",
        "status": "complete",
        "amount_total": 1500,
        "currency": "usd",
        "metadata": {"walletAddress": RECIPIENT},
    }


def test_unknown_stripe_session_is_none(monkeypatch):
    def fake_retrieve(checkout_session_id):
        raise stripe.error.InvalidRequestError(f"No such checkout.session: '{checkout_session_id}'", "id")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)

    assert asyncio.run(StripeCheckoutGateway("sk_test_123").retrieve_session("cs_missing")) is None


def test_stripe_outage_is_upstream_unavailable(monkeypatch):
    def fake_retrieve(checkout_session_id):
        raise stripe.error.APIConnectionError("Could not connect to Stripe")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)

    with pytest.raises(UpstreamUnavailable, match="Failed to retrieve payment status"):
        asyncio.run(StripeCheckoutGateway("sk_test_123").retrieve_session("cs_test_abc"))


def test_stripe_without_secret_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="STRIPE_SECRET_KEY"):
        asyncio.run(StripeCheckoutGateway(None).retrieve_session("cs_test_abc"))
