"""
Checkout session creation: price the purchase, open a hosted checkout and
register the payment session.
"""

import secrets
import string
import time
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

from loguru import logger

from onramp.api.checkout_gateway import CheckoutGateway
from onramp.api.price_oracle import PriceOracle
from onramp.config import DEFAULT_CURRENCY, REGIONAL_COUNTRY_CODE, REGIONAL_CURRENCY, Settings
from onramp.exceptions import ConfigurationError
from onramp.solana.models import CheckoutRequest, CheckoutSessionResult, PaymentSession, SessionStatus
from onramp.state.session_store import PaymentSessionStore
from onramp.utils.validation_utils import (
    is_positive_number,
    validate_country,
    validate_email,
    validate_wallet_field,
)

SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_session_id() -> str:
    """Opaque id of the form session_<epoch-ms>_<random>."""
    suffix = "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(11))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def currency_for_country(country: Optional[str]) -> str:
    return REGIONAL_CURRENCY if country == REGIONAL_COUNTRY_CODE else DEFAULT_CURRENCY


def resolve_amounts(
    rate: float,
    default_minor: int,
    sol_amount: Optional[float] = None,
    dollar_amount: Optional[float] = None,
) -> Tuple[int, float]:
    """
    Work out the fiat charge and the SOL it buys.

    A positive `sol_amount` wins over a positive `dollar_amount`; with neither,
    the configured default charge is used.

    Args:
        rate: Price of one SOL in the checkout currency
        default_minor: Default charge in minor units
        sol_amount: Requested SOL amount
        dollar_amount: Requested fiat amount in major units

    Returns:
        Tuple of (charge in minor units, SOL amount rounded to 8 decimals)
    """
    if is_positive_number(sol_amount):
        minor = round(sol_amount * rate * 100)
        sol = sol_amount
    elif is_positive_number(dollar_amount):
        minor = round(dollar_amount * 100)
        sol = (minor / 100) / rate
    else:
        minor = default_minor
        sol = (minor / 100) / rate

    return minor, round(sol, 8)


def format_amount(value: float) -> str:
    """Plain decimal string, without a trailing .0 for whole numbers."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


class CheckoutSessionService:
    """Opens hosted checkout sessions and registers them for settlement."""

    def __init__(
        self,
        settings: Settings,
        price_oracle: PriceOracle,
        gateway: CheckoutGateway,
        store: PaymentSessionStore,
    ):
        self.settings = settings
        self.price_oracle = price_oracle
        self.gateway = gateway
        self.store = store

    async def create_session(self, request: CheckoutRequest) -> CheckoutSessionResult:
        """
        Create a checkout session for a SOL top-up or token purchase.

        Args:
            request: Caller input

        Returns:
            The hosted checkout url plus the amounts it was priced at

        Raises:
            ValidationError: If the wallet, email or country is malformed
            UpstreamUnavailable: If the price feed or Stripe is unreachable
            ConfigurationError: If the charge is not positive or URLs are missing
        """
        wallet_address = validate_wallet_field(request.wallet_address)
        email = validate_email(request.email)
        country = validate_country(request.country)

        currency = currency_for_country(country)
        rate = await self.price_oracle.get_sol_price(currency)

        amount_minor, sol_amount = resolve_amounts(
            rate,
            self.settings.default_price_for(currency),
            sol_amount=request.sol_amount,
            dollar_amount=request.dollar_amount,
        )
        if amount_minor <= 0:
            raise ConfigurationError("Invalid price configuration")

        backend_url = self.settings.backend_url
        frontend_url = self.settings.frontend_url
        if not backend_url or not frontend_url:
            raise ConfigurationError("Missing required URL configuration")

        session_id = new_session_id()
        is_token_swap = bool(request.token_symbol)
        fiat_amount = amount_minor / 100
        display_sol = f"{sol_amount:.4f}"

        if is_token_swap:
            product_name = f"{request.token_symbol} Token Purchase (via SOL)"
            tokens = format_amount(request.token_amount) if request.token_amount else "tokens"
            product_description = f"Buy {tokens} {request.token_symbol} using SOL on Solana Mainnet"
        else:
            product_name = f"Solana Mainnet Top-up ({display_sol} SOL)"
            product_description = f"Adds {display_sol} SOL to your Solana wallet on Mainnet"

        checkout = await self.gateway.create_session(
            amount_minor=amount_minor,
            currency=currency,
            product_name=product_name,
            product_description=product_description,
            success_url=self._success_url(backend_url, session_id, wallet_address, sol_amount, request),
            cancel_url=f"{frontend_url}?canceled=true",
            metadata=self._metadata(session_id, wallet_address, sol_amount, fiat_amount, currency, request),
            customer_email=email,
        )

        self.store.create(session_id, PaymentSession(
            id=session_id,
            wallet_address=wallet_address,
            fiat_amount=fiat_amount,
            fiat_amount_minor=amount_minor,
            fiat_currency=currency,
            sol_amount=sol_amount,
            checkout_session_id=checkout["id"],
            status=SessionStatus.CREATED,
            is_token_swap=is_token_swap,
            token_symbol=request.token_symbol or None,
            token_address=request.token_address or None,
            token_amount=request.token_amount or None,
        ))

        logger.info(
            f"Checkout session {session_id} created for {wallet_address}: "
            f"{fiat_amount} {currency.upper()} → {sol_amount} SOL",
            extra={"session_id": session_id, "checkout_session_id": checkout["id"], "is_token_swap": is_token_swap}
        )

        return CheckoutSessionResult(
            url=checkout["url"],
            sol_amount=sol_amount,
            fiat_amount=fiat_amount,
            fiat_currency=currency,
            session_id=session_id,
            is_token_swap=is_token_swap,
            token_symbol=request.token_symbol or None,
            token_amount=request.token_amount or None,
        )

    @staticmethod
    def _success_url(
        backend_url: str,
        session_id: str,
        wallet_address: str,
        sol_amount: float,
        request: CheckoutRequest,
    ) -> str:
        query = {
            "amount": format_amount(sol_amount),
            "wallet": wallet_address,
            "success": "true",
            "session_id": session_id,
        }
        if request.token_symbol:
            query.update(
                token_swap="true",
                token_symbol=request.token_symbol,
                token_address=request.token_address or "",
            )
        return f"{backend_url}/payment-success?{urlencode(query)}"

    @staticmethod
    def _metadata(
        session_id: str,
        wallet_address: str,
        sol_amount: float,
        fiat_amount: float,
        currency: str,
        request: CheckoutRequest,
    ) -> Dict[str, str]:
        return {
            "walletAddress": wallet_address,
            "solAmount": format_amount(sol_amount),
            "fiatAmount": format_amount(fiat_amount),
            "fiatCurrency": currency,
            "sessionId": session_id,
            "isTokenSwap": "true" if request.token_symbol else "false",
            "tokenSymbol": request.token_symbol or "",
            "tokenAddress": request.token_address or "",
            "tokenAmount": format_amount(request.token_amount) if request.token_amount else "",
        }
