"""
Hosted checkout sessions through Stripe.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol

import stripe
from loguru import logger

from onramp.config import HTTP_TIMEOUT
from onramp.exceptions import ConfigurationError, UpstreamUnavailable


class CheckoutGateway(Protocol):
    async def create_session(
        self,
        amount_minor: int,
        currency: str,
        product_name: str,
        product_description: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...

    async def retrieve_session(self, checkout_session_id: str) -> Optional[Dict[str, Any]]:
        ...


class StripeCheckoutGateway:
    """Creates and looks up Stripe Checkout sessions."""

    def __init__(self, secret_key: Optional[str], timeout: float = HTTP_TIMEOUT):
        """
        Initialize the gateway.

        Args:
            secret_key: Stripe secret API key
            timeout: Seconds to wait for Stripe before giving up
        """
        if not secret_key:
            logger.warning("STRIPE_SECRET_KEY not set. Checkout sessions will fail.")
        self.secret_key = secret_key
        self.timeout = timeout

    def _stripe(self):
        if not self.secret_key:
            raise ConfigurationError("Missing STRIPE_SECRET_KEY configuration")
        stripe.api_key = self.secret_key
        return stripe

    async def create_session(
        self,
        amount_minor: int,
        currency: str,
        product_name: str,
        product_description: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a one-item card payment session.

        Returns:
            Dict with the provider session `id`, hosted `url`, `amount_total`
            and `currency`

        Raises:
            UpstreamUnavailable: If Stripe rejects the request or cannot be reached
        """
        client = self._stripe()
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": product_name, "description": product_description},
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }
            ],
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.wait_for(
                asyncio.to_thread(client.checkout.Session.create, **params),
                timeout=self.timeout,
            )
        except (stripe.error.StripeError, asyncio.TimeoutError) as e:
            logger.error(f"Stripe session error: {str(e)}")
            raise UpstreamUnavailable("Could not create checkout session")

        logger.info(
            f"Stripe checkout session created: {session['id']}",
            extra={"amount": amount_minor, "currency": currency}
        )
        return {
            "id": session["id"],
            "url": session["url"],
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
        }

    async def retrieve_session(self, checkout_session_id: str) -> Optional[Dict[str, Any]]:
        """
        Look up a checkout session by id.

        Returns:
            Dict with id, status, amount_total, currency and metadata, or
            None when Stripe does not know the id

        Raises:
            UpstreamUnavailable: If Stripe cannot be reached
        """
        client = self._stripe()
        try:
            session = await asyncio.wait_for(
                asyncio.to_thread(client.checkout.Session.retrieve, checkout_session_id),
                timeout=self.timeout,
            )
        except stripe.error.InvalidRequestError:
            logger.info(f"Session {checkout_session_id} not found in Stripe")
            return None
        except (stripe.error.StripeError, asyncio.TimeoutError) as e:
            logger.error(f"Error fetching Stripe session {checkout_session_id}: {str(e)}")
            raise UpstreamUnavailable("Failed to retrieve payment status")

        metadata = session.get("metadata") or {}
        return {
            "id": session["id"],
            "status": session.get("status"),
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
            "metadata": dict(metadata),
        }
