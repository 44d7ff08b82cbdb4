"""
Checkout and payment status endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, JSONResponse
from loguru import logger

from onramp.exceptions import SessionNotFound, SessionStateError, UpstreamUnavailable
from onramp.handlers.dependencies import get_services
from onramp.services import Services
from onramp.solana.models import CheckoutRequest, SessionStatus
from onramp.utils.message_utils import (
    format_checkout_status,
    format_payment_complete_event,
    format_session_status,
    render_payment_success_page,
)

router = APIRouter(tags=["payments"])


@router.post("/api/create-checkout-session")
async def create_checkout_session(request: CheckoutRequest, services: Services = Depends(get_services)):
    """Open a hosted checkout for a SOL top-up or token purchase."""
    try:
        result = await services.checkout.create_session(request)
    except UpstreamUnavailable as e:
        # Checkout creation surfaces provider outages as a plain server error
        return JSONResponse(status_code=500, content=e.to_dict())

    return result.model_dump(by_alias=True)


@router.get("/payment-success", response_class=HTMLResponse)
async def payment_success(
    session_id: Optional[str] = None,
    wallet: Optional[str] = None,
    amount: Optional[str] = None,
    token_swap: Optional[str] = None,
    token_symbol: Optional[str] = None,
    token_address: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Landing page after checkout; records the payment and notifies the opener window."""
    logger.info(
        f"Payment success for session: {session_id}, wallet: {wallet}, amount: {amount}, token_swap: {token_swap}"
    )

    try:
        sol_amount = float(amount) if amount else services.settings.default_sol_amount
    except ValueError:
        sol_amount = services.settings.default_sol_amount

    is_token_swap = token_swap == "true"
    token_amount = None

    session = services.store.get(session_id) if session_id else None
    if session:
        is_token_swap = session.is_token_swap
        token_symbol = session.token_symbol
        token_address = session.token_address
        token_amount = session.token_amount

        if session.status == SessionStatus.CREATED:
            try:
                services.store.update(session.id, {"status": SessionStatus.PAYMENT_COMPLETED})
            except SessionStateError as e:
                logger.warning(f"Could not mark session {session.id} paid: {e.message}")

    event = format_payment_complete_event(
        session_id=session_id,
        wallet_address=wallet,
        amount=sol_amount,
        is_token_swap=is_token_swap,
        token_symbol=token_symbol,
        token_address=token_address,
        token_amount=token_amount,
    )
    return HTMLResponse(render_payment_success_page(event, services.settings.frontend_url))


@router.get("/api/payment-status/{session_id}")
async def payment_status(session_id: str, services: Services = Depends(get_services)):
    """Current state of a payment session, falling back to the checkout provider."""
    logger.info(f"Checking payment status for session: {session_id}")

    session = services.store.get(session_id)
    if session:
        return format_session_status(session)

    logger.info(f"Session {session_id} not found in cache, checking Stripe...")
    checkout = await services.gateway.retrieve_session(session_id)
    if not checkout:
        raise SessionNotFound("Session not found")

    return format_checkout_status(checkout)
