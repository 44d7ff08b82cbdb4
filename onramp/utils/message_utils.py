import html
import json
from typing import Any, Dict, Optional

from onramp.solana.models import PaymentSession, SessionStatus

STRIPE_FALLBACK_MESSAGE = "Your payment was successful. Processing your transaction..."


def format_status_message(session: PaymentSession) -> str:
    """
    Format the human-readable message for a session's status.

    Args:
        session: The payment session

    Returns:
        Message shown to the user while polling the session
    """
    status = session.status

    if status == SessionStatus.CREATED:
        return "Your payment is being processed."
    if status == SessionStatus.PAYMENT_COMPLETED:
        return "Payment received. Sending SOL to your wallet..."
    if status == SessionStatus.SOL_TRANSFERRED:
        return (
            "SOL successfully sent to your wallet! "
            f"View the transaction on Solana Explorer: {session.explorer_link}"
        )
    if status == SessionStatus.TOKEN_SWAP_COMPLETED:
        return (
            "Tokens successfully swapped and sent to your wallet! "
            f"View the transaction on Solana Explorer: {session.explorer_link}"
        )
    if status == SessionStatus.ERROR:
        return f"There was an error: {session.error}"
    return "Processing your transaction..."


def format_session_status(session: PaymentSession) -> Dict[str, Any]:
    """Session snapshot for the payment-status endpoint."""
    payload = session.model_dump(by_alias=True, mode="json")
    payload["message"] = format_status_message(session)
    return payload


def format_checkout_status(checkout: Dict[str, Any]) -> Dict[str, Any]:
    """Status payload built from the checkout provider's record of a session."""
    metadata = checkout.get("metadata") or {}
    return {
        "id": checkout["id"],
        "status": checkout.get("status"),
        "amount": checkout.get("amount_total"),
        "currency": checkout.get("currency"),
        "walletAddress": metadata.get("walletAddress") or "unknown",
        "solAmount": metadata.get("solAmount") or "0.1",
        "isTokenSwap": metadata.get("isTokenSwap") == "true",
        "tokenSymbol": metadata.get("tokenSymbol"),
        "tokenAddress": metadata.get("tokenAddress"),
        "tokenAmount": metadata.get("tokenAmount"),
        "message": STRIPE_FALLBACK_MESSAGE,
    }


def format_payment_complete_event(
    session_id: Optional[str],
    wallet_address: Optional[str],
    amount: float,
    is_token_swap: bool,
    token_symbol: Optional[str],
    token_address: Optional[str],
    token_amount: Optional[float],
) -> Dict[str, Any]:
    """The message posted to the opener window once payment completes."""
    return {
        "type": "PAYMENT_COMPLETE",
        "sessionId": session_id or "",
        "walletAddress": wallet_address or "",
        "amount": amount,
        "status": SessionStatus.PAYMENT_COMPLETED.value,
        "isTokenSwap": is_token_swap,
        "tokenSymbol": token_symbol or "",
        "tokenAddress": token_address or "",
        "tokenAmount": token_amount or 0,
    }


def render_payment_success_page(event: Dict[str, Any], frontend_url: str) -> str:
    """
    Render the page the checkout redirects to after payment.

    The page posts `event` to the window that opened the checkout, closes
    itself, and falls back to a redirect to the frontend.
    """
    # "</" is escaped so the payload cannot terminate the script element
    event_json = json.dumps(event).replace("</", "<\\/")
    redirect_json = json.dumps(frontend_url).replace("</", "<\\/")

    return f"""<!DOCTYPE html>
<html>
<head>
  <title>Payment Processing</title>
  <style>
    body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; }}
    .success {{ color: #4CAF50; }}
  </style>
  <script>
    function notifyParentAndClose() {{
      var frontendUrl = {redirect_json};
      try {{
        if (window.opener && !window.opener.closed) {{
          window.opener.postMessage({event_json}, '*');
          window.close();
          setTimeout(function() {{
            window.location.href = frontendUrl;
          }}, 500);
        }} else {{
          window.location.href = frontendUrl;
        }}
      }} catch (err) {{
        console.error('Error:', err);
        window.location.href = frontendUrl;
      }}
    }}
    notifyParentAndClose();
  </script>
</head>
<body>
  <h1 class="success">Payment Successful!</h1>
  <p>Redirecting to the app...</p>
  <p><a href="{html.escape(frontend_url, quote=True)}">Return to the app</a></p>
</body>
</html>
"""
