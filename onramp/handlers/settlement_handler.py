"""
Settlement endpoints: SOL transfers, swaps and swap quotes.
"""

from fastapi import APIRouter, Depends
from loguru import logger

from onramp.api.checkout_service import format_amount
from onramp.api.jupiter_client import quote_output_amount
from onramp.config import JUPITER_SWAP_URL, LAMPORTS_PER_SOL
from onramp.exceptions import UpstreamUnavailable, ValidationError
from onramp.handlers.dependencies import get_services
from onramp.handlers.schemas import SwapQuoteRequest, SwapTokensRequest, TransferSolRequest
from onramp.services import Services
from onramp.utils.validation_utils import is_positive_number, parse_public_key

router = APIRouter(prefix="/api", tags=["settlement"])


@router.post("/transfer-sol")
async def transfer_sol(request: TransferSolRequest, services: Services = Depends(get_services)):
    """Send SOL from the funding wallet to the caller's wallet."""
    if not request.wallet_address:
        raise ValidationError("Wallet address is required")

    amount = request.amount if request.amount is not None else services.settings.default_sol_amount
    result = await services.executor.transfer_sol(
        request.wallet_address,
        amount=amount,
        session_id=request.session_id,
        retry_count=request.retry_count,
    )

    return {
        "status": "success",
        "transaction": result.signature,
        "explorerLink": result.explorer_link,
        "amount": result.amount,
        "message": f"SOL transfer of {format_amount(result.amount)} initiated successfully. Transaction sent to network.",
    }


@router.post("/swap-tokens")
async def swap_tokens(request: SwapTokensRequest, services: Services = Depends(get_services)):
    """Swap funding SOL into a token and deliver it to the caller's wallet."""
    logger.info(f"Swap tokens request received: {request.model_dump(by_alias=True)}")

    if not request.wallet_address:
        raise ValidationError("Wallet address is required")
    if not request.to_token:
        raise ValidationError("Destination token address is required")
    if not is_positive_number(request.amount):
        raise ValidationError("Valid SOL amount is required")

    result = await services.executor.swap_and_deliver(
        request.wallet_address,
        output_token_address=request.to_token,
        sol_amount=request.amount,
        session_id=request.session_id,
    )

    return {
        "status": "success",
        "transactions": result.transaction_dicts(),
        "finalToken": result.final_token.model_dump(by_alias=True),
        "message": result.message,
    }


@router.post("/get-swap-quote")
async def get_swap_quote(request: SwapQuoteRequest, services: Services = Depends(get_services)):
    """Quote a swap without executing it."""
    if not request.output_mint:
        raise ValidationError("Output token mint address is required")
    if not is_positive_number(request.amount):
        raise ValidationError("Valid amount is required")
    parse_public_key(request.output_mint, "outputMint")
    parse_public_key(request.input_mint, "inputMint")

    input_amount = round(request.amount * LAMPORTS_PER_SOL)
    quote = await services.jupiter.get_quote(
        output_mint=request.output_mint,
        amount=input_amount,
        input_mint=request.input_mint,
        slippage_bps=request.slippage_bps,
    )

    out_amount = int(quote["outAmount"])
    if out_amount <= 0:
        raise UpstreamUnavailable("Jupiter API error", details={"details": "Quote returned no output"})

    output_amount = quote_output_amount(quote)
    swap_link = (
        f"{JUPITER_SWAP_URL}/{request.input_mint}-{request.output_mint}"
        f"?inAmount={format_amount(request.amount)}"
        f"&outAmount={format_amount(output_amount)}"
        f"&slippage={format_amount(request.slippage_bps / 100)}"
    )

    return {
        "success": True,
        "jupiterQuote": quote,
        "inputAmountSol": request.amount,
        "outputAmountToken": output_amount,
        "effectivePrice": f"{input_amount / out_amount:.6f}",
        "swapLink": swap_link,
    }
