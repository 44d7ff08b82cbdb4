"""
Health, signup and token price endpoints.
"""

from fastapi import APIRouter, Depends
from loguru import logger

from onramp.exceptions import ValidationError
from onramp.handlers.dependencies import get_services
from onramp.handlers.schemas import SignupRequest
from onramp.services import Services
from onramp.solana.models import utcnow
from onramp.solana.wallet_manager import derive_signup_keypair

router = APIRouter(prefix="/api", tags=["account"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "message": "Backend is running",
        "timestamp": utcnow().isoformat(),
    }


@router.post("/signup")
async def signup(request: SignupRequest):
    """Public key derived deterministically from the email; the secret is never returned."""
    if not request.email or not isinstance(request.email, str):
        raise ValidationError("Email required")

    keypair = derive_signup_keypair(request.email)
    logger.info(f"Signup key derived: {keypair.pubkey()}")
    return {"publicKey": str(keypair.pubkey())}


@router.get("/token-price/{identifier}")
async def token_price(identifier: str, services: Services = Depends(get_services)):
    result = await services.token_prices.get_token_price(identifier)
    return result.model_dump(by_alias=True)
