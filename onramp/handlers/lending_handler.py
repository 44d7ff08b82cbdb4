from fastapi import APIRouter, Depends

from onramp.exceptions import ValidationError
from onramp.handlers.dependencies import get_services
from onramp.handlers.schemas import LendRequest
from onramp.services import Services
from onramp.utils.validation_utils import is_positive_number

router = APIRouter(prefix="/api", tags=["lending"])


@router.post("/solend-lend")
async def solend_lend(request: LendRequest, services: Services = Depends(get_services)):
    """Unsigned deposit transaction for the caller to sign and submit."""
    if not request.pool or not isinstance(request.pool, dict):
        raise ValidationError("Missing or invalid pool")
    if not is_positive_number(request.amount):
        raise ValidationError("Missing or invalid amount")
    if not request.user_public_key or not isinstance(request.user_public_key, str):
        raise ValidationError("Missing or invalid userPublicKey")

    transaction = await services.lending.build_deposit(request.pool, request.amount, request.user_public_key)
    return {"transaction": transaction}
