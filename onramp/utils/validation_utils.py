import math
import re
from typing import Any, Optional

from loguru import logger
from solders.pubkey import Pubkey

from onramp.exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_wallet_field(wallet_address: Any) -> str:
    """
    Check that a wallet address was supplied as a non-empty string.

    Args:
        wallet_address: Raw caller input

    Returns:
        The wallet address

    Raises:
        ValidationError: If the address is missing or not a string
    """
    if not wallet_address or not isinstance(wallet_address, str):
        raise ValidationError("Missing or invalid walletAddress")
    return wallet_address.strip()


def parse_public_key(address: Any, field: str = "wallet address") -> Pubkey:
    """
    Parse a base58 Solana address.

    Raises:
        ValidationError: If the value is not a valid public key
    """
    if not address or not isinstance(address, str):
        raise ValidationError(f"Missing or invalid {field}")
    try:
        return Pubkey.from_string(address.strip())
    except ValueError:
        logger.warning(f"Rejected malformed {field}: {address}")
        raise ValidationError(f"Invalid {field}: {address}")


def validate_email(email: Optional[str]) -> Optional[str]:
    if email is None or email == "":
        return None
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")
    return email


def validate_country(country: Any) -> Optional[str]:
    """Accept an optional two-letter country code."""
    if country is None or country == "":
        return None
    if not isinstance(country, str) or len(country) != 2:
        raise ValidationError("Invalid country code")
    return country


def validate_positive_amount(amount: Any, field: str = "amount") -> float:
    """
    Check that an amount is a finite positive number.

    Raises:
        ValidationError: If the amount is not a finite number above zero
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise ValidationError(f"Invalid {field}: {amount}")
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError(f"Invalid {field}: {amount}")
    return float(amount)


def is_positive_number(value: Any) -> bool:
    """True for finite numbers above zero (booleans excluded)."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )
