"""
Funding account signer and deterministic signup keys.
"""

import hashlib
import json
from typing import Optional

import base58
from loguru import logger
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from onramp.exceptions import ConfigurationError


class AccountSigner:
    """
    Signing capability for the platform funding account.

    The secret stays inside the wrapped keypair; callers only get the
    public key and the ability to sign transactions.
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def from_secret(cls, secret: str) -> "AccountSigner":
        """
        Load a signer from a base58 secret key or a JSON byte array.

        Raises:
            ConfigurationError: If the secret cannot be decoded
        """
        value = secret.strip()
        try:
            if value.startswith("["):
                keypair = Keypair.from_bytes(bytes(json.loads(value)))
            else:
                keypair = Keypair.from_bytes(base58.b58decode(value))
        except (ValueError, TypeError):
            logger.error("Invalid funding wallet secret format")
            raise ConfigurationError("Invalid FUNDING_WALLET_SECRET format")

        logger.info(f"Funding wallet address: {keypair.pubkey()}")
        return cls(keypair)

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    def __repr__(self) -> str:
        return f"AccountSigner({self.pubkey})"


def load_funding_signer(secret: Optional[str]) -> Optional[AccountSigner]:
    """Signer for the configured funding secret, or None when unset."""
    if not secret:
        logger.warning("FUNDING_WALLET_SECRET not set. SOL transfers will fail.")
        return None
    return AccountSigner.from_secret(secret)


def derive_signup_keypair(email: str) -> Keypair:
    """
    Deterministically derive a keypair from an email address.

    The ed25519 seed is sha256(email), so the same email always yields the
    same public key.
    """
    seed = hashlib.sha256(email.encode("utf-8")).digest()
    return Keypair.from_seed(seed[:32])
