"""
Wallet sign-in helpers.

Nonces live in the Django cache (Redis in production) so the challenge
survives across stateless workers, and each nonce can be used once.
"""

import logging
import re
import secrets
from typing import Optional, Tuple

from django.conf import settings
from django.core.cache import cache
from eth_account import Account
from eth_account.messages import encode_defunct

logger = logging.getLogger(__name__)

WALLET_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_valid_wallet_address(address) -> bool:
    return isinstance(address, str) and bool(WALLET_ADDRESS_RE.match(address))


def is_valid_tx_hash(tx_hash) -> bool:
    return isinstance(tx_hash, str) and bool(TX_HASH_RE.match(tx_hash))


def recover_signer(message: str, signature: str) -> Optional[str]:
    """Address (lower-case) that produced an EIP-191 personal_sign signature."""
    try:
        signer = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception:
        logger.warning("Could not recover signer from signature", exc_info=True)
        return None
    return signer.lower()


def signature_matches(message: str, signature: str, address: str) -> bool:
    signer = recover_signer(message, signature)
    return signer is not None and signer == address.lower()


class WalletNonceManager:
    """
    Cache-backed sign-in challenges, one per wallet address.
    """

    KEY_PREFIX = "wallet-nonce"

    @classmethod
    def _key(cls, wallet_address: str) -> str:
        return f"{cls.KEY_PREFIX}:{wallet_address.lower()}"

    @staticmethod
    def build_message(wallet_address: str, nonce: str) -> str:
        return (
            f"Welcome to {settings.SITE_NAME}!\n\n"
            "Sign this message to authenticate your wallet.\n\n"
            f"Wallet: {wallet_address.lower()}\n"
            f"Nonce: {nonce}\n\n"
            "This request will not trigger a blockchain transaction or cost any gas fees."
        )

    @classmethod
    def create(cls, wallet_address: str) -> Tuple[str, str]:
        nonce = secrets.token_hex(16)
        message = cls.build_message(wallet_address, nonce)
        cache.set(
            cls._key(wallet_address),
            {"nonce": nonce, "message": message},
            timeout=settings.WALLET_NONCE_TTL_SECONDS,
        )
        logger.info("Wallet nonce issued for %s...", wallet_address[:10])
        return nonce, message

    @classmethod
    def get_message(cls, wallet_address: str) -> Optional[str]:
        stored = cache.get(cls._key(wallet_address))
        if not stored:
            return None
        return stored["message"]

    @classmethod
    def consume(cls, wallet_address: str) -> bool:
        """Deletes the challenge. Only the caller that actually removed it may sign in."""
        return bool(cache.delete(cls._key(wallet_address)))
