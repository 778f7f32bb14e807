"""Local signing backend.

Holds one ed25519 keypair in memory. Suitable for:
- Development against devnet
- Tests

WARNING: The operator key sits in process memory. Production deployments
use the remote custody backend.
"""

import logging
from typing import Optional

import base58
from solders.keypair import Keypair

from havenvault.signing.base import KeyNotFoundError, SignerBackend, SignerType, SigningError
from havenvault.solana.wire import message_bytes, parse_transaction, signer_index, with_signature

logger = logging.getLogger(__name__)


def load_signing_key(secret: str) -> Keypair:
    """Parse a base58 secret: a 64-byte keypair or a 32-byte seed."""
    raw = base58.b58decode(secret.strip())
    if len(raw) == 64:
        keypair = Keypair.from_seed(raw[:32])
        if bytes(keypair.pubkey()) != raw[32:]:
            raise ValueError("Keypair public half does not match its seed")
        return keypair
    if len(raw) == 32:
        return Keypair.from_seed(raw)
    raise ValueError(f"Expected a 32 or 64 byte secret, got {len(raw)}")


class LocalSigner(SignerBackend):
    """Signs with an in-memory keypair.

    Args:
        keypair: the operator key; loaded from FEE_PAYER_SECRET_KEY when omitted
    """

    def __init__(self, keypair: Optional[Keypair] = None):
        super().__init__(SignerType.LOCAL)
        if keypair is None:
            from havenvault.config import get_settings

            secret = get_settings().fee_payer_secret_key
            if not secret:
                raise KeyNotFoundError("FEE_PAYER_SECRET_KEY is not set")
            keypair = load_signing_key(secret)
            logger.info("Loaded local fee payer key")
        self._keypair = keypair
        self.public_key = keypair.pubkey()

    async def get_public_key(self, signer_id: str) -> Optional[str]:
        if signer_id and signer_id != str(self.public_key):
            return None
        return str(self.public_key)

    async def sign_transaction(self, tx_bytes: bytes, signer_id: str) -> bytes:
        if signer_id and signer_id != str(self.public_key):
            raise KeyNotFoundError(f"No local key for {signer_id}")

        try:
            tx = parse_transaction(tx_bytes)
        except ValueError as e:
            raise SigningError(f"Cannot parse transaction: {e}") from e

        index = signer_index(tx, self.public_key)
        if index is None:
            raise SigningError(f"{self.public_key} is not a required signer")

        signature = self._keypair.sign_message(message_bytes(tx))
        return bytes(with_signature(tx, index, signature))
