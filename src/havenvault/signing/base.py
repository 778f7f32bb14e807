"""Base interfaces for operator co-signing.

Signing flow:
1. Guard approves the user-signed transaction
2. Submit the full transaction bytes to the signer with the operator key id
3. Signer returns the transaction with the operator slot filled
4. Sponsor merges only the operator signature and broadcasts

Backends never expose private key material; they return signed bytes only.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class SignerType(str, Enum):
    """Type of signing backend."""
    LOCAL = "local"     # Keypair in memory (development and tests)
    REMOTE = "remote"   # Remote custody wallet API


class SignerBackend(ABC):
    """Abstract base class for signing backends."""

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @abstractmethod
    async def sign_transaction(self, tx_bytes: bytes, signer_id: str) -> bytes:
        """Add the operator signature to a serialized transaction.

        Args:
            tx_bytes: Serialized transaction, user signature already present
            signer_id: Identifier of the operator key (wallet id or address)

        Returns:
            Serialized transaction bytes carrying the operator signature

        Raises:
            SigningError: if the backend cannot produce a signature
        """
        pass

    @abstractmethod
    async def get_public_key(self, signer_id: str) -> Optional[str]:
        """Base58 address for a key identifier, or None if unknown."""
        pass

    async def health_check(self) -> bool:
        """Check if the signing backend is available.

        Returns:
            True if backend is ready to sign
        """
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value})"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass


class KeyNotFoundError(SigningError):
    """Exception raised when signing key is not found."""
    pass


class SigningTimeoutError(SigningError):
    """Exception raised when signing operation times out."""
    pass
