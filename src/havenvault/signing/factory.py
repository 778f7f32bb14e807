"""Signer factory.

Creates the operator signing backend based on configuration.
"""

import logging
from typing import Optional

from havenvault.config import get_settings
from havenvault.signing.base import SignerBackend, SignerType

logger = logging.getLogger(__name__)


def get_signer_type() -> SignerType:
    """Resolve SIGNER_BACKEND; anything but "local" means remote custody."""
    explicit = get_settings().signer_backend.lower()
    if explicit == SignerType.LOCAL.value:
        return SignerType.LOCAL
    return SignerType.REMOTE


_signer_instance: Optional[SignerBackend] = None


def get_signer() -> SignerBackend:
    """Get the configured signer instance.

    Returns singleton instance for the configured signer type.

    Returns:
        SignerBackend instance
    """
    global _signer_instance

    if _signer_instance is not None:
        return _signer_instance

    signer_type = get_signer_type()
    logger.info(f"Initializing {signer_type.value} signer")

    if signer_type == SignerType.LOCAL:
        from havenvault.signing.local import LocalSigner
        _signer_instance = LocalSigner()
    else:
        from havenvault.signing.remote import RemoteCustodySigner
        _signer_instance = RemoteCustodySigner.from_settings(get_settings())

    return _signer_instance


def get_signer_id() -> str:
    """Key identifier handed to the backend: wallet id for custody, address locally."""
    settings = get_settings()
    if get_signer_type() == SignerType.LOCAL:
        return settings.fee_payer_address
    return settings.custody_wallet_id


def reset_signer():
    """Reset the signer instance (for testing)."""
    global _signer_instance
    _signer_instance = None


async def get_signer_info() -> dict:
    """Get information about the current signer configuration.

    Returns:
        Dict with signer type, health status and backend class
    """
    signer = get_signer()
    health = await signer.health_check()

    return {
        "type": signer.signer_type.value,
        "healthy": health,
        "class": signer.__class__.__name__,
    }
