"""Operator co-signing backends.

- LocalSigner: in-memory keypair (development, tests)
- RemoteCustodySigner: hosted custody wallet API
"""

from havenvault.signing.base import (
    KeyNotFoundError,
    SignerBackend,
    SignerType,
    SigningError,
    SigningTimeoutError,
)
from havenvault.signing.factory import get_signer, get_signer_id, reset_signer
from havenvault.signing.local import LocalSigner
from havenvault.signing.remote import RemoteCustodySigner

__all__ = [
    "KeyNotFoundError",
    "LocalSigner",
    "RemoteCustodySigner",
    "SignerBackend",
    "SignerType",
    "SigningError",
    "SigningTimeoutError",
    "get_signer",
    "get_signer_id",
    "reset_signer",
]
