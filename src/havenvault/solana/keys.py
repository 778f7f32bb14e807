"""Address parsing, program derived addresses and well-known program ids."""

from typing import Union

from solders.compute_budget import ID as COMPUTE_BUDGET_PROGRAM_ID
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from spl.token.instructions import get_associated_token_address

PUBKEY_LENGTH = 32

__all__ = [
    "PUBKEY_LENGTH",
    "Pubkey",
    "to_pubkey",
    "is_default",
    "find_program_address",
    "get_associated_token_address",
    "SYSTEM_PROGRAM_ID",
    "COMPUTE_BUDGET_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "TOKEN_2022_PROGRAM_ID",
    "ASSOCIATED_TOKEN_PROGRAM_ID",
]


def to_pubkey(value: Union[str, bytes, bytearray, Pubkey]) -> Pubkey:
    """Build a Pubkey from a base58 string, 32 raw bytes or another Pubkey.

    Raises:
        ValueError: if the value is not a 32-byte address
    """
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, str):
        try:
            return Pubkey.from_string(value.strip())
        except ValueError as e:
            raise ValueError(f"Invalid base58 public key: {value!r}") from e
    if isinstance(value, (bytes, bytearray)):
        if len(value) != PUBKEY_LENGTH:
            raise ValueError(f"Public key must be 32 bytes, got {len(value)}")
        return Pubkey(bytes(value))
    raise TypeError(f"Cannot build Pubkey from {type(value).__name__}")


def is_default(key: Pubkey) -> bool:
    """True for the all-zero address marking an unused slot."""
    return key == Pubkey.default()


def find_program_address(seeds: list[bytes], program_id: Pubkey) -> tuple[Pubkey, int]:
    """Canonical PDA and bump seed for ``seeds`` under ``program_id``."""
    return Pubkey.find_program_address(seeds, program_id)
