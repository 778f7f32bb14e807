"""Solana helpers for the transaction shapes Haven issues, built on solders."""

from havenvault.solana.keys import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    find_program_address,
    get_associated_token_address,
    to_pubkey,
)
from havenvault.solana.wire import (
    compile_v0,
    message_bytes,
    parse_transaction,
    transaction_signature,
    unsigned_transaction,
)

__all__ = [
    "to_pubkey",
    "find_program_address",
    "get_associated_token_address",
    "SYSTEM_PROGRAM_ID",
    "COMPUTE_BUDGET_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "TOKEN_2022_PROGRAM_ID",
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "compile_v0",
    "message_bytes",
    "parse_transaction",
    "transaction_signature",
    "unsigned_transaction",
]
