"""Transaction guard for operator co-signing.

Before the operator signs anything as fee payer it must be certain the
transaction only pays for what the user intended: the operator is the fee
payer and nothing else, the user has already signed, and every instruction
targets an allow-listed program. The operator key may appear in an
instruction only as the funding payer of an associated token account
creation. Any doubt rejects the transaction.
"""

import logging
from typing import Iterable, Optional

from solders.instruction import CompiledInstruction
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from havenvault.errors import InvalidTransactionError
from havenvault.solana.keys import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from havenvault.solana.wire import (
    UnsupportedVersionError,
    is_empty_signature,
    is_legacy,
    message_bytes,
    parse_transaction,
)

logger = logging.getLogger(__name__)

MIN_SIGNERS = 2
MAX_SIGNERS = 3

# Create (empty data) and CreateIdempotent; account 0 is the funding payer
ATA_CREATE_DATA = (b"", b"\x00", b"\x01")


def allowed_programs(lending_program_id: Pubkey) -> frozenset[Pubkey]:
    """Programs a co-signed transaction may invoke."""
    return frozenset(
        {
            SYSTEM_PROGRAM_ID,
            COMPUTE_BUDGET_PROGRAM_ID,
            TOKEN_PROGRAM_ID,
            TOKEN_2022_PROGRAM_ID,
            ASSOCIATED_TOKEN_PROGRAM_ID,
            lending_program_id,
        }
    )


def _reject(reason: str) -> InvalidTransactionError:
    logger.warning(f"Guard rejected transaction: {reason}")
    return InvalidTransactionError(reason)


def _signature_valid(key: Pubkey, message: bytes, signature: Signature) -> bool:
    return signature.verify(key, message)


def _operator_use_allowed(
    ix: CompiledInstruction, keys: list[Pubkey], operator_index: int
) -> bool:
    """Whether the operator's appearances in ``ix`` are limited to paying rent."""
    positions = [pos for pos, index in enumerate(ix.accounts) if index == operator_index]
    if not positions:
        return True
    return (
        keys[ix.program_id_index] == ASSOCIATED_TOKEN_PROGRAM_ID
        and bytes(ix.data) in ATA_CREATE_DATA
        and positions == [0]
    )


def verify_cosign_request(
    tx_bytes: bytes,
    *,
    user: Pubkey,
    operator: Pubkey,
    lending_program_id: Optional[Pubkey] = None,
    allowed: Optional[Iterable[Pubkey]] = None,
) -> VersionedTransaction:
    """Check a user-signed transaction before the operator co-signs it.

    Args:
        tx_bytes: serialized transaction with the operator slot still empty
        user: the authenticated caller's wallet
        operator: the operator fee payer
        lending_program_id: lending program added to the default allow-list
        allowed: explicit allow-list, replacing the default

    Returns:
        The parsed transaction.

    Raises:
        InvalidTransactionError: with the first failed check as message
    """
    if allowed is not None:
        allow = frozenset(allowed)
    elif lending_program_id is not None:
        allow = allowed_programs(lending_program_id)
    else:
        raise ValueError("lending_program_id or allowed is required")

    try:
        tx = parse_transaction(tx_bytes)
    except UnsupportedVersionError:
        raise _reject("Only v0 transactions are supported.")
    except ValueError:
        raise _reject("Invalid signed transaction")

    message = tx.message
    if is_legacy(message):
        raise _reject("Only v0 transactions are supported.")
    if message.address_table_lookups:
        raise _reject("Address lookup tables are not allowed.")

    keys = list(message.account_keys)
    n_signers = message.header.num_required_signatures
    if not keys or n_signers == 0:
        raise _reject("Invalid transaction.")
    if keys[0] != operator:
        raise _reject("Invalid fee payer.")
    if not MIN_SIGNERS <= n_signers <= MAX_SIGNERS or n_signers > len(keys):
        raise _reject("Unexpected signer set.")

    signers = keys[:n_signers]
    if user not in signers:
        raise _reject("User is not a required signer.")
    signatures = list(tx.signatures)
    if len(signatures) != n_signers:
        raise _reject("Invalid signatures array.")
    if not is_empty_signature(signatures[0]):
        raise _reject("Unexpected fee payer signature present.")

    user_index = signers.index(user)
    user_signature = signatures[user_index]
    if is_empty_signature(user_signature):
        raise _reject("Missing user signature.")

    if not _signature_valid(user, message_bytes(tx), user_signature):
        raise _reject("Invalid user signature.")

    for i, key in enumerate(signers):
        if key == operator or key == user:
            continue
        if is_empty_signature(signatures[i]):
            raise _reject("Missing required pre-signed account signature.")

    for ix in message.instructions:
        if ix.program_id_index >= len(keys):
            raise _reject("Invalid instruction program id.")
        if any(index >= len(keys) for index in ix.accounts):
            raise _reject("Invalid instruction account index.")
        if keys[ix.program_id_index] not in allow:
            raise _reject("Transaction contains a disallowed instruction.")
        if not _operator_use_allowed(ix, keys, 0):
            raise _reject("Fee payer account used outside account creation.")

    return tx
