"""Parsing, compiling and signature bookkeeping for versioned transactions.

Transactions are solders ``VersionedTransaction`` objects. Wire layout:

    shortvec(num_signatures) || signature[64] * n || message

A v0 message starts with 0x80; legacy messages start directly with the
3-byte header.
"""

from typing import Optional, Union

from solders.errors import BincodeError
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import CompileError, Message, MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

SIGNATURE_LENGTH = 64
EMPTY_SIGNATURE = Signature.default()
VERSION_PREFIX_MASK = 0x80
MAX_TRANSACTION_SIZE = 1232

AnyMessage = Union[Message, MessageV0]


class UnsupportedVersionError(ValueError):
    def __init__(self, version: int):
        super().__init__(f"Unsupported message version: {version}")
        self.version = version


def _read_shortvec(data: bytes, offset: int) -> tuple[int, int]:
    value = 0
    for i, shift in enumerate((0, 7, 14)):
        if offset + i >= len(data):
            raise ValueError("Unexpected end of transaction data")
        byte = data[offset + i]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset + i + 1
    raise ValueError("shortvec too long")


def message_version(raw: bytes) -> Optional[int]:
    """Version of the message inside serialized transaction bytes.

    None means a legacy message.
    """
    count, offset = _read_shortvec(raw, 0)
    offset += count * SIGNATURE_LENGTH
    if offset >= len(raw):
        raise ValueError("Unexpected end of transaction data")
    first = raw[offset]
    if first & VERSION_PREFIX_MASK:
        return first & ~VERSION_PREFIX_MASK
    return None


def parse_transaction(raw: bytes) -> VersionedTransaction:
    """Strictly decode transaction bytes.

    Raises:
        UnsupportedVersionError: message version other than legacy or 0
        ValueError: malformed bytes, including trailing data
    """
    version = message_version(raw)
    if version is not None and version != 0:
        raise UnsupportedVersionError(version)
    try:
        tx = VersionedTransaction.from_bytes(raw)
    except (BincodeError, ValueError) as e:
        raise ValueError(f"Invalid transaction bytes: {e}") from e
    if bytes(tx) != raw:
        raise ValueError("Trailing bytes after transaction")
    return tx


def is_legacy(message: AnyMessage) -> bool:
    return not isinstance(message, MessageV0)


def required_signers(message: AnyMessage) -> list[Pubkey]:
    return list(message.account_keys[: message.header.num_required_signatures])


def is_writable(message: AnyMessage, index: int) -> bool:
    """Static writability of ``account_keys[index]`` from the header counts."""
    h = message.header
    if index < h.num_required_signatures:
        return index < h.num_required_signatures - h.num_readonly_signed_accounts
    return index < len(message.account_keys) - h.num_readonly_unsigned_accounts


def compile_v0(payer: Pubkey, instructions: list[Instruction], recent_blockhash: str) -> MessageV0:
    """Compile instructions into a v0 message with no lookup tables.

    Raises:
        ValueError: too many account keys for one message
    """
    try:
        return MessageV0.try_compile(payer, instructions, [], Hash.from_string(recent_blockhash))
    except CompileError as e:
        raise ValueError(f"Cannot compile message: {e}") from e


def unsigned_transaction(message: AnyMessage) -> VersionedTransaction:
    """A transaction with an empty slot for every required signer."""
    n = message.header.num_required_signatures
    return VersionedTransaction.populate(message, [EMPTY_SIGNATURE] * n)


def message_bytes(tx: VersionedTransaction) -> bytes:
    """The bytes every signer signs."""
    return to_bytes_versioned(tx.message)


def signer_index(tx: VersionedTransaction, key: Pubkey) -> Optional[int]:
    for i, signer in enumerate(required_signers(tx.message)):
        if signer == key:
            return i
    return None


def with_signature(tx: VersionedTransaction, index: int, signature: Signature) -> VersionedTransaction:
    """Copy of ``tx`` with one signature slot replaced."""
    signatures = list(tx.signatures)
    signatures[index] = signature
    return VersionedTransaction.populate(tx.message, signatures)


def is_empty_signature(signature: Signature) -> bool:
    return signature == EMPTY_SIGNATURE


def transaction_signature(tx: VersionedTransaction) -> Optional[str]:
    """The transaction id: base58 of the fee payer's signature."""
    if not tx.signatures or is_empty_signature(tx.signatures[0]):
        return None
    return str(tx.signatures[0])
