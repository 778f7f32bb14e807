"""Instructions for the programs Haven transactions touch.

Compute budget instructions come from solders. The rest are encoded here
(all integers little-endian):

    AssociatedToken CreateIdempotent    01
    Token TransferChecked               0c || u64 amount || u8 decimals
    marginfi lending_account_withdraw   sha256("global:lending_account_withdraw")[:8]
                                        || u64 amount || Option<bool> withdraw_all
"""

import hashlib
import struct
from typing import Optional

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from havenvault.solana.keys import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    find_program_address,
)

__all__ = [
    "set_compute_unit_limit",
    "set_compute_unit_price",
    "create_associated_token_account_idempotent",
    "encode_transfer_checked",
    "transfer_checked",
    "encode_lending_withdraw",
    "liquidity_vault_authority",
    "fee_state_address",
    "lending_account_withdraw",
    "LENDING_ACCOUNT_WITHDRAW",
    "LENDING_ACCOUNT_DEPOSIT",
    "account_meta",
]

ATA_CREATE_IDEMPOTENT = 1
TOKEN_TRANSFER_CHECKED = 12

U64_MAX = 2**64 - 1


def anchor_instruction_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


LENDING_ACCOUNT_WITHDRAW = anchor_instruction_discriminator("lending_account_withdraw")
LENDING_ACCOUNT_DEPOSIT = anchor_instruction_discriminator("lending_account_deposit")


def account_meta(pubkey: Pubkey, is_signer: bool = False, is_writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=is_signer, is_writable=is_writable)


def create_associated_token_account_idempotent(
    payer: Pubkey,
    associated_account: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program_id: Pubkey,
) -> Instruction:
    """Create the ATA if missing; a no-op when it already exists."""
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=[
            account_meta(payer, is_signer=True, is_writable=True),
            account_meta(associated_account, is_writable=True),
            account_meta(owner),
            account_meta(mint),
            account_meta(SYSTEM_PROGRAM_ID),
            account_meta(token_program_id),
        ],
        data=bytes([ATA_CREATE_IDEMPOTENT]),
    )


def encode_transfer_checked(amount: int, decimals: int) -> bytes:
    """opcode (u8 = 12) || amount (u64 LE) || decimals (u8)."""
    if not 0 <= amount <= U64_MAX:
        raise ValueError(f"amount out of u64 range: {amount}")
    if not 0 <= decimals <= 255:
        raise ValueError(f"decimals out of u8 range: {decimals}")
    return struct.pack("<BQB", TOKEN_TRANSFER_CHECKED, amount, decimals)


def transfer_checked(
    token_program_id: Pubkey,
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
    amount: int,
    decimals: int,
) -> Instruction:
    return Instruction(
        program_id=token_program_id,
        accounts=[
            account_meta(source, is_writable=True),
            account_meta(mint),
            account_meta(destination, is_writable=True),
            account_meta(authority, is_signer=True),
        ],
        data=encode_transfer_checked(amount, decimals),
    )


def encode_lending_withdraw(amount: int, withdraw_all: Optional[bool]) -> bytes:
    """Anchor args: amount u64, withdraw_all Option<bool> (00 = None, 01 xx = Some)."""
    if not 0 <= amount <= U64_MAX:
        raise ValueError(f"amount out of u64 range: {amount}")
    data = LENDING_ACCOUNT_WITHDRAW + struct.pack("<Q", amount)
    if withdraw_all is None:
        return data + b"\x00"
    return data + b"\x01" + (b"\x01" if withdraw_all else b"\x00")


def liquidity_vault_authority(bank: Pubkey, program_id: Pubkey) -> Pubkey:
    address, _ = find_program_address([b"liquidity_vault_auth", bytes(bank)], program_id)
    return address


def fee_state_address(program_id: Pubkey) -> Pubkey:
    address, _ = find_program_address([b"feestate"], program_id)
    return address


def lending_account_withdraw(
    *,
    program_id: Pubkey,
    group: Pubkey,
    marginfi_account: Pubkey,
    authority: Pubkey,
    bank: Pubkey,
    destination_token_account: Pubkey,
    liquidity_vault: Pubkey,
    token_program_id: Pubkey,
    amount: int,
    withdraw_all: bool,
    remaining_accounts: list[AccountMeta],
) -> Instruction:
    """Withdraw from a lending sub-account.

    Exactly one mode is encoded: an exact ``amount`` with ``withdraw_all``
    unset, or amount 0 with ``withdraw_all = Some(true)``.
    """
    data = encode_lending_withdraw(0, True) if withdraw_all else encode_lending_withdraw(amount, None)
    accounts = [
        account_meta(group, is_writable=True),
        account_meta(marginfi_account, is_writable=True),
        account_meta(authority, is_signer=True, is_writable=True),
        account_meta(bank, is_writable=True),
        account_meta(destination_token_account, is_writable=True),
        account_meta(liquidity_vault_authority(bank, program_id)),
        account_meta(liquidity_vault, is_writable=True),
        account_meta(token_program_id),
    ]
    return Instruction(program_id=program_id, accounts=accounts + remaining_accounts, data=data)
