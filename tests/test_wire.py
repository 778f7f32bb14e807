"""Tests for addresses, PDAs and versioned transaction helpers."""

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature

from havenvault.solana.keys import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    find_program_address,
    get_associated_token_address,
    is_default,
    to_pubkey,
)
from havenvault.solana.wire import (
    EMPTY_SIGNATURE,
    UnsupportedVersionError,
    is_legacy,
    is_writable,
    message_bytes,
    message_version,
    parse_transaction,
    required_signers,
    signer_index,
    transaction_signature,
    with_signature,
)

from conftest import BLOCKHASH, OPERATOR_ADDRESS, USDC_MINT, USER_ADDRESS, make_user_signed_tx


class TestToPubkey:
    """Tests for address parsing."""

    def test_base58_roundtrip(self):
        key = to_pubkey(USDC_MINT)
        assert str(key) == USDC_MINT
        assert to_pubkey(bytes(key)) == key
        assert to_pubkey(key) is key

    def test_strips_whitespace(self):
        assert to_pubkey(f" {USDC_MINT}\n") == to_pubkey(USDC_MINT)

    def test_default_key(self):
        assert is_default(Pubkey.default())
        assert not is_default(to_pubkey(USDC_MINT))

    def test_wrong_length(self):
        with pytest.raises(ValueError):
            to_pubkey(b"\x01" * 31)

    def test_invalid_base58(self):
        with pytest.raises(ValueError):
            to_pubkey("0OIl")

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            to_pubkey(42)


class TestProgramAddresses:
    """Tests for PDA and associated token account derivation."""

    def test_find_program_address_is_off_curve(self):
        address, bump = find_program_address([b"feestate"], COMPUTE_BUDGET_PROGRAM_ID)
        assert not address.is_on_curve()
        assert 0 <= bump <= 255
        assert Keypair.from_seed(b"\x01" * 32).pubkey().is_on_curve()

    def test_ata_is_deterministic_per_token_program(self):
        owner, mint = to_pubkey(USER_ADDRESS), to_pubkey(USDC_MINT)
        classic = get_associated_token_address(owner, mint)
        assert classic == get_associated_token_address(owner, mint, TOKEN_PROGRAM_ID)
        assert classic != get_associated_token_address(owner, mint, TOKEN_2022_PROGRAM_ID)
        assert classic != get_associated_token_address(to_pubkey(OPERATOR_ADDRESS), mint)

    def test_ata_matches_manual_derivation(self):
        owner, mint = to_pubkey(USER_ADDRESS), to_pubkey(USDC_MINT)
        expected, _ = find_program_address(
            [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM_ID
        )
        assert get_associated_token_address(owner, mint) == expected


class TestCompiledMessage:
    """Tests for compiled v0 messages and their signature slots."""

    def test_payer_first_and_header_counts(self):
        message = make_user_signed_tx(sign=False).message
        assert isinstance(message, MessageV0)
        assert not is_legacy(message)
        assert required_signers(message) == [to_pubkey(OPERATOR_ADDRESS), to_pubkey(USER_ADDRESS)]
        # operator is a writable signer, user a readonly signer
        assert message.header.num_readonly_signed_accounts == 1
        assert is_writable(message, 0)
        assert not is_writable(message, 1)

    def test_unsigned_has_empty_slots(self):
        tx = make_user_signed_tx(sign=False)
        assert list(tx.signatures) == [EMPTY_SIGNATURE, EMPTY_SIGNATURE]
        assert transaction_signature(tx) is None

    def test_blockhash_preserved(self):
        assert make_user_signed_tx().message.recent_blockhash == Hash.from_string(BLOCKHASH)

    def test_signed_bytes_start_with_version_prefix(self):
        tx = make_user_signed_tx()
        assert message_bytes(tx)[0] == 0x80
        assert message_version(bytes(tx)) == 0

    def test_with_signature_keeps_message(self):
        tx = make_user_signed_tx()
        updated = with_signature(tx, 0, Signature(b"\x05" * 64))
        assert message_bytes(updated) == message_bytes(tx)
        assert updated.signatures[1] == tx.signatures[1]
        assert transaction_signature(updated) == str(Signature(b"\x05" * 64))
        assert tx.signatures[0] == EMPTY_SIGNATURE

    def test_signer_index(self):
        tx = make_user_signed_tx()
        assert signer_index(tx, to_pubkey(OPERATOR_ADDRESS)) == 0
        assert signer_index(tx, to_pubkey(USER_ADDRESS)) == 1
        assert signer_index(tx, to_pubkey(USDC_MINT)) is None


class TestParseTransaction:
    """Strict decoding of transaction bytes."""

    def test_roundtrip(self):
        tx = make_user_signed_tx()
        parsed = parse_transaction(bytes(tx))
        assert parsed.message == tx.message
        assert list(parsed.signatures) == list(tx.signatures)

    def test_unsupported_version(self):
        raw = bytearray(bytes(make_user_signed_tx()))
        raw[1 + 2 * 64] = 0x82
        with pytest.raises(UnsupportedVersionError) as exc_info:
            parse_transaction(bytes(raw))
        assert exc_info.value.version == 2

    def test_trailing_bytes_rejected(self):
        with pytest.raises(ValueError):
            parse_transaction(bytes(make_user_signed_tx()) + b"\x00")

    def test_truncated_rejected(self):
        with pytest.raises(ValueError):
            parse_transaction(bytes(make_user_signed_tx())[:-3])

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            parse_transaction(b"")
