"""Tests for lending account layouts and the account decoder."""

import pytest
from solders.pubkey import Pubkey

from havenvault.errors import DecodeFailureError
from havenvault.marginfi.layouts import (
    BALANCE,
    BANK,
    MARGINFI_ACCOUNT,
    MARGINFI_GROUP,
    SCHEMAS,
    AccountDecoder,
    BankRecord,
    LayoutError,
    MarginfiAccountRecord,
    MarginfiGroupRecord,
    Schema,
    account_discriminator,
    encode_account,
)

from conftest import MARGINFI_GROUP as GROUP_ADDRESS
from conftest import USDC_MINT, USER_ADDRESS

BANK_PK = Pubkey(bytes([5]) * 32)
ORACLE = Pubkey(bytes([6]) * 32)
VAULT = Pubkey(bytes([7]) * 32)


def account_bytes(**overrides) -> bytes:
    values = {
        "group": GROUP_ADDRESS,
        "authority": USER_ADDRESS,
        "balances": [
            {"active": 1, "bank_pk": BANK_PK, "asset_shares": 5 << 48, "last_update": 99},
            {"active": 0, "bank_pk": Pubkey(bytes([8]) * 32), "asset_shares": 1},
        ],
        "account_flags": 2,
    }
    values.update(overrides)
    return encode_account("MarginfiAccount", values)


def bank_bytes(oracles=(ORACLE,)) -> bytes:
    return encode_account(
        "Bank",
        {
            "mint": USDC_MINT,
            "mint_decimals": 6,
            "group": GROUP_ADDRESS,
            "liquidity_vault": VAULT,
            "config": {"deposit_limit": 10**12, "oracle_setup": 3, "oracle_keys": list(oracles)},
        },
    )


class TestLayouts:
    """Layout sizes and offsets."""

    def test_sizes(self):
        assert BALANCE.size == 104
        assert MARGINFI_ACCOUNT.size == 32 + 32 + 16 * 104 + 64 + 8
        assert MARGINFI_GROUP.size == 96

    def test_discriminator(self):
        assert account_discriminator("Bank") != account_discriminator("bank")
        assert len(account_discriminator("MarginfiAccount")) == 8

    def test_encoded_length(self):
        assert len(account_bytes()) == 8 + MARGINFI_ACCOUNT.size
        assert len(bank_bytes()) == 8 + BANK.size

    def test_too_many_items(self):
        with pytest.raises(LayoutError):
            account_bytes(balances=[{}] * 17)


class TestDecodeAccount:
    """Decoding lending sub-accounts."""

    def test_fields(self):
        record = AccountDecoder().decode(account_bytes())

        assert isinstance(record, MarginfiAccountRecord)
        assert record.kind == "MarginfiAccount"
        assert record.group == GROUP_ADDRESS
        assert record.authority == USER_ADDRESS
        assert record.account_flags == 2
        assert len(record.balances) == 16

        first = record.balances[0]
        assert first.active
        assert first.bank_pk == BANK_PK
        assert first.asset_shares == 5 << 48
        assert first.last_update == 99

    def test_active_balances(self):
        record = AccountDecoder().decode(account_bytes())
        assert [b.bank_pk for b in record.active_balances()] == [BANK_PK]

    def test_active_without_shares_is_skipped(self):
        data = account_bytes(balances=[{"active": 1, "bank_pk": BANK_PK, "asset_shares": 0}])
        assert AccountDecoder().decode(data).active_balances() == []


class TestDecodeBank:
    """Decoding bank records."""

    def test_fields(self):
        record = AccountDecoder().decode(bank_bytes())

        assert isinstance(record, BankRecord)
        assert record.mint == USDC_MINT
        assert record.mint_decimals == 6
        assert record.group == GROUP_ADDRESS
        assert record.liquidity_vault == VAULT
        assert record.deposit_limit == 10**12
        assert record.oracle_setup == 3
        assert record.first_oracle() == ORACLE

    def test_first_oracle_skips_default_keys(self):
        record = AccountDecoder().decode(bank_bytes(oracles=(Pubkey.default(), ORACLE)))
        assert record.first_oracle() == ORACLE

    def test_no_oracle(self):
        record = AccountDecoder().decode(bank_bytes(oracles=()))
        assert record.first_oracle() is None

    def test_group(self):
        data = encode_account("MarginfiGroup", {"admin": USER_ADDRESS})
        record = AccountDecoder().decode(data)
        assert isinstance(record, MarginfiGroupRecord)
        assert record.admin == USER_ADDRESS


class TestDecoderDispatch:
    """Quick names first, then the discriminator table."""

    def test_decode_as_wrong_spelling(self):
        with pytest.raises(LayoutError):
            AccountDecoder().decode_as("bank", bank_bytes())

    def test_decode_as_unknown_kind(self):
        with pytest.raises(LayoutError):
            AccountDecoder().decode_as("Oracle", bank_bytes())

    def test_fallback_to_discriminator_table(self):
        decoder = AccountDecoder(quick_names=("marginfiAccount",))
        record = decoder.decode(bank_bytes())
        assert isinstance(record, BankRecord)

    @pytest.mark.parametrize(
        "data, record_type",
        [
            (account_bytes(), MarginfiAccountRecord),
            (bank_bytes(), BankRecord),
            (encode_account("MarginfiGroup", {"admin": USER_ADDRESS}), MarginfiGroupRecord),
        ],
    )
    def test_default_and_table_dispatch_agree(self, data, record_type):
        quick = AccountDecoder().decode(data)
        table = AccountDecoder(quick_names=()).decode(data)
        assert isinstance(quick, record_type)
        assert quick == table

    def test_no_quick_names(self):
        record = AccountDecoder(quick_names=()).decode(account_bytes())
        assert isinstance(record, MarginfiAccountRecord)

    def test_unknown_discriminator(self):
        with pytest.raises(DecodeFailureError) as exc_info:
            AccountDecoder().decode(b"\xff" * 200)
        assert exc_info.value.message == "Unknown account discriminator"
        assert exc_info.value.code == "DECODE_FAILURE"

    def test_truncated_record(self):
        with pytest.raises(DecodeFailureError) as exc_info:
            AccountDecoder().decode(account_bytes()[:100])
        assert "Malformed MarginfiAccount" in exc_info.value.message

    def test_ambiguous_discriminator(self):
        schemas = {
            "Bank": SCHEMAS["Bank"],
            "BankAlias": Schema("Bank", MARGINFI_GROUP, lambda raw: MarginfiGroupRecord(raw["admin"])),
        }
        decoder = AccountDecoder(quick_names=(), schemas=schemas)
        with pytest.raises(DecodeFailureError) as exc_info:
            decoder.decode(bank_bytes())
        assert exc_info.value.message == "Ambiguous account discriminator"
