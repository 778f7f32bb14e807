"""marginfi account layouts and the account decoder.

Records are Anchor zero-copy accounts: an 8-byte discriminator
(``sha256("account:<Name>")[:8]``) followed by a fixed little-endian layout.
Only the fields Haven reads are named; everything else is kept as opaque
padding so offsets stay exact.

MarginfiAccount (after the discriminator):
    group                  pubkey
    authority              pubkey
    balances[16]           104 bytes each
        active             u8
        bank_pk            pubkey
        bank_asset_tag     u8
        _pad0              6 bytes
        asset_shares       i80f48 (16 bytes)
        liability_shares   i80f48
        emissions          i80f48
        last_update        u64
        _padding           u64
    _padding               u64 * 8
    account_flags          u64

Bank (after the discriminator):
    mint, mint_decimals u8, group, _pad 7, asset/liability share value,
    liquidity_vault + 2 bumps, insurance_vault + 2 bumps, _pad 4,
    insurance fees outstanding, fee_vault + 2 bumps, _pad 6, group fees
    outstanding, total liability/asset shares, last_update i64, then config:
    4 weights, deposit_limit u64, interest rate config (opaque),
    operational_state u8, oracle_setup u8, oracle_keys[5].
"""

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from solders.pubkey import Pubkey

from havenvault.errors import DecodeFailureError
from havenvault.solana.keys import PUBKEY_LENGTH, is_default, to_pubkey

DISCRIMINATOR_LENGTH = 8
MAX_BALANCES = 16
MAX_ORACLE_KEYS = 5
INTEREST_RATE_CONFIG_LENGTH = 240


def account_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("account:<name>")."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_LENGTH]


class LayoutError(ValueError):
    """Record bytes do not fit the schema."""


# ---------------------------------------------------------------------------
# Field codecs
# ---------------------------------------------------------------------------


class Field:
    size: int = 0

    def read(self, data: bytes, offset: int) -> Any:
        raise NotImplementedError

    def write(self, value: Any) -> bytes:
        raise NotImplementedError


class Scalar(Field):
    def __init__(self, fmt: str):
        self._struct = struct.Struct("<" + fmt)
        self.size = self._struct.size

    def read(self, data: bytes, offset: int) -> int:
        return self._struct.unpack_from(data, offset)[0]

    def write(self, value: Any) -> bytes:
        return self._struct.pack(value or 0)


class Address(Field):
    size = PUBKEY_LENGTH

    def read(self, data: bytes, offset: int) -> Pubkey:
        return Pubkey(data[offset:offset + PUBKEY_LENGTH])

    def write(self, value: Any) -> bytes:
        return bytes(to_pubkey(value)) if value is not None else bytes(PUBKEY_LENGTH)


class Fixed(Field):
    """I80F48 fixed point, kept as its raw signed 128-bit integer."""

    size = 16

    def read(self, data: bytes, offset: int) -> int:
        return int.from_bytes(data[offset:offset + 16], "little", signed=True)

    def write(self, value: Any) -> bytes:
        return int(value or 0).to_bytes(16, "little", signed=True)


class Padding(Field):
    def __init__(self, size: int):
        self.size = size

    def read(self, data: bytes, offset: int) -> bytes:
        return data[offset:offset + self.size]

    def write(self, value: Any) -> bytes:
        raw = bytes(value or b"")
        return raw[: self.size].ljust(self.size, b"\x00")


class Array(Field):
    def __init__(self, item: Field, count: int):
        self.item = item
        self.count = count
        self.size = item.size * count

    def read(self, data: bytes, offset: int) -> list:
        return [self.item.read(data, offset + i * self.item.size) for i in range(self.count)]

    def write(self, value: Any) -> bytes:
        items = list(value or [])
        if len(items) > self.count:
            raise LayoutError(f"array holds at most {self.count} items")
        items += [None] * (self.count - len(items))
        return b"".join(self.item.write(v) for v in items)


class Struct(Field):
    """Ordered named fields. ``None`` values encode as zero bytes."""

    def __init__(self, *fields: tuple[str, Field]):
        self.fields = fields
        self.size = sum(f.size for _, f in fields)

    def read(self, data: bytes, offset: int = 0) -> dict:
        if offset + self.size > len(data):
            raise LayoutError(f"need {self.size} bytes at {offset}, have {len(data) - offset}")
        out = {}
        for name, f in self.fields:
            out[name] = f.read(data, offset)
            offset += f.size
        return out

    def write(self, value: Any) -> bytes:
        value = value or {}
        return b"".join(f.write(value.get(name)) for name, f in self.fields)


U8 = Scalar("B")
U64 = Scalar("Q")
I64 = Scalar("q")
PUBKEY = Address()
I80F48 = Fixed()

BALANCE = Struct(
    ("active", U8),
    ("bank_pk", PUBKEY),
    ("bank_asset_tag", U8),
    ("_pad0", Padding(6)),
    ("asset_shares", I80F48),
    ("liability_shares", I80F48),
    ("emissions_outstanding", I80F48),
    ("last_update", U64),
    ("_padding", Padding(8)),
)

MARGINFI_ACCOUNT = Struct(
    ("group", PUBKEY),
    ("authority", PUBKEY),
    ("balances", Array(BALANCE, MAX_BALANCES)),
    ("_padding", Padding(64)),
    ("account_flags", U64),
)

BANK_CONFIG = Struct(
    ("asset_weight_init", I80F48),
    ("asset_weight_maint", I80F48),
    ("liability_weight_init", I80F48),
    ("liability_weight_maint", I80F48),
    ("deposit_limit", U64),
    ("interest_rate_config", Padding(INTEREST_RATE_CONFIG_LENGTH)),
    ("operational_state", U8),
    ("oracle_setup", U8),
    ("oracle_keys", Array(PUBKEY, MAX_ORACLE_KEYS)),
)

BANK = Struct(
    ("mint", PUBKEY),
    ("mint_decimals", U8),
    ("group", PUBKEY),
    ("_pad0", Padding(7)),
    ("asset_share_value", I80F48),
    ("liability_share_value", I80F48),
    ("liquidity_vault", PUBKEY),
    ("liquidity_vault_bump", U8),
    ("liquidity_vault_authority_bump", U8),
    ("insurance_vault", PUBKEY),
    ("insurance_vault_bump", U8),
    ("insurance_vault_authority_bump", U8),
    ("_pad1", Padding(4)),
    ("collected_insurance_fees_outstanding", I80F48),
    ("fee_vault", PUBKEY),
    ("fee_vault_bump", U8),
    ("fee_vault_authority_bump", U8),
    ("_pad2", Padding(6)),
    ("collected_group_fees_outstanding", I80F48),
    ("total_liability_shares", I80F48),
    ("total_asset_shares", I80F48),
    ("last_update", I64),
    ("config", BANK_CONFIG),
)

MARGINFI_GROUP = Struct(
    ("admin", PUBKEY),
    ("_padding", Padding(64)),
)


# ---------------------------------------------------------------------------
# Decoded records (tagged union)
# ---------------------------------------------------------------------------


@dataclass
class BalanceRecord:
    active: bool
    bank_pk: Pubkey
    asset_shares: int
    liability_shares: int = 0
    bank_asset_tag: int = 0
    last_update: int = 0

    @property
    def has_assets(self) -> bool:
        return self.active and self.asset_shares != 0


@dataclass
class MarginfiAccountRecord:
    group: Pubkey
    authority: Pubkey
    balances: list[BalanceRecord]
    account_flags: int = 0
    kind: str = field(default="MarginfiAccount", init=False)

    def active_balances(self) -> list[BalanceRecord]:
        """Balances with the active flag set and non-zero asset shares."""
        return [b for b in self.balances if b.has_assets]


@dataclass
class BankRecord:
    mint: Pubkey
    mint_decimals: int
    group: Pubkey
    liquidity_vault: Pubkey
    oracle_keys: list[Pubkey]
    insurance_vault: Optional[Pubkey] = None
    fee_vault: Optional[Pubkey] = None
    deposit_limit: int = 0
    operational_state: int = 0
    oracle_setup: int = 0
    kind: str = field(default="Bank", init=False)

    def first_oracle(self) -> Optional[Pubkey]:
        """First oracle key that is not the all-zero default key."""
        for key in self.oracle_keys:
            if not is_default(key):
                return key
        return None


@dataclass
class MarginfiGroupRecord:
    admin: Pubkey
    kind: str = field(default="MarginfiGroup", init=False)


DecodedAccount = Union[MarginfiAccountRecord, BankRecord, MarginfiGroupRecord]


def _account_from_fields(raw: dict) -> MarginfiAccountRecord:
    balances = [
        BalanceRecord(
            active=bool(b["active"]),
            bank_pk=b["bank_pk"],
            asset_shares=b["asset_shares"],
            liability_shares=b["liability_shares"],
            bank_asset_tag=b["bank_asset_tag"],
            last_update=b["last_update"],
        )
        for b in raw["balances"]
    ]
    return MarginfiAccountRecord(
        group=raw["group"],
        authority=raw["authority"],
        balances=balances,
        account_flags=raw["account_flags"],
    )


def _bank_from_fields(raw: dict) -> BankRecord:
    config = raw["config"]
    return BankRecord(
        mint=raw["mint"],
        mint_decimals=raw["mint_decimals"],
        group=raw["group"],
        liquidity_vault=raw["liquidity_vault"],
        oracle_keys=config["oracle_keys"],
        insurance_vault=raw["insurance_vault"],
        fee_vault=raw["fee_vault"],
        deposit_limit=config["deposit_limit"],
        operational_state=config["operational_state"],
        oracle_setup=config["oracle_setup"],
    )


def _group_from_fields(raw: dict) -> MarginfiGroupRecord:
    return MarginfiGroupRecord(admin=raw["admin"])


@dataclass(frozen=True)
class Schema:
    name: str
    layout: Struct
    build: Callable[[dict], DecodedAccount]

    @property
    def discriminator(self) -> bytes:
        return account_discriminator(self.name)

    def encode(self, values: dict) -> bytes:
        """Serialize ``values`` behind this kind's discriminator."""
        return self.discriminator + self.layout.write(values)


SCHEMAS: dict[str, Schema] = {
    s.name: s
    for s in (
        Schema("MarginfiAccount", MARGINFI_ACCOUNT, _account_from_fields),
        Schema("Bank", BANK, _bank_from_fields),
        Schema("MarginfiGroup", MARGINFI_GROUP, _group_from_fields),
    )
}

DEFAULT_QUICK_NAMES = (
    "MarginfiAccount",
    "MarginfiGroup",
    "Bank",
    "marginfiAccount",
    "marginfiGroup",
    "bank",
)


class AccountDecoder:
    """Ordered variant dispatch over the known record kinds.

    First each name in ``quick_names`` is tried: the discriminator is derived
    from that exact spelling and must prefix the data, then the schema must
    parse. If no name succeeds, the record's leading bytes are matched against
    the discriminator table of canonical kinds. Exactly one kind must match.

    The default quick names include every canonical spelling, so a well
    formed record always resolves on the quick path. The table lookup then
    only decides the failure for truncated records and unknown
    discriminators. A decoder built with narrower ``quick_names`` (for
    example the camel-case spellings alone) relies on the table to decode.
    """

    def __init__(
        self,
        quick_names: tuple[str, ...] = DEFAULT_QUICK_NAMES,
        schemas: Optional[dict[str, Schema]] = None,
    ):
        self.schemas = schemas or SCHEMAS
        self.quick_names = quick_names
        self._by_lower = {name.lower(): s for name, s in self.schemas.items()}
        self._by_discriminator: dict[bytes, list[Schema]] = {}
        for schema in self.schemas.values():
            self._by_discriminator.setdefault(schema.discriminator, []).append(schema)

    def decode_as(self, name: str, data: bytes) -> DecodedAccount:
        """Decode ``data`` as the kind spelled ``name``.

        Raises:
            LayoutError: if the discriminator or layout does not fit
        """
        schema = self._by_lower.get(name.lower())
        if schema is None:
            raise LayoutError(f"unknown account kind {name}")
        if data[:DISCRIMINATOR_LENGTH] != account_discriminator(name):
            raise LayoutError(f"discriminator mismatch for {name}")
        return schema.build(schema.layout.read(data, DISCRIMINATOR_LENGTH))

    def decode(self, data: bytes) -> DecodedAccount:
        """Resolve ``data`` to exactly one known record kind.

        Raises:
            DecodeFailureError: if no kind, or more than one kind, resolves
        """
        for name in self.quick_names:
            try:
                return self.decode_as(name, data)
            except LayoutError:
                continue

        candidates = self._by_discriminator.get(bytes(data[:DISCRIMINATOR_LENGTH]), [])
        if len(candidates) != 1:
            raise DecodeFailureError(
                "Unknown account discriminator"
                if not candidates
                else "Ambiguous account discriminator"
            )

        schema = candidates[0]
        try:
            return schema.build(schema.layout.read(data, DISCRIMINATOR_LENGTH))
        except LayoutError as e:
            raise DecodeFailureError(f"Malformed {schema.name} record: {e}") from e


def encode_account(kind: str, values: dict) -> bytes:
    """Serialize a record of ``kind`` (used for fixtures and tooling)."""
    return SCHEMAS[kind].encode(values)
