"""Fixed-point amount helpers.

All accounting uses integer minor units. One minor unit is 10^-6 of the
settlement asset, so the ledger never touches binary floating point.
"""

import base64
import binascii
import re
from decimal import Decimal, InvalidOperation
from typing import Union

from havenvault.errors import InvalidAmountError, InvalidTransactionError

MINOR_UNIT_DECIMALS = 6
PPM = 1_000_000

_UI_AMOUNT_RE = re.compile(r"^(-)?(\d*)(?:\.(\d*))?$")

AmountLike = Union[str, int, float, Decimal]


def _normalize(value: AmountLike) -> str:
    if isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if isinstance(value, float):
        # repr keeps the shortest round-tripping form (0.1 -> "0.1")
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidAmountError(f"Invalid amount: {value}")
        return format(value, "f")
    return str(value).strip()


def ui_to_minor(value: AmountLike, decimals: int = MINOR_UNIT_DECIMALS) -> int:
    """Convert a display amount to integer base units.

    Digits beyond ``decimals`` are truncated, never rounded up.

    Raises:
        InvalidAmountError: if the value is not a plain decimal number
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value * 10**decimals

    text = _normalize(value)
    match = _UI_AMOUNT_RE.match(text)
    if not text or not match or not (match.group(2) or match.group(3)):
        raise InvalidAmountError(f"Invalid amount: {value!r}")

    negative, whole, frac = match.group(1), match.group(2) or "0", match.group(3) or ""
    frac = (frac + "0" * decimals)[:decimals]
    units = int(whole) * 10**decimals + int(frac or "0")
    return -units if negative else units


def minor_to_ui(units: int, decimals: int = MINOR_UNIT_DECIMALS) -> str:
    """Render integer base units as a trimmed decimal string."""
    sign = "-" if units < 0 else ""
    whole, frac = divmod(abs(units), 10**decimals)
    if decimals <= 0:
        return f"{sign}{whole}"
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    if frac_str:
        return f"{sign}{whole}.{frac_str}"
    return f"{sign}{whole}"


def rate_to_ppm(rate: float) -> int:
    """Convert a fractional fee rate to parts per million (negative -> 0)."""
    if rate is None or rate != rate or rate <= 0:
        return 0
    return round(rate * PPM)


def fee_from_amount(amount: int, ppm: int) -> int:
    """Fee in base units, floored. Never negative, never above ``amount``."""
    if amount <= 0 or ppm <= 0:
        return 0
    return min(amount, amount * ppm // PPM)


def parse_base_units(raw: object) -> int:
    """Parse an RPC base-unit amount string; anything malformed counts as 0."""
    if isinstance(raw, str) and raw.isdigit():
        return int(raw)
    return 0


def b64decode_strict(data: str, *, what: str = "payload") -> bytes:
    """Decode standard base64, rejecting garbage."""
    try:
        return base64.b64decode(data.strip(), validate=True)
    except (binascii.Error, ValueError, AttributeError) as e:
        raise InvalidTransactionError(f"Invalid {what}") from e


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_decimal(units: int, decimals: int = MINOR_UNIT_DECIMALS) -> Decimal:
    """Exact Decimal view of base units (for display and reporting only)."""
    try:
        return Decimal(units).scaleb(-decimals)
    except InvalidOperation as e:
        raise InvalidAmountError(f"Invalid base units: {units!r}") from e
