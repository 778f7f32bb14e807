"""marginfi lending protocol: account decoding and withdrawal building."""

from havenvault.marginfi.builder import WithdrawalBuild, WithdrawalBuilder
from havenvault.marginfi.cache import BankDescriptor, TTLCache, get_bank_cache, reset_bank_cache
from havenvault.marginfi.layouts import (
    AccountDecoder,
    BankRecord,
    DecodedAccount,
    MarginfiAccountRecord,
    MarginfiGroupRecord,
)

__all__ = [
    "AccountDecoder",
    "BankDescriptor",
    "BankRecord",
    "DecodedAccount",
    "MarginfiAccountRecord",
    "MarginfiGroupRecord",
    "TTLCache",
    "WithdrawalBuild",
    "WithdrawalBuilder",
    "get_bank_cache",
    "reset_bank_cache",
]
