"""Short-TTL cache for bank/oracle descriptors.

Descriptors are pure functions of on-chain state, so concurrent populates
are harmless and no lock is taken. Token program and mint decimals are
never cached here.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, MutableMapping, Optional, TypeVar

from solders.pubkey import Pubkey

V = TypeVar("V")


@dataclass
class BankDescriptor:
    """What the withdrawal builder needs to know about one bank."""

    bank: Pubkey
    oracle: Optional[Pubkey]
    mint: Pubkey
    group: Pubkey
    liquidity_vault: Pubkey


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[V]):
    """Key-value cache with a per-entry expiry.

    Args:
        ttl: default lifetime in seconds
        store: backing mapping (a plain dict when omitted)
        clock: monotonic seconds source, injectable for tests
    """

    def __init__(
        self,
        ttl: float,
        store: Optional[MutableMapping[Any, _Entry]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.store = store if store is not None else {}
        self.clock = clock

    def get(self, key: Any) -> Optional[V]:
        entry = self.store.get(key)
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            self.store.pop(key, None)
            return None
        return entry.value

    def set(self, key: Any, value: V, ttl: Optional[float] = None) -> None:
        lifetime = self.ttl if ttl is None else ttl
        self.store[key] = _Entry(value, self.clock() + lifetime)

    def invalidate(self, key: Any) -> None:
        self.store.pop(key, None)

    def clear(self) -> None:
        self.store.clear()

    def __len__(self) -> int:
        return len(self.store)


_bank_cache: Optional[TTLCache[BankDescriptor]] = None


def get_bank_cache() -> TTLCache[BankDescriptor]:
    """Process-wide descriptor cache, created on first use."""
    global _bank_cache
    if _bank_cache is None:
        from havenvault.config import get_settings

        _bank_cache = TTLCache(ttl=get_settings().bank_cache_ttl_seconds)
    return _bank_cache


def reset_bank_cache() -> None:
    """Drop the process-wide cache (for testing)."""
    global _bank_cache
    _bank_cache = None
