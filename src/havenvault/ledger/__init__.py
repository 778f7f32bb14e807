"""Savings ledger: immutable entries, replayed aggregates, protocol positions."""

from havenvault.ledger.database import get_db, init_db
from havenvault.ledger.models import (
    AccountType,
    Direction,
    ProtocolPosition,
    SavingsAccount,
    SavingsLedgerEntry,
    User,
)
from havenvault.ledger.repository import LedgerRepository, LedgerTotals

__all__ = [
    # Models
    "User",
    "SavingsLedgerEntry",
    "SavingsAccount",
    "ProtocolPosition",
    # Enums
    "AccountType",
    "Direction",
    # Database
    "get_db",
    "init_db",
    "LedgerRepository",
    "LedgerTotals",
]
