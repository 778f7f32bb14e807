"""SQLAlchemy models for the savings ledger.

Amounts are integer minor units (10^-6 of the settlement asset).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class AccountType(str, Enum):
    """Savings product."""

    FLEX = "flex"
    PLUS = "plus"


class Direction(str, Enum):
    """Direction of a savings movement."""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class User(Base):
    """User identified by their wallet address."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    savings_accounts: Mapped[list["SavingsAccount"]] = relationship(
        back_populates="user", lazy="selectin"
    )
    positions: Mapped[list["ProtocolPosition"]] = relationship(
        back_populates="user", lazy="selectin"
    )


class SavingsLedgerEntry(Base):
    """Immutable record of one confirmed savings movement.

    At most one row per transaction signature.
    """

    __tablename__ = "savings_ledger"
    __table_args__ = (Index("ix_savings_ledger_user_type", "user_id", "account_type"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(String(10), nullable=False)
    direction: Mapped[Direction] = mapped_column(String(10), nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    principal_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    interest_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fee_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    signature: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class SavingsAccount(Base):
    """Aggregate totals per (user, account type).

    Always overwritten by a full replay of the ledger, never incremented.
    """

    __tablename__ = "savings_accounts"
    __table_args__ = (
        Index("ix_savings_accounts_user_type", "user_id", "account_type", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(String(10), nullable=False)
    principal_deposited: Mapped[int] = mapped_column(BigInteger, default=0)
    principal_withdrawn: Mapped[int] = mapped_column(BigInteger, default=0)
    interest_withdrawn: Mapped[int] = mapped_column(BigInteger, default=0)
    total_deposited: Mapped[int] = mapped_column(BigInteger, default=0)
    total_withdrawn: Mapped[int] = mapped_column(BigInteger, default=0)
    fees_paid: Mapped[int] = mapped_column(BigInteger, default=0)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="savings_accounts")

    @property
    def principal_net(self) -> int:
        """Principal still outstanding."""
        return max((self.principal_deposited or 0) - (self.principal_withdrawn or 0), 0)


class ProtocolPosition(Base):
    """The user's lending sub-account for a savings product."""

    __tablename__ = "protocol_positions"
    __table_args__ = (
        Index("ix_protocol_positions_user_type", "user_id", "account_type", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(String(10), nullable=False)
    protocol_account: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="positions")
