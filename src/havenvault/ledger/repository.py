"""Repository for savings ledger operations."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from havenvault.ledger.models import (
    AccountType,
    Direction,
    ProtocolPosition,
    SavingsAccount,
    SavingsLedgerEntry,
    User,
)


@dataclass
class LedgerTotals:
    """Replayed totals for one (user, account type)."""

    principal_deposited: int = 0
    principal_withdrawn: int = 0
    interest_withdrawn: int = 0
    total_deposited: int = 0
    total_withdrawn: int = 0
    fees_paid: int = 0
    entries: int = 0

    @property
    def principal_remaining(self) -> int:
        return max(self.principal_deposited - self.principal_withdrawn, 0)


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    # User operations
    async def get_or_create_user(self, wallet_address: str) -> User:
        """Get existing user or create a new one."""
        stmt = select(User).where(User.wallet_address == wallet_address)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()

        if user is None:
            user = User(wallet_address=wallet_address)
            self.session.add(user)
            await self.session.flush()

        return user

    async def get_user_by_wallet(self, wallet_address: str) -> Optional[User]:
        stmt = select(User).where(User.wallet_address == wallet_address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Ledger entries
    async def get_entry_by_signature(self, signature: str) -> Optional[SavingsLedgerEntry]:
        stmt = select(SavingsLedgerEntry).where(SavingsLedgerEntry.signature == signature)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def insert_entry_if_absent(
        self,
        *,
        user_id: int,
        account_type: AccountType,
        direction: Direction,
        amount: int,
        principal: int,
        interest: int,
        fee: int,
        signature: str,
    ) -> tuple[SavingsLedgerEntry, bool]:
        """Insert a ledger row unless one exists for ``signature``.

        Returns:
            (entry, inserted) where ``inserted`` is False when another writer
            got there first
        """
        existing = await self.get_entry_by_signature(signature)
        if existing is not None:
            return existing, False

        entry = SavingsLedgerEntry(
            user_id=user_id,
            account_type=AccountType(account_type).value,
            direction=Direction(direction).value,
            amount_minor=amount,
            principal_minor=principal,
            interest_minor=interest,
            fee_minor=fee,
            signature=signature,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(entry)
                await self.session.flush()
        except IntegrityError:
            # concurrent writer inserted the same signature
            existing = await self.get_entry_by_signature(signature)
            if existing is None:
                raise
            return existing, False

        return entry, True

    async def get_entries(
        self, user_id: int, account_type: AccountType
    ) -> list[SavingsLedgerEntry]:
        stmt = (
            select(SavingsLedgerEntry)
            .where(
                SavingsLedgerEntry.user_id == user_id,
                SavingsLedgerEntry.account_type == AccountType(account_type).value,
            )
            .order_by(SavingsLedgerEntry.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def ledger_totals(self, user_id: int, account_type: AccountType) -> LedgerTotals:
        """Replay every entry for (user, account type)."""
        totals = LedgerTotals()
        for entry in await self.get_entries(user_id, account_type):
            totals.entries += 1
            totals.fees_paid += entry.fee_minor
            if entry.direction == Direction.DEPOSIT.value:
                totals.principal_deposited += entry.principal_minor
                totals.total_deposited += entry.amount_minor
            else:
                totals.principal_withdrawn += entry.principal_minor
                totals.interest_withdrawn += entry.interest_minor
                totals.total_withdrawn += entry.amount_minor
        return totals

    async def principal_remaining(self, user_id: int, account_type: AccountType) -> int:
        """Deposited principal minus withdrawn principal, floored at zero."""
        totals = await self.ledger_totals(user_id, account_type)
        return totals.principal_remaining

    # Aggregates
    async def get_savings_account(
        self, user_id: int, account_type: AccountType
    ) -> Optional[SavingsAccount]:
        stmt = select(SavingsAccount).where(
            SavingsAccount.user_id == user_id,
            SavingsAccount.account_type == AccountType(account_type).value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def recompute_aggregate(
        self, user_id: int, account_type: AccountType
    ) -> SavingsAccount:
        """Overwrite the aggregate with a full replay of the ledger."""
        totals = await self.ledger_totals(user_id, account_type)

        account = await self.get_savings_account(user_id, account_type)
        if account is None:
            account = SavingsAccount(user_id=user_id, account_type=AccountType(account_type).value)
            self.session.add(account)

        account.principal_deposited = totals.principal_deposited
        account.principal_withdrawn = totals.principal_withdrawn
        account.interest_withdrawn = totals.interest_withdrawn
        account.total_deposited = totals.total_deposited
        account.total_withdrawn = totals.total_withdrawn
        account.fees_paid = totals.fees_paid
        account.last_synced_at = datetime.now(timezone.utc)

        await self.session.flush()
        return account

    # Protocol positions
    async def get_position(
        self, user_id: int, account_type: AccountType
    ) -> Optional[ProtocolPosition]:
        stmt = select(ProtocolPosition).where(
            ProtocolPosition.user_id == user_id,
            ProtocolPosition.account_type == AccountType(account_type).value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_position(
        self, user_id: int, account_type: AccountType, protocol_account: str
    ) -> ProtocolPosition:
        """Create or repoint the user's lending sub-account reference."""
        position = await self.get_position(user_id, account_type)
        if position is None:
            position = ProtocolPosition(
                user_id=user_id,
                account_type=AccountType(account_type).value,
                protocol_account=protocol_account,
            )
            self.session.add(position)
        elif position.protocol_account != protocol_account:
            position.protocol_account = protocol_account

        await self.session.flush()
        return position
