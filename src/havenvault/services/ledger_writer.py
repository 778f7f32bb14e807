"""Idempotent ledger writes keyed by transaction signature."""

import logging
from dataclasses import dataclass

from havenvault.ledger.models import AccountType, SavingsLedgerEntry
from havenvault.ledger.repository import LedgerRepository
from havenvault.services.reconciler import Movement, split_principal

logger = logging.getLogger(__name__)


@dataclass
class RecordResult:
    entry: SavingsLedgerEntry
    first_writer: bool

    @property
    def principal(self) -> int:
        return self.entry.principal_minor

    @property
    def interest(self) -> int:
        return self.entry.interest_minor


class LedgerWriter:
    """Records reconciled movements exactly once.

    Only the first writer for a signature recomputes the aggregate; later
    calls observe the existing row and change nothing.
    """

    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    async def record(
        self,
        *,
        wallet_address: str,
        account_type: AccountType,
        movement: Movement,
        signature: str,
    ) -> RecordResult:
        if not movement.recordable:
            raise ValueError("Cannot record a movement without a direction")

        existing = await self.repo.get_entry_by_signature(signature)
        if existing is not None:
            logger.info(f"Ledger entry for {signature} already recorded")
            return RecordResult(existing, first_writer=False)

        user = await self.repo.get_or_create_user(wallet_address)
        remaining = await self.repo.principal_remaining(user.id, account_type)
        principal, interest = split_principal(movement.direction, movement.amount, remaining)

        entry, inserted = await self.repo.insert_entry_if_absent(
            user_id=user.id,
            account_type=account_type,
            direction=movement.direction,
            amount=movement.amount,
            principal=principal,
            interest=interest,
            fee=movement.fee,
            signature=signature,
        )
        if not inserted:
            logger.info(f"Ledger entry for {signature} recorded concurrently")
            return RecordResult(entry, first_writer=False)

        await self.repo.recompute_aggregate(user.id, account_type)
        logger.info(
            f"Recorded {movement.direction.value} {movement.amount} for {wallet_address} "
            f"({AccountType(account_type).value}) sig={signature}"
        )
        return RecordResult(entry, first_writer=True)
