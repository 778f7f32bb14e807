"""Balance-delta reconciliation.

What a transaction actually moved is reconstructed from the confirmed
pre/post token balances, never from what the client claimed. All arithmetic
is on integer base units.

Worked example (6 decimals): a withdrawal where the user's balance rises by
9.95 and the treasury's by 0.05 records amount 10.00 and fee 0.05. A deposit
where the user's balance falls by 20.00 and the treasury's rises by 1.50
records amount 18.50 (gross 20.00, fee 1.50).
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from solders.pubkey import Pubkey

from havenvault.amounts import parse_base_units
from havenvault.ledger.models import Direction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Movement:
    """Reconciled movement for one transaction.

    ``direction`` is None when it could not be determined (zero delta and
    nothing declared); such movements are not recorded.
    """

    direction: Optional[Direction]
    user_delta: int
    treasury_delta: int
    amount: int
    fee: int
    gross: int

    @property
    def recordable(self) -> bool:
        return self.direction is not None


def sum_owner_mint(balances: Optional[Iterable[dict]], owner: Pubkey, mint: Pubkey) -> int:
    """Sum base units held by ``owner`` in ``mint`` across a balance snapshot."""
    owner_b58, mint_b58 = str(owner), str(mint)
    total = 0
    for entry in balances or []:
        if not isinstance(entry, dict):
            continue
        if entry.get("owner") != owner_b58 or entry.get("mint") != mint_b58:
            continue
        ui_amount = entry.get("uiTokenAmount") or {}
        total += parse_base_units(ui_amount.get("amount"))
    return total


def derive_movement(
    meta: dict,
    *,
    user: Pubkey,
    treasury: Pubkey,
    mint: Pubkey,
    declared_direction: Optional[Direction] = None,
) -> Movement:
    """Derive direction, amount and fee from a transaction's token balances.

    Args:
        meta: ``meta`` object of a ``getTransaction`` response
        user: the user's wallet
        treasury: the fee treasury owner
        mint: settlement mint
        declared_direction: direction stated by the caller, if any
    """
    pre = meta.get("preTokenBalances")
    post = meta.get("postTokenBalances")

    user_delta = sum_owner_mint(post, user, mint) - sum_owner_mint(pre, user, mint)
    treasury_delta = sum_owner_mint(post, treasury, mint) - sum_owner_mint(pre, treasury, mint)
    fee = max(treasury_delta, 0)

    direction = declared_direction
    if direction is None:
        if user_delta > 0:
            direction = Direction.WITHDRAW
        elif user_delta < 0:
            direction = Direction.DEPOSIT

    if direction == Direction.WITHDRAW:
        amount = max(user_delta, 0) + fee
        gross = amount
    elif direction == Direction.DEPOSIT:
        gross = max(-user_delta, 0)
        amount = max(gross - fee, 0)
    else:
        amount = gross = 0

    return Movement(
        direction=direction,
        user_delta=user_delta,
        treasury_delta=treasury_delta,
        amount=amount,
        fee=fee,
        gross=gross,
    )


def split_principal(direction: Direction, amount: int, principal_remaining: int) -> tuple[int, int]:
    """Split an amount into (principal, interest).

    Deposits are all principal. Withdrawals draw principal first, up to what
    remains outstanding; the rest is interest.
    """
    if direction == Direction.DEPOSIT:
        return amount, 0
    principal = min(amount, max(principal_remaining, 0))
    interest = max(amount - principal, 0)
    return principal, interest
