"""Savings send pipeline: guard, sponsor, reconcile, record.

Result rules:
- a guard failure raises before anything is signed or broadcast;
- signing, broadcast and revert failures raise from the sponsor;
- once a signature exists it is always returned, and bookkeeping problems
  only turn into ``recorded: false`` with a ``record_error`` reason;
- the ledger write is committed here, so a database failure is reported
  against the signature instead of escaping after the broadcast.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from sqlalchemy.exc import SQLAlchemyError

from havenvault.amounts import b64decode_strict, minor_to_ui
from havenvault.errors import RPCError
from havenvault.ledger.models import AccountType, Direction
from havenvault.ledger.repository import LedgerRepository
from havenvault.services.guard import verify_cosign_request
from havenvault.services.ledger_writer import LedgerWriter
from havenvault.services.reconciler import derive_movement
from havenvault.services.sponsor import TransactionSponsor
from havenvault.solana.keys import to_pubkey
from havenvault.solana.programs import LENDING_ACCOUNT_DEPOSIT
from havenvault.solana.rpc import SolanaRPC

logger = logging.getLogger(__name__)

LOG_TAIL_LINES = 20
DEPOSIT_ACCOUNT_INDEX = 1


@dataclass
class Accounting:
    direction: Direction
    account_type: AccountType
    amount: int
    fee: int
    principal: int
    interest: int

    def to_dict(self) -> dict:
        return {
            "direction": Direction(self.direction).value,
            "accountType": AccountType(self.account_type).value,
            "amountUi": minor_to_ui(self.amount),
            "feeUi": minor_to_ui(self.fee),
            "principalUi": minor_to_ui(self.principal),
            "interestUi": minor_to_ui(self.interest),
        }


@dataclass
class SendResult:
    signature: str
    recorded: bool
    accounting: Optional[Accounting] = None
    logs: Optional[list[str]] = None
    record_error: Optional[str] = None

    def to_dict(self) -> dict:
        body: dict = {"ok": True, "signature": self.signature, "recorded": self.recorded}
        if self.accounting is not None:
            body["accounting"] = self.accounting.to_dict()
        if self.logs:
            body["logs"] = self.logs
        if self.record_error:
            body["recordError"] = self.record_error
        return body


def tail_logs(logs: object, limit: int = LOG_TAIL_LINES) -> Optional[list[str]]:
    """Last ``limit`` string log lines, or None."""
    if not isinstance(logs, list):
        return None
    lines = [line for line in logs if isinstance(line, str)]
    return lines[-limit:] if lines else None


def lending_account_from_deposit(
    tx: VersionedTransaction, lending_program_id: Pubkey
) -> Optional[Pubkey]:
    """Sub-account targeted by a lending deposit instruction, if the transaction has one."""
    keys = tx.message.account_keys
    for ix in tx.message.instructions:
        if ix.program_id_index >= len(keys) or keys[ix.program_id_index] != lending_program_id:
            continue
        if not bytes(ix.data).startswith(LENDING_ACCOUNT_DEPOSIT):
            continue
        if len(ix.accounts) <= DEPOSIT_ACCOUNT_INDEX:
            continue
        index = ix.accounts[DEPOSIT_ACCOUNT_INDEX]
        if index < len(keys):
            return keys[index]
    return None


class SavingsSendService:
    """Runs one user-signed savings transaction through the pipeline."""

    def __init__(
        self,
        *,
        sponsor: TransactionSponsor,
        rpc: SolanaRPC,
        repo: LedgerRepository,
        operator: Pubkey,
        treasury: Pubkey,
        mint: Pubkey,
        lending_program_id: Pubkey,
    ):
        self.sponsor = sponsor
        self.rpc = rpc
        self.repo = repo
        self.writer = LedgerWriter(repo)
        self.operator = operator
        self.treasury = treasury
        self.mint = mint
        self.lending_program_id = lending_program_id

    async def process(
        self,
        *,
        signed_tx_b64: str,
        wallet_address: str,
        account_type: AccountType,
        direction: Optional[Direction] = None,
    ) -> SendResult:
        """Guard, co-sign, broadcast, confirm, reconcile and record.

        Raises:
            InvalidTransactionError: guard rejection, nothing broadcast
            UpstreamSigningError: operator signature unavailable
            BroadcastError: the network refused the transaction
            OnChainExecutionError: the transaction landed and reverted
        """
        raw = b64decode_strict(signed_tx_b64, what="signed transaction")
        user = to_pubkey(wallet_address)
        tx = verify_cosign_request(
            raw,
            user=user,
            operator=self.operator,
            lending_program_id=self.lending_program_id,
        )

        submission = await self.sponsor.submit(tx)
        signature = submission.signature
        if not submission.confirmed:
            return SendResult(
                signature,
                recorded=False,
                record_error=f"Confirmation unknown: {submission.confirmation_error}",
            )

        try:
            tx_resp = await self.rpc.get_transaction(signature)
        except RPCError as e:
            logger.warning(f"getTransaction failed for {signature}: {e.message}")
            return SendResult(signature, recorded=False, record_error=e.message)

        meta = (tx_resp or {}).get("meta")
        logs = tail_logs((meta or {}).get("logMessages"))
        if not meta:
            return SendResult(
                signature,
                recorded=False,
                logs=logs,
                record_error="No transaction meta returned from RPC; cannot compute deltas.",
            )

        movement = derive_movement(
            meta,
            user=user,
            treasury=self.treasury,
            mint=self.mint,
            declared_direction=direction,
        )
        if not movement.recordable:
            return SendResult(
                signature,
                recorded=False,
                logs=logs,
                record_error="Could not infer deposit/withdraw direction from deltas.",
            )

        try:
            result = await self.writer.record(
                wallet_address=wallet_address,
                account_type=account_type,
                movement=movement,
                signature=signature,
            )
            if movement.direction == Direction.DEPOSIT and account_type == AccountType.FLEX:
                await self._remember_position(wallet_address, account_type, tx)
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(f"Ledger write failed for {signature}: {e}")
            await self.repo.rollback()
            return SendResult(
                signature,
                recorded=False,
                logs=logs,
                record_error=f"Ledger write failed: {e.__class__.__name__}",
            )

        entry = result.entry
        accounting = Accounting(
            direction=Direction(entry.direction),
            account_type=AccountType(entry.account_type),
            amount=entry.amount_minor,
            fee=entry.fee_minor,
            principal=entry.principal_minor,
            interest=entry.interest_minor,
        )
        return SendResult(
            signature,
            recorded=result.first_writer,
            accounting=accounting,
            logs=logs,
            record_error=None if result.first_writer else "Already recorded",
        )

    async def _remember_position(
        self, wallet_address: str, account_type: AccountType, tx: VersionedTransaction
    ) -> None:
        account = lending_account_from_deposit(tx, self.lending_program_id)
        if account is None:
            return
        user = await self.repo.get_or_create_user(wallet_address)
        await self.repo.upsert_position(user.id, account_type, str(account))
        logger.info(f"Lending account for {wallet_address}: {account}")
