"""Savings API endpoints."""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from havenvault.amounts import minor_to_ui
from havenvault.api.auth import resolve_caller
from havenvault.api.deps import get_rpc, get_sponsor
from havenvault.config import get_settings
from havenvault.errors import InvalidTransactionError
from havenvault.ledger.database import session_dependency
from havenvault.ledger.models import AccountType, Direction
from havenvault.ledger.repository import LedgerRepository
from havenvault.marginfi.builder import WithdrawalBuilder
from havenvault.marginfi.cache import get_bank_cache
from havenvault.services.savings_send import SavingsSendService
from havenvault.services.sponsor import TransactionSponsor
from havenvault.solana.keys import to_pubkey
from havenvault.solana.rpc import SolanaRPC

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/savings", tags=["Savings"])


# Request models
class SendRequest(BaseModel):
    """User-signed savings transaction."""
    signedTransaction: Optional[str] = None
    transaction: Optional[str] = None
    signedTxB64: Optional[str] = None
    accountType: Optional[str] = None
    direction: Optional[str] = None

    def signed_payload(self) -> Optional[str]:
        for value in (self.signedTransaction, self.transaction, self.signedTxB64):
            if value and value.strip():
                return value.strip()
        return None

    def account_type(self) -> AccountType:
        return AccountType.PLUS if self.accountType == AccountType.PLUS.value else AccountType.FLEX

    def declared_direction(self) -> Optional[Direction]:
        try:
            return Direction(self.direction) if self.direction else None
        except ValueError:
            return None


class WithdrawBuildRequest(BaseModel):
    """Flex withdrawal build request."""
    amountUi: Optional[Union[float, str]] = None
    withdrawAll: bool = False
    ensureAccounts: Optional[bool] = None
    ensureAta: Optional[bool] = None  # older clients

    def ensure(self) -> bool:
        flag = self.ensureAccounts if self.ensureAccounts is not None else self.ensureAta
        return flag is not False


@router.post("/send")
async def send_savings_transaction(
    request: SendRequest,
    wallet: str = Depends(resolve_caller),
    sponsor: TransactionSponsor = Depends(get_sponsor),
    rpc: SolanaRPC = Depends(get_rpc),
    session: AsyncSession = Depends(session_dependency),
):
    """Co-sign, submit and record a user-signed deposit or withdrawal."""
    payload = request.signed_payload()
    if payload is None:
        raise InvalidTransactionError("signedTransaction is required")

    settings = get_settings()
    service = SavingsSendService(
        sponsor=sponsor,
        rpc=rpc,
        repo=LedgerRepository(session),
        operator=to_pubkey(settings.fee_payer_address),
        treasury=to_pubkey(settings.treasury_owner),
        mint=to_pubkey(settings.usdc_mint),
        lending_program_id=to_pubkey(settings.marginfi_program_id),
    )
    result = await service.process(
        signed_tx_b64=payload,
        wallet_address=wallet,
        account_type=request.account_type(),
        direction=request.declared_direction(),
    )
    return result.to_dict()


@router.post("/flex/withdraw/build")
async def build_flex_withdrawal(
    request: WithdrawBuildRequest,
    wallet: str = Depends(resolve_caller),
    rpc: SolanaRPC = Depends(get_rpc),
    session: AsyncSession = Depends(session_dependency),
):
    """Build an unsigned flex withdrawal for the caller to sign."""
    settings = get_settings()
    repo = LedgerRepository(session)

    marginfi_account = None
    user = await repo.get_user_by_wallet(wallet)
    if user is not None:
        position = await repo.get_position(user.id, AccountType.FLEX)
        if position is not None:
            marginfi_account = to_pubkey(position.protocol_account)

    builder = WithdrawalBuilder.from_settings(rpc, settings, cache=get_bank_cache())
    build = await builder.build(
        owner=to_pubkey(wallet),
        marginfi_account=marginfi_account,
        amount_ui=request.amountUi if request.amountUi is not None else "",
        withdraw_all=request.withdrawAll,
        ensure_accounts=request.ensure(),
        fee_rate=settings.flex_withdraw_fee_rate,
    )
    return build.to_dict()


@router.get("/{account_type}/principal")
async def get_principal_summary(
    account_type: AccountType,
    wallet: str = Depends(resolve_caller),
    session: AsyncSession = Depends(session_dependency),
):
    """Principal and interest totals replayed from the ledger."""
    repo = LedgerRepository(session)
    body = {
        "ok": True,
        "accountType": account_type.value,
        "principalNetUi": "0",
        "principalDepositedUi": "0",
        "principalWithdrawnUi": "0",
        "interestWithdrawnUi": "0",
        "feesPaidUi": "0",
        "totalDepositedUi": "0",
        "totalWithdrawnUi": "0",
        "ledgerCount": 0,
        "protocolAccount": None,
        "lastSyncedAt": None,
    }

    user = await repo.get_user_by_wallet(wallet)
    if user is None:
        return body

    totals = await repo.ledger_totals(user.id, account_type)
    account = await repo.get_savings_account(user.id, account_type)
    position = await repo.get_position(user.id, account_type)

    body.update(
        {
            "principalNetUi": minor_to_ui(totals.principal_remaining),
            "principalDepositedUi": minor_to_ui(totals.principal_deposited),
            "principalWithdrawnUi": minor_to_ui(totals.principal_withdrawn),
            "interestWithdrawnUi": minor_to_ui(totals.interest_withdrawn),
            "feesPaidUi": minor_to_ui(totals.fees_paid),
            "totalDepositedUi": minor_to_ui(totals.total_deposited),
            "totalWithdrawnUi": minor_to_ui(totals.total_withdrawn),
            "ledgerCount": totals.entries,
            "protocolAccount": position.protocol_account if position else None,
            "lastSyncedAt": (
                account.last_synced_at.isoformat()
                if account is not None and account.last_synced_at
                else None
            ),
        }
    )
    return body
