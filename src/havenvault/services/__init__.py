"""Co-signing pipeline services."""

from havenvault.services.guard import verify_cosign_request
from havenvault.services.ledger_writer import LedgerWriter, RecordResult
from havenvault.services.reconciler import Movement, derive_movement, split_principal
from havenvault.services.savings_send import SavingsSendService, SendResult
from havenvault.services.sponsor import SubmissionResult, TransactionSponsor

__all__ = [
    "LedgerWriter",
    "Movement",
    "RecordResult",
    "SavingsSendService",
    "SendResult",
    "SubmissionResult",
    "TransactionSponsor",
    "derive_movement",
    "split_principal",
    "verify_cosign_request",
]
