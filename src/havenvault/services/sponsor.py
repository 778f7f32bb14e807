"""Sponsor & submit: operator signature, broadcast, confirmation.

The signed payload is never mutated after the operator signs it: retries
re-send identical bytes, and a confirmation timeout is reported as unknown
rather than resubmitted. When every send fails in transport the outcome
is unknown, so confirmation proceeds with the locally computed signature.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from havenvault.errors import BroadcastError, OnChainExecutionError, RPCError, UpstreamSigningError
from havenvault.signing.base import SignerBackend, SigningError
from havenvault.solana.rpc import SolanaRPC
from havenvault.solana.wire import (
    is_empty_signature,
    message_bytes,
    parse_transaction,
    signer_index,
    transaction_signature,
    with_signature,
)

logger = logging.getLogger(__name__)

CONFIRMED_LEVELS = ("confirmed", "finalized")


@dataclass
class SubmissionResult:
    """Outcome of a successful broadcast."""

    signature: str
    confirmed: bool
    confirmation_error: Optional[str] = None


class TransactionSponsor:
    """Co-signs guard-approved transactions as fee payer and lands them.

    Args:
        signer: operator signing backend
        rpc: Solana RPC client
        operator: fee payer address (slot 0)
        signer_id: key identifier passed to the backend
        send_max_retries: node-side rebroadcast budget (``maxRetries``)
        transport_retries: extra re-sends of the same bytes on transport failure
        poll_interval: seconds between status polls
    """

    def __init__(
        self,
        signer: SignerBackend,
        rpc: SolanaRPC,
        operator: Pubkey,
        signer_id: str,
        send_max_retries: int = 3,
        transport_retries: int = 2,
        poll_interval: float = 1.0,
    ):
        self.signer = signer
        self.rpc = rpc
        self.operator = operator
        self.signer_id = signer_id
        self.send_max_retries = send_max_retries
        self.transport_retries = transport_retries
        self.poll_interval = poll_interval

    async def cosign(self, tx: VersionedTransaction) -> VersionedTransaction:
        """Get the operator signature and merge only that slot.

        Raises:
            UpstreamSigningError: backend failure, changed message or no signature
        """
        original_message = message_bytes(tx)
        try:
            signed_bytes = await self.signer.sign_transaction(bytes(tx), self.signer_id)
        except SigningError as e:
            logger.error(f"Operator signing failed: {e}")
            raise UpstreamSigningError("Fee payer signing failed", details={"reason": str(e)}) from e

        try:
            signed = parse_transaction(signed_bytes)
        except ValueError as e:
            raise UpstreamSigningError("Signer returned an unparseable transaction") from e

        if message_bytes(signed) != original_message:
            logger.error("Signer returned a transaction with a different message")
            raise UpstreamSigningError("Signer altered the transaction message")

        index = signer_index(tx, self.operator)
        if index is None or index >= len(signed.signatures):
            raise UpstreamSigningError("Operator is not a signer of this transaction")
        operator_signature = signed.signatures[index]
        if is_empty_signature(operator_signature):
            raise UpstreamSigningError("Signer returned no operator signature")

        return with_signature(tx, index, operator_signature)

    async def broadcast(self, tx: VersionedTransaction) -> str:
        """Send the fully signed bytes, re-sending the same bytes on transport errors.

        Raises:
            BroadcastError: the node rejected the transaction
        """
        raw = bytes(tx)
        expected = transaction_signature(tx)
        last_error: Optional[RPCError] = None

        for attempt in range(self.transport_retries + 1):
            try:
                signature = await self.rpc.send_transaction(raw, max_retries=self.send_max_retries)
            except RPCError as e:
                if e.rpc_code is not None:
                    logger.warning(f"Broadcast rejected: {e.message}")
                    raise BroadcastError(e.message, details=e.details) from e
                last_error = e
                logger.warning(f"Broadcast attempt {attempt + 1} failed: {e.message}")
                continue

            if not signature:
                raise BroadcastError("sendTransaction returned no signature")
            if expected and signature != expected:
                logger.warning(f"Node reported signature {signature}, expected {expected}")
            return signature

        if expected is None:
            raise BroadcastError(
                last_error.message if last_error else "sendTransaction failed"
            ) from last_error
        logger.warning(f"Broadcast of {expected} unacknowledged, checking status instead")
        return expected

    async def confirm(self, signature: str) -> SubmissionResult:
        """Poll until confirmed or the blockhash checkpoint expires.

        Raises:
            OnChainExecutionError: the transaction landed and reverted
        """
        try:
            checkpoint = await self.rpc.get_latest_blockhash()
        except RPCError as e:
            return SubmissionResult(signature, confirmed=False, confirmation_error=e.message)

        while True:
            try:
                statuses = await self.rpc.get_signature_statuses([signature])
                status = statuses[0] if statuses else None
                if status is not None:
                    if status.get("err"):
                        logger.warning(f"Transaction {signature} reverted: {status['err']}")
                        raise OnChainExecutionError("On-chain transaction failed", signature)
                    if status.get("confirmationStatus") in CONFIRMED_LEVELS:
                        return SubmissionResult(signature, confirmed=True)

                height = await self.rpc.get_block_height()
            except RPCError as e:
                logger.warning(f"Confirmation of {signature} unknown: {e.message}")
                return SubmissionResult(signature, confirmed=False, confirmation_error=e.message)

            if height > checkpoint.last_valid_block_height:
                logger.warning(f"Confirmation of {signature} timed out at height {height}")
                return SubmissionResult(
                    signature,
                    confirmed=False,
                    confirmation_error="Blockhash expired before confirmation",
                )
            await asyncio.sleep(self.poll_interval)

    async def submit(self, tx: VersionedTransaction) -> SubmissionResult:
        """Co-sign, broadcast and wait for confirmation."""
        signed = await self.cosign(tx)
        signature = await self.broadcast(signed)
        logger.info(f"Broadcast {signature}")
        return await self.confirm(signature)
