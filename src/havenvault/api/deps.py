"""Shared dependencies for the API routers."""

from typing import Optional

from fastapi import Depends

from havenvault.config import get_settings
from havenvault.services.sponsor import TransactionSponsor
from havenvault.signing import SignerBackend, get_signer, get_signer_id
from havenvault.solana.keys import to_pubkey
from havenvault.solana.rpc import SolanaRPC

_rpc: Optional[SolanaRPC] = None


def get_rpc() -> SolanaRPC:
    """Process-wide RPC client."""
    global _rpc
    if _rpc is None:
        settings = get_settings()
        _rpc = SolanaRPC(settings.solana_rpc_url, timeout=settings.rpc_timeout)
    return _rpc


def reset_rpc() -> None:
    """Reset the RPC client (for testing)."""
    global _rpc
    _rpc = None


async def close_rpc() -> None:
    """Close the process-wide RPC client, if one was opened."""
    global _rpc
    if _rpc is not None:
        await _rpc.close()
        _rpc = None


def get_signer_backend() -> SignerBackend:
    return get_signer()


def get_sponsor(
    rpc: SolanaRPC = Depends(get_rpc),
    signer: SignerBackend = Depends(get_signer_backend),
) -> TransactionSponsor:
    settings = get_settings()
    return TransactionSponsor(
        signer,
        rpc,
        operator=to_pubkey(settings.fee_payer_address),
        signer_id=get_signer_id(),
        send_max_retries=settings.send_max_retries,
        poll_interval=settings.confirm_poll_interval,
    )
