#!/usr/bin/env python3
"""Savings Ledger Reconciliation Script.

Settles "broadcast succeeded, confirmation unknown" sends: fetches each
confirmed transaction, derives the movement from its token balance deltas
and records it exactly once. Safe to re-run; recorded signatures are skipped.

Usage:
    python scripts/reconcile.py --wallet <address> <signature> [<signature> ...]

Options:
    --wallet        User wallet that signed the transactions (required)
    --account-type  flex or plus (default: flex)
    --direction     deposit or withdraw (default: infer from deltas)
    --dry-run       Show what would be recorded without writing
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

load_dotenv()

from havenvault.amounts import minor_to_ui
from havenvault.config import get_settings
from havenvault.errors import RPCError
from havenvault.ledger.database import get_db, init_db
from havenvault.ledger.models import AccountType, Direction
from havenvault.ledger.repository import LedgerRepository
from havenvault.services.ledger_writer import LedgerWriter
from havenvault.services.reconciler import derive_movement
from havenvault.solana.keys import to_pubkey
from havenvault.solana.rpc import SolanaRPC

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def reconcile_signature(
    rpc: SolanaRPC,
    signature: str,
    *,
    wallet: str,
    account_type: AccountType,
    direction,
    dry_run: bool,
) -> bool:
    """Record one signature. Returns True if a new ledger row was written."""
    settings = get_settings()

    try:
        tx_resp = await rpc.get_transaction(signature)
    except RPCError as e:
        logger.error(f"{signature}: getTransaction failed: {e.message}")
        return False

    meta = (tx_resp or {}).get("meta")
    if not meta:
        logger.warning(f"{signature}: not found or no meta yet")
        return False
    if meta.get("err"):
        logger.warning(f"{signature}: transaction reverted, nothing to record")
        return False

    movement = derive_movement(
        meta,
        user=to_pubkey(wallet),
        treasury=to_pubkey(settings.treasury_owner),
        mint=to_pubkey(settings.usdc_mint),
        declared_direction=direction,
    )
    if not movement.recordable:
        logger.warning(f"{signature}: zero delta, direction unknown")
        return False

    logger.info(
        f"{signature}: {movement.direction.value} amount={minor_to_ui(movement.amount)} "
        f"fee={minor_to_ui(movement.fee)}"
    )
    if dry_run:
        return False

    async with get_db() as session:
        result = await LedgerWriter(LedgerRepository(session)).record(
            wallet_address=wallet,
            account_type=account_type,
            movement=movement,
            signature=signature,
        )
    if not result.first_writer:
        logger.info(f"{signature}: already recorded")
    return result.first_writer


async def main():
    parser = argparse.ArgumentParser(description="Record confirmed savings transactions")
    parser.add_argument("signatures", nargs="+", help="Transaction signatures")
    parser.add_argument("--wallet", required=True, help="User wallet address")
    parser.add_argument("--account-type", choices=["flex", "plus"], default="flex")
    parser.add_argument("--direction", choices=["deposit", "withdraw"], default=None)
    parser.add_argument("--dry-run", action="store_true", help="Show without writing")
    args = parser.parse_args()

    settings = get_settings()
    rpc = SolanaRPC(settings.solana_rpc_url, timeout=settings.rpc_timeout)
    direction = Direction(args.direction) if args.direction else None

    await init_db()

    recorded = 0
    try:
        for signature in args.signatures:
            if await reconcile_signature(
                rpc,
                signature,
                wallet=args.wallet,
                account_type=AccountType(args.account_type),
                direction=direction,
                dry_run=args.dry_run,
            ):
                recorded += 1
    finally:
        await rpc.close()

    print(f"\nRecorded {recorded} of {len(args.signatures)} signature(s)")


if __name__ == "__main__":
    asyncio.run(main())
