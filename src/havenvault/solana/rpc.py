"""Async Solana RPC access over solana-py's AsyncClient.

Only the handful of methods the co-signing pipeline and the withdrawal
builder need are exposed. Transport failures and node error responses
both raise RPCError; ``rpc_code`` is set only for the latter, so callers
can tell a rejected request from one whose outcome is unknown.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.models import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from havenvault.errors import RPCError

logger = logging.getLogger(__name__)

# Server error code used when a node response carries no numeric code
NODE_ERROR_CODE = -32000


@dataclass
class AccountInfo:
    """Raw account state."""

    owner: Pubkey
    data: bytes
    lamports: int
    executable: bool = False


@dataclass
class BlockhashInfo:
    blockhash: str
    last_valid_block_height: int


def _confirmation_name(status: Optional[TransactionConfirmationStatus]) -> Optional[str]:
    if status is None:
        return None
    if status == TransactionConfirmationStatus.Finalized:
        return "finalized"
    if status == TransactionConfirmationStatus.Confirmed:
        return "confirmed"
    return "processed"


def _node_error(method: str, e: RPCException) -> RPCError:
    detail = e.args[0] if e.args else None
    message = getattr(detail, "message", None) or str(e)
    code = getattr(detail, "code", None)
    logger.warning(f"RPC {method} rejected: {message}")
    return RPCError(message, rpc_code=code if isinstance(code, int) else NODE_ERROR_CODE)


class SolanaRPC:
    """RPC facade returning plain values.

    Args:
        url: RPC endpoint
        timeout: per-request timeout in seconds
        client: optional AsyncClient (owned by the caller)
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        client: Optional[AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client or AsyncClient(url, commitment=Confirmed, timeout=timeout)

    async def close(self) -> None:
        await self._client.close()

    async def _call(self, method: str, request):
        try:
            return await request
        except RPCException as e:
            raise _node_error(method, e) from e
        except (SolanaRpcException, httpx.HTTPError) as e:
            reason = getattr(e, "error_msg", None) or str(e) or e.__class__.__name__
            logger.warning(f"RPC {method} transport failure: {reason}")
            raise RPCError(f"RPC {method} failed: {reason}") from e

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        """Fetch an account, or None if it does not exist."""
        resp = await self._call(
            "getAccountInfo",
            self._client.get_account_info(address, commitment=Confirmed, encoding="base64"),
        )
        account = resp.value
        if account is None:
            return None
        return AccountInfo(
            owner=account.owner,
            data=bytes(account.data),
            lamports=account.lamports,
            executable=account.executable,
        )

    async def get_latest_blockhash(self) -> BlockhashInfo:
        resp = await self._call(
            "getLatestBlockhash", self._client.get_latest_blockhash(commitment=Confirmed)
        )
        return BlockhashInfo(
            blockhash=str(resp.value.blockhash),
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    async def send_transaction(
        self,
        tx_bytes: bytes,
        *,
        max_retries: int = 3,
        skip_preflight: bool = False,
    ) -> str:
        """Submit signed bytes. Returns the signature reported by the node."""
        opts = TxOpts(
            skip_preflight=skip_preflight,
            preflight_commitment=Confirmed,
            max_retries=max_retries,
        )
        resp = await self._call(
            "sendTransaction", self._client.send_raw_transaction(tx_bytes, opts=opts)
        )
        return str(resp.value)

    async def get_signature_statuses(self, signatures: list[str]) -> list[Optional[dict]]:
        """Statuses as ``{"confirmationStatus", "err"}`` dicts, None when unknown."""
        resp = await self._call(
            "getSignatureStatuses",
            self._client.get_signature_statuses(
                [Signature.from_string(s) for s in signatures],
                search_transaction_history=False,
            ),
        )
        statuses: list[Optional[dict]] = []
        for status in resp.value:
            if status is None:
                statuses.append(None)
                continue
            statuses.append(
                {
                    "confirmationStatus": _confirmation_name(status.confirmation_status),
                    "err": None if status.err is None else str(status.err),
                }
            )
        return statuses

    async def get_block_height(self) -> int:
        resp = await self._call("getBlockHeight", self._client.get_block_height(commitment=Confirmed))
        return int(resp.value)

    async def get_transaction(self, signature: str) -> Optional[dict]:
        """Fetch a confirmed transaction with its balance metadata, in RPC JSON shape."""
        resp = await self._call(
            "getTransaction",
            self._client.get_transaction(
                Signature.from_string(signature),
                encoding="json",
                commitment=Confirmed,
                max_supported_transaction_version=0,
            ),
        )
        if resp.value is None:
            return None
        return json.loads(resp.value.to_json())
