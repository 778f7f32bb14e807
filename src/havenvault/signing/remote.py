"""Remote custody signing backend.

The operator key lives in a hosted wallet service. The full user-signed
transaction is posted to the wallet's RPC endpoint and comes back with the
operator signature added:

    POST {base}/v1/wallets/{wallet_id}/rpc
    {"method": "signTransaction",
     "params": {"transaction": <base64>, "encoding": "base64"}}

Authentication is HTTP basic (app id / app secret) plus the app id header.
"""

import base64
import binascii
import logging
from typing import Any, Optional

import httpx

from havenvault.signing.base import SignerBackend, SignerType, SigningError, SigningTimeoutError

logger = logging.getLogger(__name__)


def extract_signed_bytes(payload: Any) -> bytes:
    """Pull the signed transaction out of a custody response.

    Accepts ``{"data": {"signed_transaction": ...}}`` as well as flat and
    camelCase variants; the value may be base64 text or a list of ints.
    """
    if isinstance(payload, str):
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SigningError("Signed transaction is not valid base64") from e
    if isinstance(payload, list) and all(isinstance(n, int) for n in payload):
        return bytes(payload)
    if isinstance(payload, dict):
        for key in ("data", "signed_transaction", "signedTransaction"):
            if key in payload and payload[key] is not None:
                return extract_signed_bytes(payload[key])
    raise SigningError("Unexpected signTransaction response shape")


class RemoteCustodySigner(SignerBackend):
    """Signs through the custody wallet API.

    Args:
        base_url: custody API base URL
        app_id: application id
        app_secret: application secret
        authorization_signature: optional pre-computed request authorization header
        timeout: request timeout in seconds
        client: optional shared httpx client
    """

    def __init__(
        self,
        base_url: str,
        app_id: str,
        app_secret: str,
        authorization_signature: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(SignerType.REMOTE)
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.app_secret = app_secret
        self.authorization_signature = authorization_signature
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "RemoteCustodySigner":
        return cls(
            base_url=settings.custody_api_url,
            app_id=settings.custody_app_id,
            app_secret=settings.custody_app_secret,
            authorization_signature=settings.custody_authorization_key,
            timeout=settings.rpc_timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"privy-app-id": self.app_id, "Content-Type": "application/json"}
        if self.authorization_signature:
            headers["privy-authorization-signature"] = self.authorization_signature
        return headers

    async def _post(self, path: str, body: dict) -> httpx.Response:
        url = f"{self.base_url}{path}"
        auth = (self.app_id, self.app_secret)
        if self._client is not None:
            return await self._client.post(
                url, json=body, headers=self._headers(), auth=auth, timeout=self.timeout
            )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=body, headers=self._headers(), auth=auth)

    async def sign_transaction(self, tx_bytes: bytes, signer_id: str) -> bytes:
        body = {
            "method": "signTransaction",
            "params": {
                "transaction": base64.b64encode(tx_bytes).decode("ascii"),
                "encoding": "base64",
            },
        }

        try:
            response = await self._post(f"/v1/wallets/{signer_id}/rpc", body)
        except httpx.TimeoutException as e:
            raise SigningTimeoutError("Custody signTransaction timed out") from e
        except httpx.HTTPError as e:
            raise SigningError(f"Custody request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Custody signTransaction returned {response.status_code}: {response.text}")
            raise SigningError(f"Custody signTransaction returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise SigningError("Custody response is not JSON") from e

        return extract_signed_bytes(payload)

    async def get_public_key(self, signer_id: str) -> Optional[str]:
        url = f"{self.base_url}/v1/wallets/{signer_id}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    url, headers=self._headers(), auth=(self.app_id, self.app_secret)
                )
        except httpx.HTTPError as e:
            logger.warning(f"Custody wallet lookup failed: {e}")
            return None
        if response.status_code != 200:
            return None
        return response.json().get("address")

    async def health_check(self) -> bool:
        return bool(self.app_id and self.app_secret)
