"""Caller identity from the session token.

Session issuance lives elsewhere; this module only verifies an HS256 token
presented as a bearer token or in the session cookie and reads the wallet
address claim.
"""

import logging
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

from havenvault.config import get_settings
from havenvault.errors import UnauthorizedError
from havenvault.solana.keys import to_pubkey

logger = logging.getLogger(__name__)

WALLET_CLAIMS = ("wallet", "walletAddress")


def _read_bearer(request: Request) -> Optional[str]:
    authz = request.headers.get("authorization", "")
    if authz.lower().startswith("bearer "):
        return authz[7:].strip() or None
    return None


def wallet_from_token(token: str, secret: str) -> str:
    """Verify ``token`` and return the wallet address it names.

    Raises:
        UnauthorizedError: bad signature, expired, or no usable wallet claim
    """
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except JWTError as e:
        logger.info(f"Session token rejected: {e}")
        raise UnauthorizedError() from e

    for name in WALLET_CLAIMS:
        wallet = claims.get(name)
        if isinstance(wallet, str) and wallet.strip():
            try:
                return str(to_pubkey(wallet))
            except ValueError as e:
                raise UnauthorizedError() from e
    raise UnauthorizedError()


async def resolve_caller(request: Request) -> str:
    """FastAPI dependency: the authenticated caller's wallet address."""
    settings = get_settings()
    if not settings.jwt_secret:
        raise UnauthorizedError()

    token = _read_bearer(request) or request.cookies.get(settings.session_cookie_name)
    if not token:
        raise UnauthorizedError()
    return wallet_from_token(token, settings.jwt_secret)
