"""Error taxonomy for the co-signing pipeline and the withdrawal builder.

Every per-request failure is a HavenError carrying an HTTP status and a
stable machine-readable code. The API layer renders them as
``{"error": message, "code": code}``.
"""

from typing import Optional


class HavenError(Exception):
    """Base class for all expected failures."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class UnauthorizedError(HavenError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", **kwargs):
        super().__init__(message, **kwargs)


class InvalidTransactionError(HavenError):
    """Transaction rejected by the guard. The message is safe to show verbatim."""

    status_code = 400
    code = "INVALID_TRANSACTION"


class UpstreamSigningError(HavenError):
    """Remote custody did not return a usable operator signature."""

    status_code = 502
    code = "SIGNING_FAILED"


class BroadcastError(HavenError):
    """The network refused the transaction. Nothing happened on-chain."""

    status_code = 400
    code = "BROADCAST_FAILED"


class OnChainExecutionError(HavenError):
    """The transaction landed but reverted."""

    status_code = 400
    code = "ONCHAIN_FAILED"

    def __init__(self, message: str, signature: str, **kwargs):
        super().__init__(message, **kwargs)
        self.signature = signature

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["signature"] = self.signature
        return body


class DecodeFailureError(HavenError):
    """A protocol account record could not be resolved to exactly one kind."""

    status_code = 500
    code = "DECODE_FAILURE"


class MissingOracleError(HavenError):
    status_code = 500
    code = "MISSING_ORACLE"


class MintMismatchError(HavenError):
    """Account ownership, group or mint does not match the configured protocol."""

    status_code = 500
    code = "MINT_MISMATCH"


class NoActiveBalanceError(HavenError):
    status_code = 400
    code = "NO_ACTIVE_BALANCE"


class NoPositionError(HavenError):
    status_code = 404
    code = "NO_POSITION"


class InvalidAmountError(HavenError):
    status_code = 400
    code = "INVALID_AMOUNT"


class TransactionTooLargeError(HavenError):
    status_code = 413
    code = "TX_TOO_LARGE"


class RPCError(HavenError):
    """Solana RPC unreachable or returned an error envelope."""

    status_code = 503
    code = "RPC_UNAVAILABLE"

    def __init__(self, message: str, *, rpc_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.rpc_code = rpc_code


class MissingConfigurationError(HavenError):
    """Required settings are absent. Raised at startup, never per request."""

    status_code = 500
    code = "MISSING_CONFIGURATION"

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing configuration: {', '.join(missing)}")
        self.missing = missing
