"""Application configuration using pydantic-settings.

The co-signing pipeline needs the operator (fee payer) address, the lending
program and group, the settlement mint and the treasury owner. These are
validated once at startup by ``require_pipeline_config``.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from havenvault.errors import MissingConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/havenvault.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Session / identity
    # ======================
    jwt_secret: str = Field(default="", description="HS256 secret for session tokens")
    session_cookie_name: str = Field(default="haven_session", description="Session cookie name")

    # ======================
    # Solana
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    rpc_timeout: float = Field(default=30.0, description="Per-request RPC timeout (seconds)")
    send_max_retries: int = Field(
        default=3, description="Retries for broadcasting the same signed bytes"
    )
    confirm_poll_interval: float = Field(
        default=1.0, description="Seconds between signature status polls"
    )

    fee_payer_address: str = Field(default="", description="Operator fee payer public key")
    treasury_owner: str = Field(default="", description="Treasury wallet receiving fees")
    usdc_mint: str = Field(
        default="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        description="Settlement mint",
    )

    # ======================
    # Lending protocol (marginfi)
    # ======================
    marginfi_program_id: str = Field(default="", description="Lending program id")
    marginfi_group: str = Field(default="", description="Lending group address")
    bank_cache_ttl_seconds: float = Field(
        default=300.0, description="TTL for bank/oracle descriptors"
    )

    # ======================
    # Withdrawals
    # ======================
    flex_withdraw_fee_rate: float = Field(
        default=0.0, description="Withdrawal fee as a fraction (0.005 = 0.5%)"
    )
    compute_unit_limit: int = Field(default=160_000, description="Compute unit limit")
    compute_unit_price_micro_lamports: int = Field(
        default=80_000, description="Priority fee per compute unit"
    )

    # ======================
    # Operator signing
    # ======================
    signer_backend: str = Field(default="remote", description="remote or local")
    custody_api_url: str = Field(
        default="https://api.privy.io", description="Remote custody API base URL"
    )
    custody_app_id: str = Field(default="", description="Remote custody app id")
    custody_app_secret: str = Field(default="", description="Remote custody app secret")
    custody_authorization_key: Optional[str] = Field(
        default=None, description="Optional authorization signature header value"
    )
    custody_wallet_id: str = Field(default="", description="Operator wallet id in custody")
    fee_payer_secret_key: Optional[str] = Field(
        default=None, description="Base58 64-byte keypair for the local signer (dev only)"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def fee_ppm(self) -> int:
        """Withdrawal fee rate in parts per million."""
        return max(0, round(self.flex_withdraw_fee_rate * 1_000_000))

    def missing_pipeline_config(self) -> list[str]:
        """Names of required settings that are empty."""
        required = {
            "SOLANA_RPC_URL": self.solana_rpc_url,
            "FEE_PAYER_ADDRESS": self.fee_payer_address,
            "TREASURY_OWNER": self.treasury_owner,
            "USDC_MINT": self.usdc_mint,
            "MARGINFI_PROGRAM_ID": self.marginfi_program_id,
            "MARGINFI_GROUP": self.marginfi_group,
            "JWT_SECRET": self.jwt_secret,
        }
        if self.signer_backend.lower() == "local":
            required["FEE_PAYER_SECRET_KEY"] = self.fee_payer_secret_key or ""
        else:
            required["CUSTODY_APP_ID"] = self.custody_app_id
            required["CUSTODY_APP_SECRET"] = self.custody_app_secret
            required["CUSTODY_WALLET_ID"] = self.custody_wallet_id
        return [name for name, value in required.items() if not value]

    def require_pipeline_config(self) -> None:
        """Fail fast when the deployment cannot sponsor transactions.

        Raises:
            MissingConfigurationError: listing every missing variable
        """
        missing = self.missing_pipeline_config()
        if missing:
            raise MissingConfigurationError(missing)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "jwt_secret": "***" if self.jwt_secret else "(not set)",
            "solana": {
                "rpc": self.solana_rpc_url,
                "fee_payer": self.fee_payer_address or "(not set)",
                "treasury_owner": self.treasury_owner or "(not set)",
                "usdc_mint": self.usdc_mint,
            },
            "marginfi": {
                "program_id": self.marginfi_program_id or "(not set)",
                "group": self.marginfi_group or "(not set)",
                "bank_cache_ttl_seconds": self.bank_cache_ttl_seconds,
            },
            "withdraw": {
                "fee_rate": self.flex_withdraw_fee_rate,
                "compute_unit_limit": self.compute_unit_limit,
                "compute_unit_price": self.compute_unit_price_micro_lamports,
            },
            "signer": {
                "backend": self.signer_backend,
                "custody_api_url": self.custody_api_url,
                "custody_app_secret": "***" if self.custody_app_secret else "(not set)",
                "local_key": "***" if self.fee_payer_secret_key else "(not set)",
            },
            "missing": self.missing_pipeline_config(),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
