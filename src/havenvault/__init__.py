"""Haven Vault - sponsored savings deposits and withdrawals on Solana."""

__version__ = "0.1.0"
