"""
Configuration management.

Everything comes from environment variables (a ``.env`` file is honoured via
python-dotenv). Settings are resolved once at startup and injected; nothing
downstream reads the environment directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .models import VerificationMode


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass
class Settings:
    """Application settings with env-driven defaults."""

    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///land_market.db")
    )

    # Ledger: all three must be set, otherwise the ledger runs disabled
    rpc_url: Optional[str] = field(default_factory=lambda: _optional("ETHEREUM_RPC_URL"))
    contract_address: Optional[str] = field(
        default_factory=lambda: _optional("SMART_CONTRACT_ADDRESS")
    )
    private_key: Optional[str] = field(default_factory=lambda: _optional("PRIVATE_KEY"))
    chain_id: int = field(default_factory=lambda: int(os.getenv("LEDGER_CHAIN_ID", "1337")))
    ledger_timeout: float = field(
        default_factory=lambda: float(os.getenv("LEDGER_TIMEOUT", "30"))
    )

    verification_mode: VerificationMode = field(
        default_factory=lambda: VerificationMode(
            os.getenv("VERIFICATION_MODE", VerificationMode.WALLET.value).lower()
        )
    )

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    @classmethod
    def load(cls, dotenv: bool = True) -> "Settings":
        """Load settings from the environment (and ``.env`` if present)."""
        if dotenv:
            load_dotenv()
        return cls()

    @property
    def ledger_configured(self) -> bool:
        return bool(self.rpc_url and self.contract_address and self.private_key)

    def to_dict(self) -> dict:
        """Settings safe to expose (no private key)."""
        return {
            "database_url": self.database_url,
            "ledger_configured": self.ledger_configured,
            "chain_id": self.chain_id,
            "ledger_timeout": self.ledger_timeout,
            "verification_mode": self.verification_mode.value,
            "log_level": self.log_level,
        }
