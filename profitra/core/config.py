# profitra/core/config.py
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split(value: str | None) -> List[str]:
    if not value:
        return []
    return [x.strip().upper() for x in value.split(",") if x.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Core ---
    DATABASE_URL: str = "sqlite:///./profitra.db"
    LOG_LEVEL: str = "INFO"

    # --- Limits ---
    MIN_DEPOSIT: Decimal = Decimal("1")
    MIN_WITHDRAWAL: Decimal = Decimal("10")

    DEPOSIT_CURRENCIES: str = "BTC,USDT"
    WITHDRAWAL_CURRENCIES: str = "BTC,USDT,ETH"

    # --- System deposit wallets (one per currency) ---
    BTC_WALLET_ADDRESS: str | None = None
    USDT_WALLET_ADDRESS: str | None = None
    ETH_WALLET_ADDRESS: str | None = None

    # --- Maturity sweeper ---
    SWEEPER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 60

    # --- Optimistic locking ---
    LEDGER_MAX_RETRIES: int = 3
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.05

    @property
    def database_url(self) -> str:
        # Railway / Heroku hand out postgres://; SQLAlchemy expects postgresql://
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    @property
    def deposit_currencies(self) -> List[str]:
        return _split(self.DEPOSIT_CURRENCIES)

    @property
    def withdrawal_currencies(self) -> List[str]:
        return _split(self.WITHDRAWAL_CURRENCIES)

    @property
    def deposit_wallets(self) -> Dict[str, str]:
        wallets = {
            "BTC": self.BTC_WALLET_ADDRESS,
            "USDT": self.USDT_WALLET_ADDRESS,
            "ETH": self.ETH_WALLET_ADDRESS,
        }
        return {cur: addr for cur, addr in wallets.items() if addr}


settings = Settings()
