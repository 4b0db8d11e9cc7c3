"""
Ledger Service: Config

集中管理環境變數與部署預設值（pydantic-settings）
"""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    # =========================
    # App / Database
    # =========================
    database_url: str = "sqlite:///./ledger.db"
    log_level: str = "INFO"

    # =========================
    # Units / Randomness
    # =========================
    credit_decimals: int = 6
    entropy_source: str = "block"   # "block" | "system"

    # =========================
    # Deployment defaults（deploy.py 使用）
    # =========================
    default_stake_price: str = "0.8"
    default_stake_fee: str = "0.2"
    default_credit_ratio: int = 2
    default_credit_name: str = "Lottery Token"
    default_credit_symbol: str = "LT0"
    operator_identity: str = "operator"

    @field_validator("entropy_source")
    @classmethod
    def _norm_entropy_source(cls, v: str) -> str:
        v = (v or "block").strip().lower()
        if v not in ("block", "system"):
            raise ValueError(f"Unknown entropy source: {v}")
        return v

    @field_validator("credit_decimals")
    @classmethod
    def _check_decimals(cls, v: int) -> int:
        if v < 0 or v > 18:
            raise ValueError("credit_decimals must be between 0 and 18")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()
