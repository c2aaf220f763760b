from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


DEFAULT_COMMISSION_LEVEL_RATES = {1: 10.0, 2: 5.0, 3: 2.0}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (tokens are issued by the identity service, only verified here)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # App Settings
    APP_NAME: str = "SkillMint Money Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Razorpay Payment Gateway
    RAZORPAY_KEY_ID: str = ""  # Razorpay Key ID
    RAZORPAY_KEY_SECRET: str = ""  # Razorpay Key Secret
    RAZORPAY_WEBHOOK_SECRET: str = ""  # For webhook verification
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0  # Hard timeout for every processor call
    CURRENCY: str = "INR"

    # Affiliate commissions, keyed by referral level (JSON: {"1": 10, "2": 5, "3": 2})
    COMMISSION_LEVEL_RATES: dict[int, float] = dict(DEFAULT_COMMISSION_LEVEL_RATES)

    # Withdrawals
    MIN_WITHDRAWAL_AMOUNT: float = 100.0
    MAX_WITHDRAWAL_AMOUNT: float = 50000.0
    WITHDRAWAL_FEE_PERCENT: float = 2.0
    MIN_WITHDRAWAL_FEE: float = 10.0

    # Orders and refunds
    REFUND_WINDOW_DAYS: int = 30  # Also the hold period before commissions can be approved
    ORDER_TTL_HOURS: int = 24  # Pending orders older than this are swept

    # Wallet ledger
    WALLET_MAX_RETRIES: int = 5  # Compare-and-set attempts before WalletContention
    WALLET_RETRY_BASE_DELAY: float = 0.01  # Seconds, doubled on every retry

    # User whose wallet receives platform revenue; platform credit is skipped when unset
    PLATFORM_ACCOUNT_ID: Optional[str] = None

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    EXPIRE_ORDERS_INTERVAL_MINUTES: int = 30
    RECONCILE_INTERVAL_MINUTES: int = 15
    PAYMENT_CHECK_INTERVAL_MINUTES: int = 5

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('COMMISSION_LEVEL_RATES', mode='before')
    @classmethod
    def parse_commission_rates(cls, v):
        if isinstance(v, str):
            v = json.loads(v)
        return v

    @field_validator('COMMISSION_LEVEL_RATES')
    @classmethod
    def check_commission_rates(cls, v):
        for level, rate in v.items():
            if level not in (1, 2, 3):
                raise ValueError(f"Unsupported commission level: {level}")
            if not 0 <= rate <= 50:
                raise ValueError(f"Commission rate for level {level} must be between 0 and 50")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
