# ==================================================================================
# core/config.py: Nudge Configuration (Pydantic v2 settings + SendGrid + Stripe)
# ==================================================================================
import logging
import sys
from typing import Literal, Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite+aiosqlite:///./nudge.db"
    SQL_ECHO: bool = False

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Token lifetimes
    INVITATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60
    DELETE_ACCOUNT_EXPIRE_MINUTES: int = 10

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: Optional[str] = None
    MAIL_FROM: Optional[str] = None

    # ------------------------
    # FRONTEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:3000"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # ------------------------
    # STRIPE / PAYMENT CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRO_PRICE_ID: Optional[str] = None
    STRIPE_ENTERPRISE_PRICE_ID: Optional[str] = None

    @property
    def STRIPE_SUCCESS_URL(self) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/dashboard?subscription=success"

    @property
    def STRIPE_CANCEL_URL(self) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/dashboard?subscription=cancelled"

    @property
    def STRIPE_PORTAL_RETURN_URL(self) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/dashboard"

    # ------------------------
    # QUOTA CONFIG
    # ------------------------
    # "actual" sums stored file sizes, "estimate" uses file count * 0.5 MB
    STORAGE_ACCOUNTING: Literal["actual", "estimate"] = "actual"

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production' | 'test'
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
except ValidationError as e:
    logger.critical("❌ Environment configuration error: missing or invalid settings!\n%s", e)
    sys.exit(1)
