from pathlib import Path
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.login_security import (
    LoginSecurityConfig,
    OtpConfig,
    RegionalGuardConfig,
    RiskScores,
)

_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"


class Settings(BaseSettings):
    # ==================== APPLICATION ====================
    PROJECT_NAME: str = "Login Security Engine"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    API_PREFIX: str = "/api/v1"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # ==================== DATABASE ====================
    DATABASE_URL: str = "sqlite+aiosqlite:///./login_security.db"
    DATABASE_ECHO: bool = False

    # ==================== COUNTER STORE ====================
    COUNTER_STORE_TYPE: str = "redis"  # 'redis' or 'memory'
    REDIS_URL: str = "redis://localhost:6379/0"
    STORE_TIMEOUT_SECONDS: float = 2.0

    # ==================== TOKENS ====================
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ==================== LOCATION PROVIDER ====================
    LOCATION_PROVIDER_URL: str = "https://api.sumsub.com"
    LOCATION_PROVIDER_TOKEN: str = ""
    LOCATION_PROVIDER_TIMEOUT_SECONDS: float = 5.0

    # ==================== EMAIL ====================
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    FROM_EMAIL: str = "noreply@example.com"
    FROM_NAME: str = "Account Security"

    # ==================== LOGIN SECURITY ====================
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_WINDOW_SECONDS: int = 3600
    LOGIN_LOCKOUT_DURATION_SECONDS: int = 900
    LOGIN_OTP_THRESHOLD: int = 30
    OTP_EXPIRATION_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 3
    OTP_CODE_LENGTH: int = 6
    RISK_SCORE_NEW_DEVICE: int = 40
    RISK_SCORE_COUNTRY_CHANGE: int = 25
    RISK_SCORE_REGION_CHANGE: int = 15
    RISK_SCORE_CITY_CHANGE: int = 5
    RISK_SCORE_VPN_USAGE: int = 15
    DISABLE_LOGIN_REGION_CHECK: bool = False

    # ==================== REGIONAL ACCESS ====================
    REGIONAL_GUARD_ENABLED: bool = False
    RESTRICTED_REGIONS: List[str] = []
    RESTRICTED_COUNTRIES: List[str] = []

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE if _ENV_FILE.is_file() else ".env",
        extra="ignore",
    )

    @field_validator("SECRET_KEY", "LOCATION_PROVIDER_TOKEN", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        return (v or "").strip()

    def login_security_config(self) -> LoginSecurityConfig:
        """Build the immutable snapshot handed to the login security engine."""
        return LoginSecurityConfig(
            max_attempts=self.LOGIN_MAX_ATTEMPTS,
            window_seconds=self.LOGIN_WINDOW_SECONDS,
            lockout_duration_seconds=self.LOGIN_LOCKOUT_DURATION_SECONDS,
            otp_threshold=self.LOGIN_OTP_THRESHOLD,
            disable_login_region_check=self.DISABLE_LOGIN_REGION_CHECK,
            store_timeout_seconds=self.STORE_TIMEOUT_SECONDS,
            provider_timeout_seconds=self.LOCATION_PROVIDER_TIMEOUT_SECONDS,
            otp=OtpConfig(
                expiration_minutes=self.OTP_EXPIRATION_MINUTES,
                max_attempts=self.OTP_MAX_ATTEMPTS,
                code_length=self.OTP_CODE_LENGTH,
            ),
            risk_scores=RiskScores(
                new_device=self.RISK_SCORE_NEW_DEVICE,
                country_change=self.RISK_SCORE_COUNTRY_CHANGE,
                region_change=self.RISK_SCORE_REGION_CHANGE,
                city_change=self.RISK_SCORE_CITY_CHANGE,
                vpn_usage=self.RISK_SCORE_VPN_USAGE,
            ),
            regional_guard=RegionalGuardConfig(
                enabled=self.REGIONAL_GUARD_ENABLED,
                restricted_regions=tuple(self.RESTRICTED_REGIONS),
                restricted_countries=tuple(self.RESTRICTED_COUNTRIES),
            ),
        )


settings = Settings()
