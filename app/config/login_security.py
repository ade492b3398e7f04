"""
Login security configuration snapshot.

The engine never reads settings on its own; it receives one of these
frozen models at construction and keeps it for the lifetime of the
request.
"""

from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field


class RiskScores(BaseModel):
    """Points added per risk signal."""

    model_config = ConfigDict(frozen=True)

    new_device: int = 40
    country_change: int = 25
    region_change: int = 15
    city_change: int = 5
    vpn_usage: int = 15


class OtpConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    expiration_minutes: int = Field(default=10, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    code_length: int = Field(default=6, ge=4, le=10)

    @property
    def ttl_seconds(self) -> int:
        return self.expiration_minutes * 60


class RegionalGuardConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    restricted_regions: Tuple[str, ...] = ()
    restricted_countries: Tuple[str, ...] = ()


class LoginSecurityConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    window_seconds: int = Field(default=3600, ge=1)
    lockout_duration_seconds: int = Field(default=900, ge=1)
    otp_threshold: int = 30
    disable_login_region_check: bool = False
    store_timeout_seconds: float = 2.0
    provider_timeout_seconds: float = 5.0
    otp: OtpConfig = OtpConfig()
    risk_scores: RiskScores = RiskScores()
    regional_guard: RegionalGuardConfig = RegionalGuardConfig()
