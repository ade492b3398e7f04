from datetime import datetime
from typing import Any, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DeviceInfo(BaseModel):
    """Descriptive device headers supplied by the client."""

    device_name: Optional[str] = None
    device_type: Optional[str] = None
    os: Optional[str] = None
    browser: Optional[str] = None


class SecurityContext(BaseModel):
    """Per-request security context: where the attempt comes from."""

    model_config = ConfigDict(frozen=True)

    client_ip: str
    fingerprint: str
    user_agent: Optional[str] = None
    device_info: DeviceInfo = Field(default_factory=DeviceInfo)


class LocationData(BaseModel):
    """Geolocation returned by the location provider for one IP."""

    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    is_vpn: Optional[bool] = None

    @property
    def is_empty(self) -> bool:
        return not (self.country or self.region or self.city)


class LastKnownLocation(BaseModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


class RiskCheckResult(BaseModel):
    score: int = 0
    reason: Optional[str] = None


class RiskPolicy(BaseModel):
    """How the aggregator treats this account; bypass skips every lookup."""

    model_config = ConfigDict(frozen=True)

    bypass: bool = False


class RiskAssessment(BaseModel):
    score: int = 0
    reasons: List[str] = Field(default_factory=list)
    location_data: Optional[LocationData] = None


class RateLimitDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class LoginResult(BaseModel):
    """Outcome of a login, OTP verification or resend call."""

    success: bool = False
    otp_required: bool = False
    locked_out: bool = False
    message: str = ""
    masked_contact: Optional[str] = None
    risk_score: int = 0
    reasons: List[str] = Field(default_factory=list)
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    user_id: Optional[uuid.UUID] = None


# ==================== REQUEST SCHEMAS ====================


class LoginRequest(BaseModel):
    """Credentials: exactly one identifier plus the password."""

    email: Optional[str] = None
    phone_number: Optional[str] = None
    username: Optional[str] = None
    password: str

    @field_validator("email", "phone_number", "username")
    @classmethod
    def strip_identifier(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginRequest":
        if not (self.email or self.phone_number or self.username):
            raise ValueError("One of email, phone_number or username is required")
        return self

    @property
    def identifier(self) -> str:
        return self.email or self.phone_number or self.username


class VerifyOtpRequest(BaseModel):
    code: str = Field(min_length=4, max_length=10)

    @field_validator("code")
    @classmethod
    def digits_only(cls, v: str) -> str:
        v = v.strip()
        if not v.isdigit():
            raise ValueError("Verification code must contain digits only")
        return v


# ==================== RESPONSE SCHEMAS ====================


class LoginResponse(BaseModel):
    success: bool
    otp_required: bool
    locked_out: bool
    message: str
    masked_contact: Optional[str] = None
    access_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    user_id: Optional[uuid.UUID] = None

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(**result.model_dump(exclude={"risk_score", "reasons"}))


class ResendOtpResponse(BaseModel):
    message: str
    masked_contact: str


class ErrorResponse(BaseModel):
    detail: str
    type: str
    restricted_region: bool = False
    restriction_category: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
