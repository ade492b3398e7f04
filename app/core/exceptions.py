"""
Login security exceptions.

Every exception carries an HTTP status code, a user-facing message and a
``data`` payload so the API layer can render it without knowing the
internals. Messages never reveal remaining attempts, OTP codes or session
internals.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class RestrictionCategory(str, Enum):
    """Whether a restriction is regulatory or caused by the user's own activity."""

    COMPLIANCE = "COMPLIANCE"
    USER = "USER"


class RestrictionErrorType(str, Enum):
    ERR_COMPLIANCE_COUNTRY_BANNED = "ERR_COMPLIANCE_COUNTRY_BANNED"
    ERR_COMPLIANCE_REGION_RESTRICTED = "ERR_COMPLIANCE_REGION_RESTRICTED"
    ERR_COMPLIANCE_ACCOUNT_BLOCKED = "ERR_COMPLIANCE_ACCOUNT_BLOCKED"
    ERR_USER_ACCOUNT_LOCKED = "ERR_USER_ACCOUNT_LOCKED"
    ERR_USER_SESSION_EXPIRED = "ERR_USER_SESSION_EXPIRED"
    ERR_USER_PENDING_DELETION = "ERR_USER_PENDING_DELETION"


_ERROR_TYPE_TO_CATEGORY: Dict[RestrictionErrorType, RestrictionCategory] = {
    RestrictionErrorType.ERR_COMPLIANCE_COUNTRY_BANNED: RestrictionCategory.COMPLIANCE,
    RestrictionErrorType.ERR_COMPLIANCE_REGION_RESTRICTED: RestrictionCategory.COMPLIANCE,
    RestrictionErrorType.ERR_COMPLIANCE_ACCOUNT_BLOCKED: RestrictionCategory.COMPLIANCE,
    RestrictionErrorType.ERR_USER_ACCOUNT_LOCKED: RestrictionCategory.USER,
    RestrictionErrorType.ERR_USER_SESSION_EXPIRED: RestrictionCategory.USER,
    RestrictionErrorType.ERR_USER_PENDING_DELETION: RestrictionCategory.USER,
}

_DEFAULT_MESSAGES: Dict[RestrictionErrorType, str] = {
    RestrictionErrorType.ERR_COMPLIANCE_COUNTRY_BANNED: (
        "Access denied: This location is not permitted due to regulatory requirements."
    ),
    RestrictionErrorType.ERR_COMPLIANCE_REGION_RESTRICTED: (
        "This service is restricted in your region due to regulatory requirements."
    ),
    RestrictionErrorType.ERR_COMPLIANCE_ACCOUNT_BLOCKED: (
        "Your account is currently restricted. Please contact support to request account unrestriction."
    ),
    RestrictionErrorType.ERR_USER_ACCOUNT_LOCKED: (
        "Account temporarily locked due to too many failed attempts."
    ),
    RestrictionErrorType.ERR_USER_SESSION_EXPIRED: "Session expired. Please login again.",
    RestrictionErrorType.ERR_USER_PENDING_DELETION: (
        "Your account is scheduled for deletion, kindly contact support to cancel the request."
    ),
}

# (can_self_resolve, contact_support)
_DEFAULT_RESOLUTION: Dict[RestrictionErrorType, tuple] = {
    RestrictionErrorType.ERR_COMPLIANCE_COUNTRY_BANNED: (False, True),
    RestrictionErrorType.ERR_COMPLIANCE_REGION_RESTRICTED: (False, True),
    RestrictionErrorType.ERR_COMPLIANCE_ACCOUNT_BLOCKED: (False, True),
    RestrictionErrorType.ERR_USER_ACCOUNT_LOCKED: (True, False),
    RestrictionErrorType.ERR_USER_SESSION_EXPIRED: (True, False),
    RestrictionErrorType.ERR_USER_PENDING_DELETION: (False, True),
}


class LoginSecurityError(Exception):
    """Base class for errors raised by the login security engine."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_type: str = "ERR_LOGIN_SECURITY"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data: Dict[str, Any] = data or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.error_type, "message": self.message, "data": self.data}


class RestrictionException(LoginSecurityError):
    """Access restriction, classified as compliance-driven or user-driven."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        error_type: RestrictionErrorType,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        can_self_resolve, contact_support = _DEFAULT_RESOLUTION[error_type]
        payload = {"canSelfResolve": can_self_resolve, "contactSupport": contact_support}
        payload.update(data or {})
        super().__init__(message or _DEFAULT_MESSAGES[error_type], payload)
        self.type = error_type
        self.error_type = error_type.value
        self.restriction_category = _ERROR_TYPE_TO_CATEGORY[error_type]

    @property
    def is_compliance(self) -> bool:
        return self.restriction_category == RestrictionCategory.COMPLIANCE

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["restrictionCategory"] = self.restriction_category.value
        return body


class RestrictedRegionException(RestrictionException):
    """Pre-authentication regional restriction."""

    def __init__(
        self,
        restricted_places: str,
        message: Optional[str] = None,
        custom_type: Optional[str] = None,
    ):
        super().__init__(
            RestrictionErrorType.ERR_COMPLIANCE_REGION_RESTRICTED,
            message
            or f"This service is not available in {restricted_places} due to regulatory requirements.",
            {"restrictedPlaces": restricted_places},
        )
        self.restricted_places = restricted_places
        if custom_type:
            self.error_type = custom_type


class OtpRequiredException(LoginSecurityError):
    """Step-up verification is required; carries the masked contact to show."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "OTP_REQUIRED"

    def __init__(self, message: str, masked_contact: str):
        super().__init__(message, {"maskedContact": masked_contact, "otpRequired": True})
        self.masked_contact = masked_contact


class OtpNotFoundError(OtpRequiredException):
    error_type = "OTP_NOT_FOUND"

    def __init__(self, masked_contact: str):
        super().__init__("OTP expired or not found", masked_contact)


class OtpExpiredError(OtpRequiredException):
    error_type = "OTP_EXPIRED"

    def __init__(self, masked_contact: str):
        super().__init__("OTP has expired", masked_contact)


class OtpAttemptsExceededError(OtpRequiredException):
    error_type = "OTP_ATTEMPTS_EXCEEDED"

    def __init__(self, masked_contact: str):
        super().__init__("Too many OTP attempts", masked_contact)


class OtpInvalidCodeError(OtpRequiredException):
    error_type = "OTP_INVALID"

    def __init__(self, masked_contact: str):
        super().__init__("Invalid OTP code", masked_contact)


class OtpSessionMissingError(OtpRequiredException):
    error_type = "OTP_SESSION_MISSING"

    def __init__(self, masked_contact: str):
        super().__init__(
            "No active OTP session found. Please try logging in again.", masked_contact
        )


class OtpDeliveryError(LoginSecurityError):
    """The primary OTP channel could not deliver the code."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "OTP_DELIVERY_FAILED"

    def __init__(self, message: str = "Unable to send verification code. Please try again."):
        super().__init__(message)


class InvalidCredentialsError(LoginSecurityError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class UserNotFoundError(LoginSecurityError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "USER_NOT_FOUND"

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class NotificationDeliveryError(Exception):
    """Raised by notification senders when a message could not be delivered."""
