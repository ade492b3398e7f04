import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import HashingError, VerificationError, VerifyMismatchError
from jose import jwt

from app.config.config import settings
from app.core.exceptions import InvalidCredentialsError
from app.core.utils import logger
from app.models.user_model import User
from app.repositories.user_repo import UserRepository

SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

MASKED_CONTACT_PLACEHOLDER = "***@***.com"


ph = PasswordHasher(
    time_cost=3, memory_cost=65536, parallelism=1, hash_len=32, salt_len=16
)

# OTP codes live for minutes; a lighter hasher keeps verification fast
otp_ph = PasswordHasher(
    time_cost=2, memory_cost=19456, parallelism=1, hash_len=32, salt_len=16
)


def get_password_hash(password: str) -> str:
    """Hash a plaintext password using Argon2"""
    try:
        return ph.hash(password)
    except HashingError as e:
        logger.log_error({"event_type": "password_hashing_failed", "error": str(e)})
        raise


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against an Argon2 hashed password"""
    try:
        ph.verify(hashed_password, plain_password)
        return True
    except VerifyMismatchError:
        return False
    except VerificationError as e:
        logger.log_error(
            {
                "event_type": "password_verification_error",
                "error": str(e),
            }
        )
        return False


def generate_otp_code(length: int = 6) -> str:
    """Uniformly random numeric code, zero padded to ``length`` digits."""
    return str(secrets.randbelow(10**length)).zfill(length)


def hash_otp_code(code: str) -> str:
    return otp_ph.hash(code)


def verify_otp_code(code: str, hashed_code: str) -> bool:
    try:
        otp_ph.verify(hashed_code, code)
        return True
    except VerifyMismatchError:
        return False
    except VerificationError as e:
        logger.log_warning({"event_type": "otp_verification_error", "error": str(e)})
        return False


def mask_contact(email: Optional[str], phone_number: Optional[str] = None) -> str:
    """
    Mask the contact an OTP is sent to.

    ``john.doe@example.com`` becomes ``jo***@example.com``; a local part of
    two characters or fewer becomes ``***@example.com``. Without an email the
    phone number keeps its last four digits.
    """
    if email and "@" in email:
        local, domain = email.split("@", 1)
        if len(local) <= 2:
            return f"***@{domain}"
        return f"{local[:2]}***@{domain}"
    if phone_number and len(phone_number) > 4:
        return f"***{phone_number[-4:]}"
    return MASKED_CONTACT_PLACEHOLDER


def create_access_token(
    user: User,
    now: Optional[datetime] = None,
    expires_delta: Optional[timedelta] = None,
) -> Tuple[str, datetime]:
    """Create a JWT access token and return it with its expiry."""
    issued_at = now or datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user.id),
        "email": user.email,
        "type": "access",
        "iat": int(issued_at.timestamp()),
        "exp": expire,
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM), expire


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])


async def authenticate_user(
    user_repo: UserRepository, identifier: str, password: str
) -> User:
    """
    Validate credentials for an email, username or phone identifier.

    Raises:
        InvalidCredentialsError: unknown identifier or wrong password, without
            saying which
    """
    user = await user_repo.find_active_by_identifier(identifier)
    if not user or not verify_password(password, user.password):
        logger.log_warning(
            {
                "event_type": "invalid_credentials",
                "user_found": user is not None,
            }
        )
        raise InvalidCredentialsError()
    return user
