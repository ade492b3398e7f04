from typing import List, Optional
import uuid

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.login_security import LoginSecurityConfig
from app.core.clock import Clock, epoch_millis, utc_now
from app.core.counter_store import CounterStore
from app.core.exceptions import (
    OtpAttemptsExceededError,
    OtpDeliveryError,
    OtpExpiredError,
    OtpInvalidCodeError,
    OtpNotFoundError,
    OtpRequiredException,
    OtpSessionMissingError,
    UserNotFoundError,
)
from app.core.failure_policy import FailurePolicy, GuardedOperation
from app.core.notifications import (
    HIGH_RISK_LOGIN_TEMPLATE,
    LOGIN_OTP_TEMPLATE,
    NotificationChannel,
    NotificationSender,
)
from app.core.security import (
    MASKED_CONTACT_PLACEHOLDER,
    generate_otp_code,
    hash_otp_code,
    mask_contact,
    verify_otp_code,
)
from app.core.utils import LoggerMixin
from app.models.user_model import User
from app.repositories.user_repo import UserRepository
from app.schemas.login_schemas import LocationData, SecurityContext
from app.schemas.security_state import OtpSession

RESEND_FAILED_MESSAGE = "Failed to resend verification code. Please try again."


class OtpStepUpFlow(LoggerMixin):
    """
    Step-up verification for high-risk logins.

    One pending session per (client IP, device fingerprint). The code is
    stored hashed and is single use: a successful verification, an expired
    session and exhausted attempts all delete the session.
    """

    def __init__(
        self,
        db: AsyncSession,
        store: CounterStore,
        notifier: NotificationSender,
        config: LoginSecurityConfig,
        clock: Clock = utc_now,
        policy: Optional[FailurePolicy] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.config = config
        self.clock = clock
        self.policy = policy or FailurePolicy()
        self.users = UserRepository(db)

    async def _load(self, context: SecurityContext) -> Optional[OtpSession]:
        raw = await self.store.get(OtpSession.key(context.client_ip, context.fingerprint))
        try:
            return OtpSession.parse(raw)
        except ValidationError:
            self.log_warning({"event_type": "otp_session_unreadable"})
            return None

    async def _save(self, context: SecurityContext, session: OtpSession) -> None:
        await self.store.set(
            OtpSession.key(context.client_ip, context.fingerprint),
            session.serialize(),
            ttl=self.config.otp.ttl_seconds,
        )

    async def clear_session(self, context: SecurityContext) -> None:
        await self.store.delete(OtpSession.key(context.client_ip, context.fingerprint))

    async def get_masked_contact(self, context: SecurityContext) -> str:
        """Masked contact of the pending session, or a placeholder."""
        session = await self.policy.run(
            GuardedOperation.OTP_SESSION_PEEK,
            self._load(context),
            fallback=None,
            timeout=self.config.store_timeout_seconds,
        )
        if session is not None and session.masked_contact:
            return session.masked_contact
        return MASKED_CONTACT_PLACEHOLDER

    async def has_active_otp(
        self, context: SecurityContext, user_id: Optional[uuid.UUID] = None
    ) -> bool:
        """
        Whether a pending session should block a new login from this device.

        With ``user_id`` only a session belonging to that user blocks, so one
        person's pending code never locks another account out of a shared
        device.
        """
        session = await self.policy.run(
            GuardedOperation.OTP_SESSION_PEEK,
            self._load(context),
            fallback=None,
            timeout=self.config.store_timeout_seconds,
        )
        if session is None:
            return False
        if user_id is None:
            return True
        return session.user_id == str(user_id)

    async def issue(self, user_id: uuid.UUID | str, context: SecurityContext) -> str:
        """
        Create a fresh session for the device and send the code by email.

        Returns:
            The masked contact the code was sent to

        Raises:
            UserNotFoundError: no active user with this id
            OtpDeliveryError: the code could not be sent; the session stays
                so the client can ask for a resend
        """
        user = await self.users.find_active_by_id(user_id)
        if not user:
            self.log_error({"event_type": "otp_user_not_found", "user_id": str(user_id)})
            raise UserNotFoundError()

        otp_config = self.config.otp
        code = generate_otp_code(otp_config.code_length)
        masked_contact = mask_contact(user.email, user.phone_number)
        session = OtpSession(
            code=hash_otp_code(code),
            user_id=str(user.id),
            expiration=epoch_millis(self.clock()) + otp_config.ttl_seconds * 1000,
            attempts=0,
            masked_contact=masked_contact,
        )
        await self._save(context, session)

        try:
            await self.policy.run(
                GuardedOperation.OTP_PRIMARY_DISPATCH,
                self.notifier.send(
                    NotificationChannel.EMAIL,
                    LOGIN_OTP_TEMPLATE,
                    {
                        "to": user.email,
                        "code": code,
                        "expiration_minutes": otp_config.expiration_minutes,
                    },
                ),
                fallback=None,
            )
        except Exception as e:
            self.log_error(
                {
                    "event_type": "otp_dispatch_failed",
                    "user_id": str(user.id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            raise OtpDeliveryError() from e

        self.log_info(
            {
                "event_type": "otp_issued",
                "user_id": str(user.id),
                "masked_contact": masked_contact,
            }
        )
        return masked_contact

    async def verify(self, code: str, context: SecurityContext) -> User:
        """
        Check ``code`` against the device's pending session.

        Returns:
            The user the session was issued for, freshly loaded

        Raises:
            OtpRequiredException subclasses describing why the code was not
            accepted, each carrying the masked contact
        """
        session = await self._load(context)
        if session is None:
            raise OtpNotFoundError(await self.get_masked_contact(context))

        masked_contact = session.masked_contact or MASKED_CONTACT_PLACEHOLDER
        now_ms = epoch_millis(self.clock())

        if session.is_expired(now_ms):
            await self.clear_session(context)
            raise OtpExpiredError(masked_contact)

        if session.attempts >= self.config.otp.max_attempts:
            await self.clear_session(context)
            self.log_security_event(
                {
                    "event_type": "otp_attempts_exhausted",
                    "user_id": session.user_id,
                    "ip_address": context.client_ip,
                }
            )
            raise OtpAttemptsExceededError(masked_contact)

        if not verify_otp_code(code, session.code):
            session.attempts += 1
            await self._save(context, session)
            self.log_warning(
                {
                    "event_type": "otp_invalid_code",
                    "user_id": session.user_id,
                    "attempts": session.attempts,
                }
            )
            raise OtpInvalidCodeError(masked_contact)

        await self.clear_session(context)

        user = await self.users.find_active_by_id(session.user_id)
        if not user:
            raise UserNotFoundError()

        self.log_info({"event_type": "otp_verified", "user_id": session.user_id})
        return user

    async def resend(self, context: SecurityContext) -> str:
        """Issue a new code for the user of the pending session."""
        try:
            session = await self._load(context)
            if session is None:
                raise OtpSessionMissingError(await self.get_masked_contact(context))
            masked_contact = await self.issue(session.user_id, context)
        except OtpRequiredException:
            raise
        except Exception as e:
            self.log_error(
                {
                    "event_type": "otp_resend_failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            raise OtpRequiredException(
                RESEND_FAILED_MESSAGE, await self.get_masked_contact(context)
            ) from e

        self.log_info({"event_type": "otp_resent", "user_id": session.user_id})
        return masked_contact

    async def notify_high_risk_login(
        self,
        user: User,
        reasons: List[str],
        client_ip: str,
        location: Optional[LocationData] = None,
    ) -> None:
        """Secondary security alert; a failure never affects the login."""
        place = None
        if location is not None:
            place = ", ".join(p for p in (location.city, location.region, location.country) if p)

        await self.policy.run(
            GuardedOperation.HIGH_RISK_ALERT,
            self.notifier.send(
                NotificationChannel.EMAIL,
                HIGH_RISK_LOGIN_TEMPLATE,
                {
                    "to": user.email,
                    "reasons": reasons,
                    "ip_address": client_ip,
                    "location": place or None,
                    "attempted_at": self.clock().isoformat(),
                },
            ),
            fallback=None,
            context={"user_id": str(user.id)},
        )
