from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config.login_security import LoginSecurityConfig
from app.core.clock import Clock, utc_now
from app.core.counter_store import CounterStore
from app.core.exceptions import (
    InvalidCredentialsError,
    RestrictionErrorType,
    RestrictionException,
)
from app.core.failure_policy import FailurePolicy, GuardedOperation
from app.core.location_provider import LocationProvider
from app.core.notifications import NotificationSender
from app.core.security import authenticate_user, create_access_token
from app.core.utils import LoggerMixin
from app.models.security_model import LoginEvent
from app.models.user_model import User
from app.repositories.security_repo import LoginEventRepository
from app.repositories.user_repo import UserRepository
from app.schemas.login_schemas import (
    LocationData,
    LoginResult,
    RiskAssessment,
    RiskPolicy,
    SecurityContext,
)
from app.services.device_trust_service import DeviceTrustRegistry
from app.services.location_service import LocationRiskEvaluator
from app.services.otp_service import OtpStepUpFlow
from app.services.rate_limiter import IdentifierRateLimiter
from app.services.regional_access import RegionalAccessGuard
from app.services.risk_service import RiskAggregator

OTP_PENDING_MESSAGE = (
    "A verification code is already pending. "
    "Please check your messages before requesting a new one."
)
LOGIN_SUCCESS_MESSAGE = "Login successful"
OTP_VERIFIED_REASON = "high_risk_otp_verified"


class LoginOrchestrator(LoggerMixin):
    """
    Login decision pipeline.

    Built per request: the location evaluator it owns memoizes provider
    lookups for the attempt, so the risk assessment and the success path
    share a single lookup.
    """

    def __init__(
        self,
        db: AsyncSession,
        store: CounterStore,
        location_provider: LocationProvider,
        notifier: NotificationSender,
        config: LoginSecurityConfig,
        clock: Clock = utc_now,
        policy: Optional[FailurePolicy] = None,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.policy = policy or FailurePolicy()
        self.users = UserRepository(db)
        self.events = LoginEventRepository(db)
        self.rate_limiter = IdentifierRateLimiter(store, config, clock, self.policy)
        self.devices = DeviceTrustRegistry(db, config, location_provider, clock, self.policy)
        self.locations = LocationRiskEvaluator(db, location_provider, config, self.policy)
        self.risk = RiskAggregator(self.devices, self.locations)
        self.otp = OtpStepUpFlow(db, store, notifier, config, clock, self.policy)
        self.regional_guard = RegionalAccessGuard(
            location_provider, config.provider_timeout_seconds, self.policy
        )

    @property
    def region_checks_enabled(self) -> bool:
        return not self.config.disable_login_region_check

    async def login(
        self, identifier: str, password: str, context: SecurityContext
    ) -> LoginResult:
        """
        Run a password login through the security pipeline.

        Args:
            identifier: Email, username or phone number
            password: Plain text password
            context: Client IP, fingerprint and device headers

        Returns:
            LoginResult: success with a token, OTP required, or locked out

        Raises:
            RestrictedRegionException: request from a restricted region
            RestrictionException: banned country or account pending removal
            InvalidCredentialsError: unknown identifier or wrong password
            OtpDeliveryError: step-up was required but the code could not be sent
        """
        guard = self.config.regional_guard
        if guard.enabled:
            await self.regional_guard.validate(
                context.client_ip,
                restricted_regions=guard.restricted_regions,
                restricted_countries=guard.restricted_countries,
            )

        # Looked up before the password check only to read the exemption flag
        known_user = await self.users.find_active_by_identifier(identifier)
        bypass = bool(known_user and known_user.disable_login_restrictions)

        decision = await self.rate_limiter.check(identifier, bypass=bypass)
        if not decision.allowed:
            return LoginResult(locked_out=True, message=decision.reason or "")

        if (
            self.region_checks_enabled
            and not bypass
            and known_user is not None
            and await self.otp.has_active_otp(context, known_user.id)
        ):
            return LoginResult(
                otp_required=True,
                message=OTP_PENDING_MESSAGE,
                masked_contact=await self.otp.get_masked_contact(context),
            )

        try:
            user = await authenticate_user(self.users, identifier, password)
        except InvalidCredentialsError:
            self.log_security_event(
                {
                    "event_type": "failed_login_attempt",
                    "ip_address": context.client_ip,
                    "user_agent": context.user_agent,
                }
            )
            raise

        if user.is_pending_removal:
            raise RestrictionException(RestrictionErrorType.ERR_USER_PENDING_DELETION)

        if user.disable_login_restrictions:
            return await self.successful_login(user, context, RiskAssessment(), identifier)

        assessment = await self.risk.assess(user.id, context, RiskPolicy(bypass=False))

        if assessment.score >= self.config.otp_threshold and self.region_checks_enabled:
            return await self._step_up(user, context, assessment)

        return await self.successful_login(user, context, assessment, identifier)

    async def _step_up(
        self, user: User, context: SecurityContext, assessment: RiskAssessment
    ) -> LoginResult:
        self.log_security_event(
            {
                "event_type": "high_risk_login",
                "user_id": str(user.id),
                "ip_address": context.client_ip,
                "risk_score": assessment.score,
                "reasons": assessment.reasons,
            }
        )
        masked_contact = await self.otp.issue(user.id, context)
        await self.otp.notify_high_risk_login(
            user, assessment.reasons, context.client_ip, assessment.location_data
        )

        if "@" in masked_contact:
            message = f"Code sent to {masked_contact}"
        else:
            message = f"Code sent to ******{masked_contact}"

        return LoginResult(
            otp_required=True,
            message=message,
            masked_contact=masked_contact,
            risk_score=assessment.score,
            reasons=assessment.reasons,
            user_id=user.id,
        )

    async def verify_otp(self, code: str, context: SecurityContext) -> LoginResult:
        """Complete a stepped-up login with the emailed code."""
        user = await self.otp.verify(code, context)

        location: Optional[LocationData] = None
        if not user.disable_login_restrictions:
            location = await self.locations.get_current_location(user.id, context.client_ip)

        assessment = RiskAssessment(
            score=self.config.otp_threshold,
            reasons=[OTP_VERIFIED_REASON],
            location_data=location,
        )
        return await self.successful_login(user, context, assessment)

    async def resend_otp(self, context: SecurityContext) -> str:
        return await self.otp.resend(context)

    async def successful_login(
        self,
        user: User,
        context: SecurityContext,
        assessment: RiskAssessment,
        identifier: Optional[str] = None,
    ) -> LoginResult:
        """
        Record the login and mint an access token.

        Trusts the device, appends the login event with the location fetched
        during assessment, then clears the identifier's counters and the
        device's pending OTP.
        """
        device = await self.devices.upsert_on_login(
            user.id, context.fingerprint, context.device_info
        )

        location = assessment.location_data or LocationData()
        await self.events.create(
            LoginEvent(
                user_id=user.id,
                device_id=device.id,
                ip_address=context.client_ip,
                login_time=self.clock(),
                city=location.city,
                region=location.region,
                country=location.country,
                is_vpn=bool(location.is_vpn),
                risk_score=assessment.score,
            )
        )

        identifiers = {user.email.lower()}
        if identifier:
            identifiers.add(identifier.strip().lower())
        for value in sorted(identifiers):
            await self.rate_limiter.clear(value)
        await self.policy.run(
            GuardedOperation.CLEAR_ATTEMPTS,
            self.otp.clear_session(context),
            fallback=None,
            timeout=self.config.store_timeout_seconds,
        )

        access_token, expires_at = create_access_token(user, now=self.clock())

        self.log_security_event(
            {
                "event_type": "successful_login",
                "user_id": str(user.id),
                "device_id": str(device.id),
                "ip_address": context.client_ip,
                "risk_score": assessment.score,
                "reasons": assessment.reasons,
            }
        )

        return LoginResult(
            success=True,
            message=LOGIN_SUCCESS_MESSAGE,
            risk_score=assessment.score,
            reasons=assessment.reasons,
            access_token=access_token,
            expires_at=expires_at,
            user_id=user.id,
        )
