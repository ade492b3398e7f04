"""
OTP Step-Up Flow Tests

Issue, verify and resend of emailed login codes.
"""

import pytest

from app.core.counter_store import CounterStoreError, InMemoryCounterStore
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
from app.core.notifications import HIGH_RISK_LOGIN_TEMPLATE, LOGIN_OTP_TEMPLATE
from app.core.security import MASKED_CONTACT_PLACEHOLDER
from app.schemas.login_schemas import SecurityContext
from app.schemas.security_state import OtpSession
from app.services.otp_service import RESEND_FAILED_MESSAGE, OtpStepUpFlow


class UnreachableStore(InMemoryCounterStore):
    async def get(self, key):
        raise CounterStoreError("connection reset")


@pytest.fixture
def flow(db_session, store, notifier, config, clock) -> OtpStepUpFlow:
    return OtpStepUpFlow(db_session, store, notifier, config, clock)


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


@pytest.mark.asyncio
@pytest.mark.auth
class TestIssue:

    async def test_issue_stores_hashed_session(
        self, flow, store, notifier, test_user, security_context, config
    ):
        masked = await flow.issue(test_user.id, security_context)

        raw = await store.get(
            OtpSession.key(security_context.client_ip, security_context.fingerprint)
        )
        session = OtpSession.parse(raw)
        code = notifier.last_code()

        assert masked == "us***@test.com"
        assert session.user_id == str(test_user.id)
        assert session.attempts == 0
        assert session.code != code
        assert len(code) == config.otp.code_length
        assert code.isdigit()

    async def test_issue_sends_code_to_user_email(
        self, flow, notifier, test_user, security_context
    ):
        await flow.issue(test_user.id, security_context)

        message = notifier.sent[-1]
        assert message["template"] == LOGIN_OTP_TEMPLATE
        assert message["payload"]["to"] == "user@test.com"
        assert message["payload"]["expiration_minutes"] == 10

    async def test_session_expires_with_ttl(
        self, flow, store, test_user, security_context, config
    ):
        await flow.issue(test_user.id, security_context)

        key = OtpSession.key(security_context.client_ip, security_context.fingerprint)
        assert store.ttl(key) == pytest.approx(config.otp.ttl_seconds)

    async def test_unknown_user_raises(self, flow, security_context):
        with pytest.raises(UserNotFoundError):
            await flow.issue("00000000-0000-0000-0000-000000000000", security_context)

    async def test_dispatch_failure_keeps_session(
        self, flow, notifier, test_user, security_context
    ):
        notifier.failing_templates.add(LOGIN_OTP_TEMPLATE)

        with pytest.raises(OtpDeliveryError):
            await flow.issue(test_user.id, security_context)

        assert await flow.has_active_otp(security_context) is True


@pytest.mark.asyncio
@pytest.mark.auth
class TestVerify:

    async def test_correct_code_succeeds_once(
        self, flow, notifier, test_user, security_context
    ):
        await flow.issue(test_user.id, security_context)
        code = notifier.last_code()

        user = await flow.verify(code, security_context)

        assert user.id == test_user.id
        with pytest.raises(OtpNotFoundError):
            await flow.verify(code, security_context)

    async def test_invalid_code_counts_attempt(
        self, flow, store, notifier, test_user, security_context
    ):
        await flow.issue(test_user.id, security_context)
        code = notifier.last_code()

        with pytest.raises(OtpInvalidCodeError) as exc_info:
            await flow.verify(_wrong(code), security_context)

        raw = await store.get(
            OtpSession.key(security_context.client_ip, security_context.fingerprint)
        )
        assert OtpSession.parse(raw).attempts == 1
        assert exc_info.value.masked_contact == "us***@test.com"

    async def test_exhausted_attempts_reject_correct_code(
        self, flow, notifier, test_user, security_context, config
    ):
        await flow.issue(test_user.id, security_context)
        code = notifier.last_code()
        for _ in range(config.otp.max_attempts):
            with pytest.raises(OtpInvalidCodeError):
                await flow.verify(_wrong(code), security_context)

        with pytest.raises(OtpAttemptsExceededError):
            await flow.verify(code, security_context)

        assert await flow.has_active_otp(security_context) is False

    async def test_expired_code(self, flow, notifier, test_user, security_context, clock):
        await flow.issue(test_user.id, security_context)
        code = notifier.last_code()

        clock.advance(9 * 60)
        assert await flow.has_active_otp(security_context) is True
        clock.advance(2 * 60)

        with pytest.raises((OtpExpiredError, OtpNotFoundError)):
            await flow.verify(code, security_context)

    async def test_expiry_checked_before_code(
        self, flow, store, notifier, test_user, security_context, clock
    ):
        await flow.issue(test_user.id, security_context)
        code = notifier.last_code()
        key = OtpSession.key(security_context.client_ip, security_context.fingerprint)
        session = OtpSession.parse(await store.get(key))
        # Session outlives its expiration field, e.g. a store with a longer TTL
        session.expiration -= 20 * 60 * 1000
        await store.set(key, session.serialize())

        with pytest.raises(OtpExpiredError):
            await flow.verify(code, security_context)

        assert await store.get(key) is None

    async def test_session_is_bound_to_device(
        self, flow, notifier, test_user, security_context
    ):
        await flow.issue(test_user.id, security_context)
        code = notifier.last_code()
        other_device = SecurityContext(
            client_ip=security_context.client_ip, fingerprint="fp-other"
        )

        with pytest.raises(OtpNotFoundError) as exc_info:
            await flow.verify(code, other_device)

        assert exc_info.value.masked_contact == MASKED_CONTACT_PLACEHOLDER

    async def test_corrupt_session_is_not_found(self, flow, store, security_context):
        key = OtpSession.key(security_context.client_ip, security_context.fingerprint)
        await store.set(key, '{"code": "x"}')

        with pytest.raises(OtpNotFoundError):
            await flow.verify("123456", security_context)


@pytest.mark.asyncio
@pytest.mark.auth
class TestResend:

    async def test_resend_without_session(self, flow, security_context):
        with pytest.raises(OtpSessionMissingError) as exc_info:
            await flow.resend(security_context)

        assert exc_info.value.masked_contact == MASKED_CONTACT_PLACEHOLDER

    async def test_resend_issues_new_code_and_resets_attempts(
        self, flow, store, notifier, test_user, security_context
    ):
        await flow.issue(test_user.id, security_context)
        first_code = notifier.last_code()
        with pytest.raises(OtpInvalidCodeError):
            await flow.verify(_wrong(first_code), security_context)

        masked = await flow.resend(security_context)

        raw = await store.get(
            OtpSession.key(security_context.client_ip, security_context.fingerprint)
        )
        assert masked == "us***@test.com"
        assert OtpSession.parse(raw).attempts == 0
        assert len([n for n in notifier.sent if n["template"] == LOGIN_OTP_TEMPLATE]) == 2

        user = await flow.verify(notifier.last_code(), security_context)
        assert user.id == test_user.id

    async def test_resend_delivery_failure(
        self, flow, notifier, test_user, security_context
    ):
        await flow.issue(test_user.id, security_context)
        notifier.failing_templates.add(LOGIN_OTP_TEMPLATE)

        with pytest.raises(OtpRequiredException) as exc_info:
            await flow.resend(security_context)

        assert exc_info.value.message == RESEND_FAILED_MESSAGE
        assert exc_info.value.masked_contact == "us***@test.com"


@pytest.mark.asyncio
@pytest.mark.auth
class TestSessionQueries:

    async def test_has_active_otp_filters_by_user(
        self, flow, make_user, test_user, security_context
    ):
        other = await make_user(email="other@test.com", username="other", phone_number=None)
        await flow.issue(test_user.id, security_context)

        assert await flow.has_active_otp(security_context) is True
        assert await flow.has_active_otp(security_context, test_user.id) is True
        assert await flow.has_active_otp(security_context, other.id) is False

    async def test_store_errors_read_as_no_session(
        self, db_session, notifier, config, clock, security_context
    ):
        flow = OtpStepUpFlow(db_session, UnreachableStore(clock=clock), notifier, config, clock)

        assert await flow.has_active_otp(security_context) is False
        assert await flow.get_masked_contact(security_context) == MASKED_CONTACT_PLACEHOLDER


@pytest.mark.asyncio
@pytest.mark.auth
class TestHighRiskAlert:

    async def test_alert_payload(self, flow, notifier, test_user):
        await flow.notify_high_risk_login(test_user, ["new device"], "203.0.113.10")

        message = notifier.sent[-1]
        assert message["template"] == HIGH_RISK_LOGIN_TEMPLATE
        assert message["payload"]["reasons"] == ["new device"]
        assert message["payload"]["location"] is None

    async def test_alert_failure_is_swallowed(self, flow, notifier, test_user):
        notifier.failing_templates.add(HIGH_RISK_LOGIN_TEMPLATE)

        await flow.notify_high_risk_login(test_user, ["new device"], "203.0.113.10")

        assert notifier.sent == []
