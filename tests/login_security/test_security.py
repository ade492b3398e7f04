"""
Security Helper Tests

Contact masking, OTP codes, credential checks and request context extraction.
"""

import pytest
from starlette.requests import Request

from app.core.exceptions import InvalidCredentialsError
from app.core.security import (
    MASKED_CONTACT_PLACEHOLDER,
    authenticate_user,
    create_access_token,
    decode_access_token,
    generate_otp_code,
    hash_otp_code,
    mask_contact,
    verify_otp_code,
)
from app.core.sessions import SessionManager
from app.repositories.user_repo import UserRepository


def make_request(headers=None, client=("192.0.2.44", 51000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/auth/login",
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "client": client,
    }
    return Request(scope)


@pytest.mark.unit
class TestMaskContact:

    def test_email(self):
        assert mask_contact("user@test.com") == "us***@test.com"
        assert mask_contact("john.doe@example.com", "+15550001111") == "jo***@example.com"

    def test_short_local_part(self):
        assert mask_contact("ab@test.com") == "***@test.com"

    def test_phone_only(self):
        assert mask_contact(None, "+15550001111") == "***1111"

    def test_nothing_usable(self):
        assert mask_contact(None, None) == MASKED_CONTACT_PLACEHOLDER
        assert mask_contact("not-an-email", "123") == MASKED_CONTACT_PLACEHOLDER


@pytest.mark.unit
class TestOtpCodes:

    def test_codes_are_numeric_and_padded(self):
        for _ in range(50):
            code = generate_otp_code(6)
            assert len(code) == 6
            assert code.isdigit()

    def test_code_length_follows_argument(self):
        assert len(generate_otp_code(8)) == 8

    def test_hash_verifies_only_matching_code(self):
        hashed = hash_otp_code("042917")

        assert hashed != "042917"
        assert verify_otp_code("042917", hashed) is True
        assert verify_otp_code("042918", hashed) is False


@pytest.mark.asyncio
@pytest.mark.auth
class TestAuthenticateUser:

    async def test_valid_credentials(self, db_session, test_user):
        user = await authenticate_user(UserRepository(db_session), "USER@test.com", "Test123!@#")

        assert user.id == test_user.id

    async def test_wrong_password(self, db_session, test_user):
        with pytest.raises(InvalidCredentialsError):
            await authenticate_user(UserRepository(db_session), "user@test.com", "nope")

    async def test_unknown_identifier(self, db_session):
        with pytest.raises(InvalidCredentialsError):
            await authenticate_user(UserRepository(db_session), "ghost", "Test123!@#")

    async def test_access_token_round_trip(self, test_user):
        token, expires_at = create_access_token(test_user)

        claims = decode_access_token(token)

        assert claims["sub"] == str(test_user.id)
        assert claims["type"] == "access"
        assert claims["exp"] == int(expires_at.timestamp())


@pytest.mark.unit
class TestSessionManager:

    def test_proxy_header_wins_over_socket_address(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        assert SessionManager.extract_client_ip(request) == "203.0.113.7"

    def test_invalid_proxy_header_is_skipped(self):
        request = make_request({"X-Real-IP": "not-an-ip", "X-Client-IP": "198.51.100.9"})

        assert SessionManager.extract_client_ip(request) == "198.51.100.9"

    def test_falls_back_to_socket_address(self):
        assert SessionManager.extract_client_ip(make_request()) == "192.0.2.44"
        assert SessionManager.extract_client_ip(make_request(client=None)) == "unknown"

    def test_context_from_device_headers(self):
        request = make_request(
            {
                "X-Fingerprint": " fp-123 ",
                "X-Device-Name": "Ama's phone",
                "X-Device-Type": "mobile",
                "X-OS": "android",
                "X-Browser": "chrome",
                "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Firefox/121.0",
            }
        )

        context = SessionManager.build_security_context(request)

        assert context.fingerprint == "fp-123"
        assert context.client_ip == "192.0.2.44"
        assert context.device_info.device_name == "Ama's phone"
        assert context.device_info.device_type == "mobile"
        assert context.device_info.os == "android"

    def test_context_falls_back_to_user_agent(self):
        user_agent = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile Safari/604.1"
        request = make_request({"User-Agent": user_agent})

        context = SessionManager.build_security_context(request)

        assert context.device_info.os == "ios"
        assert context.device_info.browser == "safari"
        assert context.device_info.device_type == "mobile"
        assert len(context.fingerprint) == 32
        assert context.fingerprint == SessionManager.derive_fingerprint(request)

    def test_derived_fingerprint_ignores_ip(self):
        headers = {"User-Agent": "Mozilla/5.0 Firefox/121.0", "Accept-Language": "en-GB,en;q=0.9"}

        first = SessionManager.derive_fingerprint(make_request(headers, ("192.0.2.1", 1)))
        second = SessionManager.derive_fingerprint(make_request(headers, ("192.0.2.2", 1)))

        assert first == second
