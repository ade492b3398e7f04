from fastapi import APIRouter, Depends, Response, status

from app.api.dependencies import (
    get_login_service,
    get_security_context,
    require_regional_access,
)
from app.core.utils import logger
from app.schemas.login_schemas import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    ResendOtpResponse,
    SecurityContext,
    VerifyOtpRequest,
)
from app.services.login_service import LoginOrchestrator


router = APIRouter(prefix="/auth", tags=["auth"])

ERROR_RESPONSES = {
    status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
    status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
}

# Login applies the guard itself, inside the orchestrator
REGIONAL_GUARD = [Depends(require_regional_access())]


def _status_for(result) -> int:
    if result.locked_out:
        return status.HTTP_429_TOO_MANY_REQUESTS
    if result.otp_required:
        return status.HTTP_401_UNAUTHORIZED
    return status.HTTP_200_OK


@router.post("/login", response_model=LoginResponse, responses=ERROR_RESPONSES)
async def login(
    login_data: LoginRequest,
    response: Response,
    context: SecurityContext = Depends(get_security_context),
    login_service: LoginOrchestrator = Depends(get_login_service),
):
    """
    Authenticate with email, username or phone number plus password.

    Low-risk logins return an access token. High-risk logins return
    ``otp_required`` with the masked contact the code was sent to; the code
    is then submitted to ``/auth/verify-otp`` from the same device.
    Locked-out identifiers get ``locked_out`` with status 429.

    Device headers: X-Fingerprint, X-Device-Name, X-Device-Type, X-OS, X-Browser.
    """
    result = await login_service.login(login_data.identifier, login_data.password, context)
    response.status_code = _status_for(result)

    logger.log_info(
        {
            "event_type": "login_request_completed",
            "ip_address": context.client_ip,
            "success": result.success,
            "otp_required": result.otp_required,
            "locked_out": result.locked_out,
        }
    )
    return LoginResponse.from_result(result)


@router.post(
    "/verify-otp",
    response_model=LoginResponse,
    responses=ERROR_RESPONSES,
    dependencies=REGIONAL_GUARD,
)
async def verify_otp(
    otp_data: VerifyOtpRequest,
    context: SecurityContext = Depends(get_security_context),
    login_service: LoginOrchestrator = Depends(get_login_service),
):
    """Submit the step-up code; must come from the device that started the login."""
    result = await login_service.verify_otp(otp_data.code, context)
    return LoginResponse.from_result(result)


@router.post(
    "/resend-otp",
    response_model=ResendOtpResponse,
    responses=ERROR_RESPONSES,
    dependencies=REGIONAL_GUARD,
)
async def resend_otp(
    context: SecurityContext = Depends(get_security_context),
    login_service: LoginOrchestrator = Depends(get_login_service),
):
    """Send a new code for the device's pending verification."""
    masked_contact = await login_service.resend_otp(context)
    return ResendOtpResponse(
        message=f"Code sent to {masked_contact}", masked_contact=masked_contact
    )
