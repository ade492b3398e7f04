from functools import lru_cache
from typing import AsyncGenerator, Optional, Sequence, Union

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.config import settings
from app.config.login_security import LoginSecurityConfig
from app.core.clock import Clock, utc_now
from app.core.counter_store import CounterStore
from app.core.location_provider import HttpLocationProvider, LocationProvider
from app.core.notifications import EmailNotificationSender, NotificationSender
from app.core.sessions import SessionManager
from app.db.session import AsyncSessionLocal
from app.schemas.login_schemas import SecurityContext
from app.services.login_service import LoginOrchestrator
from app.services.regional_access import RegionalAccessGuard


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@lru_cache
def get_login_security_config() -> LoginSecurityConfig:
    return settings.login_security_config()


def get_clock() -> Clock:
    return utc_now


def get_counter_store(request: Request) -> CounterStore:
    store = getattr(request.app.state, "counter_store", None)
    if store is None:
        raise RuntimeError("Counter store is not initialized")
    return store


@lru_cache
def get_location_provider() -> LocationProvider:
    return HttpLocationProvider(
        base_url=settings.LOCATION_PROVIDER_URL,
        token=settings.LOCATION_PROVIDER_TOKEN,
        timeout=settings.LOCATION_PROVIDER_TIMEOUT_SECONDS,
    )


@lru_cache
def get_notification_sender() -> NotificationSender:
    return EmailNotificationSender(
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.FROM_EMAIL,
        from_name=settings.FROM_NAME,
    )


def get_security_context(request: Request) -> SecurityContext:
    return SessionManager.build_security_context(request)


def get_login_service(
    db: AsyncSession = Depends(get_db),
    store: CounterStore = Depends(get_counter_store),
    location_provider: LocationProvider = Depends(get_location_provider),
    notifier: NotificationSender = Depends(get_notification_sender),
    config: LoginSecurityConfig = Depends(get_login_security_config),
    clock: Clock = Depends(get_clock),
) -> LoginOrchestrator:
    """One orchestrator per request."""
    return LoginOrchestrator(db, store, location_provider, notifier, config, clock)


def require_regional_access(
    restricted_regions: Optional[Union[str, Sequence[str]]] = None,
    restricted_countries: Optional[Union[str, Sequence[str]]] = None,
    custom_message: Optional[str] = None,
    custom_type: Optional[str] = None,
):
    """
    Route dependency applying the regional guard before the handler runs.

    Does nothing unless the guard is enabled in settings. Places passed here
    replace the configured ones for the routes that use it.

    Usage:
        @router.post("/verify-otp", dependencies=[Depends(require_regional_access())])
    """

    async def dependency(
        context: SecurityContext = Depends(get_security_context),
        location_provider: LocationProvider = Depends(get_location_provider),
        config: LoginSecurityConfig = Depends(get_login_security_config),
    ) -> None:
        guard_config = config.regional_guard
        if not guard_config.enabled:
            return
        guard = RegionalAccessGuard(location_provider, config.provider_timeout_seconds)
        await guard.validate(
            context.client_ip,
            restricted_regions=restricted_regions or guard_config.restricted_regions,
            restricted_countries=restricted_countries or guard_config.restricted_countries,
            custom_message=custom_message,
            custom_type=custom_type,
        )

    return dependency
