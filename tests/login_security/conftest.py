"""
Shared test fixtures for the login security engine.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.dependencies import (
    get_clock,
    get_counter_store,
    get_db,
    get_location_provider,
    get_login_security_config,
    get_notification_sender,
)
from app.config.login_security import LoginSecurityConfig
from app.core.counter_store import InMemoryCounterStore
from app.core.exceptions import NotificationDeliveryError
from app.core.location_provider import LocationProvider
from app.core.notifications import NotificationSender
from app.core.security import get_password_hash
from app.db.base import Base
from app.main import app
from app.models import IpCountryBan, BanType, LoginDevice, LoginEvent, User
from app.schemas.login_schemas import DeviceInfo, LocationData, SecurityContext
from app.services.login_service import LoginOrchestrator


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "Test123!@#"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeLocationProvider(LocationProvider):
    """Returns a configured location; records every lookup."""

    def __init__(self, location: Optional[LocationData] = None):
        self.location = location or LocationData(
            country="GH", region="Greater Accra", city="Accra", is_vpn=False
        )
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    async def lookup(self, ip, *, user_id, applicant_id=None):
        self.calls.append({"ip": ip, "user_id": user_id, "applicant_id": applicant_id})
        if self.error is not None:
            raise self.error
        return self.location


class FakeNotificationSender(NotificationSender):
    """Captures notifications instead of delivering them."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.failing_templates: set = set()

    async def send(self, channel, template, payload):
        if template in self.failing_templates:
            raise NotificationDeliveryError(f"{template} delivery failed")
        self.sent.append({"channel": channel, "template": template, "payload": payload})

    def last_code(self) -> str:
        codes = [n["payload"]["code"] for n in self.sent if n["template"] == "login_otp"]
        return codes[-1]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> LoginSecurityConfig:
    return LoginSecurityConfig()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def location_provider() -> FakeLocationProvider:
    return FakeLocationProvider()


@pytest.fixture
def notifier() -> FakeNotificationSender:
    return FakeNotificationSender()


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Fresh in-memory database per test.

    StaticPool keeps the single in-memory connection alive so the schema
    created here is the one the session sees.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def security_context() -> SecurityContext:
    return SecurityContext(
        client_ip="203.0.113.10",
        fingerprint="fp-laptop-1",
        user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Chrome/120.0",
        device_info=DeviceInfo(
            device_name="Work laptop", device_type="desktop", os="macos", browser="chrome"
        ),
    )


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory creating users with a known password."""

    async def _make_user(
        email: str = "user@test.com",
        username: Optional[str] = "testuser",
        phone_number: Optional[str] = "+15550001111",
        password: str = TEST_PASSWORD,
        **kwargs,
    ) -> User:
        user = User(
            email=email,
            username=username,
            phone_number=phone_number,
            password=get_password_hash(password),
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def test_user(make_user) -> User:
    return await make_user()


@pytest.fixture
def trust_device(db_session: AsyncSession, clock: FakeClock):
    """Register a trusted device and a prior login from a location."""

    async def _trust_device(
        user: User,
        fingerprint: str,
        country: Optional[str] = "GH",
        region: Optional[str] = "Greater Accra",
        city: Optional[str] = "Accra",
    ) -> LoginDevice:
        earlier = clock() - timedelta(days=1)
        device = LoginDevice(
            user_id=user.id,
            device_fingerprint=fingerprint,
            is_trusted=True,
            last_verified_at=earlier,
            last_login=earlier,
        )
        db_session.add(device)
        await db_session.flush()
        db_session.add(
            LoginEvent(
                user_id=user.id,
                device_id=device.id,
                ip_address="198.51.100.1",
                login_time=earlier,
                country=country,
                region=region,
                city=city,
            )
        )
        await db_session.commit()
        await db_session.refresh(device)
        return device

    return _trust_device


@pytest.fixture
def ban_country(db_session: AsyncSession):
    async def _ban_country(code: str, reason: Optional[str] = None) -> IpCountryBan:
        ban = IpCountryBan(type=BanType.COUNTRY, value=code, reason=reason)
        db_session.add(ban)
        await db_session.commit()
        return ban

    return _ban_country


@pytest.fixture
def orchestrator(
    db_session, store, location_provider, notifier, config, clock
) -> LoginOrchestrator:
    return LoginOrchestrator(db_session, store, location_provider, notifier, config, clock)


@pytest.fixture
async def client(
    db_session, store, location_provider, notifier, config, clock
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with every collaborator swapped for its test double."""

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_counter_store] = lambda: store
    app.dependency_overrides[get_location_provider] = lambda: location_provider
    app.dependency_overrides[get_notification_sender] = lambda: notifier
    app.dependency_overrides[get_login_security_config] = lambda: config
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
