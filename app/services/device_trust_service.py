from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.config.login_security import LoginSecurityConfig
from app.core.clock import Clock, utc_now
from app.core.failure_policy import FailurePolicy, GuardedOperation
from app.core.location_provider import LocationProvider
from app.core.utils import LoggerMixin
from app.db.session import in_savepoint
from app.models.security_model import LoginDevice, LoginEvent
from app.repositories.security_repo import LoginDeviceRepository, LoginEventRepository
from app.schemas.login_schemas import DeviceInfo, LocationData, RiskCheckResult

NEW_DEVICE_REASON = "new device"


class DeviceTrustRegistry(LoggerMixin):
    """
    Devices a user has logged in from, keyed by client fingerprint.

    A device becomes trusted once a login from it completes (directly or
    after step-up verification). Only presence matters for risk scoring:
    name, type, OS and browser are descriptive.
    """

    def __init__(
        self,
        db: AsyncSession,
        config: LoginSecurityConfig,
        location_provider: Optional[LocationProvider] = None,
        clock: Clock = utc_now,
        policy: Optional[FailurePolicy] = None,
    ):
        self.db = db
        self.config = config
        self.location_provider = location_provider
        self.clock = clock
        self.policy = policy or FailurePolicy()
        self.devices = LoginDeviceRepository(db)
        self.events = LoginEventRepository(db)

    async def find(self, user_id: uuid.UUID, fingerprint: str) -> Optional[LoginDevice]:
        return await self.devices.find_by_user_and_fingerprint(user_id, fingerprint)

    async def list_for_user(self, user_id: uuid.UUID) -> List[LoginDevice]:
        return await self.devices.list_for_user(user_id)

    async def get_last_login_device(self, user_id: uuid.UUID) -> Optional[LoginDevice]:
        return await self.devices.get_last_login_device(user_id)

    async def check_device(self, user_id: uuid.UUID, fingerprint: str) -> RiskCheckResult:
        """
        Known device scores 0; an unknown one scores the new-device weight.

        A failed lookup scores nothing.
        """
        return await self.policy.run(
            GuardedOperation.DEVICE_LOOKUP,
            in_savepoint(self.db, self._score_device(user_id, fingerprint)),
            fallback=RiskCheckResult(),
            context={"user_id": str(user_id)},
        )

    async def _score_device(self, user_id: uuid.UUID, fingerprint: str) -> RiskCheckResult:
        if await self.find(user_id, fingerprint) is not None:
            return RiskCheckResult()
        return RiskCheckResult(
            score=self.config.risk_scores.new_device, reason=NEW_DEVICE_REASON
        )

    async def upsert_on_login(
        self,
        user_id: uuid.UUID,
        fingerprint: str,
        device_info: Optional[DeviceInfo] = None,
    ) -> LoginDevice:
        """
        Mark the device as trusted after a completed login.

        Creates it when absent; otherwise bumps ``last_login`` and trusts it
        if it was not trusted yet.
        """
        now = self.clock()
        device = await self.find(user_id, fingerprint)

        if device is None:
            device = LoginDevice(
                user_id=user_id,
                device_fingerprint=fingerprint,
                is_trusted=True,
                last_verified_at=now,
                last_login=now,
                **self._descriptive_fields(device_info),
            )
            device = await self.devices.create(device)
            self.log_info(
                {
                    "event_type": "device_registered",
                    "user_id": str(user_id),
                    "device_id": str(device.id),
                }
            )
            return device

        device.last_login = now
        if not device.is_trusted:
            device.is_trusted = True
            device.last_verified_at = now
            self.log_info(
                {
                    "event_type": "device_trusted",
                    "user_id": str(user_id),
                    "device_id": str(device.id),
                }
            )
        return await self.devices.update(device)

    async def record_sighting(
        self, user_id: uuid.UUID, client_ip: str, fingerprint: str
    ) -> LoginDevice:
        """Plain device log: untrusted device if new, geo-less login event."""
        now = self.clock()
        device = await self.find(user_id, fingerprint)
        if device is None:
            device = await self.devices.create(
                LoginDevice(
                    user_id=user_id,
                    device_fingerprint=fingerprint,
                    is_trusted=False,
                    last_login=now,
                )
            )
        else:
            device.last_login = now
            device = await self.devices.update(device)

        await self.events.create(
            LoginEvent(
                user_id=user_id,
                device_id=device.id,
                ip_address=client_ip,
                login_time=now,
            )
        )
        return device

    async def register_with_verification(
        self,
        user_id: uuid.UUID,
        client_ip: str,
        fingerprint: str,
        device_info: Optional[DeviceInfo] = None,
    ) -> LoginDevice:
        """
        Register a device outside the login flow (e.g. at sign-up).

        A successful location lookup verifies the device: it is stored as
        trusted with a geo-tagged login event. When the lookup fails the
        device is stored untrusted with a geo-less event. Registration
        itself never fails because of the lookup.
        """
        location = await self._verification_lookup(user_id, client_ip)
        now = self.clock()
        verified = location is not None

        device = await self.find(user_id, fingerprint)
        if device is None:
            device = LoginDevice(
                user_id=user_id,
                device_fingerprint=fingerprint,
                is_trusted=verified,
                last_verified_at=now if verified else None,
                last_login=now,
                **self._descriptive_fields(device_info),
            )
            device = await self.devices.create(device)
        else:
            device.last_login = now
            if verified:
                device.is_trusted = True
                device.last_verified_at = now
            device = await self.devices.update(device)

        location = location or LocationData()
        await self.events.create(
            LoginEvent(
                user_id=user_id,
                device_id=device.id,
                ip_address=client_ip,
                login_time=now,
                city=location.city,
                region=location.region,
                country=location.country,
                is_vpn=bool(location.is_vpn),
            )
        )

        self.log_info(
            {
                "event_type": "device_registered_with_verification",
                "user_id": str(user_id),
                "device_id": str(device.id),
                "verified": verified,
            }
        )
        return device

    async def _verification_lookup(
        self, user_id: uuid.UUID, client_ip: str
    ) -> Optional[LocationData]:
        if self.location_provider is None:
            return None
        return await self.policy.run(
            GuardedOperation.REGISTRATION_LOCATION_CHECK,
            self.location_provider.lookup(client_ip, user_id=str(user_id)),
            fallback=None,
            timeout=self.config.provider_timeout_seconds,
            context={"user_id": str(user_id)},
        )

    @staticmethod
    def _descriptive_fields(device_info: Optional[DeviceInfo]) -> dict:
        if device_info is None:
            return {}
        return device_info.model_dump()
