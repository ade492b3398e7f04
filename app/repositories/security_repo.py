from datetime import datetime
from typing import List, Optional
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.security_model import BanType, IpCountryBan, LoginDevice, LoginEvent


class LoginDeviceRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_user_and_fingerprint(
        self, user_id: uuid.UUID, fingerprint: str
    ) -> Optional[LoginDevice]:
        result = await self.db.execute(
            select(LoginDevice).where(
                LoginDevice.user_id == user_id,
                LoginDevice.device_fingerprint == fingerprint,
            )
        )
        return result.scalars().first()

    async def create(self, device: LoginDevice) -> LoginDevice:
        self.db.add(device)
        await self.db.commit()
        await self.db.refresh(device)
        return device

    async def update(self, device: LoginDevice) -> LoginDevice:
        self.db.add(device)
        await self.db.commit()
        await self.db.refresh(device)
        return device

    async def list_for_user(self, user_id: uuid.UUID) -> List[LoginDevice]:
        result = await self.db.execute(
            select(LoginDevice)
            .where(LoginDevice.user_id == user_id)
            .order_by(LoginDevice.last_login.desc())
        )
        return list(result.scalars().all())

    async def get_last_login_device(self, user_id: uuid.UUID) -> Optional[LoginDevice]:
        result = await self.db.execute(
            select(LoginDevice)
            .where(LoginDevice.user_id == user_id)
            .order_by(LoginDevice.last_login.desc())
            .limit(1)
        )
        return result.scalars().first()


class LoginEventRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, event: LoginEvent) -> LoginEvent:
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def get_last_known_location_event(self, user_id: uuid.UUID) -> Optional[LoginEvent]:
        """Most recent event for the user that recorded a country."""
        result = await self.db.execute(
            select(LoginEvent)
            .where(
                LoginEvent.user_id == user_id,
                LoginEvent.country.is_not(None),
                LoginEvent.country != "",
            )
            .order_by(LoginEvent.login_time.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def list_for_user(
        self, user_id: uuid.UUID, since: Optional[datetime] = None
    ) -> List[LoginEvent]:
        query = select(LoginEvent).where(LoginEvent.user_id == user_id)
        if since is not None:
            query = query.where(LoginEvent.login_time >= since)
        result = await self.db.execute(query.order_by(LoginEvent.login_time.desc()))
        return list(result.scalars().all())


class CountryBanRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_country_banned(self, country: str) -> Optional[IpCountryBan]:
        """Ban entry for the country code (case-insensitive), or None."""
        result = await self.db.execute(
            select(IpCountryBan).where(
                IpCountryBan.type == BanType.COUNTRY,
                func.lower(IpCountryBan.value) == country.strip().lower(),
            )
        )
        return result.scalars().first()
