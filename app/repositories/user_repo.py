from app.models.user_model import KycVerification, User as UserModel, UserStatus
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func
from typing import Optional
import uuid


class UserRepository:
    """Repository layer for user data access."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _active(self):
        return select(UserModel).where(UserModel.status != UserStatus.INACTIVE)

    async def get_user_by_id(self, user_id: uuid.UUID | str) -> Optional[UserModel]:
        """
        Get user by ID regardless of status.

        Args:
            user_id: User's unique identifier

        Returns:
            User model or None if not found
        """
        result = await self.db.execute(
            select(UserModel).where(UserModel.id == _as_uuid(user_id))
        )
        return result.scalars().first()

    async def find_active_by_id(self, user_id: uuid.UUID | str) -> Optional[UserModel]:
        """
        Get an active user by ID.

        Args:
            user_id: User's unique identifier

        Returns:
            User model or None if not found or inactive
        """
        result = await self.db.execute(
            self._active().where(UserModel.id == _as_uuid(user_id))
        )
        return result.scalars().first()

    async def find_active_by_email(self, email: str) -> Optional[UserModel]:
        result = await self.db.execute(
            self._active().where(func.lower(UserModel.email) == email.strip().lower())
        )
        return result.scalars().first()

    async def find_active_by_username(self, username: str) -> Optional[UserModel]:
        result = await self.db.execute(
            self._active().where(UserModel.username == username.strip())
        )
        return result.scalars().first()

    async def find_active_by_phone(self, phone_number: str) -> Optional[UserModel]:
        result = await self.db.execute(
            self._active().where(UserModel.phone_number == phone_number.strip())
        )
        return result.scalars().first()

    async def find_active_by_identifier(self, identifier: str) -> Optional[UserModel]:
        """
        Resolve a login identifier: email first, then username, then phone.

        Args:
            identifier: Email, username or phone number as typed by the user

        Returns:
            User model or None if no active user matches
        """
        user = await self.find_active_by_email(identifier)
        if not user:
            user = await self.find_active_by_username(identifier)
        if not user:
            user = await self.find_active_by_phone(identifier)
        return user

    async def create_user(self, user: UserModel) -> UserModel:
        """
        Create a new user in the database.

        Args:
            user: User ORM model

        Returns:
            Created user model with ID and timestamps
        """
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def update_restriction_flag(
        self, user: UserModel, disable_login_restrictions: bool
    ) -> UserModel:
        """
        Toggle the login restriction exemption for a user.

        Args:
            user: User ORM model
            disable_login_restrictions: True exempts the account from
                rate limiting, risk scoring and step-up OTP

        Returns:
            Updated user model
        """
        user.disable_login_restrictions = disable_login_restrictions
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def get_kyc_record(self, user_id: uuid.UUID | str) -> Optional[KycVerification]:
        """
        Get the identity verification record for a user.

        Args:
            user_id: User's unique identifier

        Returns:
            KYC record or None if the user never started verification
        """
        result = await self.db.execute(
            select(KycVerification).where(KycVerification.user_id == _as_uuid(user_id))
        )
        return result.scalars().first()


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
