from datetime import datetime
from enum import Enum
from typing import Optional, List, TYPE_CHECKING
from app.db.base import Base
from sqlalchemy import TIMESTAMP, Boolean, ForeignKey, String, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID as PGUUID
import uuid

if TYPE_CHECKING:
    from app.models.security_model import LoginDevice, LoginEvent


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING_ACCOUNT_DELETION = "pending_account_deletion"
    PENDING_DEACTIVATION = "pending_deactivation"


class KycStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(Base):
    """Account holder as seen by the login security engine."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        unique=True,
        index=True,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    username: Mapped[Optional[str]] = mapped_column(
        String(50),
        unique=True,
        index=True,
        nullable=True,
    )
    phone_number: Mapped[Optional[str]] = mapped_column(
        String(20),
        unique=True,
        index=True,
        nullable=True,
    )
    password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    status: Mapped[UserStatus] = mapped_column(
        SQLEnum(UserStatus),
        default=UserStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    # Exempts the account from rate limiting, risk scoring and step-up OTP
    disable_login_restrictions: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    devices: Mapped[List["LoginDevice"]] = relationship(
        "LoginDevice", back_populates="user", cascade="all, delete-orphan"
    )
    login_events: Mapped[List["LoginEvent"]] = relationship(
        "LoginEvent", back_populates="user", cascade="all, delete-orphan"
    )
    kyc_verification: Mapped[Optional["KycVerification"]] = relationship(
        "KycVerification", back_populates="user", uselist=False, lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} username={self.username}>"

    @property
    def is_active(self) -> bool:
        return self.status != UserStatus.INACTIVE

    @property
    def is_pending_removal(self) -> bool:
        """Account is scheduled for deletion or deactivation."""
        return self.status in (
            UserStatus.PENDING_ACCOUNT_DELETION,
            UserStatus.PENDING_DEACTIVATION,
        )


class KycVerification(Base):
    """
    Identity verification record held by the KYC provider.

    Only ``status`` and ``provider_ref`` matter here: an approved record with
    a provider reference switches location lookups to the identity-bound
    endpoint.
    """

    __tablename__ = "kyc_verifications"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    status: Mapped[KycStatus] = mapped_column(
        SQLEnum(KycStatus),
        default=KycStatus.PENDING,
        nullable=False,
    )
    provider_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    user: Mapped["User"] = relationship("User", back_populates="kyc_verification")

    @property
    def is_approved(self) -> bool:
        return self.status == KycStatus.APPROVED
