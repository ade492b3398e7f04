import uuid
from datetime import datetime
from typing import Optional
from enum import Enum
from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Enum as SQLEnum,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from app.db.base import Base
from app.models.user_model import User


class BanType(str, Enum):
    COUNTRY = "country"
    REGION = "region"


class LoginDevice(Base):
    """
    A device a user has logged in from, keyed by the client fingerprint.
    One row per (user, fingerprint).
    """

    __tablename__ = "login_devices"
    __table_args__ = (
        UniqueConstraint("user_id", "device_fingerprint", name="uq_login_device_user_fingerprint"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        unique=True,
        index=True,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Opaque identifier supplied by the client, trusted as provided
    device_fingerprint: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )

    device_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    device_type: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )  # mobile, desktop, tablet
    os: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    browser: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    is_trusted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    last_verified_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    last_login: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    user: Mapped["User"] = relationship("User", back_populates="devices")

    def __repr__(self) -> str:
        return (
            f"<LoginDevice id={self.id} user_id={self.user_id} "
            f"trusted={self.is_trusted}>"
        )


class LoginEvent(Base):
    """
    Append-only record of a completed login, with the location it came from.
    The latest event with a country is the user's last known location.
    """

    __tablename__ = "login_events"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    device_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("login_devices.id", ondelete="SET NULL"),
        nullable=True,
    )

    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, index=True)

    login_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    # Location data (from IP geolocation)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_vpn: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="login_events")


class IpCountryBan(Base):
    """
    Regulatory ban list. Reference data maintained outside the engine.
    """

    __tablename__ = "ip_country_bans"
    __table_args__ = (
        UniqueConstraint("type", "value", name="uq_ip_country_ban_type_value"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    type: Mapped[BanType] = mapped_column(
        SQLEnum(BanType),
        default=BanType.COUNTRY,
        nullable=False,
    )

    # ISO country code for country bans, region name for region bans
    value: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
