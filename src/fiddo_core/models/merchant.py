"""Tenant and tenant-scoped relationship models."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from fiddo_core.core.clock import utcnow
from fiddo_core.db.base import Base
from fiddo_core.db.types import UTCDateTime


class MerchantStatus(str, Enum):
    """Merchant lifecycle statuses."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Merchant(Base):
    """A tenant crediting loyalty points to its clients."""

    __tablename__ = "merchants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    vat_number = Column(String, nullable=True, unique=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    status = Column(
        SqlEnum(MerchantStatus, name="merchant_status", values_callable=lambda enum: [item.value for item in enum]),
        nullable=False,
        default=MerchantStatus.PENDING,
        server_default=MerchantStatus.PENDING.value,
    )
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    points_per_euro = Column(Numeric(10, 4), nullable=False, default=Decimal("1.0"), server_default="1.0")
    points_for_reward = Column(Integer, nullable=False, default=100, server_default="100")
    reward_description = Column(String, nullable=False, default="Reward on the house")
    allow_gifts = Column(Boolean, nullable=False, default=True, server_default="1")
    validated_at = Column(UTCDateTime(), nullable=True)
    suspended_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    clients = relationship("MerchantClient", back_populates="merchant")


class MerchantClient(Base):
    """Per-merchant relationship holding one end user's points balance."""

    __tablename__ = "merchant_clients"
    __table_args__ = (
        UniqueConstraint("merchant_id", "end_user_id", name="uq_merchant_clients_merchant_end_user"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    end_user_id = Column(Integer, ForeignKey("end_users.id"), nullable=False, index=True)
    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    total_spent = Column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    visit_count = Column(Integer, nullable=False, default=0, server_default="0")
    first_visit = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)
    last_visit = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)
    is_blocked = Column(Boolean, nullable=False, default=False, server_default="0")
    custom_reward = Column(String, nullable=True)
    notes_private = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    merchant = relationship("Merchant", back_populates="clients")
    end_user = relationship("EndUser", back_populates="merchant_clients")


__all__ = ["Merchant", "MerchantClient", "MerchantStatus"]
