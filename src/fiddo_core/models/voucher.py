"""Gift voucher model."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Column,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    func,
)

from fiddo_core.core.clock import utcnow
from fiddo_core.db.base import Base
from fiddo_core.db.types import UTCDateTime


class VoucherStatus(str, Enum):
    """Gift voucher lifecycle."""

    PENDING = "pending"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PointVoucher(Base):
    """Bearer token carrying points from one client to another."""

    __tablename__ = "point_vouchers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String, nullable=False, unique=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    sender_mc_id = Column(Integer, ForeignKey("merchant_clients.id", ondelete="SET NULL"), nullable=True, index=True)
    sender_eu_id = Column(Integer, ForeignKey("end_users.id"), nullable=False)
    points = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(VoucherStatus, name="point_voucher_status", values_callable=lambda enum: [item.value for item in enum]),
        nullable=False,
        default=VoucherStatus.PENDING,
        server_default=VoucherStatus.PENDING.value,
        index=True,
    )
    expires_at = Column(UTCDateTime(), nullable=False, index=True)
    claimer_mc_id = Column(Integer, ForeignKey("merchant_clients.id", ondelete="SET NULL"), nullable=True)
    claimer_eu_id = Column(Integer, ForeignKey("end_users.id"), nullable=True)
    claimed_at = Column(UTCDateTime(), nullable=True)
    refunded_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)


__all__ = ["PointVoucher", "VoucherStatus"]
