"""Points ledger model."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
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

from fiddo_core.core.clock import utcnow
from fiddo_core.db.base import Base
from fiddo_core.db.types import UTCDateTime


class LedgerEntryType(str, Enum):
    """Balance-affecting event kinds."""

    CREDIT = "credit"
    REWARD = "reward"
    MERGE = "merge"
    ADJUSTMENT = "adjustment"
    GIFT_OUT = "gift_out"
    GIFT_IN = "gift_in"
    GIFT_REFUND = "gift_refund"


class LedgerEntry(Base):
    """Immutable record of one change to a merchant client's balance."""

    __tablename__ = "transactions"
    # NULL keys never collide, so entries without a key are unconstrained.
    __table_args__ = (
        UniqueConstraint("merchant_id", "idempotency_key", name="uq_transactions_merchant_idempotency_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    merchant_client_id = Column(Integer, ForeignKey("merchant_clients.id"), nullable=False, index=True)
    staff_id = Column(Integer, nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    points_delta = Column(Integer, nullable=False)
    transaction_type = Column(
        SqlEnum(
            LedgerEntryType,
            name="ledger_entry_type",
            values_callable=lambda enum: [item.value for item in enum],
        ),
        nullable=False,
    )
    idempotency_key = Column(String, nullable=True)
    source = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)


__all__ = ["LedgerEntry", "LedgerEntryType"]
