"""Global customer identity models."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from fiddo_core.core.clock import utcnow
from fiddo_core.db.base import Base
from fiddo_core.db.types import UTCDateTime


class AliasType(str, Enum):
    """Identifier kinds that can be redirected after a merge."""

    EMAIL = "email"
    PHONE = "phone"


class EndUser(Base):
    """Customer identity shared across every merchant."""

    __tablename__ = "end_users"
    __table_args__ = (
        CheckConstraint(
            "email_lower IS NOT NULL OR phone_e164 IS NOT NULL OR deleted_at IS NOT NULL",
            name="ck_end_users_identifier_present",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email_lower = Column(String, nullable=True, unique=True)
    email_canonical = Column(String, nullable=True, index=True)
    phone_e164 = Column(String, nullable=True, unique=True)
    name = Column(String, nullable=True)
    email_validated = Column(Boolean, nullable=False, default=False, server_default="0")
    validation_token = Column(String, nullable=True)
    qr_token = Column(String, nullable=True, unique=True)
    pin_hash = Column(String, nullable=True)
    consent_date = Column(UTCDateTime(), nullable=True)
    consent_method = Column(String, nullable=True)
    is_blocked = Column(Boolean, nullable=False, default=False, server_default="0")
    deleted_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    aliases = relationship("EndUserAlias", back_populates="end_user")
    merchant_clients = relationship("MerchantClient", back_populates="end_user")


class EndUserAlias(Base):
    """Historical identifier redirecting to the surviving end user."""

    __tablename__ = "end_user_aliases"
    __table_args__ = (
        UniqueConstraint("alias_type", "alias_value", name="uq_end_user_aliases_type_value"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    end_user_id = Column(Integer, ForeignKey("end_users.id"), nullable=False, index=True)
    alias_type = Column(
        SqlEnum(AliasType, name="end_user_alias_type", values_callable=lambda enum: [item.value for item in enum]),
        nullable=False,
    )
    alias_value = Column(String, nullable=False)
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)

    end_user = relationship("EndUser", back_populates="aliases")


class EndUserMerge(Base):
    """Append-only audit row written whenever two identities are consolidated."""

    __tablename__ = "end_user_merges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_user_id = Column(Integer, nullable=False, index=True)
    target_user_id = Column(Integer, ForeignKey("end_users.id"), nullable=False, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=True)
    merged_by = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), nullable=False)


__all__ = ["AliasType", "EndUser", "EndUserAlias", "EndUserMerge"]
