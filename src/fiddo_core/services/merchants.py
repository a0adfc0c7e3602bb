"""Merchant registration, lifecycle transitions and loyalty settings."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger

from fiddo_core.core.clock import utcnow
from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_transaction
from fiddo_core.errors import (
    InvalidIdentifier,
    InvalidLoyaltySettings,
    InvalidMerchantTransition,
    MerchantAlreadyRegistered,
    MerchantNotFound,
    ReasonRequired,
    ValidationFailed,
)
from fiddo_core.models import Merchant, MerchantStatus
from fiddo_core.services.normalizer import normalize_email, normalize_phone, normalize_vat


@dataclass(slots=True)
class MerchantRegistration:
    business_name: str
    vat_number: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None


class MerchantLifecycle:
    """Encapsulates merchant status transitions and the settings they gate."""

    _ALLOWED_TRANSITIONS: dict[MerchantStatus, set[MerchantStatus]] = {
        MerchantStatus.PENDING: {MerchantStatus.ACTIVE, MerchantStatus.REJECTED},
        MerchantStatus.ACTIVE: {MerchantStatus.SUSPENDED, MerchantStatus.CANCELLED},
        MerchantStatus.SUSPENDED: {MerchantStatus.ACTIVE, MerchantStatus.CANCELLED},
        MerchantStatus.REJECTED: set(),
        MerchantStatus.CANCELLED: set(),
    }

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def register(self, registration: MerchantRegistration) -> Merchant:
        """Create a pending merchant; VAT numbers are unique after normalisation."""

        name = (registration.business_name or "").strip()
        if not name:
            raise ValidationFailed("Business name is required")
        vat = normalize_vat(registration.vat_number)
        if vat is None:
            raise InvalidIdentifier("VAT number is invalid", vat_number=registration.vat_number)

        async def _register(uow: UnitOfWork) -> Merchant:
            if await uow.merchants.find_by_vat(vat) is not None:
                raise MerchantAlreadyRegistered(vat_number=vat)
            return await uow.merchants.add(
                Merchant(
                    business_name=name,
                    vat_number=vat,
                    email=normalize_email(registration.email),
                    phone=normalize_phone(registration.phone),
                    address=(registration.address or "").strip() or None,
                    status=MerchantStatus.PENDING,
                )
            )

        merchant = await with_transaction(self._session_factory, _register)
        logger.info("Registered merchant", merchant_id=merchant.id, vat_number=vat)
        return merchant

    async def transition(
        self,
        merchant_id: int,
        target_status: MerchantStatus,
        *,
        reason: str | None = None,
    ) -> Merchant:
        """Move a merchant to ``target_status`` if the lifecycle allows it."""

        note = (reason or "").strip() or None
        if target_status == MerchantStatus.REJECTED and note is None:
            raise ReasonRequired("A rejection reason is required")

        async def _transition(uow: UnitOfWork) -> tuple[Merchant, MerchantStatus]:
            merchant = await uow.merchants.get_for_update(merchant_id)
            if merchant is None:
                raise MerchantNotFound(merchant_id=merchant_id)
            current_status = merchant.status
            if target_status not in self._ALLOWED_TRANSITIONS.get(current_status, set()):
                raise InvalidMerchantTransition(current_status, target_status)

            now = utcnow()
            merchant.status = target_status
            if target_status == MerchantStatus.ACTIVE:
                if merchant.validated_at is None:
                    merchant.validated_at = now
                merchant.suspended_at = None
            elif target_status == MerchantStatus.SUSPENDED:
                merchant.suspended_at = now
            elif target_status == MerchantStatus.REJECTED:
                merchant.rejection_reason = note
            elif target_status == MerchantStatus.CANCELLED:
                merchant.cancelled_at = now
                merchant.cancellation_reason = note
            await uow.session.flush()
            return merchant, current_status

        merchant, previous = await with_transaction(self._session_factory, _transition)
        logger.info(
            "Merchant status transitioned",
            merchant_id=merchant_id,
            from_status=previous.value,
            to_status=target_status.value,
        )
        return merchant

    async def update_loyalty_settings(
        self,
        merchant_id: int,
        *,
        points_per_euro: Any = None,
        points_for_reward: int | None = None,
        reward_description: str | None = None,
        allow_gifts: bool | None = None,
    ) -> Merchant:
        changes: dict[str, Any] = {}
        if points_per_euro is not None:
            try:
                rate = Decimal(str(points_per_euro))
            except (InvalidOperation, ValueError) as exc:
                raise InvalidLoyaltySettings("points_per_euro must be a number") from exc
            if not rate.is_finite() or rate <= 0:
                raise InvalidLoyaltySettings("points_per_euro must be greater than zero", points_per_euro=str(rate))
            changes["points_per_euro"] = rate
        if points_for_reward is not None:
            if isinstance(points_for_reward, bool) or int(points_for_reward) != points_for_reward or points_for_reward < 1:
                raise InvalidLoyaltySettings("points_for_reward must be a positive integer")
            changes["points_for_reward"] = int(points_for_reward)
        if reward_description is not None:
            description = reward_description.strip()
            if not description:
                raise InvalidLoyaltySettings("reward_description cannot be blank")
            changes["reward_description"] = description
        if allow_gifts is not None:
            changes["allow_gifts"] = bool(allow_gifts)

        async def _update(uow: UnitOfWork) -> Merchant:
            merchant = await uow.merchants.get_for_update(merchant_id)
            if merchant is None:
                raise MerchantNotFound(merchant_id=merchant_id)
            for key, value in changes.items():
                setattr(merchant, key, value)
            await uow.session.flush()
            return merchant

        merchant = await with_transaction(self._session_factory, _update)
        if changes:
            logger.info(
                "Updated merchant loyalty settings",
                merchant_id=merchant_id,
                fields=sorted(changes),
            )
        return merchant


__all__ = ["MerchantLifecycle", "MerchantRegistration"]
