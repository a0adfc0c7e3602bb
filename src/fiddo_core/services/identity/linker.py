"""Ensure the merchant-scoped relationship row exists."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger

from fiddo_core.core.clock import utcnow
from fiddo_core.db.unit_of_work import UnitOfWork
from fiddo_core.models import MerchantClient


@dataclass(slots=True)
class LinkResult:
    merchant_client: MerchantClient
    is_new: bool


class MerchantClientLinker:
    """At most one row per (merchant, end user); the unique index backs this up."""

    async def ensure_link(self, uow: UnitOfWork, merchant_id: int, end_user_id: int) -> LinkResult:
        existing = await uow.merchant_clients.find_link(merchant_id, end_user_id)
        if existing is not None:
            return LinkResult(merchant_client=existing, is_new=False)

        now = utcnow()
        merchant_client = MerchantClient(
            merchant_id=merchant_id,
            end_user_id=end_user_id,
            points_balance=0,
            total_spent=Decimal("0"),
            visit_count=0,
            first_visit=now,
            last_visit=now,
        )
        await uow.merchant_clients.add(merchant_client)
        logger.info(
            "Linked end user to merchant",
            merchant_id=merchant_id,
            end_user_id=end_user_id,
            merchant_client_id=merchant_client.id,
        )
        return LinkResult(merchant_client=merchant_client, is_new=True)


__all__ = ["LinkResult", "MerchantClientLinker"]
