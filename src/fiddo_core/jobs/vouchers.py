"""Job that expires unclaimed gift vouchers and refunds their senders."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from fiddo_core.db.session import SessionFactory
from fiddo_core.services.notifications import NotificationDispatcher
from fiddo_core.services.vouchers import GiftVoucherService


async def sweep_expired_vouchers(*, session_factory: SessionFactory, limit: int | None = None) -> Dict[str, Any]:
    """Run one sweep pass; safe to run late, twice or concurrently."""

    notifier = NotificationDispatcher()
    service = GiftVoucherService(session_factory, notifier=notifier)
    result = await service.sweep_expired(limit=limit)
    await notifier.drain()

    summary = result.as_dict()
    logger.bind(summary=summary).info("Gift voucher expiry job completed")
    return summary


__all__ = ["sweep_expired_vouchers"]
