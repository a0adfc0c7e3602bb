"""Function-style entry points over the loyalty services.

Each call builds the service it needs around ``session_factory`` so request
handlers and jobs can invoke one operation without wiring objects up front.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from fiddo_core.core.logging import operation_context
from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_transaction
from fiddo_core.services.identity import IdentityResolver, LinkResult, MerchantClientLinker, ResolvedIdentity
from fiddo_core.services.ledger import AdjustResult, CreditResult, LedgerEngine, RedeemResult, RedeemVerification
from fiddo_core.services.merge import MergeEngine, MergeResult
from fiddo_core.services.notifications import NotificationDispatcher
from fiddo_core.services.vouchers import ClaimResult, GiftVoucherService, SweepSummary, VoucherToken


async def resolve_identity(
    session_factory: SessionFactory,
    *,
    email: str | None = None,
    phone: str | None = None,
    name: str | None = None,
) -> ResolvedIdentity:
    resolver = IdentityResolver()

    async def _resolve(uow: UnitOfWork) -> ResolvedIdentity:
        return await resolver.resolve(uow, email=email, phone=phone, name=name)

    with operation_context("resolve_identity"):
        return await with_transaction(session_factory, _resolve, retries=1)


async def ensure_merchant_client(session_factory: SessionFactory, merchant_id: int, end_user_id: int) -> LinkResult:
    linker = MerchantClientLinker()
    with operation_context("ensure_merchant_client", merchant_id=merchant_id, end_user_id=end_user_id):
        return await with_transaction(
            session_factory,
            lambda uow: linker.ensure_link(uow, merchant_id, end_user_id),
            retries=1,
        )


async def credit(
    session_factory: SessionFactory,
    merchant_id: int,
    *,
    notifier: Optional[NotificationDispatcher] = None,
    **kwargs: Any,
) -> CreditResult:
    with operation_context("credit", merchant_id=merchant_id):
        return await LedgerEngine(session_factory, notifier=notifier).credit(merchant_id, **kwargs)


async def redeem(
    session_factory: SessionFactory,
    merchant_id: int,
    merchant_client_id: int,
    *,
    verification: RedeemVerification,
    notifier: Optional[NotificationDispatcher] = None,
    **kwargs: Any,
) -> RedeemResult:
    engine = LedgerEngine(session_factory, notifier=notifier)
    with operation_context("redeem", merchant_id=merchant_id, merchant_client_id=merchant_client_id):
        return await engine.redeem(merchant_id, merchant_client_id, verification=verification, **kwargs)


async def adjust(
    session_factory: SessionFactory,
    merchant_id: int,
    merchant_client_id: int,
    *,
    points_delta: int,
    reason: str,
    staff_id: int | None = None,
) -> AdjustResult:
    with operation_context("adjust", merchant_id=merchant_id, merchant_client_id=merchant_client_id):
        return await LedgerEngine(session_factory).adjust(
            merchant_id,
            merchant_client_id,
            points_delta=points_delta,
            staff_id=staff_id,
            reason=reason,
        )


async def merge_clients(
    session_factory: SessionFactory,
    merchant_id: int,
    *,
    target_client_id: int,
    source_client_id: int,
    reason: str | None = None,
    merged_by: int | None = None,
) -> MergeResult:
    with operation_context("merge_clients", merchant_id=merchant_id, merchant_client_id=target_client_id):
        return await MergeEngine(session_factory).merge(
            merchant_id,
            target_client_id=target_client_id,
            source_client_id=source_client_id,
            reason=reason,
            merged_by=merged_by,
        )


async def create_gift_voucher(
    session_factory: SessionFactory,
    merchant_client_id: int,
    *,
    ttl: timedelta | None = None,
) -> VoucherToken:
    with operation_context("create_gift_voucher", merchant_client_id=merchant_client_id):
        return await GiftVoucherService(session_factory).create_gift(merchant_client_id, ttl=ttl)


async def claim_gift_voucher(
    session_factory: SessionFactory,
    token: str,
    recipient_end_user_id: int,
    *,
    notifier: Optional[NotificationDispatcher] = None,
) -> ClaimResult:
    with operation_context("claim_gift_voucher", end_user_id=recipient_end_user_id):
        return await GiftVoucherService(session_factory, notifier=notifier).claim_gift(token, recipient_end_user_id)


async def sweep_expired_vouchers(
    session_factory: SessionFactory,
    *,
    now: datetime | None = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> SweepSummary:
    with operation_context("sweep_expired_vouchers"):
        return await GiftVoucherService(session_factory, notifier=notifier).sweep_expired(now=now)


__all__ = [
    "adjust",
    "claim_gift_voucher",
    "create_gift_voucher",
    "credit",
    "ensure_merchant_client",
    "merge_clients",
    "redeem",
    "resolve_identity",
    "sweep_expired_vouchers",
]
