"""Tests for the gift voucher expiry job."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from fiddo_core.core.clock import utcnow
from fiddo_core.jobs.vouchers import sweep_expired_vouchers
from fiddo_core.models import LedgerEntry, LedgerEntryType, MerchantClient, PointVoucher, VoucherStatus
from fiddo_core.services.ledger import LedgerEngine
from fiddo_core.services.vouchers import GiftVoucherService


async def _backdate_vouchers(session_factory) -> None:
    async with session_factory() as session:
        await session.execute(update(PointVoucher).values(expires_at=utcnow() - timedelta(minutes=5)))
        await session.commit()


@pytest.mark.asyncio
async def test_job_expires_due_vouchers_and_reports_summary(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    first = await engine.credit(merchant.id, amount="15", email="rae@example.com")
    second = await engine.credit(merchant.id, amount="8", email="sam@example.com")
    service = GiftVoucherService(session_factory)
    await service.create_gift(first.merchant_client.id)
    await service.create_gift(second.merchant_client.id)
    await _backdate_vouchers(session_factory)

    summary = await sweep_expired_vouchers(session_factory=session_factory)

    assert summary == {"scanned": 2, "expired": 2, "skipped": 0, "failed": 0, "refunded_points": 23}
    async with session_factory() as session:
        balances = {
            row.id: row.points_balance for row in (await session.execute(select(MerchantClient))).scalars().all()
        }
        assert balances == {first.merchant_client.id: 15, second.merchant_client.id: 8}
        statuses = (await session.execute(select(PointVoucher.status))).scalars().all()
        assert set(statuses) == {VoucherStatus.EXPIRED}
        refunds = (
            await session.execute(
                select(LedgerEntry).where(LedgerEntry.transaction_type == LedgerEntryType.GIFT_REFUND)
            )
        ).scalars().all()
        assert len(refunds) == 2

    rerun = await sweep_expired_vouchers(session_factory=session_factory)
    assert rerun["scanned"] == 0
    assert rerun["refunded_points"] == 0


@pytest.mark.asyncio
async def test_job_respects_batch_limit(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    service = GiftVoucherService(session_factory)
    for email in ("tia@example.com", "uma@example.com", "val@example.com"):
        credited = await engine.credit(merchant.id, amount="5", email=email)
        await service.create_gift(credited.merchant_client.id)
    await _backdate_vouchers(session_factory)

    first_pass = await sweep_expired_vouchers(session_factory=session_factory, limit=2)
    assert first_pass["expired"] == 2

    second_pass = await sweep_expired_vouchers(session_factory=session_factory, limit=2)
    assert second_pass["expired"] == 1
