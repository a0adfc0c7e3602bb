import pytest
from sqlalchemy import update

from fiddo_core.errors import MerchantClientNotFound
from fiddo_core.models import LedgerEntryType, MerchantClient
from fiddo_core.services.ledger import LedgerAuditor, LedgerEngine


async def _corrupt_balance(session_factory, merchant_client_id: int, balance: int) -> None:
    async with session_factory() as session:
        await session.execute(
            update(MerchantClient).where(MerchantClient.id == merchant_client_id).values(points_balance=balance)
        )
        await session.commit()


@pytest.mark.asyncio
async def test_consistent_ledger_reports_no_drift(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=10)
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="12", email="wes@example.com")
    await engine.adjust(merchant.id, credited.merchant_client.id, points_delta=-2, reason="Typo")

    auditor = LedgerAuditor(session_factory)
    check = await auditor.verify(credited.merchant_client.id)

    assert check.consistent
    assert check.ledger_balance == 10
    assert await auditor.find_discrepancies(merchant.id) == []


@pytest.mark.asyncio
async def test_drift_is_detected_and_repaired(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    healthy = await engine.credit(merchant.id, amount="5", email="xia@example.com")
    drifted = await engine.credit(merchant.id, amount="20", email="yan@example.com")
    await _corrupt_balance(session_factory, drifted.merchant_client.id, 35)

    auditor = LedgerAuditor(session_factory)
    discrepancies = await auditor.find_discrepancies(merchant.id)
    assert [check.merchant_client_id for check in discrepancies] == [drifted.merchant_client.id]
    assert discrepancies[0].drift == 15

    before = await auditor.repair(drifted.merchant_client.id)
    assert before.cached_balance == 35
    assert before.ledger_balance == 20
    assert (await auditor.verify(drifted.merchant_client.id)).cached_balance == 20
    assert (await auditor.verify(healthy.merchant_client.id)).consistent
    assert await auditor.find_discrepancies(merchant.id) == []


@pytest.mark.asyncio
async def test_history_is_newest_first(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="5", email="zed@example.com")
    await engine.adjust(merchant.id, credited.merchant_client.id, points_delta=3, reason="Welcome bonus")

    auditor = LedgerAuditor(session_factory)
    history = await auditor.history(credited.merchant_client.id)
    assert [entry.transaction_type for entry in history] == [LedgerEntryType.ADJUSTMENT, LedgerEntryType.CREDIT]
    assert len(await auditor.history(credited.merchant_client.id, limit=1)) == 1

    with pytest.raises(MerchantClientNotFound):
        await auditor.verify(9999)
