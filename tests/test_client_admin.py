import pytest
from sqlalchemy import select

from fiddo_core.errors import ClientBlocked, MerchantClientNotFound
from fiddo_core.models import LedgerEntry, MerchantClient, PointVoucher, VoucherStatus
from fiddo_core.services.clients import ClientAdmin
from fiddo_core.services.ledger import LedgerEngine, RedeemVerification
from fiddo_core.services.vouchers import GiftVoucherService


@pytest.mark.asyncio
async def test_block_and_unblock_gate_credits(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="10", email="ada@example.com")
    admin = ClientAdmin(session_factory)

    blocked = await admin.block(merchant.id, credited.merchant_client.id)
    assert blocked.is_blocked is True
    with pytest.raises(ClientBlocked):
        await engine.credit(merchant.id, amount="10", email="ada@example.com")

    await admin.unblock(merchant.id, credited.merchant_client.id)
    again = await engine.credit(merchant.id, amount="10", email="ada@example.com")
    assert again.balance == 20


@pytest.mark.asyncio
async def test_custom_reward_and_notes(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=10)
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="10", email="bo@example.com")
    admin = ClientAdmin(session_factory)

    updated = await admin.set_custom_reward(merchant.id, credited.merchant_client.id, "  Double espresso ")
    assert updated.custom_reward == "Double espresso"
    noted = await admin.set_notes(merchant.id, credited.merchant_client.id, "Prefers oat milk")
    assert noted.notes_private == "Prefers oat milk"

    redeemed = await engine.redeem(
        merchant.id,
        credited.merchant_client.id,
        verification=RedeemVerification(presence_verified=True),
    )
    assert redeemed.reward_label == "Double espresso"

    cleared = await admin.set_custom_reward(merchant.id, credited.merchant_client.id, "")
    assert cleared.custom_reward is None


@pytest.mark.asyncio
async def test_delete_client_removes_history_and_cancels_vouchers(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    other = await make_merchant()
    engine = LedgerEngine(session_factory)
    doomed = await engine.credit(merchant.id, amount="20", email="cy@example.com")
    elsewhere = await engine.credit(other.id, amount="7", email="cy@example.com")
    await GiftVoucherService(session_factory).create_gift(doomed.merchant_client.id)
    await engine.credit(merchant.id, amount="3", email="cy@example.com")
    admin = ClientAdmin(session_factory)

    deletion = await admin.delete_client(merchant.id, doomed.merchant_client.id)

    assert deletion.points_forfeited == 3
    assert deletion.entries_deleted == 3
    assert deletion.vouchers_cancelled == 1
    async with session_factory() as session:
        assert await session.get(MerchantClient, doomed.merchant_client.id) is None
        assert await session.get(MerchantClient, elsewhere.merchant_client.id) is not None
        remaining = (await session.execute(select(LedgerEntry.merchant_client_id))).scalars().all()
        assert remaining == [elsewhere.merchant_client.id]
        voucher = (await session.execute(select(PointVoucher))).scalars().one()
        assert voucher.status == VoucherStatus.CANCELLED
        assert voucher.sender_mc_id is None

    with pytest.raises(MerchantClientNotFound):
        await admin.delete_client(merchant.id, doomed.merchant_client.id)
    with pytest.raises(MerchantClientNotFound):
        await admin.block(merchant.id, elsewhere.merchant_client.id)
