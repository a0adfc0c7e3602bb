"""End-to-end flows through the package-level operations."""

from datetime import timedelta

import pytest

import fiddo_core
from fiddo_core.errors import InsufficientBalance, InvalidIdentifier
from fiddo_core.services.ledger import RedeemVerification


@pytest.mark.asyncio
async def test_identity_and_link_operations(session_factory, make_merchant) -> None:
    merchant = await make_merchant()

    created = await fiddo_core.resolve_identity(session_factory, email="Lea+promo@Example.com", name="Lea")
    again = await fiddo_core.resolve_identity(session_factory, email="lea@example.com")
    assert created.is_new is True
    assert again.end_user.id == created.end_user.id
    assert again.matched_by == "canonical_email"

    with pytest.raises(InvalidIdentifier):
        await fiddo_core.resolve_identity(session_factory, email="not-an-email")

    link = await fiddo_core.ensure_merchant_client(session_factory, merchant.id, created.end_user.id)
    relink = await fiddo_core.ensure_merchant_client(session_factory, merchant.id, created.end_user.id)
    assert link.is_new is True
    assert relink.is_new is False
    assert relink.merchant_client.id == link.merchant_client.id
    assert link.merchant_client.points_balance == 0


@pytest.mark.asyncio
async def test_full_loyalty_cycle(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=50)

    first = await fiddo_core.credit(session_factory, merchant.id, amount="30", email="max@example.com")
    second = await fiddo_core.credit(session_factory, merchant.id, amount="25.90", email="max@example.com")
    assert second.balance == 55
    assert second.is_new_client is False

    redeemed = await fiddo_core.redeem(
        session_factory,
        merchant.id,
        first.merchant_client.id,
        verification=RedeemVerification(presence_verified=True),
    )
    assert redeemed.merchant_client.points_balance == 5
    with pytest.raises(InsufficientBalance):
        await fiddo_core.redeem(
            session_factory,
            merchant.id,
            first.merchant_client.id,
            verification=RedeemVerification(presence_verified=True),
        )

    adjusted = await fiddo_core.adjust(
        session_factory,
        merchant.id,
        first.merchant_client.id,
        points_delta=15,
        reason="Birthday bonus",
    )
    assert adjusted.merchant_client.points_balance == 20

    twin = await fiddo_core.credit(session_factory, merchant.id, amount="4", phone="+32 470 00 11 22")
    merged = await fiddo_core.merge_clients(
        session_factory,
        merchant.id,
        target_client_id=first.merchant_client.id,
        source_client_id=twin.merchant_client.id,
        reason="Same customer",
    )
    assert merged.merchant_client.points_balance == 24

    voucher = await fiddo_core.create_gift_voucher(session_factory, first.merchant_client.id, ttl=timedelta(days=1))
    assert voucher.points == 24

    friend = await fiddo_core.resolve_identity(session_factory, email="nia@example.com")
    claimed = await fiddo_core.claim_gift_voucher(session_factory, voucher.token, friend.end_user.id)
    assert claimed.merchant_client.points_balance == 24

    summary = await fiddo_core.sweep_expired_vouchers(session_factory, now=voucher.expires_at + timedelta(days=1))
    assert summary.expired == 0
