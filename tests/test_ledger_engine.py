"""Tests for credit, redeem and adjust."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from fiddo_core.errors import (
    ClientBlocked,
    IdempotencyKeyConflict,
    InsufficientBalance,
    InvalidAmount,
    InvalidIdentifier,
    MerchantClientNotFound,
    MerchantNotFound,
    NegativeBalance,
    PinIncorrect,
    PinRequired,
    ReasonRequired,
    SpendCapExceeded,
    ZeroAdjustment,
)
from fiddo_core.models import EndUser, LedgerEntry, LedgerEntryType, MerchantClient
from fiddo_core.services.ledger import LedgerEngine, RedeemVerification, compute_points
from fiddo_core.services.notifications import InMemoryEmailBackend, InMemoryPushBackend, NotificationDispatcher

PRESENT = RedeemVerification(presence_verified=True)


async def _entries(session_factory, merchant_client_id):
    async with session_factory() as session:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.merchant_client_id == merchant_client_id)
            .order_by(LedgerEntry.id)
        )
        return (await session.execute(stmt)).scalars().all()


def test_compute_points_floors() -> None:
    assert compute_points(Decimal("12.99"), Decimal("1")) == 12
    assert compute_points(Decimal("2.5"), Decimal("1.5")) == 3
    assert compute_points(Decimal("0.40"), Decimal("2")) == 0


@pytest.mark.asyncio
async def test_credit_then_redeem_scenario(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_per_euro=Decimal("2"), points_for_reward=100)
    engine = LedgerEngine(session_factory)

    first = await engine.credit(merchant.id, amount="30", email="carla@example.com", idempotency_key="visit-1")
    assert first.points_delta == 60
    assert first.balance == 60
    assert first.is_new_client is True
    assert first.is_new_relation is True
    assert first.idempotent is False

    client_id = first.merchant_client.id
    with pytest.raises(InsufficientBalance):
        await engine.redeem(merchant.id, client_id, verification=PRESENT)

    second = await engine.credit(merchant.id, amount=Decimal("25"), email="Carla@Example.com", idempotency_key="visit-2")
    assert second.balance == 110
    assert second.is_new_client is False
    assert second.is_new_relation is False
    assert second.merchant_client.visit_count == 2
    assert second.merchant_client.total_spent == Decimal("55.00")

    redeemed = await engine.redeem(merchant.id, client_id, verification=PRESENT)
    assert redeemed.merchant_client.points_balance == 10
    assert redeemed.transaction.points_delta == -100
    assert redeemed.transaction.transaction_type == LedgerEntryType.REWARD
    assert redeemed.reward_label == "Free coffee"

    entries = await _entries(session_factory, client_id)
    assert [entry.transaction_type for entry in entries] == [
        LedgerEntryType.CREDIT,
        LedgerEntryType.CREDIT,
        LedgerEntryType.REWARD,
    ]
    assert sum(entry.points_delta for entry in entries) == 10


@pytest.mark.asyncio
async def test_credit_replay_returns_stored_result(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)

    original = await engine.credit(merchant.id, amount="25", phone="0470 11 22 33", idempotency_key="k1")
    replays = [
        await engine.credit(merchant.id, amount="25", phone="0470 11 22 33", idempotency_key="k1") for _ in range(3)
    ]

    for replay in replays:
        assert replay.idempotent is True
        assert replay.transaction.id == original.transaction.id
        assert replay.transaction.points_delta == original.transaction.points_delta
        assert replay.transaction.created_at == original.transaction.created_at
        assert replay.transaction.amount == original.transaction.amount
        assert replay.merchant_client.points_balance == 25

    assert len(await _entries(session_factory, original.merchant_client.id)) == 1


@pytest.mark.asyncio
async def test_sub_cent_amounts_are_rounded_before_storage(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_per_euro=Decimal("2"))
    engine = LedgerEngine(session_factory)

    original = await engine.credit(merchant.id, amount="25.555", email="cents@example.com", idempotency_key="c1")
    replay = await engine.credit(merchant.id, amount="25.555", email="cents@example.com", idempotency_key="c1")

    assert original.transaction.amount == Decimal("25.56")
    assert original.transaction.points_delta == 51
    assert replay.idempotent is True
    assert replay.transaction.amount == original.transaction.amount
    assert replay.transaction.created_at == original.transaction.created_at
    assert replay.transaction.created_at.utcoffset() is not None
    assert replay.merchant_client.total_spent == Decimal("25.56")

    (stored,) = await _entries(session_factory, original.merchant_client.id)
    assert stored.amount == Decimal("25.56")
    assert stored.created_at == original.transaction.created_at


@pytest.mark.asyncio
async def test_idempotency_key_reused_across_operations_is_rejected(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=10)
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="30", email="dup@example.com", idempotency_key="dup")
    other = await engine.credit(merchant.id, amount="30", email="other@example.com")

    with pytest.raises(IdempotencyKeyConflict):
        await engine.redeem(merchant.id, credited.merchant_client.id, verification=PRESENT, idempotency_key="dup")

    await engine.redeem(merchant.id, credited.merchant_client.id, verification=PRESENT, idempotency_key="r-dup")
    with pytest.raises(IdempotencyKeyConflict):
        await engine.redeem(merchant.id, other.merchant_client.id, verification=PRESENT, idempotency_key="r-dup")
    with pytest.raises(IdempotencyKeyConflict):
        await engine.credit(merchant.id, amount="30", email="dup@example.com", idempotency_key="r-dup")

    assert [entry.points_delta for entry in await _entries(session_factory, credited.merchant_client.id)] == [30, -10]
    assert [entry.points_delta for entry in await _entries(session_factory, other.merchant_client.id)] == [30]


@pytest.mark.asyncio
async def test_idempotency_key_race_returns_winner(session_factory, make_merchant, monkeypatch) -> None:
    """Both requests miss the pre-check; the unique index turns the loser into a replay."""

    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    original_precheck = engine._precheck

    async def _blind_precheck(merchant_id, idempotency_key, load_replay):
        return await original_precheck(merchant_id, None, load_replay)

    monkeypatch.setattr(engine, "_precheck", _blind_precheck)

    winner = await engine.credit(merchant.id, amount="25", email="race@example.com", idempotency_key="k1")
    loser = await engine.credit(merchant.id, amount="25", email="race@example.com", idempotency_key="k1")

    assert winner.idempotent is False
    assert loser.idempotent is True
    assert loser.transaction.id == winner.transaction.id
    assert loser.merchant_client.points_balance == 25
    assert len(await _entries(session_factory, winner.merchant_client.id)) == 1


@pytest.mark.asyncio
async def test_idempotency_keys_are_scoped_per_merchant(session_factory, make_merchant) -> None:
    first = await make_merchant()
    second = await make_merchant()
    engine = LedgerEngine(session_factory)

    a = await engine.credit(first.id, amount="10", email="shared@example.com", idempotency_key="same")
    b = await engine.credit(second.id, amount="10", email="shared@example.com", idempotency_key="same")

    assert b.idempotent is False
    assert a.end_user.id == b.end_user.id
    assert a.merchant_client.id != b.merchant_client.id


@pytest.mark.asyncio
async def test_credit_validation_failures_write_nothing(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)

    for amount in ("0", "0.004", "-5", "abc", None, float("nan")):
        with pytest.raises(InvalidAmount):
            await engine.credit(merchant.id, amount=amount, email="x@example.com")
    with pytest.raises(InvalidIdentifier):
        await engine.credit(merchant.id, amount="10")
    with pytest.raises(MerchantNotFound):
        await engine.credit(9999, amount="10", email="x@example.com")

    async with session_factory() as session:
        assert (await session.execute(select(func.count(LedgerEntry.id)))).scalar() == 0
        assert (await session.execute(select(func.count(EndUser.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_cashier_spend_cap(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)

    with pytest.raises(SpendCapExceeded):
        await engine.credit(merchant.id, amount="200.01", email="big@example.com", staff_role="cashier")

    owner_credit = await engine.credit(merchant.id, amount="500", email="big@example.com", staff_role="owner")
    assert owner_credit.balance == 500


@pytest.mark.asyncio
async def test_blocked_clients_cannot_be_credited(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="10", email="blocked@example.com")

    async with session_factory() as session:
        client = await session.get(MerchantClient, credited.merchant_client.id)
        client.is_blocked = True
        await session.commit()

    with pytest.raises(ClientBlocked):
        await engine.credit(merchant.id, amount="10", email="blocked@example.com")

    async with session_factory() as session:
        client = await session.get(MerchantClient, credited.merchant_client.id)
        client.is_blocked = False
        user = await session.get(EndUser, credited.end_user.id)
        user.is_blocked = True
        await session.commit()

    with pytest.raises(ClientBlocked):
        await engine.credit(merchant.id, amount="10", email="blocked@example.com")

    assert len(await _entries(session_factory, credited.merchant_client.id)) == 1


@pytest.mark.asyncio
async def test_redeem_succeeds_exactly_at_threshold(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=50)
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="49.99", email="edge@example.com")
    assert credited.balance == 49

    with pytest.raises(InsufficientBalance):
        await engine.redeem(merchant.id, credited.merchant_client.id, verification=PRESENT)

    await engine.credit(merchant.id, amount="1", email="edge@example.com")
    redeemed = await engine.redeem(merchant.id, credited.merchant_client.id, verification=PRESENT)
    assert redeemed.merchant_client.points_balance == 0


@pytest.mark.asyncio
async def test_redeem_verification_policy(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=10)
    engine = LedgerEngine(session_factory)

    no_pin = await engine.credit(merchant.id, amount="20", email="nopin@example.com")
    with pytest.raises(PinRequired):
        await engine.redeem(merchant.id, no_pin.merchant_client.id, verification=RedeemVerification(pin_hash="x"))

    with_pin = await engine.credit(merchant.id, amount="20", email="pin@example.com", pin_hash="stored-hash")
    with pytest.raises(PinIncorrect):
        await engine.redeem(
            merchant.id, with_pin.merchant_client.id, verification=RedeemVerification(pin_hash="wrong")
        )

    redeemed = await engine.redeem(
        merchant.id,
        with_pin.merchant_client.id,
        verification=RedeemVerification(pin_hash="stored-hash"),
    )
    assert redeemed.merchant_client.points_balance == 10

    scanned = await engine.redeem(merchant.id, no_pin.merchant_client.id, verification=PRESENT)
    assert scanned.merchant_client.points_balance == 10


@pytest.mark.asyncio
async def test_redeem_uses_custom_reward_and_replays(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=10)
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="30", email="custom@example.com")

    async with session_factory() as session:
        client = await session.get(MerchantClient, credited.merchant_client.id)
        client.custom_reward = "Croissant"
        await session.commit()

    first = await engine.redeem(merchant.id, credited.merchant_client.id, verification=PRESENT, idempotency_key="r1")
    again = await engine.redeem(merchant.id, credited.merchant_client.id, verification=PRESENT, idempotency_key="r1")

    assert first.reward_label == "Croissant"
    assert again.idempotent is True
    assert again.transaction.id == first.transaction.id
    assert again.merchant_client.points_balance == 20


@pytest.mark.asyncio
async def test_redeem_unknown_client(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    other = await make_merchant()
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(other.id, amount="200", email="elsewhere@example.com")

    with pytest.raises(MerchantClientNotFound):
        await engine.redeem(merchant.id, credited.merchant_client.id, verification=PRESENT)


@pytest.mark.asyncio
async def test_adjust_rules(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    engine = LedgerEngine(session_factory)
    credited = await engine.credit(merchant.id, amount="15", email="adjust@example.com")
    client_id = credited.merchant_client.id

    with pytest.raises(ZeroAdjustment):
        await engine.adjust(merchant.id, client_id, points_delta=0, reason="noop")
    with pytest.raises(ReasonRequired):
        await engine.adjust(merchant.id, client_id, points_delta=5, reason="   ")
    with pytest.raises(NegativeBalance):
        await engine.adjust(merchant.id, client_id, points_delta=-16, reason="too much")

    down = await engine.adjust(merchant.id, client_id, points_delta=-15, staff_id=7, reason="Correction")
    assert down.merchant_client.points_balance == 0
    assert down.transaction.transaction_type == LedgerEntryType.ADJUSTMENT
    assert down.transaction.notes == "Correction"
    assert down.transaction.staff_id == 7

    up = await engine.adjust(merchant.id, client_id, points_delta=8, reason="Goodwill")
    assert up.merchant_client.points_balance == 8

    entries = await _entries(session_factory, client_id)
    assert sum(entry.points_delta for entry in entries) == 8


@pytest.mark.asyncio
async def test_notifications_skip_idempotent_replays(session_factory, make_merchant) -> None:
    merchant = await make_merchant(points_for_reward=20)
    push = InMemoryPushBackend()
    email = InMemoryEmailBackend()
    notifier = NotificationDispatcher(email_backend=email, push_backend=push, enabled=True, base_url="https://app.test")
    engine = LedgerEngine(session_factory, notifier=notifier)

    await engine.credit(merchant.id, amount="25", email="notify@example.com", idempotency_key="n1")
    await notifier.drain()
    sent_after_first = len(push.sent_messages)
    assert sent_after_first == 2  # credit + reward available
    assert len(email.sent_messages) == 2

    await engine.credit(merchant.id, amount="25", email="notify@example.com", idempotency_key="n1")
    await notifier.drain()
    assert len(push.sent_messages) == sent_after_first
