"""Tests for merchant client consolidation."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from fiddo_core.db.unit_of_work import with_transaction
from fiddo_core.errors import MerchantClientNotFound, SelfMerge
from fiddo_core.models import (
    AliasType,
    EndUser,
    EndUserAlias,
    EndUserMerge,
    LedgerEntry,
    LedgerEntryType,
    MerchantClient,
)
from fiddo_core.services.identity import IdentityResolver
from fiddo_core.services.ledger import LedgerEngine
from fiddo_core.services.merge import MergeEngine


async def _ledger_rows(session_factory):
    async with session_factory() as session:
        rows = (await session.execute(select(LedgerEntry).order_by(LedgerEntry.id))).scalars().all()
        return {row.id: row for row in rows}


@pytest.mark.asyncio
async def test_merge_conserves_points_and_history(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    ledger = LedgerEngine(session_factory)
    target = await ledger.credit(merchant.id, amount="40", email="dana@example.com")
    source = await ledger.credit(merchant.id, amount="25", phone="0470 55 66 77")
    await ledger.credit(merchant.id, amount="5", phone="0470 55 66 77")

    before = await _ledger_rows(session_factory)
    source_entry_ids = [
        entry_id for entry_id, row in before.items() if row.merchant_client_id == source.merchant_client.id
    ]

    result = await MergeEngine(session_factory).merge(
        merchant.id,
        target_client_id=target.merchant_client.id,
        source_client_id=source.merchant_client.id,
        reason="Same person",
        merged_by=3,
    )

    assert result.points_moved == 30
    assert result.entries_moved == 2
    assert result.merchant_client.points_balance == 70
    assert result.merchant_client.visit_count == 3
    assert result.merchant_client.total_spent == Decimal("70.00")
    assert result.merge_entry.points_delta == 0
    assert result.merge_entry.transaction_type == LedgerEntryType.MERGE
    assert result.merge_entry.notes == f"Merged client #{source.merchant_client.id} (30 points): Same person"

    after = await _ledger_rows(session_factory)
    for entry_id in source_entry_ids:
        moved, original = after[entry_id], before[entry_id]
        assert moved.merchant_client_id == target.merchant_client.id
        assert moved.points_delta == original.points_delta
        assert moved.amount == original.amount
        assert moved.transaction_type == original.transaction_type
        assert moved.notes == original.notes
    assert sum(row.points_delta for row in after.values()) == 70

    async with session_factory() as session:
        assert await session.get(MerchantClient, source.merchant_client.id) is None
        audit = (await session.execute(select(EndUserMerge))).scalars().one()
        assert audit.source_user_id == source.end_user.id
        assert audit.target_user_id == target.end_user.id
        assert audit.merged_by == 3
        assert audit.details["points_moved"] == 30


@pytest.mark.asyncio
async def test_merge_aliases_keep_old_identifiers_resolving(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    ledger = LedgerEngine(session_factory)
    target = await ledger.credit(merchant.id, amount="10", email="erin@example.com")
    source = await ledger.credit(merchant.id, amount="10", email="erin.old@example.com", phone="0470 98 76 54")

    result = await MergeEngine(session_factory).merge(
        merchant.id,
        target_client_id=target.merchant_client.id,
        source_client_id=source.merchant_client.id,
    )

    assert set(result.aliases_created) == {("email", "erin.old@example.com"), ("phone", "+32470987654")}
    assert result.source_retired is True

    async with session_factory() as session:
        aliases = (await session.execute(select(EndUserAlias))).scalars().all()
        assert {alias.end_user_id for alias in aliases} == {target.end_user.id}
        retired = await session.get(EndUser, source.end_user.id)
        assert retired.deleted_at is not None

    resolver = IdentityResolver()
    by_email = await with_transaction(session_factory, lambda uow: resolver.resolve(uow, email="Erin.Old@example.com"))
    by_phone = await with_transaction(session_factory, lambda uow: resolver.resolve(uow, phone="+32470987654"))
    assert by_email.end_user.id == target.end_user.id
    assert by_email.matched_by == "alias_email"
    assert by_phone.end_user.id == target.end_user.id

    # A later visit under the old email lands on the merged balance.
    again = await ledger.credit(merchant.id, amount="5", email="erin.old@example.com")
    assert again.merchant_client.id == target.merchant_client.id
    assert again.balance == 25


@pytest.mark.asyncio
async def test_merge_carries_relationships_at_other_merchants(session_factory, make_merchant) -> None:
    home = await make_merchant()
    elsewhere = await make_merchant()
    third = await make_merchant()
    ledger = LedgerEngine(session_factory)

    target = await ledger.credit(home.id, amount="10", email="fay@example.com")
    source = await ledger.credit(home.id, amount="10", email="fay.work@example.com")
    # Only the source knows this merchant: the row follows the target end user.
    moved = await ledger.credit(elsewhere.id, amount="12", email="fay.work@example.com")
    # Both know this one: the rows are folded together.
    kept = await ledger.credit(third.id, amount="3", email="fay@example.com")
    folded = await ledger.credit(third.id, amount="4", email="fay.work@example.com")

    result = await MergeEngine(session_factory).merge(
        home.id,
        target_client_id=target.merchant_client.id,
        source_client_id=source.merchant_client.id,
        merged_by=42,
    )

    assert result.relinked_client_ids == [moved.merchant_client.id]
    assert result.folded_client_ids == [folded.merchant_client.id]
    assert result.folded_merchant_ids == [third.id]

    async with session_factory() as session:
        relinked = await session.get(MerchantClient, moved.merchant_client.id)
        assert relinked.end_user_id == target.end_user.id
        assert relinked.points_balance == 12
        survivor = await session.get(MerchantClient, kept.merchant_client.id)
        assert survivor.points_balance == 7
        assert await session.get(MerchantClient, folded.merchant_client.id) is None
        merge_entries = (
            await session.execute(select(LedgerEntry).where(LedgerEntry.transaction_type == LedgerEntryType.MERGE))
        ).scalars().all()
        assert len(merge_entries) == 2
        by_merchant = {entry.merchant_id: entry for entry in merge_entries}
        assert set(by_merchant) == {home.id, third.id}
        assert by_merchant[home.id].staff_id == 42
        assert by_merchant[third.id].staff_id is None
        assert by_merchant[third.id].merchant_client_id == kept.merchant_client.id
        assert f"via merge at merchant #{home.id}" in by_merchant[third.id].notes
        record = (await session.execute(select(EndUserMerge))).scalar_one()
        assert record.details["folded_merchant_ids"] == [third.id]


@pytest.mark.asyncio
async def test_merge_rejects_self_and_foreign_clients(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    other = await make_merchant()
    ledger = LedgerEngine(session_factory)
    mine = await ledger.credit(merchant.id, amount="10", email="gil@example.com")
    theirs = await ledger.credit(other.id, amount="10", email="hal@example.com")
    engine = MergeEngine(session_factory)

    with pytest.raises(SelfMerge):
        await engine.merge(merchant.id, target_client_id=mine.merchant_client.id, source_client_id=mine.merchant_client.id)
    with pytest.raises(MerchantClientNotFound):
        await engine.merge(
            merchant.id,
            target_client_id=mine.merchant_client.id,
            source_client_id=theirs.merchant_client.id,
        )

    async with session_factory() as session:
        assert await session.get(MerchantClient, theirs.merchant_client.id) is not None


@pytest.mark.asyncio
async def test_alias_owned_elsewhere_is_never_overwritten(session_factory, make_merchant) -> None:
    merchant = await make_merchant()
    ledger = LedgerEngine(session_factory)
    bystander = await ledger.credit(merchant.id, amount="1", email="ivy@example.com")
    target = await ledger.credit(merchant.id, amount="1", email="jon@example.com")
    source = await ledger.credit(merchant.id, amount="1", phone="0470 12 12 12")

    async with session_factory() as session:
        session.add(
            EndUserAlias(end_user_id=bystander.end_user.id, alias_type=AliasType.PHONE, alias_value="+32470121212")
        )
        await session.commit()

    result = await MergeEngine(session_factory).merge(
        merchant.id,
        target_client_id=target.merchant_client.id,
        source_client_id=source.merchant_client.id,
    )
    assert result.aliases_created == []

    async with session_factory() as session:
        alias = (await session.execute(select(EndUserAlias))).scalars().one()
        assert alias.end_user_id == bystander.end_user.id
