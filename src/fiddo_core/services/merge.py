"""Consolidate two merchant clients, and transitively their end users."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from loguru import logger

from fiddo_core.core.clock import ensure_utc, utcnow
from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_transaction
from fiddo_core.errors import MerchantClientNotFound, SelfMerge
from fiddo_core.models import AliasType, EndUserMerge, LedgerEntry, LedgerEntryType, MerchantClient
from fiddo_core.services.identity.resolver import IdentityResolver


@dataclass(slots=True)
class MergeResult:
    merchant_client: MerchantClient
    merge_entry: LedgerEntry
    source_client_id: int
    source_end_user_id: int
    target_end_user_id: int
    points_moved: int
    entries_moved: int
    aliases_created: list[tuple[str, str]] = field(default_factory=list)
    relinked_client_ids: list[int] = field(default_factory=list)
    folded_client_ids: list[int] = field(default_factory=list)
    folded_merchant_ids: list[int] = field(default_factory=list)
    source_retired: bool = False


@dataclass(slots=True)
class _Absorbed:
    entry: LedgerEntry
    points: int
    entries: int


class MergeEngine:
    """Fold a source merchant client into a target without losing points or history.

    Within one transaction the source's counters are added to the target, its
    ledger entries are re-pointed, a zero-delta ``merge`` entry records the
    event and the source row is deleted. The source end user's identifiers
    become aliases of the target end user, its relationships at other merchants
    follow the target, and it is then retired so those identifiers resolve
    through the aliases.
    """

    def __init__(self, session_factory: SessionFactory, *, resolver: Optional[IdentityResolver] = None) -> None:
        self._session_factory = session_factory
        self._resolver = resolver or IdentityResolver()

    async def merge(
        self,
        merchant_id: int,
        *,
        target_client_id: int,
        source_client_id: int,
        reason: str | None = None,
        merged_by: int | None = None,
    ) -> MergeResult:
        if target_client_id == source_client_id:
            raise SelfMerge(merchant_client_id=target_client_id)
        reason_text = (reason or "").strip() or None

        async def _merge(uow: UnitOfWork) -> MergeResult:
            target = await uow.merchant_clients.get_for_merchant(merchant_id, target_client_id, for_update=True)
            source = await uow.merchant_clients.get_for_merchant(merchant_id, source_client_id, for_update=True)
            if target is None or source is None:
                raise MerchantClientNotFound(
                    merchant_id=merchant_id,
                    merchant_client_id=source_client_id if target is not None else target_client_id,
                )

            now = utcnow()
            target_eu_id = target.end_user_id
            source_eu_id = source.end_user_id
            absorbed = await self._absorb(
                uow, target, source, origin_merchant_id=merchant_id, reason=reason_text, merged_by=merged_by, at=now
            )
            result = MergeResult(
                merchant_client=target,
                merge_entry=absorbed.entry,
                source_client_id=source_client_id,
                source_end_user_id=source_eu_id,
                target_end_user_id=target_eu_id,
                points_moved=absorbed.points,
                entries_moved=absorbed.entries,
            )

            for other in await uow.merchant_clients.list_for_end_user(source_eu_id):
                counterpart = await uow.merchant_clients.find_link(other.merchant_id, target_eu_id)
                if counterpart is None:
                    await uow.merchant_clients.relink(other.id, target_eu_id, at=now)
                    result.relinked_client_ids.append(other.id)
                else:
                    await self._absorb(
                        uow,
                        counterpart,
                        other,
                        origin_merchant_id=merchant_id,
                        reason=reason_text,
                        merged_by=merged_by,
                        at=now,
                    )
                    result.folded_client_ids.append(other.id)
                    result.folded_merchant_ids.append(other.merchant_id)
            await uow.vouchers.reassign_end_user(source_eu_id, target_eu_id)

            source_user = await uow.end_users.get(source_eu_id)
            identifiers = [
                (AliasType.EMAIL, source_user.email_lower if source_user is not None else None),
                (AliasType.PHONE, source_user.phone_e164 if source_user is not None else None),
            ]
            for alias_type, value in identifiers:
                if not value:
                    continue
                alias, created = await uow.aliases.add_if_absent(alias_type, value, target_eu_id)
                if created:
                    result.aliases_created.append((alias_type.value, value))
                elif alias.end_user_id not in (target_eu_id, source_eu_id):
                    logger.warning(
                        "Alias already owned by another end user; leaving it untouched",
                        alias_type=alias_type.value,
                        alias_id=alias.id,
                        owner_id=alias.end_user_id,
                        target_end_user_id=target_eu_id,
                    )
            await uow.aliases.reassign_owner(source_eu_id, target_eu_id)

            if source_user is not None and source_user.deleted_at is None:
                await self._resolver.soft_delete(uow, source_eu_id)
                result.source_retired = True

            await uow.merges.add(
                EndUserMerge(
                    source_user_id=source_eu_id,
                    target_user_id=target_eu_id,
                    merchant_id=merchant_id,
                    merged_by=merged_by,
                    reason=reason_text,
                    details={
                        "source_client_id": source_client_id,
                        "target_client_id": target_client_id,
                        "points_moved": absorbed.points,
                        "entries_moved": absorbed.entries,
                        "aliases_created": [f"{kind}:{value}" for kind, value in result.aliases_created],
                        "relinked_client_ids": result.relinked_client_ids,
                        "folded_client_ids": result.folded_client_ids,
                        "folded_merchant_ids": result.folded_merchant_ids,
                    },
                    created_at=now,
                )
            )
            await uow.merchant_clients.refresh(target)
            return result

        result = await with_transaction(self._session_factory, _merge, retries=1)
        logger.info(
            "Merged merchant clients",
            merchant_id=merchant_id,
            target_client_id=target_client_id,
            source_client_id=source_client_id,
            points_moved=result.points_moved,
            entries_moved=result.entries_moved,
            aliases_created=len(result.aliases_created),
            source_retired=result.source_retired,
        )
        return result

    @staticmethod
    async def _absorb(
        uow: UnitOfWork,
        target: MerchantClient,
        source: MerchantClient,
        *,
        origin_merchant_id: int,
        reason: str | None,
        merged_by: int | None,
        at: datetime,
    ) -> _Absorbed:
        points = int(source.points_balance or 0)
        first_visit = min(_visit(target.first_visit, at), _visit(source.first_visit, at))
        last_visit = max(_visit(target.last_visit, at), _visit(source.last_visit, at))
        await uow.merchant_clients.absorb_totals(
            target.id,
            points=points,
            spent=Decimal(source.total_spent or 0),
            visits=int(source.visit_count or 0),
            first_visit=first_visit,
            last_visit=last_visit,
            at=at,
        )
        moved = await uow.ledger.reassign_client(source.id, target.id)
        await uow.vouchers.reassign_sender(source.id, to_mc_id=target.id, to_eu_id=target.end_user_id)
        await uow.vouchers.reassign_claimer(source.id, to_mc_id=target.id, to_eu_id=target.end_user_id)

        # Staff ids are scoped to the merchant that ran the merge; folds at
        # other merchants carry no operator and name the originating merchant.
        foreign = target.merchant_id != origin_merchant_id
        notes = f"Merged client #{source.id} ({points} points)"
        if foreign:
            notes = f"{notes} via merge at merchant #{origin_merchant_id}"
        if reason:
            notes = f"{notes}: {reason}"
        entry = await uow.ledger.append(
            LedgerEntry(
                merchant_id=target.merchant_id,
                merchant_client_id=target.id,
                staff_id=None if foreign else merged_by,
                points_delta=0,
                transaction_type=LedgerEntryType.MERGE,
                source="merge",
                notes=notes,
                created_at=at,
            )
        )
        await uow.merchant_clients.delete(source.id)
        return _Absorbed(entry=entry, points=points, entries=moved)


def _visit(value: datetime | None, fallback: datetime) -> datetime:
    return ensure_utc(value) or fallback


__all__ = ["MergeEngine", "MergeResult"]
