"""Alias hygiene: detect and purge aliases that no longer redirect correctly."""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from fiddo_core.db.session import SessionFactory
from fiddo_core.db.unit_of_work import UnitOfWork, with_session, with_transaction
from fiddo_core.models import AliasType


@dataclass(slots=True, frozen=True)
class OrphanAlias:
    alias_id: int
    alias_type: AliasType
    alias_value: str
    end_user_id: int
    reason: str  # "owner_deleted" | "shadowed"


@dataclass(slots=True)
class AliasPurgeSummary:
    scanned: int = 0
    deleted: int = 0
    dry_run: bool = False
    orphans: list[OrphanAlias] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {"scanned": self.scanned, "deleted": self.deleted, "dry_run": self.dry_run}


class AliasMaintenance:
    """Find aliases pointing at deleted owners or shadowed by a live identifier."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def find_orphans(self) -> list[OrphanAlias]:
        return await with_session(self._session_factory, self._collect)

    async def purge_orphans(self, *, dry_run: bool = False) -> AliasPurgeSummary:
        async def _purge(uow: UnitOfWork) -> AliasPurgeSummary:
            orphans = await self._collect(uow)
            summary = AliasPurgeSummary(scanned=len(orphans), dry_run=dry_run, orphans=orphans)
            if not dry_run:
                summary.deleted = await uow.aliases.delete_ids([orphan.alias_id for orphan in orphans])
            return summary

        summary = await with_transaction(self._session_factory, _purge)
        logger.bind(summary=summary.as_dict()).info("Alias cleanup completed")
        return summary

    @staticmethod
    async def _collect(uow: UnitOfWork) -> list[OrphanAlias]:
        orphans: list[OrphanAlias] = []
        for alias in await uow.aliases.list_orphans():
            owner = await uow.end_users.get(alias.end_user_id)
            reason = "owner_deleted" if owner is None or owner.deleted_at is not None else "shadowed"
            orphans.append(
                OrphanAlias(
                    alias_id=alias.id,
                    alias_type=alias.alias_type,
                    alias_value=alias.alias_value,
                    end_user_id=alias.end_user_id,
                    reason=reason,
                )
            )
        return orphans


__all__ = ["AliasMaintenance", "AliasPurgeSummary", "OrphanAlias"]
