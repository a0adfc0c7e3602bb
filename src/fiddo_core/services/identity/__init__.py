"""Identity resolution services."""

from .aliases import AliasMaintenance, AliasPurgeSummary, OrphanAlias
from .linker import LinkResult, MerchantClientLinker
from .resolver import (
    ActiveEndUser,
    DeletedEndUser,
    EndUserSnapshot,
    IdentityResolver,
    ResolvedIdentity,
    snapshot_end_user,
)

__all__ = [
    "ActiveEndUser",
    "AliasMaintenance",
    "AliasPurgeSummary",
    "DeletedEndUser",
    "EndUserSnapshot",
    "IdentityResolver",
    "LinkResult",
    "MerchantClientLinker",
    "OrphanAlias",
    "ResolvedIdentity",
    "snapshot_end_user",
]
