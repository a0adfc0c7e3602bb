"""Delete aliases that point at deleted end users or are shadowed by a live identifier.

Example:
    python tooling/scripts/cleanup_orphan_aliases.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Purge orphaned end user aliases")
    parser.add_argument("--dry-run", action="store_true", help="List orphans without deleting them.")
    return parser.parse_args()


async def _run(dry_run: bool) -> dict[str, object]:
    repo_root = Path(__file__).resolve().parents[2]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

    from fiddo_core.core.logging import configure_logging  # type: ignore import-position
    from fiddo_core.core.settings import settings  # type: ignore import-position
    from fiddo_core.db.session import async_session  # type: ignore import-position
    from fiddo_core.services.identity import AliasMaintenance  # type: ignore import-position

    configure_logging(service_name=settings.service_name, environment=settings.environment, level=settings.log_level)
    summary = await AliasMaintenance(async_session).purge_orphans(dry_run=dry_run)
    for orphan in summary.orphans:
        logger.info(
            "Orphan alias",
            alias_id=orphan.alias_id,
            alias_type=orphan.alias_type.value,
            end_user_id=orphan.end_user_id,
            reason=orphan.reason,
        )
    return summary.as_dict()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.dry_run))
    logger.success("Alias cleanup run completed", **summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
