"""Compare cached merchant client balances with their ledger totals.

Reports every client of a merchant whose ``points_balance`` differs from the
sum of its ledger entries and, with ``--repair``, rewrites the cached value.

Example:
    python tooling/scripts/audit_ledger.py --merchant-id 12 --repair
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit merchant client balances against the ledger")
    parser.add_argument("--merchant-id", type=int, required=True, help="Merchant whose clients are audited.")
    parser.add_argument(
        "--repair",
        action="store_true",
        help="Overwrite drifted balances with the ledger total.",
    )
    return parser.parse_args()


async def _run(merchant_id: int, repair: bool) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

    from fiddo_core.core.logging import configure_logging  # type: ignore import-position
    from fiddo_core.core.settings import settings  # type: ignore import-position
    from fiddo_core.db.session import async_session  # type: ignore import-position
    from fiddo_core.services.ledger import LedgerAuditor  # type: ignore import-position

    configure_logging(service_name=settings.service_name, environment=settings.environment, level=settings.log_level)
    auditor = LedgerAuditor(async_session)
    drifted = await auditor.find_discrepancies(merchant_id)
    for check in drifted:
        logger.warning(
            "Balance drift",
            merchant_client_id=check.merchant_client_id,
            cached_balance=check.cached_balance,
            ledger_balance=check.ledger_balance,
            drift=check.drift,
        )

    repaired = 0
    if repair:
        for check in drifted:
            await auditor.repair(check.merchant_client_id)
            repaired += 1
    return {"drifted": len(drifted), "repaired": repaired}


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.merchant_id, args.repair))
    logger.success(
        "Ledger audit completed",
        merchant_id=args.merchant_id,
        drifted=summary["drifted"],
        repaired=summary["repaired"],
    )
    if summary["drifted"] and not args.repair:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
