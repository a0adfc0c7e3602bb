import sys
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

from fiddo_core.db.base import Base
from fiddo_core.db.session import build_engine, build_session_factory


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = build_session_factory(engine)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def make_merchant(session_factory):
    """Persist an active merchant with the given loyalty settings."""

    from fiddo_core.models import Merchant, MerchantStatus

    counter = {"value": 0}

    async def _make(**overrides):
        counter["value"] += 1
        values = {
            "business_name": f"Bakery {counter['value']}",
            "vat_number": f"BE0{counter['value']:09d}",
            "status": MerchantStatus.ACTIVE,
            "points_per_euro": Decimal("1.0"),
            "points_for_reward": 100,
            "reward_description": "Free coffee",
            "allow_gifts": True,
        }
        values.update(overrides)
        async with session_factory() as session:
            merchant = Merchant(**values)
            session.add(merchant)
            await session.commit()
            return merchant

    return _make
