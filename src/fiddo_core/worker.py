"""Long-running process hosting the recurring loyalty jobs."""

from __future__ import annotations

import asyncio
import signal

from loguru import logger

from fiddo_core.core.logging import configure_logging
from fiddo_core.core.settings import settings
from fiddo_core.db.session import SessionFactory, async_session, engine
from fiddo_core.scheduling import LoyaltyJobScheduler, resolve_schedule_path


async def run_worker(
    *,
    session_factory: SessionFactory = async_session,
    stop_event: asyncio.Event | None = None,
) -> LoyaltyJobScheduler:
    """Start the job scheduler and block until ``stop_event`` is set."""

    stop = stop_event or asyncio.Event()
    schedule_path = resolve_schedule_path(settings.job_schedule_path)
    job_scheduler = LoyaltyJobScheduler(session_factory=session_factory, config_path=schedule_path)

    if settings.job_scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Job scheduler failed to start", error=str(exc))
        else:
            logger.info("Job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info("Job scheduler disabled", reason="job_scheduler_enabled is false")

    try:
        await stop.wait()
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()
    return job_scheduler


async def _main() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await run_worker(stop_event=stop)
    finally:
        await engine.dispose()


def main() -> None:
    configure_logging(service_name=settings.service_name, environment=settings.environment, level=settings.log_level)
    asyncio.run(_main())


__all__ = ["main", "run_worker"]
