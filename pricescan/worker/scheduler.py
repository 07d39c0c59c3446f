"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from pricescan.config import settings
from pricescan.worker.tasks import ScanTaskRunner

logger = logging.getLogger(__name__)


def setup_scheduler(task_runner: ScanTaskRunner) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Nightly price scan per active supplier at settings.nightly_scan_hour:minute
    - Daily exchange rate refresh at settings.exchange_rate_refresh_hour

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()

    if settings.nightly_scan_enabled:
        scheduler.add_job(
            task_runner.run_nightly_scan,
            CronTrigger(hour=settings.nightly_scan_hour, minute=settings.nightly_scan_minute),
            id="nightly_price_scan",
            name="Queue nightly price scans per supplier",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
            replace_existing=True,
        )

    scheduler.add_job(
        task_runner.refresh_exchange_rates,
        CronTrigger(hour=settings.exchange_rate_refresh_hour, minute=0),
        id="exchange_rate_refresh",
        name="Refresh exchange rates",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(f"Scheduler configured with {len(scheduler.get_jobs())} jobs")
    return scheduler
