"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from dealwatch.config import settings
from dealwatch.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)


def setup_scheduler(task_runner: TaskRunner) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Deal refresh every settings.refresh_interval_minutes
    - Expiration sweep hourly at settings.sweep_minute
    - New listing ingestion every settings.ingest_interval_minutes

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    refresh_interval = max(1, int(settings.refresh_interval_minutes))
    ingest_interval = max(1, int(settings.ingest_interval_minutes))

    scheduler.add_job(
        task_runner.refresh_deals,
        IntervalTrigger(minutes=refresh_interval),
        id="refresh_deals",
        name="Refresh due deals",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.sweep_expired_deals,
        CronTrigger(minute=settings.sweep_minute),
        id="sweep_expired_deals",
        name="Expire deals past their expiration time",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    if settings.ingest_store_keys:
        scheduler.add_job(
            task_runner.ingest_new_listings,
            IntervalTrigger(minutes=ingest_interval),
            id="ingest_new_listings",
            name="Ingest new listings from stores",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=600,
            replace_existing=True,
        )

    logger.info(
        f"Scheduler configured: refresh every {refresh_interval}m, sweep at :{settings.sweep_minute:02d}, "
        f"ingest every {ingest_interval}m"
    )
    return scheduler
